from pydantic import BaseModel, Field, TypeAdapter
from typing import List, Optional, Dict, Any, Union, Literal, Annotated
from enum import Enum
from datetime import datetime, timezone
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorCategory(str, Enum):
    NETWORK = "network"
    MEDIA = "media"
    MUX = "mux"
    OTHER = "other"

    @classmethod
    def from_type(cls, error_type: Optional[str]) -> "ErrorCategory":
        """Map a client error type onto its category; unknown types are OTHER."""
        return _ERROR_TYPE_CATEGORIES.get((error_type or "").strip().lower(), cls.OTHER)


_ERROR_TYPE_CATEGORIES = {
    "networkerror": ErrorCategory.NETWORK,
    "network": ErrorCategory.NETWORK,
    "mediaerror": ErrorCategory.MEDIA,
    "media": ErrorCategory.MEDIA,
    "muxerror": ErrorCategory.MUX,
    "mux": ErrorCategory.MUX,
    "othererror": ErrorCategory.OTHER,
    "other": ErrorCategory.OTHER,
}


class LiveStatus(str, Enum):
    UNKNOWN = "unknown"
    LIVE = "live"
    VOD = "vod"


class PlaybackPath(str, Enum):
    ADAPTIVE = "adaptive"
    NATIVE = "native"


class RecoveryAction(str, Enum):
    NONE = "none"
    RESUME_LOAD = "resume_load"
    RECOVER_MEDIA = "recover_media"
    TEARDOWN = "teardown"


class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_DESTROYED = "session_destroyed"
    LIVE_STATUS_CHANGED = "live_status_changed"
    RECOVERY_ATTEMPTED = "recovery_attempted"
    ADVISORY = "advisory"
    TERMINAL_ERROR = "terminal_error"


# Manifest / fragment payloads carried by client signals

class LevelDetails(BaseModel):
    live: Optional[bool] = None
    type: Optional[str] = None  # "LIVE", "VOD", "EVENT"
    start_sn: Optional[int] = None
    end_sn: Optional[int] = None  # absent until the playlist is terminated
    target_duration: Optional[float] = None
    total_duration: Optional[float] = None


class Level(BaseModel):
    bitrate: int = 0
    width: int = 0
    height: int = 0
    codecs: str = ""
    frame_rate: float = 0.0
    details: Optional[LevelDetails] = None


class Fragment(BaseModel):
    sn: Union[int, str] = 0
    level: int = 0
    url: str = ""
    duration: float = 0.0

    @property
    def key(self) -> tuple:
        return (self.level, str(self.sn), self.url)


class FragmentStats(BaseModel):
    # Client-side timing in milliseconds, payload size in bytes
    loading_start: Optional[float] = None
    loading_end: Optional[float] = None
    loaded_bytes: Optional[int] = None


class PlaybackQuality(BaseModel):
    total_frames: int = 0
    dropped_frames: int = 0


# Media element signals

class PlaySignal(BaseModel):
    kind: Literal["play"] = "play"


class PlayingSignal(BaseModel):
    kind: Literal["playing"] = "playing"


class PauseSignal(BaseModel):
    kind: Literal["pause"] = "pause"


class EndedSignal(BaseModel):
    kind: Literal["ended"] = "ended"


class WaitingSignal(BaseModel):
    kind: Literal["waiting"] = "waiting"


class StalledSignal(BaseModel):
    kind: Literal["stalled"] = "stalled"


class CanPlaySignal(BaseModel):
    kind: Literal["canplay"] = "canplay"


class LoadedMetadataSignal(BaseModel):
    kind: Literal["loadedmetadata"] = "loadedmetadata"


class MediaErrorSignal(BaseModel):
    kind: Literal["media-error"] = "media-error"
    code: int = 0  # HTMLMediaElement MediaError.code
    message: Optional[str] = None


# Adaptive streaming client signals

class ManifestParsedSignal(BaseModel):
    kind: Literal["manifest-parsed"] = "manifest-parsed"
    levels: List[Level] = Field(default_factory=list)


class LevelLoadedSignal(BaseModel):
    kind: Literal["level-loaded"] = "level-loaded"
    level: int = 0
    details: Optional[LevelDetails] = None


class LevelSwitchedSignal(BaseModel):
    kind: Literal["level-switched"] = "level-switched"
    level_index: int


class FragmentLoadingSignal(BaseModel):
    kind: Literal["fragment-loading"] = "fragment-loading"
    fragment: Fragment


class FragmentLoadedSignal(BaseModel):
    kind: Literal["fragment-loaded"] = "fragment-loaded"
    fragment: Fragment
    stats: FragmentStats = Field(default_factory=FragmentStats)


class BufferEmptySignal(BaseModel):
    kind: Literal["buffer-empty"] = "buffer-empty"


class BufferAppendedSignal(BaseModel):
    kind: Literal["buffer-appended"] = "buffer-appended"


class BufferFlushedSignal(BaseModel):
    kind: Literal["buffer-flushed"] = "buffer-flushed"


class ClientErrorSignal(BaseModel):
    kind: Literal["error"] = "error"
    type: str = "otherError"
    details: Optional[str] = None
    fatal: bool = False
    reason: Optional[str] = None


MediaSignal = Annotated[
    Union[
        PlaySignal,
        PlayingSignal,
        PauseSignal,
        EndedSignal,
        WaitingSignal,
        StalledSignal,
        CanPlaySignal,
        LoadedMetadataSignal,
        MediaErrorSignal,
        ManifestParsedSignal,
        LevelLoadedSignal,
        LevelSwitchedSignal,
        FragmentLoadingSignal,
        FragmentLoadedSignal,
        BufferEmptySignal,
        BufferAppendedSignal,
        BufferFlushedSignal,
        ClientErrorSignal,
    ],
    Field(discriminator="kind"),
]

_signal_adapter = TypeAdapter(MediaSignal)


def parse_signal(data: Dict[str, Any]) -> MediaSignal:
    """Validate a raw dict (e.g. decoded JSON) into its tagged signal model."""
    return _signal_adapter.validate_python(data)


# Engine records

class ErrorEvent(BaseModel):
    category: ErrorCategory
    details: Optional[str] = None
    fatal: bool = False
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class QualityLevel(BaseModel):
    bitrate: int = 0
    width: int = 0
    height: int = 0
    codec: str = ""
    frame_rate: float = 0.0

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def from_level(cls, level: Level) -> "QualityLevel":
        return cls(
            bitrate=level.bitrate,
            width=level.width,
            height=level.height,
            codec=level.codecs,
            frame_rate=level.frame_rate,
        )


class LiveStatusChange(BaseModel):
    previous: LiveStatus
    current: LiveStatus
    reason: str
    timestamp: datetime = Field(default_factory=utcnow)


class RecoveryOutcome(BaseModel):
    category: ErrorCategory
    details: Optional[str] = None
    fatal: bool = False
    action: RecoveryAction = RecoveryAction.NONE
    attempted: bool = False
    succeeded: bool = False
    advisory: Optional[str] = None


class SessionEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


# Read-only views for the dashboard

class SegmentStats(BaseModel):
    count: int = 0
    last_duration: Optional[float] = None
    min_duration: Optional[float] = None
    max_duration: float = 0.0
    avg_duration: float = 0.0
    load_samples: int = 0
    last_load_ms: Optional[float] = None
    min_load_ms: Optional[float] = None
    max_load_ms: float = 0.0
    avg_load_ms: float = 0.0


class DataStats(BaseModel):
    total_bytes: int = 0
    fragments: int = 0
    last_bandwidth_bps: Optional[float] = None
    avg_bandwidth_bps: Optional[float] = None
    data_rate_bps: Optional[float] = None  # bytes over wall time since metrics start


class FrameStats(BaseModel):
    decoded_frames: int = 0
    dropped_frames: int = 0
    dropped_ratio: float = 0.0  # percent


class ErrorStats(BaseModel):
    total: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    fatal: int = 0
    buffer_related: int = 0
    last_error: Optional[ErrorEvent] = None


class MetricsSnapshot(BaseModel):
    session_id: str
    live_status: LiveStatus
    startup_time_ms: Optional[float] = None
    stall_count: int = 0
    total_stall_seconds: float = 0.0
    stalling: bool = False
    current_quality: Optional[QualityLevel] = None
    available_levels: List[QualityLevel] = Field(default_factory=list)
    level_switches: int = 0
    average_bitrate: Optional[float] = None
    segments: SegmentStats = Field(default_factory=SegmentStats)
    data: DataStats = Field(default_factory=DataStats)
    live_latency: Optional[float] = None
    frames: FrameStats = Field(default_factory=FrameStats)
    errors: ErrorStats = Field(default_factory=ErrorStats)
    buffer_flushes: int = 0
