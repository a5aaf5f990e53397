"""
Mutable per-session state shared by handle between the recovery controller,
the live-status classifier and the metrics aggregator.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from .config import settings
from .models import (
    ErrorCategory,
    ErrorEvent,
    LiveStatus,
    PlaybackPath,
    QualityLevel,
    utcnow,
)
from .source import Capabilities


@dataclass
class StallInterval:
    start: float
    end: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def close(self, now: float) -> float:
        self.end = max(now, self.start)
        return self.end - self.start


@dataclass
class ErrorCounters:
    total: int = 0
    fatal: int = 0
    by_category: Dict[ErrorCategory, int] = field(
        default_factory=lambda: {category: 0 for category in ErrorCategory})

    def record(self, category: ErrorCategory, fatal: bool = False):
        self.total += 1
        self.by_category[category] += 1
        if fatal:
            self.fatal += 1

    def as_dict(self) -> Dict[str, int]:
        return {category.value: count for category, count in self.by_category.items()}


@dataclass
class MetricsState:
    """Everything reset_metrics() clears. Replaced wholesale on reset."""

    history_limit: int = settings.QUALITY_HISTORY_LIMIT
    error_history_limit: int = settings.ERROR_HISTORY_LIMIT
    segment_history_limit: int = settings.SEGMENT_HISTORY_LIMIT

    # Startup
    startup_started_at: Optional[float] = None
    startup_time_ms: Optional[float] = None

    # Stalls
    open_stall: Optional[StallInterval] = None
    stall_count: int = 0
    stall_seconds: float = 0.0

    # Quality
    current_quality: Optional[QualityLevel] = None
    current_level_index: int = -1
    quality_history: Deque[Tuple[float, int, QualityLevel]] = field(default_factory=deque)
    level_switches: int = 0
    bitrate_weighted_sum: float = 0.0
    bitrate_time: float = 0.0
    quality_since: Optional[float] = None

    # Segments (durations in seconds, load times in milliseconds)
    pending_loads: Dict[tuple, float] = field(default_factory=dict)
    segment_count: int = 0
    segment_durations: Deque[float] = field(default_factory=deque)
    total_segment_duration: float = 0.0
    last_segment_duration: Optional[float] = None
    min_segment_duration: Optional[float] = None
    max_segment_duration: float = 0.0
    load_samples: int = 0
    segment_load_times: Deque[float] = field(default_factory=deque)
    total_load_ms: float = 0.0
    last_load_ms: Optional[float] = None
    min_load_ms: Optional[float] = None
    max_load_ms: float = 0.0

    # Data consumption (bytes); bandwidth only from fragments with a load time
    data_since: Optional[float] = None
    total_bytes: int = 0
    sized_fragments: int = 0
    timed_bytes: int = 0
    timed_load_ms: float = 0.0
    last_bandwidth_bps: Optional[float] = None

    # Sampled per tick
    live_latency: Optional[float] = None
    decoded_frames: int = 0
    dropped_frames: int = 0

    # Reporting-only error counters
    errors: ErrorCounters = field(default_factory=ErrorCounters)
    buffer_related_errors: int = 0
    error_history: Deque[ErrorEvent] = field(default_factory=deque)
    last_error: Optional[ErrorEvent] = None

    buffer_flushes: int = 0
    ended: bool = False

    def __post_init__(self):
        self.quality_history = deque(self.quality_history, maxlen=self.history_limit)
        self.segment_durations = deque(self.segment_durations, maxlen=self.segment_history_limit)
        self.segment_load_times = deque(self.segment_load_times, maxlen=self.segment_history_limit)
        self.error_history = deque(self.error_history, maxlen=self.error_history_limit)


@dataclass
class StreamSession:
    session_id: str
    source_url: str
    capabilities: Capabilities
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    # Written only by the live-status classifier
    live_status: LiveStatus = LiveStatus.UNKNOWN
    # Renditions announced by the manifest
    levels: List[QualityLevel] = field(default_factory=list)
    # Written only by the recovery controller
    recovery_counters: ErrorCounters = field(default_factory=ErrorCounters)
    metrics: MetricsState = field(default_factory=MetricsState)
    is_active: bool = True

    @property
    def path(self) -> PlaybackPath:
        return self.capabilities.path

    def touch(self):
        self.last_activity = utcnow()
