"""
Media Signal Source contracts.

The engine never touches a browser directly; it reads player state through
these protocols. Capabilities are resolved once when a session is wired so
handlers never probe collaborators per call.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from .models import PlaybackQuality, PlaybackPath

logger = logging.getLogger(__name__)


@runtime_checkable
class MediaElement(Protocol):
    """Playback element state as seen by the engine."""

    paused: bool
    current_time: float
    duration: Optional[float]  # None when the element reports NaN
    ready_state: int

    def load_source(self, url: str) -> None: ...


@runtime_checkable
class FrameStatsProvider(Protocol):
    """Optional element capability exposing decoded/dropped frame counters."""

    def get_playback_quality(self) -> Optional[PlaybackQuality]: ...


@runtime_checkable
class StreamingClient(Protocol):
    """Adaptive streaming client (hls.js-like) controls used for recovery."""

    live_sync_position: Optional[float]

    def load_source(self, url: str) -> None: ...

    def start_load(self, start_position: float = -1) -> None: ...

    def recover_media_error(self) -> None: ...

    def destroy(self) -> None: ...


@dataclass(frozen=True)
class Capabilities:
    path: PlaybackPath
    frame_stats: bool = False
    live_sync: bool = False

    @classmethod
    def detect(cls, element: MediaElement, client: Optional[StreamingClient] = None) -> "Capabilities":
        if not isinstance(element, MediaElement):
            raise TypeError(f"{type(element).__name__} does not implement MediaElement")
        if client is not None and not isinstance(client, StreamingClient):
            raise TypeError(f"{type(client).__name__} does not implement StreamingClient")

        capabilities = cls(
            path=PlaybackPath.ADAPTIVE if client is not None else PlaybackPath.NATIVE,
            frame_stats=isinstance(element, FrameStatsProvider),
            live_sync=client is not None,
        )
        logger.debug(f"Detected source capabilities: {capabilities}")
        return capabilities


def is_unbounded_duration(duration: Optional[float]) -> bool:
    """Live streams report NaN/Infinity (or 0) as the element duration."""
    return duration is None or not math.isfinite(duration) or duration == 0
