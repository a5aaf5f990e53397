"""Exceptions raised by the playback monitor.

Signal handlers never raise; these only surface from the control API:

    PlaybackMonitorError (base)
    ├── SessionLoadError - load() rejected by a fatal error or timeout
    ├── NoActiveSessionError - control call made with no live session
    └── SessionNotFoundError - unknown remote session id
"""

from typing import Optional


class PlaybackMonitorError(Exception):
    """Base exception for all playback monitor errors."""
    pass


class SessionLoadError(PlaybackMonitorError):
    """Raised when the attach-and-load sequence does not reach a playable state."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


class NoActiveSessionError(PlaybackMonitorError):
    """Raised when a control operation needs a session and none is loaded."""
    pass


class SessionNotFoundError(PlaybackMonitorError):
    """Raised when a remote session id is not registered."""
    pass
