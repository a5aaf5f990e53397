"""
Remote sessions.

A browser-side player reports its state and signals over HTTP. RemotePlayer
stands in for both the media element and the streaming client: reads come
from the most recent state report, and recovery actions are queued as
commands that the player fetches with its next signal batch.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .events import EventManager
from .exceptions import SessionNotFoundError
from .models import MetricsSnapshot, PlaybackPath, PlaybackQuality, SessionEvent
from .session import SessionController

logger = logging.getLogger(__name__)


class PlayerStateReport(BaseModel):
    """Element and client state as last seen by the browser."""
    paused: Optional[bool] = None
    current_time: Optional[float] = None
    duration: Optional[float] = None
    ready_state: Optional[int] = None
    live_sync_position: Optional[float] = None
    total_frames: Optional[int] = None
    dropped_frames: Optional[int] = None


class RemotePlayer:
    # Fields where an explicit null is meaningful
    NULLABLE_FIELDS = frozenset({"duration", "live_sync_position"})

    def __init__(self):
        self.paused = True
        self.current_time = 0.0
        self.duration: Optional[float] = None
        self.ready_state = 0
        self.live_sync_position: Optional[float] = None
        self.total_frames: Optional[int] = None
        self.dropped_frames: Optional[int] = None
        self._commands: List[Dict[str, Any]] = []

    def apply_report(self, report: PlayerStateReport):
        # Only fields present in the report overwrite the cached state
        for name, value in report.model_dump(exclude_unset=True).items():
            if value is None and name not in self.NULLABLE_FIELDS:
                logger.debug(f"Ignoring null {name} in player state report")
                continue
            setattr(self, name, value)

    def get_playback_quality(self) -> Optional[PlaybackQuality]:
        if self.total_frames is None:
            return None
        return PlaybackQuality(total_frames=self.total_frames, dropped_frames=self.dropped_frames or 0)

    # Commands forwarded to the browser

    def load_source(self, url: str):
        self._commands.append({"command": "load", "url": url})

    def start_load(self, start_position: float = -1):
        self._commands.append({"command": "start_load", "start_position": start_position})

    def recover_media_error(self):
        self._commands.append({"command": "recover_media_error"})

    def destroy(self):
        self._commands.append({"command": "destroy"})

    def drain_commands(self) -> List[Dict[str, Any]]:
        commands, self._commands = self._commands, []
        return commands


@dataclass
class RemoteSession:
    session_id: str
    url: str
    path: PlaybackPath
    player: RemotePlayer
    controller: SessionController
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    events: Deque[SessionEvent] = field(default_factory=deque)

    @property
    def is_active(self) -> bool:
        return self.controller.session is not None

    def touch(self):
        self.last_activity = datetime.now(timezone.utc)

    def snapshot(self) -> Optional[MetricsSnapshot]:
        """Live metrics, or the final snapshot once the session has ended."""
        return self.controller.snapshot() or self.controller.final_snapshot

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "url": self.url,
            "path": self.path.value,
            "active": self.is_active,
            "live_status": self.controller.live_status.value,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }


class RemoteSessionManager:
    def __init__(self, settings: Settings = default_settings, event_manager: Optional[EventManager] = None):
        self.settings = settings
        self.event_manager = event_manager
        self.sessions: Dict[str, RemoteSession] = {}
        self._running = False
        self._cleanup_task: Optional[asyncio.Task] = None

    def set_event_manager(self, event_manager: EventManager):
        """Set the event manager for publishing session events"""
        self.event_manager = event_manager

    async def start(self):
        self._running = True
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
        logger.info("Remote session manager started")

    async def stop(self):
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        for session_id in list(self.sessions):
            self.destroy_session(session_id)
        logger.info("Remote session manager stopped")

    def create_session(self, url: str, path: PlaybackPath = PlaybackPath.ADAPTIVE) -> RemoteSession:
        player = RemotePlayer()
        client = player if path == PlaybackPath.ADAPTIVE else None
        controller = SessionController(
            player, client, settings=self.settings, event_manager=self.event_manager)

        pending: List[SessionEvent] = []
        unsubscribe = controller.subscribe(pending.append)
        stream_session = controller.start_session(url)
        unsubscribe()

        remote = RemoteSession(
            session_id=stream_session.session_id,
            url=url,
            path=path,
            player=player,
            controller=controller,
            events=deque(pending, maxlen=self.settings.EVENT_HISTORY_LIMIT),
        )
        controller.subscribe(remote.events.append)
        self.sessions[remote.session_id] = remote
        logger.info(f"Created remote {path.value} session {remote.session_id} for {url}")
        return remote

    def get_session(self, session_id: str) -> RemoteSession:
        remote = self.sessions.get(session_id)
        if remote is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return remote

    def destroy_session(self, session_id: str) -> RemoteSession:
        remote = self.get_session(session_id)
        remote.controller.destroy_session()
        del self.sessions[session_id]
        logger.info(f"Removed remote session {session_id}")
        return remote

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [remote.summary() for remote in self.sessions.values()]

    def get_stats(self) -> Dict[str, Any]:
        active = sum(1 for remote in self.sessions.values() if remote.is_active)
        return {
            "total_sessions": len(self.sessions),
            "active_sessions": active,
        }

    async def _periodic_cleanup(self):
        """Periodic cleanup of idle sessions"""
        while self._running:
            try:
                await asyncio.sleep(self.settings.CLEANUP_INTERVAL)
                self._cleanup_idle_sessions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic cleanup: {e}")

    def _cleanup_idle_sessions(self):
        """Destroy sessions that haven't reported anything recently"""
        current_time = datetime.now(timezone.utc)
        idle_sessions = []

        for session_id, remote in self.sessions.items():
            idle_seconds = (current_time - remote.last_activity).total_seconds()
            if idle_seconds > self.settings.SESSION_IDLE_TIMEOUT:
                logger.info(
                    f"Marking session {session_id} for cleanup: idle for {idle_seconds:.0f}s, "
                    f"timeout={self.settings.SESSION_IDLE_TIMEOUT}s")
                idle_sessions.append(session_id)

        for session_id in idle_sessions:
            if session_id in self.sessions:
                self.destroy_session(session_id)
        return idle_sessions
