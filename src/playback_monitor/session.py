"""
Session controller.

Owns the single StreamSession, wires the recovery controller, live-status
classifier and metrics aggregator to a typed signal router, and owns the
session timers. Teardown cancels timers and detaches the router before the
session state is dropped, so no late callback can reach a stale session.
"""

import asyncio
import time
import uuid
import logging
from typing import Any, Callable, Dict, List, Optional

from .config import Settings, settings as default_settings
from .events import EventManager
from .exceptions import NoActiveSessionError, SessionLoadError
from .live_status import LiveStatusClassifier
from .metrics import PlaybackMetricsAggregator
from .models import (
    ErrorCategory,
    ErrorEvent,
    EventType,
    LiveStatus,
    LiveStatusChange,
    MediaSignal,
    MetricsSnapshot,
    PlaybackPath,
    SessionEvent,
)
from .recovery import RecoveryController
from .signals import DispatchResult, SignalRouter
from .source import Capabilities, MediaElement, StreamingClient
from .state import StreamSession

logger = logging.getLogger(__name__)


class SessionController:
    def __init__(
        self,
        element: MediaElement,
        client: Optional[StreamingClient] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.monotonic,
        event_manager: Optional[EventManager] = None,
    ):
        # Resolved once; handlers rely on these flags instead of probing
        self.capabilities = Capabilities.detect(element, client)
        self.element = element
        self.client = client
        self.settings = settings
        self.clock = clock
        self.event_manager = event_manager

        self.session: Optional[StreamSession] = None
        self.router: Optional[SignalRouter] = None
        self.aggregator: Optional[PlaybackMetricsAggregator] = None
        self.classifier: Optional[LiveStatusClassifier] = None
        self.recovery: Optional[RecoveryController] = None

        self.final_snapshot: Optional[MetricsSnapshot] = None
        self.last_terminal_error: Optional[ErrorEvent] = None

        self._tick_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._client_destroyed = False
        self._live_listeners: List[Callable[[LiveStatusChange], None]] = []
        self._event_listeners: List[Callable[[SessionEvent], None]] = []

    @property
    def path(self) -> PlaybackPath:
        return self.capabilities.path

    def set_event_manager(self, event_manager: EventManager):
        """Set the event manager for publishing session events"""
        self.event_manager = event_manager

    # Subscriptions

    def subscribe_live_status(self, callback: Callable[[LiveStatusChange], None]) -> Callable[[], None]:
        """Register for live status transitions; returns an unsubscribe callable."""
        self._live_listeners.append(callback)

        def unsubscribe():
            if callback in self._live_listeners:
                self._live_listeners.remove(callback)

        return unsubscribe

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """Register for every session event; returns an unsubscribe callable."""
        self._event_listeners.append(callback)

        def unsubscribe():
            if callback in self._event_listeners:
                self._event_listeners.remove(callback)

        return unsubscribe

    # Lifecycle

    @property
    def client_destroyed(self) -> bool:
        return self._client_destroyed

    def attach_client(self, client: Optional[StreamingClient]):
        """Swap in a new streaming client, e.g. after a fatal error destroyed the old one.

        Any current session is torn down and the old client destroyed.
        Capabilities are detected again for the new pairing.
        """
        capabilities = Capabilities.detect(self.element, client)
        if self.session is not None:
            self._teardown("client-replaced", destroy_client=True)
        self.client = client
        self.capabilities = capabilities
        self._client_destroyed = False
        logger.info(f"Attached streaming client, path is now {capabilities.path.value}")

    def _check_client(self, url: str):
        if self._client_destroyed:
            raise SessionLoadError(
                f"Cannot load {url}: the streaming client was destroyed, attach a new one first",
                details="clientDestroyed")

    def start_session(self, url: str) -> StreamSession:
        """Discard any current session, wire a new one and ask the source to load.

        Raises SessionLoadError if the streaming client was destroyed by an
        earlier teardown and no replacement has been attached.
        """
        self._check_client(url)
        if self.session is not None:
            self._teardown("replaced")

        session = StreamSession(
            session_id=str(uuid.uuid4()),
            source_url=url,
            capabilities=self.capabilities,
        )
        self.session = session
        self.final_snapshot = None
        self.last_terminal_error = None
        self.aggregator = PlaybackMetricsAggregator(
            session, self.element, self.client, settings=self.settings, clock=self.clock)
        self.classifier = LiveStatusClassifier(
            session, self.element, self.client, notify=self._on_live_status_change, settings=self.settings)
        self.recovery = RecoveryController(
            session, self.client, on_fatal=self._on_fatal_error, publish=self._publish)
        self.router = self._wire()
        self._start_tick()

        logger.info(f"Started {self.path.value} session {session.session_id} for {url}")
        self._publish(EventType.SESSION_STARTED, {"url": url, "path": self.path.value})

        source = self.client if self.client is not None else self.element
        try:
            source.load_source(url)
        except Exception as e:
            logger.error(f"Media source failed to load {url}: {e}")
            self._on_fatal_error(ErrorEvent(
                category=ErrorCategory.OTHER, details="loadSourceFailed", fatal=True, reason=str(e)))
        return session

    async def load(self, url: str, timeout: Optional[float] = None) -> StreamSession:
        """Start a session and wait until the manifest (or metadata) is ready.

        Raises SessionLoadError if a fatal error arrives first or the wait
        times out.
        """
        self._check_client(url)
        if self.session is not None:
            self._teardown("replaced")

        ready = asyncio.get_running_loop().create_future()
        self._ready = ready
        session = self.start_session(url)
        try:
            await asyncio.wait_for(ready, timeout or self.settings.LOAD_TIMEOUT)
        except asyncio.TimeoutError:
            self._teardown("load-timeout")
            raise SessionLoadError(f"Timed out waiting for {url} to load")
        finally:
            if self._ready is ready:
                self._ready = None
        return session

    def _wire(self) -> SignalRouter:
        router = SignalRouter()
        aggregator, classifier, recovery = self.aggregator, self.classifier, self.recovery

        router.register("play", aggregator.on_play)
        router.register("playing", aggregator.on_playing)
        router.register("pause", self._on_pause)
        router.register("ended", aggregator.on_ended)
        for kind in ("waiting", "stalled", "buffer-empty"):
            router.register(kind, aggregator.on_stall_signal)
        for kind in ("canplay", "buffer-appended"):
            router.register(kind, aggregator.on_resume_signal)
        router.register("buffer-flushed", aggregator.on_buffer_flushed)

        router.register("loadedmetadata", classifier.on_loaded_metadata)
        router.register("loadedmetadata", self._resolve_ready)
        router.register("manifest-parsed", aggregator.on_manifest_parsed)
        router.register("manifest-parsed", classifier.on_manifest_parsed)
        router.register("manifest-parsed", self._resolve_ready)
        router.register("level-loaded", classifier.on_level_loaded)
        router.register("level-switched", aggregator.on_level_switched)
        router.register("fragment-loading", aggregator.on_fragment_loading)
        router.register("fragment-loaded", aggregator.on_fragment_loaded)

        # Reporting counters first; recovery may tear the session down
        for kind in ("error", "media-error"):
            router.register(kind, aggregator.on_error)
            router.register(kind, recovery.handle_error)
        return router

    def dispatch(self, signal: MediaSignal) -> DispatchResult:
        """Route one signal from the media source to the session handlers."""
        if self.router is None or self.session is None:
            logger.debug(f"Dropping {signal.kind}: no active session")
            return DispatchResult(kind=signal.kind)
        self.session.touch()
        return self.router.dispatch(signal)

    def _on_pause(self, signal=None):
        logger.debug("Playback paused, live status polling holds")

    def _resolve_ready(self, signal) -> None:
        ready = self._ready
        if ready is None or ready.done():
            return
        if signal.kind == "manifest-parsed" and self.path == PlaybackPath.ADAPTIVE:
            ready.set_result(signal)
        elif signal.kind == "loadedmetadata" and self.path == PlaybackPath.NATIVE:
            ready.set_result(signal)

    # Timers

    def _start_tick(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, metrics tick not started")
            return
        self._tick_task = loop.create_task(self._tick_loop(self.aggregator))

    async def _tick_loop(self, aggregator: PlaybackMetricsAggregator):
        while True:
            try:
                await asyncio.sleep(self.settings.METRICS_TICK_INTERVAL)
                aggregator.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in metrics tick: {e}")

    @property
    def timers_running(self) -> bool:
        tick = self._tick_task is not None and not self._tick_task.done()
        live = self.classifier is not None and (self.classifier.polling or self.classifier.sampling)
        return tick or live

    # Teardown

    def _teardown(self, reason: str, destroy_client: bool = False) -> Optional[StreamSession]:
        session = self.session
        if session is None:
            return None

        # Timers, then listeners, then state
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None
        if self.classifier is not None:
            self.classifier.stop()
        if self.router is not None:
            self.router.detach_all()

        if destroy_client and self.client is not None:
            self._client_destroyed = True
            try:
                self.client.destroy()
            except Exception as e:
                logger.warning(f"Error destroying streaming client: {e}")

        if self.aggregator is not None:
            self.final_snapshot = self.aggregator.snapshot()
        previous_status = session.live_status
        session.is_active = False
        self.session = None
        self.router = None
        self.aggregator = None
        self.classifier = None
        self.recovery = None

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(SessionLoadError(f"Session ended ({reason}) before it was ready"))

        if previous_status != LiveStatus.UNKNOWN:
            self._on_live_status_change(
                LiveStatusChange(previous=previous_status, current=LiveStatus.UNKNOWN, reason=reason),
                session_id=session.session_id)
        logger.info(f"Session {session.session_id} torn down ({reason})")
        self._publish(EventType.SESSION_DESTROYED, {"reason": reason}, session_id=session.session_id)
        return session

    def _on_fatal_error(self, event: ErrorEvent):
        session = self.session
        if session is None:
            return
        self.last_terminal_error = event
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(SessionLoadError(
                f"Fatal {event.category.value} error while loading", details=event.details))

        self._teardown("fatal-error", destroy_client=True)
        self._publish(EventType.TERMINAL_ERROR, {
            "category": event.category.value,
            "details": event.details,
            "reason": event.reason,
        }, session_id=session.session_id)

    # Notifications

    def _on_live_status_change(self, change: LiveStatusChange, session_id: Optional[str] = None):
        for listener in list(self._live_listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Error in live status listener: {e}")
        self._publish(EventType.LIVE_STATUS_CHANGED, {
            "previous": change.previous.value,
            "current": change.current.value,
            "reason": change.reason,
        }, session_id=session_id)

    def _publish(self, event_type: EventType, data: Dict[str, Any], session_id: Optional[str] = None):
        if session_id is None:
            session_id = self.session.session_id if self.session is not None else ""
        event = SessionEvent(event_type=event_type, session_id=session_id, data=data)
        for listener in list(self._event_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in session event listener: {e}")
        if self.event_manager is not None:
            try:
                self.event_manager.publish(event)
            except Exception as e:
                logger.error(f"Error publishing event: {e}")

    # Read API

    @property
    def live_status(self) -> LiveStatus:
        return self.session.live_status if self.session is not None else LiveStatus.UNKNOWN

    @property
    def recovery_counters(self) -> Optional[Dict[str, int]]:
        if self.session is None:
            return None
        counters = self.session.recovery_counters
        return {"total": counters.total, "fatal": counters.fatal, **counters.as_dict()}

    def snapshot(self) -> Optional[MetricsSnapshot]:
        """Current metrics, or None when no session is loaded."""
        if self.aggregator is None:
            return None
        return self.aggregator.snapshot()

    # Control API

    def reset_metrics(self):
        if self.aggregator is None:
            raise NoActiveSessionError("No active session to reset metrics for")
        self.aggregator.reset_metrics()

    def reset_live_status(self):
        if self.classifier is None:
            raise NoActiveSessionError("No active session to reset live status for")
        self.classifier.reset()

    def reset(self):
        """Full reload reset: metrics and live status together."""
        self.reset_metrics()
        self.reset_live_status()

    def destroy_session(self) -> Optional[StreamSession]:
        return self._teardown("destroyed", destroy_client=True)
