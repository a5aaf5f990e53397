"""
Live-stream classification.

An explicit Unknown/Live/VOD state machine. Each source of evidence is
evaluated through a small decision table; the stored status only changes,
and subscribers are only notified, when the computed value differs.

Evidence, any one of which is sufficient for Live:
  1. a rendition's playlist details mark it live (flag, type=LIVE, or no
     terminating sequence number)
  2. the adaptive client exposes a live-sync position
  3. native playback only: the element duration is unbounded, or it moves
     between samples taken after metadata loads
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from .config import Settings, settings as default_settings
from .models import (
    LevelDetails,
    LevelLoadedSignal,
    LiveStatus,
    LiveStatusChange,
    ManifestParsedSignal,
    PlaybackPath,
)
from .source import MediaElement, StreamingClient, is_unbounded_duration
from .state import StreamSession

logger = logging.getLogger(__name__)


def details_assert_live(details: Optional[LevelDetails]) -> bool:
    if details is None:
        return False
    return (
        details.live is True
        or (details.type or "").upper() == "LIVE"
        or details.end_sn is None
    )


def details_assert_vod(details: Optional[LevelDetails]) -> bool:
    """True when a playlist explicitly describes itself as on-demand."""
    if details is None:
        return False
    return details.live is False or (details.type or "").upper() == "VOD"


def any_rendition_live(details: Iterable[LevelDetails]) -> bool:
    return any(details_assert_live(d) for d in details)


class LiveStatusClassifier:
    def __init__(
        self,
        session: StreamSession,
        element: MediaElement,
        client: Optional[StreamingClient],
        notify: Callable[[LiveStatusChange], None],
        settings: Settings = default_settings,
    ):
        self.session = session
        self.element = element
        self.client = client
        self.settings = settings
        self._notify = notify
        self._active = True

        self._sampling_handle: Optional[asyncio.TimerHandle] = None
        self._samples_taken = 0
        self._initial_duration: Optional[float] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> LiveStatus:
        return self.session.live_status

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def sampling(self) -> bool:
        return self._sampling_handle is not None

    # Adaptive path

    def on_manifest_parsed(self, signal: ManifestParsedSignal) -> LiveStatus:
        details = [level.details for level in signal.levels if level.details is not None]
        if not details:
            logger.debug("Manifest parsed without rendition details, live status unchanged")
            return self.status

        status = LiveStatus.LIVE if any_rendition_live(details) else LiveStatus.VOD
        self._transition(status, "manifest-parsed")
        self._classified()
        return self.status

    def on_level_loaded(self, signal: LevelLoadedSignal) -> LiveStatus:
        if signal.details is None:
            logger.debug(f"Level {signal.level} loaded without playlist details, live status unchanged")
            return self.status

        manifest_live = details_assert_live(signal.details)
        sync_live = self._live_sync_defined()
        self._log_disagreement(signal.details, sync_live)

        status = LiveStatus.LIVE if (manifest_live or sync_live) else LiveStatus.VOD
        self._transition(status, "level-loaded")
        self._classified()
        return self.status

    def _live_sync_defined(self) -> bool:
        return self.session.capabilities.live_sync and self.client.live_sync_position is not None

    def _log_disagreement(self, details: LevelDetails, sync_live: bool):
        if not details_assert_vod(details):
            return
        if sync_live:
            logger.warning(
                f"Live signals disagree for session {self.session.session_id}: playlist says VOD "
                f"(live={details.live}, type={details.type}) but live sync position is "
                f"{self.client.live_sync_position}")
        elif details.end_sn is None:
            logger.warning(
                f"Live signals disagree for session {self.session.session_id}: playlist says VOD "
                f"but has no terminating sequence number")

    # Native path

    def on_loaded_metadata(self, signal=None) -> LiveStatus:
        if self.session.path != PlaybackPath.NATIVE:
            return self.status
        if self._sampling_handle is not None:
            logger.debug("Duration sampling already running")
            return self.status

        self._initial_duration = self.element.duration
        self._samples_taken = 0
        self._schedule_sample()
        return self.status

    def _schedule_sample(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, native duration sampling skipped")
            return
        self._sampling_handle = loop.call_later(
            self.settings.NATIVE_DURATION_SAMPLE_INTERVAL, self._sample_duration)

    def _sample_duration(self):
        self._sampling_handle = None
        if not self._active:
            return
        try:
            self._samples_taken += 1
            duration = self.element.duration

            if is_unbounded_duration(duration):
                self._transition(LiveStatus.LIVE, "native-duration-unbounded")
                self._classified()
            elif duration != self._initial_duration:
                self._transition(LiveStatus.LIVE, "native-duration-changed")
                self._classified()
            elif self._samples_taken < self.settings.NATIVE_DURATION_SAMPLE_COUNT:
                self._schedule_sample()
            else:
                self._transition(LiveStatus.VOD, "native-duration-stable")
                self._classified()
        except Exception as e:
            logger.error(f"Error sampling native duration: {e}")

    # Periodic re-evaluation

    def poll(self) -> LiveStatus:
        """One polling step; no transitions while paused."""
        if not self._active or self.element.paused:
            return self.status

        if self.session.path == PlaybackPath.ADAPTIVE:
            status = LiveStatus.LIVE if self._live_sync_defined() else LiveStatus.VOD
        else:
            status = LiveStatus.LIVE if is_unbounded_duration(self.element.duration) else LiveStatus.VOD
        self._transition(status, "poll")
        return self.status

    def _classified(self):
        if self.polling or not self._active:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, live status polling not started")
            return
        self._poll_task = loop.create_task(self._poll_loop())

    async def _poll_loop(self):
        while self._active:
            try:
                await asyncio.sleep(self.settings.LIVE_POLL_INTERVAL)
                self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in live status poll: {e}")

    # State changes

    def _transition(self, status: LiveStatus, reason: str) -> bool:
        previous = self.session.live_status
        if status == previous:
            logger.debug(f"Live status unchanged ({status.value}) after {reason}")
            return False

        self.session.live_status = status
        logger.info(
            f"Live status for session {self.session.session_id}: {previous.value} -> {status.value} ({reason})")
        try:
            self._notify(LiveStatusChange(previous=previous, current=status, reason=reason))
        except Exception as e:
            logger.error(f"Error notifying live status change: {e}")
        return True

    def cancel_timers(self):
        if self._sampling_handle is not None:
            self._sampling_handle.cancel()
            self._sampling_handle = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    def reset(self):
        """Back to Unknown with every timer cancelled."""
        self.cancel_timers()
        self._samples_taken = 0
        self._initial_duration = None
        self._transition(LiveStatus.UNKNOWN, "reset")

    def stop(self):
        """Teardown: cancel timers and ignore anything still scheduled."""
        self._active = False
        self.cancel_timers()
