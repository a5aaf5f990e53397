"""
Playback Metrics Aggregator.

Folds element/client signals and the once-per-tick samples into session
counters. Every handler is idempotent against repeated equivalent signals:
a second buffer-empty while already stalled, or a second first-frame
trigger, changes nothing.
"""

import time
import logging
from typing import Callable, Optional, Union

from .config import Settings, settings as default_settings
from .models import (
    ClientErrorSignal,
    DataStats,
    ErrorEvent,
    ErrorStats,
    FragmentLoadedSignal,
    FragmentLoadingSignal,
    FrameStats,
    LevelSwitchedSignal,
    LiveStatus,
    ManifestParsedSignal,
    MediaErrorSignal,
    MetricsSnapshot,
    QualityLevel,
    SegmentStats,
)
from .recovery import classify_error
from .source import MediaElement, StreamingClient
from .state import MetricsState, StallInterval, StreamSession

logger = logging.getLogger(__name__)


class PlaybackMetricsAggregator:
    def __init__(
        self,
        session: StreamSession,
        element: MediaElement,
        client: Optional[StreamingClient] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.element = element
        self.client = client
        self.settings = settings
        self.clock = clock
        self.session.metrics = self._new_state()

    @property
    def state(self) -> MetricsState:
        return self.session.metrics

    def _new_state(self) -> MetricsState:
        return MetricsState(
            history_limit=self.settings.QUALITY_HISTORY_LIMIT,
            error_history_limit=self.settings.ERROR_HISTORY_LIMIT,
            segment_history_limit=self.settings.SEGMENT_HISTORY_LIMIT,
            data_since=self.clock(),
        )

    def reset_metrics(self):
        """Clear counters, timers, stall, history and startup/latency state.

        Live status is owned by the classifier and left alone. The rendition
        currently playing stays current, but its history starts over.
        """
        previous = self.state
        fresh = self._new_state()
        if previous.current_quality is not None:
            fresh.current_quality = previous.current_quality
            fresh.current_level_index = previous.current_level_index
            fresh.quality_since = self.clock()
        self.session.metrics = fresh
        logger.info(f"Metrics reset for session {self.session.session_id}")

    # Startup

    def on_play(self, signal=None):
        m = self.state
        m.ended = False
        if m.startup_started_at is not None or m.startup_time_ms is not None:
            return
        m.startup_started_at = self.clock()
        logger.debug(f"Startup measurement started for session {self.session.session_id}")

    def _record_first_frame(self, trigger: str) -> bool:
        m = self.state
        if m.startup_started_at is None or m.startup_time_ms is not None:
            return False
        m.startup_time_ms = (self.clock() - m.startup_started_at) * 1000
        logger.info(f"First frame via {trigger}, startup time {m.startup_time_ms:.1f}ms")
        return True

    def on_playing(self, signal=None):
        self._record_first_frame("playing")
        self._close_stall("playing")

    # Stalls

    def on_stall_signal(self, signal=None):
        """buffer-empty, waiting and stalled all open the same interval."""
        m = self.state
        trigger = getattr(signal, "kind", "stall")
        if m.open_stall is not None:
            logger.debug(f"Ignoring {trigger}: stall already open")
            return
        if self.element.paused:
            logger.debug(f"Ignoring {trigger} while paused")
            return
        m.open_stall = StallInterval(start=self.clock())
        logger.debug(f"Stall opened by {trigger}")

    def on_resume_signal(self, signal=None):
        """buffer-appended and canplay may close an open stall."""
        self._close_stall(getattr(signal, "kind", "resume"))

    def _progressing(self) -> bool:
        return (
            not self.element.paused
            and self.element.ready_state >= self.settings.STALL_RESUME_READY_STATE
        )

    def _close_stall(self, trigger: str) -> bool:
        m = self.state
        if m.open_stall is None:
            return False
        if not self._progressing():
            logger.debug(f"{trigger} while stalled but element not progressing, stall stays open")
            return False

        duration = m.open_stall.close(self.clock())
        m.stall_count += 1
        m.stall_seconds += duration
        m.open_stall = None
        logger.info(f"Stall #{m.stall_count} ended by {trigger} after {duration:.3f}s")
        return True

    def on_ended(self, signal=None):
        m = self.state
        if m.open_stall is not None:
            logger.debug("Playback ended with an open stall, discarding it")
            m.open_stall = None
        m.ended = True

    def on_buffer_flushed(self, signal=None):
        self.state.buffer_flushes += 1

    # Renditions

    def on_manifest_parsed(self, signal: ManifestParsedSignal):
        self.session.levels = [QualityLevel.from_level(level) for level in signal.levels]
        if self.session.levels and self.state.current_quality is None:
            self._set_quality(0, self.session.levels[0], switched=False)
        logger.info(f"Manifest parsed with {len(self.session.levels)} quality levels")

    def on_level_switched(self, signal: LevelSwitchedSignal):
        index = signal.level_index
        if not 0 <= index < len(self.session.levels):
            logger.warning(f"Level switch to unknown level {index} ({len(self.session.levels)} known)")
            return
        self._set_quality(index, self.session.levels[index], switched=True)

    def _set_quality(self, index: int, quality: QualityLevel, switched: bool):
        m = self.state
        now = self.clock()
        if m.current_quality is not None and m.quality_since is not None:
            elapsed = now - m.quality_since
            m.bitrate_weighted_sum += m.current_quality.bitrate * elapsed
            m.bitrate_time += elapsed

        m.current_quality = quality
        m.current_level_index = index
        m.quality_since = now
        m.quality_history.append((now, index, quality))
        if switched:
            m.level_switches += 1
            logger.info(f"Switched to level {index}: {quality.bitrate} bps ({quality.resolution})")

    def average_bitrate(self) -> Optional[float]:
        """Bitrate averaged over the time spent at each level."""
        m = self.state
        if m.current_quality is None:
            return None
        weighted, elapsed = m.bitrate_weighted_sum, m.bitrate_time
        if m.quality_since is not None:
            span = self.clock() - m.quality_since
            weighted += m.current_quality.bitrate * span
            elapsed += span
        if elapsed <= 0:
            return float(m.current_quality.bitrate)
        return weighted / elapsed

    # Segments

    def on_fragment_loading(self, signal: FragmentLoadingSignal):
        m = self.state
        m.pending_loads[signal.fragment.key] = self.clock()
        # Aborted loads never complete; keep the table bounded
        while len(m.pending_loads) > self.settings.SEGMENT_HISTORY_LIMIT:
            m.pending_loads.pop(next(iter(m.pending_loads)))

    def on_fragment_loaded(self, signal: FragmentLoadedSignal):
        m = self.state
        fragment = signal.fragment

        if not self.element.paused:
            self._record_first_frame("fragment-loaded")

        started = m.pending_loads.pop(fragment.key, None)
        if started is not None:
            load_ms = (self.clock() - started) * 1000
        elif signal.stats.loading_start is not None and signal.stats.loading_end is not None:
            load_ms = signal.stats.loading_end - signal.stats.loading_start
        else:
            load_ms = None

        self._record_segment(fragment.duration, load_ms)
        self._record_data(signal.stats.loaded_bytes, load_ms)

    def _record_data(self, loaded_bytes: Optional[int], load_ms: Optional[float]):
        m = self.state
        if loaded_bytes is None or loaded_bytes <= 0:
            logger.debug("Fragment loaded without a payload size, data consumption unchanged")
            return

        m.total_bytes += loaded_bytes
        m.sized_fragments += 1
        if load_ms is None or load_ms <= 0:
            return

        m.timed_bytes += loaded_bytes
        m.timed_load_ms += load_ms
        m.last_bandwidth_bps = loaded_bytes * 8 / (load_ms / 1000)
        logger.debug(
            f"Fragment of {loaded_bytes} bytes in {load_ms:.1f}ms, "
            f"bandwidth {m.last_bandwidth_bps / 1000:.0f} kbps")

    def data_stats(self) -> DataStats:
        m = self.state
        avg_bandwidth = m.timed_bytes * 8 / (m.timed_load_ms / 1000) if m.timed_load_ms > 0 else None
        data_rate = None
        if m.data_since is not None and m.total_bytes:
            elapsed = self.clock() - m.data_since
            if elapsed > 0:
                data_rate = m.total_bytes * 8 / elapsed
        return DataStats(
            total_bytes=m.total_bytes,
            fragments=m.sized_fragments,
            last_bandwidth_bps=m.last_bandwidth_bps,
            avg_bandwidth_bps=avg_bandwidth,
            data_rate_bps=data_rate,
        )

    def _record_segment(self, duration: float, load_ms: Optional[float]):
        m = self.state
        if duration > 0:
            m.segment_count += 1
            m.segment_durations.append(duration)
            m.total_segment_duration += duration
            m.last_segment_duration = duration
            if m.min_segment_duration is None or duration < m.min_segment_duration:
                m.min_segment_duration = duration
            m.max_segment_duration = max(m.max_segment_duration, duration)
        else:
            logger.debug(f"Ignoring segment with invalid duration: {duration}")

        if load_ms is not None and load_ms >= 0:
            m.load_samples += 1
            m.segment_load_times.append(load_ms)
            m.total_load_ms += load_ms
            m.last_load_ms = load_ms
            if m.min_load_ms is None or load_ms < m.min_load_ms:
                m.min_load_ms = load_ms
            m.max_load_ms = max(m.max_load_ms, load_ms)

    # Errors (reporting only; recovery keeps its own counters)

    def on_error(self, signal: Union[ClientErrorSignal, MediaErrorSignal]):
        self.record_error(classify_error(signal))

    def record_error(self, event: ErrorEvent):
        m = self.state
        m.errors.record(event.category, event.fatal)
        details = (event.details or "").lower()
        if "buffer" in details or "stall" in details:
            m.buffer_related_errors += 1
        m.error_history.append(event)
        m.last_error = event

    # Per-tick sampling

    def tick(self):
        try:
            self._sample_latency()
            self._sample_frames()
        except Exception as e:
            logger.error(f"Error sampling metrics for session {self.session.session_id}: {e}")

    def _sample_latency(self):
        m = self.state
        if self.session.live_status != LiveStatus.LIVE or not self.session.capabilities.live_sync:
            m.live_latency = None
            return
        live_sync = self.client.live_sync_position
        if live_sync is None:
            m.live_latency = None
            return
        m.live_latency = max(0.0, live_sync - (self.element.current_time or 0.0))

    def _sample_frames(self):
        if not self.session.capabilities.frame_stats:
            return
        quality = self.element.get_playback_quality()
        if quality is None:
            return
        # Element counters are cumulative; store them as-is
        self.state.decoded_frames = quality.total_frames
        self.state.dropped_frames = quality.dropped_frames

    # Read API

    def snapshot(self) -> MetricsSnapshot:
        m = self.state
        segments = SegmentStats(
            count=m.segment_count,
            last_duration=m.last_segment_duration,
            min_duration=m.min_segment_duration,
            max_duration=m.max_segment_duration,
            avg_duration=m.total_segment_duration / m.segment_count if m.segment_count else 0.0,
            load_samples=m.load_samples,
            last_load_ms=m.last_load_ms,
            min_load_ms=m.min_load_ms,
            max_load_ms=m.max_load_ms,
            avg_load_ms=m.total_load_ms / m.load_samples if m.load_samples else 0.0,
        )
        frames = FrameStats(
            decoded_frames=m.decoded_frames,
            dropped_frames=m.dropped_frames,
            dropped_ratio=(m.dropped_frames / m.decoded_frames * 100) if m.decoded_frames > 0 else 0.0,
        )
        errors = ErrorStats(
            total=m.errors.total,
            by_category=m.errors.as_dict(),
            fatal=m.errors.fatal,
            buffer_related=m.buffer_related_errors,
            last_error=m.last_error,
        )
        return MetricsSnapshot(
            session_id=self.session.session_id,
            live_status=self.session.live_status,
            startup_time_ms=m.startup_time_ms,
            stall_count=m.stall_count,
            total_stall_seconds=m.stall_seconds,
            stalling=m.open_stall is not None,
            current_quality=m.current_quality,
            available_levels=list(self.session.levels),
            level_switches=m.level_switches,
            average_bitrate=self.average_bitrate(),
            segments=segments,
            data=self.data_stats(),
            live_latency=m.live_latency,
            frames=frames,
            errors=errors,
            buffer_flushes=m.buffer_flushes,
        )
