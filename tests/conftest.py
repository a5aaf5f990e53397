"""
Shared fakes for the playback monitor tests
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from playback_monitor.config import Settings
from playback_monitor.models import PlaybackPath, PlaybackQuality
from playback_monitor.source import Capabilities
from playback_monitor.state import StreamSession


class FakeElement:
    """Media element without frame statistics"""

    def __init__(self, paused=False, ready_state=4, duration=None, current_time=0.0):
        self.paused = paused
        self.ready_state = ready_state
        self.duration = duration
        self.current_time = current_time
        self.loaded = []

    def load_source(self, url):
        self.loaded.append(url)


class FakeFrameElement(FakeElement):
    """Media element that also reports decoded/dropped frames"""

    def __init__(self, total_frames=0, dropped_frames=0, **kwargs):
        super().__init__(**kwargs)
        self.total_frames = total_frames
        self.dropped_frames = dropped_frames

    def get_playback_quality(self):
        return PlaybackQuality(total_frames=self.total_frames, dropped_frames=self.dropped_frames)


class FakeClient:
    def __init__(self, live_sync_position=None, fail_recovery=False, fail_load=False):
        self.live_sync_position = live_sync_position
        self.fail_recovery = fail_recovery
        self.fail_load = fail_load
        self.loaded = []
        self.start_load_calls = 0
        self.recover_media_calls = 0
        self.destroy_calls = 0

    def load_source(self, url):
        if self.fail_load:
            raise RuntimeError("source rejected")
        self.loaded.append(url)

    def start_load(self, start_position=-1):
        self.start_load_calls += 1
        if self.fail_recovery:
            raise RuntimeError("client detached")

    def recover_media_error(self):
        self.recover_media_calls += 1
        if self.fail_recovery:
            raise RuntimeError("client detached")

    def destroy(self):
        self.destroy_calls += 1


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_session(path=PlaybackPath.ADAPTIVE, frame_stats=False, session_id="session-1"):
    capabilities = Capabilities(
        path=path,
        frame_stats=frame_stats,
        live_sync=path == PlaybackPath.ADAPTIVE,
    )
    return StreamSession(session_id=session_id, source_url="http://example.com/live.m3u8",
                         capabilities=capabilities)


@pytest.fixture
def fast_settings():
    """Settings with intervals short enough for real timers in tests"""
    return Settings(
        METRICS_TICK_INTERVAL=0.01,
        LIVE_POLL_INTERVAL=0.02,
        NATIVE_DURATION_SAMPLE_INTERVAL=0.01,
        NATIVE_DURATION_SAMPLE_COUNT=3,
        LOAD_TIMEOUT=0.2,
        API_TOKEN=None,
    )
