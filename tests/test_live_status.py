"""
Tests for the live/VOD classifier
"""
import asyncio
import logging
import pytest

from conftest import FakeClient, FakeElement, make_session
from playback_monitor.live_status import LiveStatusClassifier, details_assert_live
from playback_monitor.models import (
    Level,
    LevelDetails,
    LevelLoadedSignal,
    LiveStatus,
    ManifestParsedSignal,
    PlaybackPath,
    parse_signal,
)

LIVE_DETAILS = LevelDetails(live=True, type="LIVE", start_sn=100, end_sn=None)
VOD_DETAILS = LevelDetails(live=False, type="VOD", start_sn=0, end_sn=9)


def manifest(*details):
    return ManifestParsedSignal(levels=[Level(bitrate=1_000_000, details=d) for d in details])


class Harness:
    def __init__(self, path=PlaybackPath.ADAPTIVE, element=None, client=None, settings=None):
        self.session = make_session(path)
        self.element = element or FakeElement()
        self.client = client if client is not None else (FakeClient() if path == PlaybackPath.ADAPTIVE else None)
        self.changes = []
        kwargs = {"settings": settings} if settings is not None else {}
        self.classifier = LiveStatusClassifier(
            self.session, self.element, self.client, notify=self.changes.append, **kwargs)


class TestDecisionTable:

    @pytest.mark.parametrize("details,expected", [
        (LevelDetails(live=True, end_sn=5), True),
        (LevelDetails(type="LIVE", end_sn=5), True),
        (LevelDetails(live=False, type="VOD", end_sn=None), True),
        (LevelDetails(live=False, type="VOD", end_sn=5), False),
        (None, False),
    ])
    def test_details_assert_live(self, details, expected):
        assert details_assert_live(details) is expected


class TestAdaptiveClassification:

    def test_open_ended_playlist_is_live_right_after_manifest(self):
        h = Harness()

        status = h.classifier.on_manifest_parsed(manifest(LevelDetails(start_sn=1, end_sn=None)))

        assert status == LiveStatus.LIVE
        assert h.session.live_status == LiveStatus.LIVE
        assert len(h.changes) == 1
        assert h.changes[0].previous == LiveStatus.UNKNOWN
        assert h.changes[0].current == LiveStatus.LIVE

    def test_any_live_rendition_makes_the_stream_live(self):
        h = Harness()

        h.classifier.on_manifest_parsed(manifest(VOD_DETAILS, LIVE_DETAILS))

        assert h.session.live_status == LiveStatus.LIVE

    def test_terminated_playlist_is_vod(self):
        h = Harness()

        h.classifier.on_manifest_parsed(manifest(VOD_DETAILS))

        assert h.session.live_status == LiveStatus.VOD

    def test_manifest_without_details_leaves_status_unknown(self):
        h = Harness()

        h.classifier.on_manifest_parsed(ManifestParsedSignal(levels=[Level(bitrate=800_000)]))

        assert h.session.live_status == LiveStatus.UNKNOWN
        assert h.changes == []

    def test_repeated_evidence_notifies_once(self):
        h = Harness()

        h.classifier.on_manifest_parsed(manifest(LIVE_DETAILS))
        h.classifier.on_manifest_parsed(manifest(LIVE_DETAILS))
        h.classifier.on_level_loaded(LevelLoadedSignal(details=LIVE_DETAILS))

        assert len(h.changes) == 1

    def test_live_sync_position_overrides_vod_playlist(self, caplog):
        h = Harness(client=FakeClient(live_sync_position=42.0))

        with caplog.at_level(logging.WARNING):
            status = h.classifier.on_level_loaded(LevelLoadedSignal(details=VOD_DETAILS))

        assert status == LiveStatus.LIVE
        assert "disagree" in caplog.text

    def test_level_loaded_without_details_leaves_status_unchanged(self):
        h = Harness(client=FakeClient(live_sync_position=42.0))

        status = h.classifier.on_level_loaded(parse_signal({"kind": "level-loaded", "level": 2}))

        assert status == LiveStatus.UNKNOWN
        assert h.session.live_status == LiveStatus.UNKNOWN
        assert h.changes == []
        assert not h.classifier.polling

    def test_level_loaded_without_details_keeps_earlier_verdict(self):
        h = Harness()
        h.classifier.on_manifest_parsed(manifest(VOD_DETAILS))

        h.classifier.on_level_loaded(LevelLoadedSignal(level=1))

        assert h.session.live_status == LiveStatus.VOD
        assert len(h.changes) == 1

    def test_level_loaded_vod_without_live_sync(self):
        h = Harness()

        assert h.classifier.on_level_loaded(LevelLoadedSignal(details=VOD_DETAILS)) == LiveStatus.VOD

    def test_poll_follows_live_sync_position(self):
        h = Harness()
        h.classifier.on_manifest_parsed(manifest(VOD_DETAILS))

        h.client.live_sync_position = 12.0
        assert h.classifier.poll() == LiveStatus.LIVE

        h.client.live_sync_position = None
        assert h.classifier.poll() == LiveStatus.VOD
        assert [c.current for c in h.changes] == [LiveStatus.VOD, LiveStatus.LIVE, LiveStatus.VOD]

    def test_no_transitions_while_paused(self):
        h = Harness(element=FakeElement(paused=True))
        h.classifier.on_manifest_parsed(manifest(VOD_DETAILS))
        h.client.live_sync_position = 12.0

        assert h.classifier.poll() == LiveStatus.VOD
        assert len(h.changes) == 1


class TestNativeClassification:

    @pytest.mark.asyncio
    async def test_unbounded_duration_is_live_within_one_interval(self, fast_settings):
        h = Harness(PlaybackPath.NATIVE, element=FakeElement(duration=float("inf")), settings=fast_settings)

        h.classifier.on_loaded_metadata()
        await asyncio.sleep(fast_settings.NATIVE_DURATION_SAMPLE_INTERVAL * 5)

        assert h.session.live_status == LiveStatus.LIVE
        assert h.changes[0].reason == "native-duration-unbounded"
        assert not h.classifier.sampling
        h.classifier.stop()

    @pytest.mark.asyncio
    async def test_unknown_duration_is_live(self, fast_settings):
        h = Harness(PlaybackPath.NATIVE, element=FakeElement(duration=None), settings=fast_settings)

        h.classifier.on_loaded_metadata()
        await asyncio.sleep(fast_settings.NATIVE_DURATION_SAMPLE_INTERVAL * 5)

        assert h.session.live_status == LiveStatus.LIVE
        h.classifier.stop()

    @pytest.mark.asyncio
    async def test_changing_duration_is_live(self, fast_settings):
        element = FakeElement(duration=60.0)
        h = Harness(PlaybackPath.NATIVE, element=element, settings=fast_settings)

        h.classifier.on_loaded_metadata()
        element.duration = 66.0
        await asyncio.sleep(fast_settings.NATIVE_DURATION_SAMPLE_INTERVAL * 5)

        assert h.session.live_status == LiveStatus.LIVE
        assert h.changes[0].reason == "native-duration-changed"
        h.classifier.stop()

    @pytest.mark.asyncio
    async def test_stable_duration_settles_to_vod(self, fast_settings):
        h = Harness(PlaybackPath.NATIVE, element=FakeElement(duration=120.0), settings=fast_settings)

        h.classifier.on_loaded_metadata()
        samples = fast_settings.NATIVE_DURATION_SAMPLE_COUNT
        await asyncio.sleep(fast_settings.NATIVE_DURATION_SAMPLE_INTERVAL * (samples + 5))

        assert h.session.live_status == LiveStatus.VOD
        assert h.classifier.polling
        h.classifier.stop()

    def test_loaded_metadata_is_ignored_on_adaptive_path(self):
        h = Harness(element=FakeElement(duration=float("inf")))

        h.classifier.on_loaded_metadata()

        assert not h.classifier.sampling
        assert h.session.live_status == LiveStatus.UNKNOWN


class TestResetAndStop:

    @pytest.mark.asyncio
    async def test_reset_cancels_timers_and_returns_to_unknown(self, fast_settings):
        h = Harness(settings=fast_settings)
        h.classifier.on_manifest_parsed(manifest(LIVE_DETAILS))
        assert h.classifier.polling

        h.classifier.reset()
        await asyncio.sleep(0)

        assert not h.classifier.polling
        assert not h.classifier.sampling
        assert h.session.live_status == LiveStatus.UNKNOWN
        assert h.changes[-1].current == LiveStatus.UNKNOWN
        assert h.changes[-1].reason == "reset"

    def test_reset_from_unknown_does_not_notify(self):
        h = Harness()

        h.classifier.reset()

        assert h.changes == []

    @pytest.mark.asyncio
    async def test_stopped_classifier_ignores_pending_sample(self, fast_settings):
        h = Harness(PlaybackPath.NATIVE, element=FakeElement(duration=float("inf")), settings=fast_settings)
        h.classifier.on_loaded_metadata()

        h.classifier.stop()
        await asyncio.sleep(fast_settings.NATIVE_DURATION_SAMPLE_INTERVAL * 5)

        assert h.session.live_status == LiveStatus.UNKNOWN
        assert h.changes == []
        assert h.classifier.poll() == LiveStatus.UNKNOWN
