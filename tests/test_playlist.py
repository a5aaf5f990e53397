"""
Tests for playlist ingestion with m3u8
"""
import pytest

from conftest import FakeClient, FakeElement, make_session
from playback_monitor.live_status import LiveStatusClassifier
from playback_monitor.models import LiveStatus
from playback_monitor.playlist import level_loaded_signal, manifest_signal

MASTER_PLAYLIST = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=1280000,RESOLUTION=1280x720,CODECS="avc1.4d401f,mp4a.40.2"
720p.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2560000,RESOLUTION=1920x1080,CODECS="avc1.640028,mp4a.40.2"
1080p.m3u8
"""

LIVE_MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:6
#EXT-X-MEDIA-SEQUENCE:100
#EXTINF:6.0,
segment100.ts
#EXTINF:6.0,
segment101.ts
"""

VOD_MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-PLAYLIST-TYPE:VOD
#EXT-X-TARGETDURATION:10
#EXT-X-MEDIA-SEQUENCE:0
#EXTINF:10.0,
segment0.ts
#EXTINF:10.0,
segment1.ts
#EXTINF:4.5,
segment2.ts
#EXT-X-ENDLIST
"""

EVENT_MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-PLAYLIST-TYPE:EVENT
#EXT-X-TARGETDURATION:4
#EXTINF:4.0,
segment0.ts
"""

EMPTY_TERMINATED_PLAYLIST = """#EXTM3U
#EXT-X-TARGETDURATION:6
#EXT-X-MEDIA-SEQUENCE:7
#EXT-X-ENDLIST
"""


class TestManifest:

    def test_master_playlist_levels(self):
        signal = manifest_signal(MASTER_PLAYLIST, uri="http://example.com/master.m3u8")

        assert signal.kind == "manifest-parsed"
        assert len(signal.levels) == 2
        first = signal.levels[0]
        assert first.bitrate == 1280000
        assert (first.width, first.height) == (1280, 720)
        assert first.codecs == "avc1.4d401f,mp4a.40.2"
        assert first.details is None

    def test_media_playlist_is_a_single_level_with_details(self):
        signal = manifest_signal(LIVE_MEDIA_PLAYLIST)

        assert len(signal.levels) == 1
        details = signal.levels[0].details
        assert details.live is True
        assert details.start_sn == 100
        assert details.end_sn is None
        assert details.total_duration == pytest.approx(12.0)


class TestLevelDetails:

    def test_vod_playlist(self):
        signal = level_loaded_signal(VOD_MEDIA_PLAYLIST, level=1)

        assert signal.level == 1
        assert signal.details.live is False
        assert signal.details.type == "VOD"
        assert signal.details.start_sn == 0
        assert signal.details.end_sn == 2
        assert signal.details.total_duration == pytest.approx(24.5)

    def test_event_playlist_is_live_until_terminated(self):
        signal = level_loaded_signal(EVENT_MEDIA_PLAYLIST)

        assert signal.details.live is True
        assert signal.details.type == "EVENT"
        assert signal.details.end_sn is None

    def test_terminated_playlist_without_segments(self):
        signal = level_loaded_signal(EMPTY_TERMINATED_PLAYLIST)

        assert signal.details.live is False
        assert signal.details.start_sn == 7
        assert signal.details.end_sn == 6
        assert signal.details.total_duration == 0

    def test_master_playlist_is_not_a_level(self):
        with pytest.raises(ValueError):
            level_loaded_signal(MASTER_PLAYLIST)


class TestClassificationFromPlaylists:

    def classifier(self):
        session = make_session()
        classifier = LiveStatusClassifier(session, FakeElement(), FakeClient(), notify=lambda change: None)
        return session, classifier

    def test_live_playlist_classifies_live(self):
        session, classifier = self.classifier()

        classifier.on_manifest_parsed(manifest_signal(LIVE_MEDIA_PLAYLIST))

        assert session.live_status == LiveStatus.LIVE

    def test_vod_playlist_classifies_vod(self):
        session, classifier = self.classifier()

        classifier.on_level_loaded(level_loaded_signal(VOD_MEDIA_PLAYLIST))

        assert session.live_status == LiveStatus.VOD

    def test_empty_terminated_playlist_classifies_vod(self):
        session, classifier = self.classifier()

        classifier.on_level_loaded(level_loaded_signal(EMPTY_TERMINATED_PLAYLIST))

        assert session.live_status == LiveStatus.VOD
