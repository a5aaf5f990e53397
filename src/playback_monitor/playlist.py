"""
Playlist ingestion.

Turns raw HLS playlist text into the manifest-parsed / level-loaded signals
the engine consumes, for callers that can see the playlist but not the
client's parsed levels.
"""

import logging
from typing import List, Optional

import m3u8

from .models import Level, LevelDetails, LevelLoadedSignal, ManifestParsedSignal

logger = logging.getLogger(__name__)


def details_from_playlist(playlist: m3u8.M3U8) -> LevelDetails:
    """Describe a media playlist the way the streaming client reports level details."""
    start_sn = playlist.media_sequence or 0
    segment_count = len(playlist.segments)
    playlist_type = (playlist.playlist_type or "").upper() or None

    # A terminated playlist has a last sequence number; a live one does not
    end_sn = start_sn + segment_count - 1 if playlist.is_endlist else None
    live = not playlist.is_endlist and playlist_type != "VOD"

    return LevelDetails(
        live=live,
        type=playlist_type or ("LIVE" if live else "VOD"),
        start_sn=start_sn,
        end_sn=end_sn,
        target_duration=playlist.target_duration,
        total_duration=sum(segment.duration or 0 for segment in playlist.segments),
    )


def levels_from_playlist(playlist: m3u8.M3U8) -> List[Level]:
    if not playlist.is_variant:
        return [Level(details=details_from_playlist(playlist))]

    levels = []
    for variant in playlist.playlists:
        info = variant.stream_info
        width, height = info.resolution if info.resolution else (0, 0)
        levels.append(Level(
            bitrate=info.bandwidth or 0,
            width=width,
            height=height,
            codecs=info.codecs or "",
            frame_rate=info.frame_rate or 0.0,
        ))
    return levels


def manifest_signal(content: str, uri: Optional[str] = None) -> ManifestParsedSignal:
    """Parse a master or media playlist into a manifest-parsed signal."""
    playlist = m3u8.loads(content, uri=uri)
    levels = levels_from_playlist(playlist)
    logger.debug(f"Parsed playlist {uri or '<inline>'} into {len(levels)} levels")
    return ManifestParsedSignal(levels=levels)


def level_loaded_signal(content: str, level: int = 0, uri: Optional[str] = None) -> LevelLoadedSignal:
    """Parse a media playlist into a level-loaded signal."""
    playlist = m3u8.loads(content, uri=uri)
    if playlist.is_variant:
        raise ValueError("Expected a media playlist, got a master playlist")
    return LevelLoadedSignal(level=level, details=details_from_playlist(playlist))
