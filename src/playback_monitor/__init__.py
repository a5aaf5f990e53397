"""
HLS Playback Monitor
Playback health engine for an adaptive-bitrate streaming dashboard: error
classification and recovery, live/VOD detection, and session metrics.
"""

__version__ = "0.3.0"
__description__ = "Playback health engine for adaptive-bitrate streaming dashboards"
