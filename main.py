#!/usr/bin/env python3
"""
playback-monitor - Main Entry Point
Playback health engine for adaptive-bitrate streaming dashboards.
"""

import uvicorn
import logging
import sys
import os
import asyncio

# Add the src directory to Python path so the package in `src/` can be imported
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

# Import configs AFTER setting up the path
from playback_monitor.config import settings, VERSION


def main():
    """Main function to start the playback-monitor server."""

    # Try to use uvloop for better async performance
    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        use_uvloop = True
    except ImportError:
        use_uvloop = False

    # Configure logging
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger = logging.getLogger(__name__)
    logger.info("="*60)
    logger.info(
        f"⚡️ Starting playback-monitor v{VERSION} on {settings.HOST}:{settings.PORT}")
    logger.info("="*60)
    logger.info(f"ℹ️  Log level set to: {settings.LOG_LEVEL}")
    if use_uvloop:
        logger.info("✅ Using uvloop for optimized async I/O performance")
    else:
        logger.info(
            "✅ Using standard asyncio (install uvloop for better performance)")

    logger.info(f"✅ Metrics tick every {settings.METRICS_TICK_INTERVAL}s, "
                f"live status poll every {settings.LIVE_POLL_INTERVAL}s")
    logger.info(f"✅ Idle sessions removed after {settings.SESSION_IDLE_TIMEOUT}s")
    if settings.API_TOKEN:
        logger.info("🔒 API token authentication enabled")

    if settings.RELOAD:
        logger.info("🔄 Auto-reload is enabled.")

    # Start the server using settings from the config object
    uvicorn.run(
        "playback_monitor.api:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        loop="uvloop" if use_uvloop and not settings.RELOAD else "asyncio"
    )


if __name__ == "__main__":
    main()
