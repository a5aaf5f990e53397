from fastapi import FastAPI, HTTPException, Query, Depends, Header
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from urllib.parse import urlparse
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from .config import settings, VERSION
from .events import EventManager
from .exceptions import NoActiveSessionError, SessionNotFoundError
from .models import MediaSignal, PlaybackPath, SessionEvent
from .playlist import level_loaded_signal, manifest_signal
from .remote import PlayerStateReport, RemoteSession, RemoteSessionManager

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def validate_url(url: str) -> str:
    """Validate a playback source URL"""
    if not url or not url.strip():
        raise ValueError("URL cannot be empty")

    try:
        parsed = urlparse(url)
    except Exception:
        raise ValueError("Invalid URL format")

    if parsed.scheme.lower() not in ['http', 'https']:
        raise ValueError("URL must use HTTP or HTTPS protocol")

    if not parsed.netloc:
        raise ValueError("URL must have a valid domain")

    return url


# Request models
class SessionCreateRequest(BaseModel):
    url: str
    path: PlaybackPath = PlaybackPath.ADAPTIVE

    @field_validator('url')
    @classmethod
    def validate_source_url(cls, v):
        return validate_url(v)


class SignalBatch(BaseModel):
    state: Optional[PlayerStateReport] = None
    signals: List[MediaSignal] = Field(default_factory=list)


class PlaylistRequest(BaseModel):
    content: str
    # Set for a media playlist belonging to a known level
    level: Optional[int] = None
    uri: Optional[str] = None


session_manager = RemoteSessionManager(settings=settings)
event_manager = EventManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info("playback-monitor starting up...")
    await event_manager.start()

    # Connect event manager to session manager
    session_manager.set_event_manager(event_manager)

    await session_manager.start()

    def log_event_handler(event: SessionEvent):
        """Simple event handler that logs all events"""
        logger.info(
            f"Event: {event.event_type.value} for session {event.session_id} at {event.timestamp}")

    event_manager.add_handler(log_event_handler)

    yield

    # Shutdown
    logger.info("playback-monitor shutting down...")
    await session_manager.stop()
    await event_manager.stop()


app = FastAPI(
    title="playback-monitor",
    version=VERSION,
    description="Playback health engine: error recovery, live/VOD detection and playback metrics",
    lifespan=lifespan,
    root_path=settings.ROOT_PATH,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

# Dashboards post signals from arbitrary origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def verify_token(
    x_api_token: Optional[str] = Header(None, alias="X-API-Token"),
    api_token: Optional[str] = Query(
        None, description="API token (alternative to X-API-Token header)")
):
    """
    Verify API token if API_TOKEN is configured.
    Token can be provided via:
    - X-API-Token header (recommended)
    - api_token query parameter (for browser access or when headers are difficult)

    If API_TOKEN is not set in environment, authentication is disabled.
    """
    if not settings.API_TOKEN:
        return True

    provided_token = x_api_token or api_token

    if not provided_token:
        raise HTTPException(
            status_code=401,
            detail="API token required. Provide token via X-API-Token header or api_token query parameter.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if provided_token != settings.API_TOKEN:
        raise HTTPException(
            status_code=403,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True


def get_remote_session(session_id: str) -> RemoteSession:
    try:
        return session_manager.get_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@app.get("/health", dependencies=[Depends(verify_token)])
async def health_check():
    """Health check endpoint with session counts"""
    try:
        return {
            "status": "healthy",
            "version": VERSION,
            "event_manager_running": event_manager.running,
            **session_manager.get_stats(),
        }
    except Exception as e:
        logger.error(f"Error in health check: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions", dependencies=[Depends(verify_token)])
async def create_session(request: SessionCreateRequest):
    """Start monitoring a playback session; the player loads the returned commands"""
    try:
        remote = session_manager.create_session(request.url, request.path)
        return {
            "session_id": remote.session_id,
            "path": remote.path.value,
            "live_status": remote.controller.live_status.value,
            "commands": remote.player.drain_commands(),
        }
    except Exception as e:
        logger.error(f"Error creating session: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/sessions", dependencies=[Depends(verify_token)])
async def list_sessions():
    """List all monitored sessions"""
    try:
        sessions = session_manager.list_sessions()
        return {"sessions": sessions, "total": len(sessions)}
    except Exception as e:
        logger.error(f"Error listing sessions: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions/{session_id}/signals", dependencies=[Depends(verify_token)])
async def post_signals(session_id: str, batch: SignalBatch):
    """Apply a player state report, then dispatch signals in order"""
    remote = get_remote_session(session_id)
    try:
        remote.touch()
        if batch.state is not None:
            remote.player.apply_report(batch.state)

        results = []
        for signal in batch.signals:
            dispatched = remote.controller.dispatch(signal)
            results.append({
                "kind": dispatched.kind,
                "handled": dispatched.handled,
                "results": jsonable_encoder(dispatched.results),
                "errors": dispatched.errors,
            })

        terminal = remote.controller.last_terminal_error
        return {
            "session_id": session_id,
            "active": remote.is_active,
            "live_status": remote.controller.live_status.value,
            "results": results,
            "commands": remote.player.drain_commands(),
            "terminal_error": jsonable_encoder(terminal) if terminal else None,
        }
    except Exception as e:
        logger.error(f"Error dispatching signals for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions/{session_id}/playlist", dependencies=[Depends(verify_token)])
async def post_playlist(session_id: str, request: PlaylistRequest):
    """Parse raw playlist text and dispatch it as manifest-parsed or level-loaded"""
    remote = get_remote_session(session_id)
    try:
        if request.level is None:
            signal = manifest_signal(request.content, uri=request.uri)
        else:
            signal = level_loaded_signal(request.content, level=request.level, uri=request.uri)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        remote.touch()
        dispatched = remote.controller.dispatch(signal)
        return {
            "session_id": session_id,
            "signal": jsonable_encoder(signal),
            "handled": dispatched.handled,
            "errors": dispatched.errors,
            "live_status": remote.controller.live_status.value,
            "commands": remote.player.drain_commands(),
        }
    except Exception as e:
        logger.error(f"Error dispatching playlist for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/sessions/{session_id}/metrics", dependencies=[Depends(verify_token)])
async def get_metrics(session_id: str):
    """Current metrics snapshot, or the final one after teardown"""
    remote = get_remote_session(session_id)
    try:
        snapshot = remote.snapshot()
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No metrics recorded for session")
        return {
            "active": remote.is_active,
            "recovery_counters": remote.controller.recovery_counters,
            "metrics": jsonable_encoder(snapshot),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting metrics for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/sessions/{session_id}/live-status", dependencies=[Depends(verify_token)])
async def get_live_status(session_id: str):
    remote = get_remote_session(session_id)
    return {
        "session_id": session_id,
        "active": remote.is_active,
        "live_status": remote.controller.live_status.value,
    }


@app.get("/sessions/{session_id}/events", dependencies=[Depends(verify_token)])
async def get_events(
    session_id: str,
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of most recent events"),
):
    """Recent session events, oldest first"""
    remote = get_remote_session(session_id)
    events = list(remote.events)[-limit:]
    return {"session_id": session_id, "events": jsonable_encoder(events), "total": len(events)}


@app.post("/sessions/{session_id}/reset-metrics", dependencies=[Depends(verify_token)])
async def reset_metrics(session_id: str):
    remote = get_remote_session(session_id)
    try:
        remote.controller.reset_metrics()
        return {"message": f"Metrics reset for session {session_id}"}
    except NoActiveSessionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error resetting metrics for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions/{session_id}/reset-live-status", dependencies=[Depends(verify_token)])
async def reset_live_status(session_id: str):
    remote = get_remote_session(session_id)
    try:
        remote.controller.reset_live_status()
        return {
            "message": f"Live status reset for session {session_id}",
            "live_status": remote.controller.live_status.value,
        }
    except NoActiveSessionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error resetting live status for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/sessions/{session_id}", dependencies=[Depends(verify_token)])
async def delete_session(session_id: str):
    """Tear a session down and forget it"""
    try:
        remote = session_manager.destroy_session(session_id)
        snapshot = remote.controller.final_snapshot
        return {
            "message": f"Session {session_id} deleted",
            "final_metrics": jsonable_encoder(snapshot) if snapshot else None,
        }
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except Exception as e:
        logger.error(f"Error deleting session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
