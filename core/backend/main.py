"""
FastAPI Server
REST endpoints for job upload, dispatch, render callbacks and queue operations.
WebSocket endpoint for real-time job status updates.
"""

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Literal, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Security,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ValidationError

from config import DispatchMode, settings, setup_logging
from models.job import DISPATCHABLE_STATUSES, Job, JobStatus
from models.preferences import EditingPreferences, PresetName, apply_preset, list_presets
from services.auth import get_current_user_id, resolve_user_id
from services.container import ServiceContainer, build_services
from services.errors import DispatchError, InvalidRequestError, StorageError
from services.render_queue import RenderQueue

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp4", ".mov", ".webm", ".m4v"}

# Security Scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Validate API Key if enforcing security."""
    if settings.api_secret:
        if not api_key or api_key != settings.api_secret:
            raise HTTPException(
                status_code=403,
                detail="Could not validate credentials"
            )
    return api_key


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, job_id: str):
        await websocket.accept()
        if job_id not in self.active_connections:
            self.active_connections[job_id] = []
        self.active_connections[job_id].append(websocket)

    def disconnect(self, websocket: WebSocket, job_id: str):
        if job_id in self.active_connections:
            if websocket in self.active_connections[job_id]:
                self.active_connections[job_id].remove(websocket)
            if not self.active_connections[job_id]:
                del self.active_connections[job_id]

    async def broadcast_job(self, job: Job):
        """Push the job snapshot to its subscribers after every write."""
        await self.broadcast_snapshot(job.id, job.to_public())

    async def broadcast_snapshot(self, job_id: str, snapshot: dict):
        for connection in list(self.active_connections.get(job_id, [])):
            try:
                await connection.send_json(snapshot)
            except Exception:
                # Connection might be closed
                self.disconnect(connection, job_id)


manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize services on startup, cleanup on shutdown."""
    setup_logging()
    app.state.services = build_services(settings, on_change=manager.broadcast_job)
    app.state.services.start_event_relay(manager.broadcast_snapshot)
    logger.info(f"✅ Backend ready (dispatch mode: {app.state.services.dispatch_mode.value})")

    yield

    logger.info("👋 Shutting down...")
    await app.state.services.shutdown()


app = FastAPI(
    title="Hedcut API",
    version="0.3.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.
    """
    error_id = id(exc)
    logger.error(f"🔥 Internal Error ({error_id}): {str(exc)}")

    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "ref": error_id},
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_queue(services: ServiceContainer = Depends(get_services)) -> RenderQueue:
    if services.render_queue is None:
        raise HTTPException(status_code=503, detail="Render queue is not enabled")
    return services.render_queue


async def get_owned_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Job:
    job = await services.repository.get_job(job_id)
    # Jobs of other users are reported as missing
    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.get("/health")
async def health_check(request: Request) -> dict:
    services: Optional[ServiceContainer] = getattr(request.app.state, "services", None)
    return {
        "status": "healthy",
        "service": "Hedcut Core",
        "render_worker": await services.render_client.health() if services else False,
    }


@app.get("/config")
async def get_config() -> dict:
    """
    Reveal public configuration and key status.
    """
    return {
        "dispatch_mode": settings.get_effective_dispatch_mode().value,
        "version": app.version,
        "keys": {
            "groq": bool(settings.groq_api_key),
            "gemini": bool(settings.google_ai_api_key),
            "supabase": bool(settings.supabase_url and settings.supabase_key),
            "redis": settings.queue_enabled(),
        },
        "max_upload_mb": settings.max_upload_mb,
    }


@app.get("/api/presets")
async def get_presets() -> list[dict[str, Any]]:
    return list_presets()


# ============================================================================
# DISPATCH
# ============================================================================

async def _requested_job_id(request: Request) -> str:
    try:
        body = await request.json()
    except ValueError:
        body = None
    job_id = body.get("jobId") if isinstance(body, dict) else None
    if not job_id or not isinstance(job_id, str):
        raise InvalidRequestError("Job ID is required")
    return job_id


@app.post("/api/jobs/process")
async def process_job(
    request: Request,
    services: ServiceContainer = Depends(get_services),
    _auth: str = Security(verify_api_key),
):
    """
    Start processing an uploaded job.
    sync mode renders before answering; async and queue modes answer once the job is claimed.
    """
    job_id = None
    try:
        job_id = await _requested_job_id(request)
        result = await services.orchestrator.dispatch(
            job_id, wait=services.dispatch_mode == DispatchMode.SYNC
        )
    except DispatchError as e:
        return _error(e.status_code, e.message)
    except Exception as e:
        logger.error(f"❌ Processing error for job {job_id}: {e}")
        return _error(500, str(e) or "Internal server error")

    return result.to_response()


# ============================================================================
# JOBS
# ============================================================================

def _parse_preferences(raw: Optional[str], preset: Optional[str]) -> EditingPreferences:
    try:
        preferences = EditingPreferences.from_json(json.loads(raw) if raw else None)
        if preset:
            preferences = apply_preset(preferences, preset)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid preferences: {e}")
    return preferences


@app.post("/api/jobs")
async def upload_job(
    file: UploadFile = File(...),
    job_name: Optional[str] = Form(None),
    preferences: Optional[str] = Form(None),
    preset: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    """
    Upload a video and create its job.
    The job is ready for /api/jobs/process once this returns.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    ext = Path(file.filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Invalid file type. Allowed: {sorted(ALLOWED_EXTENSIONS)}")

    prefs = _parse_preferences(preferences, preset)
    content = await file.read()
    size_mb = len(content) / (1024 * 1024)
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if size_mb > settings.max_upload_mb:
        raise HTTPException(status_code=413, detail=f"File too large: {size_mb:.1f}MB (max {settings.max_upload_mb:.0f}MB)")

    repo = services.repository
    job = await repo.create_job(
        user_id=user_id,
        job_name=job_name or Path(file.filename).stem,
        preferences_json=prefs.to_json(),
        input_file_size_mb=round(size_mb, 2),
    )
    await repo.transition(job.id, JobStatus.UPLOADING, current_step="Uploading video")

    safe_name = Path(file.filename).name.replace(" ", "_")
    path = f"{user_id}/{job.id}/{safe_name}"
    try:
        await services.blob_store.upload(settings.raw_videos_bucket, path, content)
    except StorageError as e:
        await repo.mark_failed(job.id, str(e))
        raise HTTPException(status_code=500, detail=str(e))

    job = await repo.update_job(job.id, input_video_path=path, current_step="Uploaded")
    logger.info(f"📥 Received video: {file.filename} (job: {job.id}, {size_mb:.1f}MB)")

    return {
        "job_id": job.id,
        "status": job.status.value,
        "message": "Video uploaded, ready to process",
    }


@app.put("/api/jobs/{job_id}/preferences")
async def update_preferences(
    job_id: str,
    request: Request,
    preset: Optional[PresetName] = None,
    job: Job = Depends(get_owned_job),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    if job.status not in DISPATCHABLE_STATUSES:
        raise HTTPException(status_code=409, detail=f"Job is {job.status.value}, preferences are locked")

    try:
        prefs = EditingPreferences.from_json(await request.json())
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid preferences: {e}")
    if preset:
        prefs = apply_preset(prefs, preset)

    updated = await services.repository.update_job(job_id, preferences_json=prefs.to_json())
    return {"job_id": job_id, "preferences": updated.preferences_json if updated else prefs.to_json()}


@app.get("/api/jobs")
async def list_jobs(
    status: Optional[list[JobStatus]] = Query(None),
    order_by: Literal["created_at", "completed_at"] = "created_at",
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[dict[str, Any]]:
    jobs = await services.repository.list_jobs(user_id, status=status, order_by=order_by, limit=limit)
    return [job.to_public() for job in jobs]


@app.get("/api/jobs/{job_id}")
async def get_job_status(job: Job = Depends(get_owned_job)) -> dict:
    return {**job.to_public(), "preferences": job.preferences_json}


@app.get("/api/jobs/{job_id}/output-url")
async def get_output_url(
    job: Job = Depends(get_owned_job),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    if job.status != JobStatus.COMPLETED or not job.output_video_path:
        raise HTTPException(status_code=400, detail=f"Job not complete. Status: {job.status.value}")
    url = await services.blob_store.create_signed_url(
        settings.processed_videos_bucket, job.output_video_path, settings.signed_url_ttl_seconds
    )
    return {"job_id": job.id, "url": url, "expires_in": settings.signed_url_ttl_seconds}


@app.post("/api/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    try:
        job = await services.orchestrator.cancel(job_id, user_id)
    except DispatchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return job.to_public()


class RenderCallback(BaseModel):
    status: Literal["completed", "failed", "progress"]
    output_path: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[int] = None
    step: Optional[str] = None


@app.post("/api/jobs/{job_id}/render-callback")
async def render_callback(
    job_id: str,
    callback: RenderCallback,
    services: ServiceContainer = Depends(get_services),
    _auth: str = Security(verify_api_key),
) -> dict:
    """Completion, failure and progress reports from the render worker."""
    orchestrator = services.orchestrator
    try:
        if callback.status == "completed":
            if not callback.output_path:
                raise HTTPException(status_code=400, detail="output_path is required")
            job = await orchestrator.complete_render(job_id, callback.output_path)
        elif callback.status == "failed":
            job = await orchestrator.fail_render(job_id, callback.error or "Render failed")
        else:
            if callback.progress is None or not 0 <= callback.progress <= 100:
                raise HTTPException(status_code=400, detail="progress must be between 0 and 100")
            job = await orchestrator.report_render_progress(job_id, callback.progress, callback.step)
    except DispatchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return job.to_public()


# ============================================================================
# QUEUE OPERATIONS
# ============================================================================

@app.get("/api/queue/metrics")
def queue_metrics(queue: RenderQueue = Depends(get_queue), _auth: str = Security(verify_api_key)) -> dict:
    return queue.metrics()


@app.post("/api/queue/cleanup")
def queue_cleanup(queue: RenderQueue = Depends(get_queue), _auth: str = Security(verify_api_key)) -> dict:
    return {"removed": queue.cleanup()}


@app.get("/api/queue/{job_id}")
def queue_status(job_id: str, queue: RenderQueue = Depends(get_queue), _auth: str = Security(verify_api_key)) -> dict:
    status = queue.status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No queued render for this job")
    return status


@app.delete("/api/queue/{job_id}")
async def queue_cancel(job_id: str, queue: RenderQueue = Depends(get_queue), _auth: str = Security(verify_api_key)) -> dict:
    if not await queue.cancel(job_id):
        raise HTTPException(status_code=409, detail="Render is not waiting and cannot be cancelled")
    return {"job_id": job_id, "cancelled": True}


@app.post("/api/queue/{job_id}/retry")
async def queue_retry(job_id: str, queue: RenderQueue = Depends(get_queue), _auth: str = Security(verify_api_key)) -> dict:
    if not await queue.retry(job_id):
        raise HTTPException(status_code=409, detail="Only failed renders can be retried")
    return {"job_id": job_id, "retried": True}


# ============================================================================
# REALTIME STATUS
# ============================================================================

@app.websocket("/api/jobs/ws/{job_id}")
async def websocket_job_status(websocket: WebSocket, job_id: str, token: Optional[str] = None) -> None:
    """WebSocket endpoint for real-time job status updates (owner only)."""
    services: ServiceContainer = websocket.app.state.services
    user_id = await resolve_user_id(services.supabase, token)
    job = await services.repository.get_job(job_id) if user_id else None
    if job is None or job.user_id != user_id:
        await websocket.close(code=4404, reason="Job not found")
        return

    await manager.connect(websocket, job_id)
    try:
        # Send initial status immediately
        await websocket.send_json(job.to_public())
        while True:
            # Just keep the connection alive, we primarily push
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket, job_id)
    except Exception:
        manager.disconnect(websocket, job_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=True, log_level="info")
