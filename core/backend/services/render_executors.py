"""
Render Executors
The render stage is pluggable: the orchestrator runs the same stage sequence
and only the executor decides how the render worker is reached.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol

from models.job import Job
from services.render_client import RenderWorkerClient
from services.storage import BlobStore

if TYPE_CHECKING:
    from services.render_queue import RenderQueue

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int, str], Awaitable[Any]]


def output_path_for(user_id: str, job_id: str, fmt: str = "mp4") -> str:
    return f"{user_id}/{job_id}/output.{fmt}"


@dataclass
class RenderRequest:
    job: Job
    editing_script: dict[str, Any]
    signed_url: Optional[str] = None
    video: Optional[bytes] = None
    output_format: str = "mp4"


@dataclass
class RenderOutcome:
    """output_path is None while the render is still running elsewhere."""

    output_path: Optional[str]
    message: str = ""

    @property
    def finished(self) -> bool:
        return self.output_path is not None


class RenderExecutor(Protocol):
    mode: str

    async def render(self, request: RenderRequest, report: ProgressReporter) -> RenderOutcome: ...


async def _no_report(progress: int, step: str) -> None:
    return None


class DirectRenderExecutor:
    """Wait for the worker, upload its output, return the output path."""

    mode = "sync"

    def __init__(
        self,
        render_client: RenderWorkerClient,
        blob_store: BlobStore,
        raw_bucket: str = "raw-videos",
        processed_bucket: str = "processed-videos",
    ):
        self.render_client = render_client
        self.blob_store = blob_store
        self.raw_bucket = raw_bucket
        self.processed_bucket = processed_bucket

    async def render(self, request: RenderRequest, report: ProgressReporter = _no_report) -> RenderOutcome:
        job = request.job
        video = request.video
        if video is None:
            if not job.input_video_path:
                raise ValueError(f"Job {job.id} has no input video")
            video = await self.blob_store.download(self.raw_bucket, job.input_video_path)

        rendered = await self.render_client.process(video, request.editing_script)
        await report(80, "Uploading rendered video")

        path = output_path_for(job.user_id, job.id, request.output_format)
        await self.blob_store.upload(self.processed_bucket, path, rendered)
        await report(90, "Finalizing")

        return RenderOutcome(output_path=path, message="Video processed successfully")


class RemoteRenderExecutor:
    """Fire-and-forget: the worker reports completion through the render callback."""

    mode = "async"

    def __init__(
        self,
        render_client: RenderWorkerClient,
        groq_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        forward_provider_keys: bool = True,
    ):
        self.render_client = render_client
        self.groq_api_key = groq_api_key
        self.google_api_key = google_api_key
        self.forward_provider_keys = forward_provider_keys

    def build_payload(self, request: RenderRequest) -> dict[str, Any]:
        job = request.job
        payload: dict[str, Any] = {
            "job_id": job.id,
            "video_url": request.signed_url,
            "output_path": output_path_for(job.user_id, job.id, request.output_format),
            "user_id": job.user_id,
            "editing_script": request.editing_script,
        }
        if self.forward_provider_keys:
            if self.groq_api_key:
                payload["groq_api_key"] = self.groq_api_key
            if self.google_api_key:
                payload["google_api_key"] = self.google_api_key
        return payload

    async def render(self, request: RenderRequest, report: ProgressReporter = _no_report) -> RenderOutcome:
        if not request.signed_url:
            raise ValueError(f"Job {request.job.id} has no signed input URL")

        await report(50, "Rendering on worker")
        ack = await self.render_client.process_async(self.build_payload(request))
        logger.info(f"🚀 Render worker accepted job {request.job.id}: {ack}")
        return RenderOutcome(output_path=None, message=str(ack.get("status") or "Processing started"))


class QueuedRenderExecutor:
    """Hand the render to the durable queue. Completion is written by the queue worker."""

    mode = "queue"

    def __init__(self, queue: "RenderQueue"):
        self.queue = queue

    async def render(self, request: RenderRequest, report: ProgressReporter = _no_report) -> RenderOutcome:
        job = request.job
        if not job.input_video_path:
            raise ValueError(f"Job {job.id} has no input video")

        await report(50, "Waiting in render queue")
        enqueued = await asyncio.to_thread(
            self.queue.enqueue_render,
            job.id,
            job.user_id,
            job.input_video_path,
            request.editing_script,
            request.output_format,
        )
        return RenderOutcome(
            output_path=None,
            message="Queued for rendering" if enqueued else "Render already queued",
        )
