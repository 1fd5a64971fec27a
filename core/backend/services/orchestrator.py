"""
Job Orchestrator
Runs one job through the stage sequence:
QUEUED -> TRANSCRIBING -> ANALYZING -> (script) -> RENDERING -> COMPLETED

Every status write is a conditional update, so a job can only be claimed by
one dispatch and a cancelled job stops at the next stage boundary.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from models.editing_script import ScriptInvalid, validate_editing_script
from models.job import CANCELLABLE_STATUSES, DISPATCHABLE_STATUSES, Job, JobStatus
from models.preferences import EditingPreferences
from services.ai_gateway import AIServiceGateway
from services.db import JobRepository
from services.errors import (
    ConfigurationError,
    JobCancelledError,
    JobConflictError,
    JobNotFoundError,
    ScriptValidationError,
    StorageError,
)
from services.render_executors import RenderExecutor, RenderRequest
from services.script_builder import EditingScriptBuilder
from services.storage import BlobStore

logger = logging.getLogger(__name__)

NO_AI_SERVICES_MESSAGE = (
    "No AI services configured. Set GROQ_API_KEY or GOOGLE_AI_API_KEY to process videos."
)


@dataclass
class PreparedJob:
    job: Job
    signed_url: str


@dataclass
class DispatchResult:
    job_id: str
    status: JobStatus
    message: str
    services_used: list[str] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "status": self.status.value,
            "jobId": self.job_id,
            "message": self.message,
            "servicesUsed": self.services_used,
        }


class JobOrchestrator:
    def __init__(
        self,
        repository: JobRepository,
        blob_store: BlobStore,
        gateway: AIServiceGateway,
        builder: EditingScriptBuilder,
        executor: RenderExecutor,
        raw_bucket: str = "raw-videos",
        signed_url_ttl: int = 3600,
        max_dispatch_seconds: float = 300.0,
    ):
        self.repository = repository
        self.blob_store = blob_store
        self.gateway = gateway
        self.builder = builder
        self.executor = executor
        self.raw_bucket = raw_bucket
        self.signed_url_ttl = signed_url_ttl
        self.max_dispatch_seconds = max_dispatch_seconds
        self._tasks: set[asyncio.Task] = set()

    # ----- state helpers -----

    async def _fail(self, job_id: str, message: str) -> None:
        """Best-effort FAILED write. Never raises."""
        try:
            job = await self.repository.mark_failed(job_id, message)
            if job is not None:
                logger.error(f"❌ Job {job_id} failed: {message}")
        except Exception as e:
            logger.error(f"❌ Could not mark job {job_id} as failed: {e}")

    async def _advance(self, job_id: str, status: JobStatus, progress: int, step: str, **fields: Any) -> Job:
        job = await self.repository.transition(
            job_id, status, progress_percentage=progress, current_step=step, **fields
        )
        if job is None:
            raise JobCancelledError(job_id)
        return job

    async def _progress(self, job_id: str, status: JobStatus, progress: int, step: str, **fields: Any) -> Job:
        job = await self.repository.update_progress(job_id, status, progress, step, **fields)
        if job is None:
            raise JobCancelledError(job_id)
        return job

    # ----- dispatch -----

    async def prepare(self, job_id: str) -> PreparedJob:
        """
        Load and claim the job, then sign its input. Raises DispatchError
        subclasses for the API layer; the job is only touched once it exists.
        """
        job = await self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        services = self.gateway.available_services()
        if not services:
            if not job.is_terminal:
                await self._fail(job_id, NO_AI_SERVICES_MESSAGE)
            raise ConfigurationError(NO_AI_SERVICES_MESSAGE)

        if job.status not in DISPATCHABLE_STATUSES:
            raise JobConflictError(f"Job {job_id} is {job.status.value} and cannot be dispatched")
        if not job.input_video_path:
            raise JobConflictError(f"Job {job_id} has no uploaded video")

        claimed = await self.repository.transition(
            job_id,
            JobStatus.QUEUED,
            progress_percentage=5,
            current_step="Queued for processing",
        )
        if claimed is None:
            raise JobConflictError(f"Job {job_id} is already being processed")

        try:
            signed_url = await self.blob_store.create_signed_url(
                self.raw_bucket, claimed.input_video_path, self.signed_url_ttl
            )
        except StorageError as e:
            await self._fail(job_id, str(e))
            raise

        logger.info(f"📥 Job {job_id} claimed with services: {', '.join(sorted(services))}")
        return PreparedJob(job=claimed, signed_url=signed_url)

    async def run_pipeline(self, prepared: PreparedJob) -> DispatchResult:
        """Stages after the claim. Any error fails the job and is re-raised."""
        job = prepared.job
        job_id = job.id
        services = sorted(self.gateway.available_services())

        try:
            preferences = EditingPreferences.from_json(job.preferences_json)

            await self._advance(job_id, JobStatus.TRANSCRIBING, 10, "Transcribing audio")
            video = await self.blob_store.download(self.raw_bucket, job.input_video_path)
            transcript = await self.gateway.transcribe(video)
            await self._progress(
                job_id, JobStatus.TRANSCRIBING, 25, "Transcription complete",
                transcription_json=transcript.model_dump(mode="json"),
            )

            await self._advance(job_id, JobStatus.ANALYZING, 30, "Analyzing content")
            analysis = await self.gateway.analyze_transcript(transcript)
            keywords = None if transcript.is_mock else await self.gateway.extract_keywords(transcript.text)
            deep_analysis = await self.gateway.deep_analyze(transcript)

            analysis_fields: dict[str, Any] = {}
            if analysis is not None:
                payload = analysis.model_dump(mode="json", by_alias=True)
                if keywords is not None:
                    payload["keyword_insights"] = keywords.model_dump(mode="json")
                if deep_analysis is not None:
                    payload["deep_analysis"] = deep_analysis.model_dump(mode="json")
                analysis_fields["analysis_json"] = payload
            await self._progress(job_id, JobStatus.ANALYZING, 40, "Building editing script", **analysis_fields)

            for warning in self.builder.validate_preferences(preferences):
                logger.warning(f"⚠️ Job {job_id} preference conflict: {warning}")
            script = self.builder.build(job_id, preferences, transcript, analysis, keywords, deep_analysis)
            validation = validate_editing_script(script)
            if isinstance(validation, ScriptInvalid):
                raise ScriptValidationError(validation.errors)

            rendering = await self._advance(job_id, JobStatus.RENDERING, 45, "Rendering video")

            async def report(progress: int, step: str) -> None:
                await self._progress(job_id, JobStatus.RENDERING, progress, step)

            outcome = await self.executor.render(
                RenderRequest(
                    job=rendering,
                    editing_script=validation.script.to_wire(),
                    signed_url=prepared.signed_url,
                    video=video,
                    output_format=preferences.output.format,
                ),
                report,
            )

            if not outcome.finished:
                return DispatchResult(job_id, JobStatus.RENDERING, outcome.message, services)

            completed = await self.repository.complete(job_id, outcome.output_path)
            if completed is None:
                raise JobCancelledError(job_id)
            logger.info(f"✅ Job {job_id} completed: {outcome.output_path}")
            return DispatchResult(job_id, JobStatus.COMPLETED, outcome.message, services)

        except JobCancelledError:
            current = await self.repository.get_job(job_id)
            status = current.status if current else JobStatus.CANCELLED
            logger.info(f"🛑 Job {job_id} stopped, status is now {status.value}")
            return DispatchResult(job_id, status, "Job is no longer active", services)
        except Exception as e:
            await self._fail(job_id, str(e) or e.__class__.__name__)
            raise

    async def dispatch(self, job_id: str, wait: bool = True) -> DispatchResult:
        """
        Claim a job and run it. With wait=False the stages run in a supervised
        background task and this returns as soon as the job is claimed.
        """
        prepared = await self.prepare(job_id)
        services = sorted(self.gateway.available_services())

        if not wait:
            self._spawn(prepared)
            return DispatchResult(job_id, JobStatus.QUEUED, "Processing started", services)

        try:
            return await asyncio.wait_for(self.run_pipeline(prepared), timeout=self.max_dispatch_seconds)
        except asyncio.TimeoutError:
            message = f"Processing exceeded {self.max_dispatch_seconds:.0f}s"
            await self._fail(job_id, message)
            raise

    def _spawn(self, prepared: PreparedJob) -> asyncio.Task:
        task = asyncio.create_task(self._run_supervised(prepared))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_supervised(self, prepared: PreparedJob) -> None:
        try:
            await self.run_pipeline(prepared)
        except Exception as e:
            # run_pipeline already wrote FAILED
            logger.error(f"❌ Background processing of job {prepared.job.id} failed: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background runs, cancelling whatever is left after `timeout`."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()

    # ----- render callback contract -----

    async def complete_render(self, job_id: str, output_path: str) -> Job:
        job = await self.repository.complete(job_id, output_path)
        if job is None:
            raise await self._callback_conflict(job_id, "completed")
        logger.info(f"✅ Job {job_id} completed by render worker: {output_path}")
        return job

    async def fail_render(self, job_id: str, message: str) -> Job:
        job = await self.repository.mark_failed(job_id, message)
        if job is None:
            raise await self._callback_conflict(job_id, "failed")
        logger.error(f"❌ Render worker failed job {job_id}: {message}")
        return job

    async def report_render_progress(self, job_id: str, progress: int, step: Optional[str] = None) -> Job:
        job = await self.repository.update_progress(job_id, JobStatus.RENDERING, progress, step)
        if job is None:
            raise await self._callback_conflict(job_id, "updated")
        return job

    async def _callback_conflict(self, job_id: str, action: str) -> Exception:
        job = await self.repository.get_job(job_id)
        if job is None:
            return JobNotFoundError(job_id)
        return JobConflictError(f"Job {job_id} is {job.status.value} and cannot be {action}")

    # ----- cancellation -----

    async def cancel(self, job_id: str, user_id: str) -> Job:
        job = await self.repository.get_job(job_id)
        if job is None or job.user_id != user_id:
            raise JobNotFoundError(job_id)
        if job.status not in CANCELLABLE_STATUSES:
            raise JobConflictError(f"Job {job_id} is {job.status.value} and cannot be cancelled")

        cancelled = await self.repository.transition(job_id, JobStatus.CANCELLED, current_step="Cancelled")
        if cancelled is None:
            raise JobConflictError(f"Job {job_id} can no longer be cancelled")
        logger.info(f"🛑 Job {job_id} cancelled by owner")
        return cancelled
