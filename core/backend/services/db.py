"""
Supabase Job Record Store
All reads and writes of the jobs table go through JobRepository.
Status changes are conditional updates (`update ... where id = X and status in (...)`),
so the orchestrator never needs its own locking.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from supabase import Client

from models.job import Job, JobStatus, allowed_sources

logger = logging.getLogger(__name__)

JobListener = Callable[[Job], Awaitable[None]]


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    data = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        data[key] = value
    return data


class JobRepository:
    def __init__(self, client: Client, table: str = "jobs", on_change: Optional[JobListener] = None):
        self.client = client
        self.table = table
        self.on_change = on_change

    async def _execute(self, query) -> list[dict[str, Any]]:
        # supabase-py is synchronous; keep it off the event loop
        response = await asyncio.to_thread(query.execute)
        return response.data or []

    async def _notify(self, job: Job) -> None:
        if self.on_change is None:
            return
        try:
            await self.on_change(job)
        except Exception as e:
            logger.warning(f"⚠️ Job change listener failed for {job.id}: {e}")

    async def _written(self, rows: list[dict[str, Any]]) -> Optional[Job]:
        if not rows:
            return None
        job = Job.model_validate(rows[0])
        await self._notify(job)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        rows = await self._execute(
            self.client.table(self.table).select("*").eq("id", job_id).limit(1)
        )
        return Job.model_validate(rows[0]) if rows else None

    async def list_jobs(
        self,
        user_id: str,
        status: Optional[list[JobStatus]] = None,
        order_by: str = "created_at",
        limit: int = 100,
    ) -> list[Job]:
        query = self.client.table(self.table).select("*").eq("user_id", user_id)
        if status:
            query = query.in_("status", [s.value for s in status])
        rows = await self._execute(query.order(order_by, desc=True).limit(limit))
        return [Job.model_validate(row) for row in rows]

    async def create_job(
        self,
        user_id: str,
        job_name: Optional[str] = None,
        preferences_json: Optional[dict[str, Any]] = None,
        input_file_size_mb: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        row = {
            "id": job_id or str(uuid.uuid4()),
            "user_id": user_id,
            "job_name": job_name,
            "status": JobStatus.PENDING.value,
            "progress_percentage": 0,
            "current_step": "Created",
            "preferences_json": preferences_json,
            "input_file_size_mb": input_file_size_mb,
            "created_at": utcnow_iso(),
        }
        job = await self._written(await self._execute(self.client.table(self.table).insert(row)))
        if job is None:
            raise RuntimeError("Job insert returned no row")
        logger.info(f"🆕 Created job {job.id} for user {user_id}")
        return job

    async def update_job(self, job_id: str, **fields: Any) -> Optional[Job]:
        """Unconditional partial update of non-status fields."""
        rows = await self._execute(
            self.client.table(self.table).update(_serialize(fields)).eq("id", job_id)
        )
        return await self._written(rows)

    async def transition(self, job_id: str, to: JobStatus, **fields: Any) -> Optional[Job]:
        """
        Move the job to `to` if its current status allows it.
        Returns the updated job, or None when the row was not in an allowed source status.
        """
        sources = sorted(s.value for s in allowed_sources(to))
        payload = _serialize({"status": to, **fields})
        rows = await self._execute(
            self.client.table(self.table)
            .update(payload)
            .eq("id", job_id)
            .in_("status", sources)
        )
        job = await self._written(rows)
        if job is not None:
            logger.info(f"🔄 Job {job_id} -> {to.value}")
        return job

    async def update_progress(
        self, job_id: str, status: JobStatus, progress: int, step: Optional[str] = None, **fields: Any
    ) -> Optional[Job]:
        """Advance progress within `status`. Never lowers the stored value."""
        payload = _serialize({"progress_percentage": progress, **fields})
        if step is not None:
            payload["current_step"] = step
        rows = await self._execute(
            self.client.table(self.table)
            .update(payload)
            .eq("id", job_id)
            .eq("status", status.value)
            .lte("progress_percentage", progress)
        )
        return await self._written(rows)

    async def mark_failed(self, job_id: str, message: str) -> Optional[Job]:
        """FAILED with the error message. Progress is left where it stopped."""
        return await self.transition(
            job_id,
            JobStatus.FAILED,
            error_message=message or "Unknown error",
            current_step="Failed",
        )

    async def complete(self, job_id: str, output_path: str) -> Optional[Job]:
        return await self.transition(
            job_id,
            JobStatus.COMPLETED,
            output_video_path=output_path,
            progress_percentage=100,
            current_step="Completed",
            completed_at=utcnow_iso(),
            error_message=None,
        )

    async def reopen_for_render(self, job_id: str) -> Optional[Job]:
        """Operator retry of a failed queued render: FAILED -> RENDERING."""
        rows = await self._execute(
            self.client.table(self.table)
            .update({
                "status": JobStatus.RENDERING.value,
                "current_step": "Retrying render",
                "error_message": None,
            })
            .eq("id", job_id)
            .eq("status", JobStatus.FAILED.value)
        )
        return await self._written(rows)
