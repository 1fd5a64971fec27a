"""
Render Queue (Celery + Redis)
Durable render execution with retries, bounded concurrency and a rate limit.

Celery moves the work; a small Redis ledger keyed by job id records what the
queue knows about each render (state, attempts, last error) so a job can be
queried, cancelled, retried and cleaned up by id.

Worker:  celery -A services.render_queue:celery_app worker -Q video-processing
Beat:    celery -A services.render_queue:celery_app beat
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import redis
from celery import Celery
from celery.signals import worker_process_init, worker_shutdown

from config import settings, setup_logging
from services.db import JobRepository
from services.render_client import RenderWorkerClient
from services.render_executors import DirectRenderExecutor, RenderRequest
from services.storage import BlobStore

logger = logging.getLogger(__name__)

RENDER_TASK_NAME = "render:process_video"
CLEANUP_TASK_NAME = "render:cleanup"
CANCELLED_MESSAGE = "Render cancelled from queue"


celery_app = Celery("hedcut", broker=settings.redis_url or "memory://")
celery_app.conf.update(
    task_default_queue=settings.queue_name,
    task_track_started=True,
    task_acks_late=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.queue_concurrency,
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "render-queue-cleanup": {
            "task": CLEANUP_TASK_NAME,
            "schedule": float(settings.queue_cleanup_interval_seconds),
        },
    },
)


class TaskState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# A job with a task in one of these states must not be enqueued again
IN_FLIGHT_STATES = frozenset({TaskState.WAITING, TaskState.ACTIVE, TaskState.DELAYED})


@dataclass
class TaskRecord:
    job_id: str
    user_id: str
    input_video_path: str
    editing_script: dict[str, Any]
    output_format: str = "mp4"
    state: TaskState = TaskState.WAITING
    attempts: int = 0
    max_attempts: int = 3
    celery_id: Optional[str] = None
    progress: int = 0
    last_error: Optional[str] = None
    output_path: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def to_hash(self) -> dict[str, str]:
        data = asdict(self)
        data["state"] = self.state.value
        data["editing_script"] = json.dumps(self.editing_script, ensure_ascii=False)
        return {key: str(value) for key, value in data.items() if value is not None}

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> "TaskRecord":
        def opt_float(key: str) -> Optional[float]:
            return float(data[key]) if data.get(key) else None

        return cls(
            job_id=data["job_id"],
            user_id=data.get("user_id", ""),
            input_video_path=data.get("input_video_path", ""),
            editing_script=json.loads(data.get("editing_script") or "{}"),
            output_format=data.get("output_format", "mp4"),
            state=TaskState(data.get("state", TaskState.WAITING.value)),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            celery_id=data.get("celery_id"),
            progress=int(data.get("progress", 0)),
            last_error=data.get("last_error"),
            output_path=data.get("output_path"),
            created_at=opt_float("created_at") or 0.0,
            updated_at=opt_float("updated_at") or 0.0,
            finished_at=opt_float("finished_at"),
        )

    def to_status(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "state": self.state.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "progress": self.progress,
            "lastError": self.last_error,
            "outputPath": self.output_path,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
        }


class TaskLedger:
    """
    Redis-backed task records.
    {prefix}:task:{job_id}   hash with the TaskRecord fields
    {prefix}:state:{state}   sorted set of job ids, scored by last update time
    """

    def __init__(self, client: redis.Redis, prefix: str = "hedcut:render"):
        self.redis = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "hedcut:render") -> "TaskLedger":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix)

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}:task:{job_id}"

    def _state_key(self, state: TaskState) -> str:
        return f"{self.prefix}:state:{state.value}"

    def claim(self, record: TaskRecord) -> bool:
        """Store `record` unless a task for the same job is still in flight."""
        key = self._key(record.job_id)
        with self.redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.hget(key, "state")
                if current and TaskState(current) in IN_FLIGHT_STATES:
                    pipe.unwatch()
                    return False
                record.updated_at = time.time()
                pipe.multi()
                pipe.delete(key)
                pipe.hset(key, mapping=record.to_hash())
                for state in TaskState:
                    pipe.zrem(self._state_key(state), record.job_id)
                pipe.zadd(self._state_key(record.state), {record.job_id: record.updated_at})
                pipe.execute()
                return True
            except redis.WatchError:
                return False

    def get(self, job_id: str) -> Optional[TaskRecord]:
        data = self.redis.hgetall(self._key(job_id))
        return TaskRecord.from_hash(data) if data else None

    def update(self, job_id: str, state: Optional[TaskState] = None, **fields: Any) -> None:
        key = self._key(job_id)
        now = time.time()
        values = {k: str(v) for k, v in fields.items() if v is not None}
        cleared = [k for k, v in fields.items() if v is None]
        values["updated_at"] = str(now)
        if state is not None:
            values["state"] = state.value

        pipe = self.redis.pipeline()
        pipe.hset(key, mapping=values)
        if cleared:
            pipe.hdel(key, *cleared)
        if state is not None:
            for other in TaskState:
                if other != state:
                    pipe.zrem(self._state_key(other), job_id)
            pipe.zadd(self._state_key(state), {job_id: now})
        pipe.execute()

    def counts(self) -> dict[TaskState, int]:
        return {state: int(self.redis.zcard(self._state_key(state))) for state in TaskState}

    def older_than(self, state: TaskState, cutoff: float) -> list[str]:
        return list(self.redis.zrangebyscore(self._state_key(state), 0, cutoff))

    def delete(self, job_id: str) -> None:
        pipe = self.redis.pipeline()
        pipe.delete(self._key(job_id))
        for state in TaskState:
            pipe.zrem(self._state_key(state), job_id)
        pipe.execute()

    def close(self) -> None:
        self.redis.close()


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff after failed attempt number `attempt` (1-based): 2s, 4s, 8s..."""
        return self.base_delay * (2 ** (attempt - 1))


class TaskSkipped(Exception):
    """The task has nothing left to do (cancelled, finished, or the job moved on)."""


class RenderQueue:
    def __init__(
        self,
        ledger: TaskLedger,
        repository: JobRepository,
        blob_store: BlobStore,
        render_client_factory: Callable[[], RenderWorkerClient],
        policy: RetryPolicy = RetryPolicy(),
        raw_bucket: str = "raw-videos",
        processed_bucket: str = "processed-videos",
        completed_retention: int = 24 * 3600,
        failed_retention: int = 7 * 24 * 3600,
        app: Celery = celery_app,
    ):
        self.ledger = ledger
        self.repository = repository
        self.blob_store = blob_store
        self.render_client_factory = render_client_factory
        self.policy = policy
        self.raw_bucket = raw_bucket
        self.processed_bucket = processed_bucket
        self.completed_retention = completed_retention
        self.failed_retention = failed_retention
        self.app = app

    # ----- producer side -----

    def _submit(self, record: TaskRecord) -> bool:
        if not self.ledger.claim(record):
            logger.info(f"⏭️ Render for job {record.job_id} already queued")
            return False
        try:
            process_render_task.apply_async(kwargs={"job_id": record.job_id}, task_id=record.celery_id)
        except Exception as e:
            self.ledger.update(record.job_id, TaskState.FAILED, last_error=str(e), finished_at=time.time())
            raise
        logger.info(f"📬 Queued render for job {record.job_id}")
        return True

    def enqueue_render(
        self,
        job_id: str,
        user_id: str,
        input_video_path: str,
        editing_script: dict[str, Any],
        output_format: str = "mp4",
    ) -> bool:
        """Queue a render. Returns False if one is already waiting, running or delayed."""
        return self._submit(TaskRecord(
            job_id=job_id,
            user_id=user_id,
            input_video_path=input_video_path,
            editing_script=editing_script,
            output_format=output_format,
            max_attempts=self.policy.max_attempts,
            # unique per submission so a revoked id never blocks a later retry
            celery_id=f"render-{job_id}-{uuid.uuid4().hex[:8]}",
        ))

    def status(self, job_id: str) -> Optional[dict[str, Any]]:
        record = self.ledger.get(job_id)
        return record.to_status() if record else None

    def _revoke(self, job_id: str) -> bool:
        record = self.ledger.get(job_id)
        if record is None or record.state not in (TaskState.WAITING, TaskState.DELAYED):
            return False
        if record.celery_id:
            self.app.control.revoke(record.celery_id)
        self.ledger.update(job_id, TaskState.CANCELLED, last_error=CANCELLED_MESSAGE, finished_at=time.time())
        return True

    async def cancel(self, job_id: str) -> bool:
        """Cancel a task that has not started (waiting or delayed)."""
        if not await asyncio.to_thread(self._revoke, job_id):
            return False
        await self._mark_job_failed(job_id, CANCELLED_MESSAGE)
        logger.info(f"🛑 Cancelled queued render for job {job_id}")
        return True

    async def retry(self, job_id: str) -> bool:
        """Re-run a failed task from its first attempt. The job is reopened to RENDERING."""
        record = await asyncio.to_thread(self.ledger.get, job_id)
        if record is None or record.state != TaskState.FAILED:
            return False

        job = await self.repository.reopen_for_render(job_id)
        if job is None:
            return False

        return await asyncio.to_thread(self._submit, TaskRecord(
            job_id=record.job_id,
            user_id=record.user_id,
            input_video_path=record.input_video_path,
            editing_script=record.editing_script,
            output_format=record.output_format,
            max_attempts=self.policy.max_attempts,
            celery_id=f"render-{job_id}-{uuid.uuid4().hex[:8]}",
            created_at=record.created_at,
        ))

    def metrics(self) -> dict[str, int]:
        counts = self.ledger.counts()
        result = {
            "waiting": counts[TaskState.WAITING],
            "active": counts[TaskState.ACTIVE],
            "completed": counts[TaskState.COMPLETED],
            "failed": counts[TaskState.FAILED],
            "delayed": counts[TaskState.DELAYED],
        }
        result["total"] = sum(result.values())
        return result

    def cleanup(self, now: Optional[float] = None) -> dict[str, int]:
        """Drop finished task records past their retention window."""
        now = now or time.time()
        removed = {"completed": 0, "failed": 0}
        for job_id in self.ledger.older_than(TaskState.COMPLETED, now - self.completed_retention):
            self.ledger.delete(job_id)
            removed["completed"] += 1
        for state in (TaskState.FAILED, TaskState.CANCELLED):
            for job_id in self.ledger.older_than(state, now - self.failed_retention):
                self.ledger.delete(job_id)
                removed["failed"] += 1
        if any(removed.values()):
            logger.info(f"🧹 Queue cleanup removed {removed}")
        return removed

    def shutdown(self) -> None:
        try:
            self.ledger.close()
        finally:
            self.app.close()
        logger.info("👋 Render queue connections closed")

    # ----- worker side -----

    async def run_attempt(self, job_id: str, attempt: int) -> str:
        """One render attempt. Raises on failure so the task can retry."""
        record = self.ledger.get(job_id)
        if record is None or record.state in (TaskState.CANCELLED, TaskState.COMPLETED):
            raise TaskSkipped(job_id)

        job = await self.repository.get_job(job_id)
        if job is None or job.is_terminal:
            self.ledger.update(job_id, TaskState.CANCELLED, last_error="Job is no longer rendering", finished_at=time.time())
            raise TaskSkipped(job_id)

        self.ledger.update(job_id, TaskState.ACTIVE, attempts=attempt)
        logger.info(f"🎬 Rendering job {job_id} (attempt {attempt}/{self.policy.max_attempts})")

        async def report(progress: int, step: str) -> None:
            self.ledger.update(job_id, progress=progress)
            await self.repository.update_progress(job_id, job.status, progress, step)

        client = self.render_client_factory()
        try:
            executor = DirectRenderExecutor(client, self.blob_store, self.raw_bucket, self.processed_bucket)
            outcome = await executor.render(
                RenderRequest(
                    job=job,
                    editing_script=record.editing_script,
                    output_format=record.output_format,
                ),
                report,
            )
        finally:
            await client.close()

        completed = await self.repository.complete(job_id, outcome.output_path)
        if completed is None:
            logger.warning(f"⚠️ Job {job_id} left RENDERING before its render finished")
        self.ledger.update(
            job_id,
            TaskState.COMPLETED,
            progress=100,
            output_path=outcome.output_path,
            last_error=None,
            finished_at=time.time(),
        )
        logger.info(f"✅ Queued render for job {job_id} completed")
        return outcome.output_path

    def mark_delayed(self, job_id: str, error: Exception, countdown: float) -> None:
        self.ledger.update(job_id, TaskState.DELAYED, last_error=str(error) or error.__class__.__name__)
        logger.warning(f"⚠️ Render for job {job_id} failed, retrying in {countdown:.0f}s: {error}")

    async def fail(self, job_id: str, error: Exception) -> None:
        """Retries exhausted: keep the task as failed and fail the job with the last error."""
        message = str(error) or error.__class__.__name__
        self.ledger.update(job_id, TaskState.FAILED, last_error=message, finished_at=time.time())
        await self._mark_job_failed(job_id, message)

    async def _mark_job_failed(self, job_id: str, message: str) -> None:
        try:
            await self.repository.mark_failed(job_id, message)
        except Exception as e:
            logger.error(f"❌ Could not mark job {job_id} as failed: {e}")


_render_queue: Optional[RenderQueue] = None


def get_render_queue() -> RenderQueue:
    """Process-wide queue for Celery workers, built from settings on first use."""
    global _render_queue
    if _render_queue is None:
        from services.container import build_render_queue
        _render_queue = build_render_queue(settings)
    return _render_queue


@celery_app.task(
    bind=True,
    name=RENDER_TASK_NAME,
    max_retries=max(settings.queue_max_attempts - 1, 0),
    rate_limit=settings.queue_rate_limit,
)
def process_render_task(self, job_id: str):
    queue = get_render_queue()
    attempt = self.request.retries + 1
    try:
        return asyncio.run(queue.run_attempt(job_id, attempt))
    except TaskSkipped:
        logger.info(f"⏭️ Skipping render task for job {job_id}")
        return None
    except Exception as exc:
        if attempt >= queue.policy.max_attempts:
            logger.error(f"❌ Render for job {job_id} failed after {attempt} attempts: {exc}")
            asyncio.run(queue.fail(job_id, exc))
            return None
        countdown = queue.policy.delay_for(attempt)
        queue.mark_delayed(job_id, exc, countdown)
        raise self.retry(exc=exc, countdown=countdown)


@celery_app.task(name=CLEANUP_TASK_NAME)
def cleanup_render_tasks():
    return get_render_queue().cleanup()


@worker_process_init.connect
def on_worker_process_init(**kwargs):
    setup_logging()
    logger.info("🔧 Render worker process started")


@worker_shutdown.connect
def on_worker_shutdown(**kwargs):
    global _render_queue
    if _render_queue is not None:
        _render_queue.shutdown()
        _render_queue = None
