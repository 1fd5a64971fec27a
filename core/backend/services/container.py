"""
Service container
Builds the long-lived clients once per process and tears them down on shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from supabase import Client, create_client

from config import DispatchMode, Settings
from services.ai_gateway import AIServiceGateway
from services.db import JobListener, JobRepository
from services.errors import ConfigurationError
from services.job_events import JobEventPublisher, JobEventSubscriber, SnapshotHandler
from services.orchestrator import JobOrchestrator
from services.render_client import RenderWorkerClient
from services.render_executors import (
    DirectRenderExecutor,
    QueuedRenderExecutor,
    RemoteRenderExecutor,
    RenderExecutor,
)
from services.render_queue import RenderQueue, RetryPolicy, TaskLedger
from services.script_builder import EditingScriptBuilder
from services.storage import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    supabase: Client
    repository: JobRepository
    blob_store: BlobStore
    gateway: AIServiceGateway
    builder: EditingScriptBuilder
    render_client: RenderWorkerClient
    orchestrator: JobOrchestrator
    dispatch_mode: DispatchMode
    render_queue: Optional[RenderQueue] = None
    job_events: Optional[JobEventSubscriber] = None
    _relay: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def start_event_relay(self, handler: SnapshotHandler) -> None:
        """Forward job writes made by queue workers to `handler`."""
        if self.job_events is not None and self._relay is None:
            self._relay = asyncio.create_task(self.job_events.run(handler))

    async def shutdown(self) -> None:
        await self.orchestrator.drain(timeout=self.settings.async_dispatch_timeout_seconds)
        await self.render_client.close()
        if self._relay is not None:
            self._relay.cancel()
            try:
                await self._relay
            except asyncio.CancelledError:
                pass
        if self.job_events is not None:
            await self.job_events.close()
        if self.render_queue is not None:
            self.render_queue.shutdown()
        logger.info("👋 Services shut down")


def create_supabase(config: Settings) -> Client:
    if not (config.supabase_url and config.supabase_key):
        raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
    client = create_client(config.supabase_url, config.supabase_key)
    logger.info("✅ Connected to Supabase")
    return client


def _render_queue(
    config: Settings, repository: JobRepository, blob_store: BlobStore, ledger: Optional[TaskLedger] = None
) -> RenderQueue:
    return RenderQueue(
        ledger=ledger or TaskLedger.from_url(config.redis_url),
        repository=repository,
        blob_store=blob_store,
        render_client_factory=lambda: RenderWorkerClient(
            config.python_worker_url, timeout=config.render_timeout_seconds
        ),
        policy=RetryPolicy(config.queue_max_attempts, config.queue_backoff_seconds),
        raw_bucket=config.raw_videos_bucket,
        processed_bucket=config.processed_videos_bucket,
        completed_retention=config.queue_completed_retention_seconds,
        failed_retention=config.queue_failed_retention_seconds,
    )


def build_render_queue(config: Settings) -> RenderQueue:
    """Queue for a Celery worker process. Job writes are published for the API process to relay."""
    if not config.queue_enabled():
        raise ConfigurationError("REDIS_URL must be set to run the render queue")
    client = create_supabase(config)
    ledger = TaskLedger.from_url(config.redis_url)
    publisher = JobEventPublisher(ledger.redis)
    repository = JobRepository(client, config.jobs_table, on_change=publisher.publish)
    return _render_queue(config, repository, BlobStore(client), ledger)


def build_services(config: Settings, on_change: Optional[JobListener] = None) -> ServiceContainer:
    supabase = create_supabase(config)
    repository = JobRepository(supabase, config.jobs_table, on_change=on_change)
    blob_store = BlobStore(supabase)
    gateway = AIServiceGateway.from_settings(config)
    render_client = RenderWorkerClient(
        config.python_worker_url,
        timeout=config.render_timeout_seconds,
        async_timeout=config.async_dispatch_timeout_seconds,
    )

    mode = config.get_effective_dispatch_mode()
    render_queue = None
    job_events = None
    executor: RenderExecutor
    if mode == DispatchMode.QUEUE:
        render_queue = _render_queue(config, repository, blob_store)
        job_events = JobEventSubscriber.from_url(config.redis_url)
        executor = QueuedRenderExecutor(render_queue)
    elif mode == DispatchMode.ASYNC:
        executor = RemoteRenderExecutor(
            render_client,
            groq_api_key=config.groq_api_key,
            google_api_key=config.google_ai_api_key,
            forward_provider_keys=config.forward_provider_keys,
        )
    else:
        executor = DirectRenderExecutor(
            render_client, blob_store, config.raw_videos_bucket, config.processed_videos_bucket
        )

    orchestrator = JobOrchestrator(
        repository=repository,
        blob_store=blob_store,
        gateway=gateway,
        builder=EditingScriptBuilder(),
        executor=executor,
        raw_bucket=config.raw_videos_bucket,
        signed_url_ttl=config.signed_url_ttl_seconds,
        max_dispatch_seconds=config.max_dispatch_seconds,
    )

    services = gateway.available_services()
    logger.info(
        f"🚀 Dispatch mode: {mode.value}, AI services: {', '.join(sorted(services)) or 'none'}"
    )
    return ServiceContainer(
        settings=config,
        supabase=supabase,
        repository=repository,
        blob_store=blob_store,
        gateway=gateway,
        builder=orchestrator.builder,
        render_client=render_client,
        orchestrator=orchestrator,
        dispatch_mode=mode,
        render_queue=render_queue,
        job_events=job_events,
    )
