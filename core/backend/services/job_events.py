"""
Job status events across processes
Render queue workers write job status from their own process. They publish
every write on a Redis channel, and the API process relays those snapshots to
its WebSocket subscribers.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import redis
import redis.asyncio as aioredis

from models.job import Job

logger = logging.getLogger(__name__)

JOB_EVENTS_CHANNEL = "hedcut:jobs"

SnapshotHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


class JobEventPublisher:
    """Repository listener for processes without WebSocket clients."""

    def __init__(self, client: redis.Redis, channel: str = JOB_EVENTS_CHANNEL):
        self.redis = client
        self.channel = channel

    async def publish(self, job: Job) -> None:
        message = json.dumps(job.to_public(), ensure_ascii=False)
        await asyncio.to_thread(self.redis.publish, self.channel, message)


class JobEventSubscriber:
    def __init__(
        self,
        client: aioredis.Redis,
        channel: str = JOB_EVENTS_CHANNEL,
        reconnect_delay: float = 5.0,
    ):
        self.redis = client
        self.channel = channel
        self.reconnect_delay = reconnect_delay

    @classmethod
    def from_url(cls, url: str, channel: str = JOB_EVENTS_CHANNEL) -> "JobEventSubscriber":
        return cls(aioredis.Redis.from_url(url, decode_responses=True), channel)

    async def run(self, handler: SnapshotHandler) -> None:
        """Relay published snapshots to `handler` until cancelled."""
        while True:
            try:
                await self._listen(handler)
            except redis.RedisError as e:
                logger.warning(f"⚠️ Job event stream lost, reconnecting in {self.reconnect_delay:.0f}s: {e}")
                await asyncio.sleep(self.reconnect_delay)

    async def _listen(self, handler: SnapshotHandler) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            logger.info(f"📡 Listening for job events on {self.channel}")
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    await self._dispatch(message["data"], handler)
        finally:
            await pubsub.aclose()

    async def _dispatch(self, data: Any, handler: SnapshotHandler) -> None:
        try:
            snapshot = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("⚠️ Ignoring malformed job event")
            return
        job_id = snapshot.get("id") if isinstance(snapshot, dict) else None
        if not job_id:
            logger.warning("⚠️ Ignoring job event without an id")
            return
        await handler(job_id, snapshot)

    async def close(self) -> None:
        await self.redis.aclose()
