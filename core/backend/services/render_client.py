"""
Render Worker Client
HTTP client for the external video render worker.
"""

import json
import logging
from typing import Any, Optional

import httpx

from services.errors import RenderWorkerError

logger = logging.getLogger(__name__)


class RenderWorkerClient:
    """
    POST {worker}/process        multipart `video` + `editing_script`, answers with the rendered video
    POST {worker}/process-async  JSON job description, answers with a small acknowledgement
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 280.0,
        async_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.async_timeout = async_timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def process(self, video: bytes, editing_script: dict[str, Any], filename: str = "video.mp4") -> bytes:
        """Render synchronously and return the output video bytes."""
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/process",
                files={"video": (filename, video, "video/mp4")},
                data={"editing_script": json.dumps(editing_script, ensure_ascii=False)},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise RenderWorkerError(f"Render worker unreachable: {e}") from e

        if not response.is_success:
            detail = response.text.strip() or response.reason_phrase
            raise RenderWorkerError(
                f"Render worker error ({response.status_code}): {detail}",
                status_code=response.status_code,
            )
        if not response.content:
            raise RenderWorkerError("Render worker returned an empty video", status_code=response.status_code)

        logger.info(f"🎬 Render worker returned {len(response.content) / (1024 * 1024):.1f}MB")
        return response.content

    async def process_async(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Hand the job to the worker and return its acknowledgement."""
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/process-async",
                json=payload,
                timeout=self.async_timeout,
            )
        except httpx.HTTPError as e:
            raise RenderWorkerError(f"Render worker unreachable: {e}") from e

        if not response.is_success:
            raise RenderWorkerError(
                f"Render worker rejected job ({response.status_code}): {response.text.strip()}",
                status_code=response.status_code,
            )
        try:
            ack = response.json()
        except ValueError:
            ack = {"status": response.text.strip() or "accepted"}
        return ack if isinstance(ack, dict) else {"status": ack}

    async def health(self) -> bool:
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/health", timeout=self.async_timeout)
            return response.is_success
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
