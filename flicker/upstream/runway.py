"""
Runway client - the only code that talks to the generation API

Three operations: text-to-image, image-to-video and task status.
The gateway depends on GenerationBackend, so tests can hand it a fake.
"""

import asyncio
import json
import random
import time
from typing import Optional
from urllib.parse import quote

import aiohttp
from prometheus_client import Histogram

from flicker import config
from flicker.config import DEFAULTS
from flicker.errors import UpstreamError, UpstreamTimeout
from flicker.upstream.models import TaskSnapshot

UPSTREAM_LATENCY = Histogram(
    "flicker_upstream_latency_seconds",
    "Latency of calls to the generation API",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0]
)

SEED_RANGE = 4294967295  # 2**32 - 1


class GenerationBackend:
    """Interface the /ai handler needs from a generation API"""

    async def submit_text_to_image(
        self,
        prompt_text: str,
        ratio: str = DEFAULTS.ratio,
        structure_strength: Optional[float] = DEFAULTS.structure_strength,
        reference_image: Optional[str] = None,
    ) -> str:
        raise NotImplementedError

    async def submit_image_to_video(
        self,
        image_url: str,
        prompt_text: str,
        duration: int = DEFAULTS.duration,
        ratio: str = DEFAULTS.ratio,
    ) -> str:
        raise NotImplementedError

    async def get_task_status(self, task_id: str) -> TaskSnapshot:
        raise NotImplementedError


def random_seed() -> int:
    """Seed used only to diversify output"""
    return random.randrange(SEED_RANGE)


class RunwayClient(GenerationBackend):
    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        base_url: str = config.RUNWAY_API_BASE,
        api_version: str = config.RUNWAY_API_VERSION,
        timeout: float = config.UPSTREAM_TIMEOUT,
    ):
        self._session = session
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self, with_body: bool) -> dict:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "X-Runway-Version": self._api_version,
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _call(self, operation: str, method: str, path: str, body: Optional[dict] = None):
        """Send one request, return (http status, reason, decoded JSON or None)"""
        start = time.time()
        try:
            async with self._session.request(
                method,
                f"{self._base_url}{path}",
                headers=self._headers(body is not None),
                json=body,
                timeout=self._timeout,
            ) as response:
                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError, UnicodeDecodeError):
                    data = None
                return response.status, response.reason, data
        except asyncio.TimeoutError:
            raise UpstreamTimeout(
                f"Runway {operation} did not respond within {self._timeout.total:.0f}s"
            )
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Runway {operation} request failed: {e}")
        finally:
            UPSTREAM_LATENCY.labels(operation=operation).observe(time.time() - start)

    async def _submit(self, operation: str, path: str, body: dict, fallback: str) -> str:
        status, _, data = await self._call(operation, "POST", path, body)
        data = data if isinstance(data, dict) else {}
        if not 200 <= status < 300:
            raise UpstreamError(data.get("error") or fallback.format(status=status), status)
        task_id = data.get("id")
        if not task_id:
            raise UpstreamError(f"Runway {operation} response carried no task id", status)
        return task_id

    async def submit_text_to_image(
        self,
        prompt_text: str,
        ratio: str = DEFAULTS.ratio,
        structure_strength: Optional[float] = DEFAULTS.structure_strength,
        reference_image: Optional[str] = None,
    ) -> str:
        body = {
            "model": config.RUNWAY_IMAGE_MODEL,
            "promptText": prompt_text,
            "ratio": ratio,
            "seed": random_seed(),
        }
        if structure_strength is not None:
            body["structureStrength"] = structure_strength
        if reference_image:
            body["referenceImages"] = [{"uri": reference_image, "tag": "source"}]
        return await self._submit(
            "text_to_image", "/text_to_image", body, "Runway T2I API error: {status}"
        )

    async def submit_image_to_video(
        self,
        image_url: str,
        prompt_text: str,
        duration: int = DEFAULTS.duration,
        ratio: str = DEFAULTS.ratio,
    ) -> str:
        body = {
            "model": config.RUNWAY_VIDEO_MODEL,
            "promptText": prompt_text,
            "promptImage": image_url,
            "seed": random_seed(),
            "watermark": False,
            "duration": duration,
            "ratio": ratio,
        }
        return await self._submit(
            "image_to_video", "/image_to_video", body, "Runway I2V API returned status {status}"
        )

    async def get_task_status(self, task_id: str) -> TaskSnapshot:
        status, reason, data = await self._call("task_status", "GET", f"/tasks/{quote(task_id, safe='')}")
        if not 200 <= status < 300:
            message = (data or {}).get("error") if isinstance(data, dict) else None
            raise UpstreamError(f"Status check failed: {message or reason}", status)
        if not isinstance(data, dict):
            raise UpstreamError("Status check failed: response was not JSON", status)
        try:
            return TaskSnapshot.from_payload(task_id, data)
        except ValueError as e:
            raise UpstreamError(f"Status check failed: {e}", status)
