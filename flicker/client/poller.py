"""
Polling controller - the client half of the /ai protocol

Uploads an image + prompt, then asks the gateway for the task status on a
fixed interval until the task is terminal. Mirrors what the browser page
does, so scripts and tests can drive the same state machine.

States:
    IDLE -> UPLOADING -> POLLING -> SUCCEEDED
                    \\           \\-> FAILED
                     \\-> FAILED
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

import aiohttp

from flicker import config
from flicker.config import DEFAULTS


class PollState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProxyAPIError(Exception):
    """The gateway answered with a non-2xx status or success=false"""


class ProxyAPI:
    """aiohttp transport for the gateway's /ai endpoint"""

    def __init__(self, session: aiohttp.ClientSession, base_url: str = "http://localhost:8000"):
        self._session = session
        self._url = f"{base_url.rstrip('/')}/ai"

    async def _read(self, response: aiohttp.ClientResponse, fallback: str) -> dict:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}
        if response.status >= 400 or not data.get("success"):
            raise ProxyAPIError(data.get("error") or fallback)
        return data

    async def submit_upload(
        self,
        image: bytes,
        prompt: str,
        ratio: str = DEFAULTS.ratio,
        kind: str = "image",
        filename: str = "upload.png",
        content_type: str = "image/png",
    ) -> str:
        form = aiohttp.FormData()
        form.add_field("prompt", prompt)
        form.add_field("image", image, filename=filename, content_type=content_type)
        form.add_field("ratio", ratio)
        form.add_field("kind", kind)
        async with self._session.post(self._url, data=form) as response:
            data = await self._read(response, "Failed to start generation")
        return data["taskId"]

    async def check_status(self, task_id: str) -> dict:
        async with self._session.post(self._url, json={"action": "status", "taskId": task_id}) as response:
            return await self._read(response, "Failed to check task status")


class PollingController:
    """
    One job at a time. Starting a new job cancels the previous timer, so there
    is never more than one poller per controller.
    """

    def __init__(
        self,
        api: ProxyAPI,
        interval: float = config.POLL_INTERVAL,
        on_change: Optional[Callable[["PollingController"], None]] = None,
    ):
        self.api = api
        self.interval = interval
        self.on_change = on_change

        self.state = PollState.IDLE
        self.task_id: Optional[str] = None
        self.status: Optional[str] = None
        self.progress: float = 0.0
        self.result_url: Optional[str] = None
        self.error: Optional[str] = None
        self._timer: Optional[asyncio.Task] = None
        self._generation = 0  # bumped by every start/close; a stale upload is dropped

    @property
    def is_live(self) -> bool:
        return self.state in (PollState.UPLOADING, PollState.POLLING)

    @property
    def is_terminal(self) -> bool:
        return self.state in (PollState.SUCCEEDED, PollState.FAILED)

    def _set(self, **changes) -> None:
        for key, value in changes.items():
            setattr(self, key, value)
        if self.on_change is not None:
            self.on_change(self)

    def _reset(self) -> None:
        self.task_id = None
        self.status = None
        self.progress = 0.0
        self.result_url = None
        self.error = None

    async def start(self, image: Optional[bytes], prompt: str, **upload_options) -> bool:
        """Submit a job and begin polling. Returns False if the job never started."""
        if not image or not prompt or not prompt.strip():
            # a running job keeps its own error field
            if not self.is_live:
                self._set(error="Please upload an image and provide a prompt.")
            return False

        self.stop()
        self._generation += 1
        generation = self._generation
        self._reset()
        self._set(state=PollState.UPLOADING)

        try:
            task_id = await self.api.submit_upload(image, prompt, **upload_options)
        except (ProxyAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            if generation == self._generation:
                self._set(state=PollState.FAILED, error=str(e) or "Failed to start generation")
            return False

        if generation != self._generation:
            # superseded by a newer start() or closed while uploading
            return False

        self.stop()
        self._set(state=PollState.POLLING, task_id=task_id)
        self._timer = asyncio.create_task(self._poll_loop(task_id))
        return True

    async def _poll_loop(self, task_id: str) -> None:
        while not self.is_terminal:
            await asyncio.sleep(self.interval)
            await self._tick(task_id)

    async def _tick(self, task_id: str) -> None:
        try:
            data = await self.api.check_status(task_id)
        except (ProxyAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._set(state=PollState.FAILED, error=str(e) or "Failed to check task status")
            return

        status = data.get("status")
        progress = (data.get("progress") or 0) * 100

        if status == "SUCCEEDED":
            url = data.get("imageUrl") or data.get("videoUrl")
            if url:
                self._set(state=PollState.SUCCEEDED, status=status, progress=progress, result_url=url)
            else:
                self._set(
                    state=PollState.FAILED,
                    status=status,
                    error="Task succeeded but no result URL was returned.",
                )
        elif status == "FAILED":
            self._set(state=PollState.FAILED, status=status, error=data.get("failure") or "Generation failed.")
        else:
            self._set(status=status, progress=progress)

    async def wait(self) -> PollState:
        """Wait for the current job to reach a terminal state (or be stopped)"""
        if self._timer is not None:
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
        return self.state

    def stop(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def close(self) -> None:
        """Teardown: no callbacks may fire after this"""
        self._generation += 1
        self.stop()
