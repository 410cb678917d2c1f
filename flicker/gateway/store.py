"""
Task metadata store (Redis)

Remembers which kind of job a task id belongs to, because Runway's status
response does not say whether it produced an image or a video.
- Key: task_info:{task_id}
- Value: {"kind": "image" | "video"}
- Written once on submission, read and deleted once on the terminal poll
- Best-effort: Redis trouble is reported and never fails a request
"""

from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from flicker import config
from flicker.upstream.models import TaskInfo


class TaskInfoStore:
    def __init__(
        self,
        client: aioredis.Redis,
        prefix: str = config.TASK_INFO_PREFIX,
        ttl: int = config.TASK_INFO_TTL,
    ):
        self._client = client
        self._prefix = prefix
        self._ttl = ttl

    def key(self, task_id: str) -> str:
        return f"{self._prefix}:{task_id}"

    async def put(self, task_id: str, info: TaskInfo) -> bool:
        try:
            await self._client.set(self.key(task_id), info.model_dump_json(), ex=self._ttl)
            return True
        except RedisError as e:
            print(f"⚠️ [{task_id}] Could not store task info: {e}")
            return False

    async def get(self, task_id: str) -> Optional[TaskInfo]:
        try:
            raw = await self._client.get(self.key(task_id))
        except RedisError as e:
            print(f"⚠️ [{task_id}] Could not read task info: {e}")
            return None
        if not raw:
            return None
        try:
            return TaskInfo.model_validate_json(raw)
        except ValidationError:
            print(f"⚠️ [{task_id}] Ignoring malformed task info: {raw!r}")
            return None

    async def delete(self, task_id: str) -> bool:
        try:
            await self._client.delete(self.key(task_id))
            return True
        except RedisError as e:
            print(f"⚠️ [{task_id}] Could not delete task info: {e}")
            return False

    async def ping(self) -> bool:
        return await self._client.ping()
