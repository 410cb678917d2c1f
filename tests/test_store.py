import asyncio
import json

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from flicker.gateway.store import TaskInfoStore
from flicker.upstream.models import JobKind, TaskInfo


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        self.data.pop(key, None)

    async def ping(self):
        return True


class DownRedis:
    async def set(self, key, value, ex=None):
        raise RedisConnectionError("Connection refused")

    async def get(self, key):
        raise RedisConnectionError("Connection refused")

    async def delete(self, key):
        raise RedisConnectionError("Connection refused")


def run(coro):
    return asyncio.run(coro)


class TestTaskInfoStore:
    def test_put_writes_json_with_ttl(self):
        redis = FakeRedis()
        store = TaskInfoStore(redis, prefix="task_info", ttl=60)

        assert run(store.put("t1", TaskInfo(kind=JobKind.IMAGE))) is True
        assert json.loads(redis.data["task_info:t1"]) == {"kind": "image"}
        assert redis.expiry["task_info:t1"] == 60

    def test_get_round_trip_and_delete(self):
        store = TaskInfoStore(FakeRedis())
        run(store.put("t1", TaskInfo(kind=JobKind.VIDEO)))

        assert run(store.get("t1")) == TaskInfo(kind=JobKind.VIDEO)
        assert run(store.delete("t1")) is True
        assert run(store.get("t1")) is None

    def test_absent_record(self):
        assert run(TaskInfoStore(FakeRedis()).get("nope")) is None

    def test_malformed_record_is_ignored(self):
        redis = FakeRedis()
        redis.data["task_info:t1"] = '{"kind": "hologram"}'
        assert run(TaskInfoStore(redis).get("t1")) is None

    def test_redis_failures_are_swallowed(self):
        store = TaskInfoStore(DownRedis())
        assert run(store.put("t1", TaskInfo(kind=JobKind.IMAGE))) is False
        assert run(store.get("t1")) is None
        assert run(store.delete("t1")) is False

    def test_redis_timeouts_are_swallowed(self):
        class SlowRedis(DownRedis):
            async def set(self, key, value, ex=None):
                raise RedisTimeoutError("Timeout connecting to server")

            async def get(self, key):
                raise RedisTimeoutError("Timeout reading from socket")

        store = TaskInfoStore(SlowRedis())
        assert run(store.put("t1", TaskInfo(kind=JobKind.IMAGE))) is False
        assert run(store.get("t1")) is None
