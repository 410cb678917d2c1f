from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from flicker.errors import UpstreamError
from flicker.gateway import gateway
from flicker.upstream.models import TaskInfo, TaskSnapshot
from flicker.upstream.runway import GenerationBackend


class FakeBackend(GenerationBackend):
    """Records submissions and answers status checks from a script"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.snapshots: Dict[str, TaskSnapshot] = {}
        self.error: Optional[UpstreamError] = None
        self.next_id = "task-123"

    async def submit_text_to_image(self, prompt_text, ratio="1280:720", structure_strength=None, reference_image=None):
        self.calls.append(("text_to_image", prompt_text, ratio, structure_strength, reference_image))
        if self.error:
            raise self.error
        return self.next_id

    async def submit_image_to_video(self, image_url, prompt_text, duration=5, ratio="1280:720"):
        self.calls.append(("image_to_video", image_url, prompt_text, duration, ratio))
        if self.error:
            raise self.error
        return self.next_id

    async def get_task_status(self, task_id):
        self.calls.append(("task_status", task_id))
        if self.error:
            raise self.error
        return self.snapshots[task_id]

    @property
    def submissions(self):
        return [call for call in self.calls if call[0] != "task_status"]


class FakeStore:
    """In-memory stand-in for TaskInfoStore"""

    def __init__(self):
        self.records: Dict[str, TaskInfo] = {}
        self.operations: List[tuple] = []

    async def put(self, task_id, info):
        self.operations.append(("put", task_id))
        self.records[task_id] = info
        return True

    async def get(self, task_id):
        self.operations.append(("get", task_id))
        return self.records.get(task_id)

    async def delete(self, task_id):
        self.operations.append(("delete", task_id))
        self.records.pop(task_id, None)
        return True

    async def ping(self):
        return True


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def client(backend, store):
    gateway.app.dependency_overrides[gateway.get_backend] = lambda: backend
    gateway.app.dependency_overrides[gateway.get_store] = lambda: store
    yield TestClient(gateway.app)
    gateway.app.dependency_overrides.clear()
