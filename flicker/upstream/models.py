"""
Task model shared by the upstream client, the gateway and the poller
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class JobKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class TaskStatus(str, Enum):
    """Lifecycle states of an upstream generation task"""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)

    @classmethod
    def from_upstream(cls, raw: Optional[str]) -> "TaskStatus":
        """Map a raw Runway status string onto the lifecycle enum"""
        status = _UPSTREAM_STATUSES.get(str(raw or "").upper())
        if status is None:
            raise ValueError(f"Unrecognised task status: {raw!r}")
        return status


_UPSTREAM_STATUSES = {
    "PENDING": TaskStatus.PENDING,
    "THROTTLED": TaskStatus.PENDING,
    "RUNNING": TaskStatus.RUNNING,
    "SUCCEEDED": TaskStatus.SUCCEEDED,
    "FAILED": TaskStatus.FAILED,
    "CANCELLED": TaskStatus.FAILED,
}


@dataclass
class TaskSnapshot:
    """One observation of a task, as reported by GET /tasks/{id}"""
    id: str
    status: TaskStatus
    progress: Optional[float] = None
    output: List[str] = field(default_factory=list)
    failure: Optional[str] = None
    failure_code: Optional[str] = None

    @property
    def result_url(self) -> Optional[str]:
        return self.output[0] if self.output else None

    @classmethod
    def from_payload(cls, task_id: str, payload: dict) -> "TaskSnapshot":
        progress = payload.get("progress")
        return cls(
            id=payload.get("id") or task_id,
            status=TaskStatus.from_upstream(payload.get("status")),
            progress=float(progress) if progress is not None else None,
            output=[url for url in (payload.get("output") or []) if url],
            failure=payload.get("failure"),
            failure_code=payload.get("failureCode"),
        )


class TaskInfo(BaseModel):
    """Metadata record kept per task between submission and its terminal poll"""
    kind: JobKind
