"""
Task Messages

Wire types exchanged with remote workers over NATS.
All payloads are JSON; task arguments and results must be JSON-serializable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value) -> datetime:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


@dataclass
class TaskRequest:
    """Request to run a registered function on a worker"""
    task_id: int
    function: str
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    origin: str = "local"  # worker_id of the submitting scheduler
    submitted_at: datetime = field(default_factory=_utcnow)
    thread: Optional[int] = None  # Pinned worker thread, if any

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "task_id": self.task_id,
            "function": self.function,
            "args": list(self.args),
            "kwargs": dict(self.kwargs),
            "origin": self.origin,
            "submitted_at": self.submitted_at.isoformat(),
            "thread": self.thread,
        }

    def to_json(self) -> str:
        """Serialize to JSON string (raises TypeError for non-JSON arguments)"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "TaskRequest":
        """Create TaskRequest from dictionary"""
        return cls(
            task_id=data["task_id"],
            function=data["function"],
            args=list(data.get("args") or []),
            kwargs=dict(data.get("kwargs") or {}),
            origin=data.get("origin", "local"),
            submitted_at=_parse_timestamp(data.get("submitted_at") or _utcnow()),
            thread=data.get("thread"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "TaskRequest":
        """Deserialize from JSON string"""
        return cls.from_dict(json.loads(json_str))


@dataclass
class TaskResult:
    """Outcome of a TaskRequest, sent back by the worker"""
    task_id: int
    ok: bool
    value: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    traceback: Optional[str] = None
    worker_id: Optional[str] = None
    thread: Optional[int] = None  # Worker-local processor index
    duration: Optional[float] = None

    @classmethod
    def failure(
        cls,
        task_id: int,
        exc: BaseException,
        worker_id: Optional[str] = None,
        traceback_text: Optional[str] = None,
    ) -> "TaskResult":
        """Build a failed result from an exception"""
        return cls(
            task_id=task_id,
            ok=False,
            error=str(exc),
            error_type=type(exc).__name__,
            traceback=traceback_text,
            worker_id=worker_id,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "task_id": self.task_id,
            "ok": self.ok,
            "value": self.value,
            "error": self.error,
            "error_type": self.error_type,
            "traceback": self.traceback,
            "worker_id": self.worker_id,
            "thread": self.thread,
            "duration": self.duration,
        }

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "TaskResult":
        """Create TaskResult from dictionary"""
        return cls(
            task_id=data["task_id"],
            ok=bool(data["ok"]),
            value=data.get("value"),
            error=data.get("error"),
            error_type=data.get("error_type"),
            traceback=data.get("traceback"),
            worker_id=data.get("worker_id"),
            thread=data.get("thread"),
            duration=data.get("duration"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "TaskResult":
        """Deserialize from JSON string"""
        return cls.from_dict(json.loads(json_str))


@dataclass
class WorkerHeartbeat:
    """Periodic liveness announcement from a worker"""
    worker_id: str
    pool: str
    threads: int
    running: int = 0
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "pool": self.pool,
            "threads": self.threads,
            "running": self.running,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerHeartbeat":
        return cls(
            worker_id=data["worker_id"],
            pool=data["pool"],
            threads=int(data["threads"]),
            running=int(data.get("running", 0)),
            timestamp=_parse_timestamp(data.get("timestamp") or _utcnow()),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "WorkerHeartbeat":
        return cls.from_dict(json.loads(json_str))
