"""Core data structures for the SubsAI subtitle translator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Segment:
    """One subtitle block: its display header and single-line content."""

    header: str
    content: str
    translated_content: Optional[str] = None


@dataclass
class Group:
    """An ordered run of segments sent to the model as a single request."""

    group_id: int
    segments: List[Segment]
    cost: int = 0

    def __len__(self) -> int:
        return len(self.segments)


class JobStatus(str, Enum):
    """Remote batch states we act on; anything else is still in progress."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_remote(cls, value: Optional[str]) -> "JobStatus":
        if value == "completed":
            return cls.COMPLETED
        if value in {"failed", "expired", "cancelled"}:
            return cls.FAILED
        return cls.PENDING


@dataclass
class BatchRequest:
    """A queued translation keyed by its verbatim rendered input."""

    content: str
    id: str
    result: Optional[str] = None
    # Earlier batch rounds whose result for this content was unusable.
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"content": self.content, "id": self.id}
        if self.result is not None:
            data["result"] = self.result
        if self.attempts:
            data["attempts"] = self.attempts
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchRequest":
        return cls(
            content=str(data["content"]),
            id=str(data["id"]),
            result=data.get("result"),
            attempts=int(data.get("attempts", 0)),
        )


@dataclass
class BatchJob:
    """A persisted remote batch and the requests it carries."""

    id: str
    status: JobStatus = JobStatus.PENDING
    requests: List[BatchRequest] = field(default_factory=list)
    finished: bool = False

    def find(self, content: str) -> Optional[BatchRequest]:
        for request in self.requests:
            if request.content == content:
                return request
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "finished": self.finished,
            "requests": [request.to_dict() for request in self.requests],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchJob":
        return cls(
            id=str(data["id"]),
            status=JobStatus.from_remote(data.get("status")),
            requests=[BatchRequest.from_dict(item) for item in data.get("requests", [])],
            finished=bool(data.get("finished", False)),
        )


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """Result of driving one group through translation and verification."""

    group: Group
    kind: OutcomeKind
    attempts: int = 0
    observed: Optional[int] = None
    expected: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS
