"""Execution queue status model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class QueueState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class QueueStatus:
    """Operator view of one strategy queue. Written only by the dispatcher."""

    name: str
    size: int          # items waiting
    pending: int       # items being executed (0 or 1)
    max_size: int
    state: QueueState
    processed_count: int
    error_count: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "pending": self.pending,
            "max_size": self.max_size,
            "state": self.state.value,
            "processed_count": self.processed_count,
            "error_count": self.error_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> QueueStatus:
        return cls(
            name=data["name"],
            size=int(data["size"]),
            pending=int(data["pending"]),
            max_size=int(data["max_size"]),
            state=QueueState(data["state"]),
            processed_count=int(data["processed_count"]),
            error_count=int(data["error_count"]),
        )
