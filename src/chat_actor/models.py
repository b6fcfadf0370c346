"""Value types shared by the store, the actor and the HTTP layer."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

USER = "user"
ASSISTANT = "assistant"
ORIGINS = (USER, ASSISTANT)


def _new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FailureMarker:
    """Records that no reply was produced for the user message ``message_id``."""

    message_id: str
    reason: str  # "timeout" | "error"
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"message_id": self.message_id, "reason": self.reason, "detail": self.detail}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureMarker":
        return cls(
            message_id=str(data["message_id"]),
            reason=str(data.get("reason") or "error"),
            detail=str(data.get("detail") or ""),
        )


@dataclass(frozen=True)
class Message:
    """A single transcript entry."""

    text: str
    origin: str
    timestamp: int
    id: str = field(default_factory=_new_id)
    failure: Optional[FailureMarker] = None

    def __post_init__(self) -> None:
        if self.origin not in ORIGINS:
            raise ValueError(f"origin must be one of {ORIGINS}, got {self.origin!r}")

    def with_failure(self, reason: str, detail: str = "") -> "Message":
        return Message(
            text=self.text,
            origin=self.origin,
            timestamp=self.timestamp,
            id=self.id,
            failure=FailureMarker(message_id=self.id, reason=reason, detail=detail),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "timestamp": self.timestamp,
            "origin": self.origin,
        }
        if self.failure is not None:
            out["failure"] = self.failure.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        failure = data.get("failure")
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            timestamp=int(data["timestamp"]),
            origin=str(data["origin"]),
            failure=FailureMarker.from_dict(failure) if failure else None,
        )


TranscriptSnapshot = Tuple[Message, ...]


@dataclass(frozen=True)
class Exchange:
    """Outcome of one accepted user message: the reply, or a failure marker."""

    user: Message
    reply: Optional[Message] = None

    @property
    def failure(self) -> Optional[FailureMarker]:
        return self.user.failure

    @property
    def ok(self) -> bool:
        return self.reply is not None

    @property
    def messages(self) -> Tuple[Message, ...]:
        return (self.user,) if self.reply is None else (self.user, self.reply)
