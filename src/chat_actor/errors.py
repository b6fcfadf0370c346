"""Exception taxonomy for the conversation core."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ChatActorError(Exception):
    """Base exception for the conversation core."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidInput(ChatActorError):
    """Raised when user text is rejected before any mutation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "INVALID_INPUT", details)


class GenerationFailure(ChatActorError):
    """A generation attempt produced no reply."""

    reason = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "GENERATION_FAILED", details)


class GenerationTimeout(GenerationFailure):
    """The generation backend did not answer within the configured timeout."""

    reason = "timeout"

    def __init__(self, timeout: float) -> None:
        ChatActorError.__init__(
            self,
            f"generation timed out after {timeout:g}s",
            "GENERATION_TIMEOUT",
            {"timeout": timeout},
        )


class StorageUnavailable(ChatActorError):
    """Raised when a transcript cannot be loaded or written."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "STORAGE_UNAVAILABLE", details)
