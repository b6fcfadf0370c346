"""Conversation actor core with a small FastAPI front end.

Typical usage
-------------
from chat_actor import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .actor import ConversationActor, ConversationRegistry, normalize_reply
from .errors import ChatActorError, GenerationFailure, GenerationTimeout, InvalidInput, StorageUnavailable
from .generation import CallableGenerationClient, GenerationClient, GenerationResult, HttpGenerationClient
from .models import Exchange, FailureMarker, Message
from .server import create_app
from .transcript import TranscriptStore

__all__ = [
    "create_app",
    "__version__",
    "get_version",
    "ConversationActor",
    "ConversationRegistry",
    "normalize_reply",
    "TranscriptStore",
    "GenerationClient",
    "GenerationResult",
    "CallableGenerationClient",
    "HttpGenerationClient",
    "Message",
    "Exchange",
    "FailureMarker",
    "ChatActorError",
    "InvalidInput",
    "GenerationFailure",
    "GenerationTimeout",
    "StorageUnavailable",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
