"""FastAPI application routing chat requests to per-conversation actors."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .actor import ConversationRegistry
from .config import configure_logging, load_config
from .errors import ChatActorError, InvalidInput, StorageUnavailable
from .generation import DEFAULT_TIMEOUT, GenerationClient, create_from_config
from .models import TranscriptSnapshot
from .transcript import TranscriptStore

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class InitRequest(BaseModel):
    name: Optional[str] = Field(default=None, description="Conversation name; defaults to the configured one.")


class PostMessageRequest(BaseModel):
    text: str


class FailureOut(BaseModel):
    message_id: str
    reason: str
    detail: str = ""


class MessageOut(BaseModel):
    id: str
    text: str
    timestamp: int
    origin: str
    failure: Optional[FailureOut] = None


class InitResponse(BaseModel):
    id: str
    messages: List[MessageOut]


class TranscriptResponse(BaseModel):
    messages: List[MessageOut]


class ExchangeResponse(BaseModel):
    messages: List[MessageOut]
    failure: Optional[FailureOut] = None


class AckResponse(BaseModel):
    ok: bool = True


# -----------------------------
# Utilities
# -----------------------------
_STATUS_BY_ERROR = {InvalidInput: 400, StorageUnavailable: 503}


def _out(messages: TranscriptSnapshot) -> List[MessageOut]:
    return [MessageOut(**m.to_dict()) for m in messages]


def _make_store(cfg: Dict[str, Any]) -> TranscriptStore:
    storage_cfg = cfg.get("storage", {})
    return TranscriptStore(storage_cfg.get("data_dir") or "data/transcripts")


def _timeout(cfg: Dict[str, Any]) -> float:
    value = cfg.get("generation", {}).get("timeout_seconds")
    return float(value) if value is not None else DEFAULT_TIMEOUT


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    store: Optional[TranscriptStore] = None,
    generator: Optional[GenerationClient] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    configure_logging(cfg)

    server_cfg = cfg.get("server", {})
    cors_origins = server_cfg.get("cors_origins", ["*"])
    default_name = str(server_cfg.get("default_conversation") or "chat")

    # Services
    store = store or _make_store(cfg)
    generator = generator or create_from_config(cfg)
    registry = ConversationRegistry(store, generator, timeout=_timeout(cfg))

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info("serving transcripts from %s", store.root)
        yield
        await registry.aclose()

    app = FastAPI(title="Chat Actor Server", version="0.1.0", lifespan=lifespan)
    app.state.registry = registry
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatActorError)
    async def chat_error(_request: Request, exc: ChatActorError) -> JSONResponse:
        status = _STATUS_BY_ERROR.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error_code": exc.error_code, "message": exc.message, "details": exc.details},
        )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "data_dir": str(store.root),
            "conversations": registry.stats()["active"],
        }

    @app.post("/chat/init", response_model=InitResponse)
    async def init_chat(req: Optional[InitRequest] = None):
        identity = (req.name if req and req.name else default_name).strip() or default_name
        messages = await registry.init(identity)
        return InitResponse(id=identity, messages=_out(messages))

    @app.get("/chat/{conversation_id}", response_model=TranscriptResponse)
    async def read_chat(conversation_id: str):
        return TranscriptResponse(messages=_out(await registry.read(conversation_id)))

    @app.post("/chat/{conversation_id}", response_model=ExchangeResponse)
    async def post_message(conversation_id: str, req: PostMessageRequest):
        exchange = await registry.append_user_message(conversation_id, req.text)
        failure = exchange.failure
        return ExchangeResponse(
            messages=_out(exchange.messages),
            failure=FailureOut(**failure.to_dict()) if failure else None,
        )

    @app.delete("/chat/{conversation_id}", response_model=AckResponse)
    async def clear_chat(conversation_id: str):
        await registry.clear(conversation_id)
        return AckResponse()

    return app
