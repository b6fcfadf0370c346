"""Per-conversation actor: the single writer of one identity's transcript.

Each :class:`ConversationActor` owns an ``asyncio.Lock``; ``append_user_message``
and ``clear`` hold it for their whole duration, so operations on one identity
run one at a time in arrival order while other identities proceed
independently. Store I/O runs in worker threads.

The in-memory snapshot is only replaced after the store has committed, so
``read`` never waits behind a slow generation call and never observes half of
an exchange.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from .errors import InvalidInput, StorageUnavailable
from .generation import GenerationClient, GenerationResult, Payload
from .models import ASSISTANT, USER, Exchange, Message, TranscriptSnapshot, now_ms
from .transcript import TranscriptStore

logger = logging.getLogger(__name__)

REPLY_FIELDS = ("response", "text", "message")


def normalize_reply(payload: Payload) -> str:
    """Reduce a generation payload to display text.

    Strings pass through verbatim. For mappings the first present field among
    ``response``, ``text``, ``message`` wins (normalized again, so nested
    envelopes unwrap). Anything else is serialized as JSON.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, Mapping):
        for key in REPLY_FIELDS:
            if payload.get(key) is not None:
                return normalize_reply(payload[key])
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(payload)


class ConversationActor:
    """Serialized owner of a single conversation transcript."""

    def __init__(
        self,
        identity: str,
        store: TranscriptStore,
        generator: GenerationClient,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.identity = identity
        self._store = store
        self._generator = generator
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._messages: Optional[TranscriptSnapshot] = None

    # --------- loading ----------
    async def _snapshot(self) -> TranscriptSnapshot:
        if self._messages is None:
            loaded = tuple(await asyncio.to_thread(self._store.load, self.identity))
            # A writer may have committed while we were loading; keep its view.
            if self._messages is None:
                self._messages = loaded
        return self._messages

    def _next_timestamp(self, history: TranscriptSnapshot) -> int:
        ts = now_ms()
        if history:
            ts = max(ts, history[-1].timestamp)
        return ts

    # --------- operations ----------
    async def init(self) -> TranscriptSnapshot:
        """Create the durable transcript if missing and return the current one."""
        async with self._lock:
            created = await asyncio.to_thread(self._store.create, self.identity)
            if created:
                logger.info("initialized conversation %s", self.identity)
            return await self._snapshot()

    async def read(self) -> TranscriptSnapshot:
        return await self._snapshot()

    async def append_user_message(self, text: str) -> Exchange:
        """Record ``text`` and the generated reply (or a failure marker).

        Raises :class:`InvalidInput` for blank text and
        :class:`StorageUnavailable` if the exchange could not be committed.
        Generation failures are not raised; they come back on the Exchange.
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Message cannot be empty.", {"identity": self.identity})

        async with self._lock:
            history = await self._snapshot()
            user = Message(text=text, origin=USER, timestamp=self._next_timestamp(history))

            result: GenerationResult = await self._generator.query(text, timeout=self._timeout)

            if result.ok:
                reply: Optional[Message] = Message(
                    text=normalize_reply(result.payload),
                    origin=ASSISTANT,
                    timestamp=max(now_ms(), user.timestamp),
                )
                batch = [user, reply]
            else:
                logger.warning(
                    "generation failed for %s (%s): %s", self.identity, result.reason, result.detail
                )
                user = user.with_failure(result.reason or "error", result.detail)
                reply = None
                batch = [user]

            try:
                await asyncio.to_thread(self._store.append_many, self.identity, batch)
            except StorageUnavailable:
                logger.exception("could not commit exchange for %s", self.identity)
                # Resync from disk on the next access.
                self._messages = None
                raise

            self._messages = history + tuple(batch)
            return Exchange(user=user, reply=reply)

    async def clear(self) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._store.replace_with_empty, self.identity)
            except StorageUnavailable:
                logger.exception("could not clear conversation %s", self.identity)
                self._messages = None
                raise
            self._messages = ()
            logger.info("cleared conversation %s", self.identity)


class ConversationRegistry:
    """Maps identities to their actors, created lazily and cached for the process lifetime.

    The registry is the entry point used by the HTTP layer; every call names
    its identity explicitly.
    """

    def __init__(
        self,
        store: TranscriptStore,
        generator: GenerationClient,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.timeout = timeout
        self._actors: Dict[str, ConversationActor] = {}

    def actor(self, identity: str) -> ConversationActor:
        # Runs without awaiting, so creation is atomic on the event loop.
        found = self._actors.get(identity)
        if found is None:
            found = self._actors[identity] = ConversationActor(
                identity, self.store, self.generator, timeout=self.timeout
            )
        return found

    def __len__(self) -> int:
        return len(self._actors)

    async def init(self, identity: str) -> TranscriptSnapshot:
        return await self.actor(identity).init()

    async def append_user_message(self, identity: str, text: str) -> Exchange:
        return await self.actor(identity).append_user_message(text)

    async def read(self, identity: str) -> TranscriptSnapshot:
        return await self.actor(identity).read()

    async def clear(self, identity: str) -> None:
        await self.actor(identity).clear()

    def stats(self) -> Dict[str, Any]:
        identities: List[str] = sorted(self._actors)
        return {"active": len(identities), "identities": identities}

    async def aclose(self) -> None:
        await self.generator.aclose()
