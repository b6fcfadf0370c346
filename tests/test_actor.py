from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from chat_actor.actor import ConversationRegistry, normalize_reply
from chat_actor.errors import InvalidInput, StorageUnavailable
from chat_actor.models import ASSISTANT, USER
from chat_actor.transcript import TranscriptStore
from conftest import ScriptedGenerator


def _registry(tmp_path: Path, generator: ScriptedGenerator, **kwargs) -> ConversationRegistry:
    return ConversationRegistry(TranscriptStore(str(tmp_path)), generator, **kwargs)


@pytest.mark.parametrize(
    "payload",
    [{"response": "hi"}, {"text": "hi"}, {"message": "hi"}, "hi"],
)
def test_normalize_reply_shapes(payload):
    assert normalize_reply(payload) == "hi"


def test_normalize_reply_precedence_and_fallback():
    assert normalize_reply({"message": "m", "text": "t", "response": "r"}) == "r"
    assert normalize_reply({"response": None, "text": "t"}) == "t"
    assert normalize_reply({"response": {"text": "nested"}}) == "nested"
    assert normalize_reply({"answer": 42}) == '{"answer": 42}'
    assert normalize_reply(["a", "b"]) == '["a", "b"]'


def test_structured_payload_is_stored_normalized(tmp_path: Path):
    registry = _registry(tmp_path, ScriptedGenerator({"response": "X is Y."}))

    async def scenario():
        await registry.init("C1")
        exchange = await registry.append_user_message("C1", "What is X?")
        return exchange, await registry.read("C1")

    exchange, transcript = asyncio.run(scenario())
    assert exchange.ok and exchange.failure is None
    assert [(m.origin, m.text) for m in transcript] == [
        (USER, "What is X?"),
        (ASSISTANT, "X is Y."),
    ]
    # Persisted record matches what readers see.
    stored = TranscriptStore(str(tmp_path)).load("C1")
    assert [m.text for m in stored] == ["What is X?", "X is Y."]
    assert stored[0].timestamp <= stored[1].timestamp


def test_clear_then_read_is_empty(tmp_path: Path):
    registry = _registry(tmp_path, ScriptedGenerator({"response": "X is Y."}))

    async def scenario():
        await registry.append_user_message("C1", "What is X?")
        await registry.clear("C1")
        return await registry.read("C1")

    assert asyncio.run(scenario()) == ()
    assert TranscriptStore(str(tmp_path)).load("C1") == []


def test_timeout_keeps_user_message_with_failure_marker(tmp_path: Path):
    registry = _registry(tmp_path, ScriptedGenerator("late", delay=1.0), timeout=0.05)

    async def scenario():
        exchange = await registry.append_user_message("C1", "ping")
        return exchange, await registry.read("C1")

    exchange, transcript = asyncio.run(scenario())
    assert exchange.reply is None
    assert exchange.failure is not None
    assert exchange.failure.reason == "timeout"
    assert exchange.failure.message_id == exchange.user.id
    assert len(transcript) == 1
    assert transcript[0].origin == USER and transcript[0].text == "ping"
    assert transcript[0].failure is not None


def test_backend_error_is_recoverable(tmp_path: Path):
    generator = ScriptedGenerator(RuntimeError("index offline"))
    registry = _registry(tmp_path, generator)

    async def scenario():
        first = await registry.append_user_message("C1", "one")
        generator.payload = "fine now"
        second = await registry.append_user_message("C1", "two")
        return first, second, await registry.read("C1")

    first, second, transcript = asyncio.run(scenario())
    assert first.failure is not None and first.failure.reason == "error"
    assert "index offline" in first.failure.detail
    assert second.ok
    assert [m.text for m in transcript] == ["one", "two", "fine now"]


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_text_is_rejected_without_side_effects(tmp_path: Path, text: str):
    generator = ScriptedGenerator()
    registry = _registry(tmp_path, generator)

    with pytest.raises(InvalidInput):
        asyncio.run(registry.append_user_message("C1", text))
    assert generator.queries == []
    assert not registry.store.exists("C1")


def test_init_is_idempotent(tmp_path: Path, echo_generator: ScriptedGenerator):
    registry = _registry(tmp_path, echo_generator)

    async def scenario():
        first = await registry.init("C1")
        await registry.append_user_message("C1", "hello")
        again = await registry.init("C1")
        return first, again

    first, again = asyncio.run(scenario())
    assert first == ()
    assert [m.text for m in again] == ["hello", "echo: hello"]
    assert registry.store.exists("C1")


def test_concurrent_appends_serialize_in_arrival_order(tmp_path: Path, echo_generator: ScriptedGenerator):
    echo_generator.delay = 0.01
    registry = _registry(tmp_path, echo_generator)
    texts = [f"q{i}" for i in range(8)]

    async def scenario():
        await asyncio.gather(*(registry.append_user_message("C1", t) for t in texts))
        return await registry.read("C1")

    transcript = asyncio.run(scenario())
    assert echo_generator.max_in_flight == 1
    assert [m.text for m in transcript] == [x for t in texts for x in (t, f"echo: {t}")]
    assert [m.origin for m in transcript] == [USER, ASSISTANT] * len(texts)
    stamps = [m.timestamp for m in transcript]
    assert stamps == sorted(stamps)


def test_identities_do_not_block_each_other(tmp_path: Path):
    generator = ScriptedGenerator("ok", delay=0.2)
    registry = _registry(tmp_path, generator)

    async def scenario():
        await asyncio.gather(*(registry.append_user_message(f"C{i}", "hi") for i in range(4)))

    asyncio.run(scenario())
    assert generator.max_in_flight == 4
    assert len(registry) == 4
    for i in range(4):
        assert [m.text for m in registry.store.load(f"C{i}")] == ["hi", "ok"]


def test_clear_waits_for_in_flight_append(tmp_path: Path):
    generator = ScriptedGenerator("reply", delay=0.05)
    registry = _registry(tmp_path, generator)

    async def scenario():
        append = asyncio.create_task(registry.append_user_message("C1", "before"))
        await asyncio.sleep(0.01)
        clear = asyncio.create_task(registry.clear("C1"))
        late = asyncio.create_task(registry.append_user_message("C1", "after"))
        await asyncio.gather(append, clear, late)
        return await registry.read("C1")

    transcript = asyncio.run(scenario())
    assert [m.text for m in transcript] == ["after", "reply"]


def test_read_does_not_wait_for_generation(tmp_path: Path):
    generator = ScriptedGenerator("slow", delay=0.3)
    registry = _registry(tmp_path, generator)

    async def scenario():
        append = asyncio.create_task(registry.append_user_message("C1", "hello"))
        await asyncio.sleep(0.05)
        during = await asyncio.wait_for(registry.read("C1"), timeout=0.2)
        await append
        return during, await registry.read("C1")

    during, after = asyncio.run(scenario())
    # Nothing is visible until the whole exchange has committed.
    assert during == ()
    assert [m.text for m in after] == ["hello", "slow"]


def test_storage_failure_is_reported_and_queue_continues(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    registry = _registry(tmp_path, ScriptedGenerator("ok"))
    store = registry.store
    real_append = store.append_many
    calls = {"n": 0}

    def flaky(identity, messages):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StorageUnavailable("disk unavailable")
        return real_append(identity, messages)

    monkeypatch.setattr(store, "append_many", flaky)

    async def scenario():
        with pytest.raises(StorageUnavailable):
            await registry.append_user_message("C1", "lost")
        await registry.append_user_message("C1", "kept")
        return await registry.read("C1")

    transcript = asyncio.run(scenario())
    assert [m.text for m in transcript] == ["kept", "ok"]


def test_transcript_survives_restart(tmp_path: Path):
    first = _registry(tmp_path, ScriptedGenerator({"text": "answer"}))
    asyncio.run(first.append_user_message("C1", "question"))

    second = _registry(tmp_path, ScriptedGenerator())
    transcript = asyncio.run(second.read("C1"))
    assert [(m.origin, m.text) for m in transcript] == [(USER, "question"), (ASSISTANT, "answer")]
