"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, List

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chat_actor.generation import GenerationClient  # noqa: E402


class ScriptedGenerator(GenerationClient):
    """Generation client that replies from a fixed payload and records queries.

    ``delay`` lets tests hold the backend open to provoke overlapping requests.
    """

    def __init__(self, payload: Any = "ok", *, delay: float = 0.0, timeout: float = 5.0) -> None:
        super().__init__(timeout=timeout)
        self.payload = payload
        self.delay = delay
        self.queries: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def _query(self, text: str) -> Any:
        self.queries.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(self.payload, BaseException):
                raise self.payload
            if callable(self.payload):
                return self.payload(text)
            return self.payload
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for transcripts during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    monkeypatch.delenv("CHAT_ACTOR_CONFIG", raising=False)
    for var in list(os.environ):
        if var.startswith("CHAT_ACTOR__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def echo_generator() -> ScriptedGenerator:
    return ScriptedGenerator(lambda text: {"response": f"echo: {text}"})
