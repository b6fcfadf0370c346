"""Clients for the retrieval-augmented generation backend.

The conversation core only sees :class:`GenerationClient.query`, which always
returns a :class:`GenerationResult`: either a payload (plain string or
structured mapping) or a failure with a reason. Adapters never raise for
backend errors.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from .errors import GenerationFailure, GenerationTimeout

logger = logging.getLogger(__name__)

# A plain string, a structured mapping, or any other JSON value.
Payload = Any

DEFAULT_TIMEOUT = 30.0


# -----------------------------
# Types
# -----------------------------

@dataclass(frozen=True)
class GenerationResult:
    """Tagged outcome of one generation call."""

    payload: Optional[Payload] = None
    reason: Optional[str] = None  # "timeout" | "error" when failed
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls, payload: Payload) -> "GenerationResult":
        return cls(payload=payload)

    @classmethod
    def failed(cls, exc: GenerationFailure) -> "GenerationResult":
        return cls(reason=exc.reason, detail=exc.message)


def _float(v: Any, default: float) -> float:
    if v is None or v == "":
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


# -----------------------------
# Base client
# -----------------------------

class GenerationClient:
    """Base class: subclasses implement :meth:`_query`; :meth:`query` enforces the timeout."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    async def _query(self, text: str) -> Payload:  # pragma: no cover - abstract
        raise NotImplementedError

    async def query(self, text: str, *, timeout: Optional[float] = None) -> GenerationResult:
        limit = self.timeout if timeout is None else timeout
        try:
            payload = await asyncio.wait_for(self._query(text), timeout=limit)
        except asyncio.TimeoutError:
            return GenerationResult.failed(GenerationTimeout(limit))
        except GenerationFailure as e:
            return GenerationResult.failed(e)
        except Exception as e:
            logger.debug("generation backend raised", exc_info=True)
            return GenerationResult.failed(GenerationFailure(f"{type(e).__name__}: {e}"))
        if payload is None:
            return GenerationResult.failed(GenerationFailure("generation backend returned no payload"))
        return GenerationResult.success(payload)

    async def aclose(self) -> None:
        return None


# -----------------------------
# Adapters
# -----------------------------

class CallableGenerationClient(GenerationClient):
    """Wrap a sync or async callable ``fn(text) -> payload``.

    Sync callables run in a worker thread so a slow backend does not block the
    event loop. A thread that overruns the timeout is abandoned, not killed.
    """

    def __init__(
        self,
        fn: Callable[[str], Union[Payload, Awaitable[Payload]]],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._fn = fn

    async def _query(self, text: str) -> Payload:
        if inspect.iscoroutinefunction(self._fn):
            return await self._fn(text)
        result = await asyncio.to_thread(self._fn, text)
        if inspect.isawaitable(result):
            return await result
        return result


class HttpGenerationClient(GenerationClient):
    """POST ``{"query": text}`` to a RAG search endpoint with :mod:`httpx`.

    Parameters
    ----------
    endpoint : str
        URL of the search/answer endpoint.
    index : str | None
        Optional RAG index name, sent as ``"index"`` alongside the query.
    api_key : str | None
        Sent as a bearer token when provided.
    headers : dict | None
        Extra request headers.
    transport : httpx.AsyncBaseTransport | None
        Injected transport (tests use :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        index: Optional[str] = None,
        api_key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.endpoint = endpoint
        self.index = index
        hdrs = {"Accept": "application/json, text/plain"}
        hdrs.update(headers or {})
        if api_key:
            hdrs["Authorization"] = f"Bearer {api_key}"
        # The overall deadline is enforced by query(); this only bounds connects.
        self._client = httpx.AsyncClient(
            headers=hdrs,
            timeout=httpx.Timeout(timeout, connect=min(5.0, timeout)),
            transport=transport,
        )

    async def _query(self, text: str) -> Payload:
        body: Dict[str, Any] = {"query": text}
        if self.index:
            body["index"] = self.index
        try:
            resp = await self._client.post(self.endpoint, json=body)
        except httpx.TimeoutException as e:
            raise GenerationTimeout(self.timeout) from e
        except httpx.HTTPError as e:
            raise GenerationFailure(f"request to {self.endpoint} failed: {e}") from e

        if resp.status_code >= 400:
            raise GenerationFailure(
                f"generation backend returned HTTP {resp.status_code}",
                {"status_code": resp.status_code, "body": resp.text[:500]},
            )

        ctype = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        if ctype == "application/json" or ctype.endswith("+json"):
            try:
                data = resp.json()
            except ValueError as e:
                raise GenerationFailure(f"invalid JSON from generation backend: {e}") from e
            return data
        return resp.text

    async def aclose(self) -> None:
        await self._client.aclose()


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> HttpGenerationClient:
    """Create an HttpGenerationClient from a config dict (e.g., loaded YAML)."""
    gen_cfg = (cfg or {}).get("generation", {}) if isinstance(cfg, dict) else {}
    endpoint = gen_cfg.get("endpoint")
    if not endpoint:
        raise RuntimeError("No generation.endpoint configured.")
    return HttpGenerationClient(
        str(endpoint),
        timeout=_float(gen_cfg.get("timeout_seconds"), DEFAULT_TIMEOUT),
        index=gen_cfg.get("index") or None,
        api_key=gen_cfg.get("api_key") or None,
        headers={str(k): str(v) for k, v in (gen_cfg.get("headers") or {}).items()},
    )
