"""Disk-based transcript store keyed by conversation identity (atomic, per-key locking)."""
from __future__ import annotations

import hashlib
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List

from utils.io import atomic_write_json, ensure_dir, read_json

from .errors import StorageUnavailable
from .models import Message

logger = logging.getLogger(__name__)


# -----------------------------
# Helpers
# -----------------------------
def _safe_identity(name: str) -> str:
    # Keep it readable but filesystem-safe; a digest keeps mapped names distinct.
    s = re.sub(r"[^\w.\-@]+", "_", name.strip() or "default")[:128]
    if s != name:
        s += "-" + hashlib.sha256(name.encode("utf-8")).hexdigest()[:10]
    return s


# -----------------------------
# TranscriptStore
# -----------------------------
class TranscriptStore:
    """JSON-file transcript store, one document per identity.

    Layout:
        data_dir/
          <identity>.json   # {"identity": str, "messages": list[dict]}

    Every mutation rewrites the identity's document through
    :func:`utils.io.atomic_write_json`, so a returned call has reached disk and
    a reader never sees half of a multi-message append.
    """

    def __init__(self, data_dir: str) -> None:
        self.root = Path(data_dir)
        try:
            ensure_dir(self.root)
        except OSError as e:
            raise StorageUnavailable(str(e), {"data_dir": str(self.root)}) from e
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # --------- paths / locks ----------
    def _path(self, identity: str) -> Path:
        return self.root / f"{_safe_identity(identity)}.json"

    def _lock_for(self, identity: str) -> threading.Lock:
        key = _safe_identity(identity)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # --------- core API ----------
    def exists(self, identity: str) -> bool:
        return self._path(identity).exists()

    def load(self, identity: str) -> List[Message]:
        """Load the ordered transcript for identity (empty if none)."""
        with self._lock_for(identity):
            return self._read(identity)

    def create(self, identity: str) -> bool:
        """Create an empty transcript if none exists. Returns True if created."""
        with self._lock_for(identity):
            if self._path(identity).exists():
                return False
            self._write(identity, [])
            logger.debug("created transcript for %s", identity)
            return True

    def append_one(self, identity: str, message: Message) -> None:
        self.append_many(identity, [message])

    def append_many(self, identity: str, messages: Iterable[Message]) -> None:
        """Append messages in order as a single durable unit.

        Messages whose id is already stored are skipped, so retrying an append
        that did commit is harmless.
        """
        batch = list(messages)
        with self._lock_for(identity):
            history = self._read(identity)
            seen = {m.id for m in history}
            fresh = [m for m in batch if m.id not in seen]
            if not fresh and self._path(identity).exists():
                return
            self._write(identity, history + fresh)

    def replace_with_empty(self, identity: str) -> None:
        with self._lock_for(identity):
            self._write(identity, [])

    def list_identities(self) -> List[str]:
        """Return all identities with a stored transcript."""
        out: List[str] = []
        for p in self.root.glob("*.json"):
            try:
                doc = read_json(p)
            except (OSError, ValueError):
                logger.warning("skipping unreadable transcript file %s", p)
                continue
            if isinstance(doc, dict):
                out.append(str(doc.get("identity") or p.stem))
        return sorted(out)

    # --------- internals ----------
    def _read(self, identity: str) -> List[Message]:
        path = self._path(identity)
        if not path.exists():
            return []
        try:
            doc = read_json(path)
        except OSError as e:
            raise StorageUnavailable(
                f"Failed to read transcript for {identity!r}: {e}", {"path": str(path)}
            ) from e
        except ValueError as e:
            raise StorageUnavailable(str(e), {"path": str(path)}) from e
        return self._decode(identity, path, doc)

    def _decode(self, identity: str, path: Path, doc: Any) -> List[Message]:
        if not isinstance(doc, dict) or not isinstance(doc.get("messages"), list):
            raise StorageUnavailable(
                f"Invalid transcript format for {identity!r}", {"path": str(path)}
            )
        try:
            return [Message.from_dict(m) for m in doc["messages"]]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageUnavailable(
                f"Corrupt message in transcript for {identity!r}: {e}", {"path": str(path)}
            ) from e

    def _write(self, identity: str, messages: List[Message]) -> None:
        path = self._path(identity)
        doc = {"identity": identity, "messages": [m.to_dict() for m in messages]}
        try:
            atomic_write_json(path, doc)
        except OSError as e:
            raise StorageUnavailable(
                f"Failed to write transcript for {identity!r}: {e}", {"path": str(path)}
            ) from e
