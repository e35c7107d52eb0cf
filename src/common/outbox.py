from __future__ import annotations

import json
import os
import tempfile
from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from common import utils

logger = utils.get_logger("common.outbox")


class Outbox:
    """
    Durable FIFO of payloads awaiting deferred delivery.

    Every mutation rewrites the whole queue atomically (tmp + rename) when a
    persist file is configured; without one the queue lives in memory only.
    Entries leave the queue only through pop()/drain(), i.e. after the caller
    has handed them to the peer.
    """

    def __init__(self, persist_file: Optional[str] = None):
        self.persist_file = persist_file
        self._lock = Lock()
        self._items: Deque[Dict[str, Any]] = deque()

        if self.persist_file and os.path.exists(self.persist_file):
            try:
                self.load_from_file(self.persist_file)
                logger.info("Loaded %d deferred payload(s) from %s", len(self._items), self.persist_file)
            except (OSError, ValueError):
                logger.exception("Failed to load outbox from %s; starting empty", self.persist_file)

    # --- Persistence helpers -----------------------------------------------
    def _atomic_write(self, path: str, data: str) -> None:
        """Write data to path atomically (tmp + rename)."""
        dirn = os.path.dirname(path) or "."
        os.makedirs(dirn, exist_ok=True)
        fd, tmppath = tempfile.mkstemp(prefix="outbox-", dir=dirn, text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmppath, path)
        except Exception:
            try:
                os.remove(tmppath)
            except OSError:
                pass
            raise

    def _save(self) -> None:
        if not self.persist_file:
            return
        with self._lock:
            data = json.dumps({"pending": list(self._items)}, ensure_ascii=False)
        self._atomic_write(self.persist_file, data)

    def load_from_file(self, path: Optional[str] = None) -> None:
        p = path or self.persist_file
        if not p or not os.path.exists(p):
            raise ValueError("Outbox file not found")
        with open(p, "r", encoding="utf-8") as f:
            stored = json.load(f)
        pending = stored.get("pending", []) if isinstance(stored, dict) else []
        with self._lock:
            self._items = deque(item for item in pending if isinstance(item, dict))

    # --- Queue operations ----------------------------------------------------
    def append(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._items.append(dict(payload))
        self._save()
        logger.debug("Outbox queued payload (pending=%d)", len(self))

    def peek(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._items[0]) if self._items else None

    def pop(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._items.popleft() if self._items else None
        if item is not None:
            self._save()
        return item

    def snapshot(self) -> List[Dict[str, Any]]:
        """Copy of the pending payloads, oldest first."""
        with self._lock:
            return [dict(item) for item in self._items]

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every pending payload in FIFO order."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        if items:
            self._save()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
