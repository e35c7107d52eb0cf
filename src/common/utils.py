"""
utils.py
Shared helpers for the vitals relay.

Contains:
- consistent logging setup (one stdout handler per named logger).
- exponential backoff generator for reconnect loops.
- epoch/ISO time helpers.
- small in-memory metrics counters.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Iterator

from common import config

# --- Logging setup ----------------------------------------------------------
def get_logger(name: str = "relay") -> logging.Logger:
    """
    Return a logger whose level comes from config.LOG_LEVEL.
    Keeps exactly one formatted StreamHandler bound to stdout, so calling
    get_logger several times for the same name never duplicates output.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        for h in list(logger.handlers):
            logger.removeHandler(h)

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logger.setLevel(level)

    handler = logging.StreamHandler(stream=sys.stdout)
    fmt = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    handler.setLevel(level)

    logger.addHandler(handler)
    logger.propagate = False

    logging.captureWarnings(True)

    return logger


# --- Time helpers ----------------------------------------------------------
def epoch_to_iso(ts: float) -> str:
    """Epoch seconds to ISO8601 UTC (seconds precision)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")

# --- Backoff helpers --------------------------------------------------------
def exponential_backoff(base: float = 1.0, factor: float = 2.0, max_delay: float = 60.0) -> Iterator[float]:
    """
    Infinite generator of delays: base, base*factor, base*factor^2, ... up to max_delay.
    Usage: for delay in exponential_backoff(...): sleep(delay); try again
    """
    attempt = 0
    while True:
        delay = min(base * (factor ** attempt), max_delay)
        yield delay
        attempt += 1


# --- Simple metrics --------------------------------------------------------
class SimpleMetrics:
    """
    In-memory counters. Not persistent; every writer runs on the owning
    peer's event loop so no locking is done.
    """
    def __init__(self) -> None:
        self.counters: Dict[str, int] = {}

    def incr(self, name: str, amount: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + amount

    def get_counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def snapshot(self) -> Dict[str, Any]:
        return {"counters": dict(self.counters)}

# --- Utility helpers ------------------------------------------------------
def pretty_json(obj: Any) -> str:
    """Pretty JSON for debug logs; falls back to str() for non-serialisable objects."""
    try:
        return json.dumps(obj, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(obj)
