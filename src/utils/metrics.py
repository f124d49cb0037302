"""Lightweight in-memory operation metrics, mirrored to the application log."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

LOGGER = logging.getLogger("preppal.metrics")

MAX_RECORDS = 500

_records: deque[dict[str, Any]] = deque(maxlen=MAX_RECORDS)
_lock = threading.Lock()


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat()


def log_metric(operation: str, elapsed_s: float, **meta: Any) -> None:
    """Record a single operation metric.

    Never raises; a metric failure must not interrupt the user flow.

    Args:
        operation: e.g. "extract", "ask", "practice", "glossary", "flashcards", "mindmap"
        elapsed_s: Wall-clock seconds the operation took.
        **meta: Arbitrary key-value pairs (e.g. pages=42, ok=False).
    """
    try:
        record = {
            "operation": operation,
            "elapsed_s": round(float(elapsed_s), 3),
            "meta": dict(meta),
            "created_at": _now_iso(),
        }
        with _lock:
            _records.append(record)
        LOGGER.info("%s took %.3fs %s", operation, record["elapsed_s"], meta or "")
    except Exception:  # noqa: BLE001
        pass


@contextmanager
def timed(operation: str, **meta: Any) -> Iterator[dict[str, Any]]:
    """Time the enclosed block and log it; callers may add to the yielded meta dict.

    A block that raises is recorded with ok=False and the exception propagates.
    """
    start = time.perf_counter()
    extra: dict[str, Any] = dict(meta)
    try:
        yield extra
    except Exception:
        extra["ok"] = False
        log_metric(operation, time.perf_counter() - start, **extra)
        raise
    extra.setdefault("ok", True)
    log_metric(operation, time.perf_counter() - start, **extra)


def get_recent_metrics(limit: int = 50) -> list[dict[str, Any]]:
    """Return the most recent *limit* metric records, newest first."""
    with _lock:
        items = list(_records)
    return [dict(r) for r in reversed(items[-max(1, limit):])]


def get_metrics_summary() -> dict[str, Any]:
    """Return per-operation counts and timings."""
    with _lock:
        items = list(_records)
    grouped: dict[str, list[dict[str, Any]]] = {}
    for r in items:
        grouped.setdefault(r["operation"], []).append(r)
    summary: dict[str, Any] = {}
    for operation, rows in sorted(grouped.items(), key=lambda kv: -len(kv[1])):
        times = [r["elapsed_s"] for r in rows]
        summary[operation] = {
            "total": len(rows),
            "failed": sum(1 for r in rows if r["meta"].get("ok") is False),
            "avg_s": round(sum(times) / len(times), 2),
            "min_s": round(min(times), 2),
            "max_s": round(max(times), 2),
            "last_at": rows[-1]["created_at"],
        }
    return summary


def clear_metrics() -> None:
    with _lock:
        _records.clear()
