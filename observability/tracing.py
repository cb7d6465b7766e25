"""Stage timing records appended to a session's event log."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator


@contextmanager
def span(session, name: str) -> Iterator[Dict[str, Any]]:
    """Time one pipeline stage of ``session``.

    The record is appended to ``session.events`` whether or not the stage
    raises; ``ok`` is only set when the body completes. ``phase`` is the phase
    the stage started in.
    """

    record: Dict[str, Any] = {"span": name, "phase": session.current_phase, "ms": 0, "ok": False}
    start = time.perf_counter()
    try:
        yield record
        record["ok"] = True
    finally:
        record["ms"] = int((time.perf_counter() - start) * 1000)
        session.events.append(record)


__all__ = ["span"]
