"""In-process latency samples for gateway calls and store transactions.

Samples are appended on the hot path and only summarised when asked
(or when the app shuts down).
"""
from __future__ import annotations

import statistics
import time
from collections import defaultdict
from typing import Any, DefaultDict, Dict, List

from fastapi import FastAPI
from loguru import logger

# single event loop: plain lists, no locks
_SAMPLES: DefaultDict[str, List[float]] = defaultdict(list)


def record_timing(kind: str, seconds: float) -> None:
    _SAMPLES[kind].append(float(seconds))


class timeit:
    """async with timeit("store.promote"): ..."""

    __slots__ = ("kind", "_started")

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._started = 0.0

    async def __aenter__(self) -> "timeit":
        self._started = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        # failures are timed too; a slow timeout is still a slow call
        record_timing(self.kind, time.perf_counter() - self._started)


def _summary(kind: str, values: List[float]) -> Dict[str, Any]:
    ordered = sorted(values)
    p95 = ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]
    return {
        "kind": kind,
        "n": len(values),
        "mean": statistics.fmean(values),
        "std": statistics.stdev(values) if len(values) > 1 else 0.0,
        "p95": p95,
    }


def aggregates() -> List[Dict[str, Any]]:
    return [_summary(k, v) for k, v in sorted(_SAMPLES.items()) if v]


def reset() -> None:
    _SAMPLES.clear()


def install_shutdown_flush(app: FastAPI) -> None:
    """Log per-kind timing aggregates when the app shuts down."""

    @app.on_event("shutdown")
    async def _flush_on_shutdown():
        for rec in aggregates():
            logger.info(
                "timing {kind}: n={n} mean={mean:.4f}s p95={p95:.4f}s "
                "std={std:.4f}s",
                **rec,
            )
        reset()
