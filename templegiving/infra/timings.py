# templegiving/infra/timings.py
from __future__ import annotations
import logging
import statistics
import time
from typing import Dict, List

from fastapi import FastAPI

log = logging.getLogger(__name__)

# ------------ hot path: append only ------------
# one list per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, List[float]] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    lst.append(float(value))


class timeit:
    """async usage:
        async with timeit("gateway.create_order"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)


# ------------ stats only at flush ------------

def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def summarize() -> List[Dict[str, float]]:
    out = []
    for kind, vals in sorted(_TIMINGS.items()):
        mean, std = _mean_std(vals)
        out.append({
            "kind": kind,
            "n": len(vals),
            "mean_ms": mean * 1000,
            "std_ms": std * 1000,
            "max_ms": max(vals) * 1000,
        })
    return out


def reset() -> None:
    _TIMINGS.clear()


def install_shutdown_flush(app: FastAPI):
    """Log one line per recorded kind when the app shuts down."""
    if not isinstance(app, FastAPI):
        return

    @app.on_event("shutdown")
    async def _flush_on_shutdown():
        for rec in summarize():
            log.info(
                "timing %s n=%d mean=%.1fms std=%.1fms max=%.1fms",
                rec["kind"], rec["n"], rec["mean_ms"], rec["std_ms"],
                rec["max_ms"],
            )
        reset()
