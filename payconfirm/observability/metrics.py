"""
Confirmation Metrics
--------------------
Lightweight Redis counters and a single snapshot consumed by /admin/metrics.
Every write is best-effort: the confirmation protocol must behave identically
whether or not Redis is reachable, so failures are logged and dropped here.
"""
from __future__ import annotations
import time
from typing import List, Tuple

from payconfirm.settings import settings
from payconfirm.store.redis_conn import get_redis
from payconfirm.observability.logging import log
from payconfirm.confirm.models import (
    SOURCE_PRIMARY, SOURCE_FALLBACK, SOURCE_NONE, PENDING, SUCCESS, FAILED, CANCELLED,
)

K_PROBES = "metrics:confirm:probes"                    # INCR
K_PROBE_OUTCOME = "metrics:confirm:probe:{source}:{status}"  # INCR
K_PROBE_LAT = "metrics:confirm:probe:latencies"        # LPUSH ms
K_TERMINAL = "metrics:confirm:terminal:{state}"        # INCR

_MAX_SAMPLES = 500

def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])

def _p50_p95(latencies_ms: List[float]) -> Tuple[float, float]:
    if not latencies_ms:
        return 0.0, 0.0
    return _percentile(latencies_ms, 0.50), _percentile(latencies_ms, 0.95)

async def record_probe(status: str, source: str, latency_ms: int) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        r = get_redis()
        async with r.pipeline(transaction=False) as pipe:
            pipe.incr(K_PROBES, 1)
            pipe.incr(K_PROBE_OUTCOME.format(source=source, status=status), 1)
            pipe.lpush(K_PROBE_LAT, int(latency_ms))
            pipe.ltrim(K_PROBE_LAT, 0, _MAX_SAMPLES - 1)
            await pipe.execute()
    except Exception as e:
        log(event="metrics_write_failed", metric="probe", error=str(e)[:200])

async def record_terminal(state: str) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        r = get_redis()
        await r.incr(K_TERMINAL.format(state=state), 1)
    except Exception as e:
        log(event="metrics_write_failed", metric="terminal", error=str(e)[:200])

async def get_metrics_snapshot() -> dict:
    """
    Shape:
      probes_total, probe_outcomes{source:{status:n}}, terminal{state:n},
      p50_probe_latency_ms, p95_probe_latency_ms, snapshot_at
    """
    out = {
        "enabled": bool(settings.METRICS_ENABLED),
        "probes_total": 0,
        "probe_outcomes": {},
        "terminal": {},
        "p50_probe_latency_ms": 0.0,
        "p95_probe_latency_ms": 0.0,
        "snapshot_at": int(time.time()),
    }
    if not settings.METRICS_ENABLED:
        return out

    try:
        r = get_redis()
        out["probes_total"] = int(await r.get(K_PROBES) or 0)
        for source in (SOURCE_PRIMARY, SOURCE_FALLBACK, SOURCE_NONE):
            out["probe_outcomes"][source] = {
                status: int(await r.get(K_PROBE_OUTCOME.format(source=source, status=status)) or 0)
                for status in (PENDING, SUCCESS, FAILED)
            }
        for state in (SUCCESS, FAILED, CANCELLED):
            out["terminal"][state] = int(await r.get(K_TERMINAL.format(state=state)) or 0)

        lat: List[float] = []
        for x in (await r.lrange(K_PROBE_LAT, 0, _MAX_SAMPLES - 1) or []):
            try:
                lat.append(float(x))
            except (TypeError, ValueError):
                continue
        p50, p95 = _p50_p95(lat)
        out["p50_probe_latency_ms"] = round(p50, 3)
        out["p95_probe_latency_ms"] = round(p95, 3)
    except Exception as e:
        log(event="metrics_read_failed", error=str(e)[:200])
        out["error"] = "metrics backend unavailable"
    return out
