"""Client Response Learner.

Keeps one exponentially weighted moving average of response time per
client and turns it into a follow-up delay.  Read-modify-write of a
client's statistic is serialised per ``(workspace, client)`` key through a
fixed pool of striped locks.
"""

from __future__ import annotations

import logging
import math
import threading

from stagewise import event_log
from stagewise.defaults import (
    CHASE_LEAD_FACTOR,
    DEFAULT_CHASE_DELAY_MS,
    EMA_ALPHA,
    MAX_CHASE_DELAY_MS,
    MAX_SAMPLE_COUNT,
    MIN_CHASE_DELAY_MS,
)
from stagewise.models import ClientResponseStat, Event, EventType, now_ms as _now_ms
from stagewise.projections._time import round_half_up

log = logging.getLogger("stagewise.client_response")

LOCK_STRIPES = 64


def ema_update(
    previous: ClientResponseStat | None,
    client_key: str,
    duration_ms: float,
    now_ms: int,
    workspace_id: str = "",
) -> ClientResponseStat:
    """Fold one sample into *previous* (or start a new statistic)."""
    if previous is not None and math.isfinite(previous.avg_ms) and previous.count >= 1:
        return ClientResponseStat(
            client_key=client_key,
            workspace_id=workspace_id,
            count=min(previous.count + 1, MAX_SAMPLE_COUNT),
            avg_ms=EMA_ALPHA * duration_ms + (1 - EMA_ALPHA) * previous.avg_ms,
            last_ms=duration_ms,
            updated_at=now_ms,
        )
    return ClientResponseStat(
        client_key=client_key,
        workspace_id=workspace_id,
        count=1,
        avg_ms=duration_ms,
        last_ms=duration_ms,
        updated_at=now_ms,
    )


def chase_delay_ms(stat: ClientResponseStat | None) -> int:
    """Follow up at 75% of the learned average, bounded to [24h, 72h]."""
    if stat is None or not math.isfinite(stat.avg_ms) or stat.avg_ms <= 0:
        return DEFAULT_CHASE_DELAY_MS
    target = round_half_up(CHASE_LEAD_FACTOR * stat.avg_ms)
    return max(MIN_CHASE_DELAY_MS, min(MAX_CHASE_DELAY_MS, target))


class ClientResponseLearner:
    """Persists per-client EMA statistics through the event log store."""

    def __init__(self, stripes: int = LOCK_STRIPES) -> None:
        # Fixed pool: a key always maps to the same lock, memory stays bounded
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]

    def _lock_for(self, workspace_id: str, client_key: str) -> threading.Lock:
        return self._locks[hash((workspace_id, client_key)) % len(self._locks)]

    def record_sample(
        self,
        workspace_id: str,
        client_key: str | None,
        duration_ms: float,
        *,
        now_ms: int | None = None,
    ) -> ClientResponseStat | None:
        """Record one observed response time.  Ignores unusable samples."""
        if not client_key or not math.isfinite(duration_ms) or duration_ms <= 0:
            return None
        workspace_id = workspace_id or ""
        now = _now_ms() if now_ms is None else now_ms
        with self._lock_for(workspace_id, client_key):
            previous = event_log.get_client_stat(workspace_id, client_key)
            stat = ema_update(previous, client_key, duration_ms, now, workspace_id)
            event_log.save_client_stat(stat)

        event_log.append(Event(
            event_type=EventType.RESPONSE_SAMPLE,
            workspace_id=workspace_id or None,
            company=client_key,
            payload={"company": client_key, "duration_ms": duration_ms, "avg_ms": stat.avg_ms},
        ))
        log.debug("Response sample for %s: %.0f ms (avg %.0f ms)", client_key, duration_ms, stat.avg_ms)
        return stat

    def recommended_chase_delay(self, workspace_id: str, client_key: str | None) -> int:
        if not client_key:
            return DEFAULT_CHASE_DELAY_MS
        return chase_delay_ms(event_log.get_client_stat(workspace_id or "", client_key))


default_learner = ClientResponseLearner()
