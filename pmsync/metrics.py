from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock

OUTCOMES = ("ok", "gateway_error", "http_error", "unreachable")


def statement_kind(sql: str) -> str:
  head = " ".join((sql or "").split()).upper()
  # Guarded inserts start with IF NOT EXISTS (SELECT ...).
  if head.startswith("IF NOT EXISTS") and " INSERT INTO " in head:
    return "insert"
  for kind in ("select", "insert", "update", "delete"):
    if head.startswith(kind.upper()):
      return kind
  return "other"


@dataclass
class GatewayCall:
  ts: datetime
  kind: str
  outcome: str
  latency_ms: float


class GatewayMetrics:
  """Gateway round trips over a sliding window, split by statement kind and outcome."""

  def __init__(self, window: timedelta = timedelta(hours=24)) -> None:
    self.window = window
    self._calls: deque[GatewayCall] = deque()
    self._retries: Counter[str] = Counter()
    self._last_error: dict | None = None
    self._lock = Lock()

  def observe(self, kind: str, outcome: str, latency_ms: float, *, error: str | None = None) -> None:
    if outcome not in OUTCOMES:
      raise ValueError(f"Unknown outcome: {outcome}")
    now = datetime.now(timezone.utc)
    with self._lock:
      self._calls.append(GatewayCall(ts=now, kind=kind, outcome=outcome, latency_ms=latency_ms))
      if outcome != "ok":
        self._last_error = {"at": now.isoformat(), "kind": kind, "outcome": outcome, "message": (error or "")[:300]}
      cutoff = now - self.window
      while self._calls and self._calls[0].ts < cutoff:
        self._calls.popleft()

  def record_retry(self, kind: str) -> None:
    with self._lock:
      self._retries[kind] += 1

  def snapshot(self) -> dict:
    cutoff = datetime.now(timezone.utc) - self.window
    with self._lock:
      calls = [c for c in self._calls if c.ts >= cutoff]
      retries = dict(self._retries)
      last_error = dict(self._last_error) if self._last_error else None

    by_kind: dict[str, dict[str, int]] = {}
    for c in calls:
      entry = by_kind.setdefault(c.kind, {"count": 0, "errors": 0})
      entry["count"] += 1
      if c.outcome != "ok":
        entry["errors"] += 1
    outcomes = Counter(c.outcome for c in calls)
    latencies = sorted(c.latency_ms for c in calls if c.outcome != "unreachable")
    p95 = latencies[min(len(latencies) - 1, int(len(latencies) * 0.95))] if latencies else 0.0

    return {
      "windowSeconds": int(self.window.total_seconds()),
      "requests": len(calls),
      "byKind": by_kind,
      "outcomes": {o: outcomes.get(o, 0) for o in OUTCOMES},
      "retries": sum(retries.values()),
      "retriesByKind": retries,
      "p95LatencyMs": round(p95, 2),
      "lastError": last_error,
    }
