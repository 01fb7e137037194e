"""Per-route request metrics kept in process memory.

`/metrics` で参照する簡易集計。ルート（"METHOD /path"）ごとに
直近のレイテンシ窓と、ステータスクラス別の件数を保持する。
"""

from __future__ import annotations

import math
import threading
from collections import Counter, deque
from dataclasses import dataclass, field


_LATENCY_WINDOW = 200


def status_class(status_code: int | None) -> str:
    """500 -> "5xx". None (no response produced) counts as a server error."""

    if status_code is None:
        return "5xx"
    return f"{status_code // 100}xx"


def percentile(values: list[float], pct: float) -> float:
    """Nearest-rank percentile; 0.0 for an empty window."""

    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


@dataclass
class RouteStats:
    latencies_ms: deque[float] = field(default_factory=lambda: deque(maxlen=_LATENCY_WINDOW))
    statuses: Counter[str] = field(default_factory=Counter)

    @property
    def count(self) -> int:
        return sum(self.statuses.values())

    def as_dict(self) -> dict[str, object]:
        window = list(self.latencies_ms)
        return {
            "count": self.count,
            "errors": self.statuses.get("5xx", 0),
            "p50_ms": round(percentile(window, 50), 2),
            "p95_ms": round(percentile(window, 95), 2),
            "status": dict(sorted(self.statuses.items())),
        }


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: dict[str, RouteStats] = {}

    def record(self, route: str, latency_ms: float, status_code: int | None) -> None:
        with self._lock:
            stats = self._routes.setdefault(route, RouteStats())
            stats.latencies_ms.append(latency_ms)
            stats.statuses[status_class(status_code)] += 1

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {route: stats.as_dict() for route, stats in sorted(self._routes.items())}

    def reset(self) -> None:
        with self._lock:
            self._routes.clear()


registry = MetricsRegistry()
