"""In-process metrics collector.

One instance is created per application (see ``main.create_app``) and handed
to the components that record metrics.
"""
import time
from typing import Any, Callable, Dict, Optional


class MetricsCollector:
    """Counter/timing metrics keyed by name and tags."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._metrics: Dict[str, Dict[str, Any]] = {}
        self.start_time = clock()
        self.last_reset_time = self.start_time

    @staticmethod
    def metric_key(name: str, tags: Optional[Dict[str, Any]] = None) -> str:
        if not tags:
            return name
        tag_string = ",".join(f"{key}:{tags[key]}" for key in sorted(tags))
        return f"{name}[{tag_string}]"

    def capture(self, name: str, value: float = 1, tags: Optional[Dict[str, Any]] = None) -> None:
        key = self.metric_key(name, tags)
        metric = self._metrics.get(key)
        if metric is None:
            metric = {
                "count": 0,
                "sum": 0.0,
                "min": value,
                "max": value,
                "tags": dict(tags or {}),
            }
            self._metrics[key] = metric

        metric["count"] += 1
        metric["sum"] += value
        metric["min"] = min(metric["min"], value)
        metric["max"] = max(metric["max"], value)
        metric["lastUpdate"] = self._clock()

    def get(self, name: str, tags: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        metric = self._metrics.get(self.metric_key(name, tags))
        if metric is None:
            return None
        return self._with_average(metric)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {key: self._with_average(metric) for key, metric in self._metrics.items()}

    def reset(self) -> None:
        self._metrics.clear()
        self.last_reset_time = self._clock()

    def uptime(self) -> float:
        return self._clock() - self.start_time

    @staticmethod
    def _with_average(metric: Dict[str, Any]) -> Dict[str, Any]:
        average = metric["sum"] / metric["count"] if metric["count"] else 0
        return {**metric, "average": average}
