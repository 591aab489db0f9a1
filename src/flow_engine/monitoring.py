"""Monitoring utilities for the flow engine."""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, List, Optional


EXECUTIONS_STARTED = "executions_started_total"
EXECUTIONS_FINISHED = "executions_finished_total"
NODE_ATTEMPTS = "node_attempts_total"
NODE_DURATION = "node_duration_seconds"
STORE_WRITE_FAILURES = "store_write_failures_total"


class MetricsRecorder:
    """In-memory metrics recorder exposed through the monitoring API."""

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self.histograms: Dict[str, Dict[str, List[float]]] = defaultdict(dict)

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        labels_key = self._labels_key(labels)
        self.counters[name][labels_key] += value

    def observe(
        self, name: str, value: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        labels_key = self._labels_key(labels)
        bucket = self.histograms[name].setdefault(labels_key, [])
        bucket.append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        labels_key = self._labels_key(labels)
        return self.counters[name].get(labels_key, 0.0)

    def get_observations(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        return list(self.histograms[name].get(self._labels_key(labels), []))

    def snapshot(self) -> Dict[str, Any]:
        """Counters as-is, histograms summarised as count/sum/max"""
        histograms: Dict[str, Dict[str, Dict[str, float]]] = {}
        for name, series in self.histograms.items():
            histograms[name] = {
                labels: {
                    "count": len(values),
                    "sum": sum(values),
                    "max": max(values) if values else 0.0,
                }
                for labels, values in series.items()
            }
        return {
            "counters": {name: dict(series) for name, series in self.counters.items()},
            "histograms": histograms,
        }

    def _labels_key(self, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return "__no_labels__"
        sorted_items = sorted(labels.items())
        return "|".join(f"{k}={v}" for k, v in sorted_items)


class TracingManager:
    """Very small tracing helper producing structured logs."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("flow_engine.tracing")

    @contextmanager
    def span(self, name: str, **attrs: Any):
        start = time.monotonic()
        self.logger.debug(f"Span start: {name}", extra={"span": name, **attrs})
        try:
            yield
        finally:
            duration = time.monotonic() - start
            self.logger.debug(
                f"Span end: {name}", extra={"span": name, "duration": duration, **attrs}
            )


class EventLogger:
    """Structured event logger for workflow executions."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("flow_engine.events")

    def log(self, event: str, **payload: Any) -> None:
        details = " ".join(f"{key}={value}" for key, value in payload.items())
        self.logger.info(f"{event} {details}".rstrip(), extra={"event_payload": payload})
