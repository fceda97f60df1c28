"""
Prometheus metrics for retention safes.
"""

from typing import Any, Dict, Optional

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)


class SafeMetrics:
    """
    Metrics collector for a single retention safe.

    Every metric carries a ``safe`` label so several safes can share one
    registry.
    """

    def __init__(self, safe_label: str = "default", registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.safe_label = safe_label

        self.stores_total = Counter(
            'layersafe_stores_total',
            'Total number of file versions stored',
            ['safe'],
            registry=self.registry
        )
        self.store_failures_total = Counter(
            'layersafe_store_failures_total',
            'Total number of failed store operations',
            ['safe', 'error_type'],
            registry=self.registry
        )
        self.promotions_total = Counter(
            'layersafe_promotions_total',
            'Total number of file table promotions',
            ['safe'],
            registry=self.registry
        )
        self.draw_ups_total = Counter(
            'layersafe_draw_ups_total',
            'Total number of slot draw-ups',
            ['safe'],
            registry=self.registry
        )
        self.copies_deleted_total = Counter(
            'layersafe_copies_deleted_total',
            'Total number of stored copies deleted',
            ['safe'],
            registry=self.registry
        )
        self.tracked_files = Gauge(
            'layersafe_tracked_files',
            'Number of source files tracked by the safe',
            ['safe'],
            registry=self.registry
        )
        self.store_duration = Histogram(
            'layersafe_store_duration_seconds',
            'Time spent storing a file version',
            ['safe'],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=self.registry
        )

    def record_store(self, duration_seconds: float) -> None:
        self.stores_total.labels(safe=self.safe_label).inc()
        self.store_duration.labels(safe=self.safe_label).observe(duration_seconds)

    def record_store_failure(self, error: Exception) -> None:
        self.store_failures_total.labels(
            safe=self.safe_label,
            error_type=type(error).__name__
        ).inc()

    def record_promotion(self, draw_ups: int, copies_deleted: int) -> None:
        self.promotions_total.labels(safe=self.safe_label).inc()
        if draw_ups:
            self.draw_ups_total.labels(safe=self.safe_label).inc(draw_ups)
        if copies_deleted:
            self.record_copies_deleted(copies_deleted)

    def record_copies_deleted(self, count: int) -> None:
        self.copies_deleted_total.labels(safe=self.safe_label).inc(count)

    def set_tracked_files(self, count: int) -> None:
        self.tracked_files.labels(safe=self.safe_label).set(count)

    def get_value(self, name: str, **labels) -> float:
        """Current value of a sample, 0.0 if it has not been recorded yet."""
        labels.setdefault('safe', self.safe_label)
        value = self.registry.get_sample_value(name, labels)
        return value if value is not None else 0.0

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            'safe': self.safe_label,
            'stores': self.get_value('layersafe_stores_total'),
            'promotions': self.get_value('layersafe_promotions_total'),
            'draw_ups': self.get_value('layersafe_draw_ups_total'),
            'copies_deleted': self.get_value('layersafe_copies_deleted_total'),
            'tracked_files': self.get_value('layersafe_tracked_files'),
        }

    def export(self) -> bytes:
        """Text exposition of all metrics in the registry."""
        return generate_latest(self.registry)
