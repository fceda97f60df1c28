"""
Monitoring module for layersafe.

Provides Prometheus metrics for store, promotion and garbage collection
activity of retention safes.
"""

from .safe_metrics import SafeMetrics

__all__ = [
    'SafeMetrics',
]
