"""
Analysis module for the PRU sandbox.

- Metrics: average/min/max density, average curvature, archetype counts,
  bounded density history
"""

from .metrics import FieldMetrics, MetricsCalculator, summarize_fields

__all__ = [
    "FieldMetrics",
    "MetricsCalculator",
    "summarize_fields",
]
