"""
Aggregate field metrics for the PRU lattice.

Provides the summary readout consumed by status displays:
- Average / min / max local density
- Average curvature proxy
- Archetype counts
- Bounded history of average density
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional, Tuple
import numpy as np

from ..core.lattice import Lattice
from ..astro.formation import Classification


@dataclass(frozen=True)
class FieldMetrics:
    """Field summary of one tick."""
    avg_density: float = 0.0
    min_density: float = 0.0
    max_density: float = 0.0
    avg_curvature: float = 0.0
    archetype_counts: Dict[str, int] = field(default_factory=dict)
    density_history: Tuple[float, ...] = ()


def summarize_fields(local_density: np.ndarray, curvature_proxy: np.ndarray) -> Dict[str, float]:
    """Mean/min/max density and mean curvature; zeros for an empty array."""
    density = np.asarray(local_density)
    curvature = np.asarray(curvature_proxy)
    if density.size == 0:
        return {"avg_density": 0.0, "min_density": 0.0, "max_density": 0.0, "avg_curvature": 0.0}
    return {
        "avg_density": float(np.mean(density)),
        "min_density": float(np.min(density)),
        "max_density": float(np.max(density)),
        "avg_curvature": float(np.mean(curvature)),
    }


class MetricsCalculator:
    """
    Rolling field-metrics tracker.

    Example:
        metrics = MetricsCalculator(history_length=32)
        latest = metrics.update(lattice, classification)
        print(latest.avg_density, latest.density_history[-1])
    """

    def __init__(self, history_length: int = 32):
        self.history_length = history_length
        self._density_history: Deque[float] = deque(maxlen=history_length)
        self._latest = FieldMetrics()

    @property
    def latest(self) -> FieldMetrics:
        return self._latest

    def update(self, lattice: Lattice, classification: Optional[Classification] = None) -> FieldMetrics:
        """Compute metrics from the lattice's current derived fields."""
        stats = summarize_fields(lattice.local_density, lattice.curvature_proxy)
        self._density_history.append(stats["avg_density"])
        counts = classification.counts() if classification is not None else {}

        self._latest = FieldMetrics(
            archetype_counts=counts,
            density_history=tuple(self._density_history),
            **stats,
        )
        return self._latest

    def reset(self) -> None:
        self._density_history.clear()
        self._latest = FieldMetrics()
