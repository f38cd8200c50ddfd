"""
Energy diagnostics for the gravity model.

    kinetic   = sum_i 0.5 * m_i * |v_i|^2
    potential = -sum_{i<j} G * m_i * m_j / sqrt(|x_j - x_i|^2 + s^2)
    total     = kinetic + potential
    drift     = (total - initial_total) / |initial_total|

The potential is always the full pairwise sum, whichever force strategy is
active, so drift measures the integrator against the exact model. The
baseline is captured on the first measurement after a reset. Values are
recomputed from scratch every tick and NaN/Inf pass through untouched.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Optional
import numpy as np
from numba import jit

from .lattice import Lattice, kinetic_energy_per_cell
from .gravity import GravityConfig


@dataclass(frozen=True)
class EnergyMetrics:
    """Energy readout of one tick."""
    kinetic: float = 0.0
    potential: float = 0.0
    total: float = 0.0
    initial_total: Optional[float] = None
    drift_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


@jit(nopython=True, cache=True)
def _pairwise_potential(positions, masses, G, softening2):
    n = positions.shape[0]
    potential = 0.0
    for i in range(n):
        for j in range(i + 1, n):
            dx = positions[j, 0] - positions[i, 0]
            dy = positions[j, 1] - positions[i, 1]
            dz = positions[j, 2] - positions[i, 2]
            r2 = dx * dx + dy * dy + dz * dz + softening2
            potential -= G * (masses[i] * masses[j]) / np.sqrt(r2)
    return potential


def kinetic_energy(lattice: Lattice) -> float:
    """Total kinetic energy of the lattice."""
    return float(np.sum(kinetic_energy_per_cell(lattice)))


def potential_energy(lattice: Lattice, config: GravityConfig) -> float:
    """Softened pairwise potential energy over all unordered pairs."""
    return float(_pairwise_potential(
        np.array(lattice.positions, dtype=np.float64),
        np.array(lattice.masses, dtype=np.float64),
        float(config.G),
        float(config.softening) * float(config.softening),
    ))


def drift_ratio(total: float, initial_total: float) -> float:
    """Relative deviation from the baseline; 0 when the baseline is 0."""
    if initial_total == 0:
        return 0.0
    return (total - initial_total) / abs(initial_total)


class EnergyDiagnostics:
    """
    Energy stage of the tick pipeline.

    Purely observational: nothing here feeds back into the solver.

    Example:
        diagnostics = EnergyDiagnostics()
        metrics = diagnostics.measure(lattice, gravity_config)
        print(metrics.total, metrics.drift_ratio)
    """

    def __init__(self):
        self._initial_total: Optional[float] = None
        self._latest = EnergyMetrics()

    @property
    def initial_total(self) -> Optional[float]:
        return self._initial_total

    @property
    def latest(self) -> EnergyMetrics:
        """Metrics from the most recent measurement."""
        return self._latest

    def reset(self) -> None:
        """Forget the baseline; the next measurement captures a new one."""
        self._initial_total = None

    def measure(self, lattice: Lattice, config: GravityConfig) -> EnergyMetrics:
        """Recompute all energy terms from the current lattice state."""
        kinetic = kinetic_energy(lattice)
        potential = potential_energy(lattice, config)
        total = kinetic + potential

        if self._initial_total is None:
            self._initial_total = total

        self._latest = EnergyMetrics(
            kinetic=kinetic,
            potential=potential,
            total=total,
            initial_total=self._initial_total,
            drift_ratio=drift_ratio(total, self._initial_total),
        )
        return self._latest
