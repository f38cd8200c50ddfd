"""
Gravity for the PRU lattice.

Every cell is a point mass m_i = ua_i at its continuous position x_i. The
pair force exerted on i by j is

    F_ij = G * m_i * m_j * (x_j - x_i) / (|x_j - x_i|^2 + s^2)^(3/2)

with softening length s > 0, so coincident cells never divide by zero.

Two interchangeable strategies sum these pair forces:
- NaivePairwise: every unordered pair, O(N^2). Ground truth.
- LatticeKernel: only the precomputed neighbour stencil, O(N*k). A scaling
  approximation, not convergent to NaivePairwise; both are kept so they can
  be compared side by side at runtime.

Both accumulate per cell in increasing neighbour index order. With a stencil
that covers every pair the two strategies produce bit-identical forces.

Motion is integrated with semi-implicit Euler:
    v += (F/m)*dt - damping*v*dt
    x += v*dt
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import numpy as np
from numba import jit

from .lattice import Lattice
from ..errors import ConfigurationError


class GravityMode(Enum):
    """Force-summation strategy."""
    NAIVE_PAIRWISE = "naive_pairwise"   # All pairs, O(N^2)
    LATTICE_KERNEL = "lattice_kernel"   # Neighbour stencil, O(N*k)


@dataclass(frozen=True)
class GravityConfig:
    """
    Gravity parameters, validated on construction.

    Instances are immutable; control commands build a replacement with
    dataclasses.replace so an invalid update never touches the active config.
    """
    mode: GravityMode = GravityMode.NAIVE_PAIRWISE
    enabled: bool = True
    G: float = 0.6                            # Effective gravitational constant
    damping: float = 0.01                     # Velocity damping rate (>= 0)
    softening: float = 0.25                   # Softening length (> 0)
    max_acceleration: Optional[float] = None  # Clamp on |a|, None = off

    def __post_init__(self):
        if isinstance(self.mode, str):
            object.__setattr__(self, "mode", GravityMode(self.mode))
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError on any invalid parameter."""
        if not np.isfinite(self.G) or self.G < 0:
            raise ConfigurationError(f"G must be finite and non-negative, got {self.G}")
        if not np.isfinite(self.damping) or self.damping < 0:
            raise ConfigurationError(f"damping must be finite and non-negative, got {self.damping}")
        if not np.isfinite(self.softening) or self.softening <= 0:
            raise ConfigurationError(f"softening must be positive, got {self.softening}")
        if self.max_acceleration is not None and not self.max_acceleration > 0:
            raise ConfigurationError(
                f"max_acceleration must be positive or None, got {self.max_acceleration}"
            )


@jit(nopython=True, cache=True)
def _pairwise_forces(positions, masses, G, softening2):
    """Sum F_ij over every unordered pair i < j."""
    n = positions.shape[0]
    forces = np.zeros((n, 3))
    for i in range(n):
        for j in range(i + 1, n):
            dx = positions[j, 0] - positions[i, 0]
            dy = positions[j, 1] - positions[i, 1]
            dz = positions[j, 2] - positions[i, 2]
            r2 = dx * dx + dy * dy + dz * dz + softening2
            s = G * (masses[i] * masses[j]) / (r2 * np.sqrt(r2))
            forces[i, 0] += s * dx
            forces[i, 1] += s * dy
            forces[i, 2] += s * dz
            forces[j, 0] -= s * dx
            forces[j, 1] -= s * dy
            forces[j, 2] -= s * dz
    return forces


@jit(nopython=True, cache=True)
def _stencil_forces(positions, masses, indptr, indices, G, softening2):
    """Sum F_ij over the CSR neighbour stencil of each cell."""
    n = positions.shape[0]
    forces = np.zeros((n, 3))
    for i in range(n):
        for p in range(indptr[i], indptr[i + 1]):
            j = indices[p]
            dx = positions[j, 0] - positions[i, 0]
            dy = positions[j, 1] - positions[i, 1]
            dz = positions[j, 2] - positions[i, 2]
            r2 = dx * dx + dy * dy + dz * dz + softening2
            s = G * (masses[i] * masses[j]) / (r2 * np.sqrt(r2))
            forces[i, 0] += s * dx
            forces[i, 1] += s * dy
            forces[i, 2] += s * dz
    return forces


class ForceSolver(ABC):
    """Strategy interface: net gravitational force on every cell."""

    mode: GravityMode

    @abstractmethod
    def compute_forces(self, lattice: Lattice, config: GravityConfig) -> np.ndarray:
        """Return an (N, 3) array of net forces."""
        pass


class NaivePairwiseSolver(ForceSolver):
    """Exact all-pairs summation."""

    mode = GravityMode.NAIVE_PAIRWISE

    def compute_forces(self, lattice: Lattice, config: GravityConfig) -> np.ndarray:
        return _pairwise_forces(
            np.array(lattice.positions, dtype=np.float64),
            np.array(lattice.masses, dtype=np.float64),
            float(config.G),
            float(config.softening) * float(config.softening),
        )


class LatticeKernelSolver(ForceSolver):
    """Summation restricted to the lattice's precomputed neighbour stencil."""

    mode = GravityMode.LATTICE_KERNEL

    def compute_forces(self, lattice: Lattice, config: GravityConfig) -> np.ndarray:
        stencil = lattice.stencil
        return _stencil_forces(
            np.array(lattice.positions, dtype=np.float64),
            np.array(lattice.masses, dtype=np.float64),
            stencil.indptr.astype(np.int64),
            stencil.indices.astype(np.int64),
            float(config.G),
            float(config.softening) * float(config.softening),
        )


class GravitySolver:
    """
    Gravity stage of the tick pipeline.

    Dispatches to the strategy selected by GravityConfig.mode and integrates
    motion. With gravity disabled advance() leaves the lattice untouched.

    Example:
        solver = GravitySolver()
        config = GravityConfig(mode=GravityMode.LATTICE_KERNEL)
        solver.advance(lattice, config, dt=1 / 60)
    """

    def __init__(self):
        self._solvers: Dict[GravityMode, ForceSolver] = {
            GravityMode.NAIVE_PAIRWISE: NaivePairwiseSolver(),
            GravityMode.LATTICE_KERNEL: LatticeKernelSolver(),
        }

    def solver_for(self, mode: GravityMode) -> ForceSolver:
        return self._solvers[mode]

    def compute_forces(self, lattice: Lattice, config: GravityConfig) -> np.ndarray:
        """Net force per cell under the configured strategy."""
        return self.solver_for(config.mode).compute_forces(lattice, config)

    def accelerations(self, lattice: Lattice, config: GravityConfig) -> np.ndarray:
        """
        F/m per cell. Massless cells are not accelerated.

        If max_acceleration is set, longer vectors are scaled down to it.
        """
        forces = self.compute_forces(lattice, config)
        masses = lattice.masses
        accel = np.zeros_like(forces)
        massive = masses > 0
        accel[massive] = forces[massive] / masses[massive, None]

        if config.max_acceleration is not None:
            norms = np.linalg.norm(accel, axis=1)
            over = norms > config.max_acceleration
            accel[over] *= (config.max_acceleration / norms[over])[:, None]
        return accel

    def advance(self, lattice: Lattice, config: GravityConfig, dt: float) -> None:
        """Integrate one step of length dt (no-op when gravity is disabled)."""
        if not config.enabled:
            return

        accel = self.accelerations(lattice, config)
        velocities = np.array(lattice.velocities)
        dvel = accel * dt - config.damping * velocities * dt
        dpos = (velocities + dvel) * dt
        lattice.apply_motion(dpos, dvel)
