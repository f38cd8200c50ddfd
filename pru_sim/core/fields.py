"""
Derived scalar fields on the PRU lattice.

Two fields are recomputed for every cell at the start of each tick:

    local_density(i)   = clip(density_scale * ua_i, 0, density_ceiling)
    curvature_proxy(i) = ub_i - mean_{j in stencil(i)} ub_j

The curvature proxy is a discrete Laplacian-like contrast of the geometry
lock against its neighbourhood: positive where a cell's UB stands above its
surroundings. Cells with an empty stencil have zero curvature.

Fields are read from the lattice state settled at the end of the previous
tick, before gravity moves anything in the current tick.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple
import numpy as np

from .lattice import Lattice
from ..errors import ConfigurationError


@dataclass
class FieldParams:
    """Parameters of the field pass."""
    density_scale: float = 1.5      # local_density per unit of UA
    density_ceiling: float = 10.0   # Upper clamp for local_density

    def validate(self) -> None:
        if not self.density_scale >= 0:
            raise ConfigurationError(f"density_scale must be non-negative, got {self.density_scale}")
        if not self.density_ceiling > 0:
            raise ConfigurationError(f"density_ceiling must be positive, got {self.density_ceiling}")


def local_density(ua_lock: np.ndarray, params: FieldParams) -> np.ndarray:
    """Density proxy, proportional to UA and clamped to [0, density_ceiling]."""
    return np.clip(params.density_scale * np.asarray(ua_lock, dtype=np.float64),
                   0.0, params.density_ceiling)


def curvature_proxy(ub_lock: np.ndarray, lattice: Lattice) -> np.ndarray:
    """
    Contrast of UB against the mean UB of the stencil neighbours.

    Args:
        ub_lock: Geometry lock per cell
        lattice: Lattice providing the fixed stencil

    Returns:
        Curvature proxy per cell (0 where the stencil is empty)
    """
    ub = np.asarray(ub_lock, dtype=np.float64)
    degree = lattice.degree
    neighbor_sum = lattice.stencil @ ub

    curvature = np.zeros_like(ub)
    has_neighbors = degree > 0
    curvature[has_neighbors] = ub[has_neighbors] - neighbor_sum[has_neighbors] / degree[has_neighbors]
    return curvature


class FieldDeriver:
    """
    Field pass of the tick pipeline.

    Example:
        deriver = FieldDeriver(FieldParams(density_scale=1.5))
        deriver.derive(lattice)
        print(lattice.local_density.max())
    """

    def __init__(self, params: FieldParams | None = None):
        self.params = params or FieldParams()
        self.params.validate()

    def compute(self, lattice: Lattice) -> Tuple[np.ndarray, np.ndarray]:
        """Compute (local_density, curvature_proxy) without writing them."""
        return (
            local_density(lattice.ua_lock, self.params),
            curvature_proxy(lattice.ub_lock, lattice),
        )

    def derive(self, lattice: Lattice) -> None:
        """Overwrite the derived fields of every cell in place."""
        density, curvature = self.compute(lattice)
        lattice.set_derived_fields(density, curvature)
