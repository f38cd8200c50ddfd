"""
Per-tick classification of lattice cells into astrophysical archetypes.

Rules, in order of precedence:
1. BLACK_HOLE: curvature_proxy above the black-hole curvature threshold and
   local_density above a moderate floor
2. STAR: local_density above the star threshold
3. GALAXY_HALO: local_density within the mid band
   [halo_density_min, star_density_threshold] AND the cell belongs to a
   stencil-connected region of such cells with at least min_halo_cells cells

Classification is stateless: every tick starts from scratch, so no tag ever
outlives the fields that produced it. Anything that must persist (galaxy
identity) is reconstructed from overlap between consecutive snapshots.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Tuple
import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import connected_components

from ..core.lattice import Lattice
from ..errors import ConfigurationError


class Archetype(IntEnum):
    """Structure tag of a cell, stored as int8 in classification arrays."""
    NONE = 0
    STAR = 1
    BLACK_HOLE = 2
    GALAXY_HALO = 3


@dataclass
class FormationParams:
    """
    Classification thresholds.

    These are calibration constants, not physical law; tune them together
    with FieldParams.density_scale.
    """
    star_density_threshold: float = 1.8
    black_hole_curvature_threshold: float = 0.9
    black_hole_density_floor: float = 1.2
    halo_density_min: float = 1.2
    min_halo_cells: int = 3

    def validate(self) -> None:
        if self.halo_density_min > self.star_density_threshold:
            raise ConfigurationError(
                "halo_density_min must not exceed star_density_threshold "
                f"({self.halo_density_min} > {self.star_density_threshold})"
            )
        if self.black_hole_density_floor < 0:
            raise ConfigurationError("black_hole_density_floor must be non-negative")
        if self.min_halo_cells < 1:
            raise ConfigurationError(f"min_halo_cells must be at least 1, got {self.min_halo_cells}")


@dataclass(frozen=True, eq=False)
class Classification:
    """
    Classification snapshot of one tick.

    Attributes:
        archetypes: Archetype code per cell (int8, read-only)
        halos: Candidate halo regions, each a frozenset of cell indices,
            ordered by smallest member index
    """
    archetypes: np.ndarray
    halos: Tuple[frozenset, ...] = field(default_factory=tuple)

    def __post_init__(self):
        self.archetypes.flags.writeable = False

    def mask(self, archetype: Archetype) -> np.ndarray:
        return self.archetypes == archetype

    def counts(self) -> Dict[str, int]:
        """Number of cells per archetype, keyed by lowercase name."""
        return {a.name.lower(): int(np.count_nonzero(self.archetypes == a)) for a in Archetype}


def connected_regions(mask: np.ndarray, stencil: sparse.csr_matrix) -> List[np.ndarray]:
    """
    Connected components of the masked cells under stencil adjacency.

    Returns:
        List of sorted index arrays, ordered by their smallest index
    """
    idx = np.flatnonzero(mask)
    if idx.size == 0:
        return []

    sub = stencil[idx][:, idx]
    n_components, labels = connected_components(sub, directed=False)
    regions = [idx[labels == c] for c in range(n_components)]
    regions.sort(key=lambda region: int(region[0]))
    return regions


def classify(
    local_density: np.ndarray,
    curvature_proxy: np.ndarray,
    stencil: sparse.csr_matrix,
    params: FormationParams,
) -> Classification:
    """
    Assign an Archetype to every cell from its derived fields.

    Args:
        local_density: Density per cell
        curvature_proxy: Curvature per cell
        stencil: Neighbour adjacency used for halo contiguity
        params: Thresholds

    Returns:
        Classification with archetype codes and candidate halo regions
    """
    density = np.asarray(local_density)
    curvature = np.asarray(curvature_proxy)
    archetypes = np.full(len(density), Archetype.NONE, dtype=np.int8)

    black_hole = ((curvature > params.black_hole_curvature_threshold)
                  & (density > params.black_hole_density_floor))
    star = ~black_hole & (density > params.star_density_threshold)
    band = (~black_hole
            & (density >= params.halo_density_min)
            & (density <= params.star_density_threshold))

    archetypes[black_hole] = Archetype.BLACK_HOLE
    archetypes[star] = Archetype.STAR

    halos = []
    for region in connected_regions(band, stencil):
        if len(region) < params.min_halo_cells:
            continue
        archetypes[region] = Archetype.GALAXY_HALO
        halos.append(frozenset(int(i) for i in region))

    return Classification(archetypes=archetypes, halos=tuple(halos))


class FormationClassifier:
    """
    Classification stage of the tick pipeline.

    Example:
        classifier = FormationClassifier()
        result = classifier.classify(lattice)
        print(result.counts())
    """

    def __init__(self, params: FormationParams | None = None):
        self.params = params or FormationParams()
        self.params.validate()

    def classify(self, lattice: Lattice) -> Classification:
        return classify(
            lattice.local_density,
            lattice.curvature_proxy,
            lattice.stencil,
            self.params,
        )
