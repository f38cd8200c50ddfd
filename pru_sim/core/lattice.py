"""
Lattice store for the PRU universe.

The universe is a fixed 3D grid of cells. Each cell carries two lock values:

    ua_lock  - mass-analogue reservoir (UA)
    ub_lock  - geometry-analogue reservoir (UB)

plus a continuous position/velocity and two derived fields (local_density,
curvature_proxy) that are rewritten every tick.

Cells are addressed by lattice coordinates (i, j, k) or by the flat index
    index = (i * ny + j) * nz + k

Key concepts:
- Topology: index set and neighbour stencil, fixed at construction
- Stencil: all cells whose integer offset has length in (0, neighbor_radius]
- Motion: positions/velocities, the only state the gravity solver mutates
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Sequence, Tuple
import numpy as np
from scipy import sparse

from ..errors import ConfigurationError, IndexOutOfBounds


Shape3 = Tuple[int, int, int]


@dataclass(frozen=True, eq=False)
class Cell:
    """
    Read-only view of one lattice cell.

    Attributes:
        index: Flat lattice index
        coords: Lattice coordinates (i, j, k)
        ua_lock: Mass-analogue lock (>= 0)
        ub_lock: Geometry-analogue lock (>= 0)
        position: World-space position
        velocity: World-space velocity
        local_density: Derived density from the last field pass
        curvature_proxy: Derived curvature from the last field pass
    """
    index: int
    coords: Shape3
    ua_lock: float
    ub_lock: float
    position: np.ndarray
    velocity: np.ndarray
    local_density: float
    curvature_proxy: float

    @property
    def mass(self) -> float:
        """Gravitational mass (the UA lock)."""
        return self.ua_lock


@dataclass(frozen=True, eq=False)
class LatticeState:
    """
    Immutable snapshot of the mutable part of a lattice.

    Arrays are copies with the writeable flag cleared.
    """
    positions: np.ndarray
    velocities: np.ndarray
    local_density: np.ndarray
    curvature_proxy: np.ndarray

    def __post_init__(self):
        for arr in (self.positions, self.velocities,
                    self.local_density, self.curvature_proxy):
            arr.flags.writeable = False

    @property
    def size(self) -> int:
        return len(self.positions)


def stencil_offsets(radius: float, max_reach: Optional[int] = None) -> np.ndarray:
    """
    Integer offsets (dx, dy, dz) with 0 < |offset| <= radius.

    Args:
        radius: Euclidean radius in lattice units (may be inf)
        max_reach: Upper bound on |dx|, |dy|, |dz| (lattice extent - 1)

    Returns:
        Array of shape (K, 3), sorted lexicographically
    """
    reach = np.floor(radius) if np.isfinite(radius) else np.inf
    if max_reach is not None:
        reach = min(reach, max_reach)
    if not np.isfinite(reach):
        raise ConfigurationError("infinite stencil radius needs a max_reach")
    reach = int(reach)
    if reach <= 0:
        return np.zeros((0, 3), dtype=np.int64)

    axis = np.arange(-reach, reach + 1)
    grid = np.stack(np.meshgrid(axis, axis, axis, indexing="ij"), axis=-1).reshape(-1, 3)
    d2 = np.sum(grid * grid, axis=1)
    mask = (d2 > 0) & (d2 <= radius * radius)
    return grid[mask]


def build_stencil(shape: Shape3, radius: float) -> sparse.csr_matrix:
    """
    Precompute the fixed neighbour adjacency of a lattice.

    Row i holds the flat indices of every neighbour of cell i, sorted in
    increasing order so that stencil sums accumulate deterministically.
    """
    shape_arr = np.asarray(shape, dtype=np.int64)
    n = int(np.prod(shape_arr))
    coords = np.indices(shape).reshape(3, -1).T

    rows = []
    cols = []
    for offset in stencil_offsets(radius, max_reach=int(shape_arr.max()) - 1):
        target = coords + offset
        valid = np.all((target >= 0) & (target < shape_arr), axis=1)
        if not np.any(valid):
            continue
        rows.append(np.nonzero(valid)[0])
        cols.append(np.ravel_multi_index(target[valid].T, shape))

    if rows:
        row = np.concatenate(rows)
        col = np.concatenate(cols)
    else:
        row = np.zeros(0, dtype=np.int64)
        col = np.zeros(0, dtype=np.int64)

    adjacency = sparse.csr_matrix(
        (np.ones(len(row), dtype=np.float64), (row, col)),
        shape=(n, n),
    )
    adjacency.sort_indices()
    return adjacency


def grid_positions(shape: Shape3, spacing: float) -> np.ndarray:
    """World-space cell centres of a lattice, centred on the origin."""
    coords = np.indices(shape).reshape(3, -1).T.astype(np.float64)
    center_offset = (np.asarray(shape, dtype=np.float64) - 1.0) * 0.5 * spacing
    return coords * spacing - center_offset


def _validate_shape(shape: Sequence[int]) -> Shape3:
    if len(shape) != 3:
        raise ConfigurationError(f"lattice extent must have 3 dimensions, got {tuple(shape)}")
    dims = tuple(int(s) for s in shape)
    if any(s <= 0 for s in dims):
        raise ConfigurationError(f"lattice extent must be positive, got {dims}")
    return dims  # type: ignore[return-value]


class Lattice:
    """
    Fixed-topology 3D lattice of PRU cells.

    Storage is struct-of-arrays: one numpy array per attribute, indexed by
    flat cell index. Read accessors return read-only views or Cell
    snapshots; mutation goes through apply_deltas / apply_motion (motion)
    and set_derived_fields (field pass).

    Example:
        lattice = Lattice.random(shape=(10, 10, 10), seed=42)
        cell = lattice.cell_at(1, 2, 3)
        print(cell.ua_lock, lattice.neighbors(cell.index))
    """

    def __init__(
        self,
        shape: Sequence[int],
        ua_lock: np.ndarray | Sequence[float],
        ub_lock: np.ndarray | Sequence[float],
        positions: Optional[np.ndarray] = None,
        velocities: Optional[np.ndarray] = None,
        spacing: float = 1.4,
        neighbor_radius: float = 1.0,
    ):
        """
        Initialize lattice.

        Args:
            shape: Extent (nx, ny, nz), all > 0
            ua_lock: Mass-analogue lock per cell, flat order
            ub_lock: Geometry-analogue lock per cell, flat order
            positions: Initial positions (default: centred grid)
            velocities: Initial velocities (default: zero)
            spacing: World-space distance between adjacent cells
            neighbor_radius: Stencil radius in lattice units

        Raises:
            ConfigurationError: On invalid extent, spacing, radius or locks
        """
        self._shape = _validate_shape(shape)
        if not spacing > 0:
            raise ConfigurationError(f"spacing must be positive, got {spacing}")
        if not neighbor_radius >= 0:
            raise ConfigurationError(f"neighbor_radius must be non-negative, got {neighbor_radius}")

        n = self._shape[0] * self._shape[1] * self._shape[2]
        self._spacing = float(spacing)
        self._neighbor_radius = float(neighbor_radius)

        self._ua = self._lock_array(ua_lock, n, "ua_lock")
        self._ub = self._lock_array(ub_lock, n, "ub_lock")

        if positions is None:
            self._positions = grid_positions(self._shape, self._spacing)
        else:
            self._positions = self._vector_array(positions, n, "positions")
        if velocities is None:
            self._velocities = np.zeros((n, 3), dtype=np.float64)
        else:
            self._velocities = self._vector_array(velocities, n, "velocities")

        self._density = np.zeros(n, dtype=np.float64)
        self._curvature = np.zeros(n, dtype=np.float64)

        self._stencil = build_stencil(self._shape, self._neighbor_radius)
        self._degree = np.diff(self._stencil.indptr)

    @staticmethod
    def _lock_array(values, n: int, name: str) -> np.ndarray:
        arr = np.array(values, dtype=np.float64).reshape(-1)
        if arr.shape != (n,):
            raise ConfigurationError(f"{name} must have {n} entries, got {arr.size}")
        if np.any(arr < 0):
            raise ConfigurationError(f"{name} must be non-negative")
        arr.flags.writeable = False
        return arr

    @staticmethod
    def _vector_array(values, n: int, name: str) -> np.ndarray:
        arr = np.array(values, dtype=np.float64)
        if arr.shape != (n, 3):
            raise ConfigurationError(f"{name} must have shape ({n}, 3), got {arr.shape}")
        return arr

    # ===== Factories =====

    @classmethod
    def random(
        cls,
        shape: Sequence[int] = (10, 10, 10),
        seed: Optional[int] = 42,
        spacing: float = 1.4,
        neighbor_radius: float = 1.0,
        ua_range: Tuple[float, float] = (0.4, 1.6),
        ub_range: Tuple[float, float] = (0.0, 2.0),
    ) -> "Lattice":
        """Create a lattice on a centred grid with uniformly random locks."""
        dims = _validate_shape(shape)
        n = dims[0] * dims[1] * dims[2]
        rng = np.random.default_rng(seed)
        ua = rng.uniform(ua_range[0], ua_range[1], size=n)
        ub = rng.uniform(ub_range[0], ub_range[1], size=n)
        return cls(dims, ua, ub, spacing=spacing, neighbor_radius=neighbor_radius)

    @classmethod
    def uniform(
        cls,
        shape: Sequence[int],
        ua: float = 1.0,
        ub: float = 1.0,
        spacing: float = 1.4,
        neighbor_radius: float = 1.0,
    ) -> "Lattice":
        """Create a lattice where every cell has the same locks."""
        dims = _validate_shape(shape)
        n = dims[0] * dims[1] * dims[2]
        return cls(dims, np.full(n, ua), np.full(n, ub),
                   spacing=spacing, neighbor_radius=neighbor_radius)

    # ===== Topology =====

    @property
    def shape(self) -> Shape3:
        """Lattice extent (nx, ny, nz)."""
        return self._shape

    @property
    def size(self) -> int:
        """Number of cells."""
        return len(self._ua)

    @property
    def N(self) -> int:
        """Alias for size."""
        return len(self._ua)

    @property
    def spacing(self) -> float:
        return self._spacing

    @property
    def neighbor_radius(self) -> float:
        return self._neighbor_radius

    @property
    def stencil(self) -> sparse.csr_matrix:
        """Neighbour adjacency (CSR, sorted indices). Do not modify."""
        return self._stencil

    @property
    def degree(self) -> np.ndarray:
        """Number of stencil neighbours per cell."""
        return self._degree

    def __len__(self) -> int:
        return len(self._ua)

    def _check_index(self, index) -> int:
        if isinstance(index, (bool, np.bool_)) or not isinstance(index, (int, np.integer)):
            raise IndexOutOfBounds(index, self._shape)
        if index < 0 or index >= self.size:
            raise IndexOutOfBounds(index, self._shape)
        return int(index)

    def index_of(self, i: int, j: int, k: int) -> int:
        """Flat index of lattice coordinates (i, j, k)."""
        coords = (i, j, k)
        for c, n in zip(coords, self._shape):
            if c < 0 or c >= n:
                raise IndexOutOfBounds(coords, self._shape)
        nx, ny, nz = self._shape
        return (int(i) * ny + int(j)) * nz + int(k)

    def coords_of(self, index: int) -> Shape3:
        """Lattice coordinates (i, j, k) of a flat index."""
        index = self._check_index(index)
        i, j, k = np.unravel_index(index, self._shape)
        return (int(i), int(j), int(k))

    def neighbors(self, index: int) -> np.ndarray:
        """Sorted flat indices of the stencil neighbours of a cell."""
        index = self._check_index(index)
        start, end = self._stencil.indptr[index], self._stencil.indptr[index + 1]
        return self._stencil.indices[start:end].copy()

    # ===== Cell access =====

    def cell(self, index: int) -> Cell:
        """Snapshot of a cell by flat index."""
        index = self._check_index(index)
        return Cell(
            index=index,
            coords=self.coords_of(index),
            ua_lock=float(self._ua[index]),
            ub_lock=float(self._ub[index]),
            position=self._positions[index].copy(),
            velocity=self._velocities[index].copy(),
            local_density=float(self._density[index]),
            curvature_proxy=float(self._curvature[index]),
        )

    def cell_at(self, i: int, j: int, k: int) -> Cell:
        """Snapshot of a cell by lattice coordinates."""
        return self.cell(self.index_of(i, j, k))

    def __getitem__(self, key) -> Cell:
        if isinstance(key, tuple):
            return self.cell_at(*key)
        return self.cell(key)

    def __iter__(self) -> Iterator[Cell]:
        """Iterate over cells in increasing index order."""
        for index in range(self.size):
            yield self.cell(index)

    # ===== Bulk arrays (read-only views) =====

    @staticmethod
    def _readonly(arr: np.ndarray) -> np.ndarray:
        view = arr.view()
        view.flags.writeable = False
        return view

    @property
    def ua_lock(self) -> np.ndarray:
        return self._ua

    @property
    def ub_lock(self) -> np.ndarray:
        return self._ub

    @property
    def masses(self) -> np.ndarray:
        """Gravitational masses (alias for ua_lock)."""
        return self._ua

    @property
    def positions(self) -> np.ndarray:
        return self._readonly(self._positions)

    @property
    def velocities(self) -> np.ndarray:
        return self._readonly(self._velocities)

    @property
    def local_density(self) -> np.ndarray:
        return self._readonly(self._density)

    @property
    def curvature_proxy(self) -> np.ndarray:
        return self._readonly(self._curvature)

    # ===== Mutation =====

    def set_derived_fields(self, local_density: np.ndarray, curvature_proxy: np.ndarray) -> None:
        """Overwrite both derived fields for all cells."""
        density = np.asarray(local_density, dtype=np.float64)
        curvature = np.asarray(curvature_proxy, dtype=np.float64)
        if density.shape != (self.size,) or curvature.shape != (self.size,):
            raise ValueError(
                f"derived fields must have shape ({self.size},), "
                f"got {density.shape} and {curvature.shape}"
            )
        self._density[:] = density
        self._curvature[:] = curvature

    def apply_deltas(self, deltas: Mapping[int, Tuple[Sequence[float], Sequence[float]]]) -> None:
        """
        Apply per-cell (position, velocity) deltas all-or-nothing.

        Every index and vector is validated before any cell is written.

        Raises:
            IndexOutOfBounds: If any index is outside the lattice
        """
        items = sorted(deltas.items())
        indices = np.empty(len(items), dtype=np.intp)
        dpos = np.zeros((len(items), 3), dtype=np.float64)
        dvel = np.zeros((len(items), 3), dtype=np.float64)
        for row, (index, (dp, dv)) in enumerate(items):
            indices[row] = self._check_index(index)
            dpos[row] = np.asarray(dp, dtype=np.float64).reshape(3)
            dvel[row] = np.asarray(dv, dtype=np.float64).reshape(3)

        self._positions[indices] += dpos
        self._velocities[indices] += dvel

    def apply_motion(self, dpos: np.ndarray, dvel: np.ndarray) -> None:
        """Apply whole-lattice position and velocity deltas all-or-nothing."""
        dpos = np.asarray(dpos, dtype=np.float64)
        dvel = np.asarray(dvel, dtype=np.float64)
        expected = (self.size, 3)
        if dpos.shape != expected or dvel.shape != expected:
            raise ValueError(f"motion deltas must have shape {expected}, got {dpos.shape} and {dvel.shape}")
        self._velocities += dvel
        self._positions += dpos

    # ===== State management =====

    def to_state(self) -> LatticeState:
        """Create immutable snapshot of the mutable arrays."""
        return LatticeState(
            positions=self._positions.copy(),
            velocities=self._velocities.copy(),
            local_density=self._density.copy(),
            curvature_proxy=self._curvature.copy(),
        )

    def copy(self) -> "Lattice":
        """Deep copy sharing nothing mutable with this lattice."""
        new_lattice = Lattice.__new__(Lattice)
        new_lattice._shape = self._shape
        new_lattice._spacing = self._spacing
        new_lattice._neighbor_radius = self._neighbor_radius
        new_lattice._ua = self._ua
        new_lattice._ub = self._ub
        new_lattice._positions = self._positions.copy()
        new_lattice._velocities = self._velocities.copy()
        new_lattice._density = self._density.copy()
        new_lattice._curvature = self._curvature.copy()
        new_lattice._stencil = self._stencil
        new_lattice._degree = self._degree
        return new_lattice

    def __repr__(self) -> str:
        return (f"Lattice(shape={self._shape}, spacing={self._spacing}, "
                f"neighbor_radius={self._neighbor_radius})")


# ===== Utility functions =====

def lattice_from_points(
    positions: np.ndarray,
    masses: Sequence[float],
    ub_lock: Optional[Sequence[float]] = None,
    velocities: Optional[np.ndarray] = None,
    neighbor_radius: float = 1.0,
) -> Lattice:
    """
    Build an (n, 1, 1) lattice from explicit point positions.

    Handy for small hand-built scenarios such as two-body tests.
    """
    positions = np.asarray(positions, dtype=np.float64)
    n = len(positions)
    if ub_lock is None:
        ub_lock = np.zeros(n)
    return Lattice(
        (n, 1, 1), masses, ub_lock,
        positions=positions, velocities=velocities,
        neighbor_radius=neighbor_radius,
    )


def kinetic_energy_per_cell(lattice: Lattice) -> np.ndarray:
    """0.5 * m * |v|^2 for every cell."""
    v = lattice.velocities
    return 0.5 * lattice.masses * np.einsum("ij,ij->i", v, v)
