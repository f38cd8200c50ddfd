"""
Core module for the PRU sandbox.

Contains:
- Lattice: 3D struct-of-arrays PRU store with a sparse neighbour stencil
- FieldDeriver: local density and curvature proxy
- GravitySolver: naive pairwise and lattice-kernel softened gravity
- EnergyDiagnostics: kinetic/potential energy and drift
- Commands: control values applied between ticks
- Simulation: fixed-order tick pipeline and clock
"""

from .lattice import (
    Lattice, LatticeState, Cell,
    build_stencil, stencil_offsets, grid_positions, lattice_from_points,
)
from .fields import FieldParams, FieldDeriver, local_density, curvature_proxy
from .gravity import (
    GravityMode, GravityConfig, GravitySolver,
    ForceSolver, NaivePairwiseSolver, LatticeKernelSolver,
)
from .energy import (
    EnergyMetrics, EnergyDiagnostics,
    kinetic_energy, potential_energy, drift_ratio,
)
from .commands import (
    Command, OverlayMode,
    Pause, Resume, TogglePause, Step, SetTimeScale, AdjustTimeScale,
    ToggleGravity, SetGravityMode, AdjustG, AdjustDamping, AdjustSoftening,
    ResetEnergyBaseline, SetOverlay, SHOW_DENSITY, SHOW_CURVATURE, SHOW_NONE,
)
from .simulation import (
    Simulation, SimulationClock, SimulationSnapshot, TickPipeline, TickReport, TickSample,
)

__all__ = [
    # Lattice
    "Lattice",
    "LatticeState",
    "Cell",
    "build_stencil",
    "stencil_offsets",
    "grid_positions",
    "lattice_from_points",
    # Fields
    "FieldParams",
    "FieldDeriver",
    "local_density",
    "curvature_proxy",
    # Gravity
    "GravityMode",
    "GravityConfig",
    "GravitySolver",
    "ForceSolver",
    "NaivePairwiseSolver",
    "LatticeKernelSolver",
    # Energy
    "EnergyMetrics",
    "EnergyDiagnostics",
    "kinetic_energy",
    "potential_energy",
    "drift_ratio",
    # Commands
    "Command",
    "OverlayMode",
    "Pause",
    "Resume",
    "TogglePause",
    "Step",
    "SetTimeScale",
    "AdjustTimeScale",
    "ToggleGravity",
    "SetGravityMode",
    "AdjustG",
    "AdjustDamping",
    "AdjustSoftening",
    "ResetEnergyBaseline",
    "SetOverlay",
    "SHOW_DENSITY",
    "SHOW_CURVATURE",
    "SHOW_NONE",
    # Orchestration
    "Simulation",
    "SimulationClock",
    "SimulationSnapshot",
    "TickPipeline",
    "TickReport",
    "TickSample",
]
