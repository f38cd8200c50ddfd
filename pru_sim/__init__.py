"""
PRU Lattice Sandbox

A 3D lattice of Physical Resonance Units (PRUs) evolving under softened
Newtonian gravity, with derived density/curvature fields, structure
classification and persistent galaxy agents.

Main components:
- core: Lattice store, field derivation, gravity, energy, tick orchestration
- astro: Star / black-hole / galaxy-halo classification, galaxy agents
- analysis: Aggregate field metrics
- visualization: Time series plots
"""

__version__ = "0.1.0"
__author__ = "PRU Sandbox Team"

from .core import (
    Lattice, Cell, FieldDeriver, GravityConfig, GravityMode, GravitySolver,
    EnergyDiagnostics, EnergyMetrics, Simulation, SimulationSnapshot,
)
from .astro import Archetype, FormationClassifier, AgentTracker, GalaxyAgent
from .config import SandboxConfig
from .errors import ConfigurationError, IndexOutOfBounds

__all__ = [
    "Lattice",
    "Cell",
    "FieldDeriver",
    "GravityConfig",
    "GravityMode",
    "GravitySolver",
    "EnergyDiagnostics",
    "EnergyMetrics",
    "Simulation",
    "SimulationSnapshot",
    "Archetype",
    "FormationClassifier",
    "AgentTracker",
    "GalaxyAgent",
    "SandboxConfig",
    "ConfigurationError",
    "IndexOutOfBounds",
]
