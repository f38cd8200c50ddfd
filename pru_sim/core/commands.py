"""
Control commands accepted by the simulation at tick boundaries.

Commands are plain immutable values. External controllers (HUD buttons, key
bindings, scripts) construct them and hand them to Simulation.apply() or
Simulation.submit(); nothing here touches simulation state.

Time control:     Pause, Resume, TogglePause, Step, SetTimeScale, AdjustTimeScale
Gravity control:  ToggleGravity, SetGravityMode, AdjustG, AdjustDamping,
                  AdjustSoftening, ResetEnergyBaseline
Overlay:          SetOverlay (SHOW_DENSITY, SHOW_CURVATURE, SHOW_NONE)
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .gravity import GravityMode


class OverlayMode(Enum):
    """Which derived field the snapshot exposes as its overlay."""
    NONE = "none"
    DENSITY = "density"
    CURVATURE = "curvature"


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class TogglePause:
    pass


@dataclass(frozen=True)
class Step:
    """Run exactly one tick at the next boundary, even while paused."""
    pass


@dataclass(frozen=True)
class SetTimeScale:
    time_scale: float


@dataclass(frozen=True)
class AdjustTimeScale:
    delta: float


@dataclass(frozen=True)
class ToggleGravity:
    pass


@dataclass(frozen=True)
class SetGravityMode:
    mode: GravityMode


@dataclass(frozen=True)
class AdjustG:
    delta: float


@dataclass(frozen=True)
class AdjustDamping:
    delta: float


@dataclass(frozen=True)
class AdjustSoftening:
    delta: float


@dataclass(frozen=True)
class ResetEnergyBaseline:
    pass


@dataclass(frozen=True)
class SetOverlay:
    mode: OverlayMode


SHOW_DENSITY = SetOverlay(OverlayMode.DENSITY)
SHOW_CURVATURE = SetOverlay(OverlayMode.CURVATURE)
SHOW_NONE = SetOverlay(OverlayMode.NONE)


Command = Union[
    Pause, Resume, TogglePause, Step, SetTimeScale, AdjustTimeScale,
    ToggleGravity, SetGravityMode, AdjustG, AdjustDamping, AdjustSoftening,
    ResetEnergyBaseline, SetOverlay,
]
