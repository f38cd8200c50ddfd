"""
Tick orchestration for the PRU sandbox.

One tick is a single synchronous pass through a fixed pipeline:

    FieldDeriver -> GravitySolver -> EnergyDiagnostics
                 -> FormationClassifier -> AgentTracker (-> field metrics)

Fields are derived from the state settled by the previous tick, before
gravity moves anything, so the order is load-bearing. Control commands are
applied only between ticks; a tick always sees a consistent prior state.

The pipeline itself receives the gravity configuration and dt as explicit
arguments, which keeps a tick a function of (prior lattice, configuration).
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, replace
import logging
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional, Tuple
import numpy as np

from .lattice import Lattice
from .fields import FieldDeriver, FieldParams
from .gravity import GravityConfig, GravityMode, GravitySolver
from .energy import EnergyDiagnostics, EnergyMetrics
from .commands import (
    Command, OverlayMode,
    Pause, Resume, TogglePause, Step, SetTimeScale, AdjustTimeScale,
    ToggleGravity, SetGravityMode, AdjustG, AdjustDamping, AdjustSoftening,
    ResetEnergyBaseline, SetOverlay,
)
from ..astro.formation import Classification, FormationClassifier, FormationParams
from ..astro.agents import AgentParams, AgentReport, AgentSummary, AgentTracker, MergerEvent
from ..analysis.metrics import FieldMetrics, MetricsCalculator
from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..config import SandboxConfig


logger = logging.getLogger(__name__)


@dataclass
class SimulationClock:
    """
    Discrete simulation clock.

    Each tick advances simulated_time by time_scale * base_dt.
    """
    tick: int = 0
    simulated_time: float = 0.0
    time_scale: float = 1.0
    paused: bool = False
    base_dt: float = 1.0 / 60.0

    def __post_init__(self):
        if not self.base_dt > 0:
            raise ConfigurationError(f"base_dt must be positive, got {self.base_dt}")
        if not (self.time_scale > 0 and np.isfinite(self.time_scale)):
            raise ConfigurationError(f"time_scale must be positive, got {self.time_scale}")

    @property
    def dt(self) -> float:
        """Simulated seconds per tick."""
        return self.time_scale * self.base_dt

    def set_time_scale(self, time_scale: float) -> None:
        if not (time_scale > 0 and np.isfinite(time_scale)):
            raise ConfigurationError(f"time_scale must be positive, got {time_scale}")
        self.time_scale = float(time_scale)

    def advance(self) -> None:
        self.simulated_time += self.dt
        self.tick += 1


@dataclass(frozen=True, eq=False)
class TickReport:
    """Everything one tick produced."""
    tick: int
    dt: float
    energy: EnergyMetrics
    classification: Classification
    field_metrics: FieldMetrics
    reports: Tuple[AgentReport, ...]

    def sample(self) -> "TickSample":
        """Scalar diagnostics of this tick, without per-cell arrays."""
        return TickSample(tick=self.tick, energy=self.energy, field_metrics=self.field_metrics)


@dataclass(frozen=True)
class TickSample:
    """Per-tick diagnostics kept for time series."""
    tick: int
    energy: EnergyMetrics
    field_metrics: FieldMetrics


class TickPipeline:
    """
    The fixed per-tick stage sequence.

    Stages keep only their own bookkeeping (energy baseline, agent
    identities, metric history); the lattice and configuration are passed
    in on every call.
    """

    def __init__(
        self,
        field_params: Optional[FieldParams] = None,
        formation_params: Optional[FormationParams] = None,
        agent_params: Optional[AgentParams] = None,
        history_length: int = 32,
    ):
        self.fields = FieldDeriver(field_params)
        self.gravity = GravitySolver()
        self.energy = EnergyDiagnostics()
        self.classifier = FormationClassifier(formation_params)
        self.tracker = AgentTracker(agent_params)
        self.metrics = MetricsCalculator(history_length)

    def run(self, lattice: Lattice, gravity: GravityConfig, dt: float, tick: int) -> TickReport:
        """Run every stage once, in order."""
        self.fields.derive(lattice)
        self.gravity.advance(lattice, gravity, dt)
        energy = self.energy.measure(lattice, gravity)
        classification = self.classifier.classify(lattice)
        reports = self.tracker.update(tick, classification, lattice)
        field_metrics = self.metrics.update(lattice, classification)

        return TickReport(
            tick=tick,
            dt=dt,
            energy=energy,
            classification=classification,
            field_metrics=field_metrics,
            reports=tuple(reports),
        )


@dataclass(frozen=True, eq=False)
class SimulationSnapshot:
    """
    Read-only view of the simulation for renderers and HUDs.

    Per-cell arrays are copies in flat index order with writes disabled.
    `overlay` holds the field selected by overlay_mode, or None.
    """
    tick: int
    simulated_time: float
    time_scale: float
    paused: bool
    gravity: GravityConfig
    overlay_mode: OverlayMode
    positions: np.ndarray
    local_density: np.ndarray
    curvature_proxy: np.ndarray
    archetypes: np.ndarray
    overlay: Optional[np.ndarray]
    energy: EnergyMetrics
    field_metrics: FieldMetrics
    agents: Tuple[AgentSummary, ...]
    reports: Tuple[AgentReport, ...]
    mergers: Tuple[MergerEvent, ...]


def _frozen_copy(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.flags.writeable = False
    return out


class Simulation:
    """
    Tick orchestrator owning the lattice, clock and gravity configuration.

    Commands can be applied immediately (apply) or queued for the next tick
    boundary (submit + advance). Invalid parameter updates raise
    ConfigurationError and leave the previous state unchanged.

    Example:
        sim = Simulation(standard_config())
        sim.apply(SetGravityMode(GravityMode.LATTICE_KERNEL))
        sim.run(120)
        snap = sim.snapshot()
        print(snap.energy.drift_ratio, len(snap.agents))
    """

    def __init__(self, config: Optional["SandboxConfig"] = None, lattice: Optional[Lattice] = None):
        if config is None:
            from ..config import SandboxConfig
            config = SandboxConfig()
        config.check()

        self.config = config
        self.lattice = lattice if lattice is not None else config.lattice.build()
        self.clock = SimulationClock(
            time_scale=config.clock.time_scale,
            paused=config.clock.paused,
            base_dt=config.clock.base_dt,
        )
        self.gravity = config.gravity
        self.overlay = OverlayMode.NONE
        self.pipeline = TickPipeline(
            field_params=config.fields,
            formation_params=config.formation,
            agent_params=config.agents,
            history_length=config.metrics.history_length,
        )
        self.last_report: Optional[TickReport] = None

        self._pending: Deque[Command] = deque()
        self._step_requested = False
        self._accumulator = 0.0
        self._handlers: Dict[type, Callable] = {
            Pause: lambda c: self._set_paused(True),
            Resume: lambda c: self._set_paused(False),
            TogglePause: lambda c: self._set_paused(not self.clock.paused),
            Step: lambda c: self._request_step(),
            SetTimeScale: lambda c: self._set_time_scale(c.time_scale),
            AdjustTimeScale: lambda c: self._set_time_scale(self.clock.time_scale + c.delta),
            ToggleGravity: lambda c: self.set_gravity(replace(self.gravity, enabled=not self.gravity.enabled)),
            SetGravityMode: lambda c: self._set_gravity_mode(c.mode),
            AdjustG: lambda c: self.set_gravity(replace(self.gravity, G=self.gravity.G + c.delta)),
            AdjustDamping: lambda c: self.set_gravity(replace(self.gravity, damping=self.gravity.damping + c.delta)),
            AdjustSoftening: lambda c: self.set_gravity(
                replace(self.gravity, softening=self.gravity.softening + c.delta)
            ),
            ResetEnergyBaseline: lambda c: self.pipeline.energy.reset(),
            SetOverlay: lambda c: self._set_overlay(c.mode),
        }

    # ===== Control =====

    def apply(self, command: Command) -> None:
        """Apply a command now. Only call between ticks."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown command: {command!r}")
        handler(command)

    def submit(self, command: Command) -> None:
        """Queue a command for the next tick boundary."""
        self._pending.append(command)

    def _drain(self) -> None:
        while self._pending:
            self.apply(self._pending.popleft())

    def set_gravity(self, gravity: GravityConfig) -> None:
        """
        Replace the gravity configuration.

        A change of G, damping or softening resets the energy baseline.
        """
        gravity.validate()
        previous = self.gravity
        self.gravity = gravity
        if (gravity.G, gravity.damping, gravity.softening) != (
                previous.G, previous.damping, previous.softening):
            self.pipeline.energy.reset()
        logger.info(
            "gravity %s, mode=%s, G=%.3f, damping=%.4f, softening=%.3f",
            "on" if gravity.enabled else "off", gravity.mode.value,
            gravity.G, gravity.damping, gravity.softening,
        )

    def _set_paused(self, paused: bool) -> None:
        self.clock.paused = paused
        logger.info("simulation %s at tick %d", "paused" if paused else "running", self.clock.tick)

    def _request_step(self) -> None:
        self._step_requested = True

    def _set_time_scale(self, time_scale: float) -> None:
        self.clock.set_time_scale(time_scale)
        logger.info("time scale %.2f", self.clock.time_scale)

    def _set_gravity_mode(self, mode) -> None:
        try:
            mode = GravityMode(mode)
        except ValueError as e:
            raise ConfigurationError(f"Unknown gravity mode: {mode!r}") from e
        self.set_gravity(replace(self.gravity, mode=mode))

    def _set_overlay(self, mode) -> None:
        try:
            self.overlay = OverlayMode(mode)
        except ValueError as e:
            raise ConfigurationError(f"Unknown overlay mode: {mode!r}") from e

    # ===== Time evolution =====

    def tick(self) -> TickReport:
        """Run one tick unconditionally (ignores pause)."""
        report = self.pipeline.run(self.lattice, self.gravity, self.clock.dt, self.clock.tick + 1)
        self.clock.advance()
        self.last_report = report
        return report

    def advance(self) -> bool:
        """
        Apply queued commands, then run one tick unless paused.

        A queued Step runs one tick even while paused.

        Returns:
            True if a tick ran
        """
        self._drain()
        if self.clock.paused and not self._step_requested:
            return False
        self._step_requested = False
        self.tick()
        return True

    def update(self, elapsed: float) -> int:
        """
        Drive ticks from real elapsed time.

        One tick runs per base_dt of accumulated real time while running, up
        to max_ticks_per_update; leftover backlog beyond the cap is dropped.

        Returns:
            Number of ticks run
        """
        if elapsed < 0:
            raise ValueError(f"elapsed must be non-negative, got {elapsed}")
        self._drain()

        ticks = 0
        if self._step_requested:
            self._step_requested = False
            self.tick()
            ticks += 1
        if self.clock.paused:
            return ticks

        base_dt = self.clock.base_dt
        limit = self.config.clock.max_ticks_per_update
        self._accumulator += elapsed
        while self._accumulator >= base_dt and ticks < limit:
            self._accumulator -= base_dt
            self.tick()
            ticks += 1
        if self._accumulator >= base_dt:
            self._accumulator %= base_dt
        return ticks

    def run(self, n_ticks: int, callback: Optional[Callable[[TickReport], None]] = None) -> List[TickReport]:
        """Run n_ticks unconditional ticks and return their reports."""
        reports = []
        for _ in range(n_ticks):
            report = self.tick()
            reports.append(report)
            if callback is not None:
                callback(report)
        return reports

    # ===== Observation =====

    @property
    def energy(self) -> EnergyMetrics:
        return self.pipeline.energy.latest

    @property
    def tracker(self) -> AgentTracker:
        return self.pipeline.tracker

    def snapshot(self) -> SimulationSnapshot:
        """Read-only state for external consumers."""
        lattice = self.lattice
        if self.last_report is not None:
            archetypes = self.last_report.classification.archetypes
        else:
            archetypes = np.zeros(lattice.size, dtype=np.int8)

        if self.overlay is OverlayMode.DENSITY:
            overlay = _frozen_copy(lattice.local_density)
        elif self.overlay is OverlayMode.CURVATURE:
            overlay = _frozen_copy(lattice.curvature_proxy)
        else:
            overlay = None

        return SimulationSnapshot(
            tick=self.clock.tick,
            simulated_time=self.clock.simulated_time,
            time_scale=self.clock.time_scale,
            paused=self.clock.paused,
            gravity=self.gravity,
            overlay_mode=self.overlay,
            positions=_frozen_copy(lattice.positions),
            local_density=_frozen_copy(lattice.local_density),
            curvature_proxy=_frozen_copy(lattice.curvature_proxy),
            archetypes=_frozen_copy(archetypes),
            overlay=overlay,
            energy=self.energy,
            field_metrics=self.pipeline.metrics.latest,
            agents=tuple(agent.summary() for agent in self.tracker.agents),
            reports=tuple(self.tracker.reports),
            mergers=tuple(self.tracker.events),
        )

    def summary(self) -> str:
        """Return summary of simulation state."""
        energy = self.energy
        return (f"Simulation(tick={self.clock.tick}, t={self.clock.simulated_time:.3f}, "
                f"mode={self.gravity.mode.value}, E={energy.total:.4f}, "
                f"drift={energy.drift_ratio:.2e}, agents={len(self.tracker)})")
