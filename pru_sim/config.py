"""
Configuration module for the PRU lattice sandbox.

Contains all configurable parameters for the simulation.
"""

from dataclasses import dataclass, field
from typing import List, Tuple, Optional
from enum import Enum
import json
from pathlib import Path

from .core.fields import FieldParams
from .core.gravity import GravityConfig, GravityMode
from .core.lattice import Lattice
from .astro.formation import FormationParams
from .astro.agents import AgentParams
from .errors import ConfigurationError


@dataclass
class LatticeParams:
    """Lattice construction parameters."""
    shape: Tuple[int, int, int] = (10, 10, 10)
    spacing: float = 1.4                # World-space distance between cells
    neighbor_radius: float = 1.0        # Stencil radius (1.0 = 6 face neighbours)
    seed: Optional[int] = 42            # None = random seed
    ua_range: Tuple[float, float] = (0.4, 1.6)
    ub_range: Tuple[float, float] = (0.0, 2.0)

    def build(self) -> Lattice:
        """Create the initial lattice described by these parameters."""
        return Lattice.random(
            shape=self.shape,
            seed=self.seed,
            spacing=self.spacing,
            neighbor_radius=self.neighbor_radius,
            ua_range=self.ua_range,
            ub_range=self.ub_range,
        )


@dataclass
class ClockParams:
    """Simulation clock parameters."""
    base_dt: float = 1.0 / 60.0         # Seconds of simulated time per tick at scale 1
    time_scale: float = 1.0
    paused: bool = False
    max_ticks_per_update: int = 8       # Cap for real-time driven updates


@dataclass
class MetricsParams:
    """Field metrics parameters."""
    history_length: int = 32


@dataclass
class SandboxConfig:
    """
    Main configuration container for the PRU sandbox.

    Example:
        config = SandboxConfig(
            lattice=LatticeParams(shape=(8, 8, 8)),
            gravity=GravityConfig(mode=GravityMode.LATTICE_KERNEL),
        )
        config.save("my_config.json")
    """
    lattice: LatticeParams = field(default_factory=LatticeParams)
    fields: FieldParams = field(default_factory=FieldParams)
    gravity: GravityConfig = field(default_factory=GravityConfig)
    formation: FormationParams = field(default_factory=FormationParams)
    agents: AgentParams = field(default_factory=AgentParams)
    clock: ClockParams = field(default_factory=ClockParams)
    metrics: MetricsParams = field(default_factory=MetricsParams)

    def save(self, path: str | Path) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self._to_dict()
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: str | Path) -> "SandboxConfig":
        """Load configuration from JSON file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls._from_dict(data)

    def _to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        def convert(obj):
            if isinstance(obj, Enum):
                return obj.value
            elif isinstance(obj, Path):
                return str(obj)
            elif hasattr(obj, '__dataclass_fields__'):
                return {k: convert(v) for k, v in obj.__dict__.items()}
            elif isinstance(obj, (list, tuple)):
                return [convert(x) for x in obj]
            return obj

        return convert(self)

    @classmethod
    def _from_dict(cls, data: dict) -> "SandboxConfig":
        """Reconstruct from dictionary."""
        data = dict(data)

        if 'lattice' in data:
            lattice = dict(data['lattice'])
            for key in ('shape', 'ua_range', 'ub_range'):
                if key in lattice:
                    lattice[key] = tuple(lattice[key])
            data['lattice'] = LatticeParams(**lattice)
        if 'fields' in data:
            data['fields'] = FieldParams(**data['fields'])
        if 'gravity' in data:
            gravity = dict(data['gravity'])
            if 'mode' in gravity:
                gravity['mode'] = GravityMode(gravity['mode'])
            data['gravity'] = GravityConfig(**gravity)
        if 'formation' in data:
            data['formation'] = FormationParams(**data['formation'])
        if 'agents' in data:
            data['agents'] = AgentParams(**data['agents'])
        if 'clock' in data:
            data['clock'] = ClockParams(**data['clock'])
        if 'metrics' in data:
            data['metrics'] = MetricsParams(**data['metrics'])

        return cls(**data)

    def validate(self) -> List[str]:
        """Validate configuration, return list of problems."""
        issues = []

        if len(self.lattice.shape) != 3 or any(int(s) <= 0 for s in self.lattice.shape):
            issues.append(f"lattice extent must be 3 positive integers, got {self.lattice.shape}")
        if self.lattice.spacing <= 0:
            issues.append("spacing must be positive")
        if self.lattice.neighbor_radius < 0:
            issues.append("neighbor_radius must be non-negative")
        if self.lattice.ua_range[0] < 0 or self.lattice.ub_range[0] < 0:
            issues.append("lock ranges must be non-negative")

        if self.clock.base_dt <= 0:
            issues.append("base_dt must be positive")
        if self.clock.time_scale <= 0:
            issues.append("time_scale must be positive")
        if self.clock.max_ticks_per_update < 1:
            issues.append("max_ticks_per_update must be at least 1")
        if self.metrics.history_length < 1:
            issues.append("history_length must be at least 1")

        for section in (self.fields, self.gravity, self.formation, self.agents):
            try:
                section.validate()
            except ConfigurationError as e:
                issues.append(str(e))

        return issues

    def check(self) -> "SandboxConfig":
        """Raise ConfigurationError if validate() reports any problem."""
        issues = self.validate()
        if issues:
            raise ConfigurationError("; ".join(issues))
        return self


# Preset configurations
def minimal_config() -> SandboxConfig:
    """Minimal configuration for quick testing."""
    return SandboxConfig(
        lattice=LatticeParams(shape=(4, 4, 4)),
    )


def standard_config() -> SandboxConfig:
    """Standard 10x10x10 sandbox with naive pairwise gravity."""
    return SandboxConfig(
        lattice=LatticeParams(shape=(10, 10, 10), seed=42),
    )


def large_scale_config() -> SandboxConfig:
    """Larger lattice using the stencil solver."""
    return SandboxConfig(
        lattice=LatticeParams(shape=(16, 16, 16), seed=42),
        gravity=GravityConfig(mode=GravityMode.LATTICE_KERNEL),
        clock=ClockParams(max_ticks_per_update=2),
    )
