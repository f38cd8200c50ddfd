"""
Galaxy agents: persistent identities for galaxy halos.

Each tick the classifier produces candidate halos (connected regions of
GALAXY_HALO cells). The tracker matches them against existing agents by
index-set overlap, greedy and highest-overlap-first:

    tick t-1 agents:   A={1,2,3,4}  B={10,11,12}
    tick t   halos:    h0={2,3,4,5} h1={11,12,13}
    -> A keeps h0 (overlap 3), B keeps h1 (overlap 2)

Unmatched halos spawn new agents. Unmatched agents go empty and are
destroyed after grace_ticks consecutive empty ticks; a halo that reappears
over an agent's last membership within the grace period keeps the old id.
An agent that loses its halo to another agent is logged once as a merger.

Each live agent carries a density-weighted centre and a display radius;
while in grace the centre is held and the radius shrinks.

Reports are emitted only on change (relative mass change above the
threshold, member count, or nearby star / black-hole counts).
"""

from __future__ import annotations
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Deque, Dict, FrozenSet, Iterator, List, Mapping, Optional, Sequence, Tuple
import numpy as np

from .formation import Archetype, Classification
from ..core.lattice import Lattice
from ..errors import ConfigurationError


logger = logging.getLogger(__name__)


class AgentKind(Enum):
    GALAXY = "galaxy"


@dataclass
class AgentParams:
    """Tracker parameters."""
    grace_ticks: int = 3                # Consecutive empty ticks before destruction
    report_mass_threshold: float = 0.05  # Relative mass change that triggers a report
    max_reports: int = 128              # Bound of the shared and per-agent report logs
    max_events: int = 64                # Bound of the merger event log
    radius_per_density: float = 0.05    # Halo radius per unit of summed member density
    max_radius_spacings: float = 8.0    # Radius upper clamp, in lattice spacings
    grace_radius_decay: float = 0.9     # Radius shrink factor per empty tick

    def validate(self) -> None:
        if self.grace_ticks < 1:
            raise ConfigurationError(f"grace_ticks must be at least 1, got {self.grace_ticks}")
        if not self.report_mass_threshold >= 0:
            raise ConfigurationError(
                f"report_mass_threshold must be non-negative, got {self.report_mass_threshold}"
            )
        if self.max_reports < 1 or self.max_events < 1:
            raise ConfigurationError("max_reports and max_events must be at least 1")
        if not self.radius_per_density >= 0:
            raise ConfigurationError(
                f"radius_per_density must be non-negative, got {self.radius_per_density}"
            )
        if not self.max_radius_spacings >= 1:
            raise ConfigurationError(
                f"max_radius_spacings must be at least 1, got {self.max_radius_spacings}"
            )
        if not 0 < self.grace_radius_decay <= 1:
            raise ConfigurationError(
                f"grace_radius_decay must be in (0, 1], got {self.grace_radius_decay}"
            )


@dataclass(frozen=True)
class AgentReport:
    """Summary emitted when an agent changes noticeably."""
    tick: int
    agent_id: int
    kind: AgentKind
    member_count: int
    mass: float
    mass_delta: float
    star_count: int
    black_hole_count: int

    @property
    def summary(self) -> str:
        return (f"Galaxy {self.agent_id} mass {self.mass:.2f} (Δ{self.mass_delta:.2f}), "
                f"cells {self.member_count}, stars {self.star_count}, "
                f"black holes {self.black_hole_count}")


@dataclass(frozen=True)
class MergerEvent:
    """Two agents' halos fused; the absorbed agent starts its grace countdown."""
    tick: int
    survivor: int
    absorbed: int


class ReportLog:
    """Bounded log; the oldest entries are dropped first."""

    def __init__(self, max_reports: int = 128):
        self._reports: Deque[AgentReport] = deque(maxlen=max_reports)

    def push(self, report: AgentReport) -> None:
        self._reports.append(report)

    @property
    def latest(self) -> Optional[AgentReport]:
        return self._reports[-1] if self._reports else None

    def __len__(self) -> int:
        return len(self._reports)

    def __iter__(self) -> Iterator[AgentReport]:
        return iter(self._reports)


@dataclass(frozen=True)
class AgentSummary:
    """Read-only view of an agent for external consumers."""
    agent_id: int
    kind: AgentKind
    members: FrozenSet[int]
    mass: float
    center: Tuple[float, float, float]
    radius: float
    star_count: int
    black_hole_count: int
    empty_ticks: int
    created_tick: int
    latest_report: Optional[AgentReport]

    @property
    def member_count(self) -> int:
        return len(self.members)


@dataclass
class GalaxyAgent:
    """
    Tracked galaxy halo.

    Attributes:
        agent_id: Stable id assigned at first detection
        members: Current member cell indices (empty while in grace)
        last_members: Last non-empty membership, used for re-matching
        mass: Sum of member ua_lock
        center: Density-weighted barycentre of the members (kept while in grace)
        radius: Display radius, clamped to [spacing, max_radius_spacings * spacing];
            shrinks each empty tick
        star_count: STAR cells among members and their neighbours
        black_hole_count: BLACK_HOLE cells among members and their neighbours
        empty_ticks: Consecutive ticks without a matching halo
        created_tick: Tick of first detection
    """
    agent_id: int
    members: FrozenSet[int] = frozenset()
    last_members: FrozenSet[int] = frozenset()
    mass: float = 0.0
    center: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    radius: float = 0.0
    star_count: int = 0
    black_hole_count: int = 0
    empty_ticks: int = 0
    created_tick: int = 0
    kind: AgentKind = AgentKind.GALAXY
    reports: ReportLog = field(default_factory=ReportLog)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def latest_report(self) -> Optional[AgentReport]:
        return self.reports.latest

    def summary(self) -> AgentSummary:
        return AgentSummary(
            agent_id=self.agent_id,
            kind=self.kind,
            members=self.members,
            mass=self.mass,
            center=self.center,
            radius=self.radius,
            star_count=self.star_count,
            black_hole_count=self.black_hole_count,
            empty_ticks=self.empty_ticks,
            created_tick=self.created_tick,
            latest_report=self.latest_report,
        )


@dataclass(frozen=True)
class HaloMatch:
    """
    Outcome of matching candidate halos to existing agents.

    Attributes:
        assignments: agent id -> candidate position
        unmatched_candidates: Candidate positions with no agent
        unmatched_agents: Agent ids with no candidate, ascending
        mergers: (survivor, absorbed) pairs where an unmatched agent
            overlapped a candidate won by another agent
    """
    assignments: Dict[int, int]
    unmatched_candidates: List[int]
    unmatched_agents: List[int]
    mergers: List[Tuple[int, int]]


def match_halos(
    previous: Mapping[int, FrozenSet[int]],
    candidates: Sequence[FrozenSet[int]],
) -> HaloMatch:
    """
    Greedy highest-overlap-first matching of candidates to agents.

    Pure function of the previous memberships and the new candidates. Ties
    are broken by ascending agent id, then ascending candidate position.

    Args:
        previous: agent id -> last known membership
        candidates: Candidate halo index sets

    Returns:
        HaloMatch
    """
    label: Dict[int, int] = {}
    for position, candidate in enumerate(candidates):
        for index in candidate:
            label[index] = position

    pairs = []
    for agent_id in sorted(previous):
        overlaps = Counter(label[i] for i in previous[agent_id] if i in label)
        for position, overlap in overlaps.items():
            pairs.append((-overlap, agent_id, position))
    pairs.sort()

    assignments: Dict[int, int] = {}
    taken = set()
    for _, agent_id, position in pairs:
        if agent_id in assignments or position in taken:
            continue
        assignments[agent_id] = position
        taken.add(position)

    owner = {position: agent_id for agent_id, position in assignments.items()}
    mergers = []
    absorbed = set()
    for _, agent_id, position in pairs:
        if agent_id in assignments or agent_id in absorbed:
            continue
        mergers.append((owner[position], agent_id))
        absorbed.add(agent_id)

    return HaloMatch(
        assignments=assignments,
        unmatched_candidates=[p for p in range(len(candidates)) if p not in taken],
        unmatched_agents=[a for a in sorted(previous) if a not in assignments],
        mergers=mergers,
    )


def nearby_counts(
    members: FrozenSet[int],
    archetypes: np.ndarray,
    lattice: Lattice,
) -> Tuple[int, int]:
    """(stars, black holes) among the members and their stencil neighbours."""
    if not members:
        return 0, 0
    mask = np.zeros(lattice.size, dtype=np.float64)
    mask[np.fromiter(members, dtype=np.int64)] = 1.0
    reach = (mask > 0) | ((lattice.stencil @ mask) > 0)
    tags = archetypes[reach]
    return (int(np.count_nonzero(tags == Archetype.STAR)),
            int(np.count_nonzero(tags == Archetype.BLACK_HOLE)))


def halo_geometry(
    members: np.ndarray,
    lattice: Lattice,
    params: AgentParams,
) -> Tuple[Tuple[float, float, float], float]:
    """
    Density-weighted barycentre and display radius of a halo.

        weight = sum(local_density)
        center = sum(local_density * position) / max(weight, 1e-3)
        radius = clip(radius_per_density * weight, spacing, max_radius_spacings * spacing)

    Args:
        members: Sorted member indices
        lattice: Lattice with current positions and derived fields
        params: Tracker parameters

    Returns:
        (center, radius)
    """
    density = lattice.local_density[members]
    weight = float(np.sum(density))
    weighted = density @ lattice.positions[members]
    center = weighted / max(weight, 1e-3)
    spacing = lattice.spacing
    radius = float(np.clip(params.radius_per_density * weight,
                           spacing, params.max_radius_spacings * spacing))
    return (float(center[0]), float(center[1]), float(center[2])), radius


class AgentTracker:
    """
    Agent stage of the tick pipeline.

    Example:
        tracker = AgentTracker(AgentParams(grace_ticks=3))
        reports = tracker.update(tick, classification, lattice)
        for agent in tracker.agents:
            print(agent.agent_id, agent.latest_report)
    """

    def __init__(self, params: AgentParams | None = None):
        self.params = params or AgentParams()
        self.params.validate()
        self._agents: Dict[int, GalaxyAgent] = {}
        self._next_id = 0
        self.reports = ReportLog(self.params.max_reports)
        self.events: Deque[MergerEvent] = deque(maxlen=self.params.max_events)

    @property
    def agents(self) -> List[GalaxyAgent]:
        """Live agents (including those in grace), ascending id."""
        return [self._agents[a] for a in sorted(self._agents)]

    def get(self, agent_id: int) -> Optional[GalaxyAgent]:
        return self._agents.get(agent_id)

    def __len__(self) -> int:
        return len(self._agents)

    def _spawn(self, members: FrozenSet[int], tick: int) -> GalaxyAgent:
        agent = GalaxyAgent(
            agent_id=self._next_id,
            members=members,
            last_members=members,
            created_tick=tick,
            reports=ReportLog(self.params.max_reports),
        )
        self._next_id += 1
        self._agents[agent.agent_id] = agent
        logger.debug("tick %d: spawned galaxy agent %d (%d cells)", tick, agent.agent_id, len(members))
        return agent

    def update(self, tick: int, classification: Classification, lattice: Lattice) -> List[AgentReport]:
        """
        Match halos, spawn/expire agents and emit change reports.

        Returns:
            Reports emitted during this update
        """
        candidates = classification.halos
        previous = {a.agent_id: a.last_members for a in self._agents.values()}
        match = match_halos(previous, candidates)

        for survivor, absorbed in match.mergers:
            # An absorbed agent keeps overlapping the survivor through its grace
            # period; only the tick it loses its halo is a merger.
            if self._agents[absorbed].empty_ticks > 0:
                continue
            self.events.append(MergerEvent(tick=tick, survivor=survivor, absorbed=absorbed))
            logger.debug("tick %d: galaxy agent %d absorbed by %d", tick, absorbed, survivor)

        for agent_id, position in match.assignments.items():
            agent = self._agents[agent_id]
            agent.members = candidates[position]
            agent.last_members = candidates[position]
            agent.empty_ticks = 0

        for agent_id in match.unmatched_agents:
            agent = self._agents[agent_id]
            agent.members = frozenset()
            agent.empty_ticks += 1

        for position in match.unmatched_candidates:
            self._spawn(candidates[position], tick)

        emitted = []
        ua = lattice.ua_lock
        for agent in self.agents:
            if agent.members:
                members = np.sort(np.fromiter(agent.members, dtype=np.int64))
                agent.mass = float(np.sum(ua[members]))
                agent.center, agent.radius = halo_geometry(members, lattice, self.params)
            else:
                agent.mass = 0.0
                agent.radius *= self.params.grace_radius_decay
            agent.star_count, agent.black_hole_count = nearby_counts(
                agent.members, classification.archetypes, lattice
            )
            report = self._maybe_report(agent, tick)
            if report is not None:
                emitted.append(report)

        for agent_id in match.unmatched_agents:
            if self._agents[agent_id].empty_ticks >= self.params.grace_ticks:
                del self._agents[agent_id]
                logger.debug("tick %d: galaxy agent %d expired", tick, agent_id)

        return emitted

    def _maybe_report(self, agent: GalaxyAgent, tick: int) -> Optional[AgentReport]:
        last = agent.latest_report
        if last is None:
            changed = True
            mass_delta = agent.mass
        else:
            mass_delta = agent.mass - last.mass
            if last.mass != 0:
                relative = abs(mass_delta) / abs(last.mass)
            else:
                relative = float("inf") if mass_delta != 0 else 0.0
            changed = (relative > self.params.report_mass_threshold
                       or agent.member_count != last.member_count
                       or agent.star_count != last.star_count
                       or agent.black_hole_count != last.black_hole_count)
        if not changed:
            return None

        report = AgentReport(
            tick=tick,
            agent_id=agent.agent_id,
            kind=agent.kind,
            member_count=agent.member_count,
            mass=agent.mass,
            mass_delta=mass_delta,
            star_count=agent.star_count,
            black_hole_count=agent.black_hole_count,
        )
        agent.reports.push(report)
        self.reports.push(report)
        return report

    def reset(self) -> None:
        """Drop all agents and logs; ids restart at 0."""
        self._agents.clear()
        self._next_id = 0
        self.reports = ReportLog(self.params.max_reports)
        self.events.clear()
