"""
Tests for structure classification and galaxy agents.
"""

import pytest
import numpy as np
from pru_sim.core import Lattice, FieldDeriver
from pru_sim.astro import (
    Archetype, FormationParams, Classification, FormationClassifier, classify,
    AgentParams, AgentTracker, MergerEvent, match_halos, halo_geometry,
)
from pru_sim.errors import ConfigurationError


def chain(n):
    """n cells in a row with face neighbours."""
    return Lattice.uniform((n, 1, 1), ua=1.0, ub=0.0)


def make_classification(n, halos, stars=(), black_holes=()):
    archetypes = np.zeros(n, dtype=np.int8)
    for halo in halos:
        archetypes[sorted(halo)] = Archetype.GALAXY_HALO
    for i in stars:
        archetypes[i] = Archetype.STAR
    for i in black_holes:
        archetypes[i] = Archetype.BLACK_HOLE
    return Classification(archetypes=archetypes, halos=tuple(frozenset(h) for h in halos))


class TestClassify:
    """Tests for per-cell archetype tagging."""

    def test_precedence(self):
        """Black hole beats star; curvature alone is not enough."""
        density = np.array([2.0, 2.0, 1.3, 0.5, 0.5])
        curvature = np.array([0.0, 1.0, 1.0, 1.0, 0.0])
        result = classify(density, curvature, chain(5).stencil, FormationParams())
        np.testing.assert_array_equal(result.archetypes, [
            Archetype.STAR, Archetype.BLACK_HOLE, Archetype.BLACK_HOLE,
            Archetype.NONE, Archetype.NONE,
        ])

    def test_halo_needs_minimum_region(self):
        density = np.array([1.5, 1.5, 0.5, 1.5, 1.5, 1.5])
        result = classify(density, np.zeros(6), chain(6).stencil, FormationParams())
        np.testing.assert_array_equal(result.archetypes[:3], Archetype.NONE)
        np.testing.assert_array_equal(result.archetypes[3:], Archetype.GALAXY_HALO)
        assert result.halos == (frozenset({3, 4, 5}),)

    def test_halo_band_is_inclusive(self):
        density = np.array([1.2, 1.8, 1.5])
        result = classify(density, np.zeros(3), chain(3).stencil, FormationParams())
        np.testing.assert_array_equal(result.archetypes, Archetype.GALAXY_HALO)

    def test_halos_ordered_by_smallest_index(self):
        density = np.array([1.5, 1.5, 1.5, 0.0, 1.5, 1.5, 1.5])
        result = classify(density, np.zeros(7), chain(7).stencil, FormationParams())
        assert result.halos == (frozenset({0, 1, 2}), frozenset({4, 5, 6}))

    def test_classifier_on_lattice(self):
        lattice = Lattice.uniform((3, 3, 3), ua=1.0, ub=0.5)
        FieldDeriver().derive(lattice)
        result = FormationClassifier().classify(lattice)
        counts = result.counts()
        assert counts["galaxy_halo"] == 27
        assert counts["star"] == 0
        assert len(result.halos) == 1
        assert not result.archetypes.flags.writeable

    def test_invalid_params(self):
        with pytest.raises(ConfigurationError):
            FormationClassifier(FormationParams(halo_density_min=2.0))


class TestMatchHalos:
    """Tests for the matching function."""

    def test_greedy_overlap(self):
        previous = {0: frozenset({1, 2, 3, 4}), 1: frozenset({10, 11, 12})}
        candidates = [frozenset({2, 3, 4, 5}), frozenset({11, 12, 13})]
        match = match_halos(previous, candidates)
        assert match.assignments == {0: 0, 1: 1}
        assert match.unmatched_candidates == []
        assert match.unmatched_agents == []

    def test_tie_goes_to_lower_id(self):
        previous = {0: frozenset({0, 1}), 1: frozenset({2, 3})}
        match = match_halos(previous, [frozenset({0, 1, 2, 3})])
        assert match.assignments == {0: 0}
        assert match.unmatched_agents == [1]
        assert match.mergers == [(0, 1)]

    def test_largest_overlap_wins(self):
        previous = {0: frozenset({0}), 1: frozenset({1, 2, 3})}
        match = match_halos(previous, [frozenset({0, 1, 2, 3})])
        assert match.assignments == {1: 0}
        assert match.mergers == [(1, 0)]

    def test_new_candidates(self):
        match = match_halos({}, [frozenset({0}), frozenset({5})])
        assert match.assignments == {}
        assert match.unmatched_candidates == [0, 1]


class TestAgentTracker:
    """Tests for agent lifecycle and reports."""

    def test_spawn_and_report(self):
        tracker = AgentTracker()
        reports = tracker.update(1, make_classification(10, [{0, 1, 2}]), chain(10))
        assert len(tracker) == 1
        agent = tracker.agents[0]
        assert agent.agent_id == 0
        assert agent.mass == pytest.approx(3.0)
        assert len(reports) == 1
        assert reports[0].member_count == 3
        assert reports[0].mass_delta == pytest.approx(3.0)

    def test_no_report_without_change(self):
        tracker = AgentTracker()
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        assert tracker.update(2, make_classification(10, [{0, 1, 2}]), lattice) == []

    def test_identity_survives_one_cell_change(self):
        tracker = AgentTracker()
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        reports = tracker.update(2, make_classification(10, [{0, 1, 2, 3}]), lattice)
        assert [a.agent_id for a in tracker.agents] == [0]
        assert tracker.get(0).mass == pytest.approx(4.0)
        assert len(reports) == 1
        assert reports[0].mass_delta == pytest.approx(1.0)

    def test_destroyed_after_grace(self):
        """An agent lives through grace_ticks - 1 empty ticks and dies on the next."""
        tracker = AgentTracker(AgentParams(grace_ticks=3))
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        tracker.update(2, make_classification(10, []), lattice)
        tracker.update(3, make_classification(10, []), lattice)
        assert len(tracker) == 1
        assert tracker.get(0).empty_ticks == 2
        tracker.update(4, make_classification(10, []), lattice)
        assert len(tracker) == 0

    def test_reappearing_halo_keeps_id(self):
        tracker = AgentTracker(AgentParams(grace_ticks=3))
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        tracker.update(2, make_classification(10, []), lattice)
        tracker.update(3, make_classification(10, [{1, 2, 3}]), lattice)
        assert [a.agent_id for a in tracker.agents] == [0]
        assert tracker.get(0).empty_ticks == 0

    def test_ids_not_reused(self):
        tracker = AgentTracker(AgentParams(grace_ticks=1))
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        tracker.update(2, make_classification(10, []), lattice)
        assert len(tracker) == 0
        tracker.update(3, make_classification(10, [{0, 1, 2}]), lattice)
        assert [a.agent_id for a in tracker.agents] == [1]

    def test_merger_event(self):
        tracker = AgentTracker()
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}, {5, 6, 7}]), lattice)
        tracker.update(2, make_classification(10, [set(range(8))]), lattice)
        assert list(tracker.events) == [MergerEvent(tick=2, survivor=0, absorbed=1)]
        assert tracker.get(0).member_count == 8
        assert tracker.get(1).empty_ticks == 1

    def test_merger_logged_once_through_grace(self):
        tracker = AgentTracker(AgentParams(grace_ticks=3))
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}, {5, 6, 7}]), lattice)
        for tick in (2, 3):
            tracker.update(tick, make_classification(10, [set(range(8))]), lattice)
        assert tracker.get(1).empty_ticks == 2
        tracker.update(4, make_classification(10, [set(range(8))]), lattice)
        assert tracker.get(1) is None
        assert list(tracker.events) == [MergerEvent(tick=2, survivor=0, absorbed=1)]

    def test_center_and_radius(self):
        lattice = chain(10)
        FieldDeriver().derive(lattice)
        tracker = AgentTracker()
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        agent = tracker.get(0)
        expected = lattice.positions[[0, 1, 2]].mean(axis=0)
        np.testing.assert_allclose(agent.center, expected)
        # Summed density 4.5 gives 0.225, below one spacing
        assert agent.radius == pytest.approx(lattice.spacing)
        summary = agent.summary()
        assert summary.center == agent.center
        assert summary.radius == agent.radius

    def test_center_is_density_weighted(self):
        lattice = Lattice(shape=(3, 1, 1), ua_lock=[1.0, 1.0, 3.0], ub_lock=[0.0, 0.0, 0.0])
        FieldDeriver().derive(lattice)
        tracker = AgentTracker()
        tracker.update(1, make_classification(3, [{0, 1, 2}]), lattice)
        x = lattice.positions[:, 0]
        assert tracker.get(0).center[0] == pytest.approx((x[0] + x[1] + 3 * x[2]) / 5)

    def test_radius_clamped(self):
        lattice = Lattice.uniform((10, 1, 1), ua=100.0, ub=0.0)
        FieldDeriver().derive(lattice)
        members = np.array([0, 1, 2])
        # Density saturates at the ceiling: summed weight 30
        _, radius = halo_geometry(members, lattice, AgentParams())
        assert radius == pytest.approx(1.5)
        _, radius = halo_geometry(members, lattice, AgentParams(radius_per_density=10.0))
        assert radius == pytest.approx(8 * lattice.spacing)

    def test_radius_shrinks_in_grace(self):
        lattice = chain(10)
        FieldDeriver().derive(lattice)
        tracker = AgentTracker(AgentParams(grace_ticks=3))
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        center = tracker.get(0).center
        tracker.update(2, make_classification(10, []), lattice)
        agent = tracker.get(0)
        assert agent.center == center
        assert agent.radius == pytest.approx(0.9 * lattice.spacing)
        tracker.update(3, make_classification(10, []), lattice)
        assert agent.radius == pytest.approx(0.81 * lattice.spacing)

    def test_nearby_counts_trigger_report(self):
        tracker = AgentTracker()
        lattice = chain(10)
        tracker.update(1, make_classification(10, [{0, 1, 2}]), lattice)
        reports = tracker.update(2, make_classification(10, [{0, 1, 2}], stars=[3], black_holes=[9]), lattice)
        assert len(reports) == 1
        assert reports[0].star_count == 1
        assert reports[0].black_hole_count == 0

    def test_report_log_bounded(self):
        tracker = AgentTracker(AgentParams(max_reports=2))
        lattice = chain(10)
        for tick in range(1, 6):
            halo = {0, 1, 2} if tick % 2 else {0, 1, 2, 3}
            tracker.update(tick, make_classification(10, [halo]), lattice)
        assert len(tracker.reports) == 2
        assert len(tracker.get(0).reports) == 2
        assert tracker.get(0).latest_report.tick == 5

    def test_summary(self):
        tracker = AgentTracker()
        tracker.update(1, make_classification(10, [{0, 1, 2}]), chain(10))
        summary = tracker.get(0).summary()
        assert summary.member_count == 3
        assert summary.latest_report.tick == 1
        assert "Galaxy 0" in summary.latest_report.summary

    def test_reset(self):
        tracker = AgentTracker()
        tracker.update(1, make_classification(10, [{0, 1, 2}]), chain(10))
        tracker.reset()
        assert len(tracker) == 0
        assert len(tracker.reports) == 0

    def test_invalid_params(self):
        with pytest.raises(ConfigurationError):
            AgentTracker(AgentParams(grace_ticks=0))
        with pytest.raises(ConfigurationError):
            AgentTracker(AgentParams(max_radius_spacings=0.5))
        with pytest.raises(ConfigurationError):
            AgentTracker(AgentParams(grace_radius_decay=0.0))
