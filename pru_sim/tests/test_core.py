"""
Tests for core module.
"""

import pytest
import numpy as np
from pru_sim.core import (
    Lattice, FieldDeriver, FieldParams, GravityConfig, GravityMode, GravitySolver,
    EnergyDiagnostics, kinetic_energy, potential_energy, drift_ratio,
    build_stencil, lattice_from_points,
)
from pru_sim.errors import ConfigurationError, IndexOutOfBounds


class TestLattice:
    """Tests for Lattice class."""

    def test_create_random(self):
        """Test creating lattice with random locks."""
        lattice = Lattice.random(shape=(4, 5, 6), seed=1)
        assert lattice.size == 120
        assert len(lattice) == 120
        assert np.all(lattice.ua_lock >= 0.4) and np.all(lattice.ua_lock < 1.6)
        assert np.all(lattice.ub_lock >= 0.0)
        np.testing.assert_array_equal(lattice.velocities, 0.0)

    def test_random_is_seeded(self):
        a = Lattice.random(shape=(3, 3, 3), seed=7)
        b = Lattice.random(shape=(3, 3, 3), seed=7)
        np.testing.assert_array_equal(a.ua_lock, b.ua_lock)
        np.testing.assert_array_equal(a.ub_lock, b.ub_lock)

    def test_grid_is_centred(self):
        lattice = Lattice.uniform((3, 3, 3), spacing=2.0)
        np.testing.assert_allclose(lattice.positions.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_array_equal(lattice.cell_at(0, 0, 0).position, [-2.0, -2.0, -2.0])

    def test_index_roundtrip(self):
        """Test flat index <-> coordinates."""
        lattice = Lattice.uniform((4, 5, 6))
        assert lattice.index_of(1, 2, 3) == 45
        assert lattice.coords_of(45) == (1, 2, 3)
        cell = lattice[1, 2, 3]
        assert cell.index == 45
        assert lattice[45].coords == (1, 2, 3)

    def test_out_of_bounds(self):
        lattice = Lattice.uniform((2, 2, 2))
        with pytest.raises(IndexOutOfBounds):
            lattice.cell(8)
        with pytest.raises(IndexOutOfBounds):
            lattice.cell(-1)
        with pytest.raises(IndexOutOfBounds):
            lattice.index_of(2, 0, 0)
        with pytest.raises(IndexError):
            lattice.neighbors(100)

    def test_face_neighbors(self):
        """Radius 1 gives the 6 face neighbours."""
        lattice = Lattice.uniform((3, 3, 3), neighbor_radius=1.0)
        np.testing.assert_array_equal(lattice.neighbors(13), [4, 10, 12, 14, 16, 22])
        assert len(lattice.neighbors(0)) == 3

    @pytest.mark.parametrize("radius,expected", [
        (0.0, 0),
        (1.0, 6),
        (1.5, 18),
        (1.75, 26),
    ])
    def test_stencil_radius(self, radius, expected):
        lattice = Lattice.uniform((3, 3, 3), neighbor_radius=radius)
        assert lattice.degree[13] == expected

    def test_stencil_symmetric_and_sorted(self):
        stencil = build_stencil((4, 3, 2), 1.5)
        assert (stencil != stencil.T).nnz == 0
        assert stencil.has_sorted_indices

    def test_infinite_radius_covers_all(self):
        lattice = Lattice.uniform((3, 2, 2), neighbor_radius=np.inf)
        np.testing.assert_array_equal(lattice.degree, lattice.size - 1)

    def test_invalid_construction(self):
        with pytest.raises(ConfigurationError):
            Lattice.uniform((0, 2, 2))
        with pytest.raises(ConfigurationError):
            Lattice.uniform((2, 2))
        with pytest.raises(ConfigurationError):
            Lattice((2, 1, 1), [1.0, -0.5], [0.0, 0.0])
        with pytest.raises(ConfigurationError):
            Lattice((2, 1, 1), [1.0], [0.0, 0.0])
        with pytest.raises(ConfigurationError):
            Lattice.uniform((2, 2, 2), spacing=0.0)

    def test_arrays_are_read_only(self):
        lattice = Lattice.uniform((2, 2, 2))
        with pytest.raises(ValueError):
            lattice.positions[0, 0] = 1.0
        with pytest.raises(ValueError):
            lattice.ua_lock[0] = 5.0

    def test_apply_deltas(self):
        lattice = Lattice.uniform((2, 1, 1))
        before = lattice.positions.copy()
        lattice.apply_deltas({1: ([0.5, 0.0, 0.0], [0.0, 1.0, 0.0])})
        np.testing.assert_array_equal(lattice.positions[0], before[0])
        np.testing.assert_array_equal(lattice.positions[1], before[1] + [0.5, 0.0, 0.0])
        np.testing.assert_array_equal(lattice.velocities[1], [0.0, 1.0, 0.0])

    def test_apply_deltas_is_atomic(self):
        """A bad index rejects the whole batch."""
        lattice = Lattice.uniform((2, 1, 1))
        before = lattice.to_state()
        with pytest.raises(IndexOutOfBounds):
            lattice.apply_deltas({
                0: ([1.0, 1.0, 1.0], [1.0, 1.0, 1.0]),
                5: ([1.0, 1.0, 1.0], [1.0, 1.0, 1.0]),
            })
        np.testing.assert_array_equal(lattice.positions, before.positions)
        np.testing.assert_array_equal(lattice.velocities, before.velocities)

    def test_copy(self):
        """Test lattice copy."""
        original = Lattice.uniform((2, 1, 1))
        copy = original.copy()
        copy.apply_deltas({0: ([1.0, 0.0, 0.0], [0.0, 0.0, 0.0])})
        assert not np.array_equal(copy.positions, original.positions)

    def test_iteration_order(self):
        lattice = Lattice.uniform((2, 2, 1))
        assert [cell.index for cell in lattice] == [0, 1, 2, 3]


class TestFields:
    """Tests for the field pass."""

    def test_density_and_curvature(self):
        lattice = Lattice((3, 1, 1), [1.0, 2.0, 8.0], [0.0, 3.0, 0.0])
        FieldDeriver().derive(lattice)
        # 8 * 1.5 = 12 is clipped to the ceiling
        np.testing.assert_allclose(lattice.local_density, [1.5, 3.0, 10.0])
        np.testing.assert_allclose(lattice.curvature_proxy, [-3.0, 3.0, -3.0])

    def test_uniform_ub_has_zero_curvature(self):
        lattice = Lattice.uniform((3, 3, 3), ub=0.7, neighbor_radius=1.75)
        FieldDeriver().derive(lattice)
        np.testing.assert_allclose(lattice.curvature_proxy, 0.0, atol=1e-12)

    def test_custom_scale(self):
        lattice = Lattice.uniform((2, 1, 1), ua=2.0)
        density, _ = FieldDeriver(FieldParams(density_scale=0.5)).compute(lattice)
        np.testing.assert_allclose(density, [1.0, 1.0])
        # compute() does not write
        np.testing.assert_array_equal(lattice.local_density, 0.0)

    def test_invalid_params(self):
        with pytest.raises(ConfigurationError):
            FieldDeriver(FieldParams(density_ceiling=0.0))


class TestGravity:
    """Tests for the gravity solver."""

    def test_config_validation(self):
        with pytest.raises(ConfigurationError):
            GravityConfig(softening=0.0)
        with pytest.raises(ConfigurationError):
            GravityConfig(G=-1.0)
        with pytest.raises(ConfigurationError):
            GravityConfig(damping=-0.1)
        with pytest.raises(ConfigurationError):
            GravityConfig(max_acceleration=0.0)
        assert GravityConfig(mode="lattice_kernel").mode is GravityMode.LATTICE_KERNEL

    def test_full_coverage_matches_naive(self):
        """Kernel forces equal pairwise forces when the stencil covers every cell."""
        lattice = Lattice.random(shape=(4, 3, 3), seed=3, neighbor_radius=np.inf)
        solver = GravitySolver()
        naive = solver.compute_forces(lattice, GravityConfig(mode=GravityMode.NAIVE_PAIRWISE))
        kernel = solver.compute_forces(lattice, GravityConfig(mode=GravityMode.LATTICE_KERNEL))
        np.testing.assert_array_equal(kernel, naive)

    def test_net_force_vanishes(self):
        lattice = Lattice.random(shape=(3, 3, 3), seed=5)
        forces = GravitySolver().compute_forces(lattice, GravityConfig())
        np.testing.assert_allclose(forces.sum(axis=0), 0.0, atol=1e-10)

    def test_two_body_step(self):
        """One tick from rest moves each body by G m d / (d^2 + s^2)^1.5 * dt^2."""
        G, m, d, s, dt = 0.6, 1.3, 2.0, 0.01, 1.0 / 60.0
        lattice = lattice_from_points([[0.0, 0.0, 0.0], [d, 0.0, 0.0]], [m, m])
        config = GravityConfig(G=G, softening=s, damping=0.0)
        GravitySolver().advance(lattice, config, dt)

        expected = G * m * d / (d * d + s * s) ** 1.5 * dt * dt
        assert lattice.positions[0, 0] == pytest.approx(expected, rel=1e-12)
        assert lattice.positions[1, 0] == pytest.approx(d - expected, rel=1e-12)
        np.testing.assert_array_equal(lattice.positions[:, 1:], 0.0)

    def test_isolated_cell(self):
        lattice = Lattice((1, 1, 1), [1.0], [0.7])
        FieldDeriver().derive(lattice)
        assert lattice.curvature_proxy[0] == 0.0
        assert lattice.local_density[0] == pytest.approx(1.5)
        solver = GravitySolver()
        for mode in GravityMode:
            forces = solver.compute_forces(lattice, GravityConfig(mode=mode))
            np.testing.assert_array_equal(forces, 0.0)

    def test_disabled_is_noop(self):
        lattice = Lattice.random(shape=(3, 3, 3), seed=2)
        before = lattice.to_state()
        GravitySolver().advance(lattice, GravityConfig(enabled=False), 1.0)
        np.testing.assert_array_equal(lattice.positions, before.positions)
        np.testing.assert_array_equal(lattice.velocities, before.velocities)

    def test_kernel_is_local(self):
        """Radius 0 stencil exerts no force at all."""
        lattice = Lattice.random(shape=(3, 3, 3), seed=2, neighbor_radius=0.0)
        forces = GravitySolver().compute_forces(lattice, GravityConfig(mode=GravityMode.LATTICE_KERNEL))
        np.testing.assert_array_equal(forces, 0.0)

    def test_massless_cell_not_accelerated(self):
        lattice = lattice_from_points([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], [1.0, 0.0])
        accel = GravitySolver().accelerations(lattice, GravityConfig())
        np.testing.assert_array_equal(accel, 0.0)

    def test_max_acceleration_clamp(self):
        lattice = lattice_from_points([[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]], [5.0, 5.0])
        config = GravityConfig(softening=0.01, max_acceleration=0.5)
        accel = GravitySolver().accelerations(lattice, config)
        np.testing.assert_allclose(np.linalg.norm(accel, axis=1), 0.5)

    def test_damping_slows_free_motion(self):
        lattice = lattice_from_points([[0.0, 0.0, 0.0]], [1.0], velocities=[[1.0, 0.0, 0.0]])
        GravitySolver().advance(lattice, GravityConfig(damping=0.5), 0.1)
        assert lattice.velocities[0, 0] == pytest.approx(1.0 - 0.5 * 0.1)
        assert lattice.positions[0, 0] == pytest.approx(0.95 * 0.1)


class TestEnergy:
    """Tests for energy diagnostics."""

    def test_two_body_energy(self):
        lattice = lattice_from_points(
            [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], [2.0, 1.0],
            velocities=[[1.0, 0.0, 0.0], [0.0, 0.0, 0.0]],
        )
        config = GravityConfig(G=0.6, softening=0.25)
        assert kinetic_energy(lattice) == pytest.approx(1.0)
        assert potential_energy(lattice, config) == pytest.approx(-0.6 * 2.0 / np.sqrt(1.0625))

    def test_reordering_invariance(self):
        """Totals do not depend on cell order."""
        rng = np.random.default_rng(11)
        positions = rng.normal(size=(20, 3))
        velocities = rng.normal(size=(20, 3))
        masses = rng.uniform(0.4, 1.6, size=20)
        perm = rng.permutation(20)

        a = lattice_from_points(positions, masses, velocities=velocities)
        b = lattice_from_points(positions[perm], masses[perm], velocities=velocities[perm])
        config = GravityConfig()
        assert kinetic_energy(b) == pytest.approx(kinetic_energy(a), rel=1e-12)
        assert potential_energy(b, config) == pytest.approx(potential_energy(a, config), rel=1e-12)

    def test_drift_zero_on_capture(self):
        lattice = Lattice.random(shape=(3, 3, 3), seed=4)
        diagnostics = EnergyDiagnostics()
        metrics = diagnostics.measure(lattice, GravityConfig())
        assert metrics.drift_ratio == 0.0
        assert metrics.initial_total == metrics.total

    def test_baseline_reset(self):
        lattice = Lattice.random(shape=(3, 3, 3), seed=4)
        diagnostics = EnergyDiagnostics()
        config = GravityConfig()
        diagnostics.measure(lattice, config)
        GravitySolver().advance(lattice, config, 0.5)
        moved = diagnostics.measure(lattice, config)
        assert moved.drift_ratio != 0.0

        diagnostics.reset()
        assert diagnostics.initial_total is None
        again = diagnostics.measure(lattice, config)
        assert again.drift_ratio == 0.0
        assert again.initial_total == again.total

    def test_drift_ratio(self):
        assert drift_ratio(1.1, 1.0) == pytest.approx(0.1)
        assert drift_ratio(-0.9, -1.0) == pytest.approx(0.1)
        assert drift_ratio(5.0, 0.0) == 0.0
        assert np.isnan(drift_ratio(float("nan"), 1.0))
