"""Tests for stress majorization descent."""

import pytest
import numpy as np
from colayout.descent import Locks, PseudoRandom, Descent


def triangle_d():
    return np.array([
        [0.0, 1.0, 1.0],
        [1.0, 0.0, 1.0],
        [1.0, 1.0, 0.0]
    ])


def path_d():
    return np.array([
        [0.0, 1.0, 2.0],
        [1.0, 0.0, 1.0],
        [2.0, 1.0, 0.0]
    ])


def pair_distance(x, u, v):
    return float(np.linalg.norm(x[:, u] - x[:, v]))


class TestLocks:
    """Test Locks class."""

    def test_empty(self):
        """New lock sets are empty."""
        assert Locks().is_empty()

    def test_add_and_clear(self):
        """Locks can be added and cleared."""
        locks = Locks()
        locks.add(0, np.array([1.0, 2.0]))
        locks.add(1, np.array([3.0, 4.0]))
        assert not locks.is_empty()
        locks.clear()
        assert locks.is_empty()

    def test_apply(self):
        """apply visits every lock."""
        locks = Locks()
        locks.add(0, np.array([1.0, 2.0]))
        locks.add(3, np.array([3.0, 4.0]))

        seen = {}
        locks.apply(lambda id, p: seen.__setitem__(id, tuple(p)))
        assert seen == {0: (1.0, 2.0), 3: (3.0, 4.0)}


class TestPseudoRandom:
    """Test PseudoRandom class."""

    def test_known_first_value(self):
        """The generator follows the documented recurrence."""
        prng = PseudoRandom()
        expected_seed = (1 * 214013 + 2531011) % 2147483648
        assert prng.get_next() == (expected_seed >> 16) / 32767
        assert prng.seed == expected_seed

    def test_deterministic_sequence(self):
        """Same seed produces same sequence."""
        prng1 = PseudoRandom(seed=42)
        prng2 = PseudoRandom(seed=42)
        for _ in range(10):
            assert prng1.get_next() == prng2.get_next()

    def test_get_next_range(self):
        """get_next returns values in [0, 1]."""
        prng = PseudoRandom()
        for _ in range(100):
            assert 0 <= prng.get_next() <= 1

    def test_get_next_between(self):
        """get_next_between stays within its bounds."""
        prng = PseudoRandom()
        for _ in range(100):
            assert 5.0 <= prng.get_next_between(5.0, 10.0) <= 10.0


class TestDescent:
    """Test Descent class."""

    def test_shapes(self):
        """Dimensions and node count come from the position array."""
        x = np.array([[0.0, 1.0, 0.5], [0.0, 0.0, 1.0]])
        descent = Descent(x, triangle_d())
        assert descent.k == 2
        assert descent.n == 3
        assert descent.g.shape == (2, 3)
        assert descent.H.shape == (2, 3, 3)

    def test_min_d_ignores_zero_and_infinite(self):
        """min_d is the smallest positive finite ideal distance."""
        D = np.array([
            [0.0, 3.0, np.inf],
            [3.0, 0.0, 2.0],
            [np.inf, 2.0, 0.0]
        ])
        assert Descent(np.zeros((2, 3)), D).min_d == 2.0

    def test_min_d_defaults_to_one(self):
        """Without any positive distance min_d is 1."""
        D = np.full((2, 2), np.inf)
        np.fill_diagonal(D, 0)
        assert Descent(np.zeros((2, 2)), D).min_d == 1.0

    def test_offset_dir_length(self):
        """Offsets are scaled to min_d."""
        D = np.array([[0.0, 4.0], [4.0, 0.0]])
        descent = Descent(np.zeros((2, 2)), D)
        offset = descent.offset_dir()
        assert len(offset) == 2
        assert np.linalg.norm(offset) == pytest.approx(4.0)

    def test_stress_at_ideal_positions(self):
        """An equilateral triangle has near zero stress."""
        x = np.array([[0.0, 1.0, 0.5], [0.0, 0.0, np.sqrt(3) / 2]])
        assert Descent(x, triangle_d()).compute_stress() == pytest.approx(0.0, abs=1e-12)

    def test_stress_value(self):
        """Stress sums the squared relative errors."""
        x = np.array([[0.0, 2.0], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        assert Descent(x, D).compute_stress() == pytest.approx(1.0)

    def test_stress_skips_disconnected_pairs(self):
        """Infinite ideal distances add nothing to stress."""
        x = np.array([[0.0, 1.0, 50.0], [0.0, 0.0, 0.0]])
        D = np.array([
            [0.0, 1.0, np.inf],
            [1.0, 0.0, np.inf],
            [np.inf, np.inf, 0.0]
        ])
        assert Descent(x, D).compute_stress() == pytest.approx(0.0)

    def test_gradient_points_away_from_ideal(self):
        """A stretched edge pulls its ends together."""
        x = np.array([[0.0, 2.0], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        descent = Descent(x, D)
        descent.compute_derivatives(x)
        # moving against the gradient brings node 0 right and node 1 left
        assert descent.g[0, 0] < 0
        assert descent.g[0, 1] > 0
        assert descent.g[1, 0] == pytest.approx(0.0)

    def test_hessian_rows_sum_to_zero(self):
        """Diagonal Hessian entries balance the off diagonal ones."""
        x = np.array([[0.0, 2.0, 1.0], [0.0, 0.0, 1.0]])
        descent = Descent(x, triangle_d())
        descent.compute_derivatives(x)
        assert np.allclose(descent.H.sum(axis=2), 0.0)

    def test_repel_only_pairs_are_ignored_when_far(self):
        """A weight above 1 drops the pair once it is beyond its ideal distance."""
        x = np.array([[0.0, 5.0], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        G = np.array([[1.0, 2.0], [2.0, 1.0]])
        descent = Descent(x, D, G)
        descent.compute_derivatives(x)
        assert np.allclose(descent.g, 0.0)

    def test_repel_only_pairs_push_when_close(self):
        """A weight above 1 still separates a pair that is too close."""
        x = np.array([[0.0, 0.5], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        G = np.array([[1.0, 2.0], [2.0, 1.0]])
        descent = Descent(x, D, G)
        descent.compute_derivatives(x)
        assert descent.g[0, 0] > 0
        assert descent.g[0, 1] < 0

    def test_coincident_points_are_separated(self):
        """Nodes sharing a position get a finite gradient."""
        x = np.zeros((2, 3))
        descent = Descent(x, path_d())
        descent.compute_derivatives(x)

        assert np.all(np.isfinite(descent.g))
        assert np.all(np.isfinite(descent.H))
        for u, v in [(0, 1), (0, 2), (1, 2)]:
            assert pair_distance(x, u, v) > 0

    def test_coincident_separation_is_reproducible(self):
        """The perturbation is driven by a seeded generator."""
        x1 = np.zeros((2, 3))
        x2 = np.zeros((2, 3))
        Descent(x1, path_d()).compute_derivatives(x1)
        Descent(x2, path_d()).compute_derivatives(x2)
        assert np.array_equal(x1, x2)

    def test_step_size_degenerate(self):
        """A zero curvature along the direction gives a zero step."""
        x = np.array([[0.0, 2.0], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        descent = Descent(x, D)
        descent.H = np.zeros((2, 2, 2))
        descent.g = np.ones((2, 2))
        assert descent.compute_step_size(np.ones((2, 2))) == 0.0

    def test_step_size_non_finite(self):
        """A non-finite curvature gives a zero step."""
        descent = Descent(np.zeros((2, 2)), np.array([[0.0, 1.0], [1.0, 0.0]]))
        descent.H = np.full((2, 2, 2), np.inf)
        descent.g = np.ones((2, 2))
        assert descent.compute_step_size(np.ones((2, 2))) == 0.0

    def test_reduce_stress(self):
        """A single gradient step lowers stress."""
        x = np.array([[0.0, 2.0, 4.0], [0.0, 0.0, 0.0]])
        descent = Descent(x.copy(), path_d())
        initial = descent.compute_stress()
        assert descent.reduce_stress() <= initial

    def test_runge_kutta_returns_displacement(self):
        """runge_kutta moves the nodes and reports the squared move."""
        x = np.array([[0.0, 2.0, 1.0], [0.0, 0.0, 1.0]])
        descent = Descent(x, triangle_d())
        before = descent.x.copy()
        disp = descent.runge_kutta()
        assert disp == pytest.approx(float(np.sum((descent.x - before) ** 2)))
        assert disp > 0

    def test_run_returns_stress(self):
        """run reports the stress of the final configuration."""
        x = np.array([[0.0, 3.0, 1.5], [0.0, 0.0, 2.0]])
        descent = Descent(x, triangle_d())
        initial = descent.compute_stress()
        final = descent.run(10)
        assert final == pytest.approx(descent.compute_stress())
        assert final <= initial

    def test_successive_runs_do_not_increase_stress(self):
        """Stress is non-increasing across runs."""
        x = np.array([[0.0, 3.0, 1.0, 4.0], [0.0, 1.0, 2.5, 3.0]])
        D = np.array([
            [0.0, 1.0, 2.0, 3.0],
            [1.0, 0.0, 1.0, 2.0],
            [2.0, 1.0, 0.0, 1.0],
            [3.0, 2.0, 1.0, 0.0]
        ])
        descent = Descent(x, D)
        last = descent.compute_stress()
        for _ in range(5):
            s = descent.run(5)
            assert s <= last + 1e-9
            last = s

    def test_three_coincident_nodes_unfold_into_a_path(self):
        """Path 0-1-2 starting at one point converges to unit spacing."""
        x = np.zeros((2, 3))
        descent = Descent(x, path_d())
        descent.threshold = 1e-8
        descent.run(500)

        assert not np.any(np.isnan(descent.x))
        assert pair_distance(descent.x, 0, 1) == pytest.approx(1.0, abs=0.01)
        assert pair_distance(descent.x, 1, 2) == pytest.approx(1.0, abs=0.01)
        assert pair_distance(descent.x, 0, 2) == pytest.approx(2.0, abs=0.01)

    def test_locks_hold_nodes(self):
        """Locked nodes stay close to their lock position."""
        x = np.array([[0.0, 3.0, 1.5], [0.0, 0.0, 2.0]])
        descent = Descent(x.copy(), triangle_d())
        descent.locks.add(0, x[:, 0].copy())
        descent.run(5)
        assert np.allclose(descent.x[:, 0], x[:, 0], atol=0.1)

    def test_projection_hooks_are_called(self):
        """Installed projections see each axis of every sub-step."""
        calls = []

        def project_x(x0, y0, r):
            calls.append('x')

        def project_y(x0, y0, r):
            calls.append('y')

        x = np.array([[0.0, 2.0, 1.0], [0.0, 0.0, 1.0]])
        descent = Descent(x, triangle_d())
        descent.project = [project_x, project_y]
        descent.runge_kutta()

        # four evaluations, two projected steps each
        assert calls == ['x', 'y'] * 8

    def test_projection_clamps_positions(self):
        """Projected steps keep the feasible values written by the hooks."""
        def keep_apart(x0, y0, r):
            if r[1] - r[0] < 2:
                mid = (r[0] + r[1]) / 2
                r[0], r[1] = mid - 1, mid + 1

        def identity(x0, y0, r):
            pass

        x = np.array([[0.0, 3.0], [0.0, 0.0]])
        D = np.array([[0.0, 1.0], [1.0, 0.0]])
        descent = Descent(x, D)
        descent.project = [keep_apart, identity]
        for _ in range(10):
            descent.runge_kutta()
        assert descent.x[0, 1] - descent.x[0, 0] >= 2 - 1e-9

    def test_1d_descent(self):
        """Descent works on a single axis."""
        x = np.array([[0.0, 3.0, 6.0]])
        descent = Descent(x, path_d())
        descent.run(10)
        assert descent.compute_stress() < 1.0

    def test_3d_descent(self):
        """Descent works in three dimensions."""
        x = np.array([
            [0.0, 1.0, 0.5, 0.5],
            [0.0, 0.0, 0.866, 0.289],
            [0.0, 0.0, 0.0, 0.9]
        ])
        D = np.ones((4, 4))
        np.fill_diagonal(D, 0)
        descent = Descent(x, D)
        initial = descent.compute_stress()
        descent.run(5)
        assert descent.compute_stress() <= initial
