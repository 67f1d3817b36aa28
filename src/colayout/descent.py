"""
Stress majorization by gradient descent.

Positions are a ``k x n`` array (``k`` dimensions, ``n`` nodes). Each
Runge-Kutta step evaluates the stress gradient and Hessian four times and,
when projection functions are installed, projects every intermediate step
onto the feasible region of the separation constraints.
"""

from __future__ import annotations

from typing import Optional, Callable
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

ProjectFunction = Callable[[np.ndarray, np.ndarray, np.ndarray], None]


class Locks:
    """Positions that locked nodes are held at during descent."""

    def __init__(self):
        self.locks: dict[int, np.ndarray] = {}

    def add(self, id: int, x: np.ndarray) -> None:
        self.locks[id] = x

    def clear(self) -> None:
        self.locks = {}

    def is_empty(self) -> bool:
        return len(self.locks) == 0

    def apply(self, f: Callable[[int, np.ndarray], None]) -> None:
        for id, x in self.locks.items():
            f(id, x)


class PseudoRandom:
    """Linear congruential generator, reproducible from its seed."""

    def __init__(self, seed: int = 1):
        self.seed = seed
        self.a = 214013
        self.c = 2531011
        self.m = 2147483648
        self.range = 32767

    def get_next(self) -> float:
        """Random real in [0, 1]."""
        self.seed = (self.seed * self.a + self.c) % self.m
        return (self.seed >> 16) / self.range

    def get_next_between(self, min_val: float, max_val: float) -> float:
        return min_val + self.get_next() * (max_val - min_val)


class Descent:
    """
    Reduces stress over a graph with ideal pairwise distances.

    The goal function is::

        stress = Sum[w[i,j] * (length[i,j] - D[i,j])^2 / D[i,j]^2]

    where ``D`` holds the ideal separations and ``w`` optional weights from
    ``G``. A ``G[i][j]`` greater than 1 marks a pair that only repels: it
    contributes while the pair is closer than ``D[i][j]`` and is ignored
    beyond. Pairs with a non-finite ideal distance never contribute.
    """

    COINCIDENT_DISTANCE_SQ = 1e-9

    def __init__(
        self,
        x: np.ndarray,
        D: np.ndarray,
        G: Optional[np.ndarray] = None
    ):
        """
        Args:
            x: initial coordinates (k x n), updated in place
            D: ideal distances (n x n)
            G: optional goal weights (n x n)
        """
        self.x = x
        self.D = D
        self.G = G

        self.k = x.shape[0]
        self.n = x.shape[1]

        self.threshold = 0.0001

        self.H = np.zeros((self.k, self.n, self.n))
        self.g = np.zeros((self.k, self.n))

        # Runge-Kutta stages and scratch buffers
        self.a = np.zeros((self.k, self.n))
        self.b = np.zeros((self.k, self.n))
        self.c = np.zeros((self.k, self.n))
        self.d = np.zeros((self.k, self.n))
        self.e = np.zeros((self.k, self.n))
        self.ia = np.zeros((self.k, self.n))
        self.ib = np.zeros((self.k, self.n))

        self.locks = Locks()

        positive = D[np.isfinite(D) & (D > 0)]
        self.min_d = float(positive.min()) if positive.size else 1.0

        self.random = PseudoRandom()

        self.project: Optional[list[ProjectFunction]] = None

    def offset_dir(self) -> np.ndarray:
        """Pseudo-random direction with length ``min_d``."""
        u = np.array([self.random.get_next_between(0.01, 1) - 0.5 for _ in range(self.k)])
        l = np.linalg.norm(u)
        return u * (self.min_d / l)

    def _separate_coincident(self, x: np.ndarray) -> None:
        """Nudge apart nodes sharing a position so the gradient is defined."""
        diff = x[:, :, np.newaxis] - x[:, np.newaxis, :]
        dist_squared = np.sum(diff ** 2, axis=0)
        close = np.triu(dist_squared <= self.COINCIDENT_DISTANCE_SQ, 1)
        if not close.any():
            return
        for u, v in np.argwhere(close):
            for _ in range(self.n):
                delta = x[:, u] - x[:, v]
                if np.dot(delta, delta) > self.COINCIDENT_DISTANCE_SQ:
                    break
                x[:, v] += self.offset_dir()

    def compute_derivatives(self, x: np.ndarray) -> None:
        """
        Compute the gradient ``g`` and Hessian ``H`` of stress at ``x``.

        Coincident nodes in ``x`` are first displaced in place.
        """
        n = self.n
        if n < 1:
            return

        self._separate_coincident(x)

        # diff[:, u, v] = x[:, u] - x[:, v]
        diff = x[:, :, np.newaxis] - x[:, np.newaxis, :]
        diff_squared = diff ** 2
        dist_squared = np.sum(diff_squared, axis=0)
        distances = np.sqrt(dist_squared)

        weights = np.ones((n, n)) if self.G is None else np.array(self.G, dtype=float)

        repel_only = (weights > 1) & (distances > self.D)
        weights = np.where(weights > 1, 1.0, weights)

        valid = (
            ~np.eye(n, dtype=bool)
            & np.isfinite(self.D)
            & (self.D > 0)
            & ~repel_only
            & (dist_squared > 0)
        )

        ideal = np.where(valid, self.D, 1.0)
        ideal_sq = ideal ** 2
        l = np.where(valid, distances, 1.0)
        l_sq = np.where(valid, dist_squared, 1.0)
        l_cubed = l_sq * l

        gs = np.where(valid, 2 * weights * (l - ideal) / (ideal_sq * l), 0.0)
        hs = np.where(valid, -2 * weights / (ideal_sq * l_cubed), 0.0)

        self.g = np.sum(diff * gs[np.newaxis, :, :], axis=2)

        self.H = np.where(
            valid[np.newaxis, :, :],
            hs[np.newaxis, :, :] * (2 * l_cubed + ideal * (diff_squared - l_sq)),
            0.0
        )
        Huu = -np.sum(self.H, axis=2)
        for i in range(self.k):
            np.fill_diagonal(self.H[i], Huu[i])

        if not self.locks.is_empty():
            max_h = float(np.max(np.abs(Huu))) if Huu.size else 0.0

            def apply_lock(u: int, p: np.ndarray) -> None:
                for i in range(self.k):
                    self.H[i, u, u] += max_h
                    self.g[i, u] -= max_h * (p[i] - x[i, u])

            self.locks.apply(apply_lock)

    def compute_step_size(self, d: np.ndarray) -> float:
        """Newton step length along ``d``; 0 when the curvature is degenerate."""
        numerator = 0.0
        denominator = 0.0
        for i in range(self.k):
            numerator += float(np.dot(self.g[i], d[i]))
            denominator += float(np.dot(d[i], np.dot(self.H[i], d[i])))

        if denominator == 0 or not math.isfinite(denominator):
            return 0.0
        return numerator / denominator

    @staticmethod
    def take_descent_step(x: np.ndarray, d: np.ndarray, step_size: float) -> None:
        x -= step_size * d

    def step_and_project(
        self,
        x0: np.ndarray,
        r: np.ndarray,
        d: np.ndarray,
        step_size: float
    ) -> None:
        """
        ``r = x0 - step_size * d``, projecting x then y when projection is set.

        The x projection sees the y positions before the step; the y
        projection sees the already projected x positions.
        """
        r[:] = x0
        if self.k >= 2 and self.project:
            self.take_descent_step(r[0], d[0], step_size)
            self.project[0](x0[0], x0[1], r[0])
            self.take_descent_step(r[1], d[1], step_size)
            self.project[1](r[0], x0[1], r[1])
            for i in range(2, self.k):
                self.take_descent_step(r[i], d[i], step_size)
        else:
            for i in range(self.k):
                self.take_descent_step(r[i], d[i], step_size)

    def compute_next_position(self, x0: np.ndarray, r: np.ndarray) -> None:
        self.compute_derivatives(x0)
        alpha = self.compute_step_size(self.g)
        self.step_and_project(x0, r, self.g, alpha)

        if self.project:
            # second, shorter step along the direction the projection moved us
            self.e[:] = x0 - r
            beta = self.compute_step_size(self.e)
            beta = max(0.2, min(beta, 1.0))
            self.step_and_project(x0, r, self.e, beta)

    def runge_kutta(self) -> float:
        """
        One fourth order Runge-Kutta step.

        Returns:
            Squared displacement of all coordinates.
        """
        self.compute_next_position(self.x, self.a)
        self.ia[:] = self.x + (self.a - self.x) / 2.0
        self.compute_next_position(self.ia, self.b)
        self.ib[:] = self.x + (self.b - self.x) / 2.0
        self.compute_next_position(self.ib, self.c)
        self.compute_next_position(self.c, self.d)

        new_x = (self.a + 2.0 * self.b + 2.0 * self.c + self.d) / 6.0
        delta = self.x - new_x
        disp = float(np.sum(delta * delta))
        self.x[:] = new_x
        return disp

    def run(self, iterations: int) -> float:
        """
        Runge-Kutta steps until the relative change in stress drops below
        ``threshold`` or ``iterations`` are used up.

        Returns:
            Stress after the last step.
        """
        stress = float('inf')
        converged = False
        steps = 0
        while not converged and iterations > 0:
            iterations -= 1
            steps += 1
            self.runge_kutta()
            s = self.compute_stress()
            converged = s == 0 or abs(stress / s - 1) < self.threshold
            stress = s
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("descent step %d, stress %g", steps, stress)
        if converged:
            logger.debug("descent converged after %d steps, stress %g", steps, stress)
        return stress

    def reduce_stress(self) -> float:
        """Single plain gradient step; returns the new stress."""
        self.compute_derivatives(self.x)
        alpha = self.compute_step_size(self.g)
        for i in range(self.k):
            self.take_descent_step(self.x[i], self.g[i], alpha)
        return self.compute_stress()

    def compute_stress(self) -> float:
        """Sum over finite ideal distances of ``(D - l)^2 / D^2``."""
        if self.n < 2:
            return 0.0
        diff = self.x[:, :, np.newaxis] - self.x[:, np.newaxis, :]
        l = np.sqrt(np.sum(diff ** 2, axis=0))
        mask = np.triu(np.isfinite(self.D) & (self.D > 0), 1)
        d = self.D[mask]
        rl = d - l[mask]
        return float(np.sum(rl * rl / (d * d)))
