"""Tests for the separation constraint solver."""

import pytest
from colayout.vpsc import (
    Variable,
    Constraint,
    Solver,
    Blocks,
    Span,
    remove_overlap_in_one_dimension,
)


def round_to(v: float, precision: int = 4) -> float:
    """Round to specified precision."""
    m = 10 ** precision
    return round(v * m) / m


def get_positions(variables: list[Variable], precision: int = 4) -> list[float]:
    """Get rounded positions from variables."""
    return [round_to(v.position(), precision) for v in variables]


def solve(desired, pairs, gap=3):
    variables = [Variable(x) for x in desired]
    constraints = [Constraint(variables[l], variables[r], gap) for l, r in pairs]
    solver = Solver(variables, constraints)
    solver.solve()
    return variables, constraints, solver


class TestVariable:
    """Test Variable class."""

    def test_defaults(self):
        """A new variable has unit weight and scale and no solver handles."""
        v = Variable(5.0)
        assert v.desired_position == 5.0
        assert v.weight == 1.0
        assert v.scale == 1.0
        assert v.block == -1
        assert v.c_in == [] and v.c_out == []

    def test_weight_and_scale(self):
        """Custom weight and scale are stored."""
        v = Variable(10.0, weight=2.0, scale=3.0)
        assert v.weight == 2.0
        assert v.scale == 3.0


class TestSolverHandles:
    """Test that the solver numbers variables and constraints."""

    def test_ids_and_adjacency(self):
        """Adjacency lists hold constraint ids."""
        a, b, c = Variable(0), Variable(1), Variable(2)
        c1 = Constraint(a, b, 1)
        c2 = Constraint(b, c, 1)
        Solver([a, b, c], [c1, c2])

        assert [a.id, b.id, c.id] == [0, 1, 2]
        assert [c1.id, c2.id] == [0, 1]
        assert a.c_out == [0]
        assert b.c_in == [0] and b.c_out == [1]
        assert c.c_in == [1]

    def test_constraints_start_inactive(self):
        """All constraints are inactive after construction."""
        a, b = Variable(0), Variable(1)
        c = Constraint(a, b, 1)
        c.active = True
        solver = Solver([a, b], [c])
        assert not c.active
        assert solver.inactive == [0]


class TestSolver:
    """Test VPSC Solver against known placements."""

    def test_no_splits(self):
        """Test case: no splits required."""
        variables, _, _ = solve(
            [2, 9, 9, 9, 2], [(0, 4), (0, 1), (1, 2), (2, 4), (3, 4)]
        )
        assert get_positions(variables) == [1.4, 4.4, 7.4, 7.4, 10.4]

    def test_simple_scale(self):
        """Test case: simple scale."""
        variables = [Variable(0, weight=1, scale=2), Variable(0, weight=1, scale=1)]
        Solver(variables, [Constraint(variables[0], variables[1], 2)]).solve()
        assert get_positions(variables) == [-0.8, 0.4]

    def test_simple_scale_three_variables(self):
        """Test case: simple scale with 3 variables."""
        variables = [
            Variable(1, weight=1, scale=3),
            Variable(1, weight=1, scale=2),
            Variable(1, weight=1, scale=4),
        ]
        constraints = [
            Constraint(variables[0], variables[1], 2),
            Constraint(variables[1], variables[2], 2),
        ]
        Solver(variables, constraints).solve()
        assert get_positions(variables) == [0.2623, 1.3934, 1.1967]

    def test_non_trivial_merging(self):
        """Test case: non-trivial merging."""
        variables, _, _ = solve(
            [4, 6, 9, 2, 5], [(0, 2), (0, 3), (1, 4), (2, 4), (2, 3), (3, 4)]
        )
        assert get_positions(variables) == [0.5, 6, 3.5, 6.5, 9.5]

    def test_case_5(self):
        """Test case 5."""
        variables, _, _ = solve(
            [5, 6, 7, 4, 3], [(0, 4), (1, 2), (2, 3), (2, 4), (3, 4)]
        )
        assert get_positions(variables) == [5, 0.5, 3.5, 6.5, 9.5]

    def test_split_block_to_activate_different_constraint(self):
        """Test case: split block to activate different constraint."""
        variables, _, _ = solve(
            [7, 1, 6, 0, 2], [(0, 3), (0, 1), (1, 4), (2, 4), (2, 3), (3, 4)]
        )
        assert get_positions(variables) == [0.8, 3.8, 0.8, 3.8, 6.8]

    def test_non_trivial_split(self):
        """Test case: non-trivial split."""
        pairs = [
            (0, 3), (1, 8), (1, 6), (2, 6), (3, 5), (3, 6), (3, 7), (4, 8),
            (4, 7), (5, 8), (5, 7), (5, 8), (6, 9), (7, 8), (7, 9), (8, 9),
        ]
        variables, _, _ = solve([0, 9, 1, 9, 5, 1, 2, 1, 6, 3], pairs)
        expected = [-3.714, 4.0, 1.0, -0.714, 2.286, 2.286, 7.0, 5.286, 8.286, 11.286]
        assert get_positions(variables, precision=3) == expected

    def test_case_7(self):
        """Test case 7."""
        variables, _, _ = solve(
            [7, 0, 3, 1, 4], [(0, 3), (0, 2), (1, 4), (1, 4), (2, 3), (3, 4)]
        )
        assert get_positions(variables) == [-0.75, 0, 2.25, 5.25, 8.25]

    def test_case_8(self):
        """Test case 8."""
        variables, _, _ = solve(
            [4, 2, 3, 1, 8], [(0, 4), (0, 2), (1, 3), (2, 3), (2, 4), (3, 4)]
        )
        assert get_positions(variables) == [-0.5, 2, 2.5, 5.5, 8.5]

    def test_case_9(self):
        """Test case 9."""
        variables, _, _ = solve(
            [3, 4, 0, 5, 6],
            [(0, 1), (0, 2), (1, 2), (1, 4), (2, 3), (2, 3), (3, 4), (3, 4)],
        )
        assert get_positions(variables) == [-2.4, 0.6, 3.6, 6.6, 9.6]

    def test_feasibility(self):
        """Every satisfiable constraint holds after solving."""
        pairs = [(0, 3), (1, 8), (1, 6), (2, 6), (3, 5), (4, 7), (6, 9), (7, 9), (8, 9)]
        _, constraints, _ = solve([0, 9, 1, 9, 5, 1, 2, 1, 6, 3], pairs)
        for c in constraints:
            assert not c.unsatisfiable
            assert c.slack() >= -1e-6

    def test_resolve_is_stable(self):
        """Solving an already solved system does not move anything."""
        variables, _, solver = solve(
            [4, 6, 9, 2, 5], [(0, 2), (0, 3), (1, 4), (2, 4), (2, 3), (3, 4)]
        )
        before = [v.position() for v in variables]
        solver.solve()
        after = [v.position() for v in variables]
        for p, q in zip(before, after):
            assert abs(p - q) <= 1e-6

    def test_set_desired_positions(self):
        """Updating desired positions moves the solution."""
        variables = [Variable(0), Variable(5)]
        solver = Solver(variables, [Constraint(variables[0], variables[1], 3)])
        solver.solve()

        solver.set_desired_positions([10, 15])
        solver.solve()

        assert variables[0].desired_position == 10
        assert variables[1].desired_position == 15
        assert variables[1].position() - variables[0].position() >= 3 - 1e-6
        assert variables[0].position() == pytest.approx(10)

    def test_set_starting_positions(self):
        """Starting positions seed the blocks before solving."""
        variables = [Variable(0), Variable(0)]
        solver = Solver(variables, [Constraint(variables[0], variables[1], 2)])
        solver.set_starting_positions([3, 7])
        assert get_positions(variables) == [3, 7]

        solver.set_desired_positions([1, 1])
        solver.solve()
        assert get_positions(variables) == [0, 2]

    def test_equality_constraint(self):
        """Equality constraints hold exactly."""
        variables = [Variable(0), Variable(10)]
        Solver(variables, [Constraint(variables[0], variables[1], 5, equality=True)]).solve()

        gap = variables[1].position() - variables[0].position()
        assert abs(gap - 5.0) < 1e-6

    def test_equality_pulls_apart_variables(self):
        """Equality constraints also act when the gap is already exceeded."""
        variables = [Variable(0), Variable(20)]
        Solver(variables, [Constraint(variables[0], variables[1], 4, equality=True)]).solve()
        assert get_positions(variables) == [8, 12]

    def test_cycle_marks_one_constraint_unsatisfiable(self):
        """A three-cycle loses exactly one constraint, the others hold."""
        variables = [Variable(0), Variable(5), Variable(10)]
        constraints = [
            Constraint(variables[0], variables[1], 3),
            Constraint(variables[1], variables[2], 3),
            Constraint(variables[2], variables[0], 3),
        ]
        Solver(variables, constraints).solve()

        flagged = [c for c in constraints if c.unsatisfiable]
        assert len(flagged) == 1
        for c in constraints:
            if not c.unsatisfiable:
                assert c.slack() >= -1e-6

    def test_unsatisfiable_slack_is_infinite(self):
        """Flagged constraints never look violated again."""
        a, b = Variable(0), Variable(0)
        c = Constraint(a, b, 1)
        Solver([a, b], [c])
        c.unsatisfiable = True
        assert c.slack() == float('inf')


class TestBlocks:
    """Test the block arena."""

    def _arena(self, desired):
        variables = [Variable(x) for x in desired]
        constraints = [Constraint(variables[0], variables[1], 5)]
        Solver(variables, constraints)
        return variables, constraints, Blocks(variables, constraints)

    def test_one_block_per_variable(self):
        """Every variable starts in a block of its own."""
        variables, _, blocks = self._arena([0, 1, 2])
        assert len(blocks) == 3
        assert [v.block for v in variables] == [0, 1, 2]

    def test_cost_at_desired_positions(self):
        """Cost is zero when every variable sits where it wants."""
        _, _, blocks = self._arena([0, 10])
        assert blocks.cost() == 0

    def test_merge_reassigns_handles(self):
        """Merging leaves one block holding both variables."""
        variables, constraints, blocks = self._arena([0, 1, 8])
        blocks.merge(constraints[0])

        assert len(blocks) == 2
        assert constraints[0].active
        assert variables[0].block == variables[1].block
        assert variables[2].block != variables[0].block
        assert variables[1].position() - variables[0].position() == pytest.approx(5)
        assert variables[0].position() == pytest.approx(-2)

    def test_split_restores_blocks(self):
        """Splitting across a constraint separates its variables again."""
        variables, constraints, blocks = self._arena([0, 1])
        blocks.merge(constraints[0])
        handle = variables[0].block

        left, right = blocks.split(constraints[0])
        blocks.remove(handle)

        assert not constraints[0].active
        assert len(blocks) == 2
        assert variables[0].block != variables[1].block
        assert get_positions(variables) == [0, 1]

    def test_directed_path(self):
        """Directed paths follow active constraints left to right."""
        variables, constraints, blocks = self._arena([0, 1])
        assert blocks.is_active_directed_path_between(0, 0)
        assert not blocks.is_active_directed_path_between(0, 1)
        blocks.merge(constraints[0])
        assert blocks.is_active_directed_path_between(0, 1)
        assert not blocks.is_active_directed_path_between(1, 0)


class TestRemoveOverlap:
    """Test one-dimensional span separation."""

    def test_spans_do_not_overlap(self):
        """Consecutive spans end up at least half their sizes apart."""
        spans = [Span(4, 5), Span(4, 6), Span(4, 7)]
        result = remove_overlap_in_one_dimension(spans)

        assert len(result.centers) == 3
        for i in range(len(spans) - 1):
            gap = result.centers[i + 1] - result.centers[i]
            assert gap >= (spans[i].size + spans[i + 1].size) / 2 - 1e-6
        assert result.centers[1] == pytest.approx(6)

    def test_bounds(self):
        """Bounds are respected and reported."""
        spans = [Span(2, 5), Span(2, 6)]
        result = remove_overlap_in_one_dimension(spans, lower_bound=0, upper_bound=10)

        assert result.centers[0] >= result.lower_bound + 1 - 1e-6
        assert result.centers[1] <= result.upper_bound - 1 + 1e-6
        assert result.centers[1] - result.centers[0] >= 2 - 1e-6

    def test_unbounded_extent(self):
        """Without bounds the reported extent is the outer edges of the spans."""
        result = remove_overlap_in_one_dimension([Span(4, 5), Span(4, 6)])
        assert result.lower_bound == pytest.approx(result.centers[0] - 2)
        assert result.upper_bound == pytest.approx(result.centers[1] + 2)
