"""Tests for input validation module."""

import math

import numpy as np
import pytest

from colayout.layout import Group, Link, Node
from colayout.linklengths import AlignmentConstraint, AlignmentSpecification, SeparationConstraint
from colayout.validation import (
    InvalidConstraintError,
    InvalidGroupError,
    InvalidLinkError,
    InvalidNodeError,
    InvalidOptionError,
    ValidationError,
    validate_axis,
    validate_constraint_indices,
    validate_group_indices,
    validate_iterations,
    validate_link_indices,
    validate_nodes,
    validate_non_negative,
    validate_positive,
    validate_size,
)


class TestHierarchy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize('error', [
        InvalidOptionError,
        InvalidNodeError,
        InvalidLinkError,
        InvalidGroupError,
        InvalidConstraintError,
    ])
    def test_subclasses(self, error):
        """Every error is a ValidationError and a ValueError."""
        assert issubclass(error, ValidationError)
        assert issubclass(error, ValueError)


class TestSizeValidation:
    """Tests for canvas size validation."""

    def test_valid_size(self):
        """Valid canvas size returns a float pair."""
        assert validate_size([800, 600]) == (800.0, 600.0)

    def test_zero_height_raises(self):
        """Zero height is rejected."""
        with pytest.raises(InvalidOptionError, match="must be positive"):
            validate_size([800, 0])

    def test_single_element_raises(self):
        """A single element is rejected."""
        with pytest.raises(InvalidOptionError, match="must have 2 elements"):
            validate_size([800])

    def test_not_a_pair_raises(self):
        """A bare number is rejected."""
        with pytest.raises(InvalidOptionError):
            validate_size(800)


class TestNumberValidation:
    """Tests for scalar option validation."""

    def test_positive(self):
        """Positive numbers pass and come back as floats."""
        assert validate_positive('threshold', 2) == 2.0

    def test_booleans_rejected(self):
        """Booleans are not numbers here."""
        with pytest.raises(InvalidOptionError, match="must be a number"):
            validate_positive('threshold', True)

    def test_infinite_rejected(self):
        """Infinity is rejected."""
        with pytest.raises(InvalidOptionError, match="must be finite"):
            validate_non_negative('gap', math.inf)

    def test_non_negative_allows_zero(self):
        """Zero is not negative."""
        assert validate_non_negative('gap', 0) == 0.0

    def test_iterations(self):
        """Iteration budgets are non-negative integers."""
        assert validate_iterations('n', 0) == 0
        with pytest.raises(InvalidOptionError, match="must be an integer"):
            validate_iterations('n', 1.5)
        with pytest.raises(InvalidOptionError, match=">= 0"):
            validate_iterations('n', -1)

    def test_numpy_scalars(self):
        """Numpy scalars pass as numbers and iteration budgets."""
        assert validate_positive('threshold', np.float64(0.5)) == 0.5
        assert validate_non_negative('gap', np.int64(3)) == 3.0
        n = validate_iterations('n', np.int64(5))
        assert n == 5 and type(n) is int

    def test_axis(self):
        """Only x and y are axes."""
        assert validate_axis('axis', 'y') == 'y'
        with pytest.raises(InvalidOptionError):
            validate_axis('axis', 'z')


class TestNodeValidation:
    """Tests for node validation."""

    def test_valid_nodes(self):
        """Missing positions and numpy floats are fine."""
        validate_nodes([Node(), Node(x=np.float64(1.5), y=2, width=10, height=0)])

    def test_nan_position_raises(self):
        """A NaN position is rejected."""
        with pytest.raises(InvalidNodeError, match="Node 1: y"):
            validate_nodes([Node(x=0, y=0), Node(x=0, y=math.nan)])

    def test_negative_width_raises(self):
        """A negative width is rejected."""
        with pytest.raises(InvalidNodeError, match="width must be >= 0"):
            validate_nodes([Node(x=0, y=0, width=-1, height=1)])

    def test_string_position_raises(self):
        """Positions must be numbers."""
        with pytest.raises(InvalidNodeError):
            validate_nodes([Node(x='0', y=0)])


class TestLinkValidation:
    """Tests for link index validation."""

    def test_valid_links(self):
        """Valid links return an empty issues list."""
        assert validate_link_indices([Link(0, 1), Link(1, 2)], node_count=3) == []

    def test_node_objects(self):
        """Links holding nodes are checked by the nodes' indices."""
        links = [Link(Node(index=0), Node(index=1))]
        assert validate_link_indices(links, node_count=2) == []

    def test_out_of_bounds_raises(self):
        """Indices past the end are rejected."""
        with pytest.raises(InvalidLinkError, match="out of bounds"):
            validate_link_indices([Link(0, 5)], node_count=3)

    def test_non_strict_collects(self):
        """Non-strict mode reports every issue."""
        issues = validate_link_indices([Link(-1, 5)], node_count=3, strict=False)
        assert [i for i, _ in issues] == [0, 0]

    def test_dict_links(self):
        """Dictionary links are checked too."""
        issues = validate_link_indices([{'source': 0}], node_count=3, strict=False)
        assert issues == [(0, "Link 0: target is None")]


class TestGroupValidation:
    """Tests for group index validation."""

    def test_valid_groups(self):
        """Leaves and sub-groups in range pass."""
        groups = [Group(leaves=[0, 1], groups=[1]), Group(leaves=[2])]
        assert validate_group_indices(groups, node_count=3) == []

    def test_bad_leaf_raises(self):
        """A leaf past the node list is rejected."""
        with pytest.raises(InvalidGroupError, match="leaf index 3"):
            validate_group_indices([Group(leaves=[3])], node_count=3)

    def test_bad_subgroup_raises(self):
        """A sub-group past the group list is rejected."""
        with pytest.raises(InvalidGroupError, match="subgroup index 2"):
            validate_group_indices([Group(groups=[2])], node_count=3)


class TestConstraintValidation:
    """Tests for constraint index validation."""

    def test_valid_constraints(self):
        """Separation and alignment constraints in range pass."""
        validate_constraint_indices([
            SeparationConstraint('x', 0, 1, 10),
            AlignmentConstraint('y', [AlignmentSpecification(1), AlignmentSpecification(2)]),
        ], node_count=3)

    def test_bad_separation_raises(self):
        """A separation constraint on a missing node is rejected."""
        with pytest.raises(InvalidConstraintError, match="Constraint 0"):
            validate_constraint_indices([SeparationConstraint('x', 0, 3, 10)], node_count=3)

    def test_bad_alignment_raises(self):
        """An alignment constraint on a missing node is rejected."""
        c = AlignmentConstraint('x', [AlignmentSpecification(0), AlignmentSpecification(7)])
        with pytest.raises(InvalidConstraintError, match="7"):
            validate_constraint_indices([c], node_count=3)
