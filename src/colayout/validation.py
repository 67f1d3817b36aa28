"""
Input validation for layouts.

Malformed options, nodes, links, groups and constraints raise a
:class:`ValidationError` subclass with a descriptive message. Numerical
degeneracies met during layout are handled in place and never raised.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence
import math
import numbers


class ValidationError(ValueError):
    """Base exception for layout validation errors."""

    pass


class InvalidOptionError(ValidationError):
    """Raised when a layout option has an unusable value."""

    pass


class InvalidNodeError(ValidationError):
    """Raised when a node is malformed."""

    pass


class InvalidLinkError(ValidationError):
    """Raised when a link references invalid nodes."""

    pass


class InvalidGroupError(ValidationError):
    """Raised when a group references invalid nodes/groups."""

    pass


class InvalidConstraintError(ValidationError):
    """Raised when a constraint is malformed or references invalid nodes."""

    pass


def validate_size(size: Sequence[float]) -> tuple[float, float]:
    """
    Validate canvas size dimensions.

    Raises:
        InvalidOptionError: If there are not two positive dimensions
    """
    try:
        if len(size) < 2:
            raise InvalidOptionError(
                f"size must have 2 elements [width, height], got {len(size)}"
            )
        width, height = float(size[0]), float(size[1])
    except TypeError as e:
        raise InvalidOptionError(f"size must be a [width, height] pair, got {size!r}") from e

    if not width > 0 or not height > 0:
        raise InvalidOptionError(f"size must be positive, got [{width}, {height}]")
    return width, height


def validate_positive(name: str, value: Any) -> float:
    """A finite number greater than zero."""
    v = validate_number(name, value)
    if v <= 0:
        raise InvalidOptionError(f"{name} must be positive, got {v}")
    return v


def validate_non_negative(name: str, value: Any) -> float:
    v = validate_number(name, value)
    if v < 0:
        raise InvalidOptionError(f"{name} must be >= 0, got {v}")
    return v


def validate_number(name: str, value: Any) -> float:
    """A finite real number; booleans are rejected."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidOptionError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidOptionError(f"{name} must be finite, got {value}")
    return float(value)


def validate_iterations(name: str, value: Any) -> int:
    """
    Validate an iteration budget.

    Raises:
        InvalidOptionError: If value is not an integer >= 0
    """
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidOptionError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidOptionError(f"{name} must be >= 0, got {value}")
    return int(value)


def validate_axis(name: str, value: Any) -> str:
    if value not in ('x', 'y'):
        raise InvalidOptionError(f"{name} must be 'x' or 'y', got {value!r}")
    return value


def validate_nodes(nodes: Sequence[Any]) -> None:
    """
    Check node positions and box sizes.

    Positions may be missing (``None``); when given they must be finite.
    Widths and heights, when given, must be finite and not negative.

    Raises:
        InvalidNodeError: On the first malformed node
    """
    for i, v in enumerate(nodes):
        for attr in ("x", "y", "width", "height"):
            val = getattr(v, attr, None)
            if val is None:
                continue
            if isinstance(val, bool) or not isinstance(val, numbers.Real) or not math.isfinite(val):
                raise InvalidNodeError(f"Node {i}: {attr} must be a finite number, got {val!r}")
            if attr in ("width", "height") and val < 0:
                raise InvalidNodeError(f"Node {i}: {attr} must be >= 0, got {val}")


def validate_link_indices(
    links: Sequence[Any],
    node_count: int,
    strict: bool = True,
) -> list[tuple[int, str]]:
    """
    Validate that all link source/target indices are within bounds.

    Args:
        links: Sequence of Link objects or dicts with source/target
        node_count: Number of nodes in the graph
        strict: If True, raises on invalid. If False, returns list of issues.

    Returns:
        List of (link_index, issue_description) tuples

    Raises:
        InvalidLinkError: If strict=True and invalid links found
    """
    issues: list[tuple[int, str]] = []

    for i, link in enumerate(links):
        for end in ("source", "target"):
            idx = _get_index(link, end)
            if idx is None:
                issues.append((i, f"Link {i}: {end} is None"))
            elif idx < 0 or idx >= node_count:
                issues.append((i, f"Link {i}: {end} index {idx} out of bounds [0, {node_count})"))

    if strict and issues:
        msg = "Invalid link indices:\n" + "\n".join(issue[1] for issue in issues)
        raise InvalidLinkError(msg)

    return issues


def validate_group_indices(
    groups: Sequence[Any],
    node_count: int,
    strict: bool = True,
) -> list[tuple[int, str]]:
    """
    Validate that group leaf/group indices are within bounds.

    Leaves and sub-groups may be given as indices or as objects carrying an
    ``index``.

    Raises:
        InvalidGroupError: If strict=True and invalid groups found
    """
    issues: list[tuple[int, str]] = []
    group_count = len(groups)

    for gi, group in enumerate(groups):
        for leaf in getattr(group, "leaves", None) or ():
            idx = _get_index_simple(leaf)
            if idx is not None and (idx < 0 or idx >= node_count):
                issues.append(
                    (gi, f"Group {gi}: leaf index {idx} out of bounds [0, {node_count})")
                )
        for subgroup in getattr(group, "groups", None) or ():
            idx = _get_index_simple(subgroup)
            if idx is not None and (idx < 0 or idx >= group_count):
                issues.append(
                    (gi, f"Group {gi}: subgroup index {idx} out of bounds [0, {group_count})")
                )

    if strict and issues:
        msg = "Invalid group indices:\n" + "\n".join(issue[1] for issue in issues)
        raise InvalidGroupError(msg)

    return issues


def validate_constraint_indices(constraints: Sequence[Any], node_count: int) -> None:
    """
    Check that separation and alignment constraints reference existing nodes.

    Raises:
        InvalidConstraintError: On the first out of range reference
    """
    for i, c in enumerate(constraints):
        if getattr(c, "type", "separation") == "alignment":
            refs = [o.node for o in c.offsets]
        else:
            refs = [c.left, c.right]
        for idx in refs:
            if not isinstance(idx, int) or idx < 0 or idx >= node_count:
                raise InvalidConstraintError(
                    f"Constraint {i}: node index {idx!r} out of bounds [0, {node_count})"
                )


def _get_index(obj: Any, attr: str) -> Optional[int]:
    """Extract index from int, Node, or object with index attribute."""
    if isinstance(obj, dict):
        val = obj.get(attr)
    else:
        val = getattr(obj, attr, None)

    if val is None:
        return None
    if isinstance(val, int):
        return val
    if getattr(val, "index", None) is not None:
        return int(val.index)
    return None


def _get_index_simple(obj: Any) -> Optional[int]:
    """Extract index from int or object with index attribute."""
    if isinstance(obj, int):
        return obj
    if getattr(obj, "index", None) is not None:
        return int(obj.index)
    return None


__all__ = [
    "ValidationError",
    "InvalidOptionError",
    "InvalidNodeError",
    "InvalidLinkError",
    "InvalidGroupError",
    "InvalidConstraintError",
    "validate_size",
    "validate_positive",
    "validate_non_negative",
    "validate_number",
    "validate_iterations",
    "validate_axis",
    "validate_nodes",
    "validate_link_indices",
    "validate_group_indices",
    "validate_constraint_indices",
]
