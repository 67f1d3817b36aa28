"""
Layout options.

:class:`LayoutOptions` lists every recognised option with its default and
validates values on construction. :meth:`LayoutOptions.from_mapping` accepts
the loosely typed dictionaries hosts tend to pass around, with camelCase or
snake_case keys.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional, Union
import logging
import re

from .linklengths import LayoutConstraint, constraint_from_mapping
from .validation import (
    InvalidOptionError,
    validate_axis,
    validate_iterations,
    validate_non_negative,
    validate_positive,
    validate_size,
)

logger = logging.getLogger(__name__)

LinkLength = Union[float, Callable[[Any], float]]


def _snake_case(key: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


@dataclass
class FlowLayoutOptions:
    """Directed flow along ``axis``, links at least ``min_separation`` long."""

    axis: str = 'y'
    min_separation: LinkLength = 0.0

    def __post_init__(self):
        self.axis = validate_axis('flowLayout.axis', self.axis)
        if not callable(self.min_separation):
            self.min_separation = validate_non_negative('flowLayout.minSeparation', self.min_separation)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Optional[FlowLayoutOptions]:
        """Flow options, or ``None`` when no axis is given."""
        if isinstance(mapping, FlowLayoutOptions):
            return mapping
        if not isinstance(mapping, Mapping):
            raise InvalidOptionError(f"flowLayout must be a mapping, got {mapping!r}")
        values = {_snake_case(k): v for k, v in mapping.items()}
        if values.get('axis') is None:
            return None
        min_separation = values.get('min_separation')
        return cls(values['axis'], 0.0 if min_separation is None else min_separation)


@dataclass
class LayoutOptions:
    """
    Every option a layout session understands.

    ``constraints`` take precedence over ``alignment``. A ``link_length``
    overrides the lengths from ``symmetric_diff_link_lengths``.
    """

    convergence_threshold: float = 0.01
    avoid_overlaps: bool = True
    handle_disconnected: bool = True
    constraints: Optional[list[LayoutConstraint]] = None
    alignment: Optional[str] = None
    link_length: Optional[LinkLength] = None
    symmetric_diff_link_lengths: Optional[float] = 6
    flow_layout: Optional[FlowLayoutOptions] = None
    initial_unconstrained_iterations: int = 0
    initial_user_constraint_iterations: int = 0
    initial_all_constraints_iterations: int = 0
    size: tuple[float, float] = (1.0, 1.0)
    default_node_size: float = 10
    group_compactness: float = 1e-6

    def __post_init__(self):
        self.convergence_threshold = validate_positive('convergenceThreshold', self.convergence_threshold)
        self.avoid_overlaps = bool(self.avoid_overlaps)
        self.handle_disconnected = bool(self.handle_disconnected)
        if self.constraints is not None:
            self.constraints = [constraint_from_mapping(c) for c in self.constraints]
        if self.alignment is not None:
            self.alignment = validate_axis('alignment', self.alignment)
        if self.link_length is not None and not callable(self.link_length):
            self.link_length = validate_positive('linkLength', self.link_length)
        if self.symmetric_diff_link_lengths is not None:
            self.symmetric_diff_link_lengths = validate_positive(
                'symmetricDiffLinkLengths', self.symmetric_diff_link_lengths
            )
        if self.flow_layout is not None and not isinstance(self.flow_layout, FlowLayoutOptions):
            self.flow_layout = FlowLayoutOptions.from_mapping(self.flow_layout)
        for name in (
            'initial_unconstrained_iterations',
            'initial_user_constraint_iterations',
            'initial_all_constraints_iterations',
        ):
            setattr(self, name, validate_iterations(name, getattr(self, name)))
        self.size = validate_size(self.size)
        self.default_node_size = validate_non_negative('defaultNodeSize', self.default_node_size)
        self.group_compactness = validate_non_negative('groupCompactness', self.group_compactness)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]] = None, **overrides: Any) -> LayoutOptions:
        """
        Options from a dictionary.

        Keys may be camelCase or snake_case. Keys set to ``None`` keep their
        default; unknown keys are ignored.

        Raises:
            InvalidOptionError: When a value is unusable
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in {**(mapping or {}), **overrides}.items():
            name = _snake_case(key)
            if name not in known:
                logger.debug("ignoring unknown layout option %r", key)
                continue
            if value is None:
                continue
            values[name] = value
        if 'flow_layout' in values:
            values['flow_layout'] = FlowLayoutOptions.from_mapping(values['flow_layout'])
        return cls(**values)

    def iterations(self) -> tuple[int, int, int]:
        """Budgets of the unconstrained, user constraint and all constraint phases."""
        return (
            self.initial_unconstrained_iterations,
            self.initial_user_constraint_iterations,
            self.initial_all_constraints_iterations,
        )


def as_options(options: Union[LayoutOptions, Mapping[str, Any], None]) -> LayoutOptions:
    if isinstance(options, LayoutOptions):
        return options
    return LayoutOptions.from_mapping(options)


__all__ = ['FlowLayoutOptions', 'LayoutOptions', 'as_options']
