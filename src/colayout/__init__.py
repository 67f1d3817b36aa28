"""
colayout: constraint-based graph layout.

Stress majorization with separation, alignment, flow and group
constraints, overlap removal, power graph grouping and edge routing.
"""

__version__ = "0.1.0"

from .config import FlowLayoutOptions, LayoutOptions
from .controller import LayoutController, LayoutSession
from .layout import EventType, Group, Layout, Link, Node
from .linklengths import AlignmentConstraint, SeparationConstraint
from .validation import ValidationError

__all__ = [
    'AlignmentConstraint',
    'EventType',
    'FlowLayoutOptions',
    'Group',
    'Layout',
    'LayoutController',
    'LayoutOptions',
    'LayoutSession',
    'Link',
    'Node',
    'SeparationConstraint',
    'ValidationError',
]
