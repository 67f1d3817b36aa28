"""
Link length heuristics and layout constraint specifications.

Ideal link lengths can be stretched by how different the neighbourhoods of a
link's end nodes are, which spreads out dense regions. The constraint
specifications here are the user-facing form of separation and alignment
constraints; :class:`~colayout.rectangle.Projection` turns them into solver
constraints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Generic, Literal, Mapping, Sequence, TypeVar, Union
import math

from .validation import InvalidConstraintError

T = TypeVar("T")
Axis = Literal['x', 'y']


class LinkAccessor(Generic[T]):
    """Reads endpoint indices off links of any shape."""

    def get_source_index(self, l: T) -> int:
        raise NotImplementedError

    def get_target_index(self, l: T) -> int:
        raise NotImplementedError


class LinkLengthAccessor(LinkAccessor[T]):
    def set_length(self, l: T, value: float) -> None:
        raise NotImplementedError


class LinkSepAccessor(LinkAccessor[T]):
    def get_min_separation(self, l: T) -> float:
        raise NotImplementedError


def _neighbours(links: Sequence[T], la: LinkAccessor[T]) -> dict[int, set[int]]:
    neighbours: dict[int, set[int]] = {}
    for e in links:
        u = la.get_source_index(e)
        v = la.get_target_index(e)
        neighbours.setdefault(u, set()).add(v)
        neighbours.setdefault(v, set()).add(u)
    return neighbours


def _compute_link_lengths(
    links: Sequence[T],
    w: float,
    f: Callable[[set[int], set[int]], float],
    la: LinkLengthAccessor[T]
) -> None:
    neighbours = _neighbours(links, la)
    for l in links:
        a = neighbours[la.get_source_index(l)]
        b = neighbours[la.get_target_index(l)]
        la.set_length(l, 1 + w * f(a, b))


def symmetric_diff_link_lengths(
    links: Sequence[T],
    la: LinkLengthAccessor[T],
    w: float = 1.0
) -> None:
    """
    Set each link's length to ``1 + w * sqrt(|A ^ B|)``.

    ``A`` and ``B`` are the neighbour sets of the link's end nodes.
    """
    _compute_link_lengths(links, w, lambda a, b: math.sqrt(len(a ^ b)), la)


def jaccard_link_lengths(
    links: Sequence[T],
    la: LinkLengthAccessor[T],
    w: float = 1.0
) -> None:
    """
    Set each link's length to ``1 + w * |A & B| / |A | B|``.

    Links touching a node with at most one neighbour get length 1.
    """
    def f(a: set[int], b: set[int]) -> float:
        if min(len(a), len(b)) < 1.1:
            return 0.0
        return len(a & b) / len(a | b)

    _compute_link_lengths(links, w, f, la)


@dataclass
class SeparationConstraint:
    """``right - left >= gap`` along ``axis`` (``==`` when ``equality``)."""

    type: ClassVar[str] = 'separation'

    axis: Axis
    left: int
    right: int
    gap: float = 0.0
    equality: bool = False


@dataclass
class AlignmentSpecification:
    node: int
    offset: float = 0.0


@dataclass
class AlignmentConstraint:
    """Places every listed node on one guideline across ``axis``."""

    type: ClassVar[str] = 'alignment'

    axis: Axis
    offsets: list[AlignmentSpecification] = field(default_factory=list)


LayoutConstraint = Union[SeparationConstraint, AlignmentConstraint]


def constraint_from_mapping(c: Union[Mapping[str, Any], LayoutConstraint]) -> LayoutConstraint:
    """
    Build a constraint from its dictionary form.

    ``{'axis', 'left', 'right', 'gap', 'equality'}`` is a separation;
    ``{'type': 'alignment', 'axis', 'offsets': [{'node', 'offset'}, ...]}``
    an alignment. Constraint objects pass through unchanged.

    Raises:
        InvalidConstraintError: On a missing key or an unknown type or axis
    """
    if isinstance(c, (SeparationConstraint, AlignmentConstraint)):
        return c
    if not isinstance(c, Mapping):
        raise InvalidConstraintError(f"constraint must be a mapping, got {c!r}")

    kind = c.get('type', 'separation')
    axis = c.get('axis')
    if axis not in ('x', 'y'):
        raise InvalidConstraintError(f"constraint axis must be 'x' or 'y', got {axis!r}")
    try:
        if kind == 'alignment':
            offsets = [
                AlignmentSpecification(o['node'], o.get('offset', 0.0))
                for o in c['offsets']
            ]
            if not offsets:
                raise InvalidConstraintError("alignment constraint needs at least one node")
            return AlignmentConstraint(axis, offsets)
        if kind == 'separation':
            return SeparationConstraint(
                axis, c['left'], c['right'], c.get('gap', 0.0), bool(c.get('equality', False))
            )
    except KeyError as e:
        raise InvalidConstraintError(f"constraint is missing {e.args[0]!r}: {dict(c)!r}") from e
    raise InvalidConstraintError(f"unknown constraint type {kind!r}")


def generate_directed_edge_constraints(
    n: int,
    links: Sequence[T],
    axis: Axis,
    la: LinkSepAccessor[T]
) -> list[SeparationConstraint]:
    """
    Make every link point along ``axis``.

    Each link becomes ``target - source >= min_separation``, except links
    whose ends share a strongly connected component, which could never all
    be satisfied.
    """
    component_of = {}
    for i, c in enumerate(strongly_connected_components(n, links, la)):
        for v in c:
            component_of[v] = i

    constraints = []
    for l in links:
        ui = la.get_source_index(l)
        vi = la.get_target_index(l)
        if component_of[ui] != component_of[vi]:
            constraints.append(SeparationConstraint(axis, ui, vi, la.get_min_separation(l)))
    return constraints


def generate_alignment_constraints(
    links: Sequence[T],
    axis: Axis,
    la: LinkAccessor[T]
) -> list[AlignmentConstraint]:
    """
    Align the targets of each source node: one constraint per source, in
    order of source index, listing targets in link order.
    """
    targets: dict[int, list[int]] = {}
    for l in links:
        targets.setdefault(la.get_source_index(l), []).append(la.get_target_index(l))
    return [
        AlignmentConstraint(axis, [AlignmentSpecification(t) for t in targets[s]])
        for s in sorted(targets)
    ]


def strongly_connected_components(
    num_vertices: int,
    edges: Sequence[T],
    la: LinkAccessor[T]
) -> list[list[int]]:
    """
    Tarjan's algorithm, iterative so deep graphs do not hit the recursion limit.

    Components come out in reverse topological order.
    """
    out: list[list[int]] = [[] for _ in range(num_vertices)]
    for e in edges:
        out[la.get_source_index(e)].append(la.get_target_index(e))

    index = [-1] * num_vertices
    lowlink = [0] * num_vertices
    on_stack = [False] * num_vertices
    stack: list[int] = []
    components: list[list[int]] = []
    counter = 0

    for root in range(num_vertices):
        if index[root] != -1:
            continue
        # (vertex, position in its successor list)
        work = [(root, 0)]
        while work:
            v, pos = work.pop()
            if pos == 0:
                index[v] = lowlink[v] = counter
                counter += 1
                stack.append(v)
                on_stack[v] = True
            recursed = False
            for i in range(pos, len(out[v])):
                w = out[v][i]
                if index[w] == -1:
                    work.append((v, i + 1))
                    work.append((w, 0))
                    recursed = True
                    break
                if on_stack[w]:
                    lowlink[v] = min(lowlink[v], index[w])
            if recursed:
                continue
            if lowlink[v] == index[v]:
                component = []
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    component.append(w)
                    if w == v:
                        break
                components.append(component)
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[v])

    return components
