"""
Rectangles, non-overlap constraint generation and constraint projection.

Non-overlap constraints are generated per axis with a sweep over the
rectangles' extents on the other axis, so that only neighbouring pairs get a
constraint. :class:`Projection` turns user constraints, non-overlap and group
containment into separation constraints and projects descent steps onto
them with :class:`~colayout.vpsc.Solver`.
"""

from __future__ import annotations

from typing import Any, Callable, NamedTuple, Optional, Sequence
import logging
import math

from sortedcontainers import SortedKeyList

from .vpsc import Variable, Constraint, Solver
from .geom import Point

logger = logging.getLogger(__name__)


class Rectangle:
    """Axis-aligned rectangle spanning ``[x, X] x [y, Y]``."""

    def __init__(self, x: float, X: float, y: float, Y: float):
        self.x = x
        self.X = X
        self.y = y
        self.Y = Y

    @staticmethod
    def empty() -> Rectangle:
        inf = float('inf')
        return Rectangle(inf, -inf, inf, -inf)

    def __repr__(self) -> str:
        return f"Rectangle({self.x}, {self.X}, {self.y}, {self.Y})"

    def cx(self) -> float:
        return (self.x + self.X) / 2.0

    def cy(self) -> float:
        return (self.y + self.Y) / 2.0

    def overlap_x(self, r: Rectangle) -> float:
        """Overlap of the x extents, 0 when disjoint."""
        ux = self.cx()
        vx = r.cx()
        if ux <= vx and r.x < self.X:
            return self.X - r.x
        if vx <= ux and self.x < r.X:
            return r.X - self.x
        return 0.0

    def overlap_y(self, r: Rectangle) -> float:
        """Overlap of the y extents, 0 when disjoint."""
        uy = self.cy()
        vy = r.cy()
        if uy <= vy and r.y < self.Y:
            return self.Y - r.y
        if vy <= uy and self.y < r.Y:
            return r.Y - self.y
        return 0.0

    def set_x_centre(self, cx: float) -> None:
        dx = cx - self.cx()
        self.x += dx
        self.X += dx

    def set_y_centre(self, cy: float) -> None:
        dy = cy - self.cy()
        self.y += dy
        self.Y += dy

    def width(self) -> float:
        return self.X - self.x

    def height(self) -> float:
        return self.Y - self.y

    def union(self, r: Rectangle) -> Rectangle:
        return Rectangle(
            min(self.x, r.x),
            max(self.X, r.X),
            min(self.y, r.y),
            max(self.Y, r.Y)
        )

    def inflate(self, pad: float) -> Rectangle:
        return Rectangle(self.x - pad, self.X + pad, self.y - pad, self.Y + pad)

    def vertices(self) -> list[Point]:
        """Corners in counter-clockwise order starting at ``(x, y)``."""
        return [
            Point(self.x, self.y),
            Point(self.X, self.y),
            Point(self.X, self.Y),
            Point(self.x, self.Y)
        ]

    def line_intersections(self, x1: float, y1: float, x2: float, y2: float) -> list[Point]:
        """Points where the segment ``(x1, y1)-(x2, y2)`` crosses the sides."""
        sides = [
            (self.x, self.y, self.X, self.y),
            (self.X, self.y, self.X, self.Y),
            (self.X, self.Y, self.x, self.Y),
            (self.x, self.Y, self.x, self.y)
        ]
        intersections = []
        for side in sides:
            p = Rectangle.line_intersection(x1, y1, x2, y2, *side)
            if p is not None:
                intersections.append(p)
        return intersections

    def ray_intersection(self, x2: float, y2: float) -> Optional[Point]:
        """Where the segment from the centre to ``(x2, y2)`` leaves the rectangle."""
        ints = self.line_intersections(self.cx(), self.cy(), x2, y2)
        return ints[0] if ints else None

    @staticmethod
    def line_intersection(
        x1: float, y1: float, x2: float, y2: float,
        x3: float, y3: float, x4: float, y4: float
    ) -> Optional[Point]:
        dx12 = x2 - x1
        dx34 = x4 - x3
        dy12 = y2 - y1
        dy34 = y4 - y3
        denominator = dy34 * dx12 - dx34 * dy12
        if denominator == 0:
            return None
        dx31 = x1 - x3
        dy31 = y1 - y3
        a = (dx34 * dy31 - dy34 * dx31) / denominator
        b = (dx12 * dy31 - dy12 * dx31) / denominator
        if 0 <= a <= 1 and 0 <= b <= 1:
            return Point(x1 + a * dx12, y1 + a * dy12)
        return None


class Leaf:
    """Anything with bounds that gets a projection variable."""

    def __init__(self):
        self.bounds: Optional[Rectangle] = None
        self.variable: Optional[Variable] = None


class GraphNode(Leaf):
    """A node as seen by the projection."""

    def __init__(self):
        super().__init__()
        self.fixed: int = 0
        self.fixed_weight: Optional[float] = None
        self.width: Optional[float] = None
        self.height: Optional[float] = None
        self.x: float = 0.0
        self.y: float = 0.0
        self.px: Optional[float] = None
        self.py: Optional[float] = None


class ProjectionGroup:
    """A group as seen by the projection, owning two boundary variables."""

    def __init__(self):
        self.bounds: Optional[Rectangle] = None
        self.padding: float = 0.0
        self.stiffness: float = 0.01
        self.leaves: Optional[list[Leaf]] = None
        self.groups: Optional[list[ProjectionGroup]] = None
        self.min_var: Optional[Variable] = None
        self.max_var: Optional[Variable] = None


def compute_group_bounds(g: ProjectionGroup) -> Rectangle:
    """Bounds of ``g``: union of its leaves and sub-groups, inflated by padding."""
    bounds = Rectangle.empty()
    for leaf in g.leaves or ():
        bounds = leaf.bounds.union(bounds)
    for child in g.groups or ():
        bounds = compute_group_bounds(child).union(bounds)
    g.bounds = bounds.inflate(g.padding)
    return g.bounds


class EdgeEnds(NamedTuple):
    source_intersection: Point
    target_intersection: Point
    arrow_start: Point


def make_edge_between(source: Rectangle, target: Rectangle, ah: float) -> EdgeEnds:
    """
    Clip the centre-to-centre line to both boxes.

    ``arrow_start`` is pulled back ``ah`` from the target boundary to leave
    room for an arrow head.
    """
    si = source.ray_intersection(target.cx(), target.cy())
    if si is None:
        si = Point(source.cx(), source.cy())
    ti = target.ray_intersection(source.cx(), source.cy())
    if ti is None:
        ti = Point(target.cx(), target.cy())

    dx = ti.x - si.x
    dy = ti.y - si.y
    l = math.sqrt(dx * dx + dy * dy)
    al = l - ah
    if l == 0:
        return EdgeEnds(si, ti, Point(si.x, si.y))
    return EdgeEnds(si, ti, Point(si.x + al * dx / l, si.y + al * dy / l))


def make_edge_to(s: Point, target: Rectangle, ah: float) -> Point:
    """Point ``ah`` short of where the line from ``s`` meets ``target``."""
    ti = target.ray_intersection(s.x, s.y)
    if ti is None:
        ti = Point(target.cx(), target.cy())
    dx = ti.x - s.x
    dy = ti.y - s.y
    l = math.sqrt(dx * dx + dy * dy)
    if l == 0:
        return ti
    return Point(ti.x - ah * dx / l, ti.y - ah * dy / l)


class _Node:
    """Rectangle on the scan line, with the neighbours found on either side."""

    __slots__ = ('v', 'r', 'pos', 'key', 'prev', 'next')

    def __init__(self, v: Variable, r: Rectangle, pos: float, index: int):
        self.v = v
        self.r = r
        self.pos = pos
        self.key = (pos, index)
        self.prev = SortedKeyList(key=_node_key)
        self.next = SortedKeyList(key=_node_key)


def _node_key(n: _Node) -> tuple[float, int]:
    return n.key


class _Event(NamedTuple):
    pos: float
    is_close: bool
    v: _Node


class _RectAccessors(NamedTuple):
    get_centre: Callable[[Rectangle], float]
    get_open: Callable[[Rectangle], float]
    get_close: Callable[[Rectangle], float]
    get_size: Callable[[Rectangle], float]
    make_rect: Callable[[float, float, float, float], Rectangle]
    find_neighbours: Callable[[_Node, SortedKeyList], None]


def _link(v: _Node, u: _Node, forward: str) -> None:
    if forward == 'next':
        v.next.add(u)
        u.prev.add(v)
    else:
        v.prev.add(u)
        u.next.add(v)


def _find_x_neighbours(v: _Node, scanline: SortedKeyList) -> None:
    i = scanline.index(v)
    for forward, step in (('next', 1), ('prev', -1)):
        j = i + step
        while 0 <= j < len(scanline):
            u = scanline[j]
            u_over_v_x = u.r.overlap_x(v.r)
            if u_over_v_x <= 0 or u_over_v_x <= u.r.overlap_y(v.r):
                _link(v, u, forward)
            if u_over_v_x <= 0:
                break
            j += step


def _find_y_neighbours(v: _Node, scanline: SortedKeyList) -> None:
    i = scanline.index(v)
    for forward, step in (('next', 1), ('prev', -1)):
        j = i + step
        if 0 <= j < len(scanline):
            u = scanline[j]
            if u.r.overlap_x(v.r) > 0:
                _link(v, u, forward)


_x_rect = _RectAccessors(
    get_centre=lambda r: r.cx(),
    get_open=lambda r: r.y,
    get_close=lambda r: r.Y,
    get_size=lambda r: r.width(),
    make_rect=lambda open, close, centre, size: Rectangle(
        centre - size / 2, centre + size / 2, open, close
    ),
    find_neighbours=_find_x_neighbours
)

_y_rect = _RectAccessors(
    get_centre=lambda r: r.cy(),
    get_open=lambda r: r.x,
    get_close=lambda r: r.X,
    get_size=lambda r: r.height(),
    make_rect=lambda open, close, centre, size: Rectangle(
        open, close, centre - size / 2, centre + size / 2
    ),
    find_neighbours=_find_y_neighbours
)


def _generate_constraints(
    rs: Sequence[Rectangle],
    vars: Sequence[Variable],
    rect: _RectAccessors,
    min_sep: float
) -> list[Constraint]:
    n = len(rs)
    if len(vars) < n:
        raise ValueError(f"{len(vars)} variables for {n} rectangles")

    events: list[_Event] = []
    for i, r in enumerate(rs):
        v = _Node(vars[i], r, rect.get_centre(r), i)
        events.append(_Event(rect.get_open(r), False, v))
        events.append(_Event(rect.get_close(r), True, v))
    # opens sort before closes at the same position
    events.sort(key=lambda e: (e.pos, e.is_close))

    cs: list[Constraint] = []
    scanline = SortedKeyList(key=_node_key)

    def make_constraint(l: _Node, r: _Node) -> None:
        sep = (rect.get_size(l.r) + rect.get_size(r.r)) / 2 + min_sep
        cs.append(Constraint(l.v, r.v, sep))

    for e in events:
        v = e.v
        if not e.is_close:
            scanline.add(v)
            rect.find_neighbours(v, scanline)
        else:
            scanline.remove(v)
            for u in reversed(list(v.prev)):
                make_constraint(u, v)
                u.next.remove(v)
            for u in list(v.next):
                make_constraint(v, u)
                u.prev.remove(v)

    return cs


def generate_x_constraints(rs: Sequence[Rectangle], vars: Sequence[Variable]) -> list[Constraint]:
    """Horizontal separation constraints between overlapping neighbours."""
    return _generate_constraints(rs, vars, _x_rect, 1e-6)


def generate_y_constraints(rs: Sequence[Rectangle], vars: Sequence[Variable]) -> list[Constraint]:
    """Vertical separation constraints between overlapping neighbours."""
    return _generate_constraints(rs, vars, _y_rect, 1e-6)


def _generate_group_constraints(
    root: ProjectionGroup,
    f: _RectAccessors,
    min_sep: float,
    is_contained: bool = False
) -> list[Constraint]:
    """
    Non-overlap among the children of ``root`` and, recursively, containment
    of each group's children between its boundary variables.

    A child group takes part in its parent's sweep as a single rectangle
    represented by its ``min_var``; constraints that would push from that
    rectangle's right side are re-targeted to ``max_var``.
    """
    padding = root.padding
    groups = root.groups or []
    leaves = root.leaves or []

    child_constraints: list[Constraint] = []
    for g in groups:
        child_constraints.extend(_generate_group_constraints(g, f, min_sep, True))

    vs: list[Variable] = []
    rs: list[Rectangle] = []

    if is_contained:
        # dummy rectangles along the group's borders
        b = root.bounds
        c = f.get_centre(b)
        s = f.get_size(b) / 2
        open_ = f.get_open(b)
        close = f.get_close(b)
        lo = c - s + padding / 2
        hi = c + s - padding / 2
        root.min_var.desired_position = lo
        rs.append(f.make_rect(open_, close, lo, padding))
        vs.append(root.min_var)
        root.max_var.desired_position = hi
        rs.append(f.make_rect(open_, close, hi, padding))
        vs.append(root.max_var)

    for l in leaves:
        rs.append(l.bounds)
        vs.append(l.variable)
    for g in groups:
        b = g.bounds
        rs.append(f.make_rect(f.get_open(b), f.get_close(b), f.get_centre(b), f.get_size(b)))
        vs.append(g.min_var)

    cs = _generate_constraints(rs, vs, f, min_sep)

    for g in groups:
        gap_adjustment = (g.padding - f.get_size(g.bounds)) / 2
        for c in cs:
            if c.right is g.min_var:
                c.gap += gap_adjustment
            elif c.left is g.min_var:
                c.left = g.max_var
                c.gap += gap_adjustment

    return child_constraints + cs


def generate_x_group_constraints(root: ProjectionGroup) -> list[Constraint]:
    return _generate_group_constraints(root, _x_rect, 1e-6)


def generate_y_group_constraints(root: ProjectionGroup) -> list[Constraint]:
    return _generate_group_constraints(root, _y_rect, 1e-6)


def remove_overlaps(rs: list[Rectangle]) -> None:
    """Move ``rs`` in place, x then y, so that no two overlap."""
    vs = [Variable(r.cx()) for r in rs]
    Solver(vs, generate_x_constraints(rs, vs)).solve()
    for r, v in zip(rs, vs):
        r.set_x_centre(v.position())

    vs = [Variable(r.cy()) for r in rs]
    Solver(vs, generate_y_constraints(rs, vs)).solve()
    for r, v in zip(rs, vs):
        r.set_y_centre(v.position())


class IndexedVariable(Variable):
    """Variable remembering its slot in the position arrays."""

    def __init__(self, index: int, w: float):
        super().__init__(0.0, w)
        self.index = index


class Projection:
    """
    Projects descent steps onto user constraints, non-overlap and group
    containment.

    ``constraints`` are separation or alignment specifications (see
    :mod:`colayout.linklengths`). Position arrays handed to the projection
    functions must hold the nodes followed by two slots per group when
    overlaps are avoided.
    """

    def __init__(
        self,
        nodes: Sequence[GraphNode],
        groups: Sequence[ProjectionGroup],
        root_group: Optional[ProjectionGroup] = None,
        constraints: Optional[Sequence[Any]] = None,
        avoid_overlaps: bool = False
    ):
        self.nodes = nodes
        self.groups = groups
        self.root_group = root_group
        self.avoid_overlaps = avoid_overlaps

        self.variables: list[Variable] = []
        for i, v in enumerate(nodes):
            v.variable = IndexedVariable(i, 1.0)
            self.variables.append(v.variable)

        self.x_constraints: Optional[list[Constraint]] = None
        self.y_constraints: Optional[list[Constraint]] = None
        if constraints is not None:
            self._create_constraints(constraints)

        if avoid_overlaps and root_group is not None and root_group.groups is not None:
            for v in nodes:
                if not v.width or not v.height:
                    v.bounds = Rectangle(v.x, v.x, v.y, v.y)
                else:
                    w2 = v.width / 2
                    h2 = v.height / 2
                    v.bounds = Rectangle(v.x - w2, v.x + w2, v.y - h2, v.y + h2)
            compute_group_bounds(root_group)

            i = len(nodes)
            for g in groups:
                stiffness = g.stiffness if g.stiffness is not None else 0.01
                g.min_var = IndexedVariable(i, stiffness)
                g.max_var = IndexedVariable(i + 1, stiffness)
                self.variables.extend((g.min_var, g.max_var))
                i += 2

    def _create_separation(self, c: Any) -> Constraint:
        return Constraint(
            self.nodes[c.left].variable,
            self.nodes[c.right].variable,
            c.gap,
            c.equality
        )

    def _make_feasible(self, c: Any) -> None:
        """Shove apart overlapping nodes along an alignment guideline."""
        if not self.avoid_overlaps:
            return
        axis, dim = ('y', 'height') if c.axis == 'x' else ('x', 'width')
        vs = sorted((self.nodes[o.node] for o in c.offsets), key=lambda v: getattr(v, axis))
        p = None
        for v in vs:
            if p is not None:
                next_pos = getattr(p, axis) + (getattr(p, dim) or 0)
                if next_pos > getattr(v, axis):
                    setattr(v, axis, next_pos)
            p = v

    def _create_alignment(self, c: Any) -> None:
        u = self.nodes[c.offsets[0].node].variable
        self._make_feasible(c)
        cs = self.x_constraints if c.axis == 'x' else self.y_constraints
        for o in c.offsets[1:]:
            cs.append(Constraint(u, self.nodes[o.node].variable, o.offset, True))

    def _create_constraints(self, constraints: Sequence[Any]) -> None:
        def is_sep(c: Any) -> bool:
            return getattr(c, 'type', 'separation') == 'separation'

        self.x_constraints = [
            self._create_separation(c) for c in constraints if c.axis == 'x' and is_sep(c)
        ]
        self.y_constraints = [
            self._create_separation(c) for c in constraints if c.axis == 'y' and is_sep(c)
        ]
        for c in constraints:
            if getattr(c, 'type', None) == 'alignment':
                self._create_alignment(c)

    def _setup_variables_and_bounds(
        self, x0, y0, desired, get_desired: Callable[[GraphNode], Optional[float]]
    ) -> None:
        for i, v in enumerate(self.nodes):
            if v.fixed:
                v.variable.weight = v.fixed_weight if v.fixed_weight else 1000
                pinned = get_desired(v)
                if pinned is not None:
                    desired[i] = pinned
            else:
                v.variable.weight = 1
            w = (v.width or 0) / 2
            h = (v.height or 0) / 2
            ix = x0[i]
            iy = y0[i]
            v.bounds = Rectangle(ix - w, ix + w, iy - h, iy + h)

    def project_functions(self) -> list[Callable]:
        return [self.x_project, self.y_project]

    def x_project(self, x0, y0, x) -> None:
        """Replace the stepped x positions with the nearest feasible ones."""
        if self.root_group is None and not (self.avoid_overlaps or self.x_constraints is not None):
            return

        def update_node_bounds(v: GraphNode) -> None:
            x[v.variable.index] = v.variable.position()
            v.bounds.set_x_centre(x[v.variable.index])

        def update_group_bounds(g: ProjectionGroup) -> None:
            xmin = x[g.min_var.index] = g.min_var.position()
            xmax = x[g.max_var.index] = g.max_var.position()
            p2 = g.padding / 2
            g.bounds.x = xmin - p2
            g.bounds.X = xmax + p2

        self._project(x0, y0, x0, x, lambda v: v.px, self.x_constraints,
                      generate_x_group_constraints, update_node_bounds, update_group_bounds)

    def y_project(self, x0, y0, y) -> None:
        """Replace the stepped y positions with the nearest feasible ones."""
        if self.root_group is None and self.y_constraints is None:
            return

        def update_node_bounds(v: GraphNode) -> None:
            y[v.variable.index] = v.variable.position()
            v.bounds.set_y_centre(y[v.variable.index])

        def update_group_bounds(g: ProjectionGroup) -> None:
            ymin = y[g.min_var.index] = g.min_var.position()
            ymax = y[g.max_var.index] = g.max_var.position()
            p2 = g.padding / 2
            g.bounds.y = ymin - p2
            g.bounds.Y = ymax + p2

        self._project(x0, y0, y0, y, lambda v: v.py, self.y_constraints,
                      generate_y_group_constraints, update_node_bounds, update_group_bounds)

    def _project(
        self,
        x0,
        y0,
        start,
        desired,
        get_desired: Callable[[GraphNode], Optional[float]],
        cs: Optional[list[Constraint]],
        generate_constraints: Callable[[ProjectionGroup], list[Constraint]],
        update_node_bounds: Callable[[GraphNode], None],
        update_group_bounds: Callable[[ProjectionGroup], None],
    ) -> None:
        self._setup_variables_and_bounds(x0, y0, desired, get_desired)
        cs = list(cs) if cs else []
        overlaps = self.root_group is not None and self.avoid_overlaps
        if overlaps:
            compute_group_bounds(self.root_group)
            cs.extend(generate_constraints(self.root_group))

        solver = Solver(self.variables, cs)
        solver.set_starting_positions(start)
        solver.set_desired_positions(desired)
        solver.solve()

        for v in self.nodes:
            update_node_bounds(v)
        if overlaps:
            for g in self.groups:
                update_group_bounds(g)
            compute_group_bounds(self.root_group)
