"""
Orthogonal edge routing over a grid.

Grid lines run through the middle of every column and row of leaf nodes and
through the gaps between them. Edges are routed as shortest paths on the
grid with a penalty for every bend, then parallel runs of different edges
sharing a grid line are nudged apart with the VPSC solver, ordered so that
crossings are avoided where edges share a stretch of route.
"""

from __future__ import annotations

from typing import Callable, Generic, NamedTuple, Optional, Protocol, Sequence, TypeVar
import logging
import math

from .geom import Point
from .rectangle import Rectangle
from .vpsc import Variable, Constraint, Solver
from .shortestpaths import Calculator

logger = logging.getLogger(__name__)

T = TypeVar('T')

BEND_PENALTY = 1000

Segment = list[Point]
Route = list[Segment]


class NodeAccessor(Protocol[T]):
    def get_children(self, v: T) -> Sequence[int]:
        ...

    def get_bounds(self, v: T) -> Rectangle:
        ...


class NodeWrapper:
    """A node or group in the routing hierarchy."""

    def __init__(self, id: int, rect: Rectangle, children: Optional[Sequence[int]] = None):
        self.id = id
        self.rect = rect
        self.children = list(children) if children else []
        self.leaf = not self.children
        self.parent: Optional[NodeWrapper] = None
        self.ports: list[Vert] = []

    def __repr__(self) -> str:
        return f"NodeWrapper({self.id}, {self.rect!r})"


class Vert:
    """Vertex of the routing graph: a grid crossing or a port on a node boundary."""

    __slots__ = ('id', 'x', 'y', 'node', 'line')

    def __init__(
        self,
        id: int,
        x: float,
        y: float,
        node: Optional[NodeWrapper] = None,
        line: Optional[_Line] = None
    ):
        self.id = id
        self.x = x
        self.y = y
        self.node = node
        self.line = line

    def __repr__(self) -> str:
        return f"Vert({self.id}, {self.x}, {self.y})"


class _Line:
    def __init__(self, x1: float, y1: float, x2: float, y2: float):
        self.x1 = x1
        self.y1 = y1
        self.x2 = x2
        self.y2 = y2
        self.verts: list[Vert] = []

    def is_horizontal(self) -> bool:
        return abs(self.y1 - self.y2) < 0.1


class RouteEdge(NamedTuple):
    source: int
    target: int
    length: float


class GridLine(NamedTuple):
    """Leaves overlapping on one axis and the average of their centres."""

    nodes: list[NodeWrapper]
    pos: float


class SegmentSet(NamedTuple):
    """Segments on one grid line, as ``(route index, segment index)`` pairs."""

    pos: float
    segments: list[tuple[int, int]]


class RoutePath(NamedTuple):
    routepath: str
    arrowpath: str


class _Match(NamedTuple):
    length: int
    si: int
    ti: int


class LongestCommonSubsequence(Generic[T]):
    """
    Longest common contiguous run of ``s`` and ``t``, trying ``t`` both ways.

    When the reversed ``t`` matches better, ``reversed`` is set and ``ti`` is
    the start of the run in the original ``t``.
    """

    def __init__(self, s: Sequence[T], t: Sequence[T]):
        self.s = s
        forward = self._find_match(s, t)
        backward = self._find_match(s, t[::-1])
        if forward.length >= backward.length:
            self.length, self.si, self.ti = forward
            self.reversed = False
        else:
            self.length = backward.length
            self.si = backward.si
            self.ti = len(t) - backward.ti - backward.length
            self.reversed = True

    @staticmethod
    def _find_match(s: Sequence[T], t: Sequence[T]) -> _Match:
        best = _Match(0, -1, -1)
        prev = [0] * (len(t) + 1)
        for i, a in enumerate(s):
            row = [0] * (len(t) + 1)
            for j, b in enumerate(t):
                if a == b:
                    v = row[j + 1] = prev[j] + 1
                    if v > best.length:
                        best = _Match(v, i - v + 1, j - v + 1)
            prev = row
        return best

    def get_sequence(self) -> list[T]:
        if self.length <= 0:
            return []
        return list(self.s[self.si:self.si + self.length])


class EdgeOrder:
    """
    Left-to-right relation between routes found by :meth:`GridRouter.order_edges`.

    Calling the order with two route indices tells whether the first lies to
    the left of the second. ``reversed`` holds the indices of routes whose
    paths were reversed in place to line up with an earlier route.
    """

    def __init__(self):
        self._left_of: dict[int, set[int]] = {}
        self.reversed: set[int] = set()

    def add(self, l: int, r: int) -> None:
        self._left_of.setdefault(l, set()).add(r)

    def __call__(self, l: int, r: int) -> bool:
        return r in self._left_of.get(l, ())


class GridRouter(Generic[T]):
    """
    Routes edges between nodes of a hierarchy on an orthogonal grid.

    ``nodes`` are leaves and groups; groups list their children (indices into
    ``nodes``) through the accessor. Group boxes are recomputed as the union
    of their children, inflated by ``group_padding``.
    """

    def __init__(self, nodes: Sequence[T], accessor: NodeAccessor[T], group_padding: float = 12):
        self.group_padding = group_padding
        self.nodes = [
            NodeWrapper(i, accessor.get_bounds(v), accessor.get_children(v))
            for i, v in enumerate(nodes)
        ]
        self.leaves = [v for v in self.nodes if v.leaf]
        self.groups = [g for g in self.nodes if not g.leaf]
        self.cols = self._get_grid_lines('x')
        self.rows = self._get_grid_lines('y')

        for g in self.groups:
            for c in g.children:
                self.nodes[c].parent = g

        self.root = NodeWrapper(-1, Rectangle.empty())
        for v in self.nodes:
            if v.parent is None:
                v.parent = self.root
                self.root.children.append(v.id)
        self.root.leaf = False

        self.back_to_front = sorted(self.nodes, key=self._get_depth)

        # innermost groups first, so that parents see their children's boxes
        for g in reversed(self.back_to_front):
            if g.leaf:
                continue
            r = Rectangle.empty()
            for c in g.children:
                r = r.union(self.nodes[c].rect)
            g.rect = r.inflate(self.group_padding)

        col_mids = self._mid_points([c.pos for c in self.cols])
        row_mids = self._mid_points([r.pos for r in self.rows])
        if not col_mids or not row_mids:
            self.verts: list[Vert] = []
            self.edges: list[RouteEdge] = []
            return

        rowx, row_x = col_mids[0], col_mids[-1]
        coly, col_y = row_mids[0], row_mids[-1]
        hlines = [_Line(rowx, r.pos, row_x, r.pos) for r in self.rows]
        hlines += [_Line(rowx, y, row_x, y) for y in row_mids]
        vlines = [_Line(c.pos, coly, c.pos, col_y) for c in self.cols]
        vlines += [_Line(x, coly, x, col_y) for x in col_mids]
        lines = hlines + vlines

        self.verts = []
        self.edges = []

        for h in hlines:
            for v in vlines:
                p = Vert(len(self.verts), v.x1, h.y1)
                h.verts.append(p)
                v.verts.append(p)
                self.verts.append(p)
                p.node = self._front_most_containing(p)

        for l in lines:
            for v in self.nodes:
                for q in v.rect.line_intersections(l.x1, l.y1, l.x2, l.y2):
                    p = Vert(len(self.verts), q.x, q.y, v, l)
                    self.verts.append(p)
                    l.verts.append(p)
                    v.ports.append(p)

            horizontal = l.is_horizontal()
            l.verts.sort(key=(lambda p: p.x) if horizontal else (lambda p: p.y))
            for u, v in zip(l.verts, l.verts[1:]):
                if u.node is not None and u.node is v.node and u.node.leaf:
                    continue
                length = abs(v.x - u.x) if horizontal else abs(v.y - u.y)
                self.edges.append(RouteEdge(u.id, v.id, length))

        for v in self.nodes:
            if not v.ports:
                p = Vert(len(self.verts), v.rect.cx(), v.rect.cy(), v)
                self.verts.append(p)
                v.ports.append(p)

        logger.debug(
            "routing grid of %d lines, %d vertices, %d edges",
            len(lines), len(self.verts), len(self.edges)
        )

    def _front_most_containing(self, p: Vert) -> Optional[NodeWrapper]:
        for node in reversed(self.back_to_front):
            r = node.rect
            if abs(p.x - r.cx()) < r.width() / 2 and abs(p.y - r.cy()) < r.height() / 2:
                return node
        return None

    def _get_depth(self, v: NodeWrapper) -> int:
        depth = 0
        while v.parent is not self.root and v.parent is not None:
            depth += 1
            v = v.parent
        return depth

    def _mid_points(self, a: list[float]) -> list[float]:
        """Lines between consecutive positions plus one beyond either end."""
        if not a:
            return []
        gap = a[1] - a[0] if len(a) > 1 else 2 * self.group_padding
        mids = [a[0] - gap / 2]
        mids += [(u + v) / 2 for u, v in zip(a, a[1:])]
        mids.append(a[-1] + gap / 2)
        return mids

    def _get_grid_lines(self, axis: str) -> list[GridLine]:
        """Cluster the leaves into columns (``'x'``) or rows (``'y'``) of overlapping boxes."""
        overlap = 'overlap_x' if axis == 'x' else 'overlap_y'
        centre = 'cx' if axis == 'x' else 'cy'
        lines = []
        remaining = list(self.leaves)
        while remaining:
            first = remaining[0]
            overlapping = [v for v in remaining if getattr(v.rect, overlap)(first.rect)]
            if first not in overlapping:
                overlapping.insert(0, first)
            pos = sum(getattr(v.rect, centre)() for v in overlapping) / len(overlapping)
            lines.append(GridLine(overlapping, pos))
            remaining = [v for v in remaining if v not in overlapping]
        lines.sort(key=lambda l: l.pos)
        return lines

    def _find_lineage(self, v: NodeWrapper) -> list[NodeWrapper]:
        """Ancestors of ``v`` from the root down to ``v`` itself."""
        lineage = [v]
        while v is not self.root:
            v = v.parent
            lineage.append(v)
        lineage.reverse()
        return lineage

    def _find_ancestor_path_between(
        self, a: NodeWrapper, b: NodeWrapper
    ) -> tuple[NodeWrapper, list[NodeWrapper]]:
        """Lowest common ancestor and the nodes below it on the way to ``a`` and ``b``."""
        aa = self._find_lineage(a)
        ba = self._find_lineage(b)
        i = 0
        while i < len(aa) and i < len(ba) and aa[i] is ba[i]:
            i += 1
        return aa[i - 1], aa[i:] + ba[i:]

    def sibling_obstacles(self, a: NodeWrapper, b: NodeWrapper) -> list[NodeWrapper]:
        """
        Nodes a route from ``a`` to ``b`` must go around: the children of
        their common ancestor off the route, and the siblings of every node
        on the way down to either end.
        """
        common, lineages = self._find_ancestor_path_between(a, b)
        on_route = {v.id for v in lineages}
        obstacles = [c for c in common.children if c not in on_route]
        for v in lineages:
            if v.parent is not common:
                obstacles += [c for c in v.parent.children if c != v.id]
        return [self.nodes[i] for i in obstacles]

    def route(self, s: int, t: int) -> list[Vert]:
        """
        Shortest grid path from node ``s`` to node ``t``.

        Each change of direction costs :data:`BEND_PENALTY` so routes prefer
        few bends. The path starts and ends at the nodes' first ports.
        """
        source = self.nodes[s]
        target = self.nodes[t]
        obstacle_ids = {o.id for o in self.sibling_obstacles(source, target)}

        def passable(e: RouteEdge) -> bool:
            u = self.verts[e.source].node
            v = self.verts[e.target].node
            return not (u is not None and u.id in obstacle_ids or v is not None and v.id in obstacle_ids)

        edges = [e for e in self.edges if passable(e)]
        # ports of the same end are joined for free
        for node in (source, target):
            edges += [RouteEdge(node.ports[0].id, p.id, 0) for p in node.ports[1:]]

        def bend_penalty(u: int, v: int, w: int) -> float:
            a, b, c = self.verts[u], self.verts[v], self.verts[w]
            if a.node is source and a.node is b.node or b.node is target and b.node is c.node:
                return 0
            return BEND_PENALTY if abs(c.x - a.x) > 1 and abs(c.y - a.y) > 1 else 0

        calculator = Calculator(
            len(self.verts), edges,
            lambda e: e.source, lambda e: e.target, lambda e: e.length
        )
        shortest = calculator.path_from_node_to_node_with_prev_cost(
            source.ports[0].id, target.ports[0].id, bend_penalty
        )
        path = [self.verts[i] for i in reversed(shortest)]
        path.append(target.ports[0])

        def internal(i: int, v: Vert) -> bool:
            if i < len(path) - 1 and v.node is source and path[i + 1].node is source:
                return True
            return i > 0 and v.node is target and path[i - 1].node is target

        return [v for i, v in enumerate(path) if not internal(i, v)]

    @staticmethod
    def make_segments(path: Sequence[Vert | Point]) -> Route:
        """Turn a path into segments, merging consecutive collinear steps."""
        def straight(a, b, c) -> bool:
            return abs((b.x - a.x) * (c.y - a.y) - (b.y - a.y) * (c.x - a.x)) < 0.001

        segments = []
        a = Point(path[0].x, path[0].y)
        for i in range(1, len(path)):
            b = Point(path[i].x, path[i].y)
            c = path[i + 1] if i < len(path) - 1 else None
            if c is None or not straight(a, b, c):
                # consecutive segments share the corner point
                segments.append([a, b])
                a = b
        return segments

    @staticmethod
    def is_left(a, b, c) -> bool:
        return (b.x - a.x) * (c.y - a.y) - (b.y - a.y) * (c.x - a.x) <= 0

    @staticmethod
    def order_edges(paths: list[list[Vert]]) -> EdgeOrder:
        """
        Decide, for each pair of paths sharing a run of vertices, which one
        keeps to the left along that run.

        Paths that run the other way along a shared stretch are reversed in
        place; their indices are recorded in the returned order's
        ``reversed`` set.
        """
        order = EdgeOrder()
        for i in range(len(paths) - 1):
            for j in range(i + 1, len(paths)):
                e = paths[i]
                f = paths[j]
                lcs = LongestCommonSubsequence(e, f)
                if lcs.length == 0:
                    continue
                if lcs.reversed:
                    f.reverse()
                    order.reversed ^= {j}
                    lcs = LongestCommonSubsequence(e, f)
                run_ends_e = lcs.si + lcs.length >= len(e)
                run_ends_f = lcs.ti + lcs.length >= len(f)
                if (lcs.si <= 0 or lcs.ti <= 0) and (run_ends_e or run_ends_f):
                    order.add(i, j)
                    continue
                if run_ends_e or run_ends_f:
                    # the run ends one of the routes: look where they came from
                    u = _at(e, lcs.si + 1)
                    vi = _at(f, lcs.ti - 1)
                    vj = _at(e, lcs.si - 1)
                else:
                    # look where they go after the run
                    u = _at(e, lcs.si + lcs.length - 2)
                    vi = _at(e, lcs.si + lcs.length)
                    vj = _at(f, lcs.ti + lcs.length)
                if u is None or vi is None or vj is None:
                    order.add(i, j)
                elif GridRouter.is_left(u, vi, vj):
                    order.add(j, i)
                else:
                    order.add(i, j)
        return order

    @staticmethod
    def get_segment_sets(routes: Sequence[Route], x: str, y: str) -> list[SegmentSet]:
        """Segments parallel to the ``y`` axis, grouped by their ``x`` position."""
        parallel = []
        for ei, route in enumerate(routes):
            for si, s in enumerate(route):
                if abs(getattr(s[1], x) - getattr(s[0], x)) < 0.1:
                    parallel.append((getattr(s[0], x), ei, si))
        parallel.sort(key=lambda p: p[0])

        sets: list[SegmentSet] = []
        for pos, ei, si in parallel:
            if not sets or abs(pos - sets[-1].pos) > 0.1:
                sets.append(SegmentSet(pos, []))
            sets[-1].segments.append((ei, si))
        return sets

    @staticmethod
    def nudge_segs(
        x: str,
        y: str,
        routes: list[Route],
        segments: list[tuple[int, int]],
        left_of: Callable[[int, int], bool],
        gap: float
    ) -> None:
        """Spread segments sharing a line ``gap`` apart, in ``left_of`` order."""
        n = len(segments)
        if n <= 1:
            return
        segs = [routes[ei][si] for ei, si in segments]
        vs = [Variable(getattr(s[0], x)) for s in segs]
        cs = []
        for i in range(n):
            for j in range(n):
                if i == j or not left_of(segments[i][0], segments[j][0]):
                    continue
                s1 = segs[i]
                increasing = getattr(s1[0], y) < getattr(s1[1], y)
                # heading down a vertical line, left means larger x
                if (x == 'x') == increasing:
                    cs.append(Constraint(vs[j], vs[i], gap))
                else:
                    cs.append(Constraint(vs[i], vs[j], gap))
        Solver(vs, cs).solve()

        for (ei, si), s, v in zip(segments, segs, vs):
            pos = v.position()
            setattr(s[0], x, pos)
            setattr(s[1], x, pos)
            route = routes[ei]
            if si > 0:
                setattr(route[si - 1][1], x, pos)
            if si < len(route) - 1:
                setattr(route[si + 1][0], x, pos)

    @staticmethod
    def nudge_segments(
        routes: list[Route],
        x: str,
        y: str,
        left_of: Callable[[int, int], bool],
        gap: float
    ) -> None:
        """Nudge apart every cluster of overlapping segments on each line."""
        for segment_set in GridRouter.get_segment_sets(routes, x, y):
            events = []
            for ei, si in segment_set.segments:
                s = routes[ei][si]
                lo, hi = sorted((getattr(s[0], y), getattr(s[1], y)))
                events.append((lo, 0, (ei, si)))
                events.append((hi, 1, (ei, si)))
            events.sort(key=lambda e: (e[0], e[1]))

            open_segments = []
            open_count = 0
            for _, closing, ref in events:
                if closing:
                    open_count -= 1
                else:
                    open_segments.append(ref)
                    open_count += 1
                if open_count == 0:
                    GridRouter.nudge_segs(x, y, routes, open_segments, left_of, gap)
                    open_segments = []

    @staticmethod
    def unreverse_edges(routes: list[Route], reversed_paths: set[int]) -> None:
        for i in reversed_paths:
            segments = routes[i]
            segments.reverse()
            for s in segments:
                s.reverse()

    def route_edges(
        self,
        edges: Sequence[T],
        nudge_gap: float,
        source: Callable[[T], int],
        target: Callable[[T], int]
    ) -> list[Route]:
        """
        Route every edge and separate parallel segments by ``nudge_gap``.

        Each route is a list of segments, each a ``[start, end]`` pair of
        points, running from the edge's source to its target.
        """
        paths = [self.route(source(e), target(e)) for e in edges]
        order = GridRouter.order_edges(paths)
        routes = [GridRouter.make_segments(p) for p in paths]
        GridRouter.nudge_segments(routes, 'x', 'y', order, nudge_gap)
        GridRouter.nudge_segments(routes, 'y', 'x', order, nudge_gap)
        GridRouter.unreverse_edges(routes, order.reversed)
        return routes

    @staticmethod
    def angle_between_2_lines(line1: Segment, line2: Segment) -> float:
        angle1 = math.atan2(line1[0].y - line1[1].y, line1[0].x - line1[1].x)
        angle2 = math.atan2(line2[0].y - line2[1].y, line2[0].x - line2[1].x)
        diff = angle1 - angle2
        if diff > math.pi or diff < -math.pi:
            diff = angle2 - angle1
        return diff

    @staticmethod
    def get_route_path(
        route: Route, corner_radius: float, arrow_width: float, arrow_height: float
    ) -> RoutePath:
        """
        SVG path data for a route: straight runs joined by arcs of
        ``corner_radius``, with the last run shortened for an arrow head.
        """
        parts = [f"M {_num(route[0][0].x)} {_num(route[0][0].y)}"]
        arrowpath = ''
        for i, li in enumerate(route):
            x, y = li[1].x, li[1].y
            dx = x - li[0].x
            dy = y - li[0].y
            if i < len(route) - 1:
                if abs(dx) > 0:
                    x -= math.copysign(corner_radius, dx)
                else:
                    y -= math.copysign(corner_radius, dy)
                parts.append(f"L {_num(x)} {_num(y)}")
                nxt = route[i + 1]
                x0, y0 = nxt[0].x, nxt[0].y
                ndx = nxt[1].x - x0
                ndy = nxt[1].y - y0
                sweep = 1 if GridRouter.angle_between_2_lines(li, nxt) < 0 else 0
                if abs(ndx) > 0:
                    x2, y2 = x0 + math.copysign(corner_radius, ndx), y0
                else:
                    x2, y2 = x0, y0 + math.copysign(corner_radius, ndy)
                parts.append(
                    f"A {_num(abs(x2 - x))} {_num(abs(y2 - y))} 0 0 {sweep} {_num(x2)} {_num(y2)}"
                )
            else:
                tip = (x, y)
                if abs(dx) > 0:
                    x -= math.copysign(arrow_height, dx)
                    c1, c2 = (x, y + arrow_width), (x, y - arrow_width)
                else:
                    y -= math.copysign(arrow_height, dy)
                    c1, c2 = (x + arrow_width, y), (x - arrow_width, y)
                parts.append(f"L {_num(x)} {_num(y)}")
                if arrow_height > 0:
                    arrowpath = (
                        f"M {_num(tip[0])} {_num(tip[1])} "
                        f"L {_num(c1[0])} {_num(c1[1])} L {_num(c2[0])} {_num(c2[1])}"
                    )
        return RoutePath(' '.join(parts) + ' ', arrowpath)


def _num(v: float) -> str:
    v = float(v)
    return str(int(v)) if v.is_integer() else repr(v)


def _at(path: Sequence[Vert], i: int) -> Optional[Vert]:
    return path[i] if 0 <= i < len(path) else None
