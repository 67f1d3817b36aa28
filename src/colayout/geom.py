"""
Computational geometry for routing.

Orientation predicates, convex hulls, tangents between convex polygons and
the tangent visibility graph used to route edges around node boxes.
Polygons are lists of points in counter-clockwise order.
"""

from __future__ import annotations

from typing import Callable, NamedTuple, Optional, Sequence
import math


class Point:
    """2D point."""

    __slots__ = ('x', 'y')

    def __init__(self, x: float = 0.0, y: float = 0.0):
        self.x = x
        self.y = y

    def __repr__(self) -> str:
        return f"Point({self.x}, {self.y})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))


class LineSegment(NamedTuple):
    x1: float
    y1: float
    x2: float
    y2: float


def is_left(p0: Point, p1: Point, p2: Point) -> float:
    """
    Orientation of ``p2`` relative to the infinite line ``p0 -> p1``.

    Positive when ``p2`` is left of the line, zero when on it, negative when
    right of it.
    """
    return (p1.x - p0.x) * (p2.y - p0.y) - (p2.x - p0.x) * (p1.y - p0.y)


def above(p: Point, vi: Point, vj: Point) -> bool:
    return is_left(p, vi, vj) > 0


def below(p: Point, vi: Point, vj: Point) -> bool:
    return is_left(p, vi, vj) < 0


def convex_hull(points: Sequence[Point]) -> list[Point]:
    """
    Convex hull by Andrew's monotone chain, counter-clockwise.

    Collinear boundary points are dropped. Fewer than three distinct points
    come back as they are (deduplicated).
    """
    ps = sorted(set(points), key=lambda p: (p.x, p.y))
    if len(ps) < 3:
        return ps

    def half(seq: Sequence[Point]) -> list[Point]:
        h: list[Point] = []
        for p in seq:
            while len(h) >= 2 and is_left(h[-2], h[-1], p) <= 0:
                h.pop()
            h.append(p)
        return h

    lower = half(ps)
    upper = half(reversed(ps))
    return lower[:-1] + upper[:-1]


def clockwise_radial_sweep(p: Point, points: Sequence[Point], f: Callable[[Point], None]) -> None:
    """Call ``f`` on ``points`` ordered by angle around ``p``."""
    for q in sorted(points, key=lambda a: math.atan2(a.y - p.y, a.x - p.x)):
        f(q)


class PointTangents(NamedTuple):
    rtan: int
    ltan: int


def tangent_point_poly(p: Point, poly: Sequence[Point]) -> PointTangents:
    """Indices of the right and left tangent vertices of ``poly`` seen from ``p``."""
    closed = list(poly) + [poly[0]]
    return PointTangents(_rtangent(p, closed), _ltangent(p, closed))


def _rtangent(p: Point, v: Sequence[Point]) -> int:
    # binary search over a closed polygon, v[-1] == v[0]
    n = len(v) - 1
    if below(p, v[1], v[0]) and not above(p, v[n - 1], v[0]):
        return 0
    a, b = 0, n
    while True:
        if b - a == 1:
            return a if above(p, v[a], v[b]) else b
        c = (a + b) // 2
        dn_c = below(p, v[c + 1], v[c])
        if dn_c and not above(p, v[c - 1], v[c]):
            return c
        if above(p, v[a + 1], v[a]):
            if dn_c or above(p, v[a], v[c]):
                b = c
            else:
                a = c
        else:
            if dn_c and below(p, v[a], v[c]):
                b = c
            else:
                a = c


def _ltangent(p: Point, v: Sequence[Point]) -> int:
    n = len(v) - 1
    if above(p, v[n - 1], v[0]) and not below(p, v[1], v[0]):
        return 0
    a, b = 0, n
    while True:
        if b - a == 1:
            return a if below(p, v[a], v[b]) else b
        c = (a + b) // 2
        dn_c = below(p, v[c + 1], v[c])
        if above(p, v[c - 1], v[c]) and not dn_c:
            return c
        if below(p, v[a + 1], v[a]):
            if not dn_c or below(p, v[a], v[c]):
                b = c
            else:
                a = c
        else:
            if not dn_c and above(p, v[a], v[c]):
                b = c
            else:
                a = c


class BiTangent(NamedTuple):
    """Vertex indices of a bitangent: ``t1`` on the first polygon, ``t2`` on the second."""
    t1: int
    t2: int


class BiTangents:
    """The four bitangents between two disjoint convex polygons, where they exist."""

    KINDS = ('rl', 'lr', 'll', 'rr')

    def __init__(self):
        self.rl: Optional[BiTangent] = None
        self.lr: Optional[BiTangent] = None
        self.ll: Optional[BiTangent] = None
        self.rr: Optional[BiTangent] = None

    def __iter__(self):
        for kind in self.KINDS:
            t = getattr(self, kind)
            if t is not None:
                yield t


def tangents(V: Sequence[Point], W: Sequence[Point]) -> BiTangents:
    """All bitangents between convex polygons ``V`` and ``W``."""
    m = len(V) - 1
    n = len(W) - 1
    bt = BiTangents()
    for i in range(m + 1):
        v1 = V[m if i == 0 else i - 1]
        v2 = V[i]
        v3 = V[0 if i == m else i + 1]
        for j in range(n + 1):
            w1 = W[n if j == 0 else j - 1]
            w2 = W[j]
            w3 = W[0 if j == n else j + 1]

            v1v2w2 = is_left(v1, v2, w2)
            v2w1w2 = is_left(v2, w1, w2)
            v2w2w3 = is_left(v2, w2, w3)
            w1w2v2 = is_left(w1, w2, v2)
            w2v1v2 = is_left(w2, v1, v2)
            w2v2v3 = is_left(w2, v2, v3)

            if (v1v2w2 >= 0 and v2w1w2 >= 0 and v2w2w3 < 0
                    and w1w2v2 >= 0 and w2v1v2 >= 0 and w2v2v3 < 0):
                bt.ll = BiTangent(i, j)
            elif (v1v2w2 <= 0 and v2w1w2 <= 0 and v2w2w3 > 0
                    and w1w2v2 <= 0 and w2v1v2 <= 0 and w2v2v3 > 0):
                bt.rr = BiTangent(i, j)
            elif (v1v2w2 <= 0 and v2w1w2 > 0 and v2w2w3 <= 0
                    and w1w2v2 >= 0 and w2v1v2 < 0 and w2v2v3 >= 0):
                bt.rl = BiTangent(i, j)
            elif (v1v2w2 >= 0 and v2w1w2 < 0 and v2w2w3 >= 0
                    and w1w2v2 <= 0 and w2v1v2 > 0 and w2v2v3 <= 0):
                bt.lr = BiTangent(i, j)
    return bt


def segment_intersection(a: LineSegment, b: LineSegment) -> Optional[Point]:
    """Crossing point of two segments, ``None`` when parallel or apart."""
    dx12 = a.x2 - a.x1
    dy12 = a.y2 - a.y1
    dx34 = b.x2 - b.x1
    dy34 = b.y2 - b.y1
    denominator = dy34 * dx12 - dx34 * dy12
    if denominator == 0:
        return None
    dx31 = a.x1 - b.x1
    dy31 = a.y1 - b.y1
    s = (dx34 * dy31 - dy34 * dx31) / denominator
    t = (dx12 * dy31 - dy12 * dx31) / denominator
    if 0 <= s <= 1 and 0 <= t <= 1:
        return Point(a.x1 + s * dx12, a.y1 + s * dy12)
    return None


def _edges(poly: Sequence[Point]):
    for i in range(len(poly)):
        u = poly[i - 1]
        v = poly[i]
        yield LineSegment(u.x, u.y, v.x, v.y)


def intersections(l: LineSegment, poly: Sequence[Point]) -> list[Point]:
    """Points where ``l`` crosses the boundary of ``poly``."""
    ints = []
    for e in _edges(poly):
        p = segment_intersection(l, e)
        if p is not None:
            ints.append(p)
    return ints


def is_point_inside_poly(p: Point, poly: Sequence[Point]) -> bool:
    """True when ``p`` is inside or on convex ``poly``."""
    return not any(below(poly[i - 1], poly[i], p) for i in range(len(poly)))


def polys_overlap(p: Sequence[Point], q: Sequence[Point]) -> bool:
    """True when convex polygons ``p`` and ``q`` intersect or one contains the other."""
    if any(is_point_inside_poly(v, q) for v in p):
        return True
    if any(is_point_inside_poly(v, p) for v in q):
        return True
    return any(intersections(e, q) for e in _edges(p))


class VisibilityVertex:
    """Graph vertex at a polygon corner or an inserted port."""

    __slots__ = ('id', 'polyid', 'polyvertid', 'p')

    def __init__(self, id: int, polyid: int, polyvertid: int, p: Point):
        self.id = id
        self.polyid = polyid
        self.polyvertid = polyvertid
        self.p = p


class VisibilityEdge:
    __slots__ = ('source', 'target')

    def __init__(self, source: VisibilityVertex, target: VisibilityVertex):
        self.source = source
        self.target = target

    def length(self) -> float:
        dx = self.source.p.x - self.target.p.x
        dy = self.source.p.y - self.target.p.y
        return math.sqrt(dx * dx + dy * dy)


class TangentVisibilityGraph:
    """
    Visibility graph over convex polygons.

    Vertices are the polygon corners; edges are the polygon sides plus every
    bitangent between two polygons that crosses no third polygon. Ports are
    added with :meth:`add_point` on a :meth:`copy` so the base graph can be
    reused for many routes.
    """

    def __init__(self, P: Sequence[Sequence[Point]]):
        self.P = [list(poly) for poly in P]
        self.V: list[VisibilityVertex] = []
        self.E: list[VisibilityEdge] = []
        # (polygon, corner) -> vertex
        self._corner: dict[tuple[int, int], VisibilityVertex] = {}

        for i, poly in enumerate(self.P):
            for j, p in enumerate(poly):
                vv = VisibilityVertex(len(self.V), i, j, p)
                self.V.append(vv)
                self._corner[(i, j)] = vv
                if j > 0:
                    self.E.append(VisibilityEdge(self._corner[(i, j - 1)], vv))
            if len(poly) > 1:
                self.E.append(VisibilityEdge(self._corner[(i, 0)], self._corner[(i, len(poly) - 1)]))

        for i in range(len(self.P) - 1):
            for j in range(i + 1, len(self.P)):
                for t in tangents(self.P[i], self.P[j]):
                    self._add_edge_if_visible(self._corner[(i, t.t1)], self._corner[(j, t.t2)], i, j)

    def copy(self) -> TangentVisibilityGraph:
        """Shallow copy sharing polygons and vertices, with its own lists."""
        g = TangentVisibilityGraph.__new__(TangentVisibilityGraph)
        g.P = self.P
        g.V = list(self.V)
        g.E = list(self.E)
        g._corner = self._corner
        return g

    def _add_edge_if_visible(self, u: VisibilityVertex, v: VisibilityVertex, i1: int, i2: int) -> None:
        if not self._intersects_polys(LineSegment(u.p.x, u.p.y, v.p.x, v.p.y), i1, i2):
            self.E.append(VisibilityEdge(u, v))

    def add_edge_if_visible(self, u: VisibilityVertex, v: VisibilityVertex, i1: int, i2: int) -> None:
        """Connect ``u`` and ``v`` unless a polygon other than ``i1``/``i2`` blocks them."""
        self._add_edge_if_visible(u, v, i1, i2)

    def add_point(self, p: Point, i1: int) -> VisibilityVertex:
        """Insert a port inside polygon ``i1``, linked to every other polygon's tangents."""
        n = len(self.P)
        vv = VisibilityVertex(len(self.V), n, 0, p)
        self.V.append(vv)
        for i, poly in enumerate(self.P):
            if i == i1:
                continue
            t = tangent_point_poly(p, poly)
            self._add_edge_if_visible(vv, self._corner[(i, t.ltan)], i1, i)
            self._add_edge_if_visible(vv, self._corner[(i, t.rtan)], i1, i)
        return vv

    def _intersects_polys(self, l: LineSegment, i1: int, i2: int) -> bool:
        return any(
            i != i1 and i != i2 and intersections(l, poly)
            for i, poly in enumerate(self.P)
        )
