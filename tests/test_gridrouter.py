"""Tests for gridrouter module."""

import pytest
from colayout.gridrouter import (
    NodeWrapper, Vert, LongestCommonSubsequence, GridRouter, EdgeOrder,
    BEND_PENALTY
)
from colayout.geom import Point
from colayout.rectangle import Rectangle


class Box:
    """Node for testing: a box and the indices of its children."""

    def __init__(self, x, X, y, Y, children=None):
        self.bounds = Rectangle(x, X, y, Y)
        self.children = children or []


class BoxAccessor:
    def get_children(self, v):
        return v.children

    def get_bounds(self, v):
        return v.bounds


def row_of_boxes(n, spacing=50):
    return [Box(i * spacing, i * spacing + 10, 0, 10) for i in range(n)]


def coords(path):
    return [(pytest.approx(p.x), pytest.approx(p.y)) for p in path]


def inside(p, r):
    return r.x < p.x < r.X and r.y < p.y < r.Y


class TestNodeWrapper:
    """Test NodeWrapper and Vert."""

    def test_leaf(self):
        """A node without children is a leaf."""
        node = NodeWrapper(0, Rectangle(0, 10, 0, 10))
        assert node.leaf
        assert node.children == [] and node.ports == []

    def test_group(self):
        """A node with children is not a leaf."""
        node = NodeWrapper(3, Rectangle(0, 10, 0, 10), [0, 1])
        assert not node.leaf
        assert node.children == [0, 1]

    def test_vert(self):
        """Verts default to no owning node."""
        v = Vert(2, 5.0, 6.0)
        assert (v.id, v.x, v.y, v.node) == (2, 5.0, 6.0, None)


class TestLongestCommonSubsequence:
    """Test the longest common run finder."""

    def test_forward_match(self):
        """The shared middle run is found."""
        lcs = LongestCommonSubsequence([1, 2, 3, 4, 5], [9, 2, 3, 4, 8])
        assert (lcs.length, lcs.si, lcs.ti, lcs.reversed) == (3, 1, 1, False)
        assert lcs.get_sequence() == [2, 3, 4]

    def test_reversed_match(self):
        """A run found in the reversed sequence is reported in original indices."""
        lcs = LongestCommonSubsequence([1, 2, 3, 4], [4, 3, 2, 9])
        assert lcs.reversed
        assert (lcs.length, lcs.si, lcs.ti) == (3, 1, 0)

    def test_no_match(self):
        """Disjoint sequences have an empty run."""
        lcs = LongestCommonSubsequence([1, 2], [3, 4])
        assert lcs.length == 0
        assert lcs.get_sequence() == []


class TestGridConstruction:
    """Test the routing grid."""

    def test_mid_points(self):
        """Mid lines fall between positions and half a gap beyond the ends."""
        router = GridRouter(row_of_boxes(2), BoxAccessor())
        assert router._mid_points([0, 10, 30]) == [-5, 5, 20, 35]

    def test_single_line_mid_points(self):
        """A single line gets mid lines one group padding away."""
        router = GridRouter(row_of_boxes(2), BoxAccessor(), group_padding=12)
        assert router._mid_points([5]) == [-7, 17]

    def test_columns_and_rows(self):
        """Boxes side by side give one row and a column each."""
        router = GridRouter(row_of_boxes(3), BoxAccessor())
        assert [c.pos for c in router.cols] == [5, 55, 105]
        assert [r.pos for r in router.rows] == [5]
        assert [len(r.nodes) for r in router.rows] == [3]

    def test_group_rect_wraps_children(self):
        """Group boxes are the union of their children plus padding."""
        nodes = [Box(0, 10, 0, 10), Box(20, 30, 0, 10), Box(0, 1, 0, 1, children=[0, 1])]
        router = GridRouter(nodes, BoxAccessor(), group_padding=12)
        r = router.nodes[2].rect
        assert (r.x, r.X, r.y, r.Y) == (-12, 42, -12, 22)

    def test_depth(self):
        """Children sit one level below their group."""
        nodes = [Box(0, 10, 0, 10), Box(20, 30, 0, 10), Box(0, 1, 0, 1, children=[0])]
        router = GridRouter(nodes, BoxAccessor())
        assert router._get_depth(router.nodes[0]) == 1
        assert router._get_depth(router.nodes[1]) == 0
        assert router._get_depth(router.nodes[2]) == 0
        assert router.back_to_front[-1] is router.nodes[0]

    def test_every_node_has_ports(self):
        """Grid lines cross every leaf."""
        router = GridRouter(row_of_boxes(3), BoxAccessor())
        assert all(v.ports for v in router.nodes)

    def test_no_edges_inside_leaves(self):
        """Grid edges never join two vertices of the same leaf."""
        router = GridRouter(row_of_boxes(3), BoxAccessor())
        for e in router.edges:
            u = router.verts[e.source].node
            v = router.verts[e.target].node
            assert not (u is not None and u is v and u.leaf)

    def test_empty(self):
        """No nodes, no grid."""
        router = GridRouter([], BoxAccessor())
        assert router.verts == [] and router.edges == []


class TestRoute:
    """Test single edge routing."""

    def test_straight_route(self):
        """Neighbours in a row are joined by a straight run."""
        router = GridRouter(row_of_boxes(2), BoxAccessor())
        path = router.route(0, 1)
        assert coords(path) == [(10, 5), (30, 5), (50, 5)]
        assert path[0].node is router.nodes[0]
        assert path[-1].node is router.nodes[1]

    def test_route_avoids_obstacle(self):
        """A box in the way is routed around with two bends."""
        nodes = row_of_boxes(3)
        router = GridRouter(nodes, BoxAccessor())
        path = router.route(0, 2)
        obstacle = nodes[1].bounds
        assert not any(inside(p, obstacle) for p in path)
        segments = GridRouter.make_segments(path)
        assert len(segments) == 3
        for a, b in segments:
            assert a.x == pytest.approx(b.x) or a.y == pytest.approx(b.y)

    def test_sibling_obstacles(self):
        """Siblings on the way down to either end are obstacles."""
        nodes = [
            Box(0, 10, 0, 10),
            Box(20, 30, 0, 10),
            Box(60, 70, 0, 10),
            Box(0, 1, 0, 1, children=[0, 1]),
        ]
        router = GridRouter(nodes, BoxAccessor())
        obstacles = router.sibling_obstacles(router.nodes[0], router.nodes[2])
        assert [o.id for o in obstacles] == [1]

    def test_root_siblings_are_obstacles(self):
        """Top level nodes off the route are obstacles."""
        router = GridRouter(row_of_boxes(3), BoxAccessor())
        obstacles = router.sibling_obstacles(router.nodes[0], router.nodes[1])
        assert [o.id for o in obstacles] == [2]

    def test_bend_penalty(self):
        """Bends cost more than any detour on a small grid."""
        assert BEND_PENALTY == 1000


class TestSegments:
    """Test segment construction and ordering."""

    def test_make_segments_merges_collinear(self):
        """Collinear steps collapse into one segment."""
        path = [Point(0, 0), Point(5, 0), Point(10, 0), Point(10, 5), Point(10, 10)]
        segments = GridRouter.make_segments(path)
        assert [[(p.x, p.y) for p in s] for s in segments] == [
            [(0, 0), (10, 0)],
            [(10, 0), (10, 10)],
        ]

    def test_segments_share_corners(self):
        """Consecutive segments share the corner point."""
        segments = GridRouter.make_segments([Point(0, 0), Point(10, 0), Point(10, 10)])
        assert segments[0][1] is segments[1][0]

    def test_is_left(self):
        """Orientation test for three points."""
        assert GridRouter.is_left(Point(0, 0), Point(1, 0), Point(1, -1))
        assert not GridRouter.is_left(Point(0, 0), Point(1, 0), Point(1, 1))

    def test_order_edges_reverses_opposed_paths(self):
        """A path running the other way is reversed and recorded."""
        a, b, c = Point(0, 0), Point(10, 0), Point(20, 0)
        e = [a, b, c]
        f = [Point(20, 0), Point(10, 0), Point(0, 0)]
        order = GridRouter.order_edges([e, f])
        assert order.reversed == {1}
        assert f == [a, b, c]
        assert order(0, 1) and not order(1, 0)

    def test_edge_order(self):
        """EdgeOrder answers only for recorded pairs."""
        order = EdgeOrder()
        order.add(2, 0)
        assert order(2, 0)
        assert not order(0, 2)
        assert not order(1, 2)

    def test_get_segment_sets(self):
        """Parallel segments are grouped by position."""
        routes = [
            [[Point(0, 0), Point(0, 10)]],
            [[Point(0.05, 5), Point(0.05, 20)]],
            [[Point(5, 0), Point(5, 5)]],
            [[Point(0, 0), Point(10, 0)]],
        ]
        sets = GridRouter.get_segment_sets(routes, 'x', 'y')
        assert [s.segments for s in sets] == [[(0, 0), (1, 0)], [(2, 0)]]
        assert sets[0].pos == 0

    def test_nudge_segments(self):
        """Overlapping parallel segments are pushed a gap apart."""
        routes = [
            [[Point(0, 0), Point(0, 10)]],
            [[Point(0, 5), Point(0, 15)]],
        ]
        order = EdgeOrder()
        order.add(0, 1)
        GridRouter.nudge_segments(routes, 'x', 'y', order, 4)
        assert routes[0][0][0].x == pytest.approx(2)
        assert routes[0][0][1].x == pytest.approx(2)
        assert routes[1][0][0].x == pytest.approx(-2)

    def test_disjoint_segments_stay(self):
        """Segments on one line that do not overlap are left alone."""
        routes = [
            [[Point(0, 0), Point(0, 10)]],
            [[Point(0, 20), Point(0, 30)]],
        ]
        order = EdgeOrder()
        order.add(0, 1)
        GridRouter.nudge_segments(routes, 'x', 'y', order, 4)
        assert routes[0][0][0].x == 0 and routes[1][0][0].x == 0

    def test_unreverse_edges(self):
        """Reversed routes are flipped back."""
        routes = [[[Point(0, 0), Point(10, 0)], [Point(10, 0), Point(10, 10)]]]
        GridRouter.unreverse_edges(routes, {0})
        assert [[(p.x, p.y) for p in s] for s in routes[0]] == [
            [(10, 10), (10, 0)],
            [(10, 0), (0, 0)],
        ]


class TestRouteEdges:
    """Test the full routing pipeline."""

    def test_route_edges(self):
        """Every edge gets a route from source to target."""
        router = GridRouter(row_of_boxes(3), BoxAccessor())
        edges = [(0, 1), (1, 2)]
        routes = router.route_edges(edges, 2.0, lambda e: e[0], lambda e: e[1])
        assert len(routes) == 2
        first = routes[0]
        assert first[0][0].x == pytest.approx(10)
        assert first[-1][1].x == pytest.approx(50)
        second = routes[1]
        assert second[0][0].x == pytest.approx(60)
        assert second[-1][1].x == pytest.approx(100)


class TestRoutePath:
    """Test SVG path generation."""

    def test_corner(self):
        """Corners become arcs and the last run leaves room for the arrow."""
        route = [[Point(0, 0), Point(10, 0)], [Point(10, 0), Point(10, 10)]]
        path = GridRouter.get_route_path(route, 2, 1, 3)
        assert path.routepath == "M 0 0 L 8 0 A 2 2 0 0 1 10 2 L 10 7 "
        assert path.arrowpath == "M 10 10 L 11 7 L 9 7"

    def test_single_segment_without_arrow(self):
        """A straight route without arrow head runs to the end."""
        path = GridRouter.get_route_path([[Point(0, 0), Point(0, 10)]], 2, 1, 0)
        assert path.routepath == "M 0 0 L 0 10 "
        assert path.arrowpath == ''
