"""
Batch layout operations.

Power graph layouts with orthogonal edge routing: the graph is grouped by
power graph compression, laid out with the groups as boxes, and the power
edges are then routed on a grid between node and group boundaries.
"""

from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Sequence, Union
import logging

from .gridrouter import GridRouter, NodeAccessor, Route
from .layout import Group, Layout, Link, Node, PowerGraph
from .rectangle import Rectangle, compute_group_bounds

logger = logging.getLogger(__name__)


class PowerGraphLayout(NamedTuple):
    layout: Layout
    power_graph: PowerGraph


class _RouterNode(NamedTuple):
    id: int
    bounds: Rectangle
    children: list[int]


class _RouterNodeAccessor(NodeAccessor[_RouterNode]):
    def get_children(self, v: _RouterNode) -> list[int]:
        return v.children

    def get_bounds(self, v: _RouterNode) -> Rectangle:
        return v.bounds


def _as_nodes(nodes: Sequence[Any]) -> list[Any]:
    return [Node(**v) if isinstance(v, Mapping) else v for v in nodes]


def _as_links(links: Sequence[Any]) -> list[Any]:
    return [Link(**l) if isinstance(l, Mapping) else l for l in links]


def power_graph_grid_layout(
    graph: Mapping[str, Sequence[Any]],
    size: Sequence[float],
    group_padding: float
) -> PowerGraphLayout:
    """
    Lay out a graph grouped by power graph compression.

    A first pass lays the graph out flat, with every group standing in as
    an extra node linked to its members, to give the nodes sensible
    starting positions. The second pass runs the full layout with the
    groups as padded boxes and overlap avoidance.

    Args:
        graph: Mapping with ``'nodes'`` and ``'links'``; dictionaries are
            converted to nodes and links once, up front
        size: Canvas width and height
        group_padding: Padding around the members of every group

    Returns:
        The final layout and its power graph
    """
    nodes = _as_nodes(graph['nodes'])
    links = _as_links(graph['links'])
    for i, v in enumerate(nodes):
        v.index = i

    power_graph: PowerGraph = PowerGraph([], [])

    def set_padding(g: PowerGraph) -> None:
        nonlocal power_graph
        power_graph = g
        for group in g.groups:
            group.padding = group_padding

    Layout().avoid_overlaps(False).nodes(nodes).links(links).power_graph_groups(set_padding)

    n = len(nodes)
    groups = power_graph.groups

    def flat_index(end: Union[Node, Group]) -> int:
        return n + end.index if isinstance(end, Group) else end.index

    vs = list(nodes) + [Node(index=n + g.index) for g in groups]
    edges = []
    for g in groups:
        for leaf in g.leaves or ():
            edges.append(Link(n + g.index, leaf.index))
        for child in g.groups or ():
            edges.append(Link(n + g.index, n + child.index))
    for e in power_graph.power_edges:
        edges.append(Link(flat_index(e.source), flat_index(e.target)))
    logger.debug("flat layout: %d nodes, %d group nodes, %d edges", n, len(groups), len(edges))

    (
        Layout()
        .size(tuple(size))
        .nodes(vs)
        .links(edges)
        .avoid_overlaps(False)
        .link_distance(30)
        .symmetric_diff_link_lengths(5)
        .convergence_threshold(1e-4)
        .start(100, 0, 0, keep_running=False)
    )

    layout = (
        Layout()
        .convergence_threshold(1e-3)
        .size(tuple(size))
        .avoid_overlaps(True)
        .nodes(nodes)
        .links(links)
        .group_compactness(1e-4)
        .link_distance(30)
        .symmetric_diff_link_lengths(5)
        .power_graph_groups(set_padding)
        .start(50, 0, 100, keep_running=False)
    )
    return PowerGraphLayout(layout, power_graph)


def _refresh_bounds(layout: Layout) -> None:
    for v in layout.nodes():
        v.bounds = None
        v.bounds = Layout._node_bounds(v)
    for g in layout.groups():
        if g.parent is None:
            compute_group_bounds(g)


def _router_nodes(layout: Layout, margin: float, group_margin: float) -> list[_RouterNode]:
    nodes = layout.nodes()
    n = len(nodes)
    router_nodes = [_RouterNode(v.index, v.bounds.inflate(-margin), []) for v in nodes]
    for i, g in enumerate(layout.groups()):
        children = [n + c.index for c in g.groups or ()]
        children += [v.index for v in g.leaves or ()]
        router_nodes.append(_RouterNode(n + i, g.bounds.inflate(-group_margin), children))
    return router_nodes


def gridify(
    pg_layout: PowerGraphLayout,
    nudge_gap: float,
    margin: float,
    group_margin: float
) -> list[Route]:
    """
    Route the power edges of a power graph layout on an orthogonal grid.

    Node and group boxes are taken from the current positions, shrunk by
    ``margin`` and ``group_margin`` respectively.

    Args:
        pg_layout: Result of :func:`power_graph_grid_layout`
        nudge_gap: Spacing between parallel edge segments
        margin: Space around nodes
        group_margin: Space around groups

    Returns:
        One route per power edge, in the order of the power edges
    """
    layout = pg_layout.layout
    _refresh_bounds(layout)
    n = len(layout.nodes())

    def router_id(end: Union[Node, Group]) -> int:
        return n + end.index if isinstance(end, Group) else end.index

    router = GridRouter(
        _router_nodes(layout, margin, group_margin),
        _RouterNodeAccessor(),
        margin - group_margin,
    )
    power_edges = pg_layout.power_graph.power_edges
    logger.debug("routing %d power edges", len(power_edges))
    return router.route_edges(
        power_edges,
        nudge_gap,
        lambda e: router_id(e.source),
        lambda e: router_id(e.target),
    )


__all__ = ['PowerGraphLayout', 'gridify', 'power_graph_grid_layout']
