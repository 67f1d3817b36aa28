"""
Disconnected components: detection and packing.

After layout, each connected component is boxed and the boxes are packed
into rows. The row width is chosen by golden-section search so that the
packing's aspect ratio comes close to the desired one. This is a heuristic:
packings are reasonable, not optimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence
import logging
import math

logger = logging.getLogger(__name__)

PADDING = 10
GOLDEN_SECTION = (1 + math.sqrt(5)) / 2
FLOAT_EPSILON = 0.0001
MAX_ITERATIONS = 100


@dataclass
class Component:
    """A connected component and its box during packing."""

    array: list[Any] = field(default_factory=list)
    width: float = 0.0
    height: float = 0.0
    x: float = 0.0
    y: float = 0.0
    bottom: float = 0.0
    space_left: float = 0.0


def _node_index(end: Any) -> int:
    return end if isinstance(end, int) else end.index


def separate_graphs(nodes: Sequence[Any], links: Sequence[Any]) -> list[Component]:
    """
    Connected components in order of their first node.

    Nodes need an ``index``; link ends may be indices or nodes.
    """
    ways: dict[int, list[int]] = {}
    for link in links:
        u = _node_index(link.source)
        v = _node_index(link.target)
        ways.setdefault(u, []).append(v)
        ways.setdefault(v, []).append(u)

    by_index = {n.index: n for n in nodes}
    marked: set[int] = set()
    graphs: list[Component] = []
    for node in nodes:
        if node.index in marked:
            continue
        component = Component()
        graphs.append(component)
        stack = [node.index]
        marked.add(node.index)
        while stack:
            i = stack.pop()
            component.array.append(by_index[i])
            for j in reversed(ways.get(i, ())):
                if j not in marked:
                    marked.add(j)
                    stack.append(j)
    return graphs


def _calculate_bb(g: Component, node_size: float) -> None:
    min_x = min_y = math.inf
    max_x = max_y = -math.inf
    for v in g.array:
        w = (v.width if getattr(v, 'width', None) is not None else node_size) / 2
        h = (v.height if getattr(v, 'height', None) is not None else node_size) / 2
        max_x = max(v.x + w, max_x)
        min_x = min(v.x - w, min_x)
        max_y = max(v.y + h, max_y)
        min_y = min(v.y - h, min_y)
    g.width = max_x - min_x
    g.height = max_y - min_y


class _Packer:
    """Shelf packing for one candidate row width."""

    def __init__(self, graphs: list[Component], desired_ratio: float):
        self.graphs = graphs
        self.desired_ratio = desired_ratio
        self.real_width = 0.0
        self.real_height = 0.0

    def step(self, max_width: float) -> float:
        """Pack at ``max_width``; returns the distance from the desired ratio."""
        line: list[Component] = []
        self.real_width = 0.0
        self.real_height = 0.0
        global_bottom = 0.0
        for rect in self.graphs:
            global_bottom = self._put_rect(rect, max_width, line, global_bottom)
        ratio = self.real_width / self.real_height if self.real_height > 0 else math.inf
        return abs(ratio - self.desired_ratio)

    def _put_rect(self, rect: Component, max_width: float, line: list[Component], global_bottom: float) -> float:
        parent = None
        for item in line:
            if (item.space_left >= rect.height
                    and item.x + item.width + rect.width + PADDING - max_width <= FLOAT_EPSILON):
                parent = item
                break
        line.append(rect)

        if parent is not None:
            rect.x = parent.x + parent.width + PADDING
            rect.y = parent.bottom
            parent.space_left -= rect.height + PADDING
            parent.bottom += rect.height + PADDING
        else:
            rect.y = global_bottom
            global_bottom += rect.height + PADDING
            rect.x = 0.0
        rect.bottom = rect.y
        rect.space_left = rect.height

        if rect.y + rect.height - self.real_height > -FLOAT_EPSILON:
            self.real_height = rect.y + rect.height
        if rect.x + rect.width - self.real_width > -FLOAT_EPSILON:
            self.real_width = rect.x + rect.width
        return global_bottom

    def search(self) -> float:
        """Golden-section search over the row width; packs at the best width found."""
        self.graphs.sort(key=lambda g: g.height, reverse=True)
        min_width = min(g.width for g in self.graphs)
        left = min_width
        right = sum(g.width + PADDING for g in self.graphs)

        best_f = math.inf
        best = right
        x1 = x2 = left
        f1, f2 = 0.0, 10.0
        iterations = 0
        while abs(x1 - x2) > min_width or abs(f1 - f2) > FLOAT_EPSILON:
            x1 = right - (right - left) / GOLDEN_SECTION
            x2 = left + (right - left) / GOLDEN_SECTION
            f1 = self.step(x1)
            f2 = self.step(x2)
            if f1 > f2:
                left = x1
            else:
                right = x2
            if f1 < best_f:
                best_f, best = f1, x1
            if f2 < best_f:
                best_f, best = f2, x2
            iterations += 1
            if iterations > MAX_ITERATIONS:
                break
        self.step(best)
        return best


def apply_packing(
    graphs: list[Component],
    w: float,
    h: float,
    node_size: float = 0,
    desired_ratio: float = 1.0,
    center_graph: bool = True
) -> None:
    """
    Pack components into rows and move their nodes accordingly.

    Nodes without a ``width``/``height`` count as ``node_size`` squares.
    With ``center_graph`` the packing is centred on a ``w`` by ``h`` canvas,
    otherwise only the component boxes are computed.
    """
    if not graphs:
        return

    for g in graphs:
        _calculate_bb(g, node_size)

    packer = _Packer(graphs, desired_ratio)
    width = packer.search()
    logger.debug(
        "packed %d components at row width %.1f into %.1f x %.1f",
        len(graphs), width, packer.real_width, packer.real_height
    )

    if center_graph:
        _put_nodes_to_positions(graphs, w, h, packer.real_width, packer.real_height)


def _put_nodes_to_positions(
    graphs: Sequence[Component],
    svg_width: float,
    svg_height: float,
    real_width: float,
    real_height: float
) -> None:
    for g in graphs:
        center_x = sum(node.x for node in g.array) / len(g.array)
        center_y = sum(node.y for node in g.array) / len(g.array)
        corner_x = center_x - g.width / 2
        corner_y = center_y - g.height / 2
        offset_x = g.x - corner_x + svg_width / 2 - real_width / 2
        offset_y = g.y - corner_y + svg_height / 2 - real_height / 2
        for node in g.array:
            node.x += offset_x
            node.y += offset_y
