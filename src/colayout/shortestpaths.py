"""
Shortest paths over an undirected weighted graph (Dijkstra).
"""

from __future__ import annotations

from typing import Callable, Generic, Optional, TypeVar

import numpy as np

from .pqueue import PairingHeap, PriorityQueue

T = TypeVar("T")


class Neighbour:
    __slots__ = ('id', 'distance')

    def __init__(self, id: int, distance: float):
        self.id = id
        self.distance = distance


class Node:
    """Per-vertex search state."""

    __slots__ = ('id', 'neighbours', 'd', 'prev', 'q')

    def __init__(self, id: int):
        self.id = id
        self.neighbours: list[Neighbour] = []
        self.d: float = float('inf')
        self.prev: Optional[Node] = None
        self.q: Optional[PairingHeap[Node]] = None


class QueueEntry:
    __slots__ = ('node', 'prev', 'd')

    def __init__(self, node: Node, prev: Optional[QueueEntry], d: float):
        self.node = node
        self.prev = prev
        self.d = d


class Calculator(Generic[T]):
    """
    Shortest paths from one node or between all pairs.

    Edges are given in any form; the three accessors extract the endpoint
    indices and the length.
    """

    def __init__(
        self,
        n: int,
        edges: list[T],
        get_source_index: Callable[[T], int],
        get_target_index: Callable[[T], int],
        get_length: Callable[[T], float],
    ):
        self.n = n
        self.edges = edges
        self.neighbours = [Node(i) for i in range(n)]
        for e in edges:
            u = get_source_index(e)
            v = get_target_index(e)
            d = get_length(e)
            self.neighbours[u].neighbours.append(Neighbour(v, d))
            self.neighbours[v].neighbours.append(Neighbour(u, d))

    def distance_matrix(self) -> np.ndarray:
        """
        All-pairs distances, ``inf`` between disconnected nodes.

        The result is symmetrized so that ``D[i][j] == D[j][i]`` holds exactly.
        """
        D = np.empty((self.n, self.n))
        for i in range(self.n):
            D[i] = self._dijkstra(i)
        D = np.minimum(D, D.T)
        np.fill_diagonal(D, 0.0)
        return D

    def distances_from_node(self, start: int) -> np.ndarray:
        return self._dijkstra(start)

    def path_from_node_to_node(self, start: int, end: int) -> list[int]:
        """
        Nodes on a shortest path, walking back from the node before ``end``
        to ``start``. Empty when ``end`` is unreachable or equal to ``start``.
        """
        d = self._dijkstra(start, end)
        if start == end or not np.isfinite(d[end]):
            return []
        path = []
        v = self.neighbours[end]
        while v.prev is not None:
            path.append(v.prev.id)
            v = v.prev
        return path

    def path_from_node_to_node_with_prev_cost(
        self, start: int, end: int, prev_cost: Callable[[int, int, int], float]
    ) -> list[int]:
        """
        Like :meth:`path_from_node_to_node`, with ``prev_cost(a, b, c)`` added
        for every continuation from edge ``a-b`` onto edge ``b-c``.

        The search never doubles back along the edge it arrived on and does
        not re-explore an edge already reached more cheaply.
        """
        q: PriorityQueue[QueueEntry] = PriorityQueue(lambda a, b: a.d <= b.d)
        qu = QueueEntry(self.neighbours[start], None, 0.0)
        visited_from: dict[tuple[int, int], float] = {}
        q.push(qu)
        reached = start == end
        while not q.empty():
            qu = q.pop()
            u = qu.node
            if u.id == end:
                reached = True
                break
            for neighbour in reversed(u.neighbours):
                v = self.neighbours[neighbour.id]
                if qu.prev is not None and v.id == qu.prev.node.id:
                    continue
                key = (v.id, u.id)
                if key in visited_from and visited_from[key] <= qu.d:
                    continue
                cc = prev_cost(qu.prev.node.id, u.id, v.id) if qu.prev is not None else 0.0
                t = qu.d + neighbour.distance + cc
                visited_from[key] = t
                q.push(QueueEntry(v, qu, t))

        if not reached:
            return []
        path = []
        while qu.prev is not None:
            qu = qu.prev
            path.append(qu.node.id)
        return path

    def _dijkstra(self, start: int, dest: int = -1) -> np.ndarray:
        q: PriorityQueue[Node] = PriorityQueue(lambda a, b: a.d <= b.d)
        d = np.full(self.n, np.inf)
        for node in reversed(self.neighbours):
            node.d = 0.0 if node.id == start else float('inf')
            node.prev = None
            node.q = q.push(node)

        def set_heap_node(e: Node, h: PairingHeap[Node]) -> None:
            e.q = h

        while not q.empty():
            u = q.pop()
            d[u.id] = u.d
            if u.id == dest:
                break
            for neighbour in reversed(u.neighbours):
                v = self.neighbours[neighbour.id]
                t = u.d + neighbour.distance
                if v.d > t:
                    v.d = t
                    v.prev = u
                    q.reduce_key(v.q, v, set_heap_node)
        return d
