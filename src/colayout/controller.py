"""
Host-facing layout sessions.

A host graph library hands over its nodes and edges once and then drives the
layout through a :class:`LayoutController`: start, stop, kill and the three
drag handlers. Host nodes may be objects, which are laid out in place, or
dictionaries, whose ``x``/``y`` are written back on every layout event.
Edges name their end nodes by node ``id``; nodes without an ``id`` are named
by their position in the list.

The host can plug in two hooks: ``refresh()`` is called after every layout
event to redraw, and ``schedule(frame)`` asks the host to call ``frame``
later (on the next animation frame, say) instead of ticking to convergence
synchronously.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence, Union
import logging

from .config import LayoutOptions, as_options
from .layout import Event, Layout, Link, Node
from .validation import InvalidLinkError

logger = logging.getLogger(__name__)

Refresh = Callable[[], None]
Schedule = Callable[[Callable[[], None]], None]


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


class _HostLayout(Layout):
    """Layout reporting every event to its session and ticking on the host's schedule."""

    def __init__(self, on_event: Callable[[Event], None], schedule: Optional[Schedule] = None):
        super().__init__()
        self._on_event = on_event
        self._schedule = schedule

    def trigger(self, e: Event) -> None:
        super().trigger(e)
        self._on_event(e)

    def kick(self) -> None:
        if self._schedule is None:
            super().kick()
            return

        def frame() -> None:
            if not self.tick():
                self._schedule(frame)

        self._schedule(frame)


class LayoutSession:
    """One layout run over a host graph."""

    def __init__(
        self,
        nodes: Sequence[Any],
        edges: Sequence[Any],
        options: Union[LayoutOptions, Mapping[str, Any], None] = None,
        refresh: Optional[Refresh] = None,
        schedule: Optional[Schedule] = None
    ):
        self.host_nodes = list(nodes)
        self.host_edges = list(edges)
        self.options = as_options(options)
        self.refresh = refresh
        self.layout = _HostLayout(self._on_event, schedule)
        # id(host dict) -> layout node
        self._copies: dict[int, Node] = {}

    def _layout_nodes(self) -> list[Any]:
        nodes = []
        for host in self.host_nodes:
            if isinstance(host, Mapping):
                v = Node(**host)
                self._copies[id(host)] = v
            else:
                v = host
            size = _get(v, 'size')
            if size is not None:
                if _get(v, 'width') is None:
                    v.width = size * 2
                if _get(v, 'height') is None:
                    v.height = size * 2
            nodes.append(v)
        return nodes

    def _links(self) -> list[Link]:
        indices = {}
        for i, host in enumerate(self.host_nodes):
            indices[_get(host, 'id', i)] = i

        links = []
        for i, edge in enumerate(self.host_edges):
            ends = []
            for end in ('source', 'target'):
                key = _get(edge, end)
                if key not in indices:
                    raise InvalidLinkError(f"Edge {i}: {end} {key!r} is not a node")
                ends.append(indices[key])
            links.append(Link(ends[0], ends[1], edge=edge))
        return links

    def start(self) -> LayoutSession:
        """
        Configure the layout from the options and run it.

        Raises:
            InvalidLinkError: When an edge names a missing node
        """
        self.layout.nodes(self._layout_nodes())
        self.layout.links(self._links())
        self.layout.configure(self.options)
        logger.debug(
            "session start: %d nodes, %d edges", len(self.host_nodes), len(self.host_edges)
        )
        self.layout.start(*self.options.iterations())
        return self

    def stop(self) -> LayoutSession:
        self.layout.stop()
        return self

    def _on_event(self, e: Event) -> None:
        for host in self.host_nodes:
            v = self._copies.get(id(host))
            if v is not None:
                host['x'] = v.x
                host['y'] = v.y
        if self.refresh is not None:
            self.refresh()

    def _node(self, host: Any) -> Any:
        return self._copies.get(id(host), host)

    def drag_start(self, host: Any) -> None:
        """The pointer grabbed ``host``: pin it and wake the layout."""
        Layout.drag_start(self._node(host))
        self.layout.resume()

    def drag(self, host: Any, x: Optional[float] = None, y: Optional[float] = None) -> None:
        """
        ``host`` was moved, to ``(x, y)`` when given, otherwise to wherever
        the host already put it.
        """
        v = self._node(host)
        v.x = _get(host, 'x') if x is None else x
        v.y = _get(host, 'y') if y is None else y
        v.px = v.x
        v.py = v.y
        self.layout.resume()

    def drag_end(self, host: Any) -> None:
        """The pointer let go of ``host``."""
        v = self._node(host)
        v.px = v.x
        v.py = v.y
        Layout.drag_end(v)


class LayoutController:
    """
    Starts, stops and discards layout sessions over one host graph.

    Options are read when the first session starts; later calls to
    :meth:`start` restart that session.
    """

    def __init__(
        self,
        nodes: Sequence[Any],
        edges: Sequence[Any],
        refresh: Optional[Refresh] = None,
        schedule: Optional[Schedule] = None
    ):
        self.nodes = nodes
        self.edges = edges
        self.refresh = refresh
        self.schedule = schedule
        self.session: Optional[LayoutSession] = None

    def start(self, options: Union[LayoutOptions, Mapping[str, Any], None] = None) -> LayoutController:
        if self.session is None:
            self.session = LayoutSession(self.nodes, self.edges, options, self.refresh, self.schedule)
        self.session.start()
        return self

    def stop(self) -> LayoutController:
        if self.session is not None:
            self.session.stop()
        return self

    def kill(self) -> LayoutController:
        """Stop and forget the session."""
        if self.session is not None:
            self.session.stop()
            self.session = None
            logger.debug("session killed")
        return self

    def is_running(self) -> bool:
        """Whether a session exists, running or not."""
        return self.session is not None

    def drag_start(self, node: Any) -> None:
        if self.session is not None:
            self.session.drag_start(node)

    def drag(self, node: Any, x: Optional[float] = None, y: Optional[float] = None) -> None:
        if self.session is not None:
            self.session.drag(node, x, y)

    def drag_end(self, node: Any) -> None:
        if self.session is not None:
            self.session.drag_end(node)


__all__ = ['LayoutController', 'LayoutSession']
