"""
Constrained stress majorization layout.

This module implements the Layout class which provides:
- Node positioning by stress majorization
- Ideal link lengths, optionally from neighbourhood heuristics
- Separation, alignment and directed flow constraints
- Group containment and overlap avoidance
- Power graph grouping
- An event system (start/tick/end) for animation
- Packing of disconnected components
- Edge routing around node boxes
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Mapping, Optional, TypedDict, Union
import logging

import numpy as np

from .config import LayoutOptions, as_options
from .descent import Descent
from .geom import Point, TangentVisibilityGraph
from .handledisconnected import apply_packing, separate_graphs
from .linklengths import (
    LayoutConstraint,
    LinkLengthAccessor,
    LinkSepAccessor,
    constraint_from_mapping,
    generate_alignment_constraints,
    generate_directed_edge_constraints,
    jaccard_link_lengths,
    symmetric_diff_link_lengths,
)
from .powergraph import LinkTypeAccessor, PowerEdge, get_groups
from .rectangle import (
    GraphNode,
    Projection,
    ProjectionGroup,
    Rectangle,
    make_edge_between,
    make_edge_to,
)
from .shortestpaths import Calculator
from .validation import (
    InvalidGroupError,
    validate_constraint_indices,
    validate_group_indices,
    validate_link_indices,
    validate_nodes,
)

logger = logging.getLogger(__name__)


class EventType(IntEnum):
    """
    The layout process fires three events:
    - start: layout iterations started
    - tick: fired once per iteration, listen to this to animate
    - end: layout converged
    """
    start = 0
    tick = 1
    end = 2


class Event(TypedDict, total=False):
    type: EventType
    alpha: float
    stress: Optional[float]


# attributes the layout reads or writes on every node
_NODE_DEFAULTS = {
    'index': None,
    'x': None,
    'y': None,
    'width': None,
    'height': None,
    'fixed': 0,
    'fixed_weight': None,
    'bounds': None,
    'inner_bounds': None,
    'variable': None,
    'px': None,
    'py': None,
    'parent': None,
}


class Node(GraphNode):
    """
    Layout node.

    ``x``/``y`` are the centre, written by the layout. ``width``/``height``
    give the box used for overlap avoidance and packing. ``fixed`` is a bit
    mask; any set bit holds the node at ``px``/``py``. Unknown keyword
    arguments are kept as attributes.
    """

    def __init__(self, **kwargs):
        super().__init__()
        for key, default in _NODE_DEFAULTS.items():
            setattr(self, key, kwargs.get(key, default))
        if self.fixed is None:
            self.fixed = 0
        for key, value in kwargs.items():
            if not hasattr(self, key):
                setattr(self, key, value)

    def __repr__(self) -> str:
        return f"Node(index={self.index}, x={self.x}, y={self.y})"


class Group(ProjectionGroup):
    """
    Hierarchical group of nodes.

    ``leaves`` and ``groups`` may be given as indices; :meth:`Layout.groups`
    resolves them to objects.
    """

    def __init__(self, **kwargs):
        super().__init__()
        self.leaves = kwargs.get('leaves')
        self.groups = kwargs.get('groups')
        padding = kwargs.get('padding')
        self.padding = 1.0 if padding is None else padding
        self.bounds = kwargs.get('bounds')
        stiffness = kwargs.get('stiffness')
        self.stiffness = 0.01 if stiffness is None else stiffness
        self.parent: Optional[Group] = None
        self.index: Optional[int] = None
        self.id = kwargs.get('id')
        for key, value in kwargs.items():
            if not hasattr(self, key):
                setattr(self, key, value)

    def __repr__(self) -> str:
        return f"Group(id={self.id}, index={self.index})"


def is_group(g: Any) -> bool:
    return hasattr(g, 'leaves') or hasattr(g, 'groups')


class Link:
    """
    Link between two nodes.

    Attributes:
        source: Source node or node index
        target: Target node or node index
        length: Ideal length factor, set by the link length heuristics
        weight: How hard to try to satisfy the ideal length (0 < weight <= 1)
    """

    def __init__(
        self,
        source: Union[Node, int],
        target: Union[Node, int],
        length: Optional[float] = None,
        weight: Optional[float] = None,
        **kwargs
    ):
        self.source = source
        self.target = target
        self.length = length
        self.weight = weight
        for key, value in kwargs.items():
            if not hasattr(self, key):
                setattr(self, key, value)

    def __repr__(self) -> str:
        return f"Link({Layout.link_id(self)})"


@dataclass
class PowerGraph:
    """Groups found by power graph compression and the edges between them."""

    groups: list[Group]
    power_edges: list[PowerEdge]


LinkNumericPropertyAccessor = Callable[[Link], float]


class _LayoutLinkAccessor(LinkTypeAccessor, LinkLengthAccessor, LinkSepAccessor):
    def __init__(self, layout: Layout):
        self.layout = layout

    def get_source_index(self, l: Link) -> int:
        return Layout.get_source_index(l)

    def get_target_index(self, l: Link) -> int:
        return Layout.get_target_index(l)

    def set_length(self, l: Link, value: float) -> None:
        l.length = value

    def get_type(self, l: Link) -> int:
        return self.layout.get_link_type(l)

    def get_min_separation(self, l: Link) -> float:
        return self.layout.get_min_separation(l)


class Layout:
    """
    Main interface to the layout engine.

    Setters return the layout so calls can be chained; calling a setter
    without arguments reads the current value.
    """

    def __init__(self):
        self._canvas_size: tuple[float, float] = (1.0, 1.0)
        self._link_distance: Union[float, LinkNumericPropertyAccessor] = 20.0
        self._default_node_size: float = 10.0
        self._link_length_calculator: Optional[Callable[[], None]] = None
        self._link_type: Optional[Union[Callable[[Link], int], int]] = None
        self._avoid_overlaps = False
        self._handle_disconnected = True
        self._alpha = 0.0
        self._last_stress: Optional[float] = None
        self._running = False
        self._nodes: list[Node] = []
        self._groups: list[Group] = []
        self._root_group: Optional[Group] = None
        self._links: list[Link] = []
        self._constraints: list[LayoutConstraint] = []
        self._distance_matrix: Optional[np.ndarray] = None
        self._descent: Optional[Descent] = None
        self._directed_link_constraints: Optional[tuple[str, Union[float, Callable[[Link], float]]]] = None
        self._threshold = 0.01
        self._visibility_graph: Optional[TangentVisibilityGraph] = None
        self._group_compactness = 1e-6
        self._options: Optional[LayoutOptions] = None
        self._events: dict[EventType, Callable[[Event], None]] = {}

    def on(self, e: Union[EventType, str], listener: Callable[[Event], None]) -> Layout:
        """Subscribe ``listener`` to an event; one listener per event type."""
        if isinstance(e, str):
            e = EventType[e]
        self._events[e] = listener
        return self

    def trigger(self, e: Event) -> None:
        """
        Call the listener registered for the event's type.

        Subclasses can override this to plug in other eventing mechanisms.
        """
        listener = self._events.get(e['type'])
        if listener is not None:
            listener(e)

    def kick(self) -> None:
        """
        Tick until converged.

        Subclasses can override this to spread ticks over frames or timers.
        """
        while not self.tick():
            pass

    def tick(self) -> bool:
        """
        Iterate the layout once.

        Alpha becomes the squared displacement of the step, so ticking stops
        once steps get small, not when the stress reaches a target; tight
        distances come from the iteration budgets given to :meth:`start`.

        Returns:
            True when the layout has converged, False otherwise
        """
        if self._alpha < self._threshold:
            self._running = False
            self.trigger({'type': EventType.end, 'alpha': 0.0, 'stress': self._last_stress})
            self._alpha = 0.0
            logger.debug("layout converged, stress %s", self._last_stress)
            return True

        self._lock_fixed_nodes()

        displacement = self._descent.runge_kutta()
        if displacement == 0:
            self._alpha = 0.0
        elif self._last_stress is not None:
            self._alpha = displacement
        self._last_stress = self._descent.compute_stress()

        self._update_node_positions()

        self.trigger({'type': EventType.tick, 'alpha': self._alpha, 'stress': self._last_stress})
        return False

    def _lock_fixed_nodes(self) -> None:
        self._descent.locks.clear()
        for i, o in enumerate(self._nodes):
            if o.fixed:
                if o.px is None or o.py is None:
                    o.px = o.x
                    o.py = o.y
                self._descent.locks.add(i, np.array([o.px, o.py]))

    def _update_node_positions(self) -> None:
        """Copy positions from the descent into the node centres."""
        x = self._descent.x[0]
        y = self._descent.x[1]
        for i, o in enumerate(self._nodes):
            if o.fixed and o.px is not None and o.py is not None:
                x[i] = o.px
                y[i] = o.py
            o.x = float(x[i])
            o.y = float(y[i])

    def nodes(self, v: Optional[list] = None) -> Union[list[Node], Layout]:
        """
        Get or set the nodes.

        Dictionaries become :class:`Node` objects; any other object is used
        in place, with missing layout attributes added to it. Reading the
        nodes when only links were given creates one node per index the
        links mention.

        Setting the nodes drops the groups, which refer to the old nodes.
        """
        if v is None:
            if not self._nodes and self._links:
                n = 0
                for l in self._links:
                    n = max(n, Layout.get_source_index(l), Layout.get_target_index(l))
                self._nodes = [Node(index=i) for i in range(n + 1)]
            return self._nodes

        self._nodes = []
        for node in v:
            if isinstance(node, Mapping):
                node = Node(**node)
            elif not isinstance(node, Node):
                for key, default in _NODE_DEFAULTS.items():
                    if not hasattr(node, key):
                        setattr(node, key, default)
            self._nodes.append(node)
        self._groups = []
        self._root_group = None
        return self

    def groups(self, x: Optional[list] = None) -> Union[list[Group], Layout]:
        """
        Get or set the group hierarchy.

        Leaves and sub-groups given as indices refer to the current nodes
        and to this list of groups. Groups and nodes without a parent become
        children of an implicit root group.

        Raises:
            InvalidGroupError: When an index is out of range
        """
        if x is None:
            return self._groups

        groups = []
        for g in x:
            if isinstance(g, Mapping):
                g = Group(**g)
            elif not isinstance(g, Group):
                g = Group(**{k: v for k, v in vars(g).items() if not k.startswith('_')})
            groups.append(g)
        validate_group_indices(groups, len(self._nodes))

        for v in self._nodes:
            v.parent = None
        for i, g in enumerate(groups):
            g.index = i
            g.parent = None

        for g in groups:
            if g.leaves is not None:
                g.leaves = [self._nodes[v] if isinstance(v, int) else v for v in g.leaves]
                for v in g.leaves:
                    v.parent = g
            if g.groups is not None:
                g.groups = [groups[c] if isinstance(c, int) else c for c in g.groups]
                for c in g.groups:
                    if c is g:
                        raise InvalidGroupError(f"Group {g.index} contains itself")
                    c.parent = g

        self._groups = groups
        self._root_group = Group(
            leaves=[v for v in self._nodes if v.parent is None],
            groups=[g for g in groups if g.parent is None],
        )
        return self

    def power_graph_groups(self, f: Callable[[PowerGraph], None]) -> Layout:
        """
        Group the graph by power graph compression.

        The found groups replace the current ones; ``f`` receives them
        together with the power edges, whose ends are nodes or groups.
        """
        for i, v in enumerate(self.nodes()):
            v.index = i
        result = get_groups(self._nodes, self._links, self.link_accessor, self._root_group)
        group_dicts = result['groups']
        self.groups(group_dicts)

        by_dict = {id(d): g for d, g in zip(group_dicts, self._groups)}
        power_edges = result['powerEdges']
        for e in power_edges:
            e.source = by_dict.get(id(e.source), e.source)
            e.target = by_dict.get(id(e.target), e.target)

        f(PowerGraph(self._groups, power_edges))
        return self

    def avoid_overlaps(self, v: Optional[bool] = None) -> Union[bool, Layout]:
        """
        Get or set whether node boxes (``width`` by ``height``) may overlap
        once all constraints are active.
        """
        if v is None:
            return self._avoid_overlaps
        self._avoid_overlaps = v
        return self

    def handle_disconnected(self, v: Optional[bool] = None) -> Union[bool, Layout]:
        """
        Get or set whether to pack connected components at the end of
        :meth:`start`.
        """
        if v is None:
            return self._handle_disconnected
        self._handle_disconnected = v
        return self

    def flow_layout(
        self,
        axis: str = 'y',
        min_separation: Union[float, Callable[[Link], float], None] = None
    ) -> Layout:
        """
        Lay directed links out along ``axis``.

        Every link not on a cycle gets a separation constraint making the
        target at least ``min_separation`` beyond the source. ``min_separation``
        may be a number or a function of the link.
        """
        self._directed_link_constraints = (axis, 0.0 if min_separation is None else min_separation)
        return self

    def links(self, x: Optional[list] = None) -> Union[list[Link], Layout]:
        """Get or set the links. Dictionaries become :class:`Link` objects."""
        if x is None:
            return self._links

        self._links = []
        for link in x:
            if isinstance(link, Mapping):
                link = Link(**link)
            elif not isinstance(link, Link):
                for key in ('length', 'weight'):
                    if not hasattr(link, key):
                        setattr(link, key, None)
            self._links.append(link)
        return self

    def constraints(self, c: Optional[list] = None) -> Union[list[LayoutConstraint], Layout]:
        """Get or set the constraints; dictionaries are converted."""
        if c is None:
            return self._constraints
        self._constraints = [constraint_from_mapping(x) for x in c]
        return self

    def distance_matrix(self, d: Optional[np.ndarray] = None) -> Union[Optional[np.ndarray], Layout]:
        """
        Get or set the ideal distances between all pairs of nodes.

        Without one, ideal distances are shortest path lengths over the links.
        """
        if d is None:
            return self._distance_matrix
        self._distance_matrix = np.asarray(d, dtype=float)
        return self

    def size(self, x: Optional[tuple[float, float]] = None) -> Union[tuple[float, float], Layout]:
        """
        Get or set the canvas size (width, height).

        Nodes without a position start at its centre, and packed components
        are centred on it.
        """
        if x is None:
            return self._canvas_size
        self._canvas_size = (x[0], x[1])
        return self

    def default_node_size(self, x: Optional[float] = None) -> Union[float, Layout]:
        """Get or set the box size used in packing for nodes without one."""
        if x is None:
            return self._default_node_size
        self._default_node_size = x
        return self

    def group_compactness(self, x: Optional[float] = None) -> Union[float, Layout]:
        """Get or set the attraction between opposite group boundaries."""
        if x is None:
            return self._group_compactness
        self._group_compactness = x
        return self

    def link_distance(
        self,
        x: Optional[Union[float, LinkNumericPropertyAccessor]] = None
    ) -> Union[float, LinkNumericPropertyAccessor, Layout]:
        """
        Get or set the ideal link length, a number or a function of the link.

        Setting it discards any link length heuristic.
        """
        if x is None:
            return self._link_distance
        self._link_distance = x if callable(x) else float(x)
        self._link_length_calculator = None
        return self

    def link_type(self, f: Union[Callable[[Link], int], int]) -> Layout:
        """Set the link type, a constant or a function of the link."""
        self._link_type = f
        return self

    def convergence_threshold(self, x: Optional[float] = None) -> Union[float, Layout]:
        if x is None:
            return self._threshold
        self._threshold = float(x)
        return self

    def alpha(self, x: Optional[float] = None) -> Union[float, Layout]:
        """
        Get or set alpha, the layout's temperature.

        Setting alpha above zero starts the layout when it is not running;
        setting it to zero makes the next tick end it.
        """
        if x is None:
            return self._alpha

        x = float(x)
        if self._alpha:
            self._alpha = x if x > 0 else 0.0
        elif x > 0 and not self._running:
            self._running = True
            self._alpha = x
            logger.debug("layout running, alpha %g", x)
            self.trigger({'type': EventType.start, 'alpha': self._alpha})
            self.kick()
        return self

    def get_link_length(self, link: Link) -> float:
        if callable(self._link_distance):
            return float(self._link_distance(link))
        return float(self._link_distance)

    def get_link_type(self, link: Link) -> int:
        if callable(self._link_type):
            return self._link_type(link)
        return self._link_type or 0

    def get_min_separation(self, link: Link) -> float:
        if self._directed_link_constraints is None:
            return 0.0
        min_separation = self._directed_link_constraints[1]
        if callable(min_separation):
            return float(min_separation(link))
        return float(min_separation)

    @property
    def link_accessor(self) -> _LayoutLinkAccessor:
        return _LayoutLinkAccessor(self)

    def symmetric_diff_link_lengths(self, ideal_length: float, w: float = 1.0) -> Layout:
        """
        Stretch links by the symmetric difference of their end nodes'
        neighbourhoods, which makes room around hubs in dense graphs.

        Args:
            ideal_length: Length of a link whose ends share all neighbours
            w: Strength of the stretch
        """
        self.link_distance(lambda l: ideal_length * (l.length or 1.0))
        self._link_length_calculator = lambda: symmetric_diff_link_lengths(self._links, self.link_accessor, w)
        return self

    def jaccard_link_lengths(self, ideal_length: float, w: float = 1.0) -> Layout:
        """
        Stretch links by the Jaccard coefficient of their end nodes'
        neighbourhoods.

        Args:
            ideal_length: Length of a link whose ends share no neighbours
            w: Strength of the stretch
        """
        self.link_distance(lambda l: ideal_length * (l.length or 1.0))
        self._link_length_calculator = lambda: jaccard_link_lengths(self._links, self.link_accessor, w)
        return self

    def configure(self, options: Union[LayoutOptions, Mapping[str, Any], None] = None) -> Layout:
        """
        Apply :class:`~colayout.config.LayoutOptions`, or a mapping of them.

        Explicit constraints win over generated alignment constraints; a
        ``link_length`` replaces the symmetric difference heuristic. The
        iteration budgets are not applied here, pass
        ``*options.iterations()`` to :meth:`start`.
        """
        o = as_options(options)
        self.convergence_threshold(o.convergence_threshold)
        self.avoid_overlaps(o.avoid_overlaps)
        self.handle_disconnected(o.handle_disconnected)
        self.size(o.size)
        self.default_node_size(o.default_node_size)
        self.group_compactness(o.group_compactness)

        if o.constraints is not None:
            self.constraints(o.constraints)
        elif o.alignment is not None:
            self.constraints(generate_alignment_constraints(self._links, o.alignment, self.link_accessor))

        if o.symmetric_diff_link_lengths is not None:
            self.symmetric_diff_link_lengths(o.symmetric_diff_link_lengths)
        if o.link_length is not None:
            self.link_distance(o.link_length)

        if o.flow_layout is not None:
            self.flow_layout(o.flow_layout.axis, o.flow_layout.min_separation)
        else:
            self._directed_link_constraints = None

        self._options = o
        return self

    def start(
        self,
        initial_unconstrained_iterations: int = 0,
        initial_user_constraint_iterations: int = 0,
        initial_all_constraints_iterations: int = 0,
        keep_running: bool = True,
        center_graph: bool = True
    ) -> Layout:
        """
        Lay the graph out.

        Three phases of descent run in turn: without constraints, with the
        user's constraints, then with all constraints including non-overlap
        and group containment.

        Args:
            initial_unconstrained_iterations: Budget of the first phase
            initial_user_constraint_iterations: Budget of the second phase
            initial_all_constraints_iterations: Budget of the third phase
            keep_running: Resume iterating with :meth:`tick` afterwards
            center_graph: Centre the packed components on the canvas

        Raises:
            InvalidNodeError: When a position or box size is not a finite number
            InvalidLinkError: When a link refers to a missing node
            InvalidConstraintError: When a constraint refers to a missing node
        """
        nodes = self.nodes()
        n = len(nodes)
        N = n + 2 * len(self._groups)
        w, h = self._canvas_size

        for i, v in enumerate(nodes):
            v.index = i
        validate_nodes(nodes)
        validate_link_indices(self._links, n)
        validate_constraint_indices(self._constraints, n)

        x = np.zeros(N)
        y = np.zeros(N)
        for i, v in enumerate(nodes):
            if v.x is None or v.y is None:
                v.x = w / 2
                v.y = h / 2
            x[i] = v.x
            y[i] = v.y

        if self._link_length_calculator is not None:
            self._link_length_calculator()

        G: Optional[np.ndarray] = None
        if self._distance_matrix is None:
            D = Calculator(
                N, self._links, Layout.get_source_index, Layout.get_target_index, self.get_link_length
            ).distance_matrix()

            # unlinked pairs only repel
            G = np.full((N, N), 2.0)
            for l in self._links:
                if isinstance(l.source, int):
                    l.source = nodes[l.source]
                if isinstance(l.target, int):
                    l.target = nodes[l.target]
                u = Layout.get_source_index(l)
                v = Layout.get_target_index(l)
                G[u, v] = G[v, u] = l.weight or 1.0
        else:
            m = min(N, self._distance_matrix.shape[0])
            D = np.full((N, N), np.inf)
            D[:m, :m] = self._distance_matrix[:m, :m]
            np.fill_diagonal(D, 0.0)
            if self._groups:
                G = np.ones((N, N))

        if self._groups:
            def add_attraction(i: int, j: int, strength: float, ideal_distance: float) -> None:
                G[i, j] = G[j, i] = strength
                D[i, j] = D[j, i] = ideal_distance

            i = n
            for g in self._groups:
                add_attraction(i, i + 1, self._group_compactness, 0.1)
                if g.bounds is None:
                    x[i] = x[i + 1] = w / 2
                    y[i] = y[i + 1] = h / 2
                else:
                    x[i], y[i] = g.bounds.x, g.bounds.y
                    x[i + 1], y[i + 1] = g.bounds.X, g.bounds.Y
                i += 2
        else:
            self._root_group = Group(leaves=nodes, groups=[])

        constraints = list(self._constraints)
        if self._directed_link_constraints is not None:
            axis = self._directed_link_constraints[0]
            constraints += generate_directed_edge_constraints(n, self._links, axis, self.link_accessor)

        self._descent = Descent(np.array([x, y]), D)
        # positions live in the descent from here on
        x = self._descent.x[0]
        y = self._descent.x[1]

        self._descent.locks.clear()
        for i, o in enumerate(nodes):
            if o.fixed:
                o.px = o.x
                o.py = o.y
                self._descent.locks.add(i, np.array([o.x, o.y]))
        self._descent.threshold = self._threshold

        logger.debug(
            "start: %d nodes, %d links, %d groups, %d constraints",
            n, len(self._links), len(self._groups), len(constraints)
        )

        self._initial_layout(initial_unconstrained_iterations, x, y)

        if constraints:
            logger.debug("user constraint phase, %d iterations", initial_user_constraint_iterations)
            self._descent.project = Projection(
                nodes, self._groups, self._root_group, constraints
            ).project_functions()
        self._descent.run(initial_user_constraint_iterations)
        self._separate_overlapping_components(w, h, center_graph)

        if self._avoid_overlaps:
            for i, v in enumerate(nodes):
                v.x = x[i]
                v.y = y[i]
            self._descent.project = Projection(
                nodes, self._groups, self._root_group, constraints, True
            ).project_functions()
            for i, v in enumerate(nodes):
                x[i] = v.x
                y[i] = v.y

        logger.debug("all constraints phase, %d iterations", initial_all_constraints_iterations)
        # unlinked pairs now only push apart
        self._descent.G = G
        self._descent.run(initial_all_constraints_iterations)

        self._update_node_positions()
        self._separate_overlapping_components(w, h, center_graph)
        return self.resume() if keep_running else self

    def _initial_layout(self, iterations: int, x: np.ndarray, y: np.ndarray) -> None:
        """
        Unconstrained phase.

        With groups, a flat graph with one proxy node per group, linked to
        its members, is laid out first and only the node positions kept.
        """
        if not self._groups or iterations <= 0:
            logger.debug("unconstrained phase, %d iterations", iterations)
            self._descent.run(iterations)
            return

        n = len(self._nodes)
        logger.debug("flat layout of %d nodes and %d group proxies", n, len(self._groups))
        vs = [Node(index=v.index, x=v.x, y=v.y) for v in self._nodes]
        vs.extend(Node(index=n + i) for i in range(len(self._groups)))
        proxy = {id(g): n + i for i, g in enumerate(self._groups)}

        edges = [Link(Layout.get_source_index(e), Layout.get_target_index(e)) for e in self._links]
        for g in self._groups:
            for v in g.leaves or ():
                edges.append(Link(proxy[id(g)], v.index))
            for c in g.groups or ():
                edges.append(Link(proxy[id(g)], proxy[id(c)]))

        flat = Layout()
        flat.size(self.size())
        flat.nodes(vs)
        flat.links(edges)
        flat.avoid_overlaps(False)
        flat.link_distance(self.link_distance())
        flat.symmetric_diff_link_lengths(5)
        flat.convergence_threshold(1e-4)
        flat.start(iterations, 0, 0, keep_running=False)

        for v in self._nodes:
            x[v.index] = vs[v.index].x
            y[v.index] = vs[v.index].y

    def _separate_overlapping_components(self, width: float, height: float, center_graph: bool = True) -> None:
        """Pack connected components apart when handling disconnected graphs."""
        if self._distance_matrix is not None or not self._handle_disconnected:
            return

        x = self._descent.x[0]
        y = self._descent.x[1]
        for i, v in enumerate(self._nodes):
            v.x = x[i]
            v.y = y[i]

        graphs = separate_graphs(self._nodes, self._links)
        apply_packing(graphs, width, height, self._default_node_size, 1, center_graph)

        for i, v in enumerate(self._nodes):
            x[i] = v.x
            y[i] = v.y
            if v.bounds is not None:
                v.bounds.set_x_centre(v.x)
                v.bounds.set_y_centre(v.y)

    def resume(self) -> Layout:
        return self.alpha(0.1)

    def stop(self) -> Layout:
        return self.alpha(0.0)

    def prepare_edge_routing(self, node_margin: float = 0.0) -> None:
        """
        Build the visibility graph used by :meth:`route_edge`.

        Node boxes must not overlap. Boxes are shrunk by ``node_margin``.
        """
        self._visibility_graph = TangentVisibilityGraph(
            [self._node_bounds(v).inflate(-node_margin).vertices() for v in self._nodes]
        )

    def route_edge(self, edge: Link, ah: float = 5.0) -> list[Point]:
        """
        Shortest route for ``edge`` around the node boxes.

        The route starts on the source box and stops ``ah`` short of the
        target box, leaving room for an arrow head.
        :meth:`prepare_edge_routing` must have been called.
        """
        source = self._node_of(edge.source)
        target = self._node_of(edge.target)
        source_bounds = source.inner_bounds or self._node_bounds(source)
        target_bounds = target.inner_bounds or self._node_bounds(target)

        vg2 = self._visibility_graph.copy()
        port1 = Point(source.x, source.y)
        port2 = Point(target.x, target.y)
        start = vg2.add_point(port1, source.index)
        end = vg2.add_point(port2, target.index)
        vg2.add_edge_if_visible(start, end, source.index, target.index)

        shortest_path = Calculator(
            len(vg2.V), vg2.E, lambda e: e.source.id, lambda e: e.target.id, lambda e: e.length()
        ).path_from_node_to_node(start.id, end.id)

        if len(shortest_path) <= 1 or len(shortest_path) == len(vg2.V):
            ends = make_edge_between(source_bounds, target_bounds, ah)
            return [ends.source_intersection, ends.arrow_start]

        n = len(shortest_path) - 2
        p = vg2.V[shortest_path[n]].p
        q = vg2.V[shortest_path[0]].p
        exit_point = source_bounds.ray_intersection(p.x, p.y)
        route = [exit_point or Point(source_bounds.cx(), source_bounds.cy())]
        for i in range(n, -1, -1):
            route.append(vg2.V[shortest_path[i]].p)
        route.append(make_edge_to(q, target_bounds, ah))
        return route

    def _node_of(self, end: Union[Node, int]) -> Node:
        return self._nodes[end] if isinstance(end, int) else end

    @staticmethod
    def _node_bounds(v: Node) -> Rectangle:
        if v.bounds is not None:
            return v.bounds
        w2 = (v.width or 0) / 2
        h2 = (v.height or 0) / 2
        return Rectangle(v.x - w2, v.x + w2, v.y - h2, v.y + h2)

    @staticmethod
    def get_source_index(e: Link) -> int:
        """The link source may be a node index or a node."""
        return e.source if isinstance(e.source, int) else e.source.index

    @staticmethod
    def get_target_index(e: Link) -> int:
        """The link target may be a node index or a node."""
        return e.target if isinstance(e.target, int) else e.target.index

    @staticmethod
    def link_id(e: Link) -> str:
        return f"{Layout.get_source_index(e)}-{Layout.get_target_index(e)}"

    @staticmethod
    def drag_start(d: Union[Node, Group]) -> None:
        """
        Pin a node, or every node of a group, for dragging.

        ``fixed`` bits: 1 is set by the user and persists, 2 marks a drag
        (start to end) and 4 a hover (over to out).
        """
        if is_group(d):
            Layout._store_offset(d, Layout.drag_origin(d))
        else:
            Layout._stop_node(d)
            d.fixed |= 2

    @staticmethod
    def _stop_node(v: Node) -> None:
        v.px = v.x
        v.py = v.y

    @staticmethod
    def _store_offset(d: Group, origin: Point) -> None:
        for v in d.leaves or ():
            v.fixed |= 2
            Layout._stop_node(v)
            v._drag_group_offset_x = v.x - origin.x
            v._drag_group_offset_y = v.y - origin.y
        for g in d.groups or ():
            Layout._store_offset(g, origin)

    @staticmethod
    def drag_origin(d: Union[Node, Group]) -> Point:
        """Centre of the node or of the group's bounds."""
        if is_group(d):
            return Point(d.bounds.cx(), d.bounds.cy())
        return Point(d.x, d.y)

    @staticmethod
    def drag(d: Union[Node, Group], position: Point) -> None:
        """Move the pinned position; group members keep their offsets."""
        if is_group(d):
            if d.bounds is not None:
                d.bounds.set_x_centre(position.x)
                d.bounds.set_y_centre(position.y)
            for v in d.leaves or ():
                v.px = v._drag_group_offset_x + position.x
                v.py = v._drag_group_offset_y + position.y
            for g in d.groups or ():
                Layout.drag(g, position)
        else:
            d.px = position.x
            d.py = position.y

    @staticmethod
    def drag_end(d: Union[Node, Group]) -> None:
        """Release the drag; a lock set by the user stays."""
        if is_group(d):
            for v in d.leaves or ():
                Layout.drag_end(v)
                for attr in ('_drag_group_offset_x', '_drag_group_offset_y'):
                    if hasattr(v, attr):
                        delattr(v, attr)
            for g in d.groups or ():
                Layout.drag_end(g)
        else:
            d.fixed &= ~6

    @staticmethod
    def mouse_over(d: Node) -> None:
        d.fixed |= 4
        d.px = d.x
        d.py = d.y

    @staticmethod
    def mouse_out(d: Node) -> None:
        d.fixed &= ~4


__all__ = [
    'EventType',
    'Event',
    'Node',
    'Group',
    'Link',
    'PowerGraph',
    'Layout',
    'is_group',
]
