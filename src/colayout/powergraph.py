"""
Power graph compression.

Nodes with common neighbours are greedily merged into modules; every edge
shared by both members of a merged pair is replaced by one power edge to the
module. The resulting module tree becomes a group hierarchy for layout.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterator, Mapping, Optional, Sequence, TypeVar
import logging

from .linklengths import LinkAccessor

logger = logging.getLogger(__name__)

T = TypeVar('T')


class LinkTypeAccessor(LinkAccessor[T]):
    """Link accessor that also tells links apart by type."""

    def get_type(self, link: T) -> int:
        raise NotImplementedError


class PowerEdge:
    """Edge between nodes and/or modules, carrying the type of the links it replaces."""

    def __init__(self, source: Any, target: Any, type: int):
        self.source = source
        self.target = target
        self.type = type

    def __repr__(self) -> str:
        return f"PowerEdge({self.source!r}, {self.target!r}, {self.type})"


class ModuleSet:
    """Modules keyed by id, in insertion order."""

    def __init__(self):
        self.table: dict[int, Module] = {}

    def __len__(self) -> int:
        return len(self.table)

    def __iter__(self) -> Iterator[Module]:
        return iter(self.table.values())

    def __contains__(self, m: Module) -> bool:
        return m.id in self.table

    def intersection(self, other: ModuleSet) -> ModuleSet:
        result = ModuleSet()
        for key, m in self.table.items():
            if key in other.table:
                result.table[key] = m
        return result

    def add(self, m: Module) -> None:
        self.table[m.id] = m

    def remove(self, m: Module) -> None:
        self.table.pop(m.id, None)

    def modules(self) -> list[Module]:
        """Mergeable members (predefined groups excluded), by ascending id."""
        return sorted((m for m in self.table.values() if not m.is_predefined()), key=lambda m: m.id)


class LinkSets:
    """Adjacent modules per link type."""

    def __init__(self):
        self.sets: dict[int, ModuleSet] = {}
        self.n = 0

    def __len__(self) -> int:
        return self.n

    def add(self, linktype: int, m: Module) -> None:
        ms = self.sets.setdefault(linktype, ModuleSet())
        if m not in ms:
            ms.add(m)
            self.n += 1

    def remove(self, linktype: int, m: Module) -> None:
        ms = self.sets.get(linktype)
        if ms is None or m not in ms:
            return
        ms.remove(m)
        self.n -= 1
        if not ms:
            del self.sets[linktype]

    def items(self):
        return self.sets.items()

    def intersection(self, other: LinkSets) -> LinkSets:
        result = LinkSets()
        for linktype, ms in self.sets.items():
            if linktype in other.sets:
                i = ms.intersection(other.sets[linktype])
                if i:
                    result.sets[linktype] = i
                    result.n += len(i)
        return result

    def intersection_count(self, other: LinkSets) -> int:
        n = 0
        for linktype, ms in self.sets.items():
            theirs = other.sets.get(linktype)
            if theirs is not None:
                n += sum(1 for key in ms.table if key in theirs.table)
        return n


class Module:
    """
    A node of the power graph: a single graph node (leaf), a merged pair or a
    predefined group.

    ``version`` is bumped whenever the module's adjacency changes, which
    invalidates any cached merge candidate involving it.
    """

    def __init__(
        self,
        id: int,
        outgoing: Optional[LinkSets] = None,
        incoming: Optional[LinkSets] = None,
        children: Optional[ModuleSet] = None,
        definition: Optional[dict] = None
    ):
        self.id = id
        self.outgoing = outgoing if outgoing is not None else LinkSets()
        self.incoming = incoming if incoming is not None else LinkSets()
        self.children = children if children is not None else ModuleSet()
        self.definition = definition
        self.gid: Optional[int] = None
        self.version = 0

    def get_edges(self, es: list[PowerEdge]) -> None:
        for linktype, ms in self.outgoing.items():
            for target in ms:
                es.append(PowerEdge(self.id, target.id, linktype))

    def is_leaf(self) -> bool:
        return not self.children

    def is_island(self) -> bool:
        return len(self.outgoing) == 0 and len(self.incoming) == 0

    def is_predefined(self) -> bool:
        return self.definition is not None


def _group_parts(group: Any) -> tuple[list, list, dict]:
    """Leaves, sub-groups and remaining properties of a dict or object group."""
    if isinstance(group, Mapping):
        props = {k: v for k, v in group.items() if k not in ('leaves', 'groups')}
        return list(group.get('leaves') or []), list(group.get('groups') or []), props
    props = {
        k: v for k, v in vars(group).items()
        if k not in ('leaves', 'groups') and not k.startswith('_')
    }
    return list(getattr(group, 'leaves', None) or []), list(getattr(group, 'groups', None) or []), props


def _leaf_index(leaf: Any) -> int:
    if isinstance(leaf, int):
        return leaf
    if isinstance(leaf, Mapping):
        return leaf.get('index', leaf.get('id'))
    return leaf.index


class Configuration(Generic[T]):
    """
    Greedy power graph compression state.

    ``modules`` maps module ids to modules: ids ``0..n-1`` are the graph
    nodes, merged modules get the next free ids and predefined groups
    negative ids. Each entry of ``roots`` is one level whose members may
    still be merged.
    """

    def __init__(
        self,
        n: int,
        edges: Sequence[T],
        link_accessor: LinkTypeAccessor[T],
        root_group: Optional[Any] = None
    ):
        self.modules: dict[int, Module] = {}
        self.roots: list[ModuleSet] = []
        self.link_accessor = link_accessor
        self._next_id = n
        self._next_group_id = -1
        # (a.id, b.id) -> (a.version, b.version, shared edge count)
        self._candidates: dict[tuple[int, int], tuple[int, int, int]] = {}

        if root_group:
            self._init_modules_from_group(root_group)
        else:
            self.roots.append(ModuleSet())
            for i in range(n):
                self.modules[i] = Module(i)
                self.roots[0].add(self.modules[i])

        self.R = len(edges)
        for e in edges:
            s = self.modules[link_accessor.get_source_index(e)]
            t = self.modules[link_accessor.get_target_index(e)]
            edge_type = link_accessor.get_type(e)
            s.outgoing.add(edge_type, t)
            t.incoming.add(edge_type, s)

    def _init_modules_from_group(self, group: Any) -> ModuleSet:
        module_set = ModuleSet()
        self.roots.append(module_set)
        leaves, groups, _ = _group_parts(group)

        for leaf in leaves:
            i = _leaf_index(leaf)
            self.modules[i] = Module(i)
            module_set.add(self.modules[i])

        for child in groups:
            _, _, definition = _group_parts(child)
            gid = self._next_group_id
            self._next_group_id -= 1
            module = Module(gid, LinkSets(), LinkSets(), self._init_modules_from_group(child), definition)
            self.modules[gid] = module
            module_set.add(module)

        return module_set

    def merge(self, a: Module, b: Module, k: int = 0) -> Module:
        """Replace ``a`` and ``b`` in root ``k`` by a module containing both."""
        in_int = a.incoming.intersection(b.incoming)
        out_int = a.outgoing.intersection(b.outgoing)

        children = ModuleSet()
        children.add(a)
        children.add(b)
        m = Module(self._next_id, out_int, in_int, children)
        self._next_id += 1
        self.modules[m.id] = m

        def update(s: LinkSets, incoming: str, outgoing: str) -> None:
            for linktype, ms in s.items():
                for n in ms:
                    nls = getattr(n, incoming)
                    nls.add(linktype, m)
                    nls.remove(linktype, a)
                    nls.remove(linktype, b)
                    getattr(a, outgoing).remove(linktype, n)
                    getattr(b, outgoing).remove(linktype, n)
                    n.version += 1

        update(out_int, "incoming", "outgoing")
        update(in_int, "outgoing", "incoming")

        self.R -= len(in_int) + len(out_int)
        self.roots[k].remove(a)
        self.roots[k].remove(b)
        self.roots[k].add(m)
        return m

    def _shared(self, a: Module, b: Module) -> int:
        key = (a.id, b.id)
        cached = self._candidates.get(key)
        if cached is not None and cached[0] == a.version and cached[1] == b.version:
            return cached[2]
        shared = a.incoming.intersection_count(b.incoming) + a.outgoing.intersection_count(b.outgoing)
        self._candidates[key] = (a.version, b.version, shared)
        return shared

    def _n_edges(self, a: Module, b: Module) -> int:
        """Edge count after merging ``a`` and ``b``."""
        return self.R - self._shared(a, b)

    def greedy_merge(self) -> bool:
        """
        Perform the best merge in the first level that has one.

        The best merge saves the most edges; ties go to the pair that comes
        first in ascending id order. Returns False when no merge reduces the
        edge count.
        """
        for k, root in enumerate(self.roots):
            rs = root.modules()
            if len(rs) < 2:
                continue
            best = None
            best_edges = None
            for i in range(len(rs) - 1):
                for j in range(i + 1, len(rs)):
                    n_edges = self._n_edges(rs[i], rs[j])
                    if best_edges is None or n_edges < best_edges:
                        best, best_edges = (rs[i], rs[j]), n_edges
            if best_edges >= self.R:
                continue
            self.merge(best[0], best[1], k)
            return True
        return False

    def get_group_hierarchy(self, retargeted_edges: list[PowerEdge]) -> list[dict]:
        """
        Groups for every non-island module, with power edges retargeted to them.

        Each group is a dict with ``id`` and optional ``leaves`` (node
        indices) and ``groups`` (group ids), plus the properties of a
        predefined group it came from.
        """
        groups: list[dict] = []
        root: dict = {}
        _to_groups(self.roots[0], root, groups)

        for e in self.all_edges():
            a = self.modules[e.source]
            b = self.modules[e.target]
            source = e.source if a.gid is None else groups[a.gid]
            target = e.target if b.gid is None else groups[b.gid]
            retargeted_edges.append(PowerEdge(source, target, e.type))

        return groups

    def all_edges(self) -> list[PowerEdge]:
        es: list[PowerEdge] = []
        Configuration._get_edges(self.roots[0], es)
        return es

    @staticmethod
    def _get_edges(modules: ModuleSet, es: list[PowerEdge]) -> None:
        for m in modules:
            m.get_edges(es)
            Configuration._get_edges(m.children, es)


def _to_groups(modules: ModuleSet, group: dict, groups: list[dict]) -> None:
    for m in modules:
        if m.is_leaf():
            group.setdefault('leaves', []).append(m.id)
            continue
        g = group
        if not m.is_island() or m.is_predefined():
            m.gid = len(groups)
            g = {'id': m.gid}
            if m.is_predefined():
                g.update(m.definition)
                g['id'] = m.gid
            group.setdefault('groups', []).append(m.gid)
            groups.append(g)
        _to_groups(m.children, g, groups)


class _FunctionLinkTypeAccessor(LinkTypeAccessor[T]):
    def __init__(
        self,
        source: Callable[[T], int],
        target: Callable[[T], int],
        type: Callable[[T], int]
    ):
        self._source = source
        self._target = target
        self._type = type

    def get_source_index(self, l: T) -> int:
        return self._source(l)

    def get_target_index(self, l: T) -> int:
        return self._target(l)

    def get_type(self, l: T) -> int:
        return self._type(l)


def link_type_accessor(
    source: Callable[[T], int],
    target: Callable[[T], int],
    type: Callable[[T], int] = lambda l: 0
) -> LinkTypeAccessor[T]:
    """Accessor built from three functions."""
    return _FunctionLinkTypeAccessor(source, target, type)


def get_groups(
    nodes: Sequence[Any],
    links: Sequence[T],
    link_accessor: LinkTypeAccessor[T],
    root_group: Optional[Any] = None
) -> dict[str, Any]:
    """
    Compress the graph and describe the result.

    Returns ``{'groups': [...], 'powerEdges': [...]}`` where power edge ends
    are either entries of ``nodes`` or group dicts.
    """
    config = Configuration(len(nodes), links, link_accessor, root_group)
    merges = 0
    while config.greedy_merge():
        merges += 1

    power_edges: list[PowerEdge] = []
    groups = config.get_group_hierarchy(power_edges)
    for e in power_edges:
        if isinstance(e.source, int):
            e.source = nodes[e.source]
        if isinstance(e.target, int):
            e.target = nodes[e.target]

    logger.debug(
        "power graph: %d merges, %d links -> %d power edges in %d groups",
        merges, len(links), len(power_edges), len(groups)
    )
    return {'groups': groups, 'powerEdges': power_edges}
