"""
Variable placement with separation constraints.

One-dimensional active-set solver: find positions for a set of variables that
satisfy ``right.scale * right.position() - gap >= left.scale * left.position()``
for every constraint while minimizing the weighted squared displacement from
each variable's desired position.

Variables and constraints are numbered by the solver. Blocks live in a flat
arena (:class:`Blocks`) and are referred to by integer handle, so merging and
splitting is list manipulation plus handle reassignment.
"""

from __future__ import annotations

from typing import Callable, Iterator, NamedTuple, Optional, Sequence
import logging

logger = logging.getLogger(__name__)

LAGRANGIAN_TOLERANCE = -1e-4
ZERO_UPPERBOUND = -1e-10


class PositionStats:
    """Running sums used to place a block at its least-squares optimum."""

    def __init__(self, scale: float):
        self.scale = scale
        self.AB: float = 0.0
        self.AD: float = 0.0
        self.A2: float = 0.0

    def add_variable(self, v: Variable) -> None:
        ai = self.scale / v.scale
        bi = v.offset / v.scale
        wi = v.weight
        self.AB += wi * ai * bi
        self.AD += wi * ai * v.desired_position
        self.A2 += wi * ai * ai

    def get_posn(self) -> float:
        return (self.AD - self.AB) / self.A2


class Variable:
    """
    A value placed by the solver.

    ``block`` and the ``c_in``/``c_out`` adjacency lists hold integer handles
    and are only meaningful once the variable belongs to a :class:`Solver`.
    """

    def __init__(self, desired_position: float, weight: float = 1.0, scale: float = 1.0):
        self.desired_position = desired_position
        self.weight = weight
        self.scale = scale
        self.offset: float = 0.0
        self.id: int = -1
        self.block: int = -1
        self.c_in: list[int] = []   # constraints with this variable on the right
        self.c_out: list[int] = []  # constraints with this variable on the left
        self._arena: Optional[Blocks] = None

    def dfdv(self) -> float:
        """Derivative of the cost with respect to this variable."""
        return 2.0 * self.weight * (self.position() - self.desired_position)

    def position(self) -> float:
        b = self._arena.blocks[self.block]
        return (b.ps.scale * b.posn + self.offset) / self.scale

    def __repr__(self) -> str:
        return f"Variable(id={self.id}, desired={self.desired_position})"


class Constraint:
    """Separation (or, with ``equality``, exact spacing) between two variables."""

    def __init__(self, left: Variable, right: Variable, gap: float, equality: bool = False):
        self.left = left
        self.right = right
        self.gap = gap
        self.equality = equality
        self.lm: float = 0.0
        self.active: bool = False
        self.unsatisfiable: bool = False
        self.id: int = -1

    def slack(self) -> float:
        """Positive when satisfied, negative when violated."""
        if self.unsatisfiable:
            return float('inf')
        return (self.right.scale * self.right.position() - self.gap
                - self.left.scale * self.left.position())

    def __repr__(self) -> str:
        op = '==' if self.equality else '<='
        return f"Constraint({self.left.id} + {self.gap} {op} {self.right.id})"


class Block:
    """Variables held at fixed relative offsets by active constraints."""

    __slots__ = ('vars', 'posn', 'ps')

    def __init__(self, scale: float):
        self.vars: list[int] = []
        self.posn: float = 0.0
        self.ps = PositionStats(scale)


class Blocks:
    """
    Arena of blocks for one solve.

    Every variable starts in a block of its own. Removing a block moves the
    last block into the freed slot and updates the handles of its variables.
    """

    def __init__(self, vs: list[Variable], cs: list[Constraint]):
        self.vs = vs
        self.cs = cs
        self.blocks: list[Block] = []
        for v in vs:
            v._arena = self
            self._new_block(v.id)

    def __len__(self) -> int:
        return len(self.blocks)

    def _new_block(self, vid: int) -> int:
        v = self.vs[vid]
        handle = len(self.blocks)
        self.blocks.append(Block(v.scale))
        v.offset = 0.0
        self._add_variable(handle, vid)
        return handle

    def _add_variable(self, handle: int, vid: int) -> None:
        b = self.blocks[handle]
        v = self.vs[vid]
        v.block = handle
        b.vars.append(vid)
        b.ps.add_variable(v)
        b.posn = b.ps.get_posn()

    def remove(self, handle: int) -> None:
        moved = self.blocks.pop()
        if handle < len(self.blocks):
            self.blocks[handle] = moved
            for vid in moved.vars:
                self.vs[vid].block = handle

    def cost(self) -> float:
        total = 0.0
        for v in self.vs:
            d = v.position() - v.desired_position
            total += d * d * v.weight
        return total

    def update_block_positions(self) -> None:
        for b in self.blocks:
            b.ps.AB = b.ps.AD = b.ps.A2 = 0.0
            for vid in b.vars:
                b.ps.add_variable(self.vs[vid])
            b.posn = b.ps.get_posn()

    def _active_neighbours(
        self, vid: int, prev: Optional[int]
    ) -> Iterator[tuple[Constraint, int]]:
        v = self.vs[vid]
        for cid in v.c_out:
            c = self.cs[cid]
            if c.active and c.right.id != prev:
                yield c, c.right.id
        for cid in v.c_in:
            c = self.cs[cid]
            if c.active and c.left.id != prev:
                yield c, c.left.id

    def compute_lm(
        self, vid: int, prev: Optional[int], post_action: Callable[[Constraint], None]
    ) -> float:
        """
        Recompute Lagrange multipliers over the active tree rooted at ``vid``.

        Returns the derivative contribution of the subtree.
        """
        v = self.vs[vid]
        dfdv = v.dfdv()
        for c, nxt in self._active_neighbours(vid, prev):
            sub = self.compute_lm(nxt, vid, post_action)
            if nxt == c.right.id:
                dfdv += sub * c.left.scale
                c.lm = sub
            else:
                dfdv += sub * c.right.scale
                c.lm = -sub
            post_action(c)
        return dfdv / v.scale

    def find_min_lm(self, handle: int) -> Optional[Constraint]:
        """Active inequality constraint of the block with the smallest multiplier."""
        m: Optional[Constraint] = None

        def check(c: Constraint) -> None:
            nonlocal m
            if not c.equality and (m is None or c.lm < m.lm):
                m = c

        self.compute_lm(self.blocks[handle].vars[0], None, check)
        return m

    def find_path(
        self,
        vid: int,
        prev: Optional[int],
        to: int,
        visit: Callable[[Constraint, int], None],
    ) -> bool:
        """Walk the active tree from ``vid`` to ``to``, visiting each edge on the path."""
        end_found = False
        for c, nxt in self._active_neighbours(vid, prev):
            if not end_found and (nxt == to or self.find_path(nxt, vid, to, visit)):
                end_found = True
                visit(c, nxt)
        return end_found

    def find_min_lm_between(self, lv: int, rv: int) -> Optional[Constraint]:
        self.compute_lm(lv, None, lambda c: None)
        m: Optional[Constraint] = None

        def check(c: Constraint, nxt: int) -> None:
            nonlocal m
            if not c.equality and c.right.id == nxt and (m is None or c.lm < m.lm):
                m = c

        self.find_path(lv, None, rv, check)
        return m

    def is_active_directed_path_between(self, u: int, v: int) -> bool:
        if u == v:
            return True
        for cid in reversed(self.vs[u].c_out):
            c = self.cs[cid]
            if c.active and self.is_active_directed_path_between(c.right.id, v):
                return True
        return False

    def _populate_split_block(self, handle: int, vid: int, prev: Optional[int]) -> None:
        v = self.vs[vid]
        for c, nxt in self._active_neighbours(vid, prev):
            self.vs[nxt].offset = v.offset + (c.gap if nxt == c.right.id else -c.gap)
            self._add_variable(handle, nxt)
            self._populate_split_block(handle, nxt, vid)

    def split(self, c: Constraint) -> tuple[int, int]:
        """
        Deactivate ``c`` and rebuild both halves of its block as new blocks.

        The old block is left in place; callers remove it.
        """
        c.active = False
        halves = []
        for vid in (c.left.id, c.right.id):
            handle = self._new_block(vid)
            self._populate_split_block(handle, vid, None)
            halves.append(handle)
        return halves[0], halves[1]

    def split_between(self, handle: int, vl: int, vr: int) -> Optional[Constraint]:
        """Split ``handle`` at the weakest constraint on the path from ``vl`` to ``vr``."""
        c = self.find_min_lm_between(vl, vr)
        if c is not None:
            self.split(c)
            self.remove(handle)
        return c

    def merge(self, c: Constraint) -> None:
        """Activate ``c``, folding the smaller of its two blocks into the larger."""
        lh = c.left.block
        rh = c.right.block
        dist = c.right.offset - c.left.offset - c.gap
        if len(self.blocks[lh].vars) < len(self.blocks[rh].vars):
            self._merge_across(rh, lh, c, dist)
            self.remove(lh)
        else:
            self._merge_across(lh, rh, c, -dist)
            self.remove(rh)

    def _merge_across(self, into: int, other: int, c: Constraint, dist: float) -> None:
        c.active = True
        for vid in self.blocks[other].vars:
            self.vs[vid].offset += dist
            self._add_variable(into, vid)

    def split_blocks(self, inactive: list[int]) -> None:
        """Split every block whose weakest constraint is pulling the wrong way."""
        self.update_block_positions()
        for b in list(self.blocks):
            handle = self.vs[b.vars[0]].block
            c = self.find_min_lm(handle)
            if c is not None and c.lm < LAGRANGIAN_TOLERANCE:
                old = c.left.block
                self.split(c)
                self.remove(old)
                inactive.append(c.id)


class Solver:
    """
    Active-set solver over one axis.

    Constraints that turn out to be part of a cycle are flagged
    ``unsatisfiable`` and ignored; solving never fails.
    """

    LAGRANGIAN_TOLERANCE = LAGRANGIAN_TOLERANCE
    ZERO_UPPERBOUND = ZERO_UPPERBOUND

    def __init__(self, vs: list[Variable], cs: list[Constraint]):
        self.vs = vs
        self.cs = cs
        self.bs: Optional[Blocks] = None

        for i, v in enumerate(vs):
            v.id = i
            v.c_in = []
            v.c_out = []
        for i, c in enumerate(cs):
            c.id = i
            c.active = False
            c.left.c_out.append(i)
            c.right.c_in.append(i)

        self.inactive: list[int] = list(range(len(cs)))

    def cost(self) -> float:
        return self.bs.cost()

    def set_starting_positions(self, ps: Sequence[float]) -> None:
        """Reset the active set and start each variable (in its own block) at ``ps``."""
        self.inactive = list(range(len(self.cs)))
        for c in self.cs:
            c.active = False
        self.bs = Blocks(self.vs, self.cs)
        for b, p in zip(self.bs.blocks, ps):
            b.posn = p

    def set_desired_positions(self, ps: Sequence[float]) -> None:
        for v, p in zip(self.vs, ps):
            v.desired_position = p

    def most_violated(self) -> Optional[Constraint]:
        """
        Inactive constraint with minimum slack; an equality constraint wins at once.

        The chosen constraint leaves the inactive list if it is about to be
        activated.
        """
        min_slack = float('inf')
        v: Optional[Constraint] = None
        delete_point = len(self.inactive)

        for i, cid in enumerate(self.inactive):
            c = self.cs[cid]
            if c.unsatisfiable:
                continue
            slack = c.slack()
            if c.equality or slack < min_slack:
                min_slack = slack
                v = c
                delete_point = i
                if c.equality:
                    break

        if delete_point < len(self.inactive) and (
            (min_slack < ZERO_UPPERBOUND and not v.active) or v.equality
        ):
            self.inactive[delete_point] = self.inactive[-1]
            self.inactive.pop()

        return v

    def _mark_unsatisfiable(self, c: Constraint) -> None:
        c.unsatisfiable = True
        logger.debug("unsatisfiable constraint %r", c)

    def satisfy(self) -> None:
        """Merge and split blocks until no inactive constraint is violated."""
        if self.bs is None:
            self.bs = Blocks(self.vs, self.cs)

        self.bs.split_blocks(self.inactive)
        v = self.most_violated()

        while v is not None and (v.equality or (v.slack() < ZERO_UPPERBOUND and not v.active)):
            lh = v.left.block
            rh = v.right.block

            if lh != rh:
                self.bs.merge(v)
            else:
                if self.bs.is_active_directed_path_between(v.right.id, v.left.id):
                    self._mark_unsatisfiable(v)
                    v = self.most_violated()
                    continue

                split = self.bs.split_between(lh, v.left.id, v.right.id)
                if split is None:
                    self._mark_unsatisfiable(v)
                    v = self.most_violated()
                    continue
                self.inactive.append(split.id)

                if v.slack() >= 0:
                    self.inactive.append(v.id)
                else:
                    self.bs.merge(v)

            v = self.most_violated()

    def solve(self) -> float:
        """Satisfy repeatedly until the cost settles; returns the final cost."""
        self.satisfy()
        last_cost = float('inf')
        cost = self.bs.cost()
        while abs(last_cost - cost) > 0.0001:
            self.satisfy()
            last_cost = cost
            cost = self.bs.cost()
        return cost


class Span(NamedTuple):
    size: float
    desired_center: float


class SpanPlacement(NamedTuple):
    centers: list[float]
    lower_bound: float
    upper_bound: float


def remove_overlap_in_one_dimension(
    spans: Sequence[Span],
    lower_bound: Optional[float] = None,
    upper_bound: Optional[float] = None,
) -> SpanPlacement:
    """
    Place consecutive spans without overlap, as close as possible to their
    desired centres, optionally inside ``[lower_bound, upper_bound]``.
    """
    n = len(spans)
    vs = [Variable(s.desired_center) for s in spans]
    cs = [
        Constraint(vs[i], vs[i + 1], (spans[i].size + spans[i + 1].size) / 2)
        for i in range(n - 1)
    ]

    left_most, right_most = vs[0], vs[n - 1]
    left_half = spans[0].size / 2
    right_half = spans[n - 1].size / 2
    v_lower: Optional[Variable] = None
    v_upper: Optional[Variable] = None

    if lower_bound is not None:
        v_lower = Variable(lower_bound, left_most.weight * 1000)
        vs.append(v_lower)
        cs.append(Constraint(v_lower, left_most, left_half))

    if upper_bound is not None:
        v_upper = Variable(upper_bound, right_most.weight * 1000)
        vs.append(v_upper)
        cs.append(Constraint(right_most, v_upper, right_half))

    Solver(vs, cs).solve()

    return SpanPlacement(
        centers=[v.position() for v in vs[:n]],
        lower_bound=v_lower.position() if v_lower else left_most.position() - left_half,
        upper_bound=v_upper.position() if v_upper else right_most.position() + right_half,
    )
