"""
Min priority queue on a pairing heap, with decrease-key for Dijkstra.
"""

from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

LessThan = Callable[[T, T], bool]


class PairingHeap(Generic[T]):
    """A heap node: one element and the sub-heaps hanging off it."""

    __slots__ = ('elem', 'subheaps')

    def __init__(self, elem: Optional[T] = None):
        self.elem = elem
        self.subheaps: list[PairingHeap[T]] = []

    def empty(self) -> bool:
        return self.elem is None

    def count(self) -> int:
        if self.empty():
            return 0
        return 1 + sum(h.count() for h in self.subheaps)

    def is_heap(self, less_than: LessThan) -> bool:
        return all(
            less_than(self.elem, h.elem) and h.is_heap(less_than) for h in self.subheaps
        )

    def merge(self, other: "PairingHeap[T]", less_than: LessThan) -> "PairingHeap[T]":
        if self.empty():
            return other
        if other.empty():
            return self
        if less_than(self.elem, other.elem):
            self.subheaps.append(other)
            return self
        other.subheaps.append(self)
        return other

    def remove_min(self, less_than: LessThan) -> "PairingHeap[T]":
        """Heap of everything below the root (two-pass pairing)."""
        heaps = self.subheaps
        if not heaps:
            return PairingHeap(None)
        paired = [
            heaps[i].merge(heaps[i + 1], less_than) if i + 1 < len(heaps) else heaps[i]
            for i in range(0, len(heaps), 2)
        ]
        result = paired.pop()
        while paired:
            result = paired.pop().merge(result, less_than)
        return result

    def decrease_key(
        self,
        subheap: "PairingHeap[T]",
        new_value: T,
        set_heap_node: Optional[Callable[[T, "PairingHeap[T]"], None]],
        less_than: LessThan,
    ) -> "PairingHeap[T]":
        """
        Cut ``subheap``'s element out and reinsert it as ``new_value``.

        ``subheap`` keeps its identity and takes over its children's root, so
        handles held by other elements stay valid; ``set_heap_node`` is told
        about every element whose node changed.
        """
        rest = subheap.remove_min(less_than)
        subheap.elem = rest.elem
        subheap.subheaps = rest.subheaps
        if set_heap_node is not None and rest.elem is not None:
            set_heap_node(subheap.elem, subheap)

        node = PairingHeap(new_value)
        if set_heap_node is not None:
            set_heap_node(new_value, node)
        return self.merge(node, less_than)


class PriorityQueue(Generic[T]):
    """Min priority queue ordered by ``less_than``."""

    def __init__(self, less_than: LessThan):
        self.root: Optional[PairingHeap[T]] = None
        self.less_than = less_than

    def __len__(self) -> int:
        return self.root.count() if self.root else 0

    def empty(self) -> bool:
        return self.root is None or self.root.empty()

    def top(self) -> Optional[T]:
        return None if self.empty() else self.root.elem

    def push(self, *args: T) -> Optional[PairingHeap[T]]:
        """Push elements; returns the heap node of the last one."""
        node = None
        for arg in args:
            node = PairingHeap(arg)
            self.root = node if self.empty() else self.root.merge(node, self.less_than)
        return node

    def pop(self) -> Optional[T]:
        if self.empty():
            return None
        obj = self.root.elem
        self.root = self.root.remove_min(self.less_than)
        return obj

    def reduce_key(
        self,
        heap_node: PairingHeap[T],
        new_key: T,
        set_heap_node: Optional[Callable[[T, PairingHeap[T]], None]] = None,
    ) -> None:
        self.root = self.root.decrease_key(heap_node, new_key, set_heap_node, self.less_than)

    def is_heap(self) -> bool:
        return self.empty() or self.root.is_heap(self.less_than)
