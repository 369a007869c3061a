# stl_fingerprint/patterns/linked_list.py
from typing import Tuple

from .base import (
    POINTER_HINTS, CallFeature, ConstantFeature, FieldSlot, Fingerprint,
    MaxCountFeature, PatternBase,
)
from ..abi import ArchInfo, SentinelTables
from ..engine_types import Family

SIZE_HINTS = frozenset({"size", "count", "length", "mysize"})


class ListPattern(PatternBase):
    """
    list<T>：
      - node: forward / back / value
      - container: head / size
    if (size == 357913941) _Xlength_error("list too long") 是很强的佐证，
    但哨兵值只用来佐证，从不作为主信号。
    """

    family = Family.LIST

    def build(self, tables: SentinelTables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        p = arch.pointer_size
        length_error = CallFeature("length-error", tables.length_errors["list"], require_message=True)
        node_alloc = CallFeature("node-alloc", tables.node_alloc)
        max_node = 2 * p + tables.list_max_element_size

        node = Fingerprint(
            family=self.family,
            variant="node",
            arch=arch,
            shape=(
                FieldSlot("forward", "pointer", offset=0, size=p,
                          hints=POINTER_HINTS | {"forward", "next", "link"}),
                FieldSlot("back", "pointer", offset=p, size=p,
                          hints=POINTER_HINTS | {"back", "prev", "link"}),
                FieldSlot("value", "value", offset=2 * p,
                          hints=POINTER_HINTS | {"value", "data"}),
            ),
            optional=(
                node_alloc,
                length_error,
                MaxCountFeature("max-count", arch.address_limit, 2 * p + 1, max_node),
            ),
            resolver_hint="node-value",
            description="doubly linked node: forward, back, value",
        )
        container = Fingerprint(
            family=self.family,
            variant="container",
            arch=arch,
            shape=(
                FieldSlot("head", "pointer", offset=0, size=p,
                          hints=POINTER_HINTS | {"head", "myhead"}),
                FieldSlot("size", "length", offset=p, size=p, hints=SIZE_HINTS),
            ),
            optional=(
                ConstantFeature("zero-init", 0, offsets=(0, p)),
                MaxCountFeature("max-count", arch.address_limit, 2 * p + 1, max_node, offset=p),
                length_error,
                node_alloc,
            ),
            resolver_hint="node-value",
            description="list container: head node pointer and size",
        )
        return (node, container)
