# stl_fingerprint/patterns/tree.py
from typing import Tuple

from .base import (
    POINTER_HINTS, CallFeature, ConstantFeature, ConstantSlot, FieldSlot,
    Fingerprint, PatternBase,
)
from ..abi import ArchInfo, SentinelTables
from ..engine_types import Family

NODE_HINTS = POINTER_HINTS | {"self", "node"}
HEAD_HINTS = POINTER_HINTS | {"head", "myhead"}
SIZE_HINTS = frozenset({"size", "count", "length", "mysize"})

# bIsFirstNode + bColor
FLAG_BYTES = 2


class TreePattern(PatternBase):
    """
    红黑树（map/set）指纹：
      - 哨兵节点 left/right/parent 指向自身，flag word = 0x0101
      - map 节点在 key 之后还有一个独立类型的 value 字段，set 没有
      - 容器本身只有 head 指针与 size
    multimap/multiset 在结构上无法区分，由 resolver 报告为未决参数。
    """

    family = Family.TREE

    def build(self, tables: SentinelTables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        p = arch.pointer_size
        links = (
            FieldSlot("left", "pointer", offset=0, size=p, hints=NODE_HINTS | {"left"}),
            FieldSlot("right", "pointer", offset=p, size=p, hints=NODE_HINTS | {"right"}),
            FieldSlot("parent", "pointer", offset=2 * p, size=p, hints=NODE_HINTS | {"parent"}),
        )
        key = FieldSlot("key", "key", hints=frozenset({"key"}), gap=FLAG_BYTES)
        value = FieldSlot("value", "value", hints=frozenset({"value", "mapped"}))
        # flag word 的 extent 覆盖到下一个指针边界，反编译器常把它写成一个 dword
        flags = ConstantSlot("flags", "flag", offset=3 * p, size=p, value=tables.tree_sentinel_flags)
        length_error = CallFeature("length-error", tables.length_errors["tree"], require_message=True)
        node_alloc = CallFeature("node-alloc", tables.node_alloc)

        def node(variant: str, shape, description: str) -> Fingerprint:
            return Fingerprint(
                family=self.family,
                variant=variant,
                arch=arch,
                shape=shape,
                constants=(flags,),
                optional=(node_alloc, length_error),
                resolver_hint="key-value",
                description=description,
            )

        container = Fingerprint(
            family=self.family,
            variant="container",
            arch=arch,
            shape=(
                FieldSlot("head", "pointer", offset=0, size=p, hints=HEAD_HINTS),
                FieldSlot("size", "length", offset=p, size=p, hints=SIZE_HINTS),
            ),
            optional=(
                node_alloc,
                ConstantFeature("zero-init", 0, offsets=(0, p)),
                ConstantFeature("sentinel-flags", tables.tree_sentinel_flags),
                length_error,
            ),
            resolver_hint="key-value",
            description="tree container: head node pointer and size",
        )
        return (
            node("map", links + (key, value), "tree node with key and mapped value"),
            node("set", links + (key,), "tree node with key only"),
            container,
        )
