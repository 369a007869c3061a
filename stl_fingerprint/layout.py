# stl_fingerprint/layout.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

import yaml

from .engine_types import (
    BitsetParams, Candidate, Family, Layout, LayoutField, ListParams,
    StringParams, TemplateBindings, TreeParams, VectorParams, align_up,
    natural_alignment,
)
from .errors import BindingError, InternalInvariantViolation

BINDING_TYPES = {
    Family.STRING: StringParams,
    Family.VECTOR: VectorParams,
    Family.TREE: TreeParams,
    Family.LIST: ListParams,
    Family.BITSET: BitsetParams,
}


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def build_layout(fields: Sequence[LayoutField], bindings: Dict[str, Any]) -> Layout:
    """校验字段单调、不重叠，并按最宽字段的对齐补齐总大小。"""
    if not fields:
        raise InternalInvariantViolation("layout without fields")
    prev_end = 0
    for f in fields:
        if f.size <= 0 or f.offset < prev_end:
            raise InternalInvariantViolation(
                f"field {f.name} at {f.offset} (+{f.size}) overlaps or precedes offset {prev_end}"
            )
        if f.offset % f.align:
            raise InternalInvariantViolation(f"field {f.name} at {f.offset} is not {f.align}-aligned")
        prev_end = f.end
    alignment = max(f.align for f in fields)
    return Layout(
        total_size=align_up(fields[-1].end, alignment),
        alignment=alignment,
        fields=tuple(fields),
        bindings=tuple((k, _freeze(v)) for k, v in sorted(bindings.items())),
    )


class LayoutSynthesizer:
    """
    纯结构展开：把匹配到的指纹形状 + 已解析的模板参数展开成字节精确的字段布局。
    不做任何匹配或推断；绑定不一致属于调用方的程序错误。
    """

    def synthesize(self, candidate: Candidate, bindings: TemplateBindings) -> Layout:
        family = candidate.family
        expected = BINDING_TYPES[family]
        if not isinstance(bindings, expected):
            raise BindingError(
                f"{candidate.fingerprint.name} needs {expected.__name__}, got {type(bindings).__name__}"
            )
        if getattr(bindings, "pointer_size", candidate.fingerprint.arch.pointer_size) != \
                candidate.fingerprint.arch.pointer_size:
            raise BindingError(f"{candidate.fingerprint.name}: bindings resolved for another arch")
        builder = getattr(self, f"_{family.value}")
        fields = builder(candidate, bindings)
        return build_layout(fields, bindings.as_dict())

    @staticmethod
    def _string(candidate: Candidate, b: StringParams) -> List[LayoutField]:
        p = b.pointer_size
        if b.char_size <= 0 or b.buffer_size % b.char_size or b.capacity != b.buffer_size // b.char_size - 1:
            raise BindingError(f"inconsistent string bindings: {b}")
        # union 里有指针，所以对齐按指针宽度
        return [
            LayoutField("buffer", 0, b.buffer_size, "union(buffer|pointer)", align=p),
            LayoutField("size", b.buffer_size, p, "length", align=p),
            LayoutField("capacity", b.buffer_size + p, p, "capacity", align=p, value=b.capacity),
        ]

    @staticmethod
    def _vector(candidate: Candidate, b: VectorParams) -> List[LayoutField]:
        p = b.pointer_size
        if b.element_size <= 0:
            raise BindingError(f"element size must be positive: {b}")
        return [
            LayoutField("start", 0, p, "pointer", align=p),
            LayoutField("end", p, p, "pointer", align=p),
            LayoutField("capacity", 2 * p, p, "capacity", align=p),
        ]

    @staticmethod
    def _head_size(p: int) -> List[LayoutField]:
        return [
            LayoutField("head", 0, p, "pointer", align=p),
            LayoutField("size", p, p, "length", align=p),
        ]

    def _tree(self, candidate: Candidate, b: TreeParams) -> List[LayoutField]:
        p = b.pointer_size
        if not b.node:
            return self._head_size(p)
        if b.key_size is None or b.key_offset is None or b.key_size <= 0:
            raise BindingError(f"tree node bindings without a key: {b}")
        flags = 3 * p
        fields = [
            LayoutField("left", 0, p, "pointer", align=p),
            LayoutField("right", p, p, "pointer", align=p),
            LayoutField("parent", 2 * p, p, "pointer", align=p),
            LayoutField("is_first_node", flags, 1, "flag", value=1),
            LayoutField("color", flags + 1, 1, "flag", value=1),
            LayoutField("key", b.key_offset, b.key_size, "key",
                        align=natural_alignment(b.key_size)),
        ]
        if b.value_size is not None:
            if b.value_offset is None:
                raise BindingError(f"tree value without an offset: {b}")
            fields.append(LayoutField("value", b.value_offset, b.value_size, "value",
                                      align=natural_alignment(b.value_size)))
        if b.key_offset < flags + 2:
            raise BindingError(f"key at {b.key_offset} overlaps the node flags")
        return fields

    def _list(self, candidate: Candidate, b: ListParams) -> List[LayoutField]:
        p = b.pointer_size
        if b.element_size <= 0:
            raise BindingError(f"element size must be positive: {b}")
        if not b.node:
            return self._head_size(p)
        align = natural_alignment(b.element_size)
        return [
            LayoutField("forward", 0, p, "pointer", align=p),
            LayoutField("back", p, p, "pointer", align=p),
            LayoutField("value", align_up(2 * p, align), b.element_size, "value", align=align),
        ]

    @staticmethod
    def _bitset(candidate: Candidate, b: BitsetParams) -> List[LayoutField]:
        if b.word_bits not in (32, 64) or b.word_count <= 0:
            raise BindingError(f"inconsistent bitset bindings: {b}")
        if b.bit_count is not None and b.bit_count > b.bit_count_max:
            raise BindingError(f"bitset<{b.bit_count}> does not fit {b.word_count} words")
        size = b.word_bits // 8
        return [
            LayoutField(f"bits[{i}]", i * size, size, "bit-word", align=size)
            for i in range(b.word_count)
        ]


# ---------- 输出 ---------- #

def dump_layouts_json(layouts: Dict[str, Layout], path: str) -> None:
    data = {"layouts": {name: layout.as_dict() for name, layout in layouts.items()}}
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def dump_reports_yaml(reports: Sequence[Dict[str, Any]], path: str) -> None:
    with open(path, "w") as f:
        yaml.safe_dump({"reports": list(reports)}, f, sort_keys=False)
