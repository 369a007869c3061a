# stl_fingerprint/engine_types.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Union

from .errors import QueryTimeout, ResolutionError
from .evidence import FieldAccess

if TYPE_CHECKING:
    from .patterns.base import Fingerprint


def align_up(value: int, align: int) -> int:
    return (value + align - 1) // align * align


def natural_alignment(size: int, limit: int = 8) -> int:
    """size 的自然对齐：不超过 limit 且能整除 size 的最大 2 的幂。"""
    align = 1
    while align < limit and size % (align * 2) == 0:
        align *= 2
    return align


class Family(str, Enum):
    STRING = "string"
    VECTOR = "vector"
    TREE = "tree"
    LIST = "list"
    BITSET = "bitset"


class Classification(str, Enum):
    UNIQUE = "unique"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no-match"


class Deadline:
    """单个查询的截止时间；超时只终止该查询。"""

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = seconds
        self.expires = None if seconds is None else time.monotonic() + seconds

    def expired(self) -> bool:
        return self.expires is not None and time.monotonic() >= self.expires

    def check(self, stage: str) -> None:
        if self.expired():
            raise QueryTimeout(stage)


@dataclass(frozen=True)
class Candidate:
    fingerprint: "Fingerprint"
    matched_required: Tuple[str, ...]
    missing_required: Tuple[str, ...]
    matched_optional: Tuple[str, ...]
    missing_optional: Tuple[str, ...]
    confidence: float
    claims: Tuple[Tuple[str, Tuple[FieldAccess, ...]], ...] = ()

    @property
    def family(self) -> Family:
        return self.fingerprint.family

    @property
    def variant(self) -> str:
        return self.fingerprint.variant

    @property
    def complete(self) -> bool:
        return not self.missing_required

    @property
    def required_ratio(self) -> float:
        total = len(self.matched_required) + len(self.missing_required)
        return len(self.matched_required) / total if total else 0.0

    def claimed(self, slot: str) -> Tuple[FieldAccess, ...]:
        for name, accesses in self.claims:
            if name == slot:
                return accesses
        return ()

    def summary(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "variant": self.variant,
            "confidence": round(self.confidence, 6),
            "matched_required": list(self.matched_required),
            "missing_required": list(self.missing_required),
            "matched_optional": list(self.matched_optional),
            "missing_optional": list(self.missing_optional),
        }


@dataclass(frozen=True)
class MatchResult:
    """
    candidates: 先是通过阈值的候选（置信度降序，平局按 Catalog 顺序），
    然后是其余候选（必需特征命中率降序）。
    """

    classification: Classification
    candidates: Tuple[Candidate, ...]
    tied: Tuple[Candidate, ...] = ()
    accepted_count: int = 0

    @property
    def best(self) -> Optional[Candidate]:
        if self.classification is Classification.NO_MATCH:
            return None
        return self.candidates[0]

    def accepted(self) -> Tuple[Candidate, ...]:
        return self.candidates[:self.accepted_count]

    def partials(self, limit: int) -> Tuple[Candidate, ...]:
        return self.candidates[self.accepted_count:self.accepted_count + limit]


# ---------- 模板参数（封闭的 tagged variant）---------- #

@dataclass(frozen=True)
class StringParams:
    char_size: int
    buffer_size: int
    capacity: int
    pointer_size: int
    type_hints: Tuple[str, ...] = ()
    unresolved: Tuple[str, ...] = ()
    family = Family.STRING

    def as_dict(self) -> Dict[str, Any]:
        return {
            "char_size": self.char_size,
            "buffer_size": self.buffer_size,
            "capacity": self.capacity,
            "type_hints": list(self.type_hints),
        }


@dataclass(frozen=True)
class VectorParams:
    element_size: int
    pointer_size: int
    type_hints: Tuple[str, ...] = ()
    unresolved: Tuple[str, ...] = ()
    family = Family.VECTOR

    def as_dict(self) -> Dict[str, Any]:
        return {"element_size": self.element_size, "type_hints": list(self.type_hints)}


@dataclass(frozen=True)
class TreeParams:
    node: bool
    pointer_size: int
    key_size: Optional[int] = None
    key_offset: Optional[int] = None
    value_size: Optional[int] = None
    value_offset: Optional[int] = None
    key_type_hints: Tuple[str, ...] = ()
    value_type_hints: Tuple[str, ...] = ()
    duplicate_keys: Optional[bool] = None
    unresolved: Tuple[str, ...] = ("duplicate_keys",)
    family = Family.TREE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key_size": self.key_size,
            "value_size": self.value_size,
            "key_type_hints": list(self.key_type_hints),
            "value_type_hints": list(self.value_type_hints),
            "duplicate_keys": self.duplicate_keys,
            "unresolved": list(self.unresolved),
        }


@dataclass(frozen=True)
class ListParams:
    node: bool
    element_size: int
    pointer_size: int
    type_hints: Tuple[str, ...] = ()
    sentinel_node_size: Optional[int] = None
    sentinel_consistent: Optional[bool] = None
    unresolved: Tuple[str, ...] = ()
    family = Family.LIST

    def as_dict(self) -> Dict[str, Any]:
        return {
            "element_size": self.element_size,
            "type_hints": list(self.type_hints),
            "sentinel_node_size": self.sentinel_node_size,
            "sentinel_consistent": self.sentinel_consistent,
        }


@dataclass(frozen=True)
class BitsetParams:
    word_bits: int
    word_count: int
    bit_count: Optional[int] = None
    width_source: str = ""
    unresolved: Tuple[str, ...] = ()
    family = Family.BITSET

    @property
    def bit_count_max(self) -> int:
        return self.word_bits * self.word_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "word_bits": self.word_bits,
            "word_count": self.word_count,
            "bit_count": self.bit_count,
            "bit_count_max": self.bit_count_max,
            "width_source": self.width_source,
        }


TemplateBindings = Union[StringParams, VectorParams, TreeParams, ListParams, BitsetParams]


# ---------- 布局 ---------- #

@dataclass(frozen=True)
class LayoutField:
    name: str
    offset: int
    size: int
    role: str
    align: int = 1
    value: Optional[int] = None

    @property
    def end(self) -> int:
        return self.offset + self.size

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "offset": self.offset,
            "size": self.size,
            "role": self.role,
        }
        if self.value is not None:
            out["value"] = self.value
        return out


@dataclass(frozen=True)
class Layout:
    total_size: int
    alignment: int
    fields: Tuple[LayoutField, ...]
    bindings: Tuple[Tuple[str, Any], ...] = ()

    def field(self, name: str) -> LayoutField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_size": self.total_size,
            "alignment": self.alignment,
            "fields": [f.as_dict() for f in self.fields],
            "bindings": {k: list(v) if isinstance(v, tuple) else v for k, v in self.bindings},
        }


@dataclass(frozen=True)
class Resolution:
    candidate: Candidate
    bindings: Optional[TemplateBindings] = None
    layout: Optional[Layout] = None
    error: Optional[ResolutionError] = field(default=None, compare=False)

    @property
    def resolved(self) -> bool:
        return self.layout is not None
