# stl_fingerprint/evidence.py
"""
证据模型：外部反编译/抽取器产出的观测事实。

- 每条 EvidenceItem 都是不可变、可哈希的
- 一次查询是一个无序集合（重复项合并，输入顺序不影响结果）
- 文件格式为 YAML/JSON：单区域 ``evidence: [...]`` 或多区域 ``regions: [...]``
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import InputError

INT64_MIN = -(1 << 63)
UINT64_MAX = (1 << 64) - 1

ARITH_OPS = ("sub-div", "shr", "and")


class EvidenceKind(str, Enum):
    FIELD_ACCESS = "FieldAccess"
    CONSTANT_COMPARE = "ConstantCompare"
    CALL_SIGNATURE = "CallSignature"
    STRING_REF = "StringRef"
    ARITHMETIC = "Arithmetic"


@dataclass(frozen=True)
class FieldAccess:
    offset: int
    size: int
    role_hint: Optional[str] = None

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass(frozen=True)
class ConstantCompare:
    at_offset: Optional[int]
    value: int
    role_hint: Optional[str] = None


@dataclass(frozen=True)
class CallSignature:
    callee: str
    arg_count: int
    arg_sizes: Tuple[int, ...] = ()


@dataclass(frozen=True)
class StringRef:
    text: str
    observed_length: int

    @property
    def length_consistent(self) -> bool:
        return self.observed_length == len(self.text)


@dataclass(frozen=True)
class Arithmetic:
    """
    算术惯用式：
      - sub-div: (end - start) / divisor，divisor 即元素大小
      - shr:     bits[i >> amount]，位索引的字宽
      - and:     1 << (i & mask)
    """

    op: str
    operand: int
    lhs_offset: Optional[int] = None
    rhs_offset: Optional[int] = None


EvidenceItem = Union[FieldAccess, ConstantCompare, CallSignature, StringRef, Arithmetic]


def _sort_key(item: EvidenceItem) -> Tuple[Any, ...]:
    if isinstance(item, FieldAccess):
        return (0, item.offset, item.size, item.role_hint or "")
    if isinstance(item, ConstantCompare):
        off = -1 if item.at_offset is None else item.at_offset
        return (1, off, item.value, item.role_hint or "")
    if isinstance(item, CallSignature):
        return (2, item.callee, item.arg_count, item.arg_sizes)
    if isinstance(item, StringRef):
        return (3, item.text, item.observed_length)
    return (4, item.op, item.operand,
            -1 if item.lhs_offset is None else item.lhs_offset,
            -1 if item.rhs_offset is None else item.rhs_offset)


@dataclass(frozen=True)
class EvidenceSet:
    items: FrozenSet[EvidenceItem]
    label: Optional[str] = None
    _ordered: Tuple[EvidenceItem, ...] = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "_ordered", tuple(sorted(self.items, key=_sort_key)))

    @classmethod
    def from_items(cls, items: Iterable[EvidenceItem], label: Optional[str] = None) -> "EvidenceSet":
        unique = frozenset(items)
        if not unique:
            raise InputError("evidence set is empty")
        for item in unique:
            if not isinstance(item, (FieldAccess, ConstantCompare, CallSignature, StringRef, Arithmetic)):
                raise InputError(f"not an evidence item: {item!r}")
        return cls(items=unique, label=label)

    def __iter__(self):
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def _of(self, kind) -> Tuple[Any, ...]:
        return tuple(i for i in self._ordered if isinstance(i, kind))

    def fields(self) -> Tuple[FieldAccess, ...]:
        return self._of(FieldAccess)

    def constants(self) -> Tuple[ConstantCompare, ...]:
        return self._of(ConstantCompare)

    def calls(self) -> Tuple[CallSignature, ...]:
        return self._of(CallSignature)

    def strings(self) -> Tuple[StringRef, ...]:
        return self._of(StringRef)

    def arithmetic(self, op: Optional[str] = None) -> Tuple[Arithmetic, ...]:
        return tuple(a for a in self._of(Arithmetic) if op is None or a.op == op)

    def constant_at(self, offset: int, value: int) -> bool:
        return any(c.at_offset == offset and c.value == value for c in self.constants())

    def constants_with_role(self, role: str) -> Tuple[ConstantCompare, ...]:
        return tuple(c for c in self.constants() if c.role_hint == role)


# ---------- 解析 ---------- #

def _req(raw: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in raw:
        raise InputError(f"{where}: missing '{key}'")
    return raw[key]


def _uint(value: Any, what: str, positive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"{what} must be an integer, got {value!r}")
    if value < 0 or (positive and value == 0):
        raise InputError(f"{what} must be {'positive' if positive else 'non-negative'}, got {value}")
    if value > UINT64_MAX:
        raise InputError(f"{what} out of range: {value}")
    return value


def _opt_uint(value: Any, what: str) -> Optional[int]:
    return None if value is None else _uint(value, what)


def _hint(value: Any, what: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InputError(f"{what} must be a string, got {value!r}")
    return value.strip().lower() or None


def parse_item(raw: Any, pointer_size: int = 4, offset_unit: str = "byte", where: str = "item") -> EvidenceItem:
    if not isinstance(raw, Mapping):
        raise InputError(f"{where}: expected a mapping, got {type(raw).__name__}")
    kind = _req(raw, "kind", where)
    index_mode = offset_unit == "index"

    if kind == EvidenceKind.FIELD_ACCESS.value:
        size = _uint(_req(raw, "size", where), f"{where}.size", positive=True)
        offset = _uint(_req(raw, "offset", where), f"{where}.offset")
        if index_mode:
            offset *= size
        return FieldAccess(offset, size, _hint(raw.get("role_hint"), f"{where}.role_hint"))

    if kind == EvidenceKind.CONSTANT_COMPARE.value:
        value = _req(raw, "value", where)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InputError(f"{where}.value must be an integer, got {value!r}")
        if value < INT64_MIN or value > UINT64_MAX:
            raise InputError(f"{where}.value out of int64 range: {value}")
        at = _opt_uint(raw.get("at_offset"), f"{where}.at_offset")
        if index_mode and at is not None:
            at *= pointer_size
        return ConstantCompare(at, value, _hint(raw.get("role_hint"), f"{where}.role_hint"))

    if kind == EvidenceKind.CALL_SIGNATURE.value:
        callee = _req(raw, "callee", where)
        if not isinstance(callee, str) or not callee:
            raise InputError(f"{where}.callee must be a non-empty string")
        arg_count = _uint(_req(raw, "arg_count", where), f"{where}.arg_count")
        arg_sizes = raw.get("arg_sizes", [])
        if not isinstance(arg_sizes, (list, tuple)):
            raise InputError(f"{where}.arg_sizes must be a list")
        sizes = tuple(_uint(s, f"{where}.arg_sizes") for s in arg_sizes)
        # 省略 arg_sizes 表示参数大小未知
        if sizes and len(sizes) != arg_count:
            raise InputError(f"{where}: arg_count {arg_count} but {len(sizes)} arg_sizes")
        return CallSignature(callee, arg_count, sizes)

    if kind == EvidenceKind.STRING_REF.value:
        text = _req(raw, "text", where)
        if not isinstance(text, str):
            raise InputError(f"{where}.text must be a string")
        length = _uint(_req(raw, "observed_length", where), f"{where}.observed_length")
        return StringRef(text, length)

    if kind == EvidenceKind.ARITHMETIC.value:
        op = _req(raw, "op", where)
        if op not in ARITH_OPS:
            raise InputError(f"{where}.op must be one of {', '.join(ARITH_OPS)}, got {op!r}")
        operand = _uint(_req(raw, "operand", where), f"{where}.operand", positive=True)
        return Arithmetic(
            op,
            operand,
            _opt_uint(raw.get("lhs_offset"), f"{where}.lhs_offset"),
            _opt_uint(raw.get("rhs_offset"), f"{where}.rhs_offset"),
        )

    raise InputError(f"{where}: unknown evidence kind {kind!r}")


def parse_evidence(raw: Any, pointer_size: int = 4, label: Optional[str] = None) -> EvidenceSet:
    """单个区域：``{region?, offset_unit?, evidence: [...]}`` 或直接是列表。"""
    offset_unit = "byte"
    if isinstance(raw, Mapping):
        label = raw.get("region", label)
        offset_unit = raw.get("offset_unit", "byte")
        raw = _req(raw, "evidence", f"region {label or '?'}")
    if offset_unit not in ("byte", "index"):
        raise InputError(f"offset_unit must be 'byte' or 'index', got {offset_unit!r}")
    if not isinstance(raw, list):
        raise InputError("evidence must be a list of items")
    where = label or "evidence"
    items = [
        parse_item(entry, pointer_size, offset_unit, where=f"{where}[{i}]")
        for i, entry in enumerate(raw)
    ]
    return EvidenceSet.from_items(items, label=None if label is None else str(label))


def parse_document(raw: Any, pointer_size: int = 4) -> List[EvidenceSet]:
    if isinstance(raw, Mapping) and "regions" in raw:
        regions = raw["regions"]
        if not isinstance(regions, list) or not regions:
            raise InputError("'regions' must be a non-empty list")
        return [
            parse_evidence(region, pointer_size, label=f"region{i}")
            for i, region in enumerate(regions)
        ]
    return [parse_evidence(raw, pointer_size)]


def load_evidence_file(path, pointer_size: int = 4) -> List[EvidenceSet]:
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise InputError(f"cannot read evidence file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InputError(f"evidence file {path} is not valid YAML/JSON: {exc}") from exc
    if raw is None:
        raise InputError(f"evidence file {path} is empty")
    return parse_document(raw, pointer_size)
