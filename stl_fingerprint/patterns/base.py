# stl_fingerprint/patterns/base.py
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from ..abi import ArchInfo, DiagnosticCall
from ..engine_types import Family
from ..evidence import EvidenceSet, FieldAccess

POINTER_HINTS = frozenset({"pointer", "ptr"})


@dataclass(frozen=True)
class FieldSlot:
    """
    指纹形状中的一个字段槽位：
      - offset=None 表示紧跟前一个槽位（先跳过 gap 字节，再按自然对齐）
      - size=None 表示大小由模板参数决定
      - span=True 时访问可以落在槽位内部（union / 内联缓冲区）
      - repeat=True 时匹配从 offset 起连续、等宽的一组访问（平铺数组）
    """

    name: str
    role: str
    offset: Optional[int] = None
    size: Optional[int] = None
    hints: FrozenSet[str] = frozenset()
    unhinted: bool = True
    span: bool = False
    repeat: bool = False
    gap: int = 0

    def accepts(self, access: FieldAccess) -> bool:
        if access.role_hint is None:
            if not self.unhinted:
                return False
        elif self.hints and access.role_hint not in self.hints:
            return False
        if self.size is None:
            return True
        if self.span:
            return access.size <= self.size
        return access.size == self.size


@dataclass(frozen=True)
class ConstantSlot:
    """必须观测到的常量写入/比较；其 extent 内的字段访问也视为已解释。"""

    name: str
    role: str
    offset: int
    size: int
    value: int

    def satisfied(self, evidence: EvidenceSet) -> bool:
        return evidence.constant_at(self.offset, self.value)


class Feature(ABC):
    """可选佐证特征：只加分，从不决定是否命中。"""

    name: str

    @abstractmethod
    def satisfied(self, evidence: EvidenceSet) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class CallFeature(Feature):
    name: str
    call: DiagnosticCall
    require_message: bool = False

    def satisfied(self, evidence: EvidenceSet) -> bool:
        called = any(
            self.call.matches_callee(c.callee)
            and (self.call.arg_count is None or c.arg_count == self.call.arg_count)
            for c in evidence.calls()
        )
        if not called or not self.require_message:
            return called
        return any(self.call.matches_message(s.text) for s in evidence.strings())


@dataclass(frozen=True)
class ArityCallFeature(Feature):
    """
    构造例程通常是匿名的 sub_XXXX，只能按参数个数识别。
    require_literal=True 时还必须有一个长度一致的字面量（assign(this, "abc", 3)），
    否则任意三参数调用（memcpy 等）都会被算进来。
    """

    name: str
    arg_count: int
    require_literal: bool = False

    def satisfied(self, evidence: EvidenceSet) -> bool:
        if not any(c.arg_count == self.arg_count for c in evidence.calls()):
            return False
        if not self.require_literal:
            return True
        return any(s.length_consistent for s in evidence.strings())


@dataclass(frozen=True)
class LiteralLengthFeature(Feature):
    name: str

    def satisfied(self, evidence: EvidenceSet) -> bool:
        return any(s.length_consistent for s in evidence.strings())


@dataclass(frozen=True)
class ConstantFeature(Feature):
    """offsets 为 None 时，任意位置出现 value 即可。"""

    name: str
    value: int
    offsets: Optional[Tuple[int, ...]] = None

    def satisfied(self, evidence: EvidenceSet) -> bool:
        if self.offsets is None:
            return any(c.value == self.value for c in evidence.constants())
        return all(evidence.constant_at(off, self.value) for off in self.offsets)


@dataclass(frozen=True)
class ArithmeticFeature(Feature):
    name: str
    op: str
    operands: Optional[FrozenSet[int]] = None

    def satisfied(self, evidence: EvidenceSet) -> bool:
        return any(
            self.operands is None or a.operand in self.operands
            for a in evidence.arithmetic(self.op)
        )


@dataclass(frozen=True)
class MaxCountFeature(Feature):
    """
    最大元素数哨兵，例如 x86 上 list<float> 的 357913941：
      address_limit // node_size == value，且 node_size 落在
      [min_node_size, max_node_size] 内（两个指针 + 一个合理大小的元素）
    小常量（1、2 之类）隐含的是 GB 级的节点，不算哨兵。
    """

    name: str
    address_limit: int
    min_node_size: int
    max_node_size: int
    offset: Optional[int] = None

    def node_size(self, value: int) -> Optional[int]:
        if value <= 0:
            return None
        node = self.address_limit // value
        if not self.min_node_size <= node <= self.max_node_size:
            return None
        if self.address_limit // node != value:
            return None
        return node

    def satisfied(self, evidence: EvidenceSet) -> bool:
        return any(
            (self.offset is None or c.at_offset == self.offset)
            and self.node_size(c.value) is not None
            for c in evidence.constants()
        )


@dataclass(frozen=True)
class Fingerprint:
    family: Family
    variant: str
    arch: ArchInfo
    shape: Tuple[FieldSlot, ...]
    constants: Tuple[ConstantSlot, ...] = ()
    optional: Tuple[Feature, ...] = ()
    resolver_hint: str = ""
    description: str = ""
    order: int = field(default=0, compare=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.family.value, self.variant)

    @property
    def name(self) -> str:
        return f"{self.family.value}/{self.variant}"

    def required_features(self) -> Tuple[str, ...]:
        names = [f"field:{s.name}" for s in self.shape]
        names += [f"const:{c.name}" for c in self.constants]
        names.append("shape:exact")
        return tuple(names)

    def required_signature(self) -> Tuple:
        """同一 family 下两个变体的签名相同 => Catalog 损坏。"""
        slots = tuple(
            (s.role, s.offset, s.size, tuple(sorted(s.hints)), s.unhinted, s.span, s.repeat, s.gap)
            for s in self.shape
        )
        consts = tuple((c.offset, c.size, c.value) for c in self.constants)
        return (slots, consts)


class PatternBase(ABC):
    """每个容器 family 一个子类：根据哨兵表与架构生成该 family 的全部指纹。"""

    family: Family

    @abstractmethod
    def build(self, tables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        raise NotImplementedError
