# stl_fingerprint/patterns/bitset.py
from typing import Tuple

from .base import ArithmeticFeature, CallFeature, FieldSlot, Fingerprint, PatternBase
from ..abi import ArchInfo, SentinelTables
from ..engine_types import Family

WORD_HINTS = frozenset({"bit-word", "bits", "word", "bit-array"})


class BitsetPattern(PatternBase):
    """
    bitset<N>: unsigned long / unsigned long long 平铺数组
      - 字宽靠位索引的移位量判断（>> 5 为 32 位，>> 6 为 64 位）
      - 位掩码 i & 31 / i & 63 同样佐证字宽
      - 越界 / 溢出 / 非法字符三类诊断调用作为佐证
    """

    family = Family.BITSET

    def build(self, tables: SentinelTables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        optional = tuple(
            CallFeature(call.name.replace("_", "-"), call) for call in tables.bitset_diagnostics
        )
        optional += (
            ArithmeticFeature("bit-index", "shr", frozenset(tables.shift_widths)),
            ArithmeticFeature("bit-mask", "and", frozenset(tables.mask_widths)),
        )
        return (Fingerprint(
            family=self.family,
            variant="bitset",
            arch=arch,
            shape=(
                FieldSlot("bits", "bit-word", offset=0, hints=WORD_HINTS,
                          unhinted=False, repeat=True),
            ),
            optional=optional,
            resolver_hint="word-shift",
            description="flat array of fixed-width bit words",
        ),)
