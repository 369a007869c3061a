# stl_fingerprint/patterns/vector.py
from typing import Tuple

from .base import (
    POINTER_HINTS, ArithmeticFeature, CallFeature, ConstantFeature, FieldSlot,
    Fingerprint, PatternBase,
)
from ..abi import ArchInfo, SentinelTables
from ..engine_types import Family


class VectorPattern(PatternBase):
    """
    vector<T>: T *start, *end, *max
      - 默认构造三个指针全部清零
      - size() 的算术形式 (end - start) / sizeof(T) 给出元素大小
    """

    family = Family.VECTOR

    def build(self, tables: SentinelTables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        p = arch.pointer_size
        shape = (
            FieldSlot("start", "pointer", offset=0, size=p,
                      hints=POINTER_HINTS | {"start", "first", "begin", "myfirst"}),
            FieldSlot("end", "pointer", offset=p, size=p,
                      hints=POINTER_HINTS | {"end", "last", "mylast"}),
            FieldSlot("capacity", "capacity", offset=2 * p, size=p,
                      hints=POINTER_HINTS | {"capacity", "max", "myend", "end-of-storage"}),
        )
        return (Fingerprint(
            family=self.family,
            variant="vector",
            arch=arch,
            shape=shape,
            optional=(
                ConstantFeature("zero-init", 0, offsets=(0, p, 2 * p)),
                ArithmeticFeature("size-stride", "sub-div"),
                CallFeature("length-error", tables.length_errors["vector"], require_message=True),
            ),
            resolver_hint="stride",
            description="three same-typed pointers: start, end, capacity-end",
        ),)
