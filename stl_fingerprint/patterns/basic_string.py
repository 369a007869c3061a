# stl_fingerprint/patterns/basic_string.py
from typing import Tuple

from .base import (
    POINTER_HINTS, ArityCallFeature, CallFeature, ConstantSlot, FieldSlot,
    Fingerprint, LiteralLengthFeature, PatternBase,
)
from ..abi import ArchInfo, SentinelTables
from ..engine_types import Family

BUFFER_HINTS = POINTER_HINTS | {"buffer", "pointer-or-buffer", "union", "data", "bx"}
SIZE_HINTS = frozenset({"size", "length", "len", "mysize"})


class StringPattern(PatternBase):
    """
    basic_string 指纹：
      union { char* ptr; char buf[16]; } / size / capacity
      默认构造时 capacity 被写成 16/sizeof(char) - 1（string 为 15，wstring 为 7）
    """

    family = Family.STRING

    def build(self, tables: SentinelTables, arch: ArchInfo) -> Tuple[Fingerprint, ...]:
        p = arch.pointer_size
        buf = tables.string_buffer_size
        optional = (
            ArityCallFeature("construct-call", tables.construct_arg_count, require_literal=True),
            LiteralLengthFeature("literal-length"),
            CallFeature("length-error", tables.length_errors["string"], require_message=True),
        )
        fps = []
        for variant, char_size in tables.string_variants:
            capacity = buf // char_size - 1
            fps.append(Fingerprint(
                family=self.family,
                variant=variant,
                arch=arch,
                shape=(
                    FieldSlot("buffer", "union(buffer|pointer)", offset=0, size=buf,
                              hints=BUFFER_HINTS, span=True),
                    FieldSlot("size", "length", offset=buf, size=p, hints=SIZE_HINTS),
                ),
                constants=(
                    ConstantSlot("capacity", "capacity", offset=buf + p, size=p, value=capacity),
                ),
                optional=optional,
                resolver_hint="char-size",
                description=f"basic_string with {char_size}-byte characters",
            ))
        return tuple(fps)
