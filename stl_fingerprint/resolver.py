# stl_fingerprint/resolver.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .abi import ArchInfo, SentinelTables
from .engine_types import (
    BitsetParams, Candidate, ListParams, StringParams, TemplateBindings,
    TreeParams, VectorParams, align_up, natural_alignment,
)
from .errors import CatalogError, InconsistentWidth, ResolutionError
from .evidence import EvidenceSet
from .patterns.base import MaxCountFeature

logger = logging.getLogger(__name__)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


class ParameterResolver:
    """
    从证据中算术推导模板参数：
      - vector/string/list: (end - start) / sizeof(T) 的除数就是元素大小
      - map/set: key/value 大小直接取自匹配到的字段
      - bitset: 移位量（5 => 32 位字，6 => 64 位字）与数组 extent 交叉校验
    类型名只作参考，结论永远只有 "size = N"。
    """

    def __init__(self, tables: SentinelTables, arch: ArchInfo):
        self.tables = tables
        self.arch = arch
        self._handlers = {
            "char-size": self._resolve_string,
            "stride": self._resolve_vector,
            "key-value": self._resolve_tree,
            "node-value": self._resolve_list,
            "word-shift": self._resolve_bitset,
        }

    def resolve(self, candidate: Candidate, evidence: EvidenceSet) -> TemplateBindings:
        if not candidate.complete:
            raise ResolutionError(
                "IncompleteCandidate",
                f"{candidate.fingerprint.name} is missing {', '.join(candidate.missing_required)}",
            )
        handler = self._handlers.get(candidate.fingerprint.resolver_hint)
        if handler is None:
            raise CatalogError(
                f"{candidate.fingerprint.name} has unknown resolver hint "
                f"{candidate.fingerprint.resolver_hint!r}"
            )
        bindings = handler(candidate, evidence)
        logger.debug("%s resolved: %s", candidate.fingerprint.name, bindings)
        return bindings

    def _hints(self, size: Optional[int]):
        return self.tables.hints_for(self.arch.name, size)

    # ---------- stride ---------- #

    @staticmethod
    def _strides(evidence: EvidenceSet) -> List[int]:
        return sorted({a.operand for a in evidence.arithmetic("sub-div")})

    def _single_stride(self, evidence: EvidenceSet) -> Optional[int]:
        strides = self._strides(evidence)
        if len(strides) > 1:
            raise ResolutionError(
                "InconsistentStride",
                f"several element-size divisors observed: {strides}",
                {f"stride={s}": s for s in strides},
            )
        return strides[0] if strides else None

    def _resolve_string(self, candidate: Candidate, evidence: EvidenceSet) -> StringParams:
        buf = self.tables.string_buffer_size
        capacity = next(c.value for c in candidate.fingerprint.constants if c.name == "capacity")
        char_size = buf // (capacity + 1)
        stride = self._single_stride(evidence)
        if stride is not None and stride != char_size:
            raise ResolutionError(
                "InconsistentStride",
                f"capacity {capacity} implies {char_size}-byte characters but the length divisor is {stride}",
                {"capacity": char_size, "stride": stride},
            )
        return StringParams(
            char_size=char_size,
            buffer_size=buf,
            capacity=capacity,
            pointer_size=self.arch.pointer_size,
            type_hints=self._hints(char_size),
        )

    def _resolve_vector(self, candidate: Candidate, evidence: EvidenceSet) -> VectorParams:
        stride = self._single_stride(evidence)
        if stride is None:
            raise ResolutionError("MissingStride", "no (end - start) / sizeof(T) divisor observed")
        return VectorParams(
            element_size=stride,
            pointer_size=self.arch.pointer_size,
            type_hints=self._hints(stride),
        )

    def _resolve_list(self, candidate: Candidate, evidence: EvidenceSet) -> ListParams:
        p = self.arch.pointer_size
        sources: Dict[str, int] = {}
        stride = self._single_stride(evidence)
        if stride is not None:
            sources["stride"] = stride
        value = candidate.claimed("value")
        if value:
            sources["value-field"] = value[0].size
        if not sources:
            raise ResolutionError("MissingStride", "no element stride or node value field observed")
        if len(set(sources.values())) > 1:
            raise ResolutionError(
                "InconsistentStride",
                f"element size disagrees between sources: {sources}",
                dict(sources),
            )
        element = next(iter(sources.values()))

        # 哨兵值只做佐证：address_limit // max_count 应等于节点大小
        sentinel_node = None
        consistent = None
        feature = next(
            (f for f in candidate.fingerprint.optional if isinstance(f, MaxCountFeature)), None
        )
        if feature is not None:
            for c in evidence.constants():
                if feature.offset is not None and c.at_offset != feature.offset:
                    continue
                node = feature.node_size(c.value)
                if node is not None:
                    sentinel_node = node
                    break
        if sentinel_node is not None:
            expected = align_up(2 * p + element, max(p, natural_alignment(element)))
            consistent = sentinel_node == expected
            if not consistent:
                logger.info(
                    "%s: max-count sentinel implies a %d-byte node, element size %d implies %d",
                    evidence.label, sentinel_node, element, expected,
                )

        return ListParams(
            node=candidate.variant == "node",
            element_size=element,
            pointer_size=p,
            type_hints=self._hints(element),
            sentinel_node_size=sentinel_node,
            sentinel_consistent=consistent,
        )

    # ---------- map / set ---------- #

    def _resolve_tree(self, candidate: Candidate, evidence: EvidenceSet) -> TreeParams:
        p = self.arch.pointer_size
        key = candidate.claimed("key")
        if not key:
            return TreeParams(
                node=False,
                pointer_size=p,
                unresolved=("key_size", "value_size", "duplicate_keys"),
            )
        value = candidate.claimed("value")
        for access in key + value:
            if access.offset % natural_alignment(access.size):
                raise ResolutionError(
                    "MisalignedField",
                    f"{access.size}-byte field at offset {access.offset} is not naturally aligned",
                    {"offset": access.offset, "size": access.size},
                )
        value_size = value[0].size if value else None
        return TreeParams(
            node=True,
            pointer_size=p,
            key_size=key[0].size,
            key_offset=key[0].offset,
            value_size=value_size,
            value_offset=value[0].offset if value else None,
            key_type_hints=self._hints(key[0].size),
            value_type_hints=self._hints(value_size),
        )

    # ---------- bitset ---------- #

    def _resolve_bitset(self, candidate: Candidate, evidence: EvidenceSet) -> BitsetParams:
        words = candidate.claimed("bits")
        hypotheses: Dict[str, Optional[int]] = {}

        for a in evidence.arithmetic("shr"):
            width = self.tables.shift_widths.get(a.operand)
            if width is None:
                raise ResolutionError(
                    "UnsupportedShift",
                    f"bit-index shift of {a.operand} does not select a word width",
                    {f"shift={a.operand}": None},
                )
            hypotheses[f"shift={a.operand}"] = width
        for a in evidence.arithmetic("and"):
            width = self.tables.mask_widths.get(a.operand)
            if width is not None:
                hypotheses[f"mask={a.operand}"] = width

        as_array = len(words) == 1 and words[0].role_hint == "bit-array"
        # 稀疏访问时 extent 取到最高的字
        total_bits = (words[-1].end - words[0].offset) * 8
        if not as_array:
            if words[0].size not in (4, 8):
                raise ResolutionError(
                    "UnsupportedWordSize",
                    f"bit words of {words[0].size} bytes",
                    {"extent": words[0].size * 8},
                )
            hypotheses["extent"] = words[0].size * 8

        limits = sorted({c.value for c in evidence.constants_with_role("bit-limit") if c.value > 0})
        if len(limits) > 1:
            raise ResolutionError(
                "InconsistentBitCount",
                f"several bit-count bounds observed: {limits}",
                {f"bit-limit={v}": v for v in limits},
            )
        bit_count = limits[0] if limits else None

        widths = set(hypotheses.values())
        if len(widths) > 1:
            raise InconsistentWidth(
                "word width disagrees between shift amount and array extent", hypotheses
            )
        if widths:
            width = widths.pop()
            source = ",".join(sorted({k.split("=")[0] for k in hypotheses}))
        elif bit_count is not None:
            # bitset 在 N <= 32 时用 unsigned long，否则用 unsigned long long
            width = 32 if bit_count <= 32 else 64
            source = "abi-rule"
        else:
            raise ResolutionError("MissingWordWidth", "no shift, mask, word size or bit count observed")

        if total_bits % width:
            raise InconsistentWidth(
                f"{total_bits}-bit extent is not a whole number of {width}-bit words", hypotheses
            )
        word_count = total_bits // width

        if bit_count is not None and _ceil_div(bit_count, width) != word_count:
            implied = [w for w in (32, 64) if _ceil_div(bit_count, w) * w == total_bits]
            hypotheses["bit-limit"] = implied[0] if len(implied) == 1 else None
            raise InconsistentWidth(
                f"bitset<{bit_count}> needs {_ceil_div(bit_count, width)} x {width}-bit words "
                f"but the extent holds {word_count}",
                hypotheses,
            )

        return BitsetParams(
            word_bits=width,
            word_count=word_count,
            bit_count=bit_count,
            width_source=source,
        )
