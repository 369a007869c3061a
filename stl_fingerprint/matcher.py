# stl_fingerprint/matcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .config import EngineConfig
from .engine_types import Candidate, Classification, Deadline, MatchResult, align_up
from .evidence import EvidenceSet, FieldAccess
from .patterns import FingerprintCatalog
from .patterns.base import Fingerprint

logger = logging.getLogger(__name__)

# 浮动槽位的最大自然对齐
MAX_ALIGN = 8
_PRECISION = 9


@dataclass
class ShapeMatch:
    claims: Dict[str, Tuple[FieldAccess, ...]]
    missing: List[str]
    unexplained: Tuple[FieldAccess, ...]


def match_shape(fp: Fingerprint, evidence: EvidenceSet) -> ShapeMatch:
    """
    把证据中的字段访问按顺序绑定到指纹的形状槽位：
      - 固定 offset 的槽位只看该 offset
      - 浮动槽位在 [cursor + gap, align_up(cursor + gap, 8)] 中找第一个可接受的访问
      - repeat 槽位收下其后所有同宽、按元素对齐的访问
      - 最后检查是否每个访问都落在某个槽位/常量的 extent 内
    """
    unclaimed = list(evidence.fields())
    claims: Dict[str, Tuple[FieldAccess, ...]] = {}
    extents: List[Tuple[int, int]] = []
    missing: List[str] = []
    cursor: Optional[int] = 0

    for slot in fp.shape:
        if slot.offset is not None:
            lo = hi = slot.offset
        elif cursor is not None:
            lo = cursor + slot.gap
            hi = align_up(lo, MAX_ALIGN)
        else:
            # 前一个大小未知的槽位缺失，后续浮动槽位无从定位
            missing.append(slot.name)
            continue

        first = next((a for a in unclaimed if lo <= a.offset <= hi and slot.accepts(a)), None)
        if first is None:
            missing.append(slot.name)
            if slot.offset is not None and slot.size is not None:
                cursor = slot.offset + slot.size
            else:
                cursor = None
            continue

        run = [first]
        if slot.repeat:
            # 访问可以是稀疏的：bits[0]、bits[3]
            run += [
                a for a in unclaimed
                if a.offset > first.offset
                and a.size == first.size
                and (a.offset - first.offset) % first.size == 0
                and slot.accepts(a)
            ]

        for a in run:
            unclaimed.remove(a)
        claims[slot.name] = tuple(run)
        end = first.offset + slot.size if slot.size is not None else run[-1].end
        extents.append((first.offset, end))
        cursor = end

    for const in fp.constants:
        extents.append((const.offset, const.offset + const.size))

    unexplained = tuple(
        a for a in unclaimed
        if not any(lo <= a.offset and a.end <= hi for lo, hi in extents)
    )
    return ShapeMatch(claims, missing, unexplained)


class Matcher:
    """把一个证据集合与 Catalog 中每个指纹打分并排序；纯函数，无副作用。"""

    def __init__(self, catalog: FingerprintCatalog, cfg: Optional[EngineConfig] = None):
        self.catalog = catalog
        self.cfg = cfg or EngineConfig()

    def score(self, fp: Fingerprint, evidence: EvidenceSet) -> Candidate:
        shape = match_shape(fp, evidence)
        matched: List[str] = []
        missing: List[str] = []

        for slot in fp.shape:
            (missing if slot.name in shape.missing else matched).append(f"field:{slot.name}")
        for const in fp.constants:
            (matched if const.satisfied(evidence) else missing).append(f"const:{const.name}")
        (missing if shape.unexplained else matched).append("shape:exact")

        opt_hit = [f.name for f in fp.optional if f.satisfied(evidence)]
        opt_miss = [f.name for f in fp.optional if f.name not in opt_hit]

        if missing:
            confidence = 0.0
        else:
            frac = len(opt_hit) / len(fp.optional) if fp.optional else 1.0
            rw, ow = self.cfg.required_weight, self.cfg.optional_weight
            confidence = (rw + ow * frac) / (rw + ow)

        return Candidate(
            fingerprint=fp,
            matched_required=tuple(matched),
            missing_required=tuple(missing),
            matched_optional=tuple(opt_hit),
            missing_optional=tuple(opt_miss),
            confidence=confidence,
            claims=tuple(sorted(shape.claims.items())),
        )

    def match(self, evidence: EvidenceSet, deadline: Optional[Deadline] = None) -> MatchResult:
        scored: List[Candidate] = []
        for fp in self.catalog.lookup_all():
            if deadline is not None:
                deadline.check("match")
            scored.append(self.score(fp, evidence))

        threshold = self.cfg.acceptance_threshold
        accepted = [c for c in scored if c.complete and c.confidence >= threshold]
        rest = [c for c in scored if not (c.complete and c.confidence >= threshold)]
        accepted.sort(key=lambda c: (-round(c.confidence, _PRECISION), c.fingerprint.order))
        rest.sort(key=lambda c: (-round(c.required_ratio, _PRECISION), -c.confidence, c.fingerprint.order))
        ranked = tuple(accepted + rest)

        if not accepted:
            logger.debug("%s: no fingerprint cleared %.3f", evidence.label, threshold)
            return MatchResult(Classification.NO_MATCH, ranked)

        top = accepted[0].confidence
        tied = tuple(
            c for c in accepted
            if round(top - c.confidence, _PRECISION) <= self.cfg.ambiguity_margin
        )
        if len(tied) == 1:
            classification = Classification.UNIQUE
        else:
            classification = Classification.AMBIGUOUS
        logger.debug(
            "%s: %s top=%s (%.3f), %d accepted",
            evidence.label, classification.value, accepted[0].fingerprint.name, top, len(accepted),
        )
        return MatchResult(classification, ranked, tied=tied, accepted_count=len(accepted))
