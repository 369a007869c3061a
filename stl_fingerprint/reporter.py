# stl_fingerprint/reporter.py
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .engine_types import Candidate, Classification, Layout, MatchResult, Resolution
from .errors import EngineError

EXIT_UNIQUE = 0
EXIT_NO_MATCH = 1
EXIT_AMBIGUOUS = 2
EXIT_INPUT = 3
EXIT_INTERNAL = 4
EXIT_TIMEOUT = 5
EXIT_UNRESOLVED = 6


@dataclass(frozen=True)
class Report:
    region: Optional[str]
    arch: str
    catalog_version: str
    status: str
    exit_code: int
    entries: Tuple[Resolution, ...] = ()
    others: Tuple[Candidate, ...] = ()
    message: str = ""

    @property
    def layout(self) -> Optional[Layout]:
        if self.status != Classification.UNIQUE.value or not self.entries:
            return None
        return self.entries[0].layout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "arch": self.arch,
            "catalog_version": self.catalog_version,
            "status": self.status,
            "exit_code": self.exit_code,
            "message": self.message,
            "candidates": [_entry(r) for r in self.entries],
            "other_accepted": [c.summary() for c in self.others],
        }


def _entry(resolution: Resolution) -> Dict[str, Any]:
    out = resolution.candidate.summary()
    out["bindings"] = None if resolution.bindings is None else resolution.bindings.as_dict()
    out["layout"] = None if resolution.layout is None else resolution.layout.as_dict()
    out["resolution_error"] = None if resolution.error is None else resolution.error.as_dict()
    return out


class ResultReporter:
    """
    打包匹配结果：
      - Unique: 胜者（含布局或解析错误）+ 其他通过阈值的候选
      - Ambiguous: 所有平局候选，各自独立解析，按 Catalog 固定顺序排列
      - NoMatch: 最好的 N 个部分候选及其缺失特征
    从不抛异常。
    """

    def __init__(self, arch: str, catalog_version: str, max_partials: int = 3):
        self.arch = arch
        self.catalog_version = catalog_version
        self.max_partials = max_partials

    def report(self, result: MatchResult, resolutions: Sequence[Resolution] = (),
               region: Optional[str] = None) -> Report:
        cls = result.classification
        if not resolutions:
            # 调用方只给了匹配结果：照常报告判定，参数记为未解析
            targets = (result.best,) if cls is Classification.UNIQUE else result.tied
            resolutions = tuple(Resolution(c) for c in targets)
        if cls is Classification.NO_MATCH:
            partials = tuple(Resolution(c) for c in result.partials(self.max_partials))
            return self._make(region, cls.value, EXIT_NO_MATCH, partials,
                              message="no fingerprint matched all required features")

        if cls is Classification.AMBIGUOUS:
            tied = tuple(sorted(resolutions, key=lambda r: r.candidate.fingerprint.order))
            names = ", ".join(r.candidate.fingerprint.name for r in tied)
            return self._make(region, cls.value, EXIT_AMBIGUOUS, tied,
                              message=f"{len(tied)} candidates within the ambiguity margin: {names}")

        winner = resolutions[0]
        others = tuple(c for c in result.accepted() if c is not winner.candidate)
        if winner.resolved:
            return self._make(region, cls.value, EXIT_UNIQUE, (winner,), others,
                              message=f"matched {winner.candidate.fingerprint.name}")
        reason = winner.error if winner.error is not None else "not resolved"
        return self._make(region, cls.value, EXIT_UNRESOLVED, (winner,), others,
                          message=f"matched {winner.candidate.fingerprint.name}, "
                                  f"parameters unresolved: {reason}")

    def failure(self, region: Optional[str], error: EngineError) -> Report:
        status = "timeout" if error.exit_code == EXIT_TIMEOUT else "error"
        return self._make(region, status, error.exit_code, message=str(error))

    def _make(self, region, status: str, exit_code: int,
              entries: Tuple[Resolution, ...] = (), others: Tuple[Candidate, ...] = (),
              message: str = "") -> Report:
        return Report(
            region=region,
            arch=self.arch,
            catalog_version=self.catalog_version,
            status=status,
            exit_code=exit_code,
            entries=entries,
            others=others,
            message=message,
        )


def overall_exit_code(reports: List[Report]) -> int:
    return max((r.exit_code for r in reports), default=EXIT_NO_MATCH)
