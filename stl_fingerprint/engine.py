# stl_fingerprint/engine.py
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from .config import EngineConfig, load_config
from .engine_types import Candidate, Classification, Deadline, Resolution
from .errors import QueryTimeout, ResolutionError
from .evidence import EvidenceSet, load_evidence_file
from .layout import LayoutSynthesizer
from .matcher import Matcher
from .patterns import default_tables, get_catalog
from .reporter import Report, ResultReporter
from .resolver import ParameterResolver

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """
    Evidence -> Matcher -> Resolver -> Synthesizer -> Reporter

    Catalog 在构造时就绪；之后每个查询都是纯函数，可以放到线程池里并发跑。
    """

    def __init__(self, cfg: Optional[EngineConfig] = None, arch: Optional[str] = None):
        self.cfg = (cfg or EngineConfig()).validate()
        self.arch = arch or self.cfg.arch
        self.tables = default_tables()
        self.arch_info = self.tables.arch(self.arch)
        self.catalog = get_catalog(self.arch)
        self.matcher = Matcher(self.catalog, self.cfg)
        self.resolver = ParameterResolver(self.tables, self.arch_info)
        self.synthesizer = LayoutSynthesizer()
        self.reporter = ResultReporter(self.arch, self.tables.version, self.cfg.max_partial_candidates)

    @classmethod
    def from_file(cls, config_path: str, arch: Optional[str] = None) -> "AnalysisEngine":
        return cls(load_config(config_path), arch=arch)

    def resolve_candidate(self, candidate: Candidate, evidence: EvidenceSet) -> Resolution:
        """解析失败不推翻 family/variant 的判定，只是参数留空。"""
        try:
            bindings = self.resolver.resolve(candidate, evidence)
        except ResolutionError as exc:
            logger.info("%s: %s left unresolved: %s", evidence.label, candidate.fingerprint.name, exc)
            return Resolution(candidate, error=exc)
        layout = self.synthesizer.synthesize(candidate, bindings)
        return Resolution(candidate, bindings=bindings, layout=layout)

    def analyze(self, evidence: EvidenceSet, timeout: Optional[float] = None) -> Report:
        if timeout is None:
            timeout = self.cfg.timeout
        deadline = Deadline(timeout)
        result = self.matcher.match(evidence, deadline)

        resolutions: List[Resolution] = []
        if result.classification is Classification.UNIQUE:
            targets = (result.best,)
        elif result.classification is Classification.AMBIGUOUS:
            targets = result.tied
        else:
            targets = ()
        for candidate in targets:
            deadline.check("resolve")
            resolutions.append(self.resolve_candidate(candidate, evidence))

        report = self.reporter.report(result, resolutions, region=evidence.label)
        logger.info("%s: %s", evidence.label or "<region>", report.message)
        return report

    def _analyze_or_timeout(self, evidence: EvidenceSet, timeout: Optional[float]) -> Report:
        try:
            return self.analyze(evidence, timeout)
        except QueryTimeout as exc:
            logger.warning("%s: %s", evidence.label or "<region>", exc)
            return self.reporter.failure(evidence.label, exc)

    def analyze_many(self, evidence_sets: Sequence[EvidenceSet], timeout: Optional[float] = None,
                     max_workers: Optional[int] = None) -> List[Report]:
        """每个证据集合一个任务；超时只影响对应查询，内部不变量错误照常抛出。"""
        if timeout is None:
            timeout = self.cfg.timeout
        workers = max_workers or self.cfg.workers
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._analyze_or_timeout, ev, timeout) for ev in evidence_sets]
            return [f.result() for f in futures]

    def analyze_file(self, path: str, timeout: Optional[float] = None) -> List[Report]:
        evidence_sets = load_evidence_file(path, pointer_size=self.arch_info.pointer_size)
        if len(evidence_sets) == 1:
            return [self._analyze_or_timeout(evidence_sets[0], timeout)]
        return self.analyze_many(evidence_sets, timeout)


def analyze(evidence_file: str, arch: str = "x86", cfg: Optional[EngineConfig] = None) -> List[Report]:
    return AnalysisEngine(cfg, arch=arch).analyze_file(evidence_file)
