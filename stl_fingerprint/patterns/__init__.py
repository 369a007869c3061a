# stl_fingerprint/patterns/__init__.py
import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, Optional, Tuple

from .base import Fingerprint, PatternBase
from .basic_string import StringPattern
from .vector import VectorPattern
from .tree import TreePattern
from .linked_list import ListPattern
from .bitset import BitsetPattern
from ..abi import ArchInfo, SentinelTables, load_tables
from ..errors import CatalogError

logger = logging.getLogger(__name__)

# 固定的 family 顺序，同时也是平局时的确定性排序
PATTERNS: Tuple[PatternBase, ...] = (
    StringPattern(),
    VectorPattern(),
    TreePattern(),
    ListPattern(),
    BitsetPattern(),
)


class FingerprintCatalog:
    """
    只读指纹注册表：
      - 构建时校验同 family 下没有重复的必需特征签名
      - lookup_all() 的顺序固定，用于平局裁决
    """

    def __init__(self, fingerprints: Iterable[Fingerprint], version: str = "", arch: Optional[ArchInfo] = None):
        self._fingerprints: Tuple[Fingerprint, ...] = tuple(
            replace(fp, order=i) for i, fp in enumerate(fingerprints)
        )
        self.version = version
        self.arch = arch
        self._validate()

    def _validate(self) -> None:
        keys = set()
        signatures: Dict[tuple, Fingerprint] = {}
        for fp in self._fingerprints:
            if fp.key in keys:
                raise CatalogError(f"duplicate catalog entry {fp.name}")
            keys.add(fp.key)
            if not fp.shape:
                raise CatalogError(f"{fp.name} has an empty required shape")
            sig = (fp.family, fp.required_signature())
            other = signatures.get(sig)
            if other is not None:
                raise CatalogError(
                    f"{fp.name} and {other.name} share the same required-feature signature"
                )
            signatures[sig] = fp

    def lookup_all(self) -> Tuple[Fingerprint, ...]:
        return self._fingerprints

    def get(self, family: str, variant: str) -> Fingerprint:
        for fp in self._fingerprints:
            if fp.key == (family, variant):
                return fp
        raise KeyError(f"{family}/{variant}")

    def __len__(self) -> int:
        return len(self._fingerprints)


def build_catalog(tables: SentinelTables, arch: ArchInfo) -> FingerprintCatalog:
    fps = []
    for pattern in PATTERNS:
        fps.extend(pattern.build(tables, arch))
    catalog = FingerprintCatalog(fps, version=tables.version, arch=arch)
    logger.debug("built catalog %s for %s: %d fingerprints", tables.version, arch.name, len(catalog))
    return catalog


_TABLES: Optional[SentinelTables] = None
_CATALOGS: Dict[str, FingerprintCatalog] = {}
_LOCK = threading.Lock()


def default_tables() -> SentinelTables:
    global _TABLES
    with _LOCK:
        if _TABLES is None:
            _TABLES = load_tables()
        return _TABLES


def get_catalog(arch: str) -> FingerprintCatalog:
    """每个架构的 Catalog 在进程内只构建一次，之后只读共享。"""
    tables = default_tables()
    info = tables.arch(arch)
    with _LOCK:
        catalog = _CATALOGS.get(arch)
        if catalog is None:
            catalog = build_catalog(tables, info)
            _CATALOGS[arch] = catalog
        return catalog


__all__ = [
    "Fingerprint",
    "FingerprintCatalog",
    "PATTERNS",
    "build_catalog",
    "default_tables",
    "get_catalog",
]
