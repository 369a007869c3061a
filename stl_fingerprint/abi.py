# stl_fingerprint/abi.py
"""
Versioned sentinel tables for the supported ABI.

The catalog never hard-codes constants such as the small-string buffer size,
the diagnostic routine names or the shift amounts used for bit indexing;
they are read from ``data/msvc.yml`` so that an STL/compiler update is a
data change.
"""
from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import CatalogError, InputError

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_TABLES = DATA_DIR / "msvc.yml"


@dataclass(frozen=True)
class ArchInfo:
    name: str
    pointer_size: int
    address_limit: int


@dataclass(frozen=True)
class DiagnosticCall:
    """一类诊断/辅助调用：callee 通配符 + 参数个数 + 关联的字面量消息。"""

    name: str
    callees: Tuple[str, ...]
    arg_count: Optional[int] = None
    messages: Tuple[str, ...] = ()

    def matches_callee(self, callee: str) -> bool:
        callee = callee.lower()
        return any(fnmatch.fnmatchcase(callee, pat) for pat in self.callees)

    def matches_message(self, text: str) -> bool:
        text = text.lower()
        return any(msg in text for msg in self.messages)


@dataclass(frozen=True)
class SentinelTables:
    version: str
    abi: str
    arches: Mapping[str, ArchInfo]
    string_buffer_size: int
    string_variants: Tuple[Tuple[str, int], ...]
    construct_arg_count: int
    tree_sentinel_flags: int
    list_max_element_size: int
    node_alloc: DiagnosticCall
    length_errors: Mapping[str, DiagnosticCall]
    bitset_diagnostics: Tuple[DiagnosticCall, ...]
    shift_widths: Mapping[int, int]
    mask_widths: Mapping[int, int]
    type_hints: Mapping[str, Mapping[int, Tuple[str, ...]]]

    def arch(self, name: str) -> ArchInfo:
        try:
            return self.arches[name]
        except KeyError:
            known = ", ".join(sorted(self.arches))
            raise InputError(f"unknown arch '{name}' (known: {known})") from None

    def hints_for(self, arch: str, size: Optional[int]) -> Tuple[str, ...]:
        if size is None:
            return ()
        return tuple(self.type_hints.get(arch, {}).get(size, ()))


def _call(name: str, raw: Mapping[str, Any], messages=None) -> DiagnosticCall:
    if messages is None:
        messages = raw.get("messages", [])
    return DiagnosticCall(
        name=name,
        callees=tuple(str(p).lower() for p in raw["callees"]),
        arg_count=raw.get("arg_count"),
        messages=tuple(str(m).lower() for m in messages),
    )


def _int_map(raw: Mapping[Any, Any]) -> Dict[int, int]:
    return {int(k): int(v) for k, v in raw.items()}


def load_tables(path=DEFAULT_TABLES) -> SentinelTables:
    with open(path) as f:
        raw = yaml.safe_load(f)
    try:
        return _build_tables(raw)
    except (KeyError, TypeError, ValueError) as exc:
        raise CatalogError(f"malformed sentinel tables {path}: {exc!r}") from exc


def _build_tables(raw: Mapping[str, Any]) -> SentinelTables:
    arches = {
        name: ArchInfo(name, int(a["pointer_size"]), int(a["address_limit"]))
        for name, a in raw["arches"].items()
    }
    for info in arches.values():
        if info.pointer_size not in (4, 8):
            raise ValueError(f"pointer_size {info.pointer_size} for {info.name}")

    string_cfg = raw["string"]
    buffer_size = int(string_cfg["buffer_size"])
    variants = tuple((str(k), int(v)) for k, v in string_cfg["variants"].items())
    for variant, char_size in variants:
        if char_size <= 0 or buffer_size % char_size:
            raise ValueError(f"char size {char_size} of {variant}")

    calls = raw["calls"]
    length_raw = calls["length_error"]
    length_errors = {
        family: _call(f"length-error:{family}", length_raw, msgs)
        for family, msgs in length_raw["messages"].items()
    }
    bitset_diag = tuple(_call(name, c) for name, c in calls["bitset"].items())

    hints = {
        arch: {int(size): tuple(names) for size, names in table.items()}
        for arch, table in raw.get("type_hints", {}).items()
    }

    return SentinelTables(
        version=str(raw["version"]),
        abi=str(raw["abi"]),
        arches=arches,
        string_buffer_size=buffer_size,
        string_variants=variants,
        construct_arg_count=int(string_cfg.get("construct_arg_count", 3)),
        tree_sentinel_flags=int(raw["tree"]["sentinel_flags"]),
        list_max_element_size=int(raw["list"]["max_element_size"]),
        node_alloc=_call("node-alloc", calls["node_alloc"]),
        length_errors=length_errors,
        bitset_diagnostics=bitset_diag,
        shift_widths=_int_map(raw["bitset"]["shift_widths"]),
        mask_widths=_int_map(raw["bitset"]["mask_widths"]),
        type_hints=hints,
    )
