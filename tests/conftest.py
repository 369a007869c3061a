from __future__ import annotations

from pathlib import Path

import pytest

from stl_fingerprint.config import EngineConfig
from stl_fingerprint.evidence import (
    Arithmetic, CallSignature, ConstantCompare, EvidenceSet, FieldAccess, StringRef,
)
from stl_fingerprint.matcher import Matcher
from stl_fingerprint.patterns import default_tables, get_catalog
from stl_fingerprint.resolver import ParameterResolver

DATA_DIR = Path(__file__).resolve().parent / "data"


def ev(*items, label=None) -> EvidenceSet:
    return EvidenceSet.from_items(items, label=label)


def string_x86(capacity=15):
    return ev(
        FieldAccess(0, 4, "pointer-or-buffer"),
        FieldAccess(16, 4, "size"),
        ConstantCompare(20, capacity),
    )


def vector_x86(stride=8):
    items = [
        FieldAccess(0, 4, "start"),
        FieldAccess(4, 4, "end"),
        FieldAccess(8, 4, "capacity"),
    ]
    if stride is not None:
        items.append(Arithmetic("sub-div", stride, 4, 0))
    return ev(*items)


def tree_node_x86(key=(16, 4), value=(20, 4)):
    items = [
        FieldAccess(0, 4, "self"),
        FieldAccess(4, 4, "self"),
        FieldAccess(8, 4, "self"),
        ConstantCompare(12, 0x0101, "flag"),
    ]
    if key is not None:
        items.append(FieldAccess(key[0], key[1], "key"))
    if value is not None:
        items.append(FieldAccess(value[0], value[1], "value"))
    return ev(*items)


def three_pointers_x86():
    return ev(
        FieldAccess(0, 4, "pointer"),
        FieldAccess(4, 4, "pointer"),
        FieldAccess(8, 4, "pointer"),
    )


def bitset_words(word_size, count, shift=None, limit=None):
    items = [FieldAccess(i * word_size, word_size, "bit-word") for i in range(count)]
    if shift is not None:
        items.append(Arithmetic("shr", shift))
    if limit is not None:
        items.append(ConstantCompare(None, limit, "bit-limit"))
    return ev(*items)


def length_error(message):
    return (
        CallSignature("std::_Xlength_error", 1, (4,)),
        StringRef(message, len(message)),
    )


@pytest.fixture
def tables():
    return default_tables()


@pytest.fixture
def catalog():
    return get_catalog("x86")


@pytest.fixture
def catalog64():
    return get_catalog("x64")


@pytest.fixture
def matcher(catalog):
    return Matcher(catalog, EngineConfig())


@pytest.fixture
def resolver(tables):
    return ParameterResolver(tables, tables.arch("x86"))


@pytest.fixture
def score(catalog, matcher):
    """score("list", "node", evidence) -> Candidate"""

    def _score(family, variant, evidence):
        return matcher.score(catalog.get(family, variant), evidence)

    return _score
