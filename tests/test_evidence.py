from __future__ import annotations

import pytest

from conftest import DATA_DIR
from stl_fingerprint.errors import InputError
from stl_fingerprint.evidence import (
    Arithmetic, CallSignature, ConstantCompare, EvidenceSet, FieldAccess, StringRef,
    load_evidence_file, parse_document, parse_evidence, parse_item,
)


def test_parse_field_access():
    item = parse_item({"kind": "FieldAccess", "offset": 16, "size": 4, "role_hint": " Size "})
    assert item == FieldAccess(16, 4, "size")


def test_index_offsets_scale_by_size_and_pointer():
    es = parse_evidence({
        "offset_unit": "index",
        "evidence": [
            {"kind": "FieldAccess", "offset": 4, "size": 4, "role_hint": "size"},
            {"kind": "ConstantCompare", "at_offset": 5, "value": 15},
        ],
    }, pointer_size=4)
    assert es.fields() == (FieldAccess(16, 4, "size"),)
    assert es.constants() == (ConstantCompare(20, 15),)


def test_index_offsets_x64():
    es = parse_evidence({
        "offset_unit": "index",
        "evidence": [{"kind": "ConstantCompare", "at_offset": 3, "value": 0}],
    }, pointer_size=8)
    assert es.constants()[0].at_offset == 24


def test_other_kinds():
    assert parse_item({"kind": "CallSignature", "callee": "f", "arg_count": 2,
                       "arg_sizes": [4, 8]}) == CallSignature("f", 2, (4, 8))
    assert parse_item({"kind": "StringRef", "text": "abc", "observed_length": 3}) == StringRef("abc", 3)
    assert parse_item({"kind": "Arithmetic", "op": "shr", "operand": 5}) == Arithmetic("shr", 5)
    assert parse_item({"kind": "ConstantCompare", "value": -1}) == ConstantCompare(None, -1)


@pytest.mark.parametrize("raw", [
    {"kind": "FieldAccess", "offset": -4, "size": 4},
    {"kind": "FieldAccess", "offset": 0, "size": 0},
    {"kind": "FieldAccess", "offset": "0", "size": 4},
    {"kind": "FieldAccess", "size": 4},
    {"kind": "ConstantCompare", "value": True},
    {"kind": "ConstantCompare", "value": 1 << 64},
    {"kind": "CallSignature", "callee": "", "arg_count": 1},
    {"kind": "CallSignature", "callee": "f", "arg_count": 1, "arg_sizes": [4, 4]},
    {"kind": "Arithmetic", "op": "mul", "operand": 2},
    {"kind": "Arithmetic", "op": "sub-div", "operand": 0},
    {"kind": "Mystery"},
    ["FieldAccess", 0, 4],
])
def test_malformed_items(raw):
    with pytest.raises(InputError):
        parse_item(raw)


def test_bad_offset_unit():
    with pytest.raises(InputError, match="offset_unit"):
        parse_evidence({"offset_unit": "word", "evidence": [{"kind": "ConstantCompare", "value": 0}]})


def test_empty_evidence_rejected():
    with pytest.raises(InputError):
        parse_evidence([])


def test_set_semantics():
    a = EvidenceSet.from_items([FieldAccess(4, 4), FieldAccess(0, 4), FieldAccess(4, 4)])
    b = EvidenceSet.from_items([FieldAccess(0, 4), FieldAccess(4, 4)])
    assert a == b
    assert len(a) == 2
    assert list(a) == list(b) == [FieldAccess(0, 4), FieldAccess(4, 4)]


def test_accessors():
    es = EvidenceSet.from_items([
        ConstantCompare(None, 40, "bit-limit"),
        ConstantCompare(4, 0),
        Arithmetic("shr", 5),
        Arithmetic("sub-div", 8),
    ])
    assert es.constant_at(4, 0)
    assert not es.constant_at(8, 0)
    assert es.constants_with_role("bit-limit") == (ConstantCompare(None, 40, "bit-limit"),)
    assert es.arithmetic("shr") == (Arithmetic("shr", 5),)
    assert len(es.arithmetic()) == 2


def test_regions_get_default_labels():
    sets = parse_document({"regions": [
        {"region": "ctor", "evidence": [{"kind": "ConstantCompare", "value": 0}]},
        {"evidence": [{"kind": "ConstantCompare", "value": 1}]},
    ]})
    assert [s.label for s in sets] == ["ctor", "region1"]


def test_load_files():
    (single,) = load_evidence_file(DATA_DIR / "string_x86.yml")
    assert single.label == "sub_401000"
    assert len(single) == 5

    (indexed,) = load_evidence_file(DATA_DIR / "string_index.yml")
    assert indexed.fields()[1] == FieldAccess(16, 4, "size")


def test_load_missing_or_bad_file(tmp_path):
    with pytest.raises(InputError):
        load_evidence_file(tmp_path / "nope.yml")
    bad = tmp_path / "bad.yml"
    bad.write_text("evidence: [unclosed\n")
    with pytest.raises(InputError):
        load_evidence_file(bad)
    empty = tmp_path / "empty.yml"
    empty.write_text("")
    with pytest.raises(InputError):
        load_evidence_file(empty)


def test_arg_sizes_may_be_omitted():
    assert parse_item({"kind": "CallSignature", "callee": "f", "arg_count": 2}) == CallSignature("f", 2)
    assert parse_item({"kind": "CallSignature", "callee": "f", "arg_count": 2,
                       "arg_sizes": []}) == CallSignature("f", 2)
    with pytest.raises(InputError):
        parse_item({"kind": "CallSignature", "callee": "f", "arg_count": 2, "arg_sizes": [4]})
