from __future__ import annotations

import itertools

import pytest

from conftest import (
    bitset_words, ev, length_error, string_x86, three_pointers_x86, tree_node_x86, vector_x86,
)
from stl_fingerprint.config import EngineConfig
from stl_fingerprint.engine_types import Classification, Deadline
from stl_fingerprint.errors import QueryTimeout
from stl_fingerprint.evidence import (
    Arithmetic, CallSignature, ConstantCompare, EvidenceSet, FieldAccess, StringRef,
)
from stl_fingerprint.matcher import Matcher, match_shape


def _names(candidates):
    return [c.fingerprint.name for c in candidates]


def test_string_unique(matcher):
    result = matcher.match(string_x86())
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "string/string"
    assert result.best.confidence == pytest.approx(0.8)


def test_wstring_capacity(matcher):
    result = matcher.match(string_x86(capacity=7))
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "string/wstring"


def test_string_buffer_access_inside_union(matcher):
    evidence = ev(
        FieldAccess(0, 1, "buffer"),
        FieldAccess(8, 4, "buffer"),
        FieldAccess(16, 4, "size"),
        ConstantCompare(20, 15),
    )
    result = matcher.match(evidence)
    assert result.best.fingerprint.name == "string/string"


def test_vector_unique(matcher):
    result = matcher.match(vector_x86())
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "vector/vector"
    assert "size-stride" in result.best.matched_optional


def test_map_and_set(matcher):
    result = matcher.match(tree_node_x86())
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "tree/map"

    result = matcher.match(tree_node_x86(value=None))
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "tree/set"


def test_set_does_not_explain_extra_field(score):
    cand = score("tree", "set", tree_node_x86())
    assert not cand.complete
    assert cand.missing_required == ("shape:exact",)


def test_tree_flags_required(score):
    evidence = ev(
        FieldAccess(0, 4, "self"), FieldAccess(4, 4, "self"), FieldAccess(8, 4, "self"),
        FieldAccess(16, 4, "key"),
    )
    cand = score("tree", "set", evidence)
    assert "const:flags" in cand.missing_required


def test_vector_list_ambiguity(matcher):
    result = matcher.match(three_pointers_x86())
    assert result.classification is Classification.AMBIGUOUS
    assert _names(result.tied) == ["vector/vector", "list/node"]
    assert result.tied[0].confidence == result.tied[1].confidence


def test_corroboration_breaks_tie(matcher):
    evidence = ev(*three_pointers_x86(), *length_error("vector<T> too long"))
    result = matcher.match(evidence)
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "vector/vector"


def test_full_optional_confidence_one(matcher):
    evidence = ev(
        *vector_x86(),
        ConstantCompare(0, 0), ConstantCompare(4, 0), ConstantCompare(8, 0),
        *length_error("vector<T> too long"),
    )
    result = matcher.match(evidence)
    assert result.classification is Classification.UNIQUE
    assert result.best.confidence == 1.0
    assert result.best.missing_optional == ()


def test_list_container_with_sentinel(matcher):
    evidence = ev(
        FieldAccess(0, 4, "head"),
        FieldAccess(4, 4, "size"),
        ConstantCompare(0, 0), ConstantCompare(4, 0),
        ConstantCompare(4, 357913941),
        CallSignature("operator new", 1, (4,)),
        *length_error("list too long"),
    )
    result = matcher.match(evidence)
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "list/container"
    assert result.best.confidence == 1.0
    runner_up = result.accepted()[1]
    assert runner_up.fingerprint.name == "tree/container"


def test_bitset(matcher):
    result = matcher.match(bitset_words(4, 2, shift=5))
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "bitset/bitset"
    assert len(result.best.claimed("bits")) == 2


def test_bitset_needs_hints(score):
    cand = score("bitset", "bitset", ev(FieldAccess(0, 4), FieldAccess(4, 4)))
    assert not cand.complete


def test_no_match_reports_partials(matcher):
    evidence = ev(FieldAccess(0, 4, "start"), FieldAccess(4, 4, "end"))
    result = matcher.match(evidence)
    assert result.classification is Classification.NO_MATCH
    assert result.best is None
    partials = result.partials(3)
    assert partials[0].fingerprint.name == "vector/vector"
    assert partials[0].missing_required == ("field:capacity",)
    assert all(c.confidence == 0.0 for c in result.candidates)


@pytest.mark.parametrize("drop", range(3))
def test_missing_any_required_feature_is_no_match(matcher, drop):
    items = list(string_x86())
    del items[drop]
    assert matcher.match(ev(*items)).classification is Classification.NO_MATCH


def test_determinism(matcher):
    items = list(tree_node_x86()) + [CallSignature("??2@YAPAXI@Z", 1)]
    first = matcher.match(ev(*items))
    for perm in itertools.islice(itertools.permutations(items), 20):
        again = matcher.match(EvidenceSet.from_items(perm))
        assert again == first
        assert _names(again.candidates) == _names(first.candidates)


def test_threshold_and_margin_are_configurable(catalog):
    strict = Matcher(catalog, EngineConfig(acceptance_threshold=0.9))
    assert strict.match(three_pointers_x86()).classification is Classification.NO_MATCH

    evidence = ev(*three_pointers_x86(), Arithmetic("sub-div", 4))
    assert Matcher(catalog).match(evidence).classification is Classification.UNIQUE
    wide = Matcher(catalog, EngineConfig(ambiguity_margin=0.1))
    assert wide.match(evidence).classification is Classification.AMBIGUOUS


def test_x64_offsets(catalog64):
    matcher = Matcher(catalog64)
    evidence = ev(
        FieldAccess(0, 8, "pointer-or-buffer"),
        FieldAccess(16, 8, "size"),
        ConstantCompare(24, 15),
        StringRef("hello", 5),
    )
    result = matcher.match(evidence)
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "string/string"
    assert result.best.fingerprint.arch.pointer_size == 8


def test_expired_deadline(matcher):
    with pytest.raises(QueryTimeout):
        matcher.match(string_x86(), Deadline(0))


def test_match_shape_floating_window(catalog):
    fp = catalog.get("tree", "map")
    # key 落在 flag 之后的对齐窗口之外
    shape = match_shape(fp, tree_node_x86(key=(24, 4), value=(28, 4)))
    assert "key" in shape.missing
    assert "value" in shape.missing


def test_small_constant_is_not_a_max_count_sentinel(matcher, score):
    evidence = ev(*three_pointers_x86(), ConstantCompare(8, 1))
    result = matcher.match(evidence)
    assert result.classification is Classification.AMBIGUOUS
    assert "max-count" not in score("list", "node", evidence).matched_optional

    container = ev(FieldAccess(0, 4, "head"), FieldAccess(4, 4, "size"), ConstantCompare(4, 2))
    assert "max-count" not in score("list", "container", container).matched_optional


def test_max_count_node_bounds(catalog, catalog64):
    feature = next(f for f in catalog.get("list", "node").optional if f.name == "max-count")
    assert feature.node_size(357913941) == 12
    assert feature.node_size(1) is None
    assert feature.node_size(2) is None
    assert feature.node_size(65536) is None

    feature64 = next(f for f in catalog64.get("list", "node").optional if f.name == "max-count")
    assert feature64.node_size((2 ** 64 - 1) // 24) == 24


def test_sparse_bitset_words(matcher):
    evidence = ev(FieldAccess(0, 4, "bit-word"), FieldAccess(12, 4, "bit-word"), Arithmetic("shr", 5))
    result = matcher.match(evidence)
    assert result.classification is Classification.UNIQUE
    assert result.best.fingerprint.name == "bitset/bitset"
    assert [a.offset for a in result.best.claimed("bits")] == [0, 12]


def test_misaligned_bitset_word_is_unexplained(score):
    evidence = ev(FieldAccess(0, 4, "bit-word"), FieldAccess(6, 4, "bit-word"))
    assert score("bitset", "bitset", evidence).missing_required == ("shape:exact",)


def test_bit_mask_corroborates(score):
    cand = score("bitset", "bitset", ev(*bitset_words(4, 2), Arithmetic("and", 31)))
    assert "bit-mask" in cand.matched_optional
    assert "bit-index" in cand.missing_optional


def test_construct_call_needs_literal(score):
    bare = ev(*string_x86(), CallSignature("memcpy", 3, (4, 4, 4)))
    assert "construct-call" not in score("string", "string", bare).matched_optional

    with_literal = ev(*bare, StringRef("hello", 5))
    assert "construct-call" in score("string", "string", with_literal).matched_optional
