import pytest

from diet_forecast.reference_data import Party, ReferenceData, Region


def test_exact_alias(normalizer):
    assert normalizer("自由民主党") == "自民党"
    assert normalizer("立憲民主党") == "中道改革連合"
    assert normalizer("ldp") == "自民党"


def test_canonical_is_noop(normalizer, reference):
    for name in reference.party_names:
        assert normalizer(name) == name


def test_substring_match_uses_table_order(normalizer):
    assert normalizer("立憲民主党公認") == "中道改革連合"
    assert normalizer("大阪維新の会（推薦）") == "日本維新の会"


def test_unknown_name_passes_through(normalizer):
    assert normalizer("みどりの党") == "みどりの党"


def test_empty_and_whitespace(normalizer):
    assert normalizer(None) == ""
    assert normalizer("") == ""
    assert normalizer("  自民党  ") == "自民党"


def test_idempotent(normalizer, reference):
    names = list(reference.party_names) + [a for a, _ in reference.alias_table] + [
        "みどりの党", "立憲民主党公認", " 日本共産党 ", "諸派",
    ]
    for name in names:
        once = normalizer(name)
        assert normalizer(once) == once


def test_alias_equal_to_canonical_rejected():
    with pytest.raises(ValueError):
        ReferenceData(
            regions=(Region(1, "A県", 2),),
            parties=(Party("甲党", "甲", "#000000", aliases=("乙党",)), Party("乙党", "乙", "#ffffff")),
        )
