"""Test cross-chunk merge."""
import pytest

from extraction.merger import RegulationMerger, normalize_key
from extraction.models import ExtractedRegulation, ExtractionResult, ExtractionStatus, SpeciesRule


def _rule(species, confidence=0.9, **values):
    return SpeciesRule(species=species, confidence=confidence, **values)


def _regulation(name, locality, rules, confidence=0.9, chunk=0, **extra):
    return ExtractedRegulation(
        name=name,
        locality=locality,
        rules=rules,
        confidence=confidence,
        source_chunks=[chunk],
        **extra
    )


def _result(*regulations, status=ExtractionStatus.SUCCESS, **extra):
    return ExtractionResult(
        success=status != ExtractionStatus.FAILED,
        status=status,
        regulations=list(regulations),
        lakes_processed=len(regulations),
        regulations_extracted=sum(len(r.rules) for r in regulations),
        **extra
    )


def test_normalize_key():
    assert normalize_key("  Clear   LAKE ") == "clear lake"
    assert normalize_key("") == ""


def test_same_lake_from_two_chunks_merges_into_one():
    first = _result(_regulation("Clear Lake", "County X", [_rule("Walleye", daily_limit=4)], confidence=0.9, chunk=0))
    second = _result(_regulation("Clear Lake", "County X", [_rule("Northern Pike", daily_limit=2)], confidence=0.5, chunk=1))

    merged = RegulationMerger().merge([first, second])

    assert len(merged.regulations) == 1
    regulation = merged.regulations[0]
    assert [r.species for r in regulation.rules] == ["Walleye", "Northern Pike"]
    assert regulation.confidence == pytest.approx(0.7)
    assert regulation.source_chunks == [0, 1]
    assert merged.regulations_extracted == 2
    assert merged.lakes_processed == 2
    assert merged.source_count == 2
    assert merged.merge_warnings == []


def test_key_ignores_case_and_whitespace_but_not_locality():
    merged = RegulationMerger().merge([
        _result(_regulation("CLEAR  LAKE", "Waseca", [_rule("Walleye", daily_limit=4)])),
        _result(_regulation("Clear Lake", "waseca", [_rule("Bluegill", daily_limit=10)])),
        _result(_regulation("Clear Lake", "Jackson", [_rule("Walleye", daily_limit=6)])),
    ])

    assert [(r.name, r.locality) for r in merged.regulations] == [("CLEAR  LAKE", "Waseca"), ("Clear Lake", "Jackson")]
    assert len(merged.regulations[0].rules) == 2


def test_conflicting_limits_keep_higher_confidence_and_warn():
    low = _result(_regulation("Fox Lake", "Rice", [_rule("Walleye", confidence=0.6, daily_limit=4)], confidence=0.6))
    high = _result(_regulation("Fox Lake", "Rice", [_rule("Walleye", confidence=0.9, daily_limit=6)], confidence=0.9, chunk=1))

    merged = RegulationMerger().merge([low, high])

    rules = merged.regulations[0].rules
    assert len(rules) == 1
    assert rules[0].daily_limit == 6
    assert len(merged.merge_warnings) == 1
    assert "Walleye" in merged.merge_warnings[0]


def test_rules_from_one_entry_are_kept_side_by_side():
    """Seasonal limits for one species in a single entry are not treated as conflicts."""
    regulation = _regulation("CLEAR LAKE", "Waseca", [
        _rule("Walleye", daily_limit=4, season_info="May-Nov"),
        _rule("Walleye", daily_limit=2, season_info="Dec-Feb"),
    ])

    merged = RegulationMerger().merge([_result(regulation)])

    assert [(r.daily_limit, r.season_info) for r in merged.regulations[0].rules] == [(4, "May-Nov"), (2, "Dec-Feb")]
    assert merged.merge_warnings == []


def test_conflict_tie_keeps_earlier_rule():
    merged = RegulationMerger().merge([
        _result(_regulation("Fox Lake", "Rice", [_rule("Walleye", minimum_size="15 inches")])),
        _result(_regulation("Fox Lake", "Rice", [_rule("Walleye", minimum_size="17 inches")])),
    ])

    assert merged.regulations[0].rules[0].minimum_size == "15 inches"
    assert len(merged.merge_warnings) == 1


def test_identical_rules_collapse_silently():
    rule = _rule("Walleye", daily_limit=4, minimum_size="15 inches")
    merged = RegulationMerger().merge([
        _result(_regulation("Fox Lake", "Rice", [rule], chunk=0)),
        _result(_regulation("Fox Lake", "Rice", [rule.model_copy(update={"confidence": 0.5})], chunk=1)),
    ])

    assert len(merged.regulations[0].rules) == 1
    assert merged.merge_warnings == []


def test_notes_flags_and_order():
    merged = RegulationMerger().merge([
        _result(
            _regulation("Alpha Lake", "A", [], general_notes="No motors."),
            _regulation("Bravo Lake", "B", [_rule("Walleye", daily_limit=2)]),
        ),
        _result(_regulation("Alpha Lake", "A", [], general_notes="No motors.  ", is_experimental=True, chunk=1)),
        _result(_regulation("Alpha Lake", "A", [], general_notes="Electric only.", chunk=2)),
    ])

    assert [r.name for r in merged.regulations] == ["Alpha Lake", "Bravo Lake"]
    alpha = merged.regulations[0]
    assert alpha.general_notes == "No motors. Electric only."
    assert alpha.is_experimental is True
    assert alpha.source_chunks == [0, 1, 2]


@pytest.mark.parametrize("statuses,expected", [
    ([ExtractionStatus.SUCCESS, ExtractionStatus.SUCCESS], ExtractionStatus.SUCCESS),
    ([ExtractionStatus.SUCCESS, ExtractionStatus.FAILED], ExtractionStatus.PARTIAL),
    ([ExtractionStatus.PARTIAL, ExtractionStatus.SUCCESS], ExtractionStatus.PARTIAL),
    ([ExtractionStatus.FAILED, ExtractionStatus.FAILED], ExtractionStatus.FAILED),
])
def test_status_aggregation(statuses, expected):
    results = [_result(status=status) for status in statuses]

    merged = RegulationMerger().merge(results)

    assert merged.status == expected
    assert merged.success is (expected != ExtractionStatus.FAILED)


def test_cancelled_input_cancels_merge():
    merged = RegulationMerger().merge([
        _result(_regulation("Fox Lake", "Rice", [_rule("Walleye", daily_limit=4)])),
        _result(status=ExtractionStatus.CANCELLED, cancelled=True),
    ])

    assert merged.status == ExtractionStatus.CANCELLED
    assert merged.cancelled is True
    assert len(merged.regulations) == 1


def test_warnings_carried_over():
    merged = RegulationMerger().merge([
        _result(warnings=["Failed to process X: timeout"]),
        _result(status=ExtractionStatus.FAILED, error_message="All 2 entries failed extraction"),
    ])

    assert "Failed to process X: timeout" in merged.warnings
    assert "All 2 entries failed extraction" in merged.warnings


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
