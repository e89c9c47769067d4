"""Test regulation validation and size parsing."""
from decimal import Decimal

import pytest

from extraction.models import ExtractedRegulation, SpeciesRule
from extraction.validators import RegulationValidator, parse_protected_slot, parse_size_inches


def _regulation(*rules, general_notes=""):
    return ExtractedRegulation(name="Walleye Lake", locality="Test County", rules=list(rules), general_notes=general_notes)


def test_minimum_above_maximum_is_invalid():
    result = RegulationValidator.validate_and_clean(
        _regulation(SpeciesRule(species="Walleye", minimum_size="20", maximum_size="15"))
    )

    assert result.is_valid is False
    assert any("exceeds maximum" in e for e in result.errors)


def test_minimum_below_maximum_is_valid():
    result = RegulationValidator.validate_and_clean(
        _regulation(SpeciesRule(species="Walleye", minimum_size="15", maximum_size="20"))
    )

    assert result.is_valid is True
    assert result.errors == []


def test_negative_limit_is_invalid():
    result = RegulationValidator.validate_and_clean(_regulation(SpeciesRule(species="Walleye", daily_limit=-1)))

    assert result.is_valid is False


def test_inverted_protected_slot_is_invalid():
    result = RegulationValidator.validate_and_clean(
        _regulation(SpeciesRule(species="Northern Pike", protected_slot="36-24 inches"))
    )

    assert result.is_valid is False


def test_daily_above_possession_is_only_a_warning():
    result = RegulationValidator.validate_and_clean(
        _regulation(SpeciesRule(species="Walleye", daily_limit=6, possession_limit=4))
    )

    assert result.is_valid is True
    assert any("possession" in w for w in result.warnings)


def test_empty_regulation_is_invalid_but_notes_alone_are_enough():
    assert RegulationValidator.validate_and_clean(_regulation()).is_valid is False
    assert RegulationValidator.validate_and_clean(_regulation(general_notes="Electric motors only.")).is_valid is True


def test_blank_species_is_invalid():
    result = RegulationValidator.validate_and_clean(_regulation(SpeciesRule(species="   ", daily_limit=2)))

    assert result.is_valid is False
    assert "Species name is required" in result.errors


def test_text_fields_are_trimmed_and_collapsed():
    result = RegulationValidator.validate_and_clean(ExtractedRegulation(
        name="  Walleye   Lake ",
        locality=" Test  County",
        rules=[SpeciesRule(species=" Walleye ", minimum_size=" 15   inches ", season_info="   ", notes=" one  over 20 ")],
        general_notes="  No   motors. "
    ))

    cleaned = result.cleaned
    assert cleaned.name == "Walleye Lake"
    assert cleaned.locality == "Test County"
    assert cleaned.general_notes == "No motors."
    rule = cleaned.rules[0]
    assert (rule.species, rule.minimum_size, rule.season_info, rule.notes) == ("Walleye", "15 inches", None, "one over 20")


@pytest.mark.parametrize("text,expected", [
    ("15 inches", Decimal("15")),
    ("15.5 in", Decimal("15.5")),
    ('18"', Decimal("18")),
    ("15", Decimal("15")),
    ("no minimum", None),
    (None, None),
])
def test_parse_size_inches(text, expected):
    assert parse_size_inches(text) == expected


def test_parse_protected_slot():
    assert parse_protected_slot("20-24 inches (1 fish allowed)") == (Decimal("20"), Decimal("24"), 1)
    assert parse_protected_slot("17 to 26 inches") == (Decimal("17"), Decimal("26"), None)
    assert parse_protected_slot("") == (None, None, None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
