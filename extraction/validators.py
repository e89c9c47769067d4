"""
Regulation validators for quality checking extracted regulations.

Cleans text fields, range-checks limits and sizes, and decides whether
a regulation carries anything worth persisting.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from extraction.models import ExtractedRegulation, SpeciesRule, ValidationResult
from ingestion.cleaner import collapse_whitespace

_SIZE_PATTERN = re.compile(r"(-?\d+(?:\.\d+)?)\s*(?:\"|inch|inches|in\b)?", re.IGNORECASE)
_SLOT_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:\"|inch|inches|in)?\s*(?:-|–|to)\s*(\d+(?:\.\d+)?)\s*(?:\"|inch|inches|in\b)?",
    re.IGNORECASE
)
_SLOT_EXCEPTION_PATTERN = re.compile(r"\((\d+)\s+fish", re.IGNORECASE)


def parse_size_inches(value: Optional[str]) -> Optional[Decimal]:
    """Extract a size in inches from text like "15 inches", "15.5 in" or "15"."""
    if value is None or not str(value).strip():
        return None
    match = _SIZE_PATTERN.search(str(value))
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def parse_protected_slot(value: Optional[str]) -> Tuple[Optional[Decimal], Optional[Decimal], Optional[int]]:
    """Parse "20-24 inches (1 fish allowed)" into (min, max, exceptions)."""
    if value is None or not str(value).strip():
        return None, None, None
    low = high = None
    slot = _SLOT_PATTERN.search(str(value))
    if slot:
        low, high = Decimal(slot.group(1)), Decimal(slot.group(2))
    exception = _SLOT_EXCEPTION_PATTERN.search(str(value))
    exceptions = int(exception.group(1)) if exception else None
    return low, high, exceptions


def _clean_optional(value: Optional[str]) -> Optional[str]:
    cleaned = collapse_whitespace(value)
    return cleaned or None


class RegulationValidator:
    """Quality checks on extracted regulations before population."""

    @staticmethod
    def clean_rule(rule: SpeciesRule) -> SpeciesRule:
        """Return a copy of the rule with text fields trimmed and collapsed."""
        return rule.model_copy(update={
            "species": collapse_whitespace(rule.species),
            "minimum_size": _clean_optional(rule.minimum_size),
            "maximum_size": _clean_optional(rule.maximum_size),
            "protected_slot": _clean_optional(rule.protected_slot),
            "season_info": _clean_optional(rule.season_info),
            "notes": collapse_whitespace(rule.notes),
        })

    @staticmethod
    def check_rule(rule: SpeciesRule) -> Tuple[List[str], List[str]]:
        """Range-check one cleaned rule. Returns (errors, warnings)."""
        errors = []
        warnings = []
        label = rule.species or "unnamed species"

        if not rule.species:
            errors.append("Species name is required")

        for field in ("daily_limit", "possession_limit"):
            value = getattr(rule, field)
            if value is not None and value < 0:
                errors.append(f"{label}: {field.replace('_', ' ')} is negative ({value})")

        if (
            rule.daily_limit is not None
            and rule.possession_limit is not None
            and rule.possession_limit > 0
            and rule.daily_limit > rule.possession_limit
        ):
            warnings.append(f"{label}: daily limit exceeds possession limit")

        minimum = parse_size_inches(rule.minimum_size)
        maximum = parse_size_inches(rule.maximum_size)
        for field, size in (("minimum size", minimum), ("maximum size", maximum)):
            if size is not None and size < 0:
                errors.append(f"{label}: {field} is negative ({size})")
        if minimum is not None and maximum is not None and minimum > maximum:
            errors.append(f"{label}: minimum size {minimum} exceeds maximum size {maximum}")

        for field in ("minimum_size", "maximum_size"):
            raw = getattr(rule, field)
            if raw and parse_size_inches(raw) is None:
                warnings.append(f"{label}: could not read a size from {field.replace('_', ' ')} {raw!r}")

        slot_min, slot_max, _ = parse_protected_slot(rule.protected_slot)
        if slot_min is not None and slot_max is not None and slot_min > slot_max:
            errors.append(f"{label}: protected slot lower bound {slot_min} exceeds upper bound {slot_max}")

        return errors, warnings

    @staticmethod
    def validate_and_clean(regulation: ExtractedRegulation) -> ValidationResult:
        """Clean a regulation and decide whether it can be persisted.

        Any rule error (negative limit or size, minimum above maximum,
        missing species) makes the whole regulation invalid, as does a
        regulation with no species rules and no general notes.
        """
        errors = []
        warnings = []
        rules = []

        for rule in regulation.rules:
            cleaned_rule = RegulationValidator.clean_rule(rule)
            rule_errors, rule_warnings = RegulationValidator.check_rule(cleaned_rule)
            errors.extend(rule_errors)
            warnings.extend(rule_warnings)
            rules.append(cleaned_rule)

        name = collapse_whitespace(regulation.name)
        general_notes = collapse_whitespace(regulation.general_notes)
        if not name:
            errors.append("Water body name is required")
        if not rules and not general_notes:
            errors.append(f"{name or 'Regulation'}: no species rules and no general notes")

        cleaned = regulation.model_copy(update={
            "name": name,
            "locality": collapse_whitespace(regulation.locality),
            "rules": rules,
            "general_notes": general_notes,
        })
        return ValidationResult(
            is_valid=not errors,
            cleaned=cleaned,
            errors=errors,
            warnings=warnings
        )
