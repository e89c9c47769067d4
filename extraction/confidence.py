"""Default confidence scoring for extracted regulations."""
from typing import Any, Dict, List, Optional

from extraction.models import SpeciesRule
import config

RULE_VALUE_FIELDS = (
    "daily_limit",
    "possession_limit",
    "minimum_size",
    "maximum_size",
    "protected_slot",
    "season_info",
)


class ConfidencePolicy:
    """Scores an extracted entry when the backend supplies no confidence.

    The score reflects field completeness only: every rule naming a species,
    a regulation type and at least one concrete value scores ``high``; some
    rules complete scores ``medium``; nothing usable scores ``low``.
    """

    def __init__(
        self,
        high: float = config.CONFIDENCE_HIGH,
        medium: float = config.CONFIDENCE_MEDIUM,
        low: float = config.CONFIDENCE_LOW
    ):
        self.high = high
        self.medium = medium
        self.low = low

    def score(
        self,
        rules: List[SpeciesRule],
        payload: Optional[Dict[str, Any]] = None,
        regulation_types_given: Optional[List[bool]] = None
    ) -> float:
        """Return the entry confidence in [0, 1].

        Args:
            rules: Parsed species rules
            payload: Raw backend payload; an explicit ``confidence`` wins
            regulation_types_given: Per rule, whether the backend named a valid type
        """
        explicit = (payload or {}).get("confidence")
        if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
            return min(1.0, max(0.0, float(explicit)))

        if not rules:
            return self.low

        if regulation_types_given is None:
            regulation_types_given = [True] * len(rules)

        complete = [
            bool(rule.species) and typed and self.has_value(rule)
            for rule, typed in zip(rules, regulation_types_given)
        ]
        if all(complete):
            return self.high
        if any(complete) or any(self.has_value(rule) for rule in rules):
            return self.medium
        return self.low

    @staticmethod
    def has_value(rule: SpeciesRule) -> bool:
        if rule.catch_and_release:
            return True
        return any(getattr(rule, field) not in (None, "") for field in RULE_VALUE_FIELDS)
