"""Merge per-chunk extraction results into one deduplicated result."""
from typing import Dict, List, Sequence, Tuple

from utils.logger import setup_logger
from extraction.models import (
    ExtractedRegulation,
    ExtractionResult,
    ExtractionStatus,
    MergedExtractionResult,
    SpeciesRule,
)
from extraction.validators import parse_size_inches
from ingestion.cleaner import collapse_whitespace

logger = setup_logger(__name__)

# Fields compared when two rules for the same species disagree
CONFLICT_FIELDS = ("daily_limit", "possession_limit", "minimum_size", "maximum_size")


def normalize_key(value: str) -> str:
    """Case-fold and collapse whitespace for identity comparison."""
    return collapse_whitespace(value).casefold()


def _numeric_values(rule: SpeciesRule) -> Dict[str, object]:
    return {
        "daily_limit": rule.daily_limit,
        "possession_limit": rule.possession_limit,
        "minimum_size": parse_size_inches(rule.minimum_size),
        "maximum_size": parse_size_inches(rule.maximum_size),
    }


def _conflicting_fields(first: SpeciesRule, second: SpeciesRule) -> List[str]:
    a, b = _numeric_values(first), _numeric_values(second)
    return [
        field for field in CONFLICT_FIELDS
        if a[field] is not None and b[field] is not None and a[field] != b[field]
    ]


def _same_rule(first: SpeciesRule, second: SpeciesRule) -> bool:
    return first.model_dump(exclude={"confidence"}) == second.model_dump(exclude={"confidence"})


class _Group:
    """Accumulates every occurrence of one (name, locality) key."""

    def __init__(self, regulation: ExtractedRegulation):
        self.name = regulation.name
        self.locality = regulation.locality
        self.rules: List[SpeciesRule] = []
        # Occurrence each rule came from, parallel to rules
        self.rule_sources: List[int] = []
        self.absorbed = 0
        self.notes: List[str] = []
        self.is_experimental = False
        self.confidences: List[float] = []
        self.source_chunks: List[int] = []

    def build(self) -> ExtractedRegulation:
        confidence = sum(self.confidences) / len(self.confidences) if self.confidences else 0.0
        return ExtractedRegulation(
            name=self.name,
            locality=self.locality,
            rules=self.rules,
            general_notes=" ".join(self.notes),
            is_experimental=self.is_experimental,
            confidence=confidence,
            source_chunks=sorted(self.source_chunks)
        )


class RegulationMerger:
    """Combines chunk results, collapsing water bodies that span chunk boundaries."""

    def merge(self, results: Sequence[ExtractionResult]) -> MergedExtractionResult:
        """Merge extraction results.

        Args:
            results: Per-chunk results in chunk order

        Returns:
            MergedExtractionResult with one regulation per (name, locality)
        """
        merged = MergedExtractionResult(source_count=len(results))
        groups: Dict[Tuple[str, str], _Group] = {}

        for result in results:
            merged.lakes_processed += result.lakes_processed
            merged.elapsed_seconds += result.elapsed_seconds
            merged.warnings.extend(result.warnings)
            if result.error_message:
                merged.warnings.append(result.error_message)

            for regulation in result.regulations:
                key = (normalize_key(regulation.name), normalize_key(regulation.locality))
                group = groups.get(key)
                if group is None:
                    group = groups[key] = _Group(regulation)
                self._absorb(group, regulation, merged.merge_warnings)

        merged.regulations = [group.build() for group in groups.values()]
        merged.regulations_extracted = sum(len(r.rules) for r in merged.regulations)
        self._set_status(merged, results)

        duplicates = sum(len(r.regulations) for r in results) - len(merged.regulations)
        logger.info(
            f"Merged {len(results)} results into {len(merged.regulations)} regulations "
            f"({duplicates} duplicates, {len(merged.merge_warnings)} conflicts)"
        )
        return merged

    def _absorb(self, group: _Group, regulation: ExtractedRegulation, merge_warnings: List[str]) -> None:
        group.confidences.append(regulation.confidence)
        group.is_experimental = group.is_experimental or regulation.is_experimental
        for chunk in regulation.source_chunks:
            if chunk not in group.source_chunks:
                group.source_chunks.append(chunk)

        notes = collapse_whitespace(regulation.general_notes)
        if notes and notes not in group.notes:
            group.notes.append(notes)

        source = group.absorbed
        group.absorbed += 1
        for rule in regulation.rules:
            self._add_rule(group, rule, source, merge_warnings)

    def _add_rule(self, group: _Group, rule: SpeciesRule, source: int, merge_warnings: List[str]) -> None:
        """Add a rule, resolving it only against rules from other occurrences of the lake.

        Rules from one entry are kept side by side (seasonal limits, for example).
        """
        species = normalize_key(rule.species)
        for i, existing in enumerate(group.rules):
            if group.rule_sources[i] == source or normalize_key(existing.species) != species:
                continue
            if _same_rule(existing, rule):
                return
            conflicts = _conflicting_fields(existing, rule)
            if not conflicts:
                continue

            if rule.confidence > existing.confidence:
                winner, loser = rule, existing
                group.rules[i] = rule
                group.rule_sources[i] = source
            else:
                winner, loser = existing, rule

            message = (
                f"{group.name}: conflicting {', '.join(conflicts)} for {rule.species}; "
                f"kept rule with confidence {winner.confidence:.2f}, "
                f"dropped {loser.model_dump(include=set(conflicts))} "
                f"(confidence {loser.confidence:.2f})"
            )
            merge_warnings.append(message)
            logger.warning(message)
            return

        group.rules.append(rule)
        group.rule_sources.append(source)

    @staticmethod
    def _set_status(merged: MergedExtractionResult, results: Sequence[ExtractionResult]) -> None:
        statuses = [r.status for r in results]
        merged.cancelled = any(r.cancelled for r in results)

        if statuses and all(s == ExtractionStatus.FAILED for s in statuses):
            merged.status = ExtractionStatus.FAILED
            merged.success = False
            merged.error_message = f"All {len(results)} chunk extractions failed"
        elif merged.cancelled:
            merged.status = ExtractionStatus.CANCELLED
            merged.success = True
        elif any(s in (ExtractionStatus.FAILED, ExtractionStatus.PARTIAL) for s in statuses):
            merged.status = ExtractionStatus.PARTIAL
            merged.success = True
        else:
            merged.status = ExtractionStatus.SUCCESS
            merged.success = True
