"""Population of the regulation entity graph from merged extraction results."""
import asyncio
import time
import weakref
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from utils.logger import setup_logger
from extraction.merger import normalize_key
from extraction.models import (
    ExtractedRegulation,
    ExtractionStatus,
    MergedExtractionResult,
    RegulationKind,
    SpeciesRule,
)
from extraction.validators import RegulationValidator, parse_protected_slot, parse_size_inches
from population.models import (
    AuditAction,
    AuditEntry,
    FishSpecies,
    PopulationResult,
    Provenance,
    RegulationRecord,
    WaterBody,
)
from population.species import normalize_species_name, normalize_water_body_name
from storage.entity_store import EntityStore
import config

logger = setup_logger(__name__)


class PopulationError(Exception):
    """Raised when one lake cannot be resolved or written."""
    pass


def _to_inches(value: Optional[str]) -> Optional[float]:
    size = parse_size_inches(value)
    return float(size) if size is not None else None


def combine_rules(rules: List[SpeciesRule]) -> SpeciesRule:
    """Fold several rules for one species into one; the first value given for a field wins."""
    if len(rules) == 1:
        return rules[0]

    first = rules[0]
    values = {}
    for field in ("daily_limit", "possession_limit", "minimum_size", "maximum_size",
                  "protected_slot", "season_info"):
        values[field] = next((getattr(r, field) for r in rules if getattr(r, field) is not None), None)

    kinds = {r.regulation_type for r in rules}
    notes = []
    for rule in rules:
        if rule.notes and rule.notes not in notes:
            notes.append(rule.notes)

    return first.model_copy(update={
        **values,
        "regulation_type": first.regulation_type if len(kinds) == 1 else RegulationKind.COMBINED,
        "catch_and_release": any(r.catch_and_release for r in rules),
        "notes": " ".join(notes),
        "confidence": max(r.confidence for r in rules),
    })


class PopulationEngine:
    """Maps validated regulations onto water bodies, species and regulation rows."""

    def __init__(
        self,
        store: EntityStore,
        default_state: str = config.DEFAULT_STATE,
        review_threshold: float = config.REVIEW_CONFIDENCE_THRESHOLD
    ):
        """Initialize population engine.

        Args:
            store: Entity store to read and write through
            default_state: State scope for water body lookup and creation
            review_threshold: Regulations below this confidence are flagged for review
        """
        self.store = store
        self.default_state = default_state
        self.review_threshold = review_threshold
        # Entries disappear once no run holds or waits on the lock
        self._document_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, source_document_id: str) -> asyncio.Lock:
        lock = self._document_locks.get(source_document_id)
        if lock is None:
            lock = self._document_locks[source_document_id] = asyncio.Lock()
        return lock

    async def populate(
        self,
        merged: MergedExtractionResult,
        source_document_id: str,
        regulation_year: int
    ) -> PopulationResult:
        """Populate the store from a merged extraction result.

        Runs for the same source document are serialized; re-running with
        the same inputs creates no new rows and writes no audit entries.

        Args:
            merged: Merged extraction result
            source_document_id: Identity of the source document
            regulation_year: Year stamped on every regulation row

        Returns:
            PopulationResult, also recorded through the store
        """
        lock = self._lock_for(source_document_id)
        async with lock:
            return await self._populate(merged, source_document_id, regulation_year)

    async def _populate(
        self,
        merged: MergedExtractionResult,
        source_document_id: str,
        regulation_year: int
    ) -> PopulationResult:
        start = time.monotonic()
        result = PopulationResult(
            source_document_id=source_document_id,
            regulation_year=regulation_year,
            started_at=datetime.now(timezone.utc)
        )

        if merged.status == ExtractionStatus.FAILED:
            result.errors.append(f"Cannot process failed extraction: {merged.error_message}")
        else:
            logger.info(f"Starting population for {len(merged.regulations)} lakes ({source_document_id})")
            for regulation in merged.regulations:
                await self._populate_regulation(regulation, source_document_id, regulation_year, result)

        result.success = not result.errors
        result.completed_at = datetime.now(timezone.utc)
        result.elapsed_seconds = time.monotonic() - start
        result.run_id = await self.store.record_population_run(result)

        logger.info(
            f"Population completed: {result.lakes_processed} lakes, "
            f"{result.water_bodies_created} water bodies created, "
            f"{result.regulations_created} regulations created, "
            f"{result.regulations_updated} updated, {result.regulations_unchanged} unchanged, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _populate_regulation(
        self,
        regulation: ExtractedRegulation,
        source_document_id: str,
        regulation_year: int,
        result: PopulationResult
    ) -> None:
        validation = RegulationValidator.validate_and_clean(regulation)
        result.warnings.extend(f"{regulation.name}: {w}" for w in validation.warnings)
        if not validation.is_valid:
            result.regulations_rejected += 1
            reason = f"{regulation.name}: {'; '.join(validation.errors)}"
            logger.warning(f"Rejected {reason}")
            result.excluded.append(reason)
            return

        cleaned = validation.cleaned
        try:
            await self._populate_lake(cleaned, source_document_id, regulation_year, result)
        except Exception as e:
            logger.warning(f"Failed to populate lake {cleaned.name}: {e}")
            result.errors.append(f"Lake {cleaned.name}: {e}")
        result.lakes_processed += 1

    async def _populate_lake(
        self,
        regulation: ExtractedRegulation,
        source_document_id: str,
        regulation_year: int,
        result: PopulationResult
    ) -> None:
        by_species: Dict[str, List[SpeciesRule]] = {}
        for rule in regulation.rules:
            by_species.setdefault(normalize_species_name(rule.species), []).append(rule)

        if not by_species:
            result.warnings.append(f"No species found in regulations for {regulation.name}")

        # Resolve every species before writing so an ambiguous name leaves the lake untouched
        for name in by_species:
            await self._check_species(name)

        water_body = await self.find_or_create_water_body(regulation.name, regulation.locality, result)
        for name, rules in by_species.items():
            species = await self.find_or_create_species(name, result)
            rule = combine_rules(rules)
            record = self.build_record(
                rule, regulation, water_body.id, species.id, source_document_id, regulation_year
            )
            await self._upsert(record, source_document_id, result)

    async def _check_species(self, common_name: str) -> None:
        matches = await self.store.find_species(common_name)
        if len(matches) > 1:
            names = ", ".join(f"{s.common_name} (#{s.id})" for s in matches)
            raise PopulationError(f"Ambiguous species name {common_name!r}: matches {names}")

    async def find_or_create_water_body(
        self,
        name: str,
        locality: str,
        result: PopulationResult
    ) -> WaterBody:
        """Find a water body by normalized name in the default state, creating it if absent.

        Several matches are narrowed by county; if that does not settle it
        the name is ambiguous.

        Raises:
            PopulationError: If the name is empty or ambiguous
        """
        display_name = normalize_water_body_name(name)
        if not display_name:
            raise PopulationError("Lake name cannot be empty")

        matches = await self.store.find_water_body(display_name, self.default_state)
        if len(matches) > 1:
            same_county = [wb for wb in matches if normalize_key(wb.county) == normalize_key(locality)]
            if len(same_county) != 1:
                raise PopulationError(
                    f"Ambiguous water body {display_name!r}: {len(matches)} matches in {self.default_state}"
                )
            matches = same_county

        if matches:
            logger.debug(f"Found existing water body: {display_name}")
            result.water_bodies_matched += 1
            return matches[0]

        water_body = await self.store.add_water_body(WaterBody(
            name=display_name,
            state=self.default_state,
            county=locality,
            provenance=Provenance.AI_EXTRACTED,
            needs_review=True
        ))
        result.water_bodies_created += 1
        logger.info(f"Created new water body: {display_name} ({locality or 'no county'})")
        return water_body

    async def find_or_create_species(self, common_name: str, result: PopulationResult) -> FishSpecies:
        """Find a species by common name (case-insensitive), creating it flagged for review if absent.

        Raises:
            PopulationError: If the name matches more than one catalog species
        """
        matches = await self.store.find_species(common_name)
        if len(matches) > 1:
            raise PopulationError(f"Ambiguous species name {common_name!r}")
        if matches:
            result.species_matched += 1
            return matches[0]

        species = await self.store.add_species(FishSpecies(
            common_name=common_name,
            provenance=Provenance.AI_EXTRACTED,
            needs_review=True
        ))
        result.species_created += 1
        logger.info(f"Created new fish species: {common_name}")
        return species

    def build_record(
        self,
        rule: SpeciesRule,
        regulation: ExtractedRegulation,
        water_body_id: int,
        species_id: int,
        source_document_id: str,
        regulation_year: int
    ) -> RegulationRecord:
        """Translate one cleaned species rule into a regulation row."""
        slot_min, slot_max, slot_exceptions = parse_protected_slot(rule.protected_slot)
        size_notes = [s for s in (rule.minimum_size, rule.maximum_size, rule.protected_slot) if s]

        return RegulationRecord(
            water_body_id=water_body_id,
            species_id=species_id,
            regulation_year=regulation_year,
            source_document_id=source_document_id,
            regulation_type=rule.regulation_type.value,
            effective_date=date(regulation_year, 1, 1),
            expiration_date=date(regulation_year, 12, 31),
            is_catch_and_release=rule.catch_and_release,
            daily_limit=rule.daily_limit,
            possession_limit=rule.possession_limit,
            minimum_size_inches=_to_inches(rule.minimum_size),
            maximum_size_inches=_to_inches(rule.maximum_size),
            protected_slot_min_inches=float(slot_min) if slot_min is not None else None,
            protected_slot_max_inches=float(slot_max) if slot_max is not None else None,
            protected_slot_exceptions=slot_exceptions,
            size_limit_notes="; ".join(size_notes),
            season_notes=rule.season_info,
            is_year_round=not rule.season_info,
            special_regulations=[rule.notes] if rule.notes else [],
            notes=regulation.general_notes,
            is_experimental=regulation.is_experimental,
            confidence=regulation.confidence,
            provenance=Provenance.AI_EXTRACTED,
            needs_review=regulation.confidence < self.review_threshold
        )

    async def _upsert(
        self,
        record: RegulationRecord,
        source_document_id: str,
        result: PopulationResult
    ) -> Tuple[RegulationRecord, Optional[AuditEntry]]:
        existing = await self.store.get_regulation(
            record.water_body_id, record.species_id, record.regulation_year
        )

        if existing is None:
            saved = await self.store.upsert_regulation(record)
            audit = AuditEntry(
                regulation_id=saved.id,
                action=AuditAction.CREATED,
                source_document_id=source_document_id,
                changed_fields=sorted(saved.content()),
                new_values=saved.content()
            )
            await self.store.append_audit(audit)
            result.regulations_created += 1
            return saved, audit

        changes = existing.diff(record)
        if not changes:
            result.regulations_unchanged += 1
            return existing, None

        saved = await self.store.upsert_regulation(record)
        audit = AuditEntry(
            regulation_id=saved.id,
            action=AuditAction.UPDATED,
            source_document_id=source_document_id,
            changed_fields=sorted(changes),
            old_values={field: change["before"] for field, change in changes.items()},
            new_values={field: change["after"] for field, change in changes.items()}
        )
        await self.store.append_audit(audit)
        result.regulations_updated += 1
        logger.info(f"Updated regulation #{saved.id}: {', '.join(sorted(changes))}")
        return saved, audit
