"""Per-lake regulation extraction using an AI backend."""
import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from utils.logger import setup_logger
from utils.tokens import count_tokens
from extraction.backend import AIBackend, MalformedResponseError, parse_json_response
from extraction.checkpoint import ExtractionCheckpoint
from extraction.confidence import ConfidencePolicy
from extraction.models import (
    ExtractedRegulation,
    ExtractionResult,
    ExtractionStatus,
    RegulationKind,
    SpeciesRule,
)
from extraction import prompts
from ingestion.entry_parser import EntryParser
from ingestion.models import LakeEntry
import config

logger = setup_logger(__name__)

EntryCallback = Callable[[ExtractedRegulation], Union[None, Awaitable[None]]]

# Backend key -> SpeciesRule field; both camelCase and snake_case are accepted
RULE_FIELDS = {
    "dailyLimit": "daily_limit",
    "possessionLimit": "possession_limit",
    "minimumSize": "minimum_size",
    "maximumSize": "maximum_size",
    "protectedSlot": "protected_slot",
    "seasonInfo": "season_info",
    "catchAndRelease": "catch_and_release",
    "notes": "notes",
}
INT_FIELDS = {"daily_limit", "possession_limit"}
TEXT_FIELDS = {"minimum_size", "maximum_size", "protected_slot", "season_info", "notes"}


class EntryExtractionError(Exception):
    """Raised when one entry's backend call fails or returns a malformed structure."""
    pass


def _lookup(data: Dict[str, Any], camel: str, snake: str) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake)


def _to_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedResponseError(f"{field} must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise MalformedResponseError(f"{field} must be a whole number, got {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


class RegulationExtractor:
    """Turns parsed lake entries into ExtractedRegulations, one backend call per entry."""

    def __init__(
        self,
        backend: AIBackend,
        parser: Optional[EntryParser] = None,
        confidence_policy: Optional[ConfidencePolicy] = None,
        call_delay: float = config.API_CALL_DELAY,
        max_prompt_tokens: int = config.MAX_PROMPT_TOKENS
    ):
        """Initialize extractor.

        Args:
            backend: AI backend capability
            parser: Entry parser used for text input
            confidence_policy: Default scoring when the backend gives no confidence
            call_delay: Seconds to wait between backend calls
            max_prompt_tokens: Prompts above this size are logged as a warning
        """
        self.backend = backend
        self.parser = parser or EntryParser()
        self.confidence_policy = confidence_policy or ConfidencePolicy()
        self.call_delay = call_delay
        self.max_prompt_tokens = max_prompt_tokens

    async def extract(self, text: str, chunk_index: int = 0) -> ExtractionResult:
        """Batch extraction: parse the text and extract every entry."""
        return await self.extract_stream(text, on_entry_extracted=None, chunk_index=chunk_index)

    async def extract_one(
        self,
        raw_text: str,
        name: str,
        locality: str = "",
        chunk_index: int = 0
    ) -> Optional[ExtractedRegulation]:
        """Extract one entry.

        Returns:
            The regulation, or None when the backend finds no actionable regulation

        Raises:
            EntryExtractionError: If the backend call fails or the response is malformed
        """
        regulation, _ = await self._extract_entry(
            LakeEntry(name=name, locality=locality, raw_text=raw_text, chunk_index=chunk_index)
        )
        return regulation

    async def extract_stream(
        self,
        text: str,
        on_entry_extracted: Optional[EntryCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        chunk_index: int = 0,
        checkpoint: Optional[ExtractionCheckpoint] = None
    ) -> ExtractionResult:
        """Parse text and deliver each extracted entry to the callback as soon as it is ready.

        Args:
            text: Regulation text
            on_entry_extracted: Sync or async callback, awaited before the next entry starts
            cancel_event: Checked between entries; set it to stop after the current one
            chunk_index: Source chunk index
            checkpoint: Optional resume point for this document

        Returns:
            ExtractionResult for everything processed (partial when cancelled)
        """
        entries = self.parser.parse(text, chunk_index)
        return await self.extract_entries(
            entries,
            on_entry_extracted=on_entry_extracted,
            cancel_event=cancel_event,
            checkpoint=checkpoint
        )

    async def extract_entries(
        self,
        entries: Sequence[LakeEntry],
        on_entry_extracted: Optional[EntryCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        checkpoint: Optional[ExtractionCheckpoint] = None
    ) -> ExtractionResult:
        """Streaming loop over already-parsed entries, strictly in the given order."""
        start = time.monotonic()
        result = ExtractionResult()
        failures = 0
        backend_called = False
        positions: Dict[int, int] = {}

        if not entries:
            result.warnings.append("No lake entries found in text")

        for entry in entries:
            position = positions.get(entry.chunk_index, 0)
            positions[entry.chunk_index] = position + 1

            if backend_called and self.call_delay > 0:
                await asyncio.sleep(self.call_delay)
            backend_called = False

            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Extraction cancelled after {result.lakes_processed} of {len(entries)} entries")
                result.cancelled = True
                break

            stored = checkpoint.get_entry(entry.chunk_index, position) if checkpoint else None
            if stored is not None:
                regulation = (
                    ExtractedRegulation.model_validate(stored["regulation"])
                    if stored["regulation"] else None
                )
                logger.debug(f"Restored {entry.name} from checkpoint")
            else:
                backend_called = True
                try:
                    regulation, warnings = await self._extract_entry(entry)
                    result.warnings.extend(warnings)
                except EntryExtractionError as e:
                    failures += 1
                    logger.warning(f"Failed to process lake {entry.name}: {e}")
                    result.warnings.append(f"Failed to process {entry.name}: {e}")
                    continue
                if checkpoint:
                    checkpoint.record_entry(entry.chunk_index, position, regulation)

            result.lakes_processed += 1
            if regulation is None:
                logger.info(f"No actionable regulation for {entry.name}")
                continue

            result.regulations.append(regulation)
            result.regulations_extracted += len(regulation.rules)

            if on_entry_extracted is not None:
                try:
                    outcome = on_entry_extracted(regulation)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.warning(f"Entry callback failed for {entry.name}: {e}")
                    result.warnings.append(f"Callback failed for {entry.name}: {e}")

        result.elapsed_seconds = time.monotonic() - start
        self._finish(result, failures, len(entries))
        logger.info(
            f"Extracted regulations for {len(result.regulations)} lakes "
            f"({result.regulations_extracted} rules, {failures} failures) "
            f"in {result.elapsed_seconds:.1f}s"
        )
        return result

    @staticmethod
    def _finish(result: ExtractionResult, failures: int, total: int) -> None:
        if result.cancelled:
            result.status = ExtractionStatus.CANCELLED
            result.success = True
        elif total and failures == total:
            result.status = ExtractionStatus.FAILED
            result.success = False
            result.error_message = f"All {total} entries failed extraction"
        elif failures:
            result.status = ExtractionStatus.PARTIAL
            result.success = True
        else:
            result.status = ExtractionStatus.SUCCESS
            result.success = True

    async def _extract_entry(self, entry: LakeEntry) -> Tuple[Optional[ExtractedRegulation], List[str]]:
        prompt = prompts.regulation_extraction_prompt(entry.raw_text, entry.name, entry.locality)
        prompt_tokens = count_tokens(prompt)
        if prompt_tokens > self.max_prompt_tokens:
            logger.warning(f"Prompt for {entry.name} is {prompt_tokens} tokens (limit {self.max_prompt_tokens})")

        try:
            response = await self.backend.complete(prompt)
        except Exception as e:
            raise EntryExtractionError(f"backend call failed: {e}") from e

        try:
            payload = parse_json_response(response)
            return self.build_regulation(payload, entry)
        except MalformedResponseError as e:
            raise EntryExtractionError(f"malformed response: {e}") from e

    def build_regulation(
        self,
        payload: Any,
        entry: LakeEntry
    ) -> Tuple[Optional[ExtractedRegulation], List[str]]:
        """Convert a backend payload into an ExtractedRegulation.

        Returns:
            (regulation or None, warnings)

        Raises:
            MalformedResponseError: If the payload does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"expected a JSON object, got {type(payload).__name__}")

        species_data = payload.get("species") or []
        if not isinstance(species_data, list):
            raise MalformedResponseError("'species' must be a list")

        general_notes = payload.get("generalNotes", payload.get("general_notes")) or ""
        if not isinstance(general_notes, str):
            general_notes = str(general_notes)

        if _to_bool(_lookup(payload, "noRegulation", "no_regulation") or False):
            return None, []
        if not species_data and not general_notes.strip():
            return None, []

        warnings = []
        rules = []
        typed = []
        for item in species_data:
            if not isinstance(item, dict):
                raise MalformedResponseError("species entries must be objects")
            rule, kind_given, rule_warnings = self._build_rule(item, entry.name)
            rules.append(rule)
            typed.append(kind_given)
            warnings.extend(rule_warnings)

        confidence = self.confidence_policy.score(rules, payload, typed)
        rules = [rule.model_copy(update={"confidence": confidence}) for rule in rules]

        regulation = ExtractedRegulation(
            name=entry.name,
            locality=entry.locality,
            rules=rules,
            general_notes=general_notes,
            is_experimental=_to_bool(_lookup(payload, "isExperimental", "is_experimental") or False),
            confidence=confidence,
            source_chunks=[entry.chunk_index]
        )
        return regulation, warnings

    @staticmethod
    def _build_rule(item: Dict[str, Any], lake_name: str) -> Tuple[SpeciesRule, bool, List[str]]:
        warnings = []
        species = item.get("name", item.get("species"))
        if species is None:
            species = ""
        species = str(species)

        raw_kind = _lookup(item, "regulationType", "regulation_type")
        kind = RegulationKind.parse(raw_kind)
        kind_given = kind is not None
        if kind is None:
            if raw_kind is not None:
                warnings.append(
                    f"{lake_name}: unknown regulation type {raw_kind!r} for {species or 'unnamed species'}, "
                    f"using '{RegulationKind.COMBINED.value}'"
                )
            kind = RegulationKind.COMBINED

        values: Dict[str, Any] = {}
        for camel, field in RULE_FIELDS.items():
            value = _lookup(item, camel, field)
            if field in INT_FIELDS:
                values[field] = _to_int(value, camel)
            elif field == "catch_and_release":
                values[field] = _to_bool(value) if value is not None else False
            elif field in TEXT_FIELDS:
                values[field] = None if value is None else str(value)
        values["notes"] = values.get("notes") or ""

        return SpeciesRule(species=species, regulation_type=kind, **values), kind_given, warnings
