"""Main pipeline orchestrator: document -> merged regulations -> populated store."""
import asyncio
import inspect
import time
from typing import List, Optional, Tuple

from utils.logger import setup_logger
from ingestion.cleaner import find_section_end, find_section_start
from ingestion.models import RawDocument, TextChunk
from ingestion.pdf_splitter import PdfSplitter
from ingestion.text_segmenter import TextSegmenter
from extraction.checkpoint import ExtractionCheckpoint
from extraction.merger import RegulationMerger
from extraction.models import (
    ExtractionResult,
    ExtractionStatus,
    MergedExtractionResult,
)
from extraction.regulation_extractor import EntryCallback, RegulationExtractor
from population.models import PopulationResult
from population.populator import PopulationEngine
import config

logger = setup_logger(__name__)

# Queue marker for "this chunk has delivered everything"
_CHUNK_DONE = object()


class ExtractionPipeline:
    """Orchestrates splitting, segmentation, extraction, merge and population."""

    def __init__(
        self,
        extractor: RegulationExtractor,
        splitter: Optional[PdfSplitter] = None,
        segmenter: Optional[TextSegmenter] = None,
        merger: Optional[RegulationMerger] = None,
        population_engine: Optional[PopulationEngine] = None,
        concurrency: int = config.CHUNK_CONCURRENCY,
        max_chunk_kb: int = config.MAX_CHUNK_KB,
        prioritize_relevant: bool = False
    ):
        """Initialize pipeline.

        Args:
            extractor: Per-entry AI extraction
            splitter: PDF splitter
            segmenter: Chunk text extraction
            merger: Cross-chunk merge
            population_engine: Required for run()
            concurrency: Chunks extracted at once; 1 is sequential
            max_chunk_kb: Size limit handed to the splitter
            prioritize_relevant: Process keyword-matching chunks first; other
                chunks are still processed afterwards
        """
        self.extractor = extractor
        self.splitter = splitter or PdfSplitter()
        self.segmenter = segmenter or TextSegmenter()
        self.merger = merger or RegulationMerger()
        self.population_engine = population_engine
        self.concurrency = max(1, concurrency)
        self.max_chunk_kb = max_chunk_kb
        self.prioritize_relevant = prioritize_relevant

    async def process_document(
        self,
        document: RawDocument,
        on_entry_extracted: Optional[EntryCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        checkpoint: Optional[ExtractionCheckpoint] = None
    ) -> MergedExtractionResult:
        """Extract and merge every water body regulation in a document.

        Args:
            document: PDF or plain-text document
            on_entry_extracted: Called once per regulation, in document order
            cancel_event: Checked between chunks and between entries
            checkpoint: Optional resume point for this document

        Returns:
            MergedExtractionResult

        Raises:
            SplitError: If a PDF cannot be opened or split
        """
        start = time.monotonic()
        warnings: List[str] = []

        if document.is_pdf:
            text_chunks = await self._segment_pdf(document, warnings)
        else:
            if not document.is_text:
                logger.warning(f"Unknown content type {document.content_type!r}, reading {document.filename} as text")
            text = document.data.decode("utf-8", errors="replace")
            text_chunks = [self.segmenter.from_text(0, text)]

        regulation_texts = self.select_regulation_text(text_chunks, prioritize_relevant=self.prioritize_relevant)
        relevant = sum(1 for tc in text_chunks if tc.contains_relevant_content)
        logger.info(
            f"{len(regulation_texts)} of {len(text_chunks)} chunks carry regulation text "
            f"({relevant} match relevance keywords)"
        )

        entry_lists = [
            (index, self.extractor.parser.parse(text, index))
            for index, text in regulation_texts
        ]

        if self.concurrency > 1 and len(entry_lists) > 1:
            results, delivery_warnings = await self._extract_concurrently(
                entry_lists, on_entry_extracted, cancel_event, checkpoint
            )
            warnings.extend(delivery_warnings)
        else:
            results = await self._extract_sequentially(
                entry_lists, on_entry_extracted, cancel_event, checkpoint
            )

        merged = self.merger.merge(results)
        merged.warnings = warnings + merged.warnings
        if len(results) < len(entry_lists) or (cancel_event is not None and cancel_event.is_set()):
            merged.cancelled = True
            if merged.status != ExtractionStatus.FAILED:
                merged.status = ExtractionStatus.CANCELLED
                merged.success = True
        merged.elapsed_seconds = time.monotonic() - start

        logger.info(
            f"Processed {document.filename}: {len(merged.regulations)} water bodies, "
            f"{merged.regulations_extracted} rules, status {merged.status.value} "
            f"({merged.elapsed_seconds:.1f}s)"
        )
        return merged

    async def run(
        self,
        document: RawDocument,
        source_document_id: str,
        regulation_year: int = config.REGULATION_YEAR,
        on_entry_extracted: Optional[EntryCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        checkpoint: Optional[ExtractionCheckpoint] = None
    ) -> Tuple[MergedExtractionResult, PopulationResult]:
        """Full pipeline: extract, merge, then populate the store.

        Returns:
            (merged extraction result, population result)
        """
        if self.population_engine is None:
            raise ValueError("ExtractionPipeline.run requires a population engine")

        merged = await self.process_document(
            document,
            on_entry_extracted=on_entry_extracted,
            cancel_event=cancel_event,
            checkpoint=checkpoint
        )
        population = await self.population_engine.populate(merged, source_document_id, regulation_year)
        return merged, population

    async def _segment_pdf(self, document: RawDocument, warnings: List[str]) -> List[TextChunk]:
        split = await asyncio.to_thread(
            self.splitter.split, document.data, document.filename, self.max_chunk_kb
        )
        warnings.extend(split.warnings)

        text_chunks = []
        for chunk in split.chunks:
            text_chunk = await asyncio.to_thread(self.segmenter.extract, chunk)
            if text_chunk.error:
                warnings.append(f"Chunk {chunk.index} (pages {chunk.page_start}-{chunk.page_end}): {text_chunk.error}")
            text_chunks.append(text_chunk)
        return text_chunks

    @staticmethod
    def select_regulation_text(
        text_chunks: List[TextChunk],
        prioritize_relevant: bool = False
    ) -> List[Tuple[int, str]]:
        """Pick the text of each chunk that belongs to the special regulations section.

        Once the section heading is seen, following chunks are taken whole
        until a closing heading; later chunks are skipped. When no chunk
        carries the heading, every non-empty chunk is used whole. Relevance
        only affects order, and only when ``prioritize_relevant`` is set.

        Returns:
            (chunk index, text) pairs in chunk order, or relevant chunks first
        """
        # The heading also appears in the table of contents; the last chunk carrying it opens the section
        starts = [(position, find_section_start(tc.text)) for position, tc in enumerate(text_chunks)]
        starts = [(position, offset) for position, offset in starts if offset is not None]

        if not starts:
            candidates = [tc for tc in text_chunks if tc.text.strip()]
            if prioritize_relevant:
                candidates.sort(key=lambda tc: not tc.contains_relevant_content)
            return [(tc.index, tc.text) for tc in candidates]

        first, offset = starts[-1]
        selected = []
        for position in range(first, len(text_chunks)):
            tc = text_chunks[position]
            text = tc.text[offset:] if position == first else tc.text
            end = find_section_end(text)
            if end is not None:
                text = text[:end]
            if text.strip():
                selected.append((tc.index, text))
            if end is not None:
                break

        return selected

    async def _extract_sequentially(
        self,
        entry_lists,
        on_entry_extracted: Optional[EntryCallback],
        cancel_event: Optional[asyncio.Event],
        checkpoint: Optional[ExtractionCheckpoint]
    ) -> List[ExtractionResult]:
        results = []
        for index, entries in entry_lists:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Cancelled before chunk {index}")
                break
            result = await self.extractor.extract_entries(
                entries,
                on_entry_extracted=on_entry_extracted,
                cancel_event=cancel_event,
                checkpoint=checkpoint
            )
            results.append(result)
        return results

    async def _extract_concurrently(
        self,
        entry_lists,
        on_entry_extracted: Optional[EntryCallback],
        cancel_event: Optional[asyncio.Event],
        checkpoint: Optional[ExtractionCheckpoint]
    ) -> Tuple[List[ExtractionResult], List[str]]:
        """Extract chunks under a semaphore while delivering callbacks in chunk order."""
        semaphore = asyncio.Semaphore(self.concurrency)
        queues = [asyncio.Queue() for _ in entry_lists]

        async def run_chunk(position: int, entries) -> Optional[ExtractionResult]:
            queue = queues[position]
            try:
                async with semaphore:
                    if cancel_event is not None and cancel_event.is_set():
                        return None
                    return await self.extractor.extract_entries(
                        entries,
                        on_entry_extracted=queue.put_nowait,
                        cancel_event=cancel_event,
                        checkpoint=checkpoint
                    )
            finally:
                queue.put_nowait(_CHUNK_DONE)

        async def deliver() -> List[str]:
            delivery_warnings = []
            for queue in queues:
                while True:
                    item = await queue.get()
                    if item is _CHUNK_DONE:
                        break
                    if on_entry_extracted is None:
                        continue
                    try:
                        outcome = on_entry_extracted(item)
                        if inspect.isawaitable(outcome):
                            await outcome
                    except Exception as e:
                        logger.warning(f"Entry callback failed for {item.name}: {e}")
                        delivery_warnings.append(f"Callback failed for {item.name}: {e}")
            return delivery_warnings

        tasks = [
            asyncio.create_task(run_chunk(position, entries))
            for position, (_, entries) in enumerate(entry_lists)
        ]
        delivery_warnings = await deliver()
        outcomes = await asyncio.gather(*tasks)
        return [r for r in outcomes if r is not None], delivery_warnings
