"""Plain-text extraction and relevance classification for document chunks."""
import re
import shutil
import subprocess
import tempfile
import fitz  # PyMuPDF
from pathlib import Path
from typing import Iterable, List, Optional

from utils.logger import setup_logger
from utils.tokens import count_tokens
from ingestion.cleaner import clean_text
from ingestion.models import DocumentChunk, TextChunk
import config

logger = setup_logger(__name__)

MIN_TEXT_CHUNK_CHARS = 1000


class TextSegmenter:
    """Extracts text per chunk: pdftotext when installed, PyMuPDF otherwise."""

    def __init__(
        self,
        keywords: Optional[Iterable[str]] = None,
        pdftotext_path: Optional[str] = None,
        timeout_seconds: int = 120
    ):
        """Initialize segmenter.

        Args:
            keywords: Relevant-content terms (defaults to config.RELEVANT_KEYWORDS)
            pdftotext_path: Explicit pdftotext binary; looked up on PATH if omitted
            timeout_seconds: Timeout for one pdftotext invocation
        """
        self.keywords = [k.lower() for k in (keywords if keywords is not None else config.RELEVANT_KEYWORDS)]
        self.timeout_seconds = timeout_seconds
        self._pdftotext_path = pdftotext_path
        self._pdftotext_checked = pdftotext_path is not None

    @property
    def pdftotext_path(self) -> Optional[str]:
        """Resolved pdftotext binary, probed once per segmenter."""
        if not self._pdftotext_checked:
            self._pdftotext_path = shutil.which("pdftotext")
            self._pdftotext_checked = True
            if self._pdftotext_path is None:
                logger.info("pdftotext not found on PATH, using PyMuPDF for text extraction")
        return self._pdftotext_path

    def extract(self, chunk: DocumentChunk) -> TextChunk:
        """Extract plain text from a document chunk.

        Never raises: when every method fails the TextChunk carries empty
        text, ``contains_relevant_content=False`` and the error.

        Args:
            chunk: Page-bounded PDF chunk

        Returns:
            TextChunk for the chunk
        """
        errors = []

        methods = []
        if self.pdftotext_path:
            methods.append(("pdftotext", self._extract_with_pdftotext))
        methods.append(("pymupdf", self._extract_with_pymupdf))

        for method_name, method in methods:
            try:
                text = method(chunk.data)
            except Exception as e:
                logger.warning(f"{method_name} failed for chunk {chunk.index} ({chunk.filename}): {e}")
                errors.append(f"{method_name}: {e}")
                continue

            if text.strip():
                logger.info(
                    f"Extracted {len(text)} characters from chunk {chunk.index} "
                    f"(pages {chunk.page_start}-{chunk.page_end}) using {method_name}"
                )
                return self._build_chunk(chunk.index, text, method_name, chunk.page_start)

            errors.append(f"{method_name}: no text extracted")

        logger.warning(f"No text extracted from chunk {chunk.index}: {'; '.join(errors)}")
        return TextChunk(
            index=chunk.index,
            estimated_page_start=chunk.page_start,
            estimated_page_end=chunk.page_end,
            error="; ".join(errors)
        )

    def from_text(self, index: int, text: str, page_offset: int = 1) -> TextChunk:
        """Build a TextChunk for text that did not come from a PDF."""
        return self._build_chunk(index, text, "plain-text", page_offset)

    def contains_relevant_content(self, text: str) -> bool:
        """Keyword match against the relevant-content term set."""
        if not text or not text.strip():
            return False
        lower = text.lower()
        return any(keyword in lower for keyword in self.keywords)

    def split_text(
        self,
        text: str,
        max_chars: int = config.TEXT_CHUNK_CHARS,
        overlap: int = config.TEXT_CHUNK_OVERLAP
    ) -> List[TextChunk]:
        """Split a large text into chunks at natural boundaries.

        Breaks prefer a paragraph, then a sentence, a line, and finally a
        word boundary. Each chunk after the first is prefixed with up to
        ``overlap`` characters of the previous one for context.

        Args:
            text: Text to split
            max_chars: Maximum characters per chunk (before overlap)
            overlap: Characters carried over from the previous chunk

        Returns:
            Ordered TextChunks
        """
        if not text.strip():
            return []

        if len(text) <= max_chars:
            return [self.from_text(0, text)]

        chunks = []
        position = 0
        while position < len(text):
            end = min(position + max_chars, len(text))
            if end < len(text):
                end = self._find_break_point(text, position, end)

            content = text[position:end]
            if position > 0 and overlap > 0:
                content = text[max(0, position - overlap):position] + content

            page_start = position // config.CHARS_PER_PAGE + 1
            chunk = self._build_chunk(len(chunks), content, "plain-text", page_start)
            chunk.estimated_page_end = max(page_start, end // config.CHARS_PER_PAGE + 1)
            chunks.append(chunk)
            position = end

        logger.info(f"Split {len(text)} characters into {len(chunks)} text chunks")
        return chunks

    def _build_chunk(self, index: int, text: str, method: str, page_start: int) -> TextChunk:
        text = clean_text(text)
        estimated_pages = max(1, len(text) // config.CHARS_PER_PAGE)
        return TextChunk(
            index=index,
            text=text,
            contains_relevant_content=self.contains_relevant_content(text),
            estimated_page_start=page_start,
            estimated_page_end=page_start + estimated_pages - 1,
            extraction_method=method,
            token_count=count_tokens(text)
        )

    def _find_break_point(self, text: str, start: int, max_end: int) -> int:
        floor = start + MIN_TEXT_CHUNK_CHARS

        paragraph = text.rfind("\n\n", start, max_end)
        if paragraph > floor:
            return paragraph + 2

        sentence_ends = [m.end() for m in re.finditer(r'[.!?]\s', text[start:max_end])]
        if sentence_ends and start + sentence_ends[-1] > floor:
            return start + sentence_ends[-1]

        line = text.rfind("\n", start, max_end)
        if line > floor:
            return line + 1

        word = text.rfind(" ", max(start, max_end - 200), max_end)
        if word > floor:
            return word + 1

        return max_end

    def _extract_with_pdftotext(self, data: bytes) -> str:
        with tempfile.TemporaryDirectory() as tmp:
            pdf_path = Path(tmp) / "chunk.pdf"
            txt_path = Path(tmp) / "chunk.txt"
            pdf_path.write_bytes(data)

            completed = subprocess.run(
                [self.pdftotext_path, str(pdf_path), str(txt_path)],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds
            )
            if completed.returncode != 0:
                raise RuntimeError(
                    f"pdftotext exited with code {completed.returncode}: {completed.stderr.strip()}"
                )
            if not txt_path.exists():
                raise RuntimeError("pdftotext did not create an output file")
            return txt_path.read_text(encoding="utf-8", errors="replace")

    def _extract_with_pymupdf(self, data: bytes) -> str:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            return "\n".join(page.get_text() for page in doc)
        finally:
            doc.close()
