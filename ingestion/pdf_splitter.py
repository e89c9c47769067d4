"""Page-bounded PDF splitting for size-limited analysis services."""
import fitz  # PyMuPDF
from pathlib import Path
from typing import List

from utils.logger import setup_logger
from ingestion.models import DocumentChunk, SplitResult
import config

logger = setup_logger(__name__)


class SplitError(Exception):
    """Raised when a document cannot be parsed and therefore cannot be split."""
    pass


def open_pdf(data: bytes, filename: str) -> fitz.Document:
    """Open PDF bytes with PyMuPDF.

    Raises:
        SplitError: If the bytes are not a readable PDF
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise SplitError(f"Failed to open PDF {filename}: {e}") from e

    if doc.needs_pass:
        doc.close()
        raise SplitError(f"PDF {filename} is encrypted and cannot be split")

    if doc.page_count == 0:
        doc.close()
        raise SplitError(f"PDF {filename} has no pages")

    return doc


class PdfSplitter:
    """Splits oversized PDFs into chunks that never break a page."""

    def __init__(self, pages_per_chunk: int = config.PAGES_PER_CHUNK):
        """Initialize splitter.

        Args:
            pages_per_chunk: Starting page window for each chunk; halved
                while a candidate chunk is over the size limit
        """
        self.pages_per_chunk = max(1, pages_per_chunk)

    def split(
        self,
        document_bytes: bytes,
        filename: str,
        max_chunk_kb: int = config.MAX_CHUNK_KB
    ) -> SplitResult:
        """Split a PDF into size-bounded, page-aligned chunks.

        Args:
            document_bytes: Raw PDF bytes
            filename: Original file name (used for chunk names and logs)
            max_chunk_kb: Maximum serialized chunk size in KB

        Returns:
            SplitResult; ``required`` is False when the document already fits

        Raises:
            SplitError: If the document is not a parseable PDF
        """
        max_bytes = max_chunk_kb * 1024
        doc = open_pdf(document_bytes, filename)

        try:
            total_pages = doc.page_count

            if len(document_bytes) <= max_bytes:
                logger.info(
                    f"{filename} ({len(document_bytes)} bytes) is within limits, no splitting needed"
                )
                return SplitResult(
                    required=False,
                    total_pages=total_pages,
                    chunks=[
                        DocumentChunk(
                            index=0,
                            data=document_bytes,
                            filename=filename,
                            page_start=1,
                            page_end=total_pages,
                            size_bytes=len(document_bytes)
                        )
                    ]
                )

            logger.info(
                f"{filename} ({len(document_bytes)} bytes) exceeds limit ({max_bytes} bytes), "
                f"splitting {total_pages} pages"
            )
            warnings: List[str] = []
            chunks = self._split_pages(doc, filename, max_bytes, warnings)
        finally:
            doc.close()

        logger.info(f"Split {filename} into {len(chunks)} chunks")
        return SplitResult(
            required=True,
            chunks=chunks,
            total_pages=total_pages,
            warnings=warnings
        )

    def _split_pages(
        self,
        doc: fitz.Document,
        filename: str,
        max_bytes: int,
        warnings: List[str]
    ) -> List[DocumentChunk]:
        """Walk the document page by page, shrinking the window when needed."""
        chunks = []
        stem = Path(filename).stem
        total_pages = doc.page_count
        current_page = 1

        while current_page <= total_pages:
            window = min(self.pages_per_chunk, total_pages - current_page + 1)

            while True:
                page_end = current_page + window - 1
                data = self._build_chunk(doc, current_page, page_end)

                if len(data) <= max_bytes or window == 1:
                    break

                logger.debug(
                    f"Pages {current_page}-{page_end} serialize to {len(data) / 1024:.1f}KB, "
                    f"reducing window from {window}"
                )
                window = max(1, window // 2)

            if len(data) > max_bytes:
                message = (
                    f"Page {current_page} alone is {len(data) / 1024:.1f}KB, "
                    f"over the {max_bytes / 1024:.0f}KB limit; kept as a single-page chunk"
                )
                logger.warning(message)
                warnings.append(message)

            index = len(chunks)
            chunks.append(
                DocumentChunk(
                    index=index,
                    data=data,
                    filename=f"{stem}_chunk_{index + 1:02d}.pdf",
                    page_start=current_page,
                    page_end=page_end,
                    size_bytes=len(data)
                )
            )
            logger.info(
                f"Created chunk {index + 1}: pages {current_page}-{page_end}, "
                f"size {len(data) / 1024:.1f}KB"
            )
            current_page = page_end + 1

        return chunks

    def _build_chunk(self, doc: fitz.Document, page_start: int, page_end: int) -> bytes:
        """Serialize an inclusive 1-based page range into a standalone PDF."""
        chunk_doc = fitz.open()
        try:
            chunk_doc.insert_pdf(doc, from_page=page_start - 1, to_page=page_end - 1)
            return chunk_doc.tobytes(garbage=3, deflate=True)
        finally:
            chunk_doc.close()
