"""Test PDF splitting."""
import fitz  # PyMuPDF
import pytest

from conftest import make_pdf
from ingestion.pdf_splitter import PdfSplitter, SplitError


def _pages(count):
    return [
        [f"Page {n} of the regulation booklet"] + [f"Line {i}: daily limit {i % 6}" for i in range(30)]
        for n in range(1, count + 1)
    ]


def test_small_document_not_split():
    """A document under the limit comes back whole."""
    data = make_pdf(_pages(3))
    result = PdfSplitter().split(data, "regs.pdf", max_chunk_kb=4000)

    assert result.required is False
    assert result.total_pages == 3
    assert len(result.chunks) == 1
    assert result.chunks[0].data == data
    assert (result.chunks[0].page_start, result.chunks[0].page_end) == (1, 3)


def test_split_chunks_cover_every_page_in_order():
    """Chunks are contiguous, page-aligned and start at page 1."""
    data = make_pdf(_pages(12))
    result = PdfSplitter(pages_per_chunk=4).split(data, "regs.pdf", max_chunk_kb=1)

    assert result.required is True
    assert result.chunks[0].page_start == 1
    assert result.chunks[-1].page_end == 12
    for previous, chunk in zip(result.chunks, result.chunks[1:]):
        assert chunk.page_start == previous.page_end + 1
    assert [c.index for c in result.chunks] == list(range(len(result.chunks)))


def test_split_chunks_are_valid_pdfs():
    """Each chunk opens on its own with the expected page count."""
    data = make_pdf(_pages(6))
    result = PdfSplitter(pages_per_chunk=2).split(data, "booklet.pdf", max_chunk_kb=1)

    for chunk in result.chunks:
        doc = fitz.open(stream=chunk.data, filetype="pdf")
        assert doc.page_count == chunk.page_count
        doc.close()
        assert chunk.size_bytes == len(chunk.data)
        assert chunk.filename == f"booklet_chunk_{chunk.index + 1:02d}.pdf"


def test_oversized_chunks_are_single_pages_with_warning():
    """Only a single page may exceed the limit, and each one is reported."""
    data = make_pdf(_pages(5))
    max_kb = 1
    result = PdfSplitter(pages_per_chunk=10).split(data, "regs.pdf", max_chunk_kb=max_kb)

    oversized = [c for c in result.chunks if c.size_bytes > max_kb * 1024]
    for chunk in oversized:
        assert chunk.page_count == 1
    assert len(result.warnings) == len(oversized)


def test_generous_limit_splits_by_page_window():
    """When everything fits, chunks follow the starting page window."""
    data = make_pdf(_pages(7))
    size_kb = len(data) // 1024
    result = PdfSplitter(pages_per_chunk=3).split(data, "regs.pdf", max_chunk_kb=max(size_kb - 1, 1))

    assert result.required is True
    assert all(c.page_count <= 3 for c in result.chunks)
    assert sum(c.page_count for c in result.chunks) == 7


def test_corrupt_document_raises():
    """Unparseable input is the one hard failure."""
    with pytest.raises(SplitError):
        PdfSplitter().split(b"this is not a pdf", "broken.pdf", max_chunk_kb=4000)


def test_corrupt_document_raises_even_when_small():
    """The size fast path still validates the document."""
    with pytest.raises(SplitError):
        PdfSplitter().split(b"%PDF-1.4 truncated", "broken.pdf", max_chunk_kb=1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
