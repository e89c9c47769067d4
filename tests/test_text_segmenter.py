"""Test chunk text extraction and relevance classification."""
import pytest

from conftest import make_pdf
from ingestion.cleaner import clean_text, find_special_regulations_section, is_noise_line
from ingestion.models import DocumentChunk
from ingestion.text_segmenter import TextSegmenter


def _chunk(data, index=0):
    return DocumentChunk(index=index, data=data, filename="regs.pdf", page_start=3, page_end=4, size_bytes=len(data))


def test_pymupdf_used_when_pdftotext_missing(monkeypatch):
    """Without pdftotext on PATH the PyMuPDF fallback extracts the text."""
    monkeypatch.setattr("ingestion.text_segmenter.shutil.which", lambda name: None)
    data = make_pdf([["WALLEYE LAKE (Test County) Daily limit 4."]])

    text_chunk = TextSegmenter().extract(_chunk(data))

    assert text_chunk.extraction_method == "pymupdf"
    assert "WALLEYE LAKE (Test County)" in text_chunk.text
    assert text_chunk.contains_relevant_content is True
    assert text_chunk.estimated_page_start == 3
    assert text_chunk.error is None


def test_broken_pdftotext_falls_back_to_pymupdf():
    """A pdftotext failure is logged and the next method is tried."""
    data = make_pdf([["Northern pike possession limit 3"]])
    segmenter = TextSegmenter(pdftotext_path="/nonexistent/bin/pdftotext")

    text_chunk = segmenter.extract(_chunk(data))

    assert text_chunk.extraction_method == "pymupdf"
    assert "possession limit 3" in text_chunk.text


def test_unreadable_chunk_never_raises():
    """When every method fails the chunk is empty, irrelevant and carries the error."""
    segmenter = TextSegmenter(pdftotext_path="")
    text_chunk = segmenter.extract(_chunk(b"garbage bytes"))

    assert text_chunk.text == ""
    assert text_chunk.contains_relevant_content is False
    assert text_chunk.error


def test_relevance_keywords():
    segmenter = TextSegmenter(keywords=["walleye", "daily limit"])

    assert segmenter.contains_relevant_content("WALLEYE season opens May 10")
    assert not segmenter.contains_relevant_content("Boat registration fees")
    assert not segmenter.contains_relevant_content("   ")


def test_split_text_respects_limit_and_order():
    """Large text is split at paragraph boundaries without losing content."""
    paragraph = "Walleye daily limit 4, minimum size 15 inches. " * 40
    text = "\n\n".join([paragraph.strip()] * 10)
    segmenter = TextSegmenter()

    chunks = segmenter.split_text(text, max_chars=5000, overlap=0)

    assert len(chunks) > 1
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.character_count <= 5000 for c in chunks)
    assert all(c.token_count > 0 for c in chunks)


def test_noise_lines():
    assert is_noise_line("17")
    assert is_noise_line("Page 12")
    assert is_noise_line("2025 Minnesota Fishing Regulations")
    assert not is_noise_line("Walleye: daily limit 4")


def test_clean_text_joins_hyphenated_words():
    assert clean_text("posses-\nsion limit   3\r\n") == "possession limit 3"


def test_special_section_uses_last_heading_and_stops_at_next_section():
    text = "\n".join([
        "CONTENTS",
        "WATERS WITH EXPERIMENTAL AND SPECIAL REGULATIONS",
        "BORDER WATERS",
        "WATERS WITH EXPERIMENTAL AND SPECIAL REGULATIONS",
        "WALLEYE LAKE (Test County) Daily limit 4.",
        "BORDER WATERS",
        "LAKE OF THE WOODS (Lake of the Woods) Walleye daily limit 6.",
    ])

    section = find_special_regulations_section(text)

    assert "WALLEYE LAKE (Test County)" in section
    assert "LAKE OF THE WOODS" not in section


def test_special_section_absent():
    assert find_special_regulations_section("General regulations only") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
