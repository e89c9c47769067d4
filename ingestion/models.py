"""Pydantic models for ingestion module."""
from pathlib import Path
from pydantic import BaseModel, Field
from typing import List, Optional

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf", "application/acrobat"}
TEXT_CONTENT_TYPES = {"text/plain"}


class RawDocument(BaseModel):
    """A document as received from the caller. Exists only during ingestion."""
    data: bytes
    content_type: str = "application/pdf"
    filename: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_pdf(self) -> bool:
        content_type = self.content_type.split(";")[0].strip().lower()
        if content_type in PDF_CONTENT_TYPES:
            return True
        if content_type in ("", "application/octet-stream"):
            return Path(self.filename).suffix.lower() == ".pdf"
        return False

    @property
    def is_text(self) -> bool:
        return self.content_type.split(";")[0].strip().lower() in TEXT_CONTENT_TYPES

    @classmethod
    def from_path(cls, path: str) -> "RawDocument":
        """Load a document from disk, inferring the content type from the suffix."""
        path = Path(path)
        content_type = "text/plain" if path.suffix.lower() in (".txt", ".text") else "application/pdf"
        return cls(data=path.read_bytes(), content_type=content_type, filename=path.name)


class DocumentChunk(BaseModel):
    """A page-bounded sub-document produced by the splitter."""
    index: int
    data: bytes
    filename: str
    page_start: int
    page_end: int
    size_bytes: int

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1


class SplitResult(BaseModel):
    """Result of splitting a document for size compliance."""
    required: bool
    chunks: List[DocumentChunk] = Field(default_factory=list)
    total_pages: int = 0
    warnings: List[str] = Field(default_factory=list)


class TextChunk(BaseModel):
    """Plain text extracted from one document chunk."""
    index: int
    text: str = ""
    contains_relevant_content: bool = False
    estimated_page_start: int = 1
    estimated_page_end: int = 1
    extraction_method: str = "none"
    token_count: int = 0
    error: Optional[str] = None

    @property
    def character_count(self) -> int:
        return len(self.text)


class LakeEntry(BaseModel):
    """One water body's regulation text before AI structuring."""
    name: str
    locality: str = ""
    raw_text: str = ""
    chunk_index: int = 0
