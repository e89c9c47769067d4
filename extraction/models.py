"""Pydantic models for AI regulation extraction, merge and validation."""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class RegulationKind(str, Enum):
    """Regulation kind tag for one species rule."""
    DAILY_LIMIT = "daily-limit"
    POSSESSION_LIMIT = "possession-limit"
    SIZE_LIMIT = "size-limit"
    PROTECTED_SLOT = "protected-slot"
    CATCH_AND_RELEASE = "catch-and-release"
    SEASONAL = "seasonal"
    COMBINED = "combined"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["RegulationKind"]:
        """Map backend spellings (dailyLimit, DAILY_LIMIT, "daily limit") to a kind."""
        if value is None:
            return None
        if isinstance(value, RegulationKind):
            return value
        key = "".join(c for c in str(value).lower() if c.isalnum())
        for kind in cls:
            if kind.value.replace("-", "") == key:
                return kind
        return None


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SpeciesRule(BaseModel):
    """A regulation rule for one species on one water body."""
    model_config = ConfigDict(frozen=True)

    species: str
    regulation_type: RegulationKind = RegulationKind.COMBINED
    daily_limit: Optional[int] = None
    possession_limit: Optional[int] = None
    minimum_size: Optional[str] = None  # e.g. "15 inches"
    maximum_size: Optional[str] = None
    protected_slot: Optional[str] = None  # e.g. "20-24 inches (1 fish allowed)"
    season_info: Optional[str] = None
    catch_and_release: bool = False
    notes: str = ""
    confidence: float = 1.0  # Confidence of the entry this rule came from


class ExtractedRegulation(BaseModel):
    """Structured regulations for one water body, as produced by the AI step."""
    model_config = ConfigDict(frozen=True)

    name: str
    locality: str = ""
    rules: List[SpeciesRule] = Field(default_factory=list)
    general_notes: str = ""
    is_experimental: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source_chunks: List[int] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    """Outcome of extracting one chunk (or one whole streamed document)."""
    success: bool = False
    status: ExtractionStatus = ExtractionStatus.FAILED
    regulations: List[ExtractedRegulation] = Field(default_factory=list)
    error_message: str = ""
    lakes_processed: int = 0
    regulations_extracted: int = 0
    elapsed_seconds: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    cancelled: bool = False


class MergedExtractionResult(ExtractionResult):
    """Extraction results deduplicated across chunks."""
    merge_warnings: List[str] = Field(default_factory=list)
    source_count: int = 0


class ValidationResult(BaseModel):
    """A cleaned regulation plus what validation found."""
    is_valid: bool
    cleaned: Optional[ExtractedRegulation] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
