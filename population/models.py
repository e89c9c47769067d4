"""Pydantic models for the persisted regulation entity graph."""
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, ClassVar, Dict, List, Optional, Set


class Provenance(str, Enum):
    """Where an entity came from; AI-created entities are triaged by a human."""
    CURATED = "curated"
    AI_EXTRACTED = "ai_extracted"


class WaterBody(BaseModel):
    id: Optional[int] = None
    name: str
    state: str
    county: str = ""
    water_type: str = "lake"
    provenance: Provenance = Provenance.CURATED
    needs_review: bool = False
    is_active: bool = True


class FishSpecies(BaseModel):
    id: Optional[int] = None
    common_name: str
    scientific_name: Optional[str] = None
    species_code: Optional[str] = None
    provenance: Provenance = Provenance.CURATED
    needs_review: bool = False
    is_active: bool = True


class RegulationRecord(BaseModel):
    """One regulation row, unique per (water body, species, regulation year)."""
    id: Optional[int] = None
    water_body_id: int
    species_id: int
    regulation_year: int
    source_document_id: str
    regulation_type: str = "combined"
    effective_date: date
    expiration_date: Optional[date] = None
    is_catch_and_release: bool = False
    daily_limit: Optional[int] = None
    possession_limit: Optional[int] = None
    minimum_size_inches: Optional[float] = None
    maximum_size_inches: Optional[float] = None
    protected_slot_min_inches: Optional[float] = None
    protected_slot_max_inches: Optional[float] = None
    protected_slot_exceptions: Optional[int] = None
    size_limit_notes: str = ""
    season_notes: Optional[str] = None
    is_year_round: bool = True
    special_regulations: List[str] = Field(default_factory=list)
    notes: str = ""
    is_experimental: bool = False
    confidence: float = 0.0
    provenance: Provenance = Provenance.AI_EXTRACTED
    needs_review: bool = False
    is_active: bool = True

    # Key columns never count as a change
    IDENTITY_FIELDS: ClassVar[Set[str]] = {"id", "water_body_id", "species_id", "regulation_year"}

    def content(self) -> Dict[str, Any]:
        """Comparable field values, JSON-ready."""
        return self.model_dump(mode="json", exclude=self.IDENTITY_FIELDS)

    def diff(self, other: "RegulationRecord") -> Dict[str, Dict[str, Any]]:
        """Fields whose value differs, as ``{field: {"before": ..., "after": ...}}``."""
        before = self.content()
        after = other.content()
        return {
            field: {"before": before[field], "after": after[field]}
            for field in after
            if before.get(field) != after[field]
        }


class AuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class AuditEntry(BaseModel):
    regulation_id: int
    action: AuditAction
    source_document_id: str
    changed_fields: List[str] = Field(default_factory=list)
    old_values: Dict[str, Any] = Field(default_factory=dict)
    new_values: Dict[str, Any] = Field(default_factory=dict)


class PopulationResult(BaseModel):
    """Report of one population run; persisted as the run's audit record."""
    success: bool = False
    run_id: Optional[str] = None
    source_document_id: str = ""
    regulation_year: int = 0
    lakes_processed: int = 0
    water_bodies_created: int = 0
    water_bodies_matched: int = 0
    species_created: int = 0
    species_matched: int = 0
    regulations_created: int = 0
    regulations_updated: int = 0
    regulations_unchanged: int = 0
    regulations_rejected: int = 0
    excluded: List[str] = Field(default_factory=list)  # "name: reasons" per rejected regulation
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    elapsed_seconds: float = 0.0

    @property
    def status(self) -> str:
        if self.success:
            return "completed"
        if self.regulations_created or self.regulations_updated or self.regulations_unchanged:
            return "partial"
        return "failed"
