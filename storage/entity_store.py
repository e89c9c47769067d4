"""Async entity store used by the population engine."""
import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from utils.logger import setup_logger
from extraction.merger import normalize_key
from population.models import AuditEntry, FishSpecies, PopulationResult, RegulationRecord, WaterBody
from storage.database import Database
import config

logger = setup_logger(__name__)


class EntityStore(ABC):
    """Find-by-name and upsert-by-key access to water bodies, species and regulations."""

    @abstractmethod
    async def find_water_body(self, name: str, state: str) -> List[WaterBody]:
        """Water bodies in ``state`` whose name matches after normalization."""

    @abstractmethod
    async def add_water_body(self, water_body: WaterBody) -> WaterBody:
        """Insert a water body and return it with its id."""

    @abstractmethod
    async def find_species(self, common_name: str) -> List[FishSpecies]:
        """Species whose common name matches case-insensitively."""

    @abstractmethod
    async def add_species(self, species: FishSpecies) -> FishSpecies:
        """Insert a species and return it with its id."""

    @abstractmethod
    async def get_regulation(
        self,
        water_body_id: int,
        species_id: int,
        regulation_year: int
    ) -> Optional[RegulationRecord]:
        """Regulation for a (water body, species, year) key, if any."""

    @abstractmethod
    async def upsert_regulation(self, record: RegulationRecord) -> RegulationRecord:
        """Insert or update in place by (water body, species, year)."""

    @abstractmethod
    async def append_audit(self, entry: AuditEntry) -> None:
        """Append one regulation audit entry."""

    @abstractmethod
    async def record_population_run(self, result: PopulationResult) -> str:
        """Persist a population report and return its run id."""


class SQLiteEntityStore(EntityStore):
    """EntityStore over the SQLite Database; blocking calls run in a worker thread."""

    def __init__(self, database: Optional[Database] = None, db_path: Path = config.DB_PATH):
        self.database = database or Database(db_path)

    async def find_water_body(self, name: str, state: str) -> List[WaterBody]:
        rows = await asyncio.to_thread(self.database.find_water_bodies, normalize_key(name), state)
        return [WaterBody.model_validate(row) for row in rows]

    async def add_water_body(self, water_body: WaterBody) -> WaterBody:
        values = water_body.model_dump(mode="json", exclude={"id"})
        values["normalized_name"] = normalize_key(water_body.name)
        row_id = await asyncio.to_thread(self.database.insert_water_body, values)
        return water_body.model_copy(update={"id": row_id})

    async def find_species(self, common_name: str) -> List[FishSpecies]:
        rows = await asyncio.to_thread(self.database.find_species, common_name)
        return [FishSpecies.model_validate(row) for row in rows]

    async def add_species(self, species: FishSpecies) -> FishSpecies:
        values = species.model_dump(mode="json", exclude={"id"})
        row_id = await asyncio.to_thread(self.database.insert_species, values)
        return species.model_copy(update={"id": row_id})

    async def get_regulation(
        self,
        water_body_id: int,
        species_id: int,
        regulation_year: int
    ) -> Optional[RegulationRecord]:
        row = await asyncio.to_thread(
            self.database.get_regulation, water_body_id, species_id, regulation_year
        )
        return self._to_record(row) if row else None

    async def upsert_regulation(self, record: RegulationRecord) -> RegulationRecord:
        values = record.model_dump(mode="json", exclude={"id"})
        values["special_regulations"] = json.dumps(values["special_regulations"])
        row_id = await asyncio.to_thread(self.database.upsert_regulation, values)
        return record.model_copy(update={"id": row_id})

    async def append_audit(self, entry: AuditEntry) -> None:
        values = entry.model_dump(mode="json")
        for field in ("changed_fields", "old_values", "new_values"):
            values[field] = json.dumps(values[field])
        await asyncio.to_thread(self.database.insert_audit, values)

    async def record_population_run(self, result: PopulationResult) -> str:
        run_id = result.run_id or str(uuid.uuid4())
        report = result.model_copy(update={"run_id": run_id})
        run = {
            "id": run_id,
            "source_document_id": result.source_document_id,
            "regulation_year": result.regulation_year,
            "status": result.status,
            "started_at": result.started_at.isoformat() if result.started_at else None,
            "completed_at": result.completed_at.isoformat() if result.completed_at else None,
            "lakes_processed": result.lakes_processed,
            "water_bodies_created": result.water_bodies_created,
            "species_created": result.species_created,
            "regulations_created": result.regulations_created,
            "regulations_updated": result.regulations_updated,
            "regulations_unchanged": result.regulations_unchanged,
            "report_json": report.model_dump_json(),
        }
        await asyncio.to_thread(self.database.insert_population_run, run)
        return run_id

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> RegulationRecord:
        values = dict(row)
        values["special_regulations"] = json.loads(values.get("special_regulations") or "[]")
        return RegulationRecord.model_validate(values)
