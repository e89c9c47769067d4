"""SQLite database operations for the regulation entity graph."""
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from utils.logger import setup_logger
import config

logger = setup_logger(__name__)

REGULATION_COLUMNS = (
    "water_body_id", "species_id", "regulation_year", "source_document_id",
    "regulation_type", "effective_date", "expiration_date", "is_catch_and_release",
    "daily_limit", "possession_limit", "minimum_size_inches", "maximum_size_inches",
    "protected_slot_min_inches", "protected_slot_max_inches", "protected_slot_exceptions",
    "size_limit_notes", "season_notes", "is_year_round", "special_regulations", "notes",
    "is_experimental", "confidence", "provenance", "needs_review", "is_active",
)
_KEY_COLUMNS = ("water_body_id", "species_id", "regulation_year")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Manages SQLite database operations."""

    def __init__(self, db_path: Path = config.DB_PATH):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _initialize_schema(self):
        """Create tables if they don't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        with self._get_connection() as conn:
            conn.executescript(schema_sql)
            conn.commit()

        logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def find_water_bodies(self, normalized_name: str, state: str) -> List[Dict[str, Any]]:
        """Water bodies in a state whose normalized name matches.

        Args:
            normalized_name: Case-folded, whitespace-collapsed name
            state: State the water body belongs to

        Returns:
            Matching water body dicts, oldest first
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM water_bodies WHERE normalized_name = ? AND state = ? ORDER BY id",
                (normalized_name, state)
            ).fetchall()
            return [dict(row) for row in rows]

    def insert_water_body(self, water_body: Dict[str, Any]) -> int:
        """Insert a water body.

        Args:
            water_body: Column values (name, normalized_name, state, county,
                water_type, provenance, needs_review)

        Returns:
            New row id
        """
        now = _now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO water_bodies (name, normalized_name, state, county, water_type,
                                          provenance, needs_review, is_active, created_at, updated_at)
                VALUES (:name, :normalized_name, :state, :county, :water_type,
                        :provenance, :needs_review, :is_active, :created_at, :updated_at)
                """,
                {**water_body, "created_at": now, "updated_at": now}
            )
            conn.commit()

        logger.info(f"Inserted water body: {water_body['name']} (ID: {cursor.lastrowid})")
        return cursor.lastrowid

    def find_species(self, common_name: str) -> List[Dict[str, Any]]:
        """Species whose common name matches case-insensitively."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM fish_species WHERE lower(common_name) = lower(?) ORDER BY id",
                (common_name,)
            ).fetchall()
            return [dict(row) for row in rows]

    def insert_species(self, species: Dict[str, Any]) -> int:
        """Insert a fish species and return its row id."""
        now = _now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO fish_species (common_name, scientific_name, species_code, provenance,
                                          needs_review, is_active, created_at, updated_at)
                VALUES (:common_name, :scientific_name, :species_code, :provenance,
                        :needs_review, :is_active, :created_at, :updated_at)
                """,
                {**species, "created_at": now, "updated_at": now}
            )
            conn.commit()

        logger.info(f"Inserted fish species: {species['common_name']} (ID: {cursor.lastrowid})")
        return cursor.lastrowid

    def get_regulation(
        self,
        water_body_id: int,
        species_id: int,
        regulation_year: int
    ) -> Optional[Dict[str, Any]]:
        """Fetch the regulation row for a (water body, species, year) key."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM fishing_regulations
                WHERE water_body_id = ? AND species_id = ? AND regulation_year = ?
                """,
                (water_body_id, species_id, regulation_year)
            ).fetchone()
            return dict(row) if row else None

    def upsert_regulation(self, regulation: Dict[str, Any]) -> int:
        """Insert a regulation row or update the existing row for its key in place.

        Args:
            regulation: Values for every column in REGULATION_COLUMNS

        Returns:
            Row id of the inserted or updated regulation
        """
        now = _now()
        columns = ", ".join(REGULATION_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in REGULATION_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in REGULATION_COLUMNS if c not in _KEY_COLUMNS)

        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO fishing_regulations ({columns}, created_at, updated_at)
                VALUES ({placeholders}, :created_at, :updated_at)
                ON CONFLICT (water_body_id, species_id, regulation_year)
                DO UPDATE SET {updates}, updated_at = excluded.updated_at
                """,
                {**{c: regulation.get(c) for c in REGULATION_COLUMNS}, "created_at": now, "updated_at": now}
            )
            row = conn.execute(
                """
                SELECT id FROM fishing_regulations
                WHERE water_body_id = ? AND species_id = ? AND regulation_year = ?
                """,
                tuple(regulation[c] for c in _KEY_COLUMNS)
            ).fetchone()
            conn.commit()

        return row["id"]

    def get_regulations(self, regulation_year: Optional[int] = None) -> List[Dict[str, Any]]:
        """Regulation rows joined with water body and species names.

        Args:
            regulation_year: Restrict to one year when given

        Returns:
            List of regulation dicts ordered by water body then species
        """
        query = """
            SELECT r.*, w.name AS water_body_name, s.common_name AS species_name
            FROM fishing_regulations r
            JOIN water_bodies w ON w.id = r.water_body_id
            JOIN fish_species s ON s.id = r.species_id
        """
        params: tuple = ()
        if regulation_year is not None:
            query += " WHERE r.regulation_year = ?"
            params = (regulation_year,)
        query += " ORDER BY w.name, s.common_name"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [dict(row) for row in rows]

    def insert_audit(self, audit: Dict[str, Any]) -> int:
        """Append an audit entry (JSON fields already serialized)."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO regulation_audit (regulation_id, action, source_document_id,
                                              changed_fields, old_values, new_values, created_at)
                VALUES (:regulation_id, :action, :source_document_id,
                        :changed_fields, :old_values, :new_values, :created_at)
                """,
                {**audit, "created_at": _now()}
            )
            conn.commit()
        return cursor.lastrowid

    def get_audit_entries(self, regulation_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Audit entries, optionally for one regulation, oldest first."""
        with self._get_connection() as conn:
            if regulation_id is None:
                rows = conn.execute("SELECT * FROM regulation_audit ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM regulation_audit WHERE regulation_id = ? ORDER BY id",
                    (regulation_id,)
                ).fetchall()
            return [dict(row) for row in rows]

    def insert_population_run(self, run: Dict[str, Any]) -> None:
        """Insert a population run record.

        Args:
            run: Run id, source document, year, status, timestamps, counts and report JSON
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO population_runs (id, source_document_id, regulation_year, status,
                                             started_at, completed_at, lakes_processed,
                                             water_bodies_created, species_created,
                                             regulations_created, regulations_updated,
                                             regulations_unchanged, report_json)
                VALUES (:id, :source_document_id, :regulation_year, :status,
                        :started_at, :completed_at, :lakes_processed,
                        :water_bodies_created, :species_created,
                        :regulations_created, :regulations_updated,
                        :regulations_unchanged, :report_json)
                """,
                run
            )
            conn.commit()

        logger.info(f"Recorded population run {run['id']} ({run['status']})")

    def get_population_runs(self, source_document_id: str) -> List[Dict[str, Any]]:
        """Population runs for a source document, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM population_runs WHERE source_document_id = ? ORDER BY started_at",
                (source_document_id,)
            ).fetchall()
            return [dict(row) for row in rows]

    def count_rows(self, table: str) -> int:
        """Row count of one of the schema's tables."""
        if table not in ("water_bodies", "fish_species", "fishing_regulations",
                         "regulation_audit", "population_runs"):
            raise ValueError(f"Unknown table: {table}")
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
