"""Test population of the regulation entity graph."""
import asyncio
import json

import pytest

from extraction.models import ExtractedRegulation, ExtractionStatus, MergedExtractionResult, SpeciesRule
from population.models import FishSpecies, PopulationResult, Provenance, WaterBody
from population.populator import PopulationEngine, combine_rules
from population.species import normalize_species_name, normalize_water_body_name
from storage.entity_store import SQLiteEntityStore

YEAR = 2025


def _merged(*regulations, status=ExtractionStatus.SUCCESS):
    return MergedExtractionResult(success=status != ExtractionStatus.FAILED, status=status, regulations=list(regulations))


def _walleye_lake(daily_limit=4, **rule_values):
    return ExtractedRegulation(
        name="WALLEYE LAKE",
        locality="Test County",
        rules=[SpeciesRule(species="Walleye", daily_limit=daily_limit, minimum_size="15", **rule_values)],
        confidence=0.9
    )


def _lake(name, *rules, locality="Cass"):
    return ExtractedRegulation(name=name, locality=locality, rules=list(rules), confidence=0.9)


def test_scenario_creates_water_body_species_and_regulation(store, database):
    engine = PopulationEngine(store, default_state="Minnesota")

    result = asyncio.run(engine.populate(_merged(_walleye_lake()), "doc-1", YEAR))

    assert result.success is True
    assert (result.water_bodies_created, result.species_created, result.regulations_created) == (1, 1, 1)

    water_bodies = asyncio.run(store.find_water_body("walleye lake", "Minnesota"))
    assert [wb.name for wb in water_bodies] == ["Walleye Lake"]
    assert water_bodies[0].provenance == Provenance.AI_EXTRACTED
    assert water_bodies[0].needs_review is True
    assert water_bodies[0].county == "Test County"

    rows = database.get_regulations(YEAR)
    assert len(rows) == 1
    assert rows[0]["daily_limit"] == 4
    assert rows[0]["minimum_size_inches"] == 15.0
    assert rows[0]["species_name"] == "Walleye"
    assert rows[0]["effective_date"] == "2025-01-01"
    assert rows[0]["expiration_date"] == "2025-12-31"
    assert rows[0]["is_year_round"] == 1


def test_population_is_idempotent(store, database):
    engine = PopulationEngine(store)
    merged = _merged(_walleye_lake(), _lake("FOX LAKE", SpeciesRule(species="pike", daily_limit=2)))

    first = asyncio.run(engine.populate(merged, "doc-1", YEAR))
    counts = {t: database.count_rows(t) for t in ("water_bodies", "fish_species", "fishing_regulations", "regulation_audit")}
    second = asyncio.run(engine.populate(merged, "doc-1", YEAR))

    assert first.regulations_created == 2
    assert second.regulations_created == 0
    assert second.regulations_unchanged == 2
    assert second.water_bodies_created == 0
    assert second.water_bodies_matched == 2
    assert {t: database.count_rows(t) for t in counts} == counts
    assert len(database.get_population_runs("doc-1")) == 2


def test_changed_values_update_in_place_with_audit(store, database):
    engine = PopulationEngine(store)
    asyncio.run(engine.populate(_merged(_walleye_lake(daily_limit=4)), "doc-1", YEAR))

    result = asyncio.run(engine.populate(_merged(_walleye_lake(daily_limit=5)), "doc-1", YEAR))

    assert result.regulations_updated == 1
    assert database.count_rows("fishing_regulations") == 1
    audits = database.get_audit_entries()
    assert [a["action"] for a in audits] == ["created", "updated"]
    update = audits[-1]
    assert json.loads(update["changed_fields"]) == ["daily_limit"]
    assert json.loads(update["old_values"]) == {"daily_limit": 4}
    assert json.loads(update["new_values"]) == {"daily_limit": 5}


def test_new_year_is_a_new_row(store, database):
    engine = PopulationEngine(store)

    asyncio.run(engine.populate(_merged(_walleye_lake()), "doc-2024", 2024))
    asyncio.run(engine.populate(_merged(_walleye_lake()), "doc-2025", 2025))

    assert database.count_rows("fishing_regulations") == 2
    assert database.count_rows("water_bodies") == 1


def test_existing_catalog_entries_are_matched(store, database):
    asyncio.run(store.add_water_body(WaterBody(name="Walleye Lake", state="Minnesota", county="Test County")))
    asyncio.run(store.add_species(FishSpecies(common_name="Northern Pike", scientific_name="Esox lucius")))
    engine = PopulationEngine(store, default_state="Minnesota")
    lake = _lake("WALLEYE  LAKE", SpeciesRule(species="pike", daily_limit=2), locality="Test County")

    result = asyncio.run(engine.populate(_merged(lake), "doc-1", YEAR))

    assert (result.water_bodies_created, result.water_bodies_matched) == (0, 1)
    assert (result.species_created, result.species_matched) == (0, 1)
    assert database.count_rows("water_bodies") == 1
    assert database.count_rows("fish_species") == 1


def test_water_body_outside_default_state_is_not_matched(store, database):
    asyncio.run(store.add_water_body(WaterBody(name="Walleye Lake", state="Wisconsin")))
    engine = PopulationEngine(store, default_state="Minnesota")

    result = asyncio.run(engine.populate(_merged(_walleye_lake()), "doc-1", YEAR))

    assert result.water_bodies_created == 1
    assert database.count_rows("water_bodies") == 2


def test_ambiguous_species_fails_only_that_lake(store, database):
    asyncio.run(store.add_species(FishSpecies(common_name="Walleye")))
    asyncio.run(store.add_species(FishSpecies(common_name="WALLEYE")))
    engine = PopulationEngine(store)
    merged = _merged(_walleye_lake(), _lake("FOX LAKE", SpeciesRule(species="Bluegill", daily_limit=10)))

    result = asyncio.run(engine.populate(merged, "doc-1", YEAR))

    assert result.success is False
    assert len(result.errors) == 1
    assert "WALLEYE LAKE" in result.errors[0] or "Walleye Lake" in result.errors[0]
    assert result.regulations_created == 1
    assert [r["water_body_name"] for r in database.get_regulations()] == ["Fox Lake"]
    assert result.lakes_processed == 2


def test_store_failure_fails_only_that_lake(database):
    class FlakyStore(SQLiteEntityStore):
        async def add_water_body(self, water_body):
            if water_body.name == "Bad Lake":
                raise RuntimeError("disk full")
            return await super().add_water_body(water_body)

    engine = PopulationEngine(FlakyStore(database))
    merged = _merged(
        _lake("BAD LAKE", SpeciesRule(species="Walleye", daily_limit=4)),
        _lake("GOOD LAKE", SpeciesRule(species="Walleye", daily_limit=4)),
    )

    result = asyncio.run(engine.populate(merged, "doc-1", YEAR))

    assert result.errors == ["Lake BAD LAKE: disk full"]
    assert result.regulations_created == 1
    assert result.status == "partial"


def test_invalid_regulation_is_rejected_and_reported(store, database):
    engine = PopulationEngine(store)
    bad = _lake("ODD LAKE", SpeciesRule(species="Walleye", minimum_size="20", maximum_size="15"))

    result = asyncio.run(engine.populate(_merged(bad, _walleye_lake()), "doc-1", YEAR))

    assert result.regulations_rejected == 1
    assert len(result.excluded) == 1
    assert result.excluded[0].startswith("ODD LAKE: ")
    assert "exceeds maximum" in result.excluded[0]
    assert result.regulations_created == 1
    assert database.count_rows("water_bodies") == 1


def test_failed_extraction_is_not_populated(store, database):
    engine = PopulationEngine(store)
    merged = _merged(status=ExtractionStatus.FAILED)
    merged.error_message = "All 3 chunk extractions failed"

    result = asyncio.run(engine.populate(merged, "doc-1", YEAR))

    assert result.success is False
    assert "Cannot process failed extraction" in result.errors[0]
    assert database.count_rows("fishing_regulations") == 0
    runs = database.get_population_runs("doc-1")
    assert runs[0]["status"] == "failed"
    assert PopulationResult.model_validate_json(runs[0]["report_json"]).errors == result.errors


def test_concurrent_runs_for_same_document_are_serialized(store, database):
    engine = PopulationEngine(store)
    merged = _merged(_walleye_lake())

    async def run_twice():
        return await asyncio.gather(
            engine.populate(merged, "doc-1", YEAR),
            engine.populate(merged, "doc-1", YEAR),
        )

    first, second = asyncio.run(run_twice())

    assert first.regulations_created + second.regulations_created == 1
    assert first.regulations_unchanged + second.regulations_unchanged == 1
    assert database.count_rows("fishing_regulations") == 1
    assert database.count_rows("water_bodies") == 1


def test_document_locks_are_released_after_runs(store):
    engine = PopulationEngine(store)

    for document_id in ("doc-1", "doc-2", "doc-3"):
        asyncio.run(engine.populate(_merged(_walleye_lake()), document_id, YEAR))

    assert len(engine._document_locks) == 0


def test_protected_slot_and_season_fields(store, database):
    engine = PopulationEngine(store)
    lake = _lake("PIKE LAKE", SpeciesRule(
        species="Northern Pike",
        protected_slot="24-36 inches (1 fish allowed)",
        season_info="May 10 - Feb 23",
        notes="Only one over 36 inches"
    ))

    asyncio.run(engine.populate(_merged(lake), "doc-1", YEAR))

    row = database.get_regulations()[0]
    assert (row["protected_slot_min_inches"], row["protected_slot_max_inches"]) == (24.0, 36.0)
    assert row["protected_slot_exceptions"] == 1
    assert row["is_year_round"] == 0
    assert row["season_notes"] == "May 10 - Feb 23"
    assert json.loads(row["special_regulations"]) == ["Only one over 36 inches"]


def test_rules_for_same_species_become_one_row(store, database):
    engine = PopulationEngine(store)
    lake = _lake(
        "SPLIT LAKE",
        SpeciesRule(species="Walleye", daily_limit=4),
        SpeciesRule(species="walleye", minimum_size="15 inches"),
    )

    result = asyncio.run(engine.populate(_merged(lake), "doc-1", YEAR))

    assert result.regulations_created == 1
    row = database.get_regulations()[0]
    assert (row["daily_limit"], row["minimum_size_inches"]) == (4, 15.0)


def test_combine_rules_prefers_first_value():
    combined = combine_rules([
        SpeciesRule(species="Walleye", daily_limit=4, notes="a"),
        SpeciesRule(species="Walleye", daily_limit=6, possession_limit=8, notes="b"),
    ])

    assert (combined.daily_limit, combined.possession_limit, combined.notes) == (4, 8, "a b")


@pytest.mark.parametrize("raw,expected", [
    ("pike", "Northern Pike"),
    ("MUSKIE", "Muskellunge"),
    ("  sunfish ", "Bluegill"),
    ("tiger  trout", "Tiger Trout"),
    ("", ""),
])
def test_normalize_species_name(raw, expected):
    assert normalize_species_name(raw) == expected


def test_normalize_water_body_name():
    assert normalize_water_body_name("WALLEYE LAKE") == "Walleye Lake"
    assert normalize_water_body_name("LAKE OF THE WOODS") == "Lake of the Woods"
    assert normalize_water_body_name("O'BRIEN LAKE") == "O'Brien Lake"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
