"""Shared fixtures: a deterministic AI backend stub, PDF builders and a temp store."""
import asyncio
import json
import re

import fitz  # PyMuPDF
import pytest

from extraction.backend import AIBackend
from storage.database import Database
from storage.entity_store import SQLiteEntityStore

_ENTRY_NAME = re.compile(r"special-regulations entry for (.+?)(?: \(([^)]*)\))?\. Extract")


class StubBackend(AIBackend):
    """Answers from a table keyed by the lake name found in the prompt.

    Args:
        responses: lake name -> payload (dict, serialized to JSON) or raw response text
        delays: lake name -> seconds to sleep before answering
        failures: lake names whose call raises RuntimeError
        default: payload for lakes missing from ``responses``
    """

    def __init__(self, responses=None, delays=None, failures=(), default=None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.failures = set(failures)
        self.default = default if default is not None else {"species": [], "noRegulation": True}
        self.calls = []

    async def complete(self, prompt: str) -> str:
        match = _ENTRY_NAME.search(prompt)
        name = match.group(1) if match else ""
        self.calls.append(name)

        delay = self.delays.get(name, 0)
        if delay:
            await asyncio.sleep(delay)
        if name in self.failures:
            raise RuntimeError(f"backend unavailable for {name}")

        response = self.responses.get(name, self.default)
        return response if isinstance(response, str) else json.dumps(response)


def walleye_payload(daily_limit=4, minimum_size="15"):
    return {
        "species": [
            {"name": "Walleye", "regulationType": "combined", "dailyLimit": daily_limit, "minimumSize": minimum_size}
        ]
    }


def make_pdf(pages, fontsize=11):
    """Build a PDF whose page ``i`` carries the lines in ``pages[i]``."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line, fontsize=fontsize)
            y += fontsize + 4
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def stub_backend():
    return StubBackend(responses={"WALLEYE LAKE": walleye_payload()})


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / "regulations.db")


@pytest.fixture
def store(database):
    return SQLiteEntityStore(database)
