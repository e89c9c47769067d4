"""Heuristic parser splitting special-regulation text into per-lake entries.

The layout being parsed looks like::

    WALLEYE LAKE (Test County) Daily limit 4, minimum size 15 inches.
    Northern pike: catch and release.
    ⁕CLEAR LAKE (Waseca) Walleye: 17-26 inch protected slot ...

Parsing is a three-state machine over lines:

* ``SEARCHING`` -- no open entry. A header line opens one (``IN_ENTRY``);
  anything else is ignored.
* ``IN_ENTRY`` -- body lines are appended to the open entry, noise lines
  (page numbers, running headers/footers) are dropped, and a new header
  closes the open entry and starts the next.
* ``DONE`` -- end of input; the last open entry is emitted.

The parser is an approximation of the booklet layout. It can split one
logical entry in two or merge two into one; merge deduplication by
normalized name compensates for that downstream.
"""
import re
from enum import Enum
from typing import Iterator, List, Optional, Pattern, Sequence

from utils.logger import setup_logger
from ingestion.cleaner import is_noise_line
from ingestion.models import LakeEntry

logger = setup_logger(__name__)

_NAME_TOKEN = r"[A-Z0-9][A-Z0-9\-&.'’,]*"
_CONNECTOR = r"(?:including|and|near|of|the|Chain|chain)"
_MARKER = r"(?:[⁕*•]|NEW\s*[—–-]|[—–])"

HEADER_PATTERN = re.compile(
    rf"^(?:{_MARKER}\s*)*"
    rf"(?P<name>[A-Z][A-Z0-9\-&.'’,]*(?:\s+(?:{_NAME_TOKEN}|{_CONNECTOR}))*)"
    r"\s*\((?P<locality>[^()]+)\)"
    r"\s*(?P<trailing>.*)$"
)

SKIP_NAME_PATTERNS = [
    re.compile(r"NATIONAL WILDLIFE", re.IGNORECASE),
    re.compile(r"VOYAGEURS", re.IGNORECASE),
]

MIN_NAME_LENGTH = 3


class ParserState(str, Enum):
    SEARCHING = "searching"
    IN_ENTRY = "in_entry"
    DONE = "done"


class EntryParser:
    """Splits "special regulations by water body" text into LakeEntries."""

    def __init__(self, noise_patterns: Sequence[Pattern] = ()):
        """Initialize parser.

        Args:
            noise_patterns: Extra line patterns to drop, on top of the
                standard page-number and running-header patterns
        """
        self.noise_patterns = list(noise_patterns)
        self.state = ParserState.SEARCHING

    def parse(self, text: str, chunk_index: int = 0) -> List[LakeEntry]:
        """Parse text into lake entries, dropping entries without body text.

        Args:
            text: Segmented regulation text
            chunk_index: Index of the chunk the text came from

        Returns:
            Entries in document order, each with non-empty name and raw text
        """
        entries = []
        dropped = 0
        for entry in self.iter_entries(text, chunk_index):
            if not entry.raw_text:
                dropped += 1
                logger.debug(f"Dropping entry without regulation text: {entry.name}")
                continue
            entries.append(entry)

        logger.info(
            f"Parsed {len(entries)} lake entries from chunk {chunk_index}"
            + (f" ({dropped} empty entries dropped)" if dropped else "")
        )
        return entries

    def iter_entries(self, text: str, chunk_index: int = 0) -> Iterator[LakeEntry]:
        """Run the state machine, yielding every closed entry (including empty ones)."""
        self.state = ParserState.SEARCHING
        name: Optional[str] = None
        locality = ""
        body: List[str] = []

        for line in text.split("\n"):
            line = line.strip()
            if not line:
                continue

            header = self.match_header(line)
            if header is not None:
                if self.state is ParserState.IN_ENTRY:
                    yield self._close(name, locality, body, chunk_index)
                name, locality, trailing = header
                body = [trailing] if trailing else []
                self.state = ParserState.IN_ENTRY
                continue

            if self.state is ParserState.SEARCHING:
                continue

            if is_noise_line(line, self.noise_patterns):
                continue
            body.append(line)

        if self.state is ParserState.IN_ENTRY:
            yield self._close(name, locality, body, chunk_index)
        self.state = ParserState.DONE

    def match_header(self, line: str) -> Optional[tuple]:
        """Return (name, locality, trailing text) if the line opens a new entry."""
        match = HEADER_PATTERN.match(line)
        if not match:
            return None

        name = re.sub(r"\s+", " ", match.group("name")).strip(" ,-")
        locality = re.sub(r"\s+", " ", match.group("locality")).strip()
        trailing = match.group("trailing").strip()

        if len(name) < MIN_NAME_LENGTH or not any(c.isalpha() for c in name):
            return None
        if any(p.search(name) for p in SKIP_NAME_PATTERNS):
            return None
        return name, locality, trailing

    @staticmethod
    def _close(name: str, locality: str, body: List[str], chunk_index: int) -> LakeEntry:
        return LakeEntry(
            name=name,
            locality=locality,
            raw_text=" ".join(body).strip(),
            chunk_index=chunk_index
        )
