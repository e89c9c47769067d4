"""Text cleaning utilities."""
import re
from typing import Iterable, List, Optional, Pattern

from utils.logger import setup_logger

logger = setup_logger(__name__)

# Running headers/footers and page furniture found in regulation booklets
NOISE_PATTERNS: List[Pattern] = [
    re.compile(r'^\d{1,4}$'),                                   # bare page number
    re.compile(r'^page\s+\d+(\s+of\s+\d+)?$', re.IGNORECASE),
    re.compile(r'^page\s+\d+.*888-MINNDNR', re.IGNORECASE),
    re.compile(r'^\d*\s*\d{4}\s+[A-Za-z ]+Fishing Regulations\b', re.IGNORECASE),
    re.compile(r'^[\w\s.-]*888-MINNDNR[\w\s.-]*$', re.IGNORECASE),
    re.compile(r'^(continued|cont\.?)$', re.IGNORECASE),
]

SECTION_START_PATTERN = re.compile(
    r'WATERS WITH EXPERIMENTAL AND\s*SPECIAL REGULATIONS', re.IGNORECASE
)
SECTION_START_FALLBACK = re.compile(r'Special Regulations\s*Lakes \(County\)', re.IGNORECASE)
SECTION_END_PATTERNS: List[Pattern] = [
    re.compile(r'^\s*BORDER WATERS\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^\s*BOWFISHING, SPEARING\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^\s*DARK HOUSE SPEARING\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^\s*ILLUSTRATED FISH\s*$', re.IGNORECASE | re.MULTILINE),
]


def clean_text(text: str) -> str:
    """Clean extracted text by normalizing whitespace and fixing common issues.

    Line structure is preserved; the entry parser works line by line.

    Args:
        text: Raw text from PDF

    Returns:
        Cleaned text
    """
    text = text.replace('\r\n', '\n').replace('\r', '\n').replace('\f', '\n')

    # Remove excessive whitespace while preserving paragraph breaks
    text = re.sub(r'\n\s*\n\s*\n+', '\n\n', text)

    # Fix words hyphenated across line breaks (lowercase continuation only)
    text = re.sub(r'([a-z]+)-[ \t]*\n[ \t]*([a-z]+)', r'\1\2', text)

    # Normalize whitespace within lines
    text = re.sub(r'[ \t ]+', ' ', text)

    # Remove leading/trailing whitespace from each line
    lines = [line.strip() for line in text.split('\n')]
    return '\n'.join(lines).strip()


def collapse_whitespace(value: Optional[str]) -> str:
    """Trim and collapse internal whitespace; None becomes an empty string."""
    if not value:
        return ""
    return re.sub(r'\s+', ' ', value).strip()


def is_noise_line(line: str, extra_patterns: Iterable[Pattern] = ()) -> bool:
    """Check whether a line is page furniture (page number, running header/footer)."""
    stripped = line.strip()
    if not stripped:
        return False
    for pattern in list(NOISE_PATTERNS) + list(extra_patterns):
        if pattern.search(stripped):
            return True
    return False


def find_section_start(text: str) -> Optional[int]:
    """Offset of the "special regulations by water body" heading, or None.

    The heading also appears in the table of contents, so the last
    occurrence is used.
    """
    matches = list(SECTION_START_PATTERN.finditer(text))
    if matches:
        logger.debug(f"Found {len(matches)} special regulations headings, using the last one")
        return matches[-1].start()
    fallback = SECTION_START_FALLBACK.search(text)
    return fallback.start() if fallback else None


def find_section_end(text: str) -> Optional[int]:
    """Offset of the earliest stand-alone major heading that closes the section, or None."""
    ends = [m.start() for m in (p.search(text) for p in SECTION_END_PATTERNS) if m]
    return min(ends) if ends else None


def find_special_regulations_section(text: str) -> Optional[str]:
    """Locate the "special regulations by water body" section.

    Args:
        text: Full document text

    Returns:
        Section text, or None when the document has no such section
    """
    start = find_section_start(text)
    if start is None:
        return None

    remainder = text[start:]
    end = find_section_end(remainder)
    section = remainder[:end].strip()
    logger.info(f"Extracted special regulations section of {len(section)} characters")
    return section or None
