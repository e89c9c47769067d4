"""Name normalization for species and water bodies."""
import re

from ingestion.cleaner import collapse_whitespace

# Common fish species name mappings for standardization (keys are lower case)
SPECIES_NAME_MAPPINGS = {
    "lake trout": "Lake Trout",
    "laketrout": "Lake Trout",
    "salmon": "Salmon",
    "coho salmon": "Coho Salmon",
    "chinook salmon": "Chinook Salmon",
    "northern pike": "Northern Pike",
    "pike": "Northern Pike",
    "walleye": "Walleye",
    "bass": "Largemouth Bass",
    "largemouth bass": "Largemouth Bass",
    "smallmouth bass": "Smallmouth Bass",
    "muskie": "Muskellunge",
    "muskellunge": "Muskellunge",
    "brook trout": "Brook Trout",
    "brown trout": "Brown Trout",
    "rainbow trout": "Rainbow Trout",
    "steelhead": "Steelhead",
    "perch": "Yellow Perch",
    "yellow perch": "Yellow Perch",
    "bluegill": "Bluegill",
    "sunfish": "Bluegill",
    "crappie": "Crappie",
    "black crappie": "Black Crappie",
    "white crappie": "White Crappie",
}

_LOWER_CONNECTORS = {"of", "the", "and", "in", "on"}
_WORD_START = re.compile(r"\b[a-z]")


def title_case(value: str) -> str:
    """Title-case a name: "O'BRIEN" becomes "O'Brien", "1ST" becomes "1st", connectors stay lower case."""
    words = collapse_whitespace(value).lower().split(" ")
    titled = []
    for i, word in enumerate(words):
        if i > 0 and word in _LOWER_CONNECTORS:
            titled.append(word)
        else:
            titled.append(_WORD_START.sub(lambda m: m.group(0).upper(), word))
    return " ".join(titled)


def normalize_species_name(name: str) -> str:
    """Map a raw species name to its catalog common name.

    Known names go through SPECIES_NAME_MAPPINGS ("pike" -> "Northern Pike");
    anything else is title-cased.
    """
    cleaned = collapse_whitespace(name)
    if not cleaned:
        return ""
    return SPECIES_NAME_MAPPINGS.get(cleaned.lower(), title_case(cleaned))


def normalize_water_body_name(name: str) -> str:
    """Display form of a booklet heading: "WALLEYE LAKE" -> "Walleye Lake"."""
    return title_case(name)
