"""LLM prompt templates for regulation extraction."""


def regulation_extraction_prompt(raw_text: str, lake_name: str, locality: str = "") -> str:
    """Generate prompt for extracting one water body's regulations.

    Args:
        raw_text: Regulation text parsed for this water body
        lake_name: Water body name from the entry header
        locality: County (or other locality) from the entry header

    Returns:
        Formatted prompt string
    """
    where = f"{lake_name} ({locality})" if locality else lake_name

    return f"""You are extracting fishing regulations from a state fishing regulations booklet.

The text below is the special-regulations entry for {where}. Extract every species-specific rule it states.

For each species provide:

1. **name**: Common species name exactly as written (e.g. "Walleye", "Northern Pike", "Sunfish")
2. **regulationType**: One of "dailyLimit", "possessionLimit", "sizeLimit", "protectedSlot", "catchAndRelease", "seasonal", "combined". Use "combined" when a rule mixes several kinds.
3. **dailyLimit** / **possessionLimit**: Integers, only when stated
4. **minimumSize** / **maximumSize**: Text with units, e.g. "15 inches"
5. **protectedSlot**: Text, e.g. "20-24 inches (1 fish allowed over 24)"
6. **seasonInfo**: Season dates or closures, as text
7. **catchAndRelease**: true only if all fish of the species must be released
8. **notes**: Anything else specific to the species (gear, bait, dates)

Also provide:
- **generalNotes**: Rules that apply to the whole water body rather than one species
- **isExperimental**: true if the text marks the water as experimental
- **noRegulation**: true if the text holds no actionable regulation (headings, boilerplate)

Omit fields that are not stated. Do not use state-wide defaults.

Return the result as a JSON object matching this structure:
```json
{{
  "species": [
    {{
      "name": "Walleye",
      "regulationType": "combined",
      "dailyLimit": 4,
      "minimumSize": "15 inches",
      "notes": "Only one over 20 inches"
    }}
  ],
  "generalNotes": "",
  "isExperimental": false,
  "noRegulation": false
}}
```

TEXT TO ANALYZE:

{raw_text}

Return ONLY the JSON object, no additional text."""
