"""Configuration module for the regulation extraction pipeline."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Configuration
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-opus-4-5-20251101")
LLM_TEMPERATURE = 0  # For structured extraction consistency
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "2048"))
MAX_PROMPT_TOKENS = int(os.getenv("MAX_PROMPT_TOKENS", "6000"))

# Splitting Configuration
MAX_CHUNK_KB = int(os.getenv("MAX_CHUNK_KB", "4000"))  # Per-request limit of the analysis service
PAGES_PER_CHUNK = int(os.getenv("PAGES_PER_CHUNK", "10"))

# Text segmentation
CHARS_PER_PAGE = 2000  # Rough page-density estimate for extracted text
TEXT_CHUNK_CHARS = int(os.getenv("TEXT_CHUNK_CHARS", "15000"))
TEXT_CHUNK_OVERLAP = int(os.getenv("TEXT_CHUNK_OVERLAP", "200"))
RELEVANT_KEYWORDS = [
    k.strip().lower()
    for k in os.getenv(
        "RELEVANT_KEYWORDS",
        "fishing,regulation,limit,daily limit,possession,size limit,season,walleye,pike,bass,trout"
    ).split(",")
    if k.strip()
]

# Population defaults
DEFAULT_STATE = os.getenv("DEFAULT_STATE", "Minnesota")
REGULATION_YEAR = int(os.getenv("REGULATION_YEAR", "2025"))

# Concurrency / rate limiting
CHUNK_CONCURRENCY = int(os.getenv("CHUNK_CONCURRENCY", "1"))
API_CALL_DELAY = float(os.getenv("API_CALL_DELAY", "0.1"))  # Seconds between AI calls
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "5"))
RETRY_BACKOFF_MULTIPLIER = 2

# Confidence policy (field-completeness heuristic)
CONFIDENCE_HIGH = float(os.getenv("CONFIDENCE_HIGH", "0.9"))
CONFIDENCE_MEDIUM = float(os.getenv("CONFIDENCE_MEDIUM", "0.6"))
CONFIDENCE_LOW = float(os.getenv("CONFIDENCE_LOW", "0.3"))
REVIEW_CONFIDENCE_THRESHOLD = float(os.getenv("REVIEW_CONFIDENCE_THRESHOLD", str(CONFIDENCE_MEDIUM)))  # Below this, records need review

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Storage Configuration
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "./output"))
DB_PATH = Path(os.getenv("DB_PATH", str(OUTPUT_DIR / "regulations.db")))
CHECKPOINT_DIR = Path(os.getenv("CHECKPOINT_DIR", str(OUTPUT_DIR / "checkpoints")))
RESULTS_DIR = OUTPUT_DIR / "results"
