"""Token estimates for prompt budgeting."""
from functools import lru_cache
from typing import Optional

import tiktoken

from utils.logger import setup_logger

logger = setup_logger(__name__)

ENCODING_NAME = "cl100k_base"  # Approximation; the backend tokenizer is not public


@lru_cache(maxsize=1)
def _get_encoding() -> Optional["tiktoken.Encoding"]:
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as e:
        # The encoding file is fetched on first use and may be unreachable offline
        logger.warning(f"Tokenizer {ENCODING_NAME} unavailable ({e}); using character estimate")
        return None


def count_tokens(text: str) -> int:
    """Count tokens in text.

    Args:
        text: Input text

    Returns:
        Token count (about four characters per token when the tokenizer cannot load)
    """
    if not text:
        return 0
    encoding = _get_encoding()
    if encoding is None:
        return max(1, len(text) // 4)
    return len(encoding.encode(text, disallowed_special=()))
