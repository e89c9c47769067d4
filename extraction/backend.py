"""AI backend capability: prompt text in, JSON text out."""
import abc
import json
from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from utils.logger import setup_logger
import config

logger = setup_logger(__name__)


class MalformedResponseError(ValueError):
    """Raised when a backend response does not contain parseable JSON."""
    pass


class AIBackend(abc.ABC):
    """Black-box extraction service used by the regulation extractor."""

    @abc.abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send a prompt, return the raw response text (expected to hold JSON)."""
        pass


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, (anthropic.RateLimitError, anthropic.APIConnectionError)):
        return True
    if isinstance(error, anthropic.APIStatusError):
        # 5xx and 529 overloaded
        return error.status_code >= 500
    return False


def _log_retry(retry_state) -> None:
    error = retry_state.outcome.exception()
    logger.warning(
        f"Backend call failed ({error}); retry {retry_state.attempt_number}/{config.MAX_RETRIES}"
    )


class AnthropicBackend(AIBackend):
    """AIBackend backed by the Anthropic Messages API."""

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        model: str = config.ANTHROPIC_MODEL,
        max_tokens: int = config.LLM_MAX_TOKENS
    ):
        """Initialize backend.

        Args:
            client: Async Anthropic client; built from ANTHROPIC_API_KEY if omitted
            model: Model name to use
            max_tokens: Response token cap per call
        """
        self.client = client or AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
        self.model = model
        self.max_tokens = max_tokens
        self.total_tokens_used = 0

        logger.info(f"AnthropicBackend initialized with model: {model}")

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=config.RETRY_BACKOFF_MULTIPLIER, min=2, max=60),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        reraise=True
    )
    async def complete(self, prompt: str) -> str:
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=config.LLM_TEMPERATURE,
            messages=[
                {"role": "user", "content": prompt}
            ]
        )

        # Track token usage
        self.total_tokens_used += message.usage.input_tokens + message.usage.output_tokens

        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )


def parse_json_response(response_text: str) -> Any:
    """Extract the JSON payload from a model response.

    Accepts bare JSON, a fenced ```json block, or JSON embedded in prose.

    Raises:
        MalformedResponseError: If no valid JSON can be found
    """
    if response_text is None or not response_text.strip():
        raise MalformedResponseError("Empty response")

    text = response_text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    candidates = []
    if "```json" in text:
        candidates.append(text.split("```json", 1)[1].split("```", 1)[0].strip())
    elif "```" in text:
        parts = text.split("```")
        if len(parts) >= 3:
            candidates.append(parts[1].strip())

    # Outermost object or array
    start_obj, start_arr = text.find("{"), text.find("[")
    starts = [(s, "}" if s == start_obj else "]") for s in (start_obj, start_arr) if s != -1]
    if starts:
        start, closing = min(starts)
        end = text.rfind(closing)
        if end > start:
            candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise MalformedResponseError(
        f"Could not extract valid JSON from response. First 200 chars: {text[:200]}"
    )
