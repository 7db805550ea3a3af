"""
Claude API Client

Manages Anthropic API connections with async support, bounded retry logic,
and model fallback for the slot extractors, knowledge answers and call
summaries. Conversation logs are turned into alternating API messages here.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import (
    AsyncAnthropic,
    APIConnectionError,
    APIError,
    APIStatusError,
    RateLimitError,
)

from voice_agent.config import settings

logger = logging.getLogger(__name__)

# Status codes worth another attempt (rate limit and overload class)
RETRYABLE_STATUS_CODES = {429, 502, 503, 504, 529}


class ClaudeClientError(Exception):
    """Raised when Claude API call fails."""
    pass


@dataclass
class ClaudeResponse:
    """Response from Claude API."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


class ClaudeClient:
    """
    Async Claude API client wrapper.

    Features:
    - Async API calls
    - Retries with exponential backoff, bounded at settings.llm_max_retries
    - Model fallback (Haiku -> Sonnet)
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        # Retries are owned by _call_with_retry, not the SDK
        self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0)
        self._default_model = settings.claude_extraction_model
        self._fallback_model = settings.claude_fallback_model
        self._max_retries = settings.llm_max_retries

        logger.info(f"ClaudeClient initialized with model={self._default_model}")

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        cls._instance = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        use_fallback_on_error: bool = True,
        history: Optional[list[dict]] = None,
    ) -> ClaudeResponse:
        """
        Generate a response from Claude.

        Args:
            prompt: User message
            system_prompt: System prompt (optional)
            model: Model to use (defaults to extraction model)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0.0 for deterministic)
            use_fallback_on_error: Try fallback model on failure
            history: Earlier conversation turns as role/content dicts

        Returns:
            ClaudeResponse with generated content

        Raises:
            ClaudeClientError: If API call fails after retries
        """
        model = model or self._default_model
        start_time = time.time()

        messages = build_messages(prompt, history)

        try:
            response = await self._call_with_retry(
                messages=messages,
                system=system_prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
            )

            latency_ms = (time.time() - start_time) * 1000

            return ClaudeResponse(
                content=response.content[0].text,
                model=model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                stop_reason=response.stop_reason,
                latency_ms=latency_ms,
            )

        except Exception as e:
            if use_fallback_on_error and model != self._fallback_model:
                logger.warning(f"Primary model failed, trying fallback: {e}")
                return await self.generate(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    model=self._fallback_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    use_fallback_on_error=False,
                    history=history,
                )
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

    async def _call_with_retry(
        self,
        messages: list[dict],
        system: Optional[str],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Any:
        """Call API with exponential backoff retry."""
        last_error = None

        for attempt in range(self._max_retries):
            try:
                kwargs: dict[str, Any] = {
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": messages,
                }
                if system:
                    kwargs["system"] = system

                return await self._client.messages.create(**kwargs)

            except RateLimitError as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(f"Rate limited, waiting {wait_time}s (attempt {attempt + 1})")

            except APIConnectionError as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(f"Connection error, retrying in {wait_time}s (attempt {attempt + 1})")

            except APIStatusError as e:
                if e.status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(f"API error: {e}")
                    raise
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(
                    f"API unavailable (status={e.status_code}), retrying in {wait_time}s "
                    f"(attempt {attempt + 1})"
                )

            except APIError as e:
                logger.error(f"API error: {e}")
                raise

            if attempt < self._max_retries - 1:
                await asyncio.sleep(wait_time)

        raise last_error or ClaudeClientError("Max retries exceeded")

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()


# Singleton accessor
async def get_claude_client() -> ClaudeClient:
    """Get Claude client singleton instance."""
    return ClaudeClient.get_instance()


def build_messages(prompt: str, history: Optional[list[dict]] = None) -> list[dict]:
    """Turn a conversation log plus a new prompt into API messages.

    The Messages API wants turns that alternate and open with the user, so
    leading assistant turns are dropped and consecutive turns from the same
    role are merged. The prompt is always the final user content.
    """
    messages: list[dict] = []

    for turn in history or []:
        role = turn.get("role")
        content = (turn.get("content") or "").strip()
        if role not in ("user", "assistant") or not content:
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n{content}"
        else:
            messages.append({"role": role, "content": content})

    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] += f"\n\n{prompt}"
    else:
        messages.append({"role": "user", "content": prompt})
    return messages


def parse_json_reply(content: str) -> Any:
    """Strip markdown code fences from an LLM reply and decode the JSON body.

    Raises:
        json.JSONDecodeError: If the body is not valid JSON
    """
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        # Remove first line (```json or ```)
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return json.loads(text.strip())
