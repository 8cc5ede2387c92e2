import logging
from typing import Optional

import anthropic
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from winery_eval.config import get_settings
from winery_eval.exceptions import (
    LLMAuthenticationError,
    LLMContextLengthError,
    LLMRateLimitError,
    LLMResponseError,
    LLMServiceError,
    LLMTimeoutError,
)
from winery_eval.services.llm_service import LLMService, get_rate_limiter, require_api_key

settings = get_settings()

PROVIDER = "claude"
CONTEXT_LENGTH_MARKERS = ("max_tokens", "prompt is too long", "context length", "too many tokens")


def map_claude_error(error: Exception) -> LLMServiceError:
    """Translate an Anthropic SDK error into the service error taxonomy"""
    message = str(error)
    if isinstance(error, anthropic.AuthenticationError):
        return LLMAuthenticationError(
            "Authentication failed with Claude API. Please check your CLAUDE_API_KEY.", provider=PROVIDER
        )
    if isinstance(error, anthropic.RateLimitError):
        return LLMRateLimitError("Rate limit exceeded with Claude API. Please try again later.", provider=PROVIDER)
    if isinstance(error, anthropic.APITimeoutError):
        return LLMTimeoutError(f"Claude API request timed out: {message}", provider=PROVIDER)
    if isinstance(error, anthropic.BadRequestError) and any(m in message.lower() for m in CONTEXT_LENGTH_MARKERS):
        return LLMContextLengthError(f"Conversation too long for Claude: {message}", provider=PROVIDER)
    return LLMServiceError(f"Claude API error: {message}", provider=PROVIDER)


class ClaudeService(LLMService):
    """Claude Messages API service"""

    provider = PROVIDER

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.claude_api_key
        self.model_name = settings.claude_model
        self._client: Optional[anthropic.AsyncAnthropic] = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            key = require_api_key(self.api_key, "CLAUDE_API_KEY", PROVIDER)
            self._client = anthropic.AsyncAnthropic(api_key=key)
        return self._client

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=2, min=settings.retry_min_wait, max=settings.retry_max_wait),
        retry=retry_if_exception_type((LLMRateLimitError, LLMTimeoutError)),
        reraise=True
    )
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send one user message and return the concatenated text blocks"""
        client = self.client
        await get_rate_limiter().acquire()

        kwargs = {
            "model": self.model_name,
            "max_tokens": max_tokens or settings.claude_max_tokens,
            "temperature": settings.claude_temperature if temperature is None else temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        logging.info(f"Sending request to Claude ({self.model_name}), prompt length {len(prompt)}")

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logging.error(f"Claude API error: {str(e)}")
            raise map_claude_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise LLMResponseError("Empty response from Claude", provider=PROVIDER)

        if getattr(response, "stop_reason", None) == "max_tokens":
            logging.warning("Claude response was cut off at max_tokens")

        logging.info(f"Claude generated {len(text)} characters")
        return text


# Singleton instance
_claude_service = None

def get_claude_service() -> ClaudeService:
    """
    Get or create ClaudeService singleton
    """

    global _claude_service
    if _claude_service is None:
        _claude_service = ClaudeService()
    return _claude_service
