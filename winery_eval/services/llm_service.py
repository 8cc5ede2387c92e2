import asyncio
import logging
import threading
import time
from typing import Optional

from winery_eval.config import get_settings
from winery_eval.exceptions import LLMConfigurationError
from winery_eval.models.job import ModelProvider

settings = get_settings()


class RequestRateLimiter:
    """
    Spaces outbound requests so that at most max_per_minute start in any minute.

    Slots are reserved under a thread lock so concurrent event loops (one per
    Celery task) share the same budget.
    """

    def __init__(self, max_per_minute: int):
        self.min_interval = 60.0 / max_per_minute if max_per_minute > 0 else 0.0
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def reserve(self) -> float:
        """Reserve the next slot and return how long to wait for it"""
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
            return slot - now

    async def acquire(self) -> None:
        delay = self.reserve()
        if delay > 0:
            logging.info(f"Rate limiting: waiting {delay:.1f}s before next request")
            await asyncio.sleep(delay)


_rate_limiter: Optional[RequestRateLimiter] = None


def get_rate_limiter() -> RequestRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RequestRateLimiter(settings.llm_max_requests_per_minute)
    return _rate_limiter


class LLMService:
    """Common surface for text generation providers"""

    provider: str = ""
    model_name: str = ""

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        raise NotImplementedError


def require_api_key(key: Optional[str], env_name: str, provider: str) -> str:
    if not key:
        raise LLMConfigurationError(f"{env_name} environment variable is not set", provider=provider)
    return key


def get_llm_service(provider=None) -> LLMService:
    """
    Get the service for a provider name ("claude" or "gemini")
    """
    provider = ModelProvider(provider or settings.default_model)

    if provider == ModelProvider.GEMINI:
        from winery_eval.services.gemini_service import get_gemini_service
        return get_gemini_service()

    from winery_eval.services.claude_service import get_claude_service
    return get_claude_service()
