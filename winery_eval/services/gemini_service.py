import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
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

PROVIDER = "gemini"


def map_gemini_error(error: Exception) -> LLMServiceError:
    """Translate a Google API error into the service error taxonomy"""
    message = str(error)
    if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return LLMAuthenticationError(
            "Authentication failed with Gemini API. Please check your GEMINI_API_KEY.", provider=PROVIDER
        )
    if isinstance(error, google_exceptions.ResourceExhausted):
        return LLMRateLimitError("Rate limit exceeded with Gemini API. Please try again later.", provider=PROVIDER)
    if isinstance(error, google_exceptions.DeadlineExceeded):
        return LLMTimeoutError(f"Gemini API request timed out: {message}", provider=PROVIDER)
    if isinstance(error, google_exceptions.InvalidArgument) and "token" in message.lower():
        return LLMContextLengthError(f"Conversation too long for Gemini: {message}", provider=PROVIDER)
    return LLMServiceError(f"Gemini API error: {message}", provider=PROVIDER)


class GeminiServices(LLMService):
    """Gemini API service"""

    provider = PROVIDER

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = settings.gemini_model
        self._configured = False

        self.generation_config = {
            "temperature": settings.gemini_temperature,
            "top_p": 0.95,
            "top_k": 40,
            "max_output_tokens": settings.gemini_max_tokens,
        }

        self.safety_settings = [
            {
                "category": "HARM_CATEGORY_HARASSMENT",
                "threshold": "BLOCK_NONE"
            },
            {
                "category": "HARM_CATEGORY_HATE_SPEECH",
                "threshold": "BLOCK_NONE"
            },
            {
                "category": "HARM_CATEGORY_SEXUALLY_EXPLICIT",
                "threshold": "BLOCK_NONE"
            },
            {
                "category": "HARM_CATEGORY_DANGEROUS_CONTENT",
                "threshold": "BLOCK_NONE"
            }
        ]

    def _model(self, system: Optional[str] = None):
        if not self._configured:
            genai.configure(api_key=require_api_key(self.api_key, "GEMINI_API_KEY", PROVIDER))
            self._configured = True
        if system:
            return genai.GenerativeModel(self.model_name, system_instruction=system)
        return genai.GenerativeModel(self.model_name)

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
        """Generate text with automatic retry on transient failures"""
        model = self._model(system)
        await get_rate_limiter().acquire()

        config = self.generation_config.copy()
        if temperature is not None:
            config["temperature"] = temperature
        if max_tokens is not None:
            config["max_output_tokens"] = max_tokens

        logging.info(f"Sending request to Gemini ({self.model_name}), prompt length {len(prompt)}")

        try:
            response = await model.generate_content_async(
                prompt,
                generation_config=config,
                safety_settings=self.safety_settings
            )
        except google_exceptions.GoogleAPICallError as e:
            logging.error(f"Gemini API error: {str(e)}")
            raise map_gemini_error(e) from e

        # parts and text raise ValueError when the prompt was blocked or no candidate came back
        try:
            text = response.text if response.parts else ""
        except ValueError as e:
            logging.error(f"Gemini returned no usable content: {str(e)}")
            raise LLMResponseError(f"Gemini returned no usable content: {str(e)}", provider=PROVIDER) from e

        if not text:
            raise LLMResponseError("Empty response from Gemini", provider=PROVIDER)

        logging.info(f"Gemini generated {len(text)} characters")
        return text


# Singleton instance
_gemini_service = None

def get_gemini_service() -> GeminiServices:
    """
    Get or create GeminiServices singleton
    """

    global _gemini_service
    if _gemini_service is None:
        _gemini_service = GeminiServices()
    return _gemini_service
