import base64
import logging
from typing import Optional

from winery_eval.config import get_settings
from winery_eval.exceptions import ContentLossError, LLMResponseError
from winery_eval.models.job import CleanupResponse
from winery_eval.prompts.cleanup import get_cleanup_prompt
from winery_eval.services.llm_service import LLMService, get_llm_service
from winery_eval.services.pdf_service import render_conversation_pdf

settings = get_settings()


def length_change_percent(original: str, cleaned: str) -> float:
    if not original:
        return 0.0
    return abs(len(original) - len(cleaned)) / len(original) * 100


async def cleanup_conversation(markdown: str, llm: Optional[LLMService] = None) -> CleanupResponse:
    """
    Fix spelling and formatting of a transcript and render it as PDF.

    Raises ContentLossError when the cleaned text length moves by more than
    the configured percentage.
    """
    if not markdown:
        raise ValueError("No markdown content provided")

    llm = llm or get_llm_service(settings.cleanup_model)
    logging.info(f"Cleaning conversation of length {len(markdown)} with {llm.provider}")

    cleaned = await llm.generate(get_cleanup_prompt(markdown))
    if not cleaned or not cleaned.strip():
        raise LLMResponseError("Failed to get cleaned markdown from model", provider=llm.provider)

    percent = length_change_percent(markdown, cleaned)
    if percent > settings.cleanup_max_length_change_percent:
        logging.error(
            f"Significant content loss detected: original={len(markdown)}, "
            f"cleaned={len(cleaned)}, changed={percent:.2f}%"
        )
        raise ContentLossError(len(markdown), len(cleaned), percent)

    pdf = render_conversation_pdf(cleaned)
    logging.info(f"Cleanup complete, content kept {100 - percent:.2f}%")

    return CleanupResponse(
        cleaned_markdown=cleaned,
        pdf_buffer=base64.b64encode(pdf).decode("ascii"),
    )
