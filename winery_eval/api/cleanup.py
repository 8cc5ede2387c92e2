from fastapi import APIRouter, HTTPException
import logging

from winery_eval.exceptions import (
    ContentLossError,
    LLMContextLengthError,
    LLMRateLimitError,
    LLMServiceError,
)
from winery_eval.models.job import CleanupRequest
from winery_eval.services.cleanup_service import cleanup_conversation
from winery_eval.utils.response import http_error

router = APIRouter()


@router.post("/cleanup-conversation")
async def cleanup(request: CleanupRequest):
    """
    Fix spelling and formatting of a transcript and return it with a PDF copy
    """
    try:
        if not request.markdown:
            raise http_error(400, "No markdown content provided")

        result = await cleanup_conversation(request.markdown)
        return result.model_dump(by_alias=True)

    except HTTPException:
        raise
    except ContentLossError as e:
        raise http_error(413, str(e), details=e.details)
    except LLMContextLengthError as e:
        raise http_error(
            413,
            "Conversation is too long to process in one request. Please break it into smaller sections.",
            details=str(e),
        )
    except LLMRateLimitError:
        raise http_error(429, "Rate limit exceeded. Please try again in a few moments.")
    except LLMServiceError as e:
        logging.error(f"Cleanup failed: {str(e)}")
        raise http_error(500, "Failed to clean up conversation", error=str(e))
    except Exception as e:
        logging.error(f"Cleanup failed: {str(e)}", exc_info=True)
        raise http_error(500, "Failed to clean up conversation")
