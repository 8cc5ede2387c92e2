from typing import Optional

from fastapi import APIRouter

from winery_eval.config import get_settings
from winery_eval.models.common import utc_now_iso

router = APIRouter()

KEY_PREVIEW_LENGTH = 10


def key_preview(key: Optional[str]) -> str:
    if not key:
        return "Not set"
    return key[:KEY_PREVIEW_LENGTH] + "..."


@router.get("/health", tags=["Health"])
async def health_check():
    """Health Check Endpoint"""
    settings = get_settings()
    return {
        "status": "ok",
        "timestamp": utc_now_iso(),
        "version": settings.app_version,
        "services": {
            "api": "up",
            "jobStorage": settings.job_storage_type,
        },
    }


@router.get("/check-env")
async def check_env():
    """Report which provider keys are configured without exposing them"""
    settings = get_settings()
    return {
        "hasClaudeApiKey": bool(settings.claude_api_key),
        "hasGeminiApiKey": bool(settings.gemini_api_key),
        "claudeApiKeyPreview": key_preview(settings.claude_api_key),
        "geminiApiKeyPreview": key_preview(settings.gemini_api_key),
        "environment": settings.environment,
        "jobStorageType": settings.job_storage_type,
    }
