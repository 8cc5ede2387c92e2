import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from winery_eval.config import get_settings
from winery_eval.models.common import CamelModel, utc_now_iso
from winery_eval.models.evaluation import EvaluationData

class JobStatus(str, Enum):
    """
    Job Status Enumeration
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"
    API_ERROR = "api_error"


class ModelProvider(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"


def configured_model() -> ModelProvider:
    return ModelProvider(get_settings().default_model.strip().lower())


class JobResultMetadata(CamelModel):
    processing_time: Optional[float] = None
    model_version: Optional[str] = None
    confidence: Optional[float] = None
    is_fallback: bool = False


class JobResult(CamelModel):
    evaluation: EvaluationData
    summary: Optional[str] = None
    metadata: JobResultMetadata = Field(default_factory=JobResultMetadata)


class JobErrorDetails(CamelModel):
    type: str
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)
    is_timeout: Optional[bool] = None
    stack_trace: Optional[str] = None
    code: Optional[str] = None
    original_error: Optional[str] = None


class Job(CamelModel):
    """Ephemeral record tracking one background evaluation"""
    id: str
    status: JobStatus = JobStatus.PENDING
    markdown: str = ""
    file_name: Optional[str] = None
    staff_name: Optional[str] = None
    date: Optional[str] = None
    rubric_id: Optional[str] = None
    model: ModelProvider = Field(default_factory=configured_model)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    expires_at: Optional[int] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    error_details: Optional[JobErrorDetails] = None
    retry_count: int = 0
    last_processed_at: Optional[str] = None

    def is_expired(self, now_ms: Optional[int] = None) -> bool:
        if self.expires_at is None:
            return False
        now_ms = now_ms if now_ms is not None else epoch_ms()
        return self.expires_at < now_ms

    def touch(self) -> None:
        self.updated_at = utc_now_iso()

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def epoch_ms() -> int:
    return int(time.time() * 1000)


def create_job(
    markdown: str = "",
    file_name: Optional[str] = None,
    staff_name: Optional[str] = None,
    date: Optional[str] = None,
    rubric_id: Optional[str] = None,
    model: ModelProvider = ModelProvider.CLAUDE,
) -> Job:
    """New pending job with a random id"""
    return Job(
        id=str(uuid.uuid4()),
        markdown=markdown,
        file_name=file_name,
        staff_name=staff_name,
        date=date,
        rubric_id=rubric_id,
        model=model,
    )


def is_valid_job_id(job_id) -> bool:
    """Job ids are canonical lowercase UUID strings"""
    try:
        return str(uuid.UUID(job_id)) == job_id
    except (ValueError, TypeError, AttributeError):
        return False


class AnalyzeRequest(CamelModel):
    """Body of POST /api/analyze-conversation"""
    conversation: Optional[str] = None
    markdown: Optional[str] = None
    staff_name: Optional[str] = None
    date: Optional[str] = None
    rubric_id: Optional[str] = None
    model: ModelProvider = ModelProvider.CLAUDE
    file_name: Optional[str] = None
    background: bool = False

    @field_validator("model", mode="before")
    @classmethod
    def default_model(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return configured_model()
        return v.lower() if isinstance(v, str) else v

    @property
    def transcript(self) -> Optional[str]:
        # markdown wins for backward compatibility with the importer payload
        return self.markdown or self.conversation


class AnalyzeJobResponse(CamelModel):
    job_id: str
    status: JobStatus


class JobIdRequest(CamelModel):
    job_id: Optional[str] = None


class CleanupRequest(CamelModel):
    markdown: Optional[str] = None


class CleanupResponse(CamelModel):
    cleaned_markdown: str
    pdf_buffer: str
