from typing import Any, Dict, List, Optional


class EvaluatorError(Exception):
    """Base error for the evaluation service"""


class RubricNotFoundError(EvaluatorError):
    def __init__(self, rubric_id: Optional[str] = None):
        self.rubric_id = rubric_id
        if rubric_id:
            super().__init__(f"Rubric not found: {rubric_id}")
        else:
            super().__init__("No rubric found for evaluation")


class RubricValidationError(EvaluatorError):
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid rubric data: " + "; ".join(errors))


class JobNotFoundError(EvaluatorError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JSONExtractionError(EvaluatorError):
    """No parseable JSON could be found in a model response"""


class EvaluationValidationError(EvaluatorError):
    def __init__(self, errors: List[Any]):
        self.errors = errors
        messages = [f"{e.field}: {e.message}" if hasattr(e, "field") else str(e) for e in errors]
        super().__init__("Invalid evaluation data: " + ", ".join(messages))


class ContentLossError(EvaluatorError):
    """Cleaned transcript differs too much in length from the original"""

    def __init__(self, original_length: int, cleaned_length: int, percent_changed: float):
        self.original_length = original_length
        self.cleaned_length = cleaned_length
        self.percent_changed = percent_changed
        super().__init__(
            "Conversation may be too long for complete processing. "
            "Try breaking it into smaller sections."
        )

    @property
    def details(self) -> Dict[str, Any]:
        return {
            "originalLength": self.original_length,
            "cleanedLength": self.cleaned_length,
            "percentLost": f"{self.percent_changed:.2f}%",
        }


class LLMServiceError(EvaluatorError):
    """Failure talking to an LLM provider"""

    retryable = False

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class LLMConfigurationError(LLMServiceError):
    """Provider API key missing"""


class LLMAuthenticationError(LLMServiceError):
    pass


class LLMRateLimitError(LLMServiceError):
    retryable = True


class LLMTimeoutError(LLMServiceError):
    retryable = True


class LLMContextLengthError(LLMServiceError):
    pass


class LLMResponseError(LLMServiceError):
    """Provider returned an empty or unusable response"""
