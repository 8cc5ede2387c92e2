from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
import logging

from winery_eval.api.dependencies import get_evaluation_pipeline
from winery_eval.config import get_settings
from winery_eval.databases.job_store import JobStore, get_job_store
from winery_eval.exceptions import EvaluatorError, LLMConfigurationError
from winery_eval.models.job import AnalyzeJobResponse, AnalyzeRequest, ModelProvider, create_job
from winery_eval.services.evaluation_service import EvaluationPipeline
from winery_eval.task import run_evaluation_job
from winery_eval.utils.response import http_error

router = APIRouter()

API_KEY_NAMES = {
    ModelProvider.CLAUDE: "CLAUDE_API_KEY",
    ModelProvider.GEMINI: "GEMINI_API_KEY",
}


def _api_key_for(model: ModelProvider):
    settings = get_settings()
    if model == ModelProvider.GEMINI:
        return settings.gemini_api_key
    return settings.claude_api_key


@router.post("/analyze-conversation")
async def analyze_conversation(
    request: AnalyzeRequest,
    store: JobStore = Depends(get_job_store),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    """
    Evaluate a conversation now, or queue it as a background job
    """
    try:
        conversation = request.transcript
        if not conversation or not conversation.strip():
            raise http_error(400, "No conversation provided")

        if not _api_key_for(request.model):
            key_name = API_KEY_NAMES[request.model]
            logging.error(f"{key_name} is not set")
            raise http_error(500, f"{key_name} environment variable is not set")

        if request.background:
            job = create_job(
                markdown=conversation,
                file_name=request.file_name,
                staff_name=request.staff_name,
                date=request.date,
                rubric_id=request.rubric_id,
                model=request.model,
            )
            await store.save_job(job)

            run_evaluation_job.delay(job_id=job.id)

            logging.info(f"Evaluation queued: job_id={job.id}, model={request.model.value}")
            return JSONResponse(
                status_code=202,
                content=AnalyzeJobResponse(job_id=job.id, status=job.status).model_dump(mode="json", by_alias=True),
            )

        evaluation = await pipeline.evaluate(
            conversation=conversation,
            staff_name=request.staff_name,
            date=request.date,
            rubric_id=request.rubric_id,
            model=request.model,
            file_name=request.file_name,
        )
        return evaluation.model_dump(mode="json", by_alias=True, exclude_none=True)

    except HTTPException:
        raise
    except LLMConfigurationError as e:
        raise http_error(500, str(e))
    except EvaluatorError as e:
        logging.error(f"Failed to analyze conversation: {str(e)}")
        raise http_error(500, "Failed to analyze conversation", error=str(e))
    except Exception as e:
        logging.error(f"Failed to analyze conversation: {str(e)}", exc_info=True)
        raise http_error(500, "Failed to analyze conversation", error=str(e))
