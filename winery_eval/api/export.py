from fastapi import APIRouter
from fastapi.responses import Response
import logging

from winery_eval.models.evaluation import EvaluationData
from winery_eval.services.pdf_service import export_filename, render_evaluation_pdf
from winery_eval.utils.response import http_error

router = APIRouter()


@router.post("/export/evaluation-pdf")
async def export_evaluation_pdf(evaluation: EvaluationData):
    """Download an evaluation as a PDF report"""
    try:
        filename = export_filename("evaluation", f"{evaluation.staff_name} {evaluation.date}")
        return Response(
            content=render_evaluation_pdf(evaluation),
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except Exception as e:
        logging.error(f"Failed to export evaluation PDF: {str(e)}")
        raise http_error(500, "Failed to generate PDF", error=str(e))
