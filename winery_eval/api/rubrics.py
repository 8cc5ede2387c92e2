from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
import logging
import uuid

from winery_eval.databases.postgres.database import get_db
from winery_eval.exceptions import RubricNotFoundError
from winery_eval.models.common import utc_now_iso
from winery_eval.models.rubric import Rubric, RubricPayload, export_rubric_json, validate_rubric
from winery_eval.repository import rubric_repository
from winery_eval.services.pdf_service import export_filename, render_rubric_pdf
from winery_eval.utils.response import create_response, http_error

router = APIRouter()


def _dump(rubric: Rubric) -> dict:
    return rubric.model_dump(mode="json", by_alias=True)


def _get_or_404(db: Session, rubric_id: str) -> Rubric:
    rubric = rubric_repository.find_by_id(db, rubric_id)
    if not rubric:
        raise http_error(404, "Rubric not found")
    return rubric


def _validate_or_400(rubric: Rubric) -> None:
    errors = validate_rubric(rubric)
    if errors:
        logging.warning(f"Rejected rubric {rubric.id}: {errors}")
        raise http_error(400, "Invalid rubric data", validationErrors=errors)


@router.get("/rubrics")
async def list_rubrics(db: Session = Depends(get_db)):
    try:
        return [_dump(r) for r in rubric_repository.find_all(db)]
    except Exception as e:
        logging.error(f"Failed to list rubrics: {str(e)}")
        raise http_error(500, "Failed to fetch rubrics", error=str(e))


@router.post("/rubrics", status_code=201)
async def create_rubric(payload: RubricPayload, db: Session = Depends(get_db)):
    try:
        now = utc_now_iso()
        data = payload.model_dump(exclude_none=True)
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("created_at", now)
        data["updated_at"] = now

        rubric = Rubric(**data)
        _validate_or_400(rubric)

        saved = rubric_repository.save(db, rubric)
        logging.info(f"Created rubric {saved.id}")
        return _dump(saved)
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to create rubric: {str(e)}")
        raise http_error(500, "Failed to create rubric", error=str(e))


@router.get("/rubrics/default")
async def get_default_rubric(db: Session = Depends(get_db)):
    try:
        rubric = rubric_repository.find_default(db)
        if not rubric:
            raise http_error(404, "No default rubric found")
        return _dump(rubric)
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to fetch default rubric: {str(e)}")
        raise http_error(500, "Failed to fetch default rubric", error=str(e))


@router.get("/rubrics/{rubric_id}")
async def get_rubric(rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        return _dump(_get_or_404(db, rubric_id))
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to fetch rubric: {str(e)}")
        raise http_error(500, "Failed to fetch rubric", error=str(e))


@router.put("/rubrics/{rubric_id}")
async def update_rubric(payload: RubricPayload, rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        existing = _get_or_404(db, rubric_id)

        updates = payload.model_dump(exclude_unset=True, exclude={"id", "created_at"})
        merged = existing.model_dump()
        merged.update({k: v for k, v in updates.items() if v is not None})
        merged["id"] = existing.id
        merged["created_at"] = existing.created_at
        merged["updated_at"] = utc_now_iso()

        rubric = Rubric(**merged)
        _validate_or_400(rubric)

        saved = rubric_repository.save(db, rubric)
        logging.info(f"Updated rubric {saved.id}")
        return _dump(saved)
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to update rubric: {str(e)}")
        raise http_error(500, "Failed to update rubric", error=str(e))


@router.delete("/rubrics/{rubric_id}")
async def delete_rubric(rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        rubric_repository.delete(db, rubric_id)
        return create_response(True, "Rubric deleted successfully")
    except RubricNotFoundError:
        raise http_error(404, "Rubric not found")
    except Exception as e:
        logging.error(f"Failed to delete rubric: {str(e)}")
        raise http_error(500, "Failed to delete rubric", error=str(e))


@router.put("/rubrics/{rubric_id}/default")
async def set_default_rubric(rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        return _dump(rubric_repository.set_default(db, rubric_id))
    except RubricNotFoundError:
        raise http_error(404, "Rubric not found")
    except Exception as e:
        logging.error(f"Failed to set default rubric: {str(e)}")
        raise http_error(500, "Failed to set default rubric", error=str(e))


@router.get("/rubrics/{rubric_id}/export/json")
async def export_rubric_as_json(rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        rubric = _get_or_404(db, rubric_id)
        filename = export_filename("rubric", rubric.name, "json")
        return JSONResponse(
            content=export_rubric_json(rubric),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to export rubric: {str(e)}")
        raise http_error(500, "Failed to export rubric", error=str(e))


@router.get("/rubrics/{rubric_id}/export/pdf")
async def export_rubric_as_pdf(rubric_id: str = Path(...), db: Session = Depends(get_db)):
    try:
        rubric = _get_or_404(db, rubric_id)
        filename = export_filename("rubric", rubric.name)
        return Response(
            content=render_rubric_pdf(rubric),
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Failed to export rubric PDF: {str(e)}")
        raise http_error(500, "Failed to export rubric", error=str(e))
