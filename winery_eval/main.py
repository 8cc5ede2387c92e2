import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from winery_eval.config import get_settings
from winery_eval.api import analyze, cleanup, export, jobs, rubrics, system
from winery_eval.custom_logging import configure_logging
from winery_eval.databases.postgres.database import init_db, sessionLocal
from winery_eval.repository.rubric_repository import ensure_default_rubric
from winery_eval.utils.response import create_response

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    AI-powered evaluation of wine tasting room sales conversations against configurable rubrics.
    """,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

@app.on_event("startup")
def on_startup() -> None:
    """Create tables and seed the default rubric when app starts."""
    logging.info("App startup: ensuring rubric table and default rubric exist")
    init_db()
    db: Session = sessionLocal()
    try:
        ensure_default_rubric(db)
    except Exception as e:
        logging.error(f"Failed to seed default rubric on startup: {e}")
        raise
    finally:
        db.close()

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content=create_response(False, "Request invalid", None, {"detail": jsonable_encoder(exc.errors())})
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    if isinstance(exc.detail, dict):
        detail = dict(exc.detail)
        message = detail.pop("message", "Request failed")
        error = detail.pop("error", None)
        content = create_response(False, message, None, error, **detail)
    else:
        content = create_response(False, exc.detail, None, None)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

app.include_router(analyze.router, tags=["Evaluate"], prefix="/api")
app.include_router(jobs.router, tags=["Jobs"], prefix="/api")
app.include_router(cleanup.router, tags=["Cleanup"], prefix="/api")
app.include_router(rubrics.router, tags=["Rubrics"], prefix="/api")
app.include_router(export.router, tags=["Export"], prefix="/api")
app.include_router(system.router, prefix="/api")

@app.get("/")
async def root():
    return {"message": "Winery Sales Evaluation Server running..."}
