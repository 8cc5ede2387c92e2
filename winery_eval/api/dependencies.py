from fastapi import Depends
from sqlalchemy.orm import Session

from winery_eval.databases.postgres.database import get_db
from winery_eval.services.evaluation_service import EvaluationPipeline


def get_evaluation_pipeline(db: Session = Depends(get_db)) -> EvaluationPipeline:
    return EvaluationPipeline(db=db)
