import logging
from typing import List, Optional

from sqlalchemy.orm import Session

import winery_eval.databases.postgres.model as models
from winery_eval.exceptions import RubricNotFoundError
from winery_eval.models.common import utc_now_iso
from winery_eval.models.rubric import Rubric, create_default_rubric


def to_rubric(record: models.RubricRecord) -> Rubric:
    return Rubric(
        id=record.id,
        name=record.name,
        description=record.description or "",
        is_default=bool(record.is_default),
        created_at=record.created_at,
        updated_at=record.updated_at,
        criteria=record.criteria or [],
        performance_levels=record.performance_levels or [],
    )


def _apply(record: models.RubricRecord, rubric: Rubric) -> None:
    record.name = rubric.name
    record.description = rubric.description
    record.is_default = rubric.is_default
    record.created_at = rubric.created_at
    record.updated_at = rubric.updated_at
    record.criteria = [c.model_dump(by_alias=True) for c in rubric.criteria]
    record.performance_levels = [p.model_dump(by_alias=True) for p in rubric.performance_levels]


def _clear_default(db: Session, keep_id: str) -> None:
    db.query(models.RubricRecord).filter(
        models.RubricRecord.id != keep_id,
        models.RubricRecord.is_default.is_(True),
    ).update({models.RubricRecord.is_default: False}, synchronize_session=False)


def find_all(db: Session) -> List[Rubric]:
    result = db.query(models.RubricRecord).order_by(models.RubricRecord.created_at).all()
    logging.info(f"Found {len(result)} rubrics")
    return [to_rubric(r) for r in result]


def find_by_id(db: Session, rubric_id: str) -> Optional[Rubric]:
    result = db.query(models.RubricRecord).filter(models.RubricRecord.id == rubric_id).first()
    return to_rubric(result) if result else None


def find_default(db: Session) -> Optional[Rubric]:
    result = db.query(models.RubricRecord).filter(models.RubricRecord.is_default.is_(True)).first()
    return to_rubric(result) if result else None


def save(db: Session, rubric: Rubric) -> Rubric:
    """
    Insert or update a rubric.

    The first rubric stored becomes the default, and saving a default rubric
    clears the flag on every other rubric.
    """
    rubric = rubric.model_copy(deep=True)
    now = utc_now_iso()
    rubric.created_at = rubric.created_at or now
    rubric.updated_at = now

    record = db.query(models.RubricRecord).filter(models.RubricRecord.id == rubric.id).first()
    if record is None:
        if db.query(models.RubricRecord).count() == 0:
            rubric.is_default = True
        record = models.RubricRecord(id=rubric.id)
        db.add(record)

    if rubric.is_default:
        _clear_default(db, rubric.id)

    _apply(record, rubric)
    db.commit()
    db.refresh(record)
    logging.info(f"Saved rubric {rubric.id} (default={rubric.is_default})")
    return to_rubric(record)


def delete(db: Session, rubric_id: str) -> None:
    """Delete a rubric; removing the default promotes the oldest remaining one"""
    record = db.query(models.RubricRecord).filter(models.RubricRecord.id == rubric_id).first()
    if record is None:
        raise RubricNotFoundError(rubric_id)

    was_default = bool(record.is_default)
    db.delete(record)
    db.flush()

    if was_default:
        successor = db.query(models.RubricRecord).order_by(models.RubricRecord.created_at).first()
        if successor is not None:
            successor.is_default = True
            logging.info(f"Promoted rubric {successor.id} to default")

    db.commit()
    logging.info(f"Deleted rubric {rubric_id}")


def set_default(db: Session, rubric_id: str) -> Rubric:
    record = db.query(models.RubricRecord).filter(models.RubricRecord.id == rubric_id).first()
    if record is None:
        raise RubricNotFoundError(rubric_id)

    _clear_default(db, rubric_id)
    record.is_default = True
    record.updated_at = utc_now_iso()
    db.commit()
    db.refresh(record)
    logging.info(f"Set rubric {rubric_id} as default")
    return to_rubric(record)


def resolve(db: Session, rubric_id: Optional[str] = None) -> Rubric:
    """Requested rubric, else the default, else the first stored one"""
    if rubric_id:
        rubric = find_by_id(db, rubric_id)
        if rubric:
            return rubric
        logging.warning(f"Rubric {rubric_id} not found, using default rubric")

    rubric = find_default(db)
    if rubric:
        return rubric

    rubrics = find_all(db)
    if rubrics:
        return rubrics[0]

    raise RubricNotFoundError()


def ensure_default_rubric(db: Session) -> Optional[Rubric]:
    """Seed the built-in rubric when the table is empty"""
    if db.query(models.RubricRecord).count() > 0:
        return None
    logging.info("No rubrics found, creating default wine sales rubric")
    return save(db, create_default_rubric())
