import json
import logging
import sys
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from winery_eval.databases.postgres.database import init_db, sessionLocal
from winery_eval.models.rubric import Rubric, validate_rubric
from winery_eval.repository import rubric_repository

# Configure logging to show INFO level logs to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


def import_rubric_file(db: Session, path: Path) -> Optional[Rubric]:
    """Load an exported rubric JSON file and store it if it validates"""
    rubric = Rubric.model_validate(json.loads(path.read_text(encoding="utf-8")))
    errors = validate_rubric(rubric)
    if errors:
        logging.error(f"Skipping {path}: {errors}")
        return None
    saved = rubric_repository.save(db, rubric)
    logging.info(f"Imported rubric {saved.id} from {path}")
    return saved


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.info("Starting rubric initialization script")
    init_db()
    db: Session = sessionLocal()
    try:
        seeded = rubric_repository.ensure_default_rubric(db)
        if seeded:
            logging.info(f"Created default rubric {seeded.id}")
        else:
            logging.info("Rubrics already exist, default rubric not recreated")

        for name in argv:
            import_rubric_file(db, Path(name))

        logging.info(f"{len(rubric_repository.find_all(db))} rubrics available")
        return 0
    finally:
        db.close()
        logging.info("DB session closed")


if __name__ == "__main__":
    sys.exit(main())
