"""Pytest configuration and fixtures."""

import json
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="winery-eval-tests-")

# Settings are read at import time, so the environment must be ready first
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["JOB_STORAGE_TYPE"] = "file"
os.environ["JOBS_DIR"] = os.path.join(_TMP_DIR, "jobs")
os.environ["CLAUDE_API_KEY"] = "sk-ant-test-0123456789"
os.environ["GEMINI_API_KEY"] = "gm-test-abcdefghijkl"
os.environ["LLM_MAX_REQUESTS_PER_MINUTE"] = "0"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["CHUNK_RETRY_DELAY"] = "0"
os.environ["JOB_IO_RETRY_DELAY"] = "0"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest

from winery_eval.databases.postgres.database import init_db, sessionLocal
from winery_eval.databases.postgres.model import RubricRecord
from helpers import build_evaluation
from winery_eval.models.rubric import Rubric, create_default_rubric


@pytest.fixture
def default_rubric() -> Rubric:
    return create_default_rubric()


@pytest.fixture
def evaluation_json(default_rubric):
    return json.dumps(build_evaluation(default_rubric))


@pytest.fixture
def db_session():
    init_db()
    db = sessionLocal()
    db.query(RubricRecord).delete()
    db.commit()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def seeded_db(db_session, default_rubric):
    from winery_eval.repository import rubric_repository

    rubric_repository.save(db_session, default_rubric)
    return db_session


@pytest.fixture
def sample_conversation():
    return (
        "# Wine Tasting Conversation\n\n"
        "**Date:** 2024-05-01\n\n"
        "## Conversation\n\n"
        "Staff: Hi, my name is Alex and welcome to the winery!\n\n"
        "Guest: Thanks, it's our first time visiting.\n\n"
        "Staff: Our family founded the estate in 1978. This Cabernet has firm tannin and a long finish.\n\n"
        "Guest: I love this one, how much is it?\n\n"
        "Staff: It's $45. Would you like to join our wine club? Members get shipments every quarter.\n\n"
        "Guest: Maybe, can I get your email list?\n\n"
        "Staff: Of course. Thank you for coming, see you next time!\n"
    )
