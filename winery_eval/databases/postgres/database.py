from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from winery_eval.config import get_settings

settings = get_settings()

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)

sessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = sessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables that do not exist yet"""
    import winery_eval.databases.postgres.model  # noqa: F401
    Base.metadata.create_all(bind=engine)
