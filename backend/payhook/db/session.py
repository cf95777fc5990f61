"""Engine and session factory shared by the API, the pipeline and scripts"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from payhook.core.config import settings
from payhook.models import Base


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Pipeline database work runs on worker threads
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Create missing tables. Schema changes go through the Alembic revisions."""
    Base.metadata.create_all(bind=engine)
