"""
Base database model and session management

Schema changes ship as Alembic revisions; init_db() only creates missing
tables for local runs and tests.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from agency_reports.config import get_settings

settings = get_settings()


def resolve_database_url(url: str) -> str:
    """Make relative SQLite paths absolute so a cwd change can't move the file."""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        rel_path = url[len("sqlite:///"):]
        if rel_path != ":memory:":
            return "sqlite:///" + os.path.abspath(rel_path)
    return url


def create_lifecycle_engine(url: str):
    """
    Engine for the cache and summary stores

    SQLite gets no pooling and a long busy timeout: archive and retention
    jobs can overlap a cache refresh on the same file.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )


engine = create_lifecycle_engine(resolve_database_url(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.expire_all()
        db.close()


def init_db(bind=None):
    """Create any missing lifecycle tables."""
    # Register models on the metadata before create_all
    import agency_reports.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
