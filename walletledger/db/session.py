# walletledger/db/session.py
"""Database session factory and initialization."""

from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine

from walletledger.config import Settings

# Get database URL from environment, default to local SQLite
DATABASE_URL = Settings.from_env().database_url

# Convert sqlite:// to file path for local development
if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite:///", "")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
    echo=False,
)


def create_db_and_tables(bind=None):
    """Create all tables if they don't exist."""
    # registers the table classes on SQLModel.metadata
    from walletledger.db import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Session:
    """Get a new database session."""
    return Session(engine)


def init_db():
    """Initialize database on startup."""
    create_db_and_tables()
