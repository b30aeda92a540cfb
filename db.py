import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Read DATABASE_URL from environment
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# Dokku Postgres and many Heroku style services use the older
# 'postgres://' scheme. SQLAlchemy 2 prefers 'postgresql+psycopg2://'.
# Normalize it here so the dialect loads correctly.
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)


def build_engine(url: str):
    """
    One engine per process. Workers and the API share it through SessionLocal,
    so the pool is bounded explicitly.
    """
    if url.startswith("sqlite"):
        # Tests run against in-memory SQLite, one connection shared by all sessions
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )

    return create_engine(
        url,
        pool_size=int(os.getenv("DB_POOL_SIZE", "8")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "4")),
        pool_pre_ping=True,
        pool_recycle=300,
        future=True,
    )


# Create the engine
engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for your models
Base = declarative_base()
