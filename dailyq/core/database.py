"""
Schema and engine setup for the SQL answer store.

Days are stored as ``YYYY-MM-DD`` strings in the user's local calendar, never
as timestamps, so a day key read back is exactly the one written.
"""
import os
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from dailyq.core.config import settings

metadata = MetaData()

_POOL_OPTIONS = {"pool_size": 5, "max_overflow": 10, "pool_timeout": 15, "pool_recycle": 1800}

_engine = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins so the suite can point at a scratch database."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def build_engine(url: str):
    # In-memory SQLite lives as long as its single connection
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, poolclass=QueuePool, pool_pre_ping=True, **_POOL_OPTIONS)


def init_engine(database_url: Optional[str] = None):
    global _engine
    url = database_url or get_database_url()
    if not url:
        raise ValueError("No database configured: set DATABASE_URL or pass a URL")
    _engine = build_engine(url)
    return _engine


def get_engine():
    if _engine is None:
        return init_engine()
    return _engine


def create_all_tables(engine=None):
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine=None):
    """Test helper. Removes every engagement table."""
    metadata.drop_all(bind=engine or get_engine())


def _timestamp(name: str, **kwargs) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now(), nullable=False, **kwargs)


profiles = Table(
    "profiles",
    metadata,
    Column("user_id", String(100), primary_key=True),
    Column("joker_balance", Integer, nullable=False, server_default="0"),
    # YYYY-MM of the last monthly grant; NULL until the first profile load
    Column("last_joker_grant_month", String(7)),
    # Account start from the account system; NULL when the engine created the row
    Column("created_at", DateTime(timezone=True)),
)

questions = Table(
    "questions",
    metadata,
    Column("id", String(100), primary_key=True),
    Column("day", String(10), nullable=False),
    Column("lang", String(8), nullable=False, server_default="nl"),
    Column("text", Text, nullable=False),
    UniqueConstraint("day", "lang", name="uq_questions_day_lang"),
    Index("ix_questions_lang_day", "lang", "day"),
)

answers = Table(
    "answers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(100), nullable=False),
    Column("question_date", String(10), nullable=False),
    Column("answer_text", Text, nullable=False),
    Column("is_joker", Boolean, nullable=False, server_default="false"),
    _timestamp("created_at"),
    _timestamp("updated_at", onupdate=func.now()),
    UniqueConstraint("user_id", "question_date", name="answers_user_date_unique"),
)

joker_consumptions = Table(
    "joker_consumptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(100), nullable=False, index=True),
    Column("idempotency_key", String(255), unique=True),
    Column("day", String(10)),
    _timestamp("created_at"),
)

engagement_flags = Table(
    "engagement_flags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(100), nullable=False),
    # "weekly_recap" or "milestone:<n>"
    Column("kind", String(50), nullable=False),
    Column("day", String(10), nullable=False),
    _timestamp("created_at"),
    UniqueConstraint("user_id", "kind", "day", name="uq_engagement_flags_user_kind_day"),
)
