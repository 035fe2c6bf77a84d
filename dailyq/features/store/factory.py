from __future__ import annotations

import logging
from typing import Optional

from dailyq.core.database import create_all_tables, get_database_url, init_engine
from dailyq.features.store.base import AnswerStore
from dailyq.features.store.memory import MemoryAnswerStore
from dailyq.features.store.sql import SqlAnswerStore

logger = logging.getLogger("dailyq")


def build_store(database_url: Optional[str] = None) -> AnswerStore:
    """SQL store when a database is configured, in-memory store otherwise."""
    url = database_url or get_database_url()
    if not url:
        logger.info("store.memory", extra={"event_type": "store_init"})
        return MemoryAnswerStore()

    engine = init_engine(url)
    create_all_tables(engine)
    logger.info("store.sql", extra={"event_type": "store_init"})
    return SqlAnswerStore(engine)
