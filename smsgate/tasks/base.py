"""Shared runtime for task execution."""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from smsgate.core.config import get_settings
from smsgate.db.engine import engine_options


def create_task_session() -> tuple:
    """Create a fresh engine and session for task execution.

    This avoids event loop conflicts when running async code in Celery tasks.
    """
    url = str(get_settings().database_url)
    engine = create_async_engine(url, **engine_options(url))
    session_factory = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory
