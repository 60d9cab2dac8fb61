"""
tasks/base.py
Synchronous DB access for Celery workers (Celery runs sync by default).
"""

from functools import lru_cache

from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings


def sync_database_url(url: str) -> str:
    """postgresql+asyncpg:// -> postgresql+psycopg2://, sqlite+aiosqlite:// -> sqlite://"""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


@lru_cache()
def _session_factory() -> sessionmaker:
    url = sync_database_url(settings.DATABASE_URL)
    kwargs = {} if settings.is_sqlite else {"pool_pre_ping": True, "pool_size": 5}
    return sessionmaker(bind=create_engine(url, **kwargs), expire_on_commit=False)


def get_sync_session() -> Session:
    return _session_factory()()


class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True

    def get_session(self) -> Session:
        return get_sync_session()
