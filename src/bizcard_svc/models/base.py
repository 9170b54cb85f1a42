"""
Datastore wiring: declarative base, admin engine and session factory.

The service never creates or migrates tables. The `subscriptions` table
(see `models/subscription.py`) must already exist in the target database;
provision it out of band, e.g. with `Base.metadata.create_all(engine)` or the
project's migration tooling.
"""

from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from bizcard_svc.config import Settings, get_settings

Base = declarative_base()

SessionFactory = Callable[[], Session]


class DatastoreNotConfigured(Exception):
    """Raised when the admin datastore URL is missing or cannot be parsed."""


@lru_cache(maxsize=4)
def _engine_for(database_url: str) -> Engine:
    try:
        url = make_url(database_url)
    except ArgumentError as e:
        raise DatastoreNotConfigured(f"Malformed DATABASE_URL: {e}") from e
    return create_engine(url, pool_pre_ping=True)


def get_engine(database_url: Optional[str]) -> Engine:
    """
    Build (or reuse) the admin engine for ``database_url``.

    Called lazily when a request first needs the datastore, never at import.

    :raises DatastoreNotConfigured: if the URL is absent or malformed.
    """
    if not database_url:
        raise DatastoreNotConfigured("DATABASE_URL is not set")
    return _engine_for(database_url)


def get_session_factory(settings: Settings = Depends(get_settings)) -> SessionFactory:
    """Dependency returning a callable that opens an admin session on demand."""

    def open_session() -> Session:
        return sessionmaker(bind=get_engine(settings.database_url))()

    return open_session

