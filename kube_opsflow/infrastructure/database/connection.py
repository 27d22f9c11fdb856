"""
Database Connection Manager.

This module handles the low-level details of connecting to the session
database. The engine is created explicitly and injected into the
repositories; nothing is opened at import time.
"""

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

# Registers the tables on SQLModel.metadata
from . import tables  # noqa: F401


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Builds the SQLAlchemy engine for `database_url`.
    echo=False in production to avoid leaking sensitive data in logs.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Store calls run in worker threads (asyncio.to_thread).
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def init_db(engine: Engine):
    """
    Idempotent initialization.
    Creates tables if they do not exist.
    """
    SQLModel.metadata.create_all(engine)
