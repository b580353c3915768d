"""SQLModel database configuration."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

DB_PATH = Path(__file__).resolve().parent.parent / "ps_billing.db"

BUSY_TIMEOUT_MS = 5000


def _set_file_pragmas(dbapi_connection, connection_record) -> None:
    # registry 与 store 各自开 session 写同一个文件
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.close()


def create_db_engine(path: Optional[str] = None) -> Engine:
    """SQLite engine for ``path``; ``":memory:"`` gives a single shared connection."""
    if path == ":memory:":
        return create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(path) if path else DB_PATH
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_file_pragmas)
    return engine


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist."""
    from . import models  # noqa: F401  # ensure SQLModel metadata is loaded

    SQLModel.metadata.create_all(engine)
