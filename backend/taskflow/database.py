import json
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlmodel import SQLModel, create_engine

from taskflow.config import get_settings
from taskflow.exceptions import StorageError
from taskflow.logging_config import get_logger

logger = get_logger(__name__)


def _json_serializer(value) -> str:
    # Keep non-ASCII text searchable with LIKE
    return json.dumps(value, ensure_ascii=False)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections get foreign key enforcement and explicit BEGIN so that
    SAVEPOINT (session.begin_nested) behaves transactionally.
    """
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    kwargs = {}
    if not is_sqlite:
        kwargs.update(
            pool_recycle=1800,  # Recycle connections after 30 min
            pool_pre_ping=True,  # Verify connection health before use
        )

    new_engine = create_engine(
        database_url,
        echo=echo,
        json_serializer=_json_serializer,
        **kwargs,
    )

    if is_sqlite:
        @event.listens_for(new_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy drive transactions instead of the pysqlite driver
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(new_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return new_engine


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
session_maker = sessionmaker(
    engine,
    class_=Session,
    expire_on_commit=False,
)


def get_engine() -> Engine:
    return engine


def init_db(target: Optional[Engine] = None) -> None:
    """Initialize database tables."""
    # Register table metadata
    import taskflow.models  # noqa: F401

    target = target or engine
    database = target.url.database
    if target.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    SQLModel.metadata.create_all(target)
    logger.debug(f"Schema ready on {target.url.render_as_string(hide_password=True)}")


@contextmanager
def get_session_context(target: Optional[Engine] = None) -> Iterator[Session]:
    """
    Unit of work: commit when the block completes, roll back on any error.

    Errors raised by the store are re-raised as StorageError with the original
    exception chained.
    """
    factory = session_maker if target is None else sessionmaker(
        target, class_=Session, expire_on_commit=False
    )
    with factory() as session:
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f"Storage failure, rolled back: {exc}")
            raise StorageError(f"Storage operation failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
