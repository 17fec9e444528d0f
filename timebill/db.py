import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from alembic.config import Config
from sqlalchemy import Connection, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from alembic import command
from timebill.errors import PersistenceError
from timebill.settings import settings

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_connection: Connection | None = None

_DEPTH_KEY = "timebill_atomic_depth"


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.db_url,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        logger.info("Database engine created")
    return _engine


def get_connection() -> Connection:
    """Return a global singleton connection, CLI use only.

    Callers embedding the core in a server should open one connection per
    request and build a ``Store`` around it.
    """
    global _connection
    if _connection is None:
        _connection = get_engine().connect()
        logger.debug("Singleton DB connection created")
    return _connection


@contextmanager
def atomic(conn: Connection) -> Iterator[Connection]:
    """Run the enclosed block as one transaction.

    Nested scopes join the outermost one, which commits on success and rolls
    back on any exception. Driver errors are re-raised as ``PersistenceError``.
    """
    depth = conn.info.get(_DEPTH_KEY, 0)
    conn.info[_DEPTH_KEY] = depth + 1
    try:
        yield conn
    except SQLAlchemyError as exc:
        if depth == 0:
            conn.rollback()
            logger.warning("Transaction rolled back: %s", exc.__class__.__name__)
        raise PersistenceError(str(exc)) from exc
    except BaseException:
        if depth == 0:
            conn.rollback()
        raise
    else:
        if depth == 0:
            try:
                conn.commit()
            except SQLAlchemyError as exc:
                conn.rollback()
                raise PersistenceError(str(exc)) from exc
    finally:
        conn.info[_DEPTH_KEY] = depth


def _get_alembic_config() -> Config:
    """Build Alembic config pointing at the project root alembic.ini."""
    project_root = os.path.dirname(os.path.dirname(__file__))
    ini_path = os.path.join(project_root, "alembic.ini")
    if not os.path.exists(ini_path):
        ini_path = os.path.join(os.getcwd(), "alembic.ini")
    cfg = Config(ini_path)
    cfg.set_main_option("script_location", os.path.join(project_root, "alembic"))
    return cfg


def initialize_db() -> None:
    """Run all pending Alembic migrations."""
    logger.info("Running Alembic migrations")
    cfg = _get_alembic_config()
    command.upgrade(cfg, "head")
    logger.info("Migrations complete")
