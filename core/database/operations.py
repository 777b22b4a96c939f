# This file contains the database bootstrap layer: engine creation, session factories
# and the setup/repair helpers used when the catalog tables do not exist yet

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from functools import lru_cache
from typing import Optional
import logging
import pymysql
import sqlalchemy.exc

from config.settings import get_settings
from .models import Base

logger = logging.getLogger(__name__)


def create_db_engine(url: str) -> Engine:
    """Build an engine for the given URL.

    SQLite connections are shared with the worker threads the async store
    runs queries on, so thread checks are disabled. An in-memory database
    additionally needs a single static connection or every checkout would
    see a fresh, empty database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if make_url(url).database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


@lru_cache()
def get_engine() -> Engine:
    """Return the process-wide engine built from settings."""
    return create_db_engine(get_settings().DATABASE_URL)


def make_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False keeps row attributes readable after the commit
    return sessionmaker(bind=engine, expire_on_commit=False)


def ensure_database_exists(engine: Optional[Engine] = None):
    """Ensure that the MySQL database exists before attempting operations.

    Other backends either create the database on connect (SQLite) or are
    expected to be provisioned beforehand.
    """
    engine = engine or get_engine()
    if engine.dialect.name != "mysql":
        return
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return
    except sqlalchemy.exc.OperationalError as e:
        if "Unknown database" not in str(e):
            logger.error("Database connection error: %s", e)
            raise

    url = engine.url
    try:
        connection = pymysql.connect(
            host=url.host,
            user=url.username,
            password=url.password,
            port=int(url.port or 3306),
        )
    except pymysql.Error as conn_err:
        logger.error("Failed to connect to MySQL server: %s", conn_err)
        raise
    try:
        with connection.cursor() as cursor:
            cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{url.database}`")
        logger.info("Created database '%s'", url.database)
    except pymysql.Error as db_err:
        logger.error("Failed to create database: %s", db_err)
        raise
    finally:
        connection.close()


def init_db(engine: Optional[Engine] = None):
    """Create database tables if they don't exist.

    Safe to call repeatedly; this is also the repair step offered when a
    catalog fetch reports a missing table.
    """
    engine = engine or get_engine()
    ensure_database_exists(engine)
    Base.metadata.create_all(bind=engine)
