# SQLAlchemy implementation of the row store
# Queries run on a worker thread; change events are published back on the event loop

import asyncio
import logging
import threading
from typing import Any, Callable, List, Optional, Sequence, Tuple

import sqlalchemy.exc
from sqlalchemy.engine import Engine

from core.database.models import TABLES
from core.database.operations import init_db, make_session_factory
from core.errors import CatalogError, ConflictOrConstraint, NotFound, TableMissing, TransientNetwork
from .base import ChangeEvent, DELETE, INSERT, UPDATE, Filters, Row, RowStore

logger = logging.getLogger(__name__)

# Fragments drivers use when a table is missing (SQLite, MySQL, PostgreSQL)
_MISSING_TABLE_MARKERS = ("no such table", "doesn't exist", "does not exist", "undefined table")


def translate_error(table: str, exc: sqlalchemy.exc.SQLAlchemyError) -> CatalogError:
    """Map a SQLAlchemy exception onto the core error taxonomy."""
    message = str(exc).lower()
    if any(marker in message for marker in _MISSING_TABLE_MARKERS):
        return TableMissing(table)
    if isinstance(exc, sqlalchemy.exc.IntegrityError):
        return ConflictOrConstraint(f"Constraint violated on '{table}': {exc.orig}")
    if isinstance(exc, (sqlalchemy.exc.OperationalError, sqlalchemy.exc.InterfaceError)):
        return TransientNetwork(f"Database unavailable: {exc.orig}")
    return CatalogError(f"Database error on '{table}': {exc}")


class SQLRowStore(RowStore):
    """Row store backed by any database SQLAlchemy can talk to."""

    def __init__(self, engine: Engine):
        super().__init__()
        self.engine = engine
        self.Session = make_session_factory(engine)
        # One unit of work at a time; SQLite shares a single connection between threads
        self._lock = threading.Lock()

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise NotFound(f"Unknown table '{table}'") from None

    def _query(self, session, model, filters: Optional[Filters]):
        query = session.query(model)
        for column_name, value in (filters or {}).items():
            column = getattr(model, column_name, None)
            if column is None:
                raise ValueError(f"Unknown column '{column_name}' on {model.__tablename__}")
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)
        return query

    def _locked(self, work):
        with self._lock:
            return work()

    async def _run(self, table: str, work: Callable[[], Tuple[Any, List[ChangeEvent]]]):
        """Run blocking session work off the loop, then publish its events."""
        try:
            result, events = await asyncio.to_thread(self._locked, work)
        except sqlalchemy.exc.SQLAlchemyError as e:
            error = translate_error(table, e)
            logger.debug("Storage error on %s: %s", table, e)
            raise error from e
        self.publish(events)
        return result

    async def select(self, table: str, filters: Optional[Filters] = None,
                     order_by: Optional[str] = None, descending: bool = False) -> List[Row]:
        model = self._model(table)

        def work():
            with self.Session() as session:
                query = self._query(session, model, filters)
                if order_by:
                    column = getattr(model, order_by)
                    query = query.order_by(column.desc() if descending else column.asc())
                return [row.to_dict() for row in query.all()], []

        return await self._run(table, work)

    async def count(self, table: str) -> int:
        model = self._model(table)

        def work():
            with self.Session() as session:
                return session.query(model).count(), []

        return await self._run(table, work)

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        model = self._model(table)

        def work():
            with self.Session.begin() as session:
                objects = [model(**row) for row in rows]
                session.add_all(objects)
                session.flush()
                stored = [obj.to_dict() for obj in objects]
            return stored, [ChangeEvent(INSERT, table, after=row) for row in stored]

        return await self._run(table, work)

    async def update(self, table: str, filters: Filters, patch: Row) -> int:
        model = self._model(table)

        def work():
            events = []
            with self.Session.begin() as session:
                for obj in self._query(session, model, filters).all():
                    before = obj.to_dict()
                    for key, value in patch.items():
                        setattr(obj, key, value)
                    session.flush()
                    events.append(ChangeEvent(UPDATE, table, before=before, after=obj.to_dict()))
            return len(events), events

        return await self._run(table, work)

    async def delete(self, table: str, filters: Filters) -> int:
        model = self._model(table)

        def work():
            events = []
            with self.Session.begin() as session:
                for obj in self._query(session, model, filters).all():
                    events.append(ChangeEvent(DELETE, table, before=obj.to_dict()))
                    session.delete(obj)
            return len(events), events

        return await self._run(table, work)

    async def upsert(self, table: str, rows: Sequence[Row], conflict_keys: Sequence[str]) -> List[Row]:
        model = self._model(table)

        def work():
            stored, events = [], []
            with self.Session.begin() as session:
                for row in rows:
                    key_filter = {key: row[key] for key in conflict_keys}
                    existing = self._query(session, model, key_filter).one_or_none()
                    if existing is None:
                        obj = model(**row)
                        session.add(obj)
                        session.flush()
                        events.append(ChangeEvent(INSERT, table, after=obj.to_dict()))
                    else:
                        before = existing.to_dict()
                        for column, value in row.items():
                            if column != "id":
                                setattr(existing, column, value)
                        session.flush()
                        obj = existing
                        events.append(ChangeEvent(UPDATE, table, before=before, after=obj.to_dict()))
                    stored.append(obj.to_dict())
            return stored, events

        return await self._run(table, work)

    async def ensure_schema(self):
        def work():
            init_db(self.engine)
            return None, []

        await self._run("*", work)
