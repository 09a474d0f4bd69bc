"""
Data-access gateway — translates entity operations into SQLAlchemy
statements.

Design notes
------------
- Entity kinds are addressed by name (``"user"``, ``"post"``) and records
  travel as plain dicts of column values, so services never hold ORM
  instances across a session boundary.
- Every gateway call runs in a transaction of its own.  Multi-step work
  (check-then-write, multi-entity deletes) goes through ``transaction()``,
  which yields a handle whose operations all commit or roll back together.
  Rollback also happens on ``asyncio.CancelledError``.
- Driver errors are translated here and nowhere else: ``IntegrityError``
  becomes ``ConflictError``; connection failures, lock timeouts and pool
  exhaustion become ``TransientStorageError``.
"""
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Mapping, Sequence

from sqlalchemy import and_, asc, delete, desc, func, inspect, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blog_api.errors import ConflictError, TransientStorageError, ValidationError
from blog_api.models import Post, User

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    "user": User,
    "post": Post,
}

Record = dict[str, Any]
Where = Mapping[str, Any]

_OPERATORS = {
    "contains": lambda col, v: col.contains(v, autoescape=True),
    "icontains": lambda col, v: col.icontains(v, autoescape=True),
    "in": lambda col, v: col.in_(list(v)),
    "gt": lambda col, v: col > v,
    "lt": lambda col, v: col < v,
    "not": lambda col, v: col.is_not(None) if v is None else col != v,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _model_for(kind: str):
    try:
        return ENTITY_MODELS[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind!r}") from None


def _attribute(model, kind: str, name: str):
    """Return the mapped column attribute *name*, rejecting anything else."""
    if name not in inspect(model).column_attrs.keys():
        raise ValidationError(
            f"Unknown field {name!r} for {kind}",
            entity=kind,
            constraint="unknown_field",
        )
    return getattr(model, name)


def _criteria(model, kind: str, where: Where | None) -> list:
    clauses = []
    for key, value in (where or {}).items():
        if key == "OR":
            branches = [and_(*_criteria(model, kind, branch)) for branch in value]
            if branches:
                clauses.append(or_(*branches))
            continue

        column = _attribute(model, kind, key)
        if isinstance(value, Mapping):
            for op, operand in value.items():
                build = _OPERATORS.get(op)
                if build is None:
                    raise ValidationError(
                        f"Unsupported filter operator {op!r}",
                        entity=kind,
                        constraint="unknown_operator",
                    )
                clauses.append(build(column, operand))
        elif value is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == value)
    return clauses


def _unique_criteria(model, kind: str, key: Where) -> list:
    """Like ``_criteria`` but only for equality on primary-key / unique columns."""
    if not key:
        raise ValidationError(f"Empty lookup key for {kind}", entity=kind)
    columns = inspect(model).columns
    for name in key:
        _attribute(model, kind, name)
        column = columns[name]
        if not (column.primary_key or column.unique):
            raise ValidationError(
                f"{name!r} is not a unique field of {kind}",
                entity=kind,
                constraint="not_unique",
            )
    return [getattr(model, name) == value for name, value in key.items()]


def _to_record(obj) -> Record:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


def _describe(exc: DBAPIError) -> str:
    return str(exc.orig).splitlines()[0] if exc.orig is not None else str(exc)


@contextmanager
def _storage_errors(kind: str | None = None, identifier: Any = None) -> Iterator[None]:
    """Translate SQLAlchemy / driver errors into the service error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(
            f"{kind or 'record'} violates a database constraint",
            entity=kind,
            identifier=identifier,
            constraint=_describe(exc),
        ) from exc
    except (OperationalError, InterfaceError) as exc:
        logger.warning("Storage failure on %s: %s", kind or "transaction", _describe(exc))
        raise TransientStorageError(
            "Storage is temporarily unavailable",
            entity=kind,
            identifier=identifier,
        ) from exc
    except PoolTimeoutError as exc:
        logger.warning("Connection pool exhausted on %s", kind or "transaction")
        raise TransientStorageError(
            "Timed out waiting for a storage connection",
            entity=kind,
            identifier=identifier,
        ) from exc
    except DBAPIError as exc:
        if not exc.connection_invalidated:
            raise
        raise TransientStorageError(
            "Storage connection was lost",
            entity=kind,
            identifier=identifier,
        ) from exc


# ---------------------------------------------------------------------------
# Transaction-bound operations
# ---------------------------------------------------------------------------

class GatewayTransaction:
    """Gateway operations bound to one open session transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _fetch(self, model, kind: str, key: Where, lock: str | None = None):
        stmt = select(model).where(*_unique_criteria(model, kind, key))
        if lock == "update":
            stmt = stmt.with_for_update()
        elif lock == "share":
            stmt = stmt.with_for_update(read=True)
        elif lock is not None:
            raise ValueError(f"Unknown lock mode: {lock!r}")
        with _storage_errors(kind, dict(key)):
            result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_unique(self, kind: str, key: Where, *, lock: str | None = None) -> Record | None:
        """
        Return the record matching *key* (a primary-key or unique column),
        or None.  ``lock="update"`` or ``lock="share"`` holds a row lock until
        the transaction ends, on dialects that support ``SELECT ... FOR UPDATE``.
        """
        obj = await self._fetch(_model_for(kind), kind, key, lock)
        return _to_record(obj) if obj is not None else None

    async def find_many(
        self,
        kind: str,
        where: Where | None = None,
        *,
        order_by: Sequence[tuple[str, str]] | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Record]:
        model = _model_for(kind)
        stmt = select(model).where(*_criteria(model, kind, where))
        for field, direction in order_by or [("id", "asc")]:
            column = _attribute(model, kind, field)
            stmt = stmt.order_by(desc(column) if direction == "desc" else asc(column))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        with _storage_errors(kind):
            result = await self._session.execute(stmt)
        return [_to_record(obj) for obj in result.scalars().all()]

    async def count(self, kind: str, where: Where | None = None) -> int:
        model = _model_for(kind)
        stmt = select(func.count()).select_from(model).where(*_criteria(model, kind, where))
        with _storage_errors(kind):
            return (await self._session.execute(stmt)).scalar_one()

    async def create(self, kind: str, fields: Mapping[str, Any]) -> Record:
        model = _model_for(kind)
        for name in fields:
            _attribute(model, kind, name)

        obj = model(**fields)
        self._session.add(obj)
        with _storage_errors(kind):
            await self._session.flush()
        logger.debug("Created %s id=%s", kind, obj.id)
        return _to_record(obj)

    async def update(self, kind: str, key: Where, fields: Mapping[str, Any]) -> Record | None:
        """Apply *fields* to the record at *key*; None when it does not exist."""
        model = _model_for(kind)
        for name in fields:
            _attribute(model, kind, name)

        obj = await self._fetch(model, kind, key)
        if obj is None:
            return None
        for name, value in fields.items():
            setattr(obj, name, value)
        with _storage_errors(kind, obj.id):
            await self._session.flush()
        logger.debug("Updated %s id=%s fields=%s", kind, obj.id, sorted(fields))
        return _to_record(obj)

    async def delete(self, kind: str, key: Where) -> Record | None:
        """Delete the record at *key* and return it; None when it does not exist."""
        model = _model_for(kind)
        obj = await self._fetch(model, kind, key)
        if obj is None:
            return None
        record = _to_record(obj)
        await self._session.delete(obj)
        with _storage_errors(kind, obj.id):
            await self._session.flush()
        logger.debug("Deleted %s id=%s", kind, record["id"])
        return record

    async def delete_many(self, kind: str, where: Where) -> int:
        model = _model_for(kind)
        stmt = delete(model).where(*_criteria(model, kind, where))
        with _storage_errors(kind):
            result = await self._session.execute(stmt)
        logger.debug("Deleted %d %s row(s)", result.rowcount, kind)
        return result.rowcount


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class DataGateway:
    """
    Entry point used by the entity services.

    Holds only the session factory; every call or ``transaction()`` block
    checks a connection out of the engine pool and returns it afterwards.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[GatewayTransaction]:
        """
        Open a session and a transaction spanning the ``async with`` block.

        Commits when the block exits normally; rolls back on any exception
        (cancellation included) and re-raises it.  Errors raised by the
        commit itself are translated like any other storage error.
        """
        async with self._session_factory() as session:
            with _storage_errors():
                async with session.begin():
                    yield GatewayTransaction(session)

    async def find_unique(self, kind: str, key: Where, *, lock: str | None = None) -> Record | None:
        async with self.transaction() as tx:
            return await tx.find_unique(kind, key, lock=lock)

    async def find_many(
        self,
        kind: str,
        where: Where | None = None,
        *,
        order_by: Sequence[tuple[str, str]] | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Record]:
        async with self.transaction() as tx:
            return await tx.find_many(kind, where, order_by=order_by, offset=offset, limit=limit)

    async def count(self, kind: str, where: Where | None = None) -> int:
        async with self.transaction() as tx:
            return await tx.count(kind, where)

    async def create(self, kind: str, fields: Mapping[str, Any]) -> Record:
        async with self.transaction() as tx:
            return await tx.create(kind, fields)

    async def update(self, kind: str, key: Where, fields: Mapping[str, Any]) -> Record | None:
        async with self.transaction() as tx:
            return await tx.update(kind, key, fields)

    async def delete(self, kind: str, key: Where) -> Record | None:
        async with self.transaction() as tx:
            return await tx.delete(kind, key)

    async def delete_many(self, kind: str, where: Where) -> int:
        async with self.transaction() as tx:
            return await tx.delete_many(kind, where)
