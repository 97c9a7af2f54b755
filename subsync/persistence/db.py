from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import datetime, timezone
from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Sequence

from sqlalchemy import TextClause, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from subsync.core.config import Settings
from subsync.core.errors import DatabaseError, DuplicateKeyError, StoreUnavailableError


logger = logging.getLogger(__name__)

Row = dict[str, Any]
Params = Sequence[Any]


@lru_cache(maxsize=512)
def convert_placeholders(statement: str) -> tuple[str, int]:
    # Rewrite positional ? markers into named binds; quoted literals are copied untouched.
    out: list[str] = []
    count = 0
    quote: str | None = None
    for char in statement:
        if quote is not None:
            out.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
            out.append(char)
        elif char == "?":
            count += 1
            out.append(f":p{count}")
        else:
            out.append(char)
    return "".join(out), count


def async_database_url(url: str) -> str:
    # Managed hosts hand out libpq-style URLs; SQLAlchemy needs the async driver spelled out.
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Store(ABC):
    """Uniform query interface over one relational backend.

    Statements are written with ``?`` placeholders; rows come back as plain dicts with
    timestamps rendered as ISO-8601 strings regardless of backend.
    """

    backend: str = "unknown"

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend and verify it answers; raise StoreUnavailableError otherwise."""

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def execute(self, statement: str, params: Params = ()) -> int:
        """Run a mutation and return the affected row count."""

    @abstractmethod
    async def fetch_one(self, statement: str, params: Params = ()) -> Row | None: ...

    @abstractmethod
    async def fetch_all(self, statement: str, params: Params = ()) -> list[Row]: ...

    @abstractmethod
    async def execute_script(self, statements: Iterable[str]) -> None:
        """Run parameterless DDL statements in one transaction."""


class SqlAlchemyStore(Store):
    # Shared dispatch over an async engine; subclasses supply backend-specific normalization.

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @abstractmethod
    def _is_unique_violation(self, exc: IntegrityError) -> bool: ...

    def _serialized(self) -> AbstractAsyncContextManager[Any]:
        return nullcontext()

    async def _after_mutation(self) -> None:
        return None

    def _prepare_param(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        return value

    def _normalize_value(self, value: Any) -> Any:
        return value

    def _normalize_row(self, row: Any) -> Row:
        return {key: self._normalize_value(value) for key, value in row.items()}

    def _compile(self, statement: str, params: Params) -> tuple[TextClause, dict[str, Any]]:
        sql, expected = convert_placeholders(statement)
        values = list(params)
        if len(values) != expected:
            raise DatabaseError(f"statement expects {expected} parameters, got {len(values)}")
        binds = {f"p{index}": self._prepare_param(value) for index, value in enumerate(values, start=1)}
        return text(sql), binds

    async def connect(self) -> None:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"{self.backend} connection failed: {exc}") from exc
        logger.info("store_connected backend=%s", self.backend)

    async def close(self) -> None:
        await self._engine.dispose()

    async def execute(self, statement: str, params: Params = ()) -> int:
        sql, binds = self._compile(statement, params)
        async with self._serialized():
            try:
                async with self._engine.begin() as conn:
                    result = await conn.execute(sql, binds)
                    affected = result.rowcount
            except IntegrityError as exc:
                if self._is_unique_violation(exc):
                    raise DuplicateKeyError(str(exc.orig)) from exc
                raise DatabaseError(str(exc.orig)) from exc
            except SQLAlchemyError as exc:
                raise DatabaseError(str(exc)) from exc
            await self._after_mutation()
        return max(affected or 0, 0)

    async def fetch_one(self, statement: str, params: Params = ()) -> Row | None:
        rows = await self._fetch(statement, params, first_only=True)
        return rows[0] if rows else None

    async def fetch_all(self, statement: str, params: Params = ()) -> list[Row]:
        return await self._fetch(statement, params, first_only=False)

    async def _fetch(self, statement: str, params: Params, *, first_only: bool) -> list[Row]:
        sql, binds = self._compile(statement, params)
        async with self._serialized():
            try:
                async with self._engine.connect() as conn:
                    result = await conn.execute(sql, binds)
                    mappings = result.mappings()
                    if first_only:
                        first = mappings.first()
                        rows = [first] if first is not None else []
                    else:
                        rows = list(mappings.all())
            except SQLAlchemyError as exc:
                raise DatabaseError(str(exc)) from exc
        return [self._normalize_row(row) for row in rows]

    async def execute_script(self, statements: Iterable[str]) -> None:
        async with self._serialized():
            try:
                async with self._engine.begin() as conn:
                    for statement in statements:
                        await conn.exec_driver_sql(statement)
            except SQLAlchemyError as exc:
                raise DatabaseError(str(exc)) from exc
            await self._after_mutation()


class PostgresStore(SqlAlchemyStore):
    """Networked backend: asyncpg pool, one committed transaction per statement."""

    backend = "postgresql"

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 5,
        ssl: bool = False,
    ) -> None:
        engine_kwargs: dict[str, Any] = {
            "pool_pre_ping": True,
            "pool_size": max(1, int(pool_size)),
            "max_overflow": max(0, int(max_overflow)),
            "pool_timeout": 30,
            "pool_recycle": 1800,
        }
        if ssl:
            engine_kwargs["connect_args"] = {"ssl": "require"}
        super().__init__(create_async_engine(async_database_url(database_url), **engine_kwargs))

    def _is_unique_violation(self, exc: IntegrityError) -> bool:
        orig = exc.orig
        # asyncpg surfaces SQLSTATE on the adapted DBAPI error.
        if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
            return True
        return "duplicate key" in str(orig)

    def _normalize_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return _utc_iso(value)
        return value


class EmbeddedStore(SqlAlchemyStore):
    """File-backed SQLite image held in memory and rewritten in full after every mutation.

    A single static connection is shared by all requests, so every operation runs under one
    asyncio lock. Passing ``path=None`` keeps the database purely in memory.
    """

    backend = "sqlite"

    def __init__(self, path: str | Path | None) -> None:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        super().__init__(engine)
        self._path = Path(path) if path is not None else None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    def _serialized(self) -> AbstractAsyncContextManager[Any]:
        return self._lock

    def _is_unique_violation(self, exc: IntegrityError) -> bool:
        return "UNIQUE constraint failed" in str(exc.orig)

    def _prepare_param(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return _utc_iso(value)
        return super()._prepare_param(value)

    async def connect(self) -> None:
        await super().connect()
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(f"sqlite directory unavailable: {exc}") from exc
        if self._path.exists():
            async with self._lock:
                await self._load_image()
            logger.info("sqlite_image_loaded path=%s", self._path)
        else:
            logger.info("sqlite_image_created path=%s", self._path)

    async def _after_mutation(self) -> None:
        if self._path is not None:
            await self._write_image()

    async def _load_image(self) -> None:
        # Recreate every table and index of the on-disk image inside the in-memory database.
        assert self._path is not None
        try:
            async with self._engine.connect() as raw_conn:
                conn = await raw_conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.exec_driver_sql(f"ATTACH DATABASE {_sql_literal(str(self._path))} AS disk")
                try:
                    result = await conn.exec_driver_sql(
                        "SELECT type, name, sql FROM disk.sqlite_master "
                        "WHERE sql IS NOT NULL AND name NOT LIKE 'sqlite_%' "
                        "ORDER BY CASE type WHEN 'table' THEN 0 ELSE 1 END"
                    )
                    for kind, name, ddl in result.all():
                        await conn.exec_driver_sql(ddl)
                        if kind == "table":
                            await conn.exec_driver_sql(
                                f'INSERT INTO main."{name}" SELECT * FROM disk."{name}"'
                            )
                finally:
                    await conn.exec_driver_sql("DETACH DATABASE disk")
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to load sqlite image {self._path}: {exc}") from exc

    async def _write_image(self) -> None:
        # VACUUM INTO a sibling temp file, then swap it in so readers never see a torn image.
        assert self._path is not None
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            tmp_path.unlink(missing_ok=True)
            async with self._engine.connect() as raw_conn:
                conn = await raw_conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.exec_driver_sql(f"VACUUM INTO {_sql_literal(str(tmp_path))}")
            os.replace(tmp_path, self._path)
        except (SQLAlchemyError, OSError) as exc:
            raise DatabaseError(f"failed to persist sqlite image {self._path}: {exc}") from exc


def create_store(settings: Settings) -> Store:
    # Backend choice is fixed here, once per process.
    if settings.database_url:
        return PostgresStore(
            settings.database_url,
            pool_size=settings.api_db_pool_size,
            max_overflow=settings.api_db_max_overflow,
            ssl=settings.database_ssl,
        )
    return EmbeddedStore(settings.sqlite_path)
