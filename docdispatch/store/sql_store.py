from __future__ import annotations

import logging
import math
import re
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Column,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ErrorKind, PerItemOperationError, StoreConnectionError
from .base import DEFAULT_COLLECTION, Collection, StoreConnection

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that a bucket name is usable as a table name.

    Restricted to letters, digits and underscores, starting with a letter or
    underscore, at most 64 characters.

    Raises:
        TypeError: If the name is not a string
        ValueError: If the name is empty or contains other characters
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")
    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )
    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds the 64-character limit")
    return name


def documents_table(bucket: str, metadata: Optional[MetaData] = None) -> Table:
    """Table holding every collection of a bucket."""
    return Table(
        _validate_identifier(bucket, "bucket"),
        metadata if metadata is not None else MetaData(),
        Column("collection", String(255), primary_key=True),
        Column("doc_key", String(250), primary_key=True),
        Column("value", LargeBinary, nullable=False),
    )


def _driver_timeouts(url: URL, timeout: float) -> dict[str, Any]:
    """
    DBAPI connect arguments bounding connect and per-statement time.

    Drivers not listed here only get SQLAlchemy's pool_timeout.
    """
    backend, driver = url.get_backend_name(), url.get_driver_name()
    whole_seconds = max(1, math.ceil(timeout))
    if backend == "sqlite":
        return {"timeout": timeout}
    if backend in ("mysql", "mariadb"):
        if driver == "mysqlconnector":
            return {"connection_timeout": whole_seconds}
        if driver in ("pymysql", "mysqldb"):
            return {
                "connect_timeout": whole_seconds,
                "read_timeout": whole_seconds,
                "write_timeout": whole_seconds,
            }
    if backend == "postgresql" and driver in ("psycopg2", "psycopg"):
        return {
            "connect_timeout": whole_seconds,
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    logger.warning("No driver timeouts known for %s+%s; only pool_timeout applies", backend, driver)
    return {}


class SqlCollection(Collection):
    """
    Collection stored as rows of a SQL table via SQLAlchemy Core.

    Each call runs in its own short transaction on a pooled connection, so
    the handle can be shared between threads. There is no bulk mode.
    """

    supports_bulk = False

    def __init__(self, engine: Engine, table: Table, bucket: str, name: str = DEFAULT_COLLECTION) -> None:
        super().__init__(bucket, name)
        self.engine = engine
        self.table = table

    def _where(self, key: str) -> Any:
        return (self.table.c.collection == self.name) & (self.table.c.doc_key == key)

    def get(self, key: str) -> bytes:
        with self.engine.connect() as conn:
            row = conn.execute(select(self.table.c.value).where(self._where(key))).one_or_none()
        if row is None:
            raise PerItemOperationError(ErrorKind.NOT_FOUND, key)
        return bytes(row.value)

    def insert(self, key: str, payload: bytes) -> None:
        stmt = insert(self.table).values(collection=self.name, doc_key=key, value=payload)
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except IntegrityError as exc:
            raise PerItemOperationError(ErrorKind.ALREADY_EXISTS, key) from exc

    def remove(self, key: str) -> None:
        with self.engine.begin() as conn:
            rowcount = conn.execute(delete(self.table).where(self._where(key))).rowcount
        if rowcount == 0:
            raise PerItemOperationError(ErrorKind.NOT_FOUND, key)

    def replace(self, key: str, payload: bytes) -> None:
        with self.engine.begin() as conn:
            rowcount = self._update(conn, key, payload)
        if rowcount == 0:
            raise PerItemOperationError(ErrorKind.NOT_FOUND, key)

    def upsert(self, key: str, payload: bytes) -> None:
        try:
            with self.engine.begin() as conn:
                if self._update(conn, key, payload) == 0:
                    conn.execute(insert(self.table).values(collection=self.name, doc_key=key, value=payload))
        except IntegrityError:
            # lost an insert race with a concurrent writer; the row exists now
            with self.engine.begin() as conn:
                self._update(conn, key, payload)

    def _update(self, conn: Any, key: str, payload: bytes) -> int:
        stmt = update(self.table).where(self._where(key)).values(value=payload)
        return int(conn.execute(stmt).rowcount)


class SqlConnection(StoreConnection):
    """
    Owns a SQLAlchemy Engine and the bucket's table definition.

    wait_until_ready() checks connectivity and creates the table if missing.
    """

    def __init__(self, engine: Engine, bucket: str) -> None:
        super().__init__(bucket)
        self.engine = engine
        self.metadata = MetaData()
        self.table = documents_table(bucket, self.metadata)

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "SqlConnection":
        url = make_url(config.url)
        if config.username is not None:
            url = url.set(username=config.username)
        if config.password is not None:
            url = url.set(password=config.password)

        options: dict[str, Any] = {"pool_pre_ping": True}
        if config.timeout is not None:
            connect_args = _driver_timeouts(url, config.timeout)
            if connect_args:
                options["connect_args"] = connect_args
            if url.get_backend_name() != "sqlite":
                options["pool_timeout"] = config.timeout
        return cls(create_engine(url, **options), config.bucket)

    def collection(self, name: Optional[str] = None) -> SqlCollection:
        return SqlCollection(self.engine, self.table, self.bucket, name or DEFAULT_COLLECTION)

    def wait_until_ready(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreConnectionError(f"SQL store is not reachable: {exc}") from exc
        logger.info("Connected to SQL store for bucket %s", self.bucket)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Closed SQL store for bucket %s", self.bucket)
