import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql import Select

from reliable_queue.core.exceptions import (
    MessageDecodingError,
    RetryableTransportError,
    StructureNotFoundError,
    TransportError,
)
from reliable_queue.core.logging import get_logger
from reliable_queue.engines.base import QueueEngine
from reliable_queue.models.message import build_messages_table
from reliable_queue.schemas.message import QueueMessage
from reliable_queue.schemas.options import RelationalQueueOptions

T = TypeVar("T")

# MySQL acks mark rows with this value; they are deleted on the next poll.
MYSQL_DELETED_SENTINEL = datetime(9999, 12, 31, 23, 59, 59)
MYSQL_DIALECTS = ("mysql", "mariadb")

_MISSING_TABLE_CODES = {"42P01", "42S02", 1146}
_MISSING_TABLE_MARKERS = ("no such table", "doesn't exist", "ora-00942", "invalid object name")

# serialization failure, deadlock, lock not available / lock wait timeout
_RETRYABLE_CODES = {"40001", "40P01", "55P03", 1205, 1213}
_RETRYABLE_MARKERS = ("deadlock", "database is locked", "lock wait timeout", "could not serialize")


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _driver_code(exc: DBAPIError) -> Union[str, int, None]:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def is_table_missing(exc: DBAPIError) -> bool:
    if _driver_code(exc) in _MISSING_TABLE_CODES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in _MISSING_TABLE_MARKERS)


def is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated or _driver_code(exc) in _RETRYABLE_CODES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def translate_db_error(exc: DBAPIError) -> TransportError:
    """Map a driver error onto the queue error kinds."""
    message = str(exc.orig)
    if is_table_missing(exc):
        return StructureNotFoundError(message)
    if is_transient(exc):
        return RetryableTransportError(message)
    return TransportError(message)


class RelationalQueueEngine(QueueEngine):
    """
    Queue engine storing one row per message in a relational table.

    ``delivered_at`` doubles as the claim marker and the claim timestamp: a
    row is available when it was never delivered or its delivery is older
    than ``redeliver_timeout``. Claims are taken with a row lock that skips
    rows locked by other consumers where the database supports it.
    """

    def __init__(
        self,
        engine: Engine,
        options: Union[None, RelationalQueueOptions, Mapping[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.options = RelationalQueueOptions.from_options(options)
        self.table = build_messages_table(self.options.table_name)
        self._auto_setup = self.options.auto_setup
        self._do_mysql_cleanup = False
        self._clock = clock
        self.logger = get_logger(
            self.__class__.__name__,
            table=self.options.table_name,
            queue=self.options.queue_name,
        )

    @property
    def queue_name(self) -> str:
        return self.options.queue_name

    @property
    def redeliver_timeout(self) -> int:
        return self.options.redeliver_timeout

    def reset(self) -> None:
        self._do_mysql_cleanup = False

    def send(self, body: str, headers: Dict[str, str], delay_ms: int = 0) -> str:
        self._check_delay(delay_ms)
        now = self._clock()
        values = {
            "body": body,
            "headers": json.dumps(headers),
            "queue_name": self.options.queue_name,
            "created_at": now,
            "available_at": now + timedelta(milliseconds=delay_ms),
        }

        message_id = self._with_auto_setup(lambda: self._insert(values), "send")
        self.logger.debug("Message stored", message_id=message_id, delay_ms=delay_ms)
        return message_id

    def _insert(self, values: Dict[str, Any]) -> str:
        statement = insert(self.table).values(**values)
        with self.engine.begin() as conn:
            # RETURNING fetches the id in the same round trip; Oracle gets
            # it from the <table>_seq sequence bound to the id column.
            if conn.dialect.insert_returning:
                message_id = conn.execute(statement.returning(self.table.c.id)).scalar_one_or_none()
            else:
                message_id = conn.execute(statement).inserted_primary_key[0]
            dialect = conn.dialect.name

        if not message_id:
            raise TransportError(f"No id was returned by {dialect} after inserting a message.")
        return str(message_id)

    def poll(self) -> Optional[QueueMessage]:
        if self._do_mysql_cleanup:
            self._delete_acked_rows()

        claimed = self._with_auto_setup(self._claim_next, "poll")
        if claimed is None:
            return None

        row, delivered_at = claimed
        message = self._to_message(row, delivered_at=delivered_at)
        self.logger.debug("Message claimed", message_id=message.id)
        return message

    def _claim_next(self) -> Optional[tuple]:
        with self.engine.begin() as conn:
            now = self._clock()
            query = self._next_available_query(conn, now)
            row = conn.execute(query).mappings().first()
            if row is None:
                return None

            conn.execute(
                update(self.table).where(self.table.c.id == row["id"]).values(delivered_at=now)
            )
            # The claim is committed before the row is handed out
            return dict(row), now

    def _next_available_query(self, conn: Connection, now: datetime) -> Select:
        t = self.table
        condition = self._available_condition(now)

        if conn.dialect.name == "oracle":
            # ORA-02014: the row limit must live in a sub-query to take a lock
            candidate = (
                select(t.c.id)
                .where(condition)
                .order_by(t.c.available_at.asc(), t.c.id.asc())
                .limit(1)
            )
            query = select(t).where(t.c.id.in_(candidate))
        else:
            query = select(t).where(condition).order_by(t.c.available_at.asc(), t.c.id.asc()).limit(1)

        return query.with_for_update(**self._lock_options(conn))

    @staticmethod
    def _lock_options(conn: Connection) -> Dict[str, bool]:
        """SKIP LOCKED where supported, else a blocking FOR UPDATE."""
        dialect = conn.dialect
        if dialect.name in ("postgresql", "oracle", "mssql"):
            return {"skip_locked": True}
        if dialect.name in MYSQL_DIALECTS:
            version = tuple(v for v in (dialect.server_version_info or ()) if isinstance(v, int))
            minimum = (10, 6) if getattr(dialect, "is_mariadb", False) else (8, 0)
            if version[:2] >= minimum:
                return {"skip_locked": True}
        return {}

    def _available_condition(self, now: datetime):
        t = self.table
        redeliver_limit = now - timedelta(seconds=self.options.redeliver_timeout)
        return and_(
            t.c.queue_name == self.options.queue_name,
            or_(t.c.delivered_at.is_(None), t.c.delivered_at < redeliver_limit),
            t.c.available_at <= now,
        )

    def _delete_acked_rows(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.table).where(self.table.c.delivered_at == MYSQL_DELETED_SENTINEL))
            self._do_mysql_cleanup = False
        except DBAPIError as e:
            # Rows stay marked and are retried on the next poll
            self.logger.warning("Deferred delete of acked rows failed", error=str(e.orig))

    def ack(self, message_id: str) -> bool:
        return self._remove(message_id, "ack")

    def reject(self, message_id: str) -> bool:
        return self._remove(message_id, "reject")

    def _remove(self, message_id: str, action: str) -> bool:
        row_id = self._row_id(message_id)
        if row_id is None:
            return False

        t = self.table
        target = and_(t.c.id == row_id, t.c.queue_name == self.options.queue_name)
        try:
            with self.engine.begin() as conn:
                if conn.dialect.name in MYSQL_DIALECTS:
                    # Deleting here deadlocks with concurrent SKIP LOCKED selects
                    result = conn.execute(
                        update(t)
                        .where(
                            target,
                            or_(t.c.delivered_at.is_(None), t.c.delivered_at != MYSQL_DELETED_SENTINEL),
                        )
                        .values(delivered_at=MYSQL_DELETED_SENTINEL)
                    )
                    removed = result.rowcount > 0
                    if removed:
                        self._do_mysql_cleanup = True
                else:
                    removed = conn.execute(delete(t).where(target)).rowcount > 0
        except DBAPIError as e:
            raise translate_db_error(e) from e

        self.logger.debug(f"Message {action}ed", message_id=message_id, removed=removed)
        return removed

    def keepalive(self, message_id: str, extend_seconds: Optional[int] = None) -> None:
        self._check_keepalive_interval(extend_seconds, "Relational")
        row_id = self._row_id(message_id)
        if row_id is None:
            return

        t = self.table
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(t)
                    .where(
                        t.c.id == row_id,
                        t.c.queue_name == self.options.queue_name,
                        or_(t.c.delivered_at.is_(None), t.c.delivered_at != MYSQL_DELETED_SENTINEL),
                    )
                    .values(delivered_at=self._clock())
                )
        except DBAPIError as e:
            raise translate_db_error(e) from e

    def count(self) -> int:
        def _count() -> int:
            query = select(func.count(self.table.c.id)).where(self._available_condition(self._clock()))
            with self.engine.connect() as conn:
                return conn.execute(query).scalar_one()

        return int(self._with_auto_setup(_count, "count"))

    def find_all(self, limit: Optional[int] = None) -> List[QueueMessage]:
        def _find_all() -> List[dict]:
            t = self.table
            query = select(t).where(self._available_condition(self._clock())).order_by(
                t.c.available_at.asc(), t.c.id.asc()
            )
            if limit is not None:
                query = query.limit(limit)
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(query).mappings()]

        return [self._to_message(row) for row in self._with_auto_setup(_find_all, "find_all")]

    def find(self, message_id: str) -> Optional[QueueMessage]:
        row_id = self._row_id(message_id)
        if row_id is None:
            return None

        def _find() -> Optional[dict]:
            t = self.table
            query = select(t).where(t.c.id == row_id, t.c.queue_name == self.options.queue_name)
            with self.engine.connect() as conn:
                row = conn.execute(query).mappings().first()
            return dict(row) if row is not None else None

        row = self._with_auto_setup(_find, "find")
        return self._to_message(row) if row is not None else None

    def setup(self) -> None:
        try:
            self.table.metadata.create_all(self.engine, checkfirst=True)
        except DBAPIError as e:
            self.logger.error(f"Error creating queue table: {e.orig}")
            raise translate_db_error(e) from e
        self._auto_setup = False
        self.logger.info("Queue table ready")

    def _with_auto_setup(self, operation: Callable[[], T], action: str) -> T:
        """Run ``operation``; a missing table triggers one setup and one retry."""
        try:
            return operation()
        except DBAPIError as e:
            if not (self._auto_setup and is_table_missing(e)):
                raise translate_db_error(e) from e
            self.logger.info("Queue table missing, running setup", operation=action)

        self.setup()
        try:
            return operation()
        except DBAPIError as e:
            raise translate_db_error(e) from e

    @staticmethod
    def _row_id(message_id: str) -> Optional[int]:
        try:
            return int(message_id)
        except (TypeError, ValueError):
            return None

    def _to_message(self, row: Mapping[str, Any], delivered_at: Optional[datetime] = None) -> QueueMessage:
        message_id = str(row["id"])
        try:
            headers = json.loads(row["headers"])
        except (TypeError, ValueError) as e:
            raise MessageDecodingError(f"Invalid headers on message {message_id}: {e}", message_id=message_id) from e
        if not isinstance(headers, dict):
            raise MessageDecodingError(f"Headers of message {message_id} are not a map", message_id=message_id)

        return QueueMessage(
            id=message_id,
            body=row["body"],
            headers={str(k): str(v) for k, v in headers.items()},
            queue_name=row["queue_name"],
            created_at=row["created_at"],
            available_at=row["available_at"],
            delivered_at=delivered_at if delivered_at is not None else row["delivered_at"],
        )
