"""
PostgreSQL client with connection pooling and statement timeouts.

Uses psycopg2 with ThreadedConnectionPool. Every connection runs with a
server-side statement_timeout so no query blocks a worker indefinitely.
Connection failures and timeouts surface as core.errors.InternalError;
constraint violations propagate as psycopg2 errors for the caller to
interpret.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from core.errors import InternalError

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False

Params = Tuple | Dict | None


def _convert(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, list):
        return [_convert(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_convert(v) for v in value)
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    return value


def _convert_params(params: Params) -> Params:
    """Convert UUID objects to strings."""
    if params is None:
        return None
    return _convert(params)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError) as e:
        logger.error(f"Database {action} failed: {e}")
        raise InternalError(f"Database {action} failed") from e


class Transaction:
    """
    Statements sharing one connection and one transaction.

    Obtained from PostgresClient.transaction(); commits when the block exits
    normally and rolls back when it raises.
    """

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with _translate_errors("query"):
            self._cursor.execute(query, _convert_params(params))
            if self._cursor.description:
                return [dict(row) for row in self._cursor.fetchall()]
            return []

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_values(self, query: str, rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
        """Multi-row INSERT via psycopg2.extras.execute_values; returns RETURNING rows."""
        if not rows:
            return []
        with _translate_errors("bulk insert"):
            result = psycopg2.extras.execute_values(
                self._cursor,
                query,
                [_convert(tuple(row)) for row in rows],
                fetch=True,
            )
            return [dict(row) for row in result]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class PostgresClient:
    """
    PostgreSQL client with a shared connection pool per database URL.

    Usage:
        db = PostgresClient(database_url, statement_timeout_ms=15000)

        rows = db.execute("SELECT * FROM invoices WHERE tenant_id = %s", (tenant_id,))

        with db.transaction() as tx:
            invoice = tx.execute_single("INSERT INTO invoices ... RETURNING *", params)
            tx.execute("UPDATE subscriptions SET ...", params)
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, statement_timeout_ms: int = 15000, connect_timeout: int = 10):
        self._database_url = database_url
        self._statement_timeout_ms = statement_timeout_ms
        self._connect_timeout = connect_timeout
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                with _translate_errors("connection"):
                    pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=2,
                        maxconn=20,
                        dsn=self._database_url,
                        connect_timeout=self._connect_timeout,
                        options=f"-c statement_timeout={self._statement_timeout_ms}",
                    )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Borrow a pooled connection, returned to the pool on exit."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            with _translate_errors("connection"):
                conn = pool.getconn()
            if conn is None:
                raise InternalError("Could not get connection from pool")
            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run several statements atomically. Any exception rolls everything back."""
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield Transaction(cur)
                with _translate_errors("commit"):
                    conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Params = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        return next(iter(row.values())) if row else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        return self.execute(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
