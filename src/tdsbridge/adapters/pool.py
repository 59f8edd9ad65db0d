"""Thread-safe connection pool, sharded by server tag.

Each ``hold(server)`` scope has exclusive use of one connection, so
at most one statement is in flight per pooled connection.  Connections
are created lazily up to ``max_size`` per shard; further checkouts wait
on a condition variable until a connection is released or ``timeout``
elapses.

A scope that fails with :class:`DatabaseDisconnectError` does not give
its connection back: the connection is closed and the shard's slot is
freed for a fresh one.  The same happens when the ``reusable`` check
rejects a connection at the end of its scope (e.g. a result whose
cancel failed is still pending on it).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from tdsbridge.errors import DatabaseDisconnectError, PoolTimeoutError
from tdsbridge.logging import get_logger

from .types import DEFAULT_SERVER

logger = get_logger(__name__)


class ConnectionPool:
    """Per-shard pool of driver connections."""

    def __init__(
        self,
        connect: Callable[[str], Any],
        disconnect: Callable[[Any], None],
        *,
        max_size: int = 4,
        timeout: float = 5.0,
        reusable: Callable[[Any], bool] | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._connect = connect
        self._disconnect = disconnect
        self._reusable = reusable or (lambda conn: True)
        self.max_size = max_size
        self.timeout = timeout
        self._cond = threading.Condition()
        self._idle: dict[str, list[Any]] = {}
        self._sizes: dict[str, int] = {}

    def size(self, server: str | None = None) -> int:
        """Connections (idle + checked out) owned by the shard."""
        with self._cond:
            return self._sizes.get(server or DEFAULT_SERVER, 0)

    def available(self, server: str | None = None) -> int:
        """Idle connections in the shard."""
        with self._cond:
            return len(self._idle.get(server or DEFAULT_SERVER, []))

    def _checkout(self, server: str) -> Any:
        deadline = time.monotonic() + self.timeout
        with self._cond:
            while True:
                idle = self._idle.setdefault(server, [])
                if idle:
                    return idle.pop()
                if self._sizes.get(server, 0) < self.max_size:
                    # Reserve the slot before connecting outside the lock.
                    self._sizes[server] = self._sizes.get(server, 0) + 1
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolTimeoutError(
                        f"Timed out after {self.timeout}s waiting for a connection to {server!r}"
                    ).with_context(server=server)
                self._cond.wait(remaining)

        try:
            return self._connect(server)
        except BaseException:
            self._release_slot(server)
            raise

    def _checkin(self, server: str, conn: Any) -> None:
        with self._cond:
            self._idle.setdefault(server, []).append(conn)
            self._cond.notify()

    def _release_slot(self, server: str) -> None:
        with self._cond:
            self._sizes[server] = max(self._sizes.get(server, 0) - 1, 0)
            self._cond.notify()

    def _discard(self, server: str, conn: Any, reason: str) -> None:
        logger.warning("pool.discard", server=server, reason=reason)
        self._release_slot(server)
        self._disconnect(conn)

    @contextmanager
    def hold(self, server: str | None = None) -> Iterator[Any]:
        """Check out one connection for the duration of the scope."""
        shard = server or DEFAULT_SERVER
        conn = self._checkout(shard)
        try:
            yield conn
        except DatabaseDisconnectError as e:
            self._discard(shard, conn, str(e))
            conn = None
            raise
        finally:
            if conn is not None:
                if self._reusable(conn):
                    self._checkin(shard, conn)
                else:
                    self._discard(shard, conn, "connection is not reusable")

    def disconnect(self, server: str | None = None) -> None:
        """Close idle connections (of one shard, or all shards)."""
        with self._cond:
            shards = [server] if server else list(self._idle)
            to_close = []
            for shard in shards:
                idle = self._idle.pop(shard, [])
                self._sizes[shard] = max(self._sizes.get(shard, 0) - len(idle), 0)
                to_close.extend(idle)
            self._cond.notify_all()
        for conn in to_close:
            self._disconnect(conn)


__all__ = [
    "ConnectionPool",
]
