"""
MongoDB connection lifecycle.

The ConnectionManager owns the single MongoClient of the process and the
connection state observed by the request gateway. It connects with a fixed
retry delay, either forever (``unbounded``) or for a bounded number of
attempts that ends the startup (``bounded``), and runs a supervisor task
that reconnects once the driver's topology has no writable server left.
Heartbeat failures of single members are only logged.

The manager lives on ``app.state.db_manager``; routes reach it through the
``get_db_manager`` dependency.
"""

import asyncio
import contextlib
import enum
import threading
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from pymongo.monitoring import ServerHeartbeatListener, TopologyListener
from starlette.concurrency import run_in_threadpool

from students_api.config import Settings
from students_api.errors import (
    DatabaseConfigurationError, DatabaseConnectionError, ServiceUnavailableError
)
from students_api.logging_config import get_logger, log_with_context

logger = get_logger("db")


class ConnectionState(enum.Enum):
    """Connection states, valued with the numeric codes reported by the API."""
    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2
    DISCONNECTING = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class _HeartbeatListener(ServerHeartbeatListener):
    """Forwards driver heartbeat failures to the manager."""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def started(self, event):
        pass

    def succeeded(self, event):
        pass

    def failed(self, event):
        self._manager._on_heartbeat_failed(event)


class _TopologyListener(TopologyListener):
    """Forwards topology changes (servers gained or lost) to the manager."""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def opened(self, event):
        pass

    def description_changed(self, event):
        self._manager._on_topology_changed(event)

    def closed(self, event):
        pass


class ConnectionManager:
    """
    Owns the MongoDB client and the connection state.

    ``client_factory`` is called as ``client_factory(url, **options)`` and
    defaults to :class:`pymongo.MongoClient`.
    """

    def __init__(self, settings: Settings,
                 client_factory: Callable[..., Any] = MongoClient):
        self.settings = settings
        self._client_factory = client_factory
        self._client = None
        self._database = None
        self._host: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._lost = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

    # ── state ────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState):
        with self._state_lock:
            previous, self._state = self._state, state
        if previous is not state:
            log_with_context(logger, "DEBUG",
                f"Connection state: {previous.label} -> {state.label}")

    def status(self) -> Dict[str, Any]:
        """Current state plus database name and host while connected."""
        state = self.state
        connected = state is ConnectionState.CONNECTED
        return {
            "state": state.label,
            "code": state.value,
            "ready": connected,
            "name": self._database.name if connected and self._database is not None else None,
            "host": self._host if connected else None,
        }

    def collection(self, name: str) -> Collection:
        state = self.state
        if state is not ConnectionState.CONNECTED or self._database is None:
            raise ServiceUnavailableError(
                "The database is not available, please try again later",
                details={"database": state.label, "database_state": state.value},
            )
        return self._database[name]

    # ── connecting ───────────────────────────────────────────

    def _open(self):
        """Create the client if needed and ping the server. Blocking."""
        if self._client is None:
            self._client = self._client_factory(
                self.settings.database_url,
                serverSelectionTimeoutMS=self.settings.connect_timeout_ms,
                connectTimeoutMS=self.settings.connect_timeout_ms,
                socketTimeoutMS=self.settings.socket_timeout_ms,
                event_listeners=[_HeartbeatListener(self), _TopologyListener(self)],
            )
        self._client.admin.command("ping")
        return self._client

    def _mark_connected(self, client):
        self._database = client.get_default_database(default=self.settings.database_name)
        nodes = sorted(client.nodes or ())
        self._host = ",".join(f"{host}:{port}" for host, port in nodes) or None
        self._set_state(ConnectionState.CONNECTED)
        log_with_context(logger, "INFO", "MongoDB connected",
            context={"database": self._database.name},
            extra_data={"host": self._host})

    async def _attempt(self, attempt: int) -> Optional[str]:
        """One connection attempt; returns the error message on failure."""
        self._set_state(ConnectionState.CONNECTING)
        log_with_context(logger, "INFO", "Connecting to MongoDB...",
            extra_data={"attempt": attempt, "url": self.settings.redacted_database_url()})
        try:
            client = await run_in_threadpool(self._open)
        except PyMongoError as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            log_with_context(logger, "ERROR", f"Failed to connect to MongoDB: {exc}",
                extra_data={"attempt": attempt, "error_type": type(exc).__name__})
            return str(exc)
        self._mark_connected(client)
        return None

    async def connect(self, max_attempts: Optional[int] = None) -> None:
        """
        Connect, retrying after a fixed delay.

        With ``max_attempts`` unset the loop never gives up and never raises.
        Otherwise DatabaseConnectionError is raised once ``max_attempts``
        attempts have failed, and a missing connection string raises
        DatabaseConfigurationError straight away.
        """
        attempt = 0
        while True:
            attempt += 1
            if not self.settings.database_url:
                message = "MongoDB connection string is not set (MONGODB_URL)"
                log_with_context(logger, "ERROR", message, extra_data={"attempt": attempt})
                if max_attempts is not None:
                    raise DatabaseConfigurationError(message)
                error = message
            else:
                error = await self._attempt(attempt)
                if error is None:
                    return

            if max_attempts is not None and attempt >= max_attempts:
                raise DatabaseConnectionError(
                    f"Could not connect to MongoDB after {attempt} attempts: {error}")
            log_with_context(logger, "WARNING",
                f"Retrying MongoDB connection in {self.settings.retry_delay_ms} ms",
                extra_data={"attempt": attempt, "max_attempts": max_attempts})
            await asyncio.sleep(self.settings.retry_delay)

    # ── driver notifications ─────────────────────────────────

    def _on_heartbeat_failed(self, event):
        # Runs on a pymongo monitor thread. One failing member (e.g. a
        # replica-set secondary) does not make the store unreachable.
        if self.state is not ConnectionState.CONNECTED:
            return
        log_with_context(logger, "ERROR", f"MongoDB error: {event.reply}",
            extra_data={"server": str(getattr(event, "connection_id", ""))})

    def _on_topology_changed(self, event):
        # Runs on a pymongo monitor thread.
        if self.state is not ConnectionState.CONNECTED:
            return
        if event.new_description.has_writable_server():
            return
        log_with_context(logger, "ERROR", "MongoDB disconnected: no writable server left",
            extra_data={"topology_type": str(event.new_description.topology_type_name)})
        if not self.settings.reconnect_on_disconnect:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._lost.set)

    # ── supervisor ───────────────────────────────────────────

    async def _supervise(self):
        while True:
            if not self.is_ready:
                await self.connect()
            await self._lost.wait()
            self._lost.clear()
            log_with_context(logger, "WARNING",
                f"MongoDB disconnected, reconnecting in {self.settings.retry_delay_ms} ms")
            await asyncio.sleep(self.settings.retry_delay)

    def _log_supervisor_exit(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_with_context(logger, "ERROR", f"Connection supervisor stopped: {exc}",
                exc_info=exc)

    def start(self) -> asyncio.Task:
        """Start the supervisor task; the returned task is its cancellation handle."""
        if self._task is not None and not self._task.done():
            return self._task
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._supervise())
        self._task.add_done_callback(self._log_supervisor_exit)
        return self._task

    async def stop(self) -> None:
        """Cancel the supervisor and close the client. Nothing is drained."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._set_state(ConnectionState.DISCONNECTING)
        if self._client is not None:
            await run_in_threadpool(self._client.close)
            self._client = None
        self._database = None
        self._host = None
        self._set_state(ConnectionState.DISCONNECTED)
        log_with_context(logger, "INFO", "MongoDB connection closed")


# ──────────────────────────────────────────────────────────────
# FastAPI dependencies
# ──────────────────────────────────────────────────────────────

def get_db_manager(request: Request) -> ConnectionManager:
    return request.app.state.db_manager


def require_database(request: Request) -> ConnectionManager:
    """Gate a route behind a live database connection."""
    manager = get_db_manager(request)
    state = manager.state
    if state is not ConnectionState.CONNECTED:
        raise ServiceUnavailableError(
            "The database is not available, please try again later",
            details={"database": state.label, "database_state": state.value},
        )
    return manager


def get_students_collection(request: Request) -> Collection:
    manager = get_db_manager(request)
    return manager.collection(manager.settings.students_collection)
