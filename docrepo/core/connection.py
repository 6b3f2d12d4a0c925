"""
Connection lifecycle management for the storage engine.

One ConnectionManager owns the single logical MongoDB connection shared by
all repositories. It is constructed explicitly and passed to each
Repository; there is no module-level instance.

Lifecycle:
    DISCONNECTED --setup()--> CONNECTING --ping ok--> CONNECTED
    CONNECTING --retries exhausted--> DISCONNECTED (setup raises)
    CONNECTED --teardown() / transport closed--> DISCONNECTED

Usage:
    manager = ConnectionManager()
    await manager.setup(ConnectionConfig(
        connection_handle="mongodb://localhost:27017",
        database_name="app",
    ))

    users = UserRepository(manager)
    ...
    await manager.teardown()
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import AsyncMongoClient, monitoring

from docrepo.core.config import VALID_URI_SCHEMES, Settings, get_settings
from docrepo.core.exceptions import DatabaseNotConnectedError
from docrepo.core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

LifecycleHandler = Callable[..., Any]


class ConnectionState(str, Enum):
    """Connection states of the manager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LifecycleEvent(str, Enum):
    """Events emitted on lifecycle transitions."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectionConfig(BaseModel):
    """
    Options for ConnectionManager.setup().

    Attributes:
        connection_handle: An AsyncMongoClient instance, or a MongoDB URI from
            which the manager builds its own client
        database_name: Database all repositories operate on
        max_retries: Total connection attempts before setup fails
        retry_delay: Seconds to sleep between attempts
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    connection_handle: Any
    database_name: str = Field(min_length=1)
    max_retries: int = Field(default=5, ge=1)
    retry_delay: float = Field(default=1.0, ge=0.0)

    @field_validator("connection_handle")
    @classmethod
    def validate_connection_handle(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("connection_handle is required")
        if isinstance(v, str) and not any(
            v.startswith(scheme + "://") for scheme in VALID_URI_SCHEMES
        ):
            raise ValueError(f"connection_handle URI must be a MongoDB URI, got {v[:20]}...")
        return v

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConnectionConfig":
        """Build a config from Settings (defaults to get_settings())."""
        settings = settings or get_settings()
        return cls(
            connection_handle=settings.mongo_uri,
            database_name=settings.mongo_database,
            max_retries=settings.mongo_max_retries,
            retry_delay=settings.mongo_retry_delay,
        )


class TransportMonitor(monitoring.ServerHeartbeatListener, monitoring.TopologyListener):
    """
    Driver event listener that feeds transport signals back into a manager.

    Registered automatically on clients the manager builds from a URI. For a
    client built by the caller, pass ``manager.transport_monitor`` in the
    client's ``event_listeners``.

    Driver callbacks can arrive on a monitor thread, so they are handed to
    the manager's event loop rather than acted on directly.
    """

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    # Heartbeats
    def started(self, event) -> None:
        pass

    def succeeded(self, event) -> None:
        pass

    def failed(self, event) -> None:
        self._manager._call_from_driver(self._manager._on_transport_error, event.reply)

    # Topology
    def opened(self, event) -> None:
        pass

    def description_changed(self, event) -> None:
        pass

    def closed(self, event) -> None:
        self._manager._call_from_driver(self._manager._on_transport_closed)


class ConnectionManager:
    """
    Owns the shared, retried connection to MongoDB.

    Dependents call ensure_ready() and wait for readiness instead of failing
    immediately. Concurrent setup() calls coalesce onto one attempt, and
    concurrent ensure_ready() callers all resolve off the same readiness
    signal.
    """

    def __init__(self, max_retries: int = 5, retry_delay: float = 1.0):
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._state = ConnectionState.DISCONNECTED
        self._client: Optional[Any] = None
        self._db: Optional[Any] = None
        self._database_name: Optional[str] = None

        # Shared outcome of the current setup attempt
        self._setup_task: Optional[asyncio.Task] = None
        # Set once per successful attempt, cleared whenever readiness is lost
        self._ready = asyncio.Event()

        self._handlers: Dict[LifecycleEvent, List[LifecycleHandler]] = {
            event: [] for event in LifecycleEvent
        }
        self._handler_tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.transport_monitor = TransportMonitor(self)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConnectionManager":
        settings = settings or get_settings()
        return cls(
            max_retries=settings.mongo_max_retries,
            retry_delay=settings.mongo_retry_delay,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def database_name(self) -> Optional[str]:
        return self._database_name

    @property
    def client(self) -> Optional[Any]:
        return self._client

    # -- Lifecycle --

    async def setup(self, config: ConnectionConfig) -> None:
        """
        Start (or join) connection establishment and wait for its outcome.

        Idempotent: while an attempt is in flight or after it completed,
        further calls await the same outcome instead of starting a second
        attempt. A failed setup keeps failing with the same error until
        teardown() resets it.

        Raises:
            Exception: The last driver error once all attempts have failed
        """
        self._max_retries = config.max_retries
        self._retry_delay = config.retry_delay

        if self._setup_task is None:
            self._loop = asyncio.get_running_loop()
            self._setup_task = asyncio.ensure_future(self._establish_connection(config))

        # Shield so one cancelled caller does not cancel the shared attempt
        await asyncio.shield(self._setup_task)

    async def _establish_connection(self, config: ConnectionConfig) -> None:
        if self._state is ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        self._ready.clear()

        owns_client = isinstance(config.connection_handle, str)
        if owns_client:
            client = AsyncMongoClient(
                config.connection_handle,
                event_listeners=[self.transport_monitor],
            )
        else:
            client = config.connection_handle

        open_transport = retry_with_backoff(
            max_attempts=config.max_retries,
            base_delay=config.retry_delay,
            max_delay=config.retry_delay,
            exponential_base=1.0,
            jitter=False,
            label="MongoDB connection",
        )(self._open_transport)

        try:
            await open_transport(client)
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            if owns_client:
                await _close_client(client)
            raise
        except Exception as e:
            self._state = ConnectionState.DISCONNECTED
            if owns_client:
                await _close_client(client)
            self._emit(LifecycleEvent.ERROR, e)
            raise

        self._client = client
        self._db = client[config.database_name]
        self._database_name = config.database_name
        self._state = ConnectionState.CONNECTED
        self._ready.set()

        logger.info(
            f"Connected to MongoDB database '{config.database_name}'",
            extra={"database": config.database_name, "state": self._state.value},
        )
        self._emit(LifecycleEvent.CONNECTED)

    async def _open_transport(self, client: Any) -> None:
        await client.admin.command("ping")

    async def teardown(self) -> None:
        """
        Close the transport and reset to DISCONNECTED.

        Clears the setup marker, so the next setup() starts a fresh attempt.
        An attempt still in flight is cancelled.
        """
        task, self._setup_task = self._setup_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        client = self._client
        database_name = self._database_name

        self._client = None
        self._db = None
        self._database_name = None
        self._state = ConnectionState.DISCONNECTED
        self._ready.clear()

        if client is not None:
            await _close_client(client)

        logger.info(
            "Disconnected from MongoDB",
            extra={"database": database_name, "state": self._state.value},
        )
        self._emit(LifecycleEvent.DISCONNECTED)

    # -- Access --

    async def ensure_ready(self) -> Any:
        """
        Return the database handle, waiting for a connection if needed.

        An existing handle is returned immediately, even if the transport has
        since reported itself closed. Otherwise waits (without polling) for
        the next successful connection, up to max_retries * retry_delay
        seconds.

        Raises:
            DatabaseNotConnectedError: If no connection is made in time
        """
        if self._db is not None:
            return self._db

        if self._state is not ConnectionState.CONNECTED:
            timeout = self._max_retries * self._retry_delay
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                raise DatabaseNotConnectedError() from None

        # Torn down between the signal and this resume
        if self._db is None:
            raise DatabaseNotConnectedError()
        return self._db

    def get_session_or_fail(self) -> Any:
        """Return the database handle if connected, without waiting."""
        if self._state is not ConnectionState.CONNECTED or self._db is None:
            raise DatabaseNotConnectedError()
        return self._db

    def is_ready(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # -- Health --

    async def ping(self) -> bool:
        """
        Check that the server answers.

        Returns:
            True if a ping round-trip succeeds, False otherwise
        """
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    def info(self) -> Dict[str, Any]:
        """Connection metadata for monitoring."""
        return {
            "state": self._state.value,
            "database": self._database_name,
            "max_retries": self._max_retries,
            "retry_delay": self._retry_delay,
            "ready_timeout": self._max_retries * self._retry_delay,
        }

    # -- Events --

    def on(self, event: Union[LifecycleEvent, str], handler: LifecycleHandler) -> LifecycleHandler:
        """
        Register a lifecycle handler.

        Handlers may be plain callables or coroutine functions. ERROR
        handlers receive the exception as their only argument.

        Returns:
            The handler (for later off())
        """
        self._handlers[LifecycleEvent(event)].append(handler)
        return handler

    def off(self, event: Union[LifecycleEvent, str], handler: LifecycleHandler) -> None:
        handlers = self._handlers[LifecycleEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: LifecycleEvent, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                result = handler(*args)
            except Exception:
                logger.exception(f"Lifecycle handler for '{event.value}' failed")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async lifecycle handler failed",
                exc_info=task.exception(),
            )

    # -- Transport signals --

    def _call_from_driver(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def _on_transport_closed(self) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.DISCONNECTED
        self._ready.clear()
        logger.warning(
            "MongoDB transport closed",
            extra={"database": self._database_name, "state": self._state.value},
        )
        self._emit(LifecycleEvent.DISCONNECTED)

    def _on_transport_error(self, error: Exception) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return

        logger.error(f"MongoDB connection error: {error}")
        self._emit(LifecycleEvent.ERROR, error)


async def _close_client(client: Any) -> None:
    # AsyncMongoClient.close() is a coroutine; test doubles may be sync
    result = client.close()
    if inspect.isawaitable(result):
        await result
