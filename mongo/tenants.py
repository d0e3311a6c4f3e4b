#!/usr/bin/env python3
"""Tenant connection registry - one isolated MongoDB database per tenant.

Each tenant's data lives in its own database (``tenant_<tenantId>``) behind its
own Motor client. The registry creates clients lazily on first reference,
caches them while they stay healthy and drops them as soon as the driver
reports that the tenant's deployment became unreachable or the client closed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import monitoring

from mongo.constants import (
    MONGODB_CONNECTION_STRING,
    TENANT_DB_PREFIX,
    tenant_client_options,
)

logger = logging.getLogger(__name__)


class TenantConnectionError(ConnectionError):
    """Raised when a tenant database connection could not be created."""

    def __init__(self, tenant_id: str, reason: str):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Failed to connect to tenant database for '{tenant_id}': {reason}")


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


StateObserver = Callable[["TenantConnection", ConnectionState], None]


class TenantConnection:
    """A tenant's Motor client bound to that tenant's database."""

    def __init__(self, tenant_id: str, db_name: str, client: Any, host: Optional[str] = None):
        self.tenant_id = tenant_id
        self.db_name = db_name
        self.client = client
        self.database = client[db_name]
        self.host = host
        self.state = ConnectionState.CONNECTING
        self.created_at = datetime.now(timezone.utc)
        self.last_error: Optional[str] = None
        self._observers: List[StateObserver] = []
        # entity name -> accessor, managed by mongo.accessors
        self.accessors: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"TenantConnection(db_name={self.db_name!r}, state={self.state.value!r})"

    def __getitem__(self, collection_name: str):
        return self.database[collection_name]

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def on_state_change(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def _transition(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        for observer in list(self._observers):
            try:
                observer(self, state)
            except Exception as e:
                logger.error(f"State observer failed for {self.db_name}: {e}")

    def mark_connected(self) -> None:
        self._transition(ConnectionState.CONNECTED)

    def mark_error(self, error: Any = None) -> None:
        # A closed handle stays closed
        if self.state is ConnectionState.DISCONNECTED:
            return
        self.last_error = str(error) if error is not None else None
        self._transition(ConnectionState.ERROR)

    def mark_disconnected(self) -> None:
        self._transition(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Close the underlying client. Safe to call more than once."""
        if self.state is ConnectionState.DISCONNECTED:
            return
        self.client.close()
        self.mark_disconnected()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "name": self.db_name,
            "host": self.host,
            "createdAt": self.created_at.isoformat(),
            "lastError": self.last_error,
        }


class _TenantTopologyListener(monitoring.TopologyListener):
    """Feeds driver topology events into a TenantConnection.

    pymongo publishes these from its monitor threads, so state changes are
    handed back to the event loop that owns the connection.
    """

    def __init__(self) -> None:
        self._connection: Optional[TenantConnection] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, connection: TenantConnection, loop: asyncio.AbstractEventLoop) -> None:
        self._connection = connection
        self._loop = loop

    def _dispatch(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if self._connection is None or loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # loop shut down between the check and the call
            pass

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        pass

    def description_changed(self, event: monitoring.TopologyDescriptionChangedEvent) -> None:
        previous = event.previous_description
        current = event.new_description
        if previous.has_readable_server() and not current.has_readable_server():
            self._dispatch(self._connection.mark_error, "no readable servers in topology")

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        if self._connection is not None:
            self._dispatch(self._connection.mark_disconnected)


def tenant_database_name(tenant_id: Any, prefix: str = TENANT_DB_PREFIX) -> str:
    """Deterministic database name for a tenant.

    Ids that already carry the prefix are used verbatim.
    """
    if tenant_id is None or not str(tenant_id).strip():
        raise ValueError("tenant_id must be a non-empty value")
    tenant_id = str(tenant_id).strip()
    if tenant_id.startswith(prefix):
        return tenant_id
    return f"{prefix}{tenant_id}"


def tenant_uri(base_uri: str, db_name: str) -> str:
    """Swap the database path of ``base_uri`` for ``db_name``, keeping the options."""
    parts = urlsplit(base_uri)
    return urlunsplit((parts.scheme, parts.netloc, f"/{db_name}", parts.query, parts.fragment))


def _hosts_from_uri(uri: str) -> str:
    # strip credentials: user:pass@host1:27017,host2:27017
    return urlsplit(uri).netloc.rpartition("@")[2]


class TenantConnectionRegistry:
    """Creates, caches and tears down per-tenant database connections."""

    def __init__(
        self,
        base_uri: Optional[str] = None,
        *,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
        client_options: Optional[Dict[str, Any]] = None,
        db_prefix: str = TENANT_DB_PREFIX,
    ):
        self.base_uri = base_uri or MONGODB_CONNECTION_STRING
        self.db_prefix = db_prefix
        self._client_factory = client_factory
        self._client_options = tenant_client_options() if client_options is None else dict(client_options)
        self._connections: Dict[str, TenantConnection] = {}
        # db name -> creation task; concurrent first callers share one task
        self._pending: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, tenant_id: Any) -> bool:
        return tenant_database_name(tenant_id, self.db_prefix) in self._connections

    async def get_connection(self, tenant_id: Any) -> TenantConnection:
        """Return the tenant's live connection, creating it if needed.

        Raises:
            ValueError: if tenant_id is empty
            TenantConnectionError: if the connection could not be created
        """
        db_name = tenant_database_name(tenant_id, self.db_prefix)

        connection = self._connections.get(db_name)
        if connection is not None:
            if connection.is_connected:
                return connection
            # Remove stale connection
            self._connections.pop(db_name, None)

        task = self._pending.get(db_name)
        if task is None:
            task = asyncio.ensure_future(self._create(str(tenant_id).strip(), db_name))
            self._pending[db_name] = task
        # One waiter giving up must not abort the creation for the others
        return await asyncio.shield(task)

    async def _create(self, tenant_id: str, db_name: str) -> TenantConnection:
        uri = tenant_uri(self.base_uri, db_name)
        listener = _TenantTopologyListener()
        client = None
        created = False
        logger.info(f"Creating tenant connection for: {db_name}")
        try:
            try:
                client = self._client_factory(uri, event_listeners=[listener], **self._client_options)
                connection = TenantConnection(tenant_id, db_name, client, host=_hosts_from_uri(uri))
                listener.bind(connection, asyncio.get_running_loop())

                # Test connection
                await client.admin.command("ping")
            except Exception as e:
                logger.error(f"Failed to create tenant connection for {db_name}: {e}")
                raise TenantConnectionError(tenant_id, str(e)) from e

            connection.on_state_change(self._on_state_change)
            connection.mark_connected()
            self._connections[db_name] = connection
            created = True
            return connection
        finally:
            if self._pending.get(db_name) is asyncio.current_task():
                del self._pending[db_name]
            if not created and client is not None:
                client.close()

    def _on_state_change(self, connection: TenantConnection, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            logger.info(f"Tenant DB connected: {connection.db_name}")
            return

        evicted = self._connections.get(connection.db_name) is connection
        if evicted:
            del self._connections[connection.db_name]

        if state is ConnectionState.ERROR:
            logger.error(f"Tenant DB error ({connection.db_name}): {connection.last_error}")
            if evicted:
                # Nobody will reuse this client; release its sockets
                connection.client.close()
        elif state is ConnectionState.DISCONNECTED:
            logger.info(f"Tenant DB disconnected: {connection.db_name}")

    async def close_connection(self, tenant_id: Any) -> None:
        """Close and forget a single tenant connection."""
        db_name = tenant_database_name(tenant_id, self.db_prefix)
        connection = self._connections.pop(db_name, None)
        if connection is None:
            return
        try:
            await connection.close()
            logger.info(f"Closed tenant connection: {db_name}")
        except Exception as e:
            logger.error(f"Error closing tenant connection for {db_name}: {e}")

    async def close_all(self) -> None:
        """Close every cached tenant connection concurrently and clear the cache."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

        connections = list(self._connections.values())
        self._connections.clear()

        results = await asyncio.gather(
            *(connection.close() for connection in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, BaseException):
                logger.error(f"Error closing connection for {connection.db_name}: {result}")
            else:
                logger.info(f"Closed tenant connection: {connection.db_name}")

        logger.info(f"All tenant connections closed ({len(connections)})")

    def get_connection_status(self) -> Dict[str, Any]:
        """Per-tenant snapshot of the cache. Read-only."""
        return {
            "totalConnections": len(self._connections),
            "pendingConnections": len(self._pending),
            "connections": {
                db_name: connection.snapshot()
                for db_name, connection in self._connections.items()
            },
        }

    def health_check(self) -> Dict[str, Any]:
        """Summarize cached connection health without touching the network."""
        health: Dict[str, Any] = {
            "healthy": True,
            "totalConnections": len(self._connections),
            "healthyConnections": 0,
            "unhealthyConnections": 0,
            "details": {},
        }

        for db_name, connection in self._connections.items():
            is_healthy = connection.is_connected
            health["details"][db_name] = {
                "healthy": is_healthy,
                "state": connection.state.value,
                "name": connection.db_name,
            }
            if is_healthy:
                health["healthyConnections"] += 1
            else:
                health["unhealthyConnections"] += 1
                health["healthy"] = False

        return health
