"""
Connection registry holding per-name status records and live handles.

This module provides the ConnectionRegistry class, the authoritative mapping
from connection name to its configuration, live handle and status record.

Features:
- Status entry created the instant a connect attempt begins
- Exactly one outcome recorded per attempt (success or failure)
- Live handles detached under the lock, disconnected outside it
- Immutable status snapshots for readers
- All mutations serialized by a single asyncio.Lock

Invariants:
- A name with a live handle has ``connected=True``
- ``connected=False`` implies no live handle for that name
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from .exceptions import DisconnectError
from .sql import ConnectionConfig, DatabaseKind, LiveHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStatus:
    """
    Status record for one connection name.

    Replaced (never mutated) on every transition, so snapshots stay valid
    after the registry moves on.

    Attributes:
        name: Connection name
        kind: Backend kind
        connected: Whether a live handle is installed
        error: Message of the latest failed attempt, None otherwise
        last_attempt: When the latest attempt started
        config: Config used for the latest attempt
    """

    name: str
    kind: DatabaseKind
    connected: bool = False
    error: str | None = None
    last_attempt: datetime | None = None
    config: ConnectionConfig | None = None

    @property
    def state(self) -> str:
        """connected, failed, or attempting."""
        if self.connected:
            return "connected"
        if self.error is not None:
            return "failed"
        return "attempting"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind.value,
            "connected": self.connected,
            "error": self.error,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
        }


class ConnectionRegistry:
    """
    Central registry for connection status and live handles.

    The registry never performs network I/O while holding its lock. Methods
    that displace a live handle detach it under the lock and disconnect it
    afterwards, or hand it back to the caller to disconnect.

    Example:
        registry = ConnectionRegistry()
        prior = await registry.upsert_attempt_start(config.name, config)
        try:
            handle = create_handle(config)
            await handle.driver.connect()
        except Exception as e:
            await registry.record_failure(config.name, e)
        else:
            await registry.record_success(config.name, handle)
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._statuses: dict[str, ConnectionStatus] = {}
        self._handles: dict[str, LiveHandle] = {}

    async def upsert_attempt_start(
        self, name: str, config: ConnectionConfig
    ) -> LiveHandle | None:
        """
        Record that a connect attempt for ``name`` is starting.

        Any live handle under ``name`` is detached and returned so the caller
        can disconnect it before connecting again.

        Args:
            name: Connection name
            config: Config the attempt will use

        Returns:
            The detached prior handle, or None
        """
        async with self._lock:
            prior = self._handles.pop(name, None)
            self._statuses[name] = ConnectionStatus(
                name=name,
                kind=config.kind,
                connected=False,
                error=None,
                last_attempt=datetime.now(timezone.utc),
                config=config,
            )
            return prior

    async def record_success(self, name: str, handle: LiveHandle) -> ConnectionStatus:
        """Install ``handle`` and mark ``name`` connected."""
        async with self._lock:
            stray = self._handles.pop(name, None)
            self._handles[name] = handle
            status = self._statuses.get(name)
            if status is None:
                status = ConnectionStatus(
                    name=name,
                    kind=handle.kind,
                    last_attempt=datetime.now(timezone.utc),
                    config=handle.driver.config,
                )
            status = replace(status, connected=True, error=None)
            self._statuses[name] = status

        if stray is not None and stray is not handle:
            await self._disconnect_quietly(name, stray)
        return status

    async def record_failure(self, name: str, error: BaseException | str) -> ConnectionStatus:
        """Mark ``name`` failed, dropping any live handle it still holds."""
        async with self._lock:
            stray = self._handles.pop(name, None)
            status = self._statuses.get(name)
            if status is None:
                raise KeyError(f"No status entry for connection '{name}'")
            status = replace(status, connected=False, error=str(error))
            self._statuses[name] = status

        if stray is not None:
            await self._disconnect_quietly(name, stray)
        return status

    async def remove(self, name: str) -> bool:
        """
        Delete ``name`` from the registry, disconnecting its live handle.

        Returns:
            True if an entry existed

        Raises:
            DisconnectError: If the handle failed to disconnect (entry is
                already removed when this is raised)
        """
        async with self._lock:
            handle = self._handles.pop(name, None)
            existed = self._statuses.pop(name, None) is not None

        if handle is not None:
            try:
                await handle.disconnect()
            except DisconnectError:
                raise
            except Exception as e:
                raise DisconnectError(name, str(e)) from e
            logger.info(f"Database connection removed: {name}")
        return existed or handle is not None

    async def snapshot(self) -> tuple[ConnectionStatus, ...]:
        """Immutable view of every status entry."""
        async with self._lock:
            return tuple(self._statuses.values())

    async def detach_all(self) -> dict[str, LiveHandle]:
        """Detach every live handle and mark all entries disconnected."""
        async with self._lock:
            handles = dict(self._handles)
            self._handles.clear()
            for name in handles:
                status = self._statuses.get(name)
                if status is not None:
                    self._statuses[name] = replace(status, connected=False)
            return handles

    async def clear(self) -> None:
        async with self._lock:
            self._handles.clear()
            self._statuses.clear()

    def get_handle(self, name: str) -> LiveHandle | None:
        return self._handles.get(name)

    def get_status(self, name: str) -> ConnectionStatus | None:
        return self._statuses.get(name)

    def names(self) -> list[str]:
        return list(self._statuses)

    def __len__(self) -> int:
        return len(self._statuses)

    def __contains__(self, name: object) -> bool:
        return name in self._statuses

    async def _disconnect_quietly(self, name: str, handle: LiveHandle) -> None:
        try:
            await handle.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting stale handle for '{name}': {e}")
