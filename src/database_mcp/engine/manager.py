"""
Connection lifecycle manager.

Owns the configured set of connections and drives every registry transition:
bulk initialization, add/replace, removal, retry of failed connections and
shutdown. Connect failures are captured into status records rather than raised
from bulk operations.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ConnectionFailedError, UnknownConnectionError
from .registry import ConnectionRegistry, ConnectionStatus
from .sql import DEFAULT_BACKENDS, BackendSpec, ConnectionConfig, DatabaseKind, LiveHandle, create_handle

logger = logging.getLogger(__name__)


@dataclass
class InitializeReport:
    """Outcome of a bulk initialize."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": dict(self.failures),
        }


@dataclass
class RetryReport:
    """
    Outcome of a retry pass.

    Attributes:
        attempted: Number of connect attempts made
        succeeded: Attempts that ended connected
        failed: Attempts that ended failed
        failures: Failure message per name
        statuses: Full status snapshot taken after the pass
        already_connected: True when a targeted retry found the connection live
    """

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    statuses: tuple[ConnectionStatus, ...] = ()
    already_connected: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": dict(self.failures),
            "statuses": [s.to_dict() for s in self.statuses],
        }


class ConnectionManager:
    """
    Manages named database connections over a ConnectionRegistry.

    Lifecycle operations for one name are serialized by a per-name lock so that
    an attempt's start and outcome are strictly ordered and a replace never
    leaks a handle. Operations on different names run concurrently.

    Example:
        manager = ConnectionManager()
        report = await manager.initialize(settings.connection_configs())
        handle = await manager.ensure_connected("analytics")
        ...
        await manager.disconnect_all()
    """

    def __init__(self, backends: Mapping[DatabaseKind, BackendSpec] | None = None) -> None:
        self.registry = ConnectionRegistry()
        self._backends = dict(DEFAULT_BACKENDS if backends is None else backends)
        self._configs: dict[str, ConnectionConfig] = {}
        self._name_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # Configured set

    def register(self, configs: Iterable[ConnectionConfig]) -> None:
        """Add configs to the configured set without connecting."""
        for config in configs:
            self._configs[config.name] = config

    def configured_names(self) -> list[str]:
        return list(self._configs)

    def get_config(self, name: str) -> ConnectionConfig:
        """
        Get the stored config for ``name``.

        Raises:
            UnknownConnectionError: If ``name`` is not configured
        """
        config = self._configs.get(name)
        if config is None:
            raise UnknownConnectionError(name, self._configs)
        return config

    def is_configured(self, name: str) -> bool:
        return name in self._configs

    def get_handle(self, name: str) -> LiveHandle | None:
        return self.registry.get_handle(name)

    def get_status(self, name: str) -> ConnectionStatus | None:
        return self.registry.get_status(name)

    async def snapshot(self) -> tuple[ConnectionStatus, ...]:
        return await self.registry.snapshot()

    async def status_counts(self) -> dict[str, int]:
        """Counts of configured, active, failed and never-attempted connections."""
        statuses = {s.name: s for s in await self.registry.snapshot()}
        active = sum(1 for s in statuses.values() if s.connected)
        failed = sum(1 for s in statuses.values() if s.state == "failed")
        unattempted = sum(1 for name in self._configs if name not in statuses)
        return {
            "configured": len(self._configs),
            "active": active,
            "failed": failed,
            "unattempted": unattempted,
        }

    # Lifecycle operations

    async def initialize(self, configs: Iterable[ConnectionConfig]) -> InitializeReport:
        """
        Register and connect every config concurrently.

        One failure never aborts the others; zero successes is a valid
        outcome and is reported, not raised.
        """
        configs = list(configs)
        self.register(configs)
        logger.info(
            f"Initializing {len(configs)} database connection(s): "
            f"{', '.join(c.name for c in configs) or '(none)'}"
        )

        statuses = await asyncio.gather(*(self.add_connection(c) for c in configs))

        report = InitializeReport(attempted=len(configs))
        for status in statuses:
            if status.connected:
                report.succeeded += 1
            else:
                report.failed += 1
                report.failures[status.name] = status.error or "Unknown error"

        logger.info(
            f"Database connections initialized: {report.succeeded} succeeded, "
            f"{report.failed} failed, {report.attempted} configured"
        )
        if report.failures:
            details = "; ".join(f"{name}: {reason}" for name, reason in report.failures.items())
            logger.warning(f"Some database connections failed to initialize: {details}")
        return report

    async def add_connection(
        self, config: ConnectionConfig, *, raise_on_failure: bool = False
    ) -> ConnectionStatus:
        """
        Connect ``config``, replacing any live handle under the same name.

        Args:
            config: Connection config (added to the configured set)
            raise_on_failure: Re-raise a connect failure after recording it

        Returns:
            The resulting status record

        Raises:
            ConnectionFailedError: Only when ``raise_on_failure`` is True
        """
        async with self._locked(config.name):
            return await self._attempt(config, raise_on_failure=raise_on_failure)

    async def remove_connection(self, name: str) -> None:
        """
        Disconnect and forget ``name``. Removing an absent name is a no-op.

        Raises:
            DisconnectError: If the live handle failed to disconnect; the
                entry is removed regardless
        """
        async with self._locked(name):
            self._configs.pop(name, None)
            await self.registry.remove(name)

    async def retry_failed(self, target: str | None = None) -> RetryReport:
        """
        Re-attempt failed connections.

        With ``target``, retries only that connection (a no-op if it is
        already connected). Without, retries every entry that is not
        connected, concurrently and independently.

        Raises:
            UnknownConnectionError: If ``target`` is not configured
        """
        if target is not None:
            self.get_config(target)
            current = self.registry.get_status(target)
            if current is not None and current.connected:
                logger.info(f"Connection '{target}' already connected, nothing to retry")
                return RetryReport(statuses=await self.registry.snapshot(), already_connected=True)
            status = await self._retry_one(target)
            if status is None:
                raise UnknownConnectionError(target, self._configs)
            return await self._retry_report([status])

        pending = [
            s.name
            for s in await self.registry.snapshot()
            if not s.connected and s.name in self._configs
        ]
        if not pending:
            logger.info("No failed connections to retry")
            return RetryReport(statuses=await self.registry.snapshot())

        logger.info(f"Retrying {len(pending)} failed connection(s): {', '.join(pending)}")
        statuses = await asyncio.gather(*(self._retry_one(name) for name in pending))
        return await self._retry_report([s for s in statuses if s is not None])

    async def ensure_connected(self, name: str) -> LiveHandle:
        """
        Return the live handle for ``name``, connecting it first if needed.

        Raises:
            UnknownConnectionError: If ``name`` is not configured
            ConnectionFailedError: If the connect attempt fails
        """
        self.get_config(name)
        handle = self.registry.get_handle(name)
        if handle is not None:
            return handle

        async with self._locked(name):
            handle = self.registry.get_handle(name)
            if handle is None:
                # Re-read under the lock: a remove may have run while waiting
                config = self.get_config(name)
                await self._attempt(config, raise_on_failure=True)
                handle = self.registry.get_handle(name)
        if handle is None:
            raise ConnectionFailedError(name, "Failed to establish database connection")
        return handle

    async def disconnect_all(self) -> dict[str, str]:
        """
        Disconnect every live handle and clear all state.

        Disconnects run concurrently; failures are logged and returned,
        never raised.

        Returns:
            Disconnect failure message per name
        """
        handles = await self.registry.detach_all()
        results = await asyncio.gather(
            *(handle.disconnect() for handle in handles.values()), return_exceptions=True
        )

        failures: dict[str, str] = {}
        for name, result in zip(handles, results):
            if isinstance(result, BaseException):
                failures[name] = str(result)
                logger.error(f"Error disconnecting from database '{name}': {result}")
            else:
                logger.info(f"Disconnected from database: {name}")

        await self.registry.clear()
        self._configs.clear()
        for name in [n for n, users in self._lock_users.items() if users == 0]:
            self._drop_lock(name)
        logger.info("All database connections disconnected")
        return failures

    # Internals

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        """Hold the per-name lock. Locks of unconfigured names are dropped once unused."""
        lock = self._name_locks.get(name)
        if lock is None:
            lock = self._name_locks[name] = asyncio.Lock()
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if self._lock_users[name] == 0 and name not in self._configs:
                self._drop_lock(name)

    def _drop_lock(self, name: str) -> None:
        self._name_locks.pop(name, None)
        self._lock_users.pop(name, None)

    async def _attempt(self, config: ConnectionConfig, *, raise_on_failure: bool) -> ConnectionStatus:
        """One connect attempt. Caller holds the per-name lock."""
        name = config.name
        self._configs[name] = config

        prior = await self.registry.upsert_attempt_start(name, config)
        if prior is not None:
            logger.warning(f"Connection '{name}' already exists, replacing")
            try:
                await prior.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting replaced connection '{name}': {e}")

        handle: LiveHandle | None = None
        try:
            handle = create_handle(config, self._backends)
            await handle.driver.connect()
        except asyncio.CancelledError:
            await self.registry.record_failure(name, "Connection attempt cancelled")
            logger.warning(f"Connection attempt for '{name}' cancelled")
            if handle is not None:
                try:
                    await handle.disconnect()
                except Exception as e:
                    logger.warning(f"Error closing cancelled connection '{name}': {e}")
            raise
        except Exception as e:
            status = await self.registry.record_failure(name, e)
            logger.error(f"Failed to connect '{name}' ({config.kind.value}): {e}")
            if raise_on_failure:
                if isinstance(e, ConnectionFailedError):
                    raise
                raise ConnectionFailedError(name, str(e)) from e
            return status

        status = await self.registry.record_success(name, handle)
        logger.info(f"Database connection added: {name} ({config.kind.value})")
        return status

    async def _retry_one(self, name: str) -> ConnectionStatus | None:
        """Retry ``name`` under its lock. None if it was removed meanwhile."""
        async with self._locked(name):
            config = self._configs.get(name)
            if config is None:
                return None
            # A concurrent add may have connected it while this retry waited
            current = self.registry.get_status(name)
            if current is not None and current.connected:
                return current
            return await self._attempt(config, raise_on_failure=False)

    async def _retry_report(self, statuses: list[ConnectionStatus]) -> RetryReport:
        report = RetryReport(attempted=len(statuses))
        for status in statuses:
            if status.connected:
                report.succeeded += 1
            else:
                report.failed += 1
                report.failures[status.name] = status.error or "Unknown error"
        report.statuses = await self.registry.snapshot()
        logger.info(f"Retry complete: {report.succeeded} succeeded, {report.failed} failed")
        return report
