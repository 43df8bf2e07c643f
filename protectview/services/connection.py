"""
Cache of authenticated NVR connections.

Connections are keyed by "baseUrl:username". Concurrent callers for the same
key share one in-flight login: the pending task is registered before the
first await, so a second caller finds it instead of starting another login.
All methods must run on the bridge event loop.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

from ..errors import LoginFailed
from .signals import race_with_timeout


def connection_key(base_url: str, username: str) -> str:
    return f'{base_url}:{username}'


@dataclass
class CachedConnection:
    handle: Any
    last_health_check: float
    is_healthy: bool = True


class ConnectionCache:
    """Maps (baseUrl, username) to a logged-in vendor client"""

    def __init__(self, client_factory: Callable, bootstraps=None, login_timeout: float = 60.0,
                 health_check_interval: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._client_factory = client_factory
        self._bootstraps = bootstraps
        self.login_timeout = login_timeout
        self.health_check_interval = health_check_interval
        self._clock = clock
        self._connections: Dict[str, CachedConnection] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self.login_attempts = 0

    async def get_connection(self, base_url: str, username: str, password: str,
                             allow_self_signed: bool = False):
        """Return a logged-in client, reusing a healthy one or a login in flight"""
        key = connection_key(base_url, username)

        cached = self._connections.get(key)
        if cached is not None:
            if self._check_health(cached):
                print(f'[Protect] Reusing existing connection for {key}')
                return cached.handle
            print(f'[Protect] Connection for {key} is unhealthy, reconnecting')
            self._evict(key)

        pending = self._pending.get(key)
        if pending is not None:
            print(f'[Protect] Waiting for existing login for {key}')
            return await asyncio.shield(pending)

        print(f'[Protect] Creating new connection for {key}')
        task = asyncio.get_running_loop().create_task(
            self._login(key, base_url, username, password, allow_self_signed))
        self._pending[key] = task
        task.add_done_callback(lambda t: self._login_finished(key, t))
        return await asyncio.shield(task)

    def _check_health(self, cached: CachedConnection) -> bool:
        """Cheap local check, re-evaluated at most once per interval"""
        now = self._clock()
        if now - cached.last_health_check < self.health_check_interval:
            return cached.is_healthy

        try:
            cached.is_healthy = bool(cached.handle.is_authenticated())
        except Exception as e:
            print(f'[Protect] Health check failed: {e}')
            cached.is_healthy = False
        cached.last_health_check = now
        return cached.is_healthy

    async def _login(self, key, base_url, username, password, allow_self_signed):
        handle = self._client_factory(base_url, username, password, allow_self_signed)
        self.login_attempts += 1
        try:
            ok = await race_with_timeout(handle.login(), handle.login_signal(),
                                         timeout=self.login_timeout,
                                         description=f'Login to {base_url}')
            if not ok:
                raise LoginFailed(f'Login to {base_url} failed for user {username}')

            bootstrap = await race_with_timeout(handle.fetch_bootstrap(),
                                                timeout=self.login_timeout,
                                                description=f'Bootstrap fetch from {base_url}')
        except Exception as e:
            print(f'[Protect] Login failed for {key}: {e}')
            await self._dispose(handle)
            raise

        # An NVR without devices is still a valid connection
        bootstrap = bootstrap or {}
        if self._bootstraps is not None:
            self._bootstraps.put(key, bootstrap)
        print(f'[Protect] Successfully connected to {base_url} '
              f'({len(bootstrap.get("cameras") or [])} cameras)')
        return handle

    def _login_finished(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if task.cancelled() or task.exception() is not None:
            return
        self._connections[key] = CachedConnection(handle=task.result(),
                                                  last_health_check=self._clock())

    def _evict(self, key: str) -> None:
        cached = self._connections.pop(key, None)
        if self._bootstraps is not None:
            self._bootstraps.invalidate(key)
        if cached is not None:
            asyncio.get_running_loop().create_task(self._dispose(cached.handle))

    async def _dispose(self, handle) -> None:
        try:
            await handle.close()
        except Exception as e:
            print(f'[Protect] Error closing connection: {e}')

    def invalidate(self, base_url: str, username: str) -> None:
        """Drop a connection, e.g. after the NVR rejected a request with it"""
        self._evict(connection_key(base_url, username))

    def __len__(self):
        return len(self._connections)

    def __contains__(self, key):
        return key in self._connections

    async def close_all(self) -> None:
        for key in list(self._connections):
            cached = self._connections.pop(key)
            await self._dispose(cached.handle)
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
