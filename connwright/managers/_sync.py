import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

import httpcore
import httpx

from connwright._backend import RegistryBackend
from connwright._resolver import DnsResolver
from connwright._transport import (
    ResponseStream,
    map_httpcore_exceptions,
    to_core_request,
    with_timeout_overrides,
)
from connwright.managers._base import (
    ConnectionManager,
    LeaseGate,
    PoolStats,
    Route,
)
from connwright.registry import Registry, into_registry
from connwright.sockets import SockOpt, default_socket_options

logger = logging.getLogger(__name__)


class _CoreConnectionManager(ConnectionManager):
    '''
    Shared machinery of the synchronous managers: a lease gate in front of
    an `httpcore.ConnectionPool` whose sockets come from the registry.
    The pool is created on first use with the limits in effect then.
    '''

    def __init__(
        self,
        registry: Registry | Mapping[str, Any],
        *,
        max_total: int,
        max_per_route: int,
        dns_resolver: DnsResolver | None = None,
        time_to_live: float | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> None:
        self._registry = into_registry(registry)
        self._backend = RegistryBackend(self._registry, dns_resolver)
        self._gate = LeaseGate(max_total, max_per_route)
        self._time_to_live = time_to_live
        self._socket_options = (
            default_socket_options() if socket_options is None else list(socket_options)
        )
        self._pool: httpcore.ConnectionPool | None = None
        self._pool_lock = threading.Lock()
        self._shut_down = False

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    @property
    def time_to_live(self) -> float | None:
        return self._time_to_live

    @property
    def max_total(self) -> int:
        return self._gate.max_total

    @property
    def max_per_route(self) -> int:
        return self._gate.max_per_route

    def _check_limits_mutable(self) -> None:
        if self._pool is not None:
            raise RuntimeError('Pool limits are fixed once the first connection has been leased')

    def _get_pool(self) -> httpcore.ConnectionPool:
        with self._pool_lock:
            if self._pool is None:
                https_factory = self._registry.get('https')
                self._pool = httpcore.ConnectionPool(
                    ssl_context=getattr(https_factory, 'ssl_context', None),
                    max_connections=self._gate.max_total,
                    max_keepalive_connections=self._gate.max_total,
                    keepalive_expiry=self._time_to_live,
                    network_backend=self._backend,
                    socket_options=self._socket_options,
                )
            return self._pool

    def _request_extensions(self, request: httpx.Request) -> dict:
        return request.extensions

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if self._shut_down:
            raise RuntimeError(f'{type(self).__name__} has been shut down')

        extensions = self._request_extensions(request)
        core_request = to_core_request(request, extensions=extensions)
        route = Route.from_url(core_request.url)
        pool_timeout = extensions.get('timeout', {}).get('pool')

        with map_httpcore_exceptions():
            lease = self._gate.acquire(route, timeout=pool_timeout)
            try:
                response = self._get_pool().handle_request(core_request)
            except BaseException:
                lease.release()
                raise

        return httpx.Response(
            status_code=response.status,
            headers=response.headers,
            stream=ResponseStream(response.stream, lease.release),
            extensions=response.extensions,
        )

    def total_stats(self) -> PoolStats:
        available = 0
        if self._pool is not None:
            available = sum(1 for conn in self._pool.connections if conn.is_idle())
        return PoolStats(
            leased=self._gate.leased,
            pending=self._gate.pending,
            available=available,
            max=self._gate.max_total,
        )

    def leased_for(self, route: Route) -> int:
        return self._gate.leased_for(route)

    def shutdown(self) -> None:
        '''
        Close every pooled connection, subsequent requests are refused.
        '''
        if self._shut_down:
            return
        self._shut_down = True

        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()
        logger.debug(f'{type(self).__name__} shut down')

    def __repr__(self) -> str:
        state = 'shut down' if self._shut_down else 'open'
        return f'<{type(self).__name__} [{state}] max_total={self.max_total}>'


class BasicConnectionManager(_CoreConnectionManager):
    '''
    Manages a single connection, reused while requests keep going to the
    same route and replaced when they do not. Not meant to be shared.
    '''

    def __init__(
        self,
        registry: Registry | Mapping[str, Any],
        *,
        dns_resolver: DnsResolver | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> None:
        super().__init__(
            registry,
            max_total=1,
            max_per_route=1,
            dns_resolver=dns_resolver,
            socket_options=socket_options,
        )
        self._socket_timeout: int | None = None

    @property
    def socket_timeout(self) -> int | None:
        '''
        Read/write timeout override in milliseconds, `None` keeps the
        timeouts of each request.
        '''
        return self._socket_timeout

    @socket_timeout.setter
    def socket_timeout(self, value: int | None) -> None:
        self._socket_timeout = value

    def _request_extensions(self, request: httpx.Request) -> dict:
        if self._socket_timeout is None:
            return request.extensions
        seconds = self._socket_timeout / 1000 if self._socket_timeout > 0 else None
        return with_timeout_overrides(request.extensions, read=seconds, write=seconds)


class PoolingConnectionManager(_CoreConnectionManager):
    '''
    A bounded pool of reusable connections. `max_total` caps concurrent
    leases overall and `max_per_route` caps them per (scheme, host, port).
    Connections older than `time_to_live` seconds are not reused.
    '''
    DEFAULT_MAX_TOTAL = 20
    DEFAULT_MAX_PER_ROUTE = 2

    def __init__(
        self,
        registry: Registry | Mapping[str, Any],
        *,
        dns_resolver: DnsResolver | None = None,
        time_to_live: float | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> None:
        super().__init__(
            registry,
            max_total=self.DEFAULT_MAX_TOTAL,
            max_per_route=self.DEFAULT_MAX_PER_ROUTE,
            dns_resolver=dns_resolver,
            time_to_live=time_to_live,
            socket_options=socket_options,
        )

    @_CoreConnectionManager.max_total.setter
    def max_total(self, value: int) -> None:
        self._check_limits_mutable()
        self._gate.max_total = int(value)

    @_CoreConnectionManager.max_per_route.setter
    def max_per_route(self, value: int) -> None:
        self._check_limits_mutable()
        self._gate.max_per_route = int(value)

    def set_max_total(self, value: int) -> None:
        self.max_total = value

    def set_default_max_per_route(self, value: int) -> None:
        self.max_per_route = value
