import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

import httpcore
import httpx

from connwright._backend import AsyncRegistryBackend
from connwright._errors import IOReactorStartupError
from connwright._resolver import DnsResolver
from connwright._transport import (
    map_httpcore_exceptions,
    to_core_request,
    with_timeout_overrides,
)
from connwright.managers._base import (
    AsyncConnectionManager,
    AsyncLeaseGate,
    Lease,
    PoolStats,
    ReusableAsyncConnectionManager,
    Route,
)
from connwright.reactor import IOReactor
from connwright.registry import Registry, into_registry
from connwright.sockets import SockOpt

logger = logging.getLogger(__name__)

# bound on closing pooled connections at shutdown, independent of the reactor grace period
POOL_CLOSE_TIMEOUT = 5.0


class _Handoff:
    '''
    Passes a leased response from the reactor to the caller exactly once.
    If the caller gave up first, the reactor side keeps ownership and
    closes it, otherwise the caller does.
    '''

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self._result: tuple[httpcore.Response, Lease] | None = None

    def deliver(self, result: tuple[httpcore.Response, Lease]) -> bool:
        with self._lock:
            if self._abandoned:
                return False
            self._result = result
            return True

    def abandon(self) -> tuple[httpcore.Response, Lease] | None:
        with self._lock:
            self._abandoned = True
            result, self._result = self._result, None
            return result


async def _close_leased(response: httpcore.Response, lease: Lease) -> None:
    try:
        await response.aclose()
    finally:
        lease.release()


class ReactorResponseStream(httpx.AsyncByteStream):
    '''
    A response body living on the reactor loop, read chunk by chunk from
    the caller's loop. Closing it hands the lease back.
    '''

    def __init__(
        self,
        reactor: IOReactor,
        core_stream: Any,
        lease: Lease,
    ) -> None:
        self._reactor = reactor
        self._core_stream = core_stream
        self._lease = lease
        self._closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        iterator = self._core_stream.__aiter__()

        async def next_chunk() -> bytes | None:
            try:
                return await iterator.__anext__()
            except StopAsyncIteration:
                return None

        with map_httpcore_exceptions():
            while (chunk := await self._reactor.run(next_chunk())) is not None:
                yield chunk

    async def _close_on_reactor(self) -> None:
        try:
            if hasattr(self._core_stream, 'aclose'):
                await self._core_stream.aclose()
        finally:
            self._lease.release()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._reactor.is_running():
            return
        await self._reactor.run(self._close_on_reactor())


class AsyncPoolingConnectionManager(AsyncConnectionManager):
    '''
    A bounded pool of connections multiplexed by one I/O reactor.

    Requests can come from any event loop, they are executed on the
    reactor's loop and the response body is streamed back.
    '''
    DEFAULT_MAX_TOTAL = 20
    DEFAULT_MAX_PER_ROUTE = 2

    def __init__(
        self,
        reactor: IOReactor,
        registry: Registry | Mapping[str, Any],
        *,
        dns_resolver: DnsResolver | None = None,
        time_to_live: float | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> None:
        self._reactor = reactor
        self._registry = into_registry(registry)
        io_config = reactor.config
        self._backend = AsyncRegistryBackend(
            self._registry,
            dns_resolver,
            connect_timeout=io_config.connect_timeout / 1000 or None,
        )
        self._socket_timeout = io_config.so_timeout / 1000 or None
        self._socket_options = (
            io_config.socket_options() if socket_options is None else list(socket_options)
        )
        self._gate = AsyncLeaseGate(self.DEFAULT_MAX_TOTAL, self.DEFAULT_MAX_PER_ROUTE)
        self._time_to_live = time_to_live
        self._pool: httpcore.AsyncConnectionPool | None = None
        self._shut_down = False
        reactor.add_housekeeping_hook(self._evict_expired)

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def reactor(self) -> IOReactor:
        return self._reactor

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    @property
    def time_to_live(self) -> float | None:
        return self._time_to_live

    @property
    def max_total(self) -> int:
        return self._gate.max_total

    @max_total.setter
    def max_total(self, value: int) -> None:
        self._check_limits_mutable()
        self._gate.max_total = int(value)

    @property
    def max_per_route(self) -> int:
        return self._gate.max_per_route

    @max_per_route.setter
    def max_per_route(self, value: int) -> None:
        self._check_limits_mutable()
        self._gate.max_per_route = int(value)

    def set_max_total(self, value: int) -> None:
        self.max_total = value

    def set_default_max_per_route(self, value: int) -> None:
        self.max_per_route = value

    def _check_limits_mutable(self) -> None:
        if self._pool is not None:
            raise RuntimeError('Pool limits are fixed once the first connection has been leased')

    def _get_pool(self) -> httpcore.AsyncConnectionPool:
        # only called on the reactor loop
        if self._pool is None:
            https_strategy = self._registry.get('https')
            self._pool = httpcore.AsyncConnectionPool(
                ssl_context=getattr(https_strategy, 'ssl_context', None),
                max_connections=self._gate.max_total,
                max_keepalive_connections=self._gate.max_total,
                keepalive_expiry=self._time_to_live,
                network_backend=self._backend,
                socket_options=self._socket_options,
            )
        return self._pool

    async def _evict_expired(self) -> None:
        if self._pool is None:
            return
        for connection in self._pool.connections:
            if connection.is_idle() and connection.has_expired():
                logger.debug(f'Evicting expired connection {connection!r}')
                await connection.aclose()

    async def _dispatch(
        self,
        core_request: httpcore.Request,
        route: Route,
        pool_timeout: float | None,
        handoff: _Handoff,
    ) -> tuple[httpcore.Response, Lease]:
        lease = await self._gate.acquire(route, timeout=pool_timeout)
        try:
            response = await self._get_pool().handle_async_request(core_request)
        except BaseException:
            lease.release()
            raise
        if not handoff.deliver((response, lease)):
            await _close_leased(response, lease)
        return response, lease

    def _close_abandoned(self, response: httpcore.Response, lease: Lease) -> None:
        logger.debug(f'Closing a response abandoned by its caller on {lease.route}')
        try:
            self._reactor.submit(_close_leased(response, lease))
        except IOReactorStartupError:
            lease.release()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self._shut_down:
            raise RuntimeError(f'{type(self).__name__} has been shut down')

        # the body is read here, on the caller's loop
        content = await request.aread()
        extensions = with_timeout_overrides(request.extensions, read=self._socket_timeout)
        core_request = to_core_request(request, content=content, extensions=extensions)
        route = Route.from_url(core_request.url)
        pool_timeout = extensions.get('timeout', {}).get('pool')

        handoff = _Handoff()
        with map_httpcore_exceptions():
            try:
                response, lease = await self._reactor.run(
                    self._dispatch(core_request, route, pool_timeout, handoff)
                )
            except asyncio.CancelledError:
                # the result may have been delivered just before the cancellation
                if (abandoned := handoff.abandon()) is not None:
                    self._close_abandoned(*abandoned)
                raise

        return httpx.Response(
            status_code=response.status,
            headers=response.headers,
            stream=ReactorResponseStream(self._reactor, response.stream, lease),
            extensions=response.extensions,
        )

    async def _stats(self) -> PoolStats:
        available = 0
        if self._pool is not None:
            available = sum(1 for conn in self._pool.connections if conn.is_idle())
        return PoolStats(
            leased=self._gate.leased,
            pending=self._gate.pending,
            available=available,
            max=self._gate.max_total,
        )

    def total_stats(self) -> PoolStats:
        if not self._reactor.is_running():
            return PoolStats(0, 0, 0, self._gate.max_total)
        return self._reactor.submit(self._stats()).result()

    async def _close_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.aclose()

    def shutdown(self) -> None:
        '''
        Close pooled connections on the reactor, bounded by
        POOL_CLOSE_TIMEOUT, then stop the reactor within its grace period.
        '''
        if self._shut_down:
            return
        self._shut_down = True

        if self._reactor.is_running() and not self._reactor.in_reactor_thread():
            try:
                self._reactor.submit(self._close_pool()).result(timeout=POOL_CLOSE_TIMEOUT)
            except TimeoutError:
                logger.warning(f'Closing pooled connections took longer than {POOL_CLOSE_TIMEOUT}s')
            except IOReactorStartupError as exc:
                logger.warning(f'Could not close pooled connections: {exc}')

        self._reactor.shutdown()
        logger.debug(f'{type(self).__name__} shut down')

    def __repr__(self) -> str:
        state = 'shut down' if self._shut_down else 'open'
        return f'<{type(self).__name__} [{state}] max_total={self.max_total} {self._reactor!r}>'


class ReusableAsyncPoolingConnectionManager(
    AsyncPoolingConnectionManager,
    ReusableAsyncConnectionManager,
):
    '''
    An async pooling manager tagged as safe to share across requests.
    '''
