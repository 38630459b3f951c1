import abc
import asyncio
import collections
import logging
import threading
from typing import NamedTuple, Self

import httpcore
import httpx

from connwright._transport import AsyncBorrowedTransport, BorrowedTransport
from connwright.registry import Registry

logger = logging.getLogger(__name__)


DEFAULT_PORTS = {'http': 80, 'https': 443}


class Route(NamedTuple):
    scheme: str
    host: str
    port: int

    @classmethod
    def from_url(cls, url: httpcore.URL) -> Self:
        scheme = url.scheme.decode('ascii').lower()
        host = url.host.decode('ascii').lower()
        return cls(scheme, host, url.port or DEFAULT_PORTS.get(scheme, 0))

    def __str__(self) -> str:
        return f'{self.scheme}://{self.host}:{self.port}'


class PoolStats(NamedTuple):
    leased: int
    pending: int
    available: int
    max: int


class Lease:
    '''
    One checked-out slot of a gate, releasing twice is a no-op.
    '''
    __slots__ = ('_gate', 'route', '_released')

    def __init__(self, gate: '_GateCounts', route: Route) -> None:
        self._gate = gate
        self.route = route
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._gate._release(self.route)


class _GateCounts:
    def __init__(self, max_total: int, max_per_route: int) -> None:
        self.max_total = max_total
        self.max_per_route = max_per_route
        self._per_route: collections.Counter[Route] = collections.Counter()
        self._leased = 0
        self._pending = 0

    @property
    def leased(self) -> int:
        return self._leased

    @property
    def pending(self) -> int:
        return self._pending

    def leased_for(self, route: Route) -> int:
        return self._per_route[route]

    def _available(self, route: Route) -> bool:
        return (
            self._leased < self.max_total
            and self._per_route[route] < self.max_per_route
        )

    def _take(self, route: Route) -> Lease:
        self._leased += 1
        self._per_route[route] += 1
        return Lease(self, route)

    def _give_back(self, route: Route) -> None:
        self._leased -= 1
        self._per_route[route] -= 1
        if self._per_route[route] <= 0:
            del self._per_route[route]

    def _release(self, route: Route) -> None:
        raise NotImplementedError


class LeaseGate(_GateCounts):
    '''
    Bounds concurrent leases per manager and per route for threads.
    '''

    def __init__(self, max_total: int, max_per_route: int) -> None:
        super().__init__(max_total, max_per_route)
        self._cond = threading.Condition()

    def acquire(self, route: Route, timeout: float | None = None) -> Lease:
        '''
        Block until a slot for `route` is free.

        Raises
        ------
        httpcore.PoolTimeout
            If no slot frees up within `timeout` seconds.
        '''
        with self._cond:
            self._pending += 1
            try:
                acquired = self._cond.wait_for(lambda: self._available(route), timeout=timeout)
            finally:
                self._pending -= 1

            if not acquired:
                raise httpcore.PoolTimeout(
                    f'Timeout waiting for a connection to {route} '
                    f'({self._leased}/{self.max_total} leased)'
                )
            return self._take(route)

    def _release(self, route: Route) -> None:
        with self._cond:
            self._give_back(route)
            self._cond.notify_all()


class AsyncLeaseGate(_GateCounts):
    '''
    The event loop flavour of `LeaseGate`, only ever touched from the
    reactor loop.
    '''

    def __init__(self, max_total: int, max_per_route: int) -> None:
        super().__init__(max_total, max_per_route)
        self._waiters: list[asyncio.Future] = []

    async def acquire(self, route: Route, timeout: float | None = None) -> Lease:
        loop = asyncio.get_running_loop()
        self._pending += 1
        try:
            async with asyncio.timeout(timeout):
                while not self._available(route):
                    waiter = loop.create_future()
                    self._waiters.append(waiter)
                    try:
                        await waiter
                    finally:
                        if waiter in self._waiters:
                            self._waiters.remove(waiter)
        except TimeoutError:
            raise httpcore.PoolTimeout(
                f'Timeout waiting for a connection to {route} '
                f'({self._leased}/{self.max_total} leased)'
            ) from None
        finally:
            self._pending -= 1
        return self._take(route)

    def _release(self, route: Route) -> None:
        self._give_back(route)
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)


class Shutdownable(abc.ABC):
    '''
    The shutdown capability shared by every connection manager.
    '''
    shutdown_mode: str = ''

    @abc.abstractmethod
    def shutdown(self) -> None:
        ...

    @property
    @abc.abstractmethod
    def is_shut_down(self) -> bool:
        ...


class ConnectionManager(Shutdownable, httpx.BaseTransport):
    '''
    A synchronous connection manager, usable directly as an httpx transport.

    Passing the manager itself to `httpx.Client(transport=...)` hands over
    ownership (closing the client shuts the manager down), use
    `transport()` to lend it for a single client instead.
    '''
    shutdown_mode = 'sync'

    @property
    @abc.abstractmethod
    def registry(self) -> Registry:
        ...

    def transport(self) -> httpx.BaseTransport:
        return BorrowedTransport(self)

    def close(self) -> None:
        self.shutdown()


class AsyncConnectionManager(Shutdownable, httpx.AsyncBaseTransport):
    '''
    A connection manager driven by an I/O reactor, usable directly as an
    httpx async transport. Shutdown stops the reactor as well.
    '''
    shutdown_mode = 'reactor'

    @property
    @abc.abstractmethod
    def registry(self) -> Registry:
        ...

    def transport(self) -> httpx.AsyncBaseTransport:
        return AsyncBorrowedTransport(self)

    async def aclose(self) -> None:
        await asyncio.to_thread(self.shutdown)


class ReusableAsyncConnectionManager:
    '''
    Capability tag for async managers that may be shared across requests.
    '''
    __slots__ = ()
