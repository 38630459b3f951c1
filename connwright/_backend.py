import asyncio
import contextlib
import logging
import select
import socket
import ssl
import time
from collections.abc import Iterable, Iterator
from typing import Any

import httpcore

from connwright._resolver import DnsResolver, resolve_dns_resolver
from connwright.registry import Registry
from connwright.sockets import SockOpt

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _map_socket_errors(
    timeout_exc: type[Exception],
    error_exc: type[Exception],
) -> Iterator[None]:
    try:
        yield
    except socket.timeout as exc:
        raise timeout_exc(str(exc) or 'timed out') from exc
    except OSError as exc:
        raise error_exc(str(exc)) from exc


def _is_socket_readable(sock: socket.socket | None) -> bool:
    '''
    An idle keep-alive socket that is readable has either been closed by
    the peer or received unexpected data, either way it is unusable.
    '''
    if sock is None or sock.fileno() == -1:
        return True
    readable, _, _ = select.select([sock], [], [], 0)
    return bool(readable)


class SocketStream(httpcore.NetworkStream):
    '''
    A blocking socket exposed to httpcore. `start_tls` is delegated to the
    registry's `https` factory instead of the context httpcore hands in.
    '''

    def __init__(self, sock: socket.socket, tls_factory: Any = None) -> None:
        self._sock = sock
        self._tls_factory = tls_factory

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        with _map_socket_errors(httpcore.ReadTimeout, httpcore.ReadError):
            self._sock.settimeout(timeout)
            return self._sock.recv(max_bytes)

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        if not buffer:
            return

        with _map_socket_errors(httpcore.WriteTimeout, httpcore.WriteError):
            while buffer:
                self._sock.settimeout(timeout)
                sent = self._sock.send(buffer)
                buffer = buffer[sent:]

    def close(self) -> None:
        self._sock.close()

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.NetworkStream:
        if self._tls_factory is None:
            self.close()
            raise httpcore.ConnectError('No factory registered for scheme https')

        with _map_socket_errors(httpcore.ConnectTimeout, httpcore.ConnectError):
            tls_sock = self._tls_factory.layer_socket(self._sock, server_hostname, timeout)
        return SocketStream(tls_sock)

    def get_extra_info(self, info: str) -> Any:
        if info == 'ssl_object' and isinstance(self._sock, ssl.SSLSocket):
            return self._sock._sslobj  # type: ignore[attr-defined]
        if info == 'client_addr':
            return self._sock.getsockname()
        if info == 'server_addr':
            return self._sock.getpeername()
        if info == 'socket':
            return self._sock
        if info == 'is_readable':
            return _is_socket_readable(self._sock)
        return None


class RegistryBackend(httpcore.NetworkBackend):
    '''
    Network backend for the synchronous pools. Every TCP connection is
    opened by the registry's `http` factory, TLS is layered by its
    `https` factory.
    '''

    def __init__(
        self,
        registry: Registry,
        dns_resolver: DnsResolver | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolve_dns_resolver(dns_resolver)

    @property
    def registry(self) -> Registry:
        return self._registry

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> httpcore.NetworkStream:
        factory = self._registry.get('http')
        if factory is None:
            raise httpcore.ConnectError('No factory registered for scheme http')

        source_address = None if local_address is None else (local_address, 0)
        with _map_socket_errors(httpcore.ConnectTimeout, httpcore.ConnectError):
            addresses = self._resolver.resolve(host)

        last_exc: Exception | None = None
        for address in addresses:
            try:
                with _map_socket_errors(httpcore.ConnectTimeout, httpcore.ConnectError):
                    sock = factory.connect_socket(
                        (address, port),
                        timeout=timeout,
                        source_address=source_address,
                        socket_options=socket_options,
                    )
            except httpcore.ConnectError as exc:
                logger.debug(f'Connecting to {host} via {address}:{port} failed: {exc}')
                last_exc = exc
                continue
            return SocketStream(sock, self._registry.get('https'))

        if last_exc is not None:
            raise last_exc
        raise httpcore.ConnectError(f'No addresses to connect to for {host}')

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> httpcore.NetworkStream:
        raise httpcore.ConnectError('Unix sockets are not supported by registry backends')

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class SessionStream(httpcore.AsyncNetworkStream):
    '''
    Wraps an async stream so that `start_tls` goes through the registry's
    `https` session strategy.
    '''

    def __init__(
        self,
        inner: httpcore.AsyncNetworkStream,
        strategy: Any = None,
        connect_timeout: float | None = None,
    ) -> None:
        self._inner = inner
        self._strategy = strategy
        self._connect_timeout = connect_timeout

    async def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        return await self._inner.read(max_bytes, timeout=timeout)

    async def write(self, buffer: bytes, timeout: float | None = None) -> None:
        await self._inner.write(buffer, timeout=timeout)

    async def aclose(self) -> None:
        await self._inner.aclose()

    async def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.AsyncNetworkStream:
        if self._strategy is None:
            await self.aclose()
            raise httpcore.ConnectError('No session strategy registered for scheme https')

        # the configured connect timeout also bounds the handshake
        if self._connect_timeout:
            timeout = self._connect_timeout

        try:
            return await self._strategy.upgrade(self._inner, server_hostname, timeout)
        except ssl.CertificateError as exc:
            raise httpcore.ConnectError(str(exc)) from exc

    def get_extra_info(self, info: str) -> Any:
        return self._inner.get_extra_info(info)


class AsyncRegistryBackend(httpcore.AsyncNetworkBackend):
    '''
    Network backend for the asynchronous pools. Sockets are opened by anyio,
    the registry's session strategies decide whether and how they are layered.
    DNS lookups run in the loop's default executor.
    '''

    def __init__(
        self,
        registry: Registry,
        dns_resolver: DnsResolver | None = None,
        *,
        connect_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolve_dns_resolver(dns_resolver)
        self._connect_timeout = connect_timeout
        self._inner = httpcore.AnyIOBackend()

    @property
    def registry(self) -> Registry:
        return self._registry

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        strategy = self._registry.get('http')
        if strategy is None:
            raise httpcore.ConnectError('No session strategy registered for scheme http')

        if self._connect_timeout:
            timeout = self._connect_timeout

        loop = asyncio.get_running_loop()
        with _map_socket_errors(httpcore.ConnectTimeout, httpcore.ConnectError):
            addresses = await loop.run_in_executor(None, self._resolver.resolve, host)

        last_exc: Exception | None = None
        for address in addresses:
            try:
                stream = await self._inner.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except httpcore.ConnectError as exc:
                logger.debug(f'Connecting to {host} via {address}:{port} failed: {exc}')
                last_exc = exc
                continue
            stream = await strategy.upgrade(stream, host, timeout)
            return SessionStream(stream, self._registry.get('https'), self._connect_timeout)

        if last_exc is not None:
            raise last_exc
        raise httpcore.ConnectError(f'No addresses to connect to for {host}')

    async def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        raise httpcore.ConnectError('Unix sockets are not supported by registry backends')

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
