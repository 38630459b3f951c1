'''
**connwright.sockets**
---------

Socket factories registered per scheme, and the providers they open sockets
through. A factory built over a custom `SocketProvider` delegates every connect
to that provider, which is how SOCKS proxying (or any other transport) slots
in underneath both `http` and `https` without the manager knowing.
'''
import ipaddress
import logging
import socket
import ssl
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

import httpcore
from socksio import ProtocolError, socks5

from connwright._errors import HostnameMismatchError, InvalidArgumentError
from connwright.tls import DefaultHostnameVerifier, HostnameVerifier, default_ssl_context

logger = logging.getLogger(__name__)


SockOpt = tuple[int, int, int | bytes]
Address = tuple[str, int]


def default_socket_options() -> list[SockOpt]:
    '''
    cross platform socket options for TCP connections

    Returns
    -------
    list[SockOpt]
    '''
    opts = []

    if hasattr(socket, "TCP_NODELAY"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))

    if hasattr(socket, "SO_KEEPALIVE"):
        opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    if hasattr(socket, "TCP_KEEPIDLE"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 60))

    if hasattr(socket, "TCP_KEEPINTVL"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))

    if hasattr(socket, "TCP_KEEPCNT"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 5))

    return opts


def apply_socket_options(sock: socket.socket, socket_options: Iterable[SockOpt] | None) -> None:
    for option in socket_options or ():
        sock.setsockopt(*option)


@runtime_checkable
class SocketProvider(Protocol):
    '''
    Produces a fresh socket, the factory then connects it to the target.
    '''
    def connect(self) -> socket.socket:
        ...


class FunctionSocketProvider:
    '''
    Adapts a zero-argument callable returning a socket.
    '''
    __slots__ = ('_func',)

    def __init__(self, func: Callable[[], socket.socket]) -> None:
        self._func = func

    def connect(self) -> socket.socket:
        return self._func()

    def __repr__(self) -> str:
        return f'FunctionSocketProvider({self._func!r})'


def as_socket_provider(provider: Any) -> SocketProvider:
    '''
    Accept a `SocketProvider` or a zero-argument callable.

    Raises
    ------
    InvalidArgumentError
    '''
    if isinstance(provider, socket.socket):
        raise InvalidArgumentError('Expected a socket provider, got a socket instance')

    # a class such as socket.socket has a `connect` attribute but is a factory
    if isinstance(provider, SocketProvider) and not isinstance(provider, type):
        return provider

    if callable(provider):
        return FunctionSocketProvider(provider)

    raise InvalidArgumentError(
        f'{type(provider).__name__} cannot be used as a socket provider'
    )


def _recv_reply(sock: socket.socket) -> bytes:
    data = sock.recv(4096)
    if not data:
        raise ConnectionError('SOCKS proxy closed the connection during the handshake')
    return data


def socks5_handshake(sock: socket.socket, address: Address) -> None:
    '''
    Run a no-auth SOCKS5 CONNECT for `address` over a socket already
    connected to the proxy.

    Parameters
    ----------
    sock : socket.socket
    address : Address

    Raises
    ------
    ConnectionError
        If the proxy refuses the method or the CONNECT command.
    '''
    conn = socks5.SOCKS5Connection()
    try:
        conn.send(socks5.SOCKS5AuthMethodsRequest([socks5.SOCKS5AuthMethod.NO_AUTH_REQUIRED]))
        sock.sendall(conn.data_to_send())
        reply = conn.receive_data(_recv_reply(sock))
        if (
            not isinstance(reply, socks5.SOCKS5AuthReply)
            or reply.method != socks5.SOCKS5AuthMethod.NO_AUTH_REQUIRED
        ):
            raise ConnectionError('SOCKS proxy requires an unsupported auth method')

        host, port = address
        conn.send(socks5.SOCKS5CommandRequest.from_address(
            socks5.SOCKS5Command.CONNECT, (host, port)
        ))
        sock.sendall(conn.data_to_send())
        reply = conn.receive_data(_recv_reply(sock))
        if (
            not isinstance(reply, socks5.SOCKS5Reply)
            or reply.reply_code != socks5.SOCKS5ReplyCode.SUCCEEDED
        ):
            code = getattr(reply, 'reply_code', None)
            raise ConnectionError(f'SOCKS proxy refused CONNECT to {host}:{port} ({code})')
    except ProtocolError as exc:
        raise ConnectionError(f'Malformed SOCKS proxy reply: {exc}') from exc


def _family_for(host: str) -> socket.AddressFamily:
    try:
        if ipaddress.ip_address(host).version == 6:
            return socket.AF_INET6
    except ValueError:
        pass
    return socket.AF_INET


class SocksSocket(socket.socket):
    '''
    A TCP socket whose `connect()` reaches the target through a SOCKS5 proxy.
    '''

    def __init__(self, proxy_host: str, proxy_port: int) -> None:
        super().__init__(_family_for(proxy_host), socket.SOCK_STREAM)
        self.proxy_address: Address = (proxy_host, int(proxy_port))

    def connect(self, address: Address) -> None:
        super().connect(self.proxy_address)
        socks5_handshake(self, address)


def socks_proxied_socket(hostname: str, port: int) -> SocksSocket:
    '''
    Create a socket proxied through SOCKS, using the given proxy hostname and port
    '''
    return SocksSocket(hostname, port)


class SocksSocketProvider:
    __slots__ = ('hostname', 'port')

    def __init__(self, hostname: str, port: int) -> None:
        self.hostname = hostname
        self.port = int(port)

    def connect(self) -> socket.socket:
        return socks_proxied_socket(self.hostname, self.port)

    def __repr__(self) -> str:
        return f'SocksSocketProvider({self.hostname!r}, {self.port})'


class PlainSocketFactory:
    '''
    Opens plaintext TCP connections, directly or through a provider.
    '''
    __slots__ = ('_provider',)

    def __init__(self, provider: SocketProvider | Callable[[], socket.socket] | None = None) -> None:
        self._provider = None if provider is None else as_socket_provider(provider)

    @property
    def provider(self) -> SocketProvider | None:
        return self._provider

    def create_socket(self) -> socket.socket | None:
        if self._provider is None:
            return None
        return self._provider.connect()

    def connect_socket(
        self,
        address: Address,
        *,
        timeout: float | None = None,
        source_address: Address | None = None,
        socket_options: Iterable[SockOpt] | None = None,
    ) -> socket.socket:
        '''
        Connect a socket to `address`.

        Parameters
        ----------
        address : Address
            The resolved (host, port) to connect to.
        timeout : float | None, optional
        source_address : Address | None, optional
        socket_options : Iterable[SockOpt] | None, optional

        Returns
        -------
        socket.socket
        '''
        sock = self.create_socket()
        if sock is None:
            sock = socket.create_connection(address, timeout, source_address=source_address)
            try:
                apply_socket_options(sock, socket_options)
            except OSError:
                sock.close()
                raise
            return sock

        try:
            apply_socket_options(sock, socket_options)
            sock.settimeout(timeout)
            if source_address is not None:
                sock.bind(source_address)
            sock.connect(address)
        except BaseException:
            sock.close()
            raise
        return sock

    def __repr__(self) -> str:
        return f'{type(self).__name__}(provider={self._provider!r})'


class TLSSocketFactory(PlainSocketFactory):
    '''
    Opens TCP connections like `PlainSocketFactory` and layers TLS on top,
    checking the peer with the hostname verifier after the handshake.
    '''
    __slots__ = ('ssl_context', 'hostname_verifier')

    def __init__(
        self,
        ssl_context: ssl.SSLContext | None = None,
        hostname_verifier: HostnameVerifier | None = None,
        provider: SocketProvider | Callable[[], socket.socket] | None = None,
    ) -> None:
        super().__init__(provider)
        self.ssl_context = ssl_context or default_ssl_context()
        self.hostname_verifier = hostname_verifier or DefaultHostnameVerifier()

    def layer_socket(
        self,
        sock: socket.socket,
        server_hostname: str | None,
        timeout: float | None = None,
    ) -> ssl.SSLSocket:
        '''
        Perform the TLS handshake over a connected socket.

        Parameters
        ----------
        sock : socket.socket
        server_hostname : str | None
        timeout : float | None, optional

        Returns
        -------
        ssl.SSLSocket

        Raises
        ------
        HostnameMismatchError
            If the hostname verifier rejects the peer certificate.
        '''
        try:
            sock.settimeout(timeout)
            tls_sock = self.ssl_context.wrap_socket(sock, server_hostname=server_hostname)
        except BaseException:
            sock.close()
            raise

        hostname = server_hostname or ''
        if not self.hostname_verifier.verify(hostname, tls_sock):
            tls_sock.close()
            raise HostnameMismatchError(
                f"Certificate doesn't match any of the subject alternative names for {hostname}"
            )
        return tls_sock


def plain_generic_socket_factory(
    socket_factory: SocketProvider | Callable[[], socket.socket],
) -> PlainSocketFactory:
    '''
    Given a provider (or function) that returns a new socket, create a
    plaintext factory that will use that socket.
    '''
    return PlainSocketFactory(socket_factory)


def tls_generic_socket_factory(
    socket_factory: SocketProvider | Callable[[], socket.socket],
    ssl_context: ssl.SSLContext | None = None,
    hostname_verifier: HostnameVerifier | None = None,
) -> TLSSocketFactory:
    '''
    Given a provider (or function) that returns a new socket, create a
    TLS factory that will use that socket. Falls back to the default
    context and the strict hostname verifier when none are given.
    '''
    return TLSSocketFactory(ssl_context, hostname_verifier, provider=socket_factory)


class NoopSessionStrategy:
    '''
    Async strategy for plaintext sessions, leaves the stream untouched.
    '''

    def is_layering_required(self) -> bool:
        return False

    async def upgrade(
        self,
        stream: httpcore.AsyncNetworkStream,
        server_hostname: str | None,
        timeout: float | None = None,
    ) -> httpcore.AsyncNetworkStream:
        return stream

    def __repr__(self) -> str:
        return 'NoopSessionStrategy()'


class TLSSessionStrategy:
    '''
    Async strategy that upgrades a session to TLS and verifies the hostname.
    '''
    __slots__ = ('ssl_context', 'hostname_verifier')

    def __init__(
        self,
        ssl_context: ssl.SSLContext | None = None,
        hostname_verifier: HostnameVerifier | None = None,
    ) -> None:
        self.ssl_context = ssl_context or default_ssl_context()
        self.hostname_verifier = hostname_verifier or DefaultHostnameVerifier()

    def is_layering_required(self) -> bool:
        return True

    async def upgrade(
        self,
        stream: httpcore.AsyncNetworkStream,
        server_hostname: str | None,
        timeout: float | None = None,
    ) -> httpcore.AsyncNetworkStream:
        tls_stream = await stream.start_tls(
            self.ssl_context,
            server_hostname=server_hostname,
            timeout=timeout,
        )
        hostname = server_hostname or ''
        ssl_object = tls_stream.get_extra_info('ssl_object')
        if ssl_object is None or not self.hostname_verifier.verify(hostname, ssl_object):
            await tls_stream.aclose()
            raise HostnameMismatchError(
                f"Certificate doesn't match any of the subject alternative names for {hostname}"
            )
        return tls_stream

    def __repr__(self) -> str:
        return f'TLSSessionStrategy(hostname_verifier={self.hostname_verifier!r})'
