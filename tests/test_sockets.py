import socket

import pytest

from connwright import (
    FunctionSocketProvider,
    HostnameMismatchError,
    InvalidArgumentError,
    PlainSocketFactory,
    SocksSocket,
    SocksSocketProvider,
    TLSSocketFactory,
    plain_generic_socket_factory,
    socks_proxied_socket,
    tls_generic_socket_factory,
)
from connwright.sockets import as_socket_provider, socks5_handshake
from connwright import DefaultHostnameVerifier, ManagerConfig, resolve_tls_context


def _http_get(sock: socket.socket, host: str, path: str = "/") -> bytes:
    sock.sendall(f"GET {path} HTTP/1.1\r\nHost: {host}\r\nConnection: close\r\n\r\n".encode())
    data = b""
    while chunk := sock.recv(4096):
        data += chunk
    return data


def _trusting_context(certs):
    return resolve_tls_context(ManagerConfig(trust_store=certs.ca_pem, trust_store_type="pem")).ssl_context


class TestProviders:
    def test_callable_is_adapted(self):
        provider = as_socket_provider(socket.socket)

        assert isinstance(provider, FunctionSocketProvider)

    def test_provider_passes_through(self):
        provider = SocksSocketProvider("127.0.0.1", 1080)

        assert as_socket_provider(provider) is provider

    def test_socket_instance_is_rejected(self):
        with socket.socket() as sock:
            with pytest.raises(InvalidArgumentError):
                as_socket_provider(sock)

    def test_non_callable_is_rejected(self):
        with pytest.raises(InvalidArgumentError):
            plain_generic_socket_factory(42)


class TestGenericFactories:
    def test_plain_factory_uses_the_provider(self, http_server):
        created = []

        def make_socket():
            sock = socket.socket()
            created.append(sock)
            return sock

        factory = plain_generic_socket_factory(make_socket)
        sock = factory.connect_socket((http_server.host, http_server.port), timeout=5)
        with sock:
            assert sock is created[0]
            assert b"/via-provider" in _http_get(sock, http_server.host, "/via-provider")

        assert len(created) == 1

    def test_socket_class_is_used_as_a_provider(self, http_server):
        factory = plain_generic_socket_factory(socket.socket)

        with factory.connect_socket((http_server.host, http_server.port), timeout=5) as sock:
            assert b"/from-class" in _http_get(sock, http_server.host, "/from-class")

    def test_tls_factory_uses_the_provider(self, certs, tls_server):
        calls = []

        def make_socket():
            calls.append(1)
            return socket.socket()

        factory = tls_generic_socket_factory(make_socket, _trusting_context(certs))
        assert isinstance(factory.hostname_verifier, DefaultHostnameVerifier)

        raw = factory.connect_socket((tls_server.host, tls_server.port), timeout=5)
        with factory.layer_socket(raw, "localhost", timeout=5) as tls_sock:
            assert b"/secure" in _http_get(tls_sock, "localhost", "/secure")

        assert calls == [1]

    def test_default_factory_connects_directly(self, http_server):
        factory = PlainSocketFactory()

        assert factory.create_socket() is None
        with factory.connect_socket((http_server.host, http_server.port), timeout=5) as sock:
            assert b"200 OK" in _http_get(sock, http_server.host)

    def test_hostname_mismatch(self, certs, tls_server):
        factory = TLSSocketFactory(_trusting_context(certs))
        raw = factory.connect_socket((tls_server.host, tls_server.port), timeout=5)

        with pytest.raises(HostnameMismatchError, match="wrong.test"):
            factory.layer_socket(raw, "wrong.test", timeout=5)


class TestSocks:
    def test_socks_socket_tunnels_to_target(self, socks_proxy, http_server):
        proxy_host, proxy_port = socks_proxy.server_address
        sock = socks_proxied_socket(proxy_host, proxy_port)

        assert isinstance(sock, SocksSocket)
        with sock:
            sock.settimeout(5)
            sock.connect((http_server.host, http_server.port))
            assert b"/tunnelled" in _http_get(sock, http_server.host, "/tunnelled")

        assert socks_proxy.targets == [(http_server.host, http_server.port)]

    def test_hostname_targets_are_sent_to_the_proxy(self, socks_proxy, http_server):
        proxy_host, proxy_port = socks_proxy.server_address

        with socket.create_connection((proxy_host, proxy_port), timeout=5) as sock:
            socks5_handshake(sock, ("localhost", http_server.port))

        assert socks_proxy.targets == [("localhost", http_server.port)]

    def test_refused_handshake(self):
        with socket.socket() as listener:
            listener.bind(("127.0.0.1", 0))
            listener.listen(1)
            sock = socket.create_connection(listener.getsockname(), timeout=5)
            peer, _ = listener.accept()
            # answer the method negotiation with "no acceptable methods"
            peer.sendall(b"\x05\xff")
            with sock, peer:
                with pytest.raises(ConnectionError):
                    socks5_handshake(sock, ("127.0.0.1", 80))
