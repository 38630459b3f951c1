"""Shared fixtures: throwaway certificates, loopback HTTP/TLS servers and a SOCKS5 proxy"""

import dataclasses as dc
import http.server
import ipaddress
import select
import socket
import socketserver
import ssl
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID


STORE_PASSWORD = "changeit"

# seconds the test servers wait before answering `/slow`
SLOW_RESPONSE_DELAY = 1.0


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _make_ca():
    key = _key()
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name("connwright test ca"))
        .issuer_name(_name("connwright test ca"))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return key, cert


def _issue(ca_key, ca_cert, common_name: str, *, sans=(), usage=ExtendedKeyUsageOID.SERVER_AUTH):
    key = _key()
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(list(sans)), critical=False)
    return key, builder.sign(ca_key, hashes.SHA256())


def _pem_cert(cert) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def _pem_key(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@dc.dataclass
class Certs:
    ca_pem: Path
    server_pem: Path
    server_key_pem: Path
    client_pem: Path
    client_key_pem: Path
    client_p12: Path
    trust_p12: Path
    ca_cert: x509.Certificate


@pytest.fixture(scope="session")
def certs(tmp_path_factory) -> Certs:
    root = tmp_path_factory.mktemp("certs")
    ca_key, ca_cert = _make_ca()
    server_key, server_cert = _issue(
        ca_key,
        ca_cert,
        "localhost",
        sans=[
            x509.DNSName("localhost"),
            x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ],
    )
    client_key, client_cert = _issue(
        ca_key, ca_cert, "connwright client", usage=ExtendedKeyUsageOID.CLIENT_AUTH
    )
    encryption = serialization.BestAvailableEncryption(STORE_PASSWORD.encode())

    paths = Certs(
        ca_pem=root / "ca.pem",
        server_pem=root / "server.pem",
        server_key_pem=root / "server.key",
        client_pem=root / "client.pem",
        client_key_pem=root / "client.key",
        client_p12=root / "client.p12",
        trust_p12=root / "trust.p12",
        ca_cert=ca_cert,
    )
    paths.ca_pem.write_bytes(_pem_cert(ca_cert))
    paths.server_pem.write_bytes(_pem_cert(server_cert) + _pem_cert(ca_cert))
    paths.server_key_pem.write_bytes(_pem_key(server_key))
    paths.client_pem.write_bytes(_pem_cert(client_cert))
    paths.client_key_pem.write_bytes(_pem_key(client_key))
    paths.client_p12.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"client", client_key, client_cert, [ca_cert], encryption
        )
    )
    paths.trust_p12.write_bytes(
        pkcs12.serialize_key_and_certificates(None, None, None, [ca_cert], encryption)
    )
    return paths


class _EchoHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _reply(self, body: bytes) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        if self.path.startswith("/slow"):
            time.sleep(SLOW_RESPONSE_DELAY)
        self._reply(self.path.encode())

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length", 0))
        self._reply(self.rfile.read(length))

    def log_message(self, format, *args) -> None:
        pass


class _Server(http.server.ThreadingHTTPServer):
    daemon_threads = True


@dc.dataclass
class RunningServer:
    host: str
    port: int
    scheme: str = "http"

    def url(self, path: str = "/", host: str | None = None) -> str:
        return f"{self.scheme}://{host or self.host}:{self.port}{path}"


def _serve(server: socketserver.BaseServer):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def http_server():
    server = _Server(("127.0.0.1", 0), _EchoHandler)
    _serve(server)
    yield RunningServer("127.0.0.1", server.server_address[1])
    server.shutdown()
    server.server_close()


def _tls_server(certs: Certs, *, require_client_cert: bool = False):
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(certs.server_pem, certs.server_key_pem)
    if require_client_cert:
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.load_verify_locations(cafile=certs.ca_pem)

    server = _Server(("127.0.0.1", 0), _EchoHandler)
    server.socket = ctx.wrap_socket(server.socket, server_side=True)
    _serve(server)
    return server


@pytest.fixture
def tls_server(certs):
    server = _tls_server(certs)
    yield RunningServer("127.0.0.1", server.server_address[1], "https")
    server.shutdown()
    server.server_close()


@pytest.fixture
def mtls_server(certs):
    server = _tls_server(certs, require_client_cert=True)
    yield RunningServer("127.0.0.1", server.server_address[1], "https")
    server.shutdown()
    server.server_close()


@pytest.fixture
def silent_server():
    """Accepts TCP connections at the kernel level but never speaks"""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    yield RunningServer("127.0.0.1", listener.getsockname()[1], "https")
    listener.close()


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("client went away")
        data += chunk
    return data


class _Socks5Handler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        sock = self.request
        _version, n_methods = _recv_exact(sock, 2)
        _recv_exact(sock, n_methods)
        sock.sendall(b"\x05\x00")

        _version, _cmd, _rsv, atyp = _recv_exact(sock, 4)
        if atyp == 1:
            host = socket.inet_ntoa(_recv_exact(sock, 4))
        elif atyp == 3:
            host = _recv_exact(sock, _recv_exact(sock, 1)[0]).decode()
        else:
            host = socket.inet_ntop(socket.AF_INET6, _recv_exact(sock, 16))
        port = int.from_bytes(_recv_exact(sock, 2), "big")
        self.server.targets.append((host, port))

        upstream = socket.create_connection((host, port), timeout=5)
        sock.sendall(b"\x05\x00\x00\x01" + socket.inet_aton("127.0.0.1") + port.to_bytes(2, "big"))
        with upstream:
            peers = {sock: upstream, upstream: sock}
            while True:
                readable, _, _ = select.select(list(peers), [], [], 5)
                if not readable:
                    return
                for source in readable:
                    data = source.recv(65536)
                    if not data:
                        return
                    peers[source].sendall(data)


class _SocksServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.targets: list[tuple[str, int]] = []


@pytest.fixture
def socks_proxy():
    server = _SocksServer(("127.0.0.1", 0), _Socks5Handler)
    _serve(server)
    yield server
    server.shutdown()
    server.server_close()


class StaticResolver:
    """dns-resolver stand-in mapping names to fixed addresses"""

    def __init__(self, table: dict[str, list[str]]):
        self.table = table
        self.lookups: list[str] = []

    def resolve(self, host: str) -> list[str]:
        self.lookups.append(host)
        return self.table.get(host, [host])


@pytest.fixture
def static_resolver():
    return StaticResolver
