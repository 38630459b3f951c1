import contextlib
import dataclasses as dc
import enum
import logging
import ssl
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from connwright._errors import TLSConfigurationError
from connwright.config import ManagerConfig
from connwright.tls._managers import (
    KeyManager,
    TrustManager,
    as_manager_tuple,
    install_managers,
)
from connwright.tls._stores import load_keystore
from connwright.tls._verifiers import (
    DefaultHostnameVerifier,
    HostnameVerifier,
    NoopHostnameVerifier,
)

logger = logging.getLogger(__name__)


TLS_1_3_CIPHERS = [
    "TLS_AES_128_GCM_SHA256",
    "TLS_AES_256_GCM_SHA384",
    "TLS_CHACHA20_POLY1305_SHA256",
]
TLS_1_2_CIPHERS = [
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
]


class TrustSource(enum.Enum):
    MANAGERS = 'managers'
    STORES = 'stores'
    INSECURE = 'insecure'
    DEFAULT = 'default'


@runtime_checkable
class TrustStrategy(Protocol):
    def is_trusted(self, chain: Sequence[Any], auth_type: str) -> bool:
        ...


class TrustAllStrategy:
    '''
    Trusts any certificate chain unconditionally.
    '''

    def is_trusted(self, chain: Sequence[Any], auth_type: str) -> bool:
        return True

    def __repr__(self) -> str:
        return 'TrustAllStrategy()'


@dc.dataclass(frozen=True, slots=True)
class TLSContext:
    '''
    The resolved trust/identity material of a connection manager.

    `source` records which configuration category produced the context,
    `trust_strategy` is only set when chain verification is replaced.
    '''
    ssl_context: ssl.SSLContext
    source: TrustSource
    trust_strategy: TrustStrategy | None = None

    @property
    def verifies_peer(self) -> bool:
        return self.ssl_context.verify_mode != ssl.CERT_NONE


def _harden(ctx: ssl.SSLContext) -> ssl.SSLContext:
    '''
    TLS 1.2+ with modern cipher suites, hostname matching is left to
    the manager's hostname verifier.
    '''
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.maximum_version = ssl.TLSVersion.MAXIMUM_SUPPORTED

    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_REQUIRED

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(["http/1.1"])

    ctx.options |= ssl.OP_NO_COMPRESSION

    set_ciphersuites = getattr(ctx, "set_ciphersuites", None)
    if callable(set_ciphersuites):
        # for tls 1.3
        with contextlib.suppress(ssl.SSLError):
            set_ciphersuites(":".join(TLS_1_3_CIPHERS))

    # for tls 1.2
    ctx.set_ciphers(":".join(TLS_1_2_CIPHERS))

    if hasattr(ctx, "set_ecdh_curve"):
        try:
            ctx.set_ecdh_curve("X25519")
        except ssl.SSLError:
            with contextlib.suppress(ssl.SSLError):
                ctx.set_ecdh_curve("prime256v1")

    return ctx


def _client_context() -> ssl.SSLContext:
    return ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)


def default_ssl_context() -> ssl.SSLContext:
    '''
    The platform default: system trust roots, certificates required.

    Returns
    -------
    ssl.SSLContext
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
    return _harden(ctx)


def ssl_context_for_keystore(config: ManagerConfig) -> ssl.SSLContext:
    '''
    Build a context from keystore (client identity) and trust store
    (trust anchors) sources. Without a trust store the platform roots
    are trusted.

    Parameters
    ----------
    config : ManagerConfig

    Returns
    -------
    ssl.SSLContext

    Raises
    ------
    TLSConfigurationError
    '''
    keystore = load_keystore(
        config.keystore, config.keystore_type, config.keystore_pass
    )
    trust_store = load_keystore(
        config.trust_store, config.trust_store_type, config.trust_store_pass
    )

    ctx = _harden(_client_context())
    managers = []
    if keystore is not None:
        managers.append(KeyManager.from_keystore(keystore, config.keystore_pass))
    if trust_store is not None:
        managers.append(TrustManager.from_keystore(trust_store))
    else:
        ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)

    install_managers(ctx, managers)
    return ctx


def ssl_context_for_managers(config: ManagerConfig) -> ssl.SSLContext:
    '''
    Initialize a context straight from key and/or trust managers, a single
    manager or any collection of them is accepted for either option.

    Parameters
    ----------
    config : ManagerConfig

    Returns
    -------
    ssl.SSLContext

    Raises
    ------
    TLSConfigurationError
    '''
    key_managers = as_manager_tuple(config.key_managers)
    trust_managers = as_manager_tuple(config.trust_managers)

    ctx = _harden(_client_context())
    if not trust_managers:
        ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)

    install_managers(ctx, key_managers + trust_managers)
    return ctx


def ssl_context_insecure() -> ssl.SSLContext:
    '''
    A hardened context that accepts any certificate chain, only peer
    verification is relaxed.
    '''
    ctx = _harden(_client_context())
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def resolve_tls_context(config: ManagerConfig) -> TLSContext:
    '''
    Select exactly one trust/identity strategy, highest precedence first:
    key/trust managers, keystore/trust-store sources, `insecure`, then the
    platform default. Categories are never merged.

    Parameters
    ----------
    config : ManagerConfig

    Returns
    -------
    TLSContext

    Raises
    ------
    TLSConfigurationError
        If the selected material cannot be loaded.
    '''
    try:
        if config.has_managers:
            return TLSContext(ssl_context_for_managers(config), TrustSource.MANAGERS)

        if config.has_stores:
            return TLSContext(ssl_context_for_keystore(config), TrustSource.STORES)

        if config.insecure:
            logger.warning('Using an insecure TLS context, peer certificates are not verified')
            return TLSContext(
                ssl_context_insecure(),
                TrustSource.INSECURE,
                trust_strategy=TrustAllStrategy(),
            )

        return TLSContext(default_ssl_context(), TrustSource.DEFAULT)
    except ssl.SSLError as exc:
        raise TLSConfigurationError(f'Cannot build TLS context: {exc}') from exc


def get_ssl_context(config: ManagerConfig) -> ssl.SSLContext:
    return resolve_tls_context(config).ssl_context


def get_hostname_verifier(config: ManagerConfig) -> HostnameVerifier:
    '''
    `insecure` accepts every hostname, otherwise the certificate must
    match the requested host.
    '''
    if config.insecure:
        return NoopHostnameVerifier()
    return DefaultHostnameVerifier()
