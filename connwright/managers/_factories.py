import logging
from collections.abc import Mapping
from typing import Any

from connwright.config import DEFAULT_THREADS, DEFAULT_TIMEOUT, ManagerConfig, coerce_config
from connwright.managers._async import (
    AsyncPoolingConnectionManager,
    ReusableAsyncPoolingConnectionManager,
)
from connwright.managers._base import ReusableAsyncConnectionManager
from connwright.managers._sync import BasicConnectionManager, PoolingConnectionManager
from connwright.reactor import build_io_reactor
from connwright.registry import Registry, into_registry
from connwright.sockets import (
    NoopSessionStrategy,
    PlainSocketFactory,
    SocksSocketProvider,
    TLSSessionStrategy,
    TLSSocketFactory,
    plain_generic_socket_factory,
    tls_generic_socket_factory,
)
from connwright.tls import get_hostname_verifier, resolve_tls_context

logger = logging.getLogger(__name__)

ConfigLike = ManagerConfig | Mapping[str, Any] | None


def socket_factory_registry(config: ManagerConfig) -> Registry:
    '''
    The `http`/`https` socket factories for the synchronous managers.
    '''
    tls = resolve_tls_context(config)
    return into_registry({
        'http': PlainSocketFactory(),
        'https': TLSSocketFactory(tls.ssl_context, get_hostname_verifier(config)),
    })


def session_strategy_registry(config: ManagerConfig) -> Registry:
    '''
    The `http`/`https` session strategies for the reactor based managers.
    '''
    tls = resolve_tls_context(config)
    return into_registry({
        'http': NoopSessionStrategy(),
        'https': TLSSessionStrategy(tls.ssl_context, get_hostname_verifier(config)),
    })


def _timeout_and_threads(config: ManagerConfig) -> tuple[int, int]:
    return (config.timeout or DEFAULT_TIMEOUT, config.threads or DEFAULT_THREADS)


def build_socks_manager(
    hostname: str,
    port: int,
    config: ConfigLike = None,
) -> PoolingConnectionManager:
    '''
    Create a connection manager whose sockets are all proxied through the
    SOCKS proxy at `hostname:port`.

    Parameters
    ----------
    hostname : str
        The proxy host.
    port : int
        The proxy port.
    config : ManagerConfig | Mapping[str, Any] | None, optional
        Only the TLS options (keystore/trust-store/managers/insecure) and
        `dns-resolver` are used.

    Returns
    -------
    PoolingConnectionManager
    '''
    config = coerce_config(config)
    provider = SocksSocketProvider(hostname, port)
    tls = resolve_tls_context(config)
    registry = into_registry({
        'http': plain_generic_socket_factory(provider),
        'https': tls_generic_socket_factory(
            provider,
            tls.ssl_context,
            hostname_verifier=get_hostname_verifier(config),
        ),
    })
    logger.debug(f'Building SOCKS proxied connection manager via {hostname}:{port}')
    return PoolingConnectionManager(registry, dns_resolver=config.dns_resolver)


def build_basic_manager(config: ConfigLike = None) -> BasicConnectionManager:
    '''
    Create a single-connection manager.

    Supported options: `dns-resolver`, `socket-timeout` (milliseconds), and
    the TLS options (`insecure?`, `keystore*`, `trust-store*`,
    `key-managers`, `trust-managers`).

    Returns
    -------
    BasicConnectionManager
    '''
    config = coerce_config(config)
    manager = BasicConnectionManager(
        socket_factory_registry(config),
        dns_resolver=config.dns_resolver,
    )
    if config.socket_timeout is not None:
        manager.socket_timeout = config.socket_timeout

    logger.debug(f'Built {manager!r}')
    return manager


def build_pooling_manager(config: ConfigLike = None) -> PoolingConnectionManager:
    '''
    Create a reusable pooling connection manager.

    The following options are supported:

    - `timeout`: seconds a connection may be reused before it is closed, default 5
    - `threads`: maximum number of connections leased at once, default 4
    - `default-per-route`: maximum simultaneous connections per host, default 2
    - `insecure?`: accept any certificate and hostname, default false
    - `keystore`, `keystore-type`, `keystore-pass`: client identity store
    - `trust-store`, `trust-store-type`, `trust-store-pass`: trust anchors
    - `key-managers`, `trust-managers`: ready-made identity/trust material
    - `dns-resolver`: an object with `resolve(host) -> list[str]`

    `insecure?` and the store/manager options are mutually exclusive, the
    managers take precedence over the stores.

    Returns
    -------
    PoolingConnectionManager
    '''
    config = coerce_config(config)
    timeout, threads = _timeout_and_threads(config)
    manager = PoolingConnectionManager(
        socket_factory_registry(config),
        dns_resolver=config.dns_resolver,
        time_to_live=timeout,
    )
    manager.max_total = threads
    if config.default_per_route:
        manager.max_per_route = config.default_per_route

    logger.debug(f'Built {manager!r}')
    return manager


def build_async_pooling_manager(config: ConfigLike = None) -> ReusableAsyncPoolingConnectionManager:
    '''
    Create a reusable async pooling connection manager. Handles the same
    options as `build_pooling_manager` plus `io-config`, a mapping of
    `IOReactorConfig` fields. The manager's reactor is running when this
    returns.

    Returns
    -------
    ReusableAsyncPoolingConnectionManager
    '''
    config = coerce_config(config)
    timeout, threads = _timeout_and_threads(config)
    registry = session_strategy_registry(config)
    reactor = build_io_reactor(config.io_config)
    manager = ReusableAsyncPoolingConnectionManager(
        reactor,
        registry,
        dns_resolver=config.dns_resolver,
        time_to_live=timeout,
    )
    manager.max_total = threads
    if config.default_per_route:
        manager.max_per_route = config.default_per_route

    _start_reactor(manager)
    logger.debug(f'Built {manager!r}')
    return manager


def build_async_manager(config: ConfigLike = None) -> AsyncPoolingConnectionManager:
    '''
    Create a single-use async manager: one connection, a 1ms reactor
    grace period, not reusable.

    Returns
    -------
    AsyncPoolingConnectionManager
    '''
    config = coerce_config(config)
    registry = session_strategy_registry(config)
    reactor = build_io_reactor({'shutdown-grace-period': 1})
    manager = AsyncPoolingConnectionManager(
        reactor,
        registry,
        dns_resolver=config.dns_resolver,
    )
    manager.max_total = 1
    _start_reactor(manager)
    return manager


def _start_reactor(manager: AsyncPoolingConnectionManager) -> None:
    try:
        manager.reactor.execute()
    except BaseException:
        manager.shutdown()
        raise


def is_reusable(manager: Any) -> bool:
    return isinstance(manager, (PoolingConnectionManager, ReusableAsyncConnectionManager))
