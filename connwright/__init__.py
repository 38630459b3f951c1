'''
**connwright**
---------

Builds and configures the connection managers that open, pool, secure and
tear down the connections of an HTTP client. Four variants (basic, pooling,
async pooling on an I/O reactor, SOCKS proxied) share one configuration
surface, one TLS resolution path and pluggable per-scheme socket factories.
Every manager is an httpx transport.

```python
import connwright

manager = connwright.build_pooling_manager({'threads': 8, 'default-per-route': 4})
try:
    with connwright.client(manager) as client:
        client.get('https://example.com')
finally:
    connwright.shutdown(manager)
```
'''
from connwright._errors import (
    HostnameMismatchError,
    InvalidArgumentError,
    IOReactorStartupError,
    TLSConfigurationError,
    UnsupportedManagerTypeError,
)
from connwright._resolver import (
    DnsResolver,
    DnspythonResolver,
    ResolverConfig,
    SystemDnsResolver,
)
from connwright.config import ManagerConfig, coerce_config
from connwright.managers import (
    AsyncConnectionManager,
    AsyncPoolingConnectionManager,
    BasicConnectionManager,
    ConnectionManager,
    PoolingConnectionManager,
    PoolStats,
    ReusableAsyncConnectionManager,
    ReusableAsyncPoolingConnectionManager,
    Route,
    Shutdownable,
    async_client,
    async_connection_pool,
    bind_async_connection_manager,
    bind_connection_manager,
    build_async_manager,
    build_async_pooling_manager,
    build_basic_manager,
    build_pooling_manager,
    build_socks_manager,
    client,
    connection_pool,
    current_async_connection_manager,
    current_connection_manager,
    is_reusable,
    shutdown,
)
from connwright.reactor import (
    IOReactor,
    IOReactorConfig,
    ReactorStatus,
    build_io_reactor,
    make_io_reactor_config,
)
from connwright.registry import Registry, RegistryBuilder, into_registry
from connwright.sockets import (
    FunctionSocketProvider,
    NoopSessionStrategy,
    PlainSocketFactory,
    SocketProvider,
    SocksSocket,
    SocksSocketProvider,
    TLSSessionStrategy,
    TLSSocketFactory,
    plain_generic_socket_factory,
    socks_proxied_socket,
    tls_generic_socket_factory,
)
from connwright.tls import (
    DefaultHostnameVerifier,
    KeyManager,
    KeyStore,
    NoopHostnameVerifier,
    TLSContext,
    TrustAllStrategy,
    TrustManager,
    TrustSource,
    get_hostname_verifier,
    load_keystore,
    resolve_tls_context,
)

__all__ = [
    'HostnameMismatchError',
    'InvalidArgumentError',
    'IOReactorStartupError',
    'TLSConfigurationError',
    'UnsupportedManagerTypeError',
    'DnsResolver',
    'DnspythonResolver',
    'ResolverConfig',
    'SystemDnsResolver',
    'ManagerConfig',
    'coerce_config',
    'AsyncConnectionManager',
    'AsyncPoolingConnectionManager',
    'BasicConnectionManager',
    'ConnectionManager',
    'PoolingConnectionManager',
    'PoolStats',
    'ReusableAsyncConnectionManager',
    'ReusableAsyncPoolingConnectionManager',
    'Route',
    'Shutdownable',
    'async_client',
    'async_connection_pool',
    'bind_async_connection_manager',
    'bind_connection_manager',
    'build_async_manager',
    'build_async_pooling_manager',
    'build_basic_manager',
    'build_pooling_manager',
    'build_socks_manager',
    'client',
    'connection_pool',
    'current_async_connection_manager',
    'current_connection_manager',
    'is_reusable',
    'shutdown',
    'IOReactor',
    'IOReactorConfig',
    'ReactorStatus',
    'build_io_reactor',
    'make_io_reactor_config',
    'Registry',
    'RegistryBuilder',
    'into_registry',
    'FunctionSocketProvider',
    'NoopSessionStrategy',
    'PlainSocketFactory',
    'SocketProvider',
    'SocksSocket',
    'SocksSocketProvider',
    'TLSSessionStrategy',
    'TLSSocketFactory',
    'plain_generic_socket_factory',
    'socks_proxied_socket',
    'tls_generic_socket_factory',
    'DefaultHostnameVerifier',
    'KeyManager',
    'KeyStore',
    'NoopHostnameVerifier',
    'TLSContext',
    'TrustAllStrategy',
    'TrustManager',
    'TrustSource',
    'get_hostname_verifier',
    'load_keystore',
    'resolve_tls_context',
]
