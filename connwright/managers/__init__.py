'''
**connwright.managers**
---------

The connection manager variants (basic, pooling, async pooling and SOCKS
proxied), their builders, the shutdown dispatcher and the scope holders
that make a manager "current" for a block of request code.
'''
from connwright.managers._async import (
    AsyncPoolingConnectionManager,
    ReusableAsyncPoolingConnectionManager,
)
from connwright.managers._base import (
    AsyncConnectionManager,
    ConnectionManager,
    Lease,
    PoolStats,
    ReusableAsyncConnectionManager,
    Route,
    Shutdownable,
)
from connwright.managers._factories import (
    build_async_manager,
    build_async_pooling_manager,
    build_basic_manager,
    build_pooling_manager,
    build_socks_manager,
    is_reusable,
    session_strategy_registry,
    socket_factory_registry,
)
from connwright.managers._lifecycle import shutdown
from connwright.managers._scope import (
    async_client,
    async_connection_pool,
    bind_async_connection_manager,
    bind_connection_manager,
    client,
    connection_pool,
    current_async_connection_manager,
    current_connection_manager,
)
from connwright.managers._sync import BasicConnectionManager, PoolingConnectionManager

__all__ = [
    'AsyncPoolingConnectionManager',
    'ReusableAsyncPoolingConnectionManager',
    'AsyncConnectionManager',
    'ConnectionManager',
    'Lease',
    'PoolStats',
    'ReusableAsyncConnectionManager',
    'Route',
    'Shutdownable',
    'build_async_manager',
    'build_async_pooling_manager',
    'build_basic_manager',
    'build_pooling_manager',
    'build_socks_manager',
    'is_reusable',
    'session_strategy_registry',
    'socket_factory_registry',
    'shutdown',
    'async_client',
    'async_connection_pool',
    'bind_async_connection_manager',
    'bind_connection_manager',
    'client',
    'connection_pool',
    'current_async_connection_manager',
    'current_connection_manager',
    'BasicConnectionManager',
    'PoolingConnectionManager',
]
