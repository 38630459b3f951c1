'''
The "current manager" slots read by request code that was not handed a
manager explicitly. Both slots are context variables, so a binding is
visible to the current thread/task only and is undone when its `with`
block exits, however it exits.
'''
import contextlib
import contextvars
import logging
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any

import httpx

from connwright.config import ManagerConfig
from connwright.managers._base import AsyncConnectionManager, ConnectionManager
from connwright.managers._factories import build_async_pooling_manager, build_pooling_manager
from connwright.managers._lifecycle import shutdown

logger = logging.getLogger(__name__)


_connection_manager: contextvars.ContextVar[ConnectionManager | None] = contextvars.ContextVar(
    'connwright_connection_manager', default=None
)
_async_connection_manager: contextvars.ContextVar[AsyncConnectionManager | None] = contextvars.ContextVar(
    'connwright_async_connection_manager', default=None
)


def current_connection_manager() -> ConnectionManager | None:
    return _connection_manager.get()


def current_async_connection_manager() -> AsyncConnectionManager | None:
    return _async_connection_manager.get()


@contextlib.contextmanager
def bind_connection_manager(manager: ConnectionManager | None) -> Iterator[ConnectionManager | None]:
    '''
    Make `manager` the current synchronous manager for the block.
    '''
    token = _connection_manager.set(manager)
    try:
        yield manager
    finally:
        _connection_manager.reset(token)


@contextlib.contextmanager
def bind_async_connection_manager(
    manager: AsyncConnectionManager | None,
) -> Iterator[AsyncConnectionManager | None]:
    '''
    Make `manager` the current async manager for the block.
    '''
    token = _async_connection_manager.set(manager)
    try:
        yield manager
    finally:
        _async_connection_manager.reset(token)


@contextlib.contextmanager
def connection_pool(
    config: ManagerConfig | Mapping[str, Any] | None = None,
) -> Iterator[ConnectionManager]:
    '''
    Build a pooling manager, bind it as the current manager for the block
    and shut it down afterwards.
    '''
    manager = build_pooling_manager(config)
    try:
        with bind_connection_manager(manager):
            yield manager
    finally:
        shutdown(manager)


@contextlib.asynccontextmanager
async def async_connection_pool(
    config: ManagerConfig | Mapping[str, Any] | None = None,
) -> AsyncIterator[AsyncConnectionManager]:
    '''
    The async flavour of `connection_pool`, backed by a reusable async
    pooling manager.
    '''
    manager = build_async_pooling_manager(config)
    try:
        with bind_async_connection_manager(manager):
            yield manager
    finally:
        await manager.aclose()


def _require(manager: Any, current: Any, kind: str) -> Any:
    manager = manager if manager is not None else current
    if manager is None:
        raise LookupError(f'No {kind} connection manager given or bound')
    return manager


@contextlib.contextmanager
def client(
    manager: ConnectionManager | None = None,
    **client_kwargs: Any,
) -> Iterator[httpx.Client]:
    '''
    An `httpx.Client` borrowing `manager` (or the currently bound manager)
    for the duration of the block. The manager stays open afterwards.
    Proxy settings from the environment are ignored unless `trust_env=True`
    is passed, they would route requests around the manager.

    Raises
    ------
    LookupError
        If no manager is given and none is bound.
    '''
    manager = _require(manager, current_connection_manager(), 'sync')
    client_kwargs.setdefault('trust_env', False)
    with bind_connection_manager(manager):
        with httpx.Client(transport=manager.transport(), **client_kwargs) as http_client:
            yield http_client


@contextlib.asynccontextmanager
async def async_client(
    manager: AsyncConnectionManager | None = None,
    **client_kwargs: Any,
) -> AsyncIterator[httpx.AsyncClient]:
    manager = _require(manager, current_async_connection_manager(), 'async')
    client_kwargs.setdefault('trust_env', False)
    with bind_async_connection_manager(manager):
        async with httpx.AsyncClient(transport=manager.transport(), **client_kwargs) as http_client:
            yield http_client
