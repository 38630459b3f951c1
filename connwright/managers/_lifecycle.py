import functools
import logging
from typing import Any

from connwright._errors import UnsupportedManagerTypeError
from connwright.managers._base import AsyncConnectionManager, ConnectionManager

logger = logging.getLogger(__name__)


@functools.singledispatch
def shutdown(manager: Any) -> None:
    '''
    Shut down the given connection manager, if it is not None.

    Raises
    ------
    UnsupportedManagerTypeError
        If `manager` is not a connection manager.
    '''
    raise UnsupportedManagerTypeError(
        f'Cannot shut down {type(manager).__name__}, not a connection manager'
    )


@shutdown.register(type(None))
def _shutdown_nothing(manager: None) -> None:
    return None


@shutdown.register
def _shutdown_sync(manager: ConnectionManager) -> None:
    manager.shutdown()


@shutdown.register
def _shutdown_reactor(manager: AsyncConnectionManager) -> None:
    manager.shutdown()
