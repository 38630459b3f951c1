import contextlib
import logging
import typing
from collections.abc import Callable, Iterator

import httpcore
import httpx

logger = logging.getLogger(__name__)


HTTPCORE_EXC_MAP: dict[type[Exception], type[httpx.TransportError]] = {
    httpcore.TimeoutException: httpx.TimeoutException,
    httpcore.ConnectTimeout: httpx.ConnectTimeout,
    httpcore.ReadTimeout: httpx.ReadTimeout,
    httpcore.WriteTimeout: httpx.WriteTimeout,
    httpcore.PoolTimeout: httpx.PoolTimeout,
    httpcore.NetworkError: httpx.NetworkError,
    httpcore.ConnectError: httpx.ConnectError,
    httpcore.ReadError: httpx.ReadError,
    httpcore.WriteError: httpx.WriteError,
    httpcore.ProxyError: httpx.ProxyError,
    httpcore.UnsupportedProtocol: httpx.UnsupportedProtocol,
    httpcore.ProtocolError: httpx.ProtocolError,
    httpcore.LocalProtocolError: httpx.LocalProtocolError,
    httpcore.RemoteProtocolError: httpx.RemoteProtocolError,
}


@contextlib.contextmanager
def map_httpcore_exceptions() -> Iterator[None]:
    '''
    Re-raise httpcore errors as the matching (most specific) httpx error.
    '''
    try:
        yield
    except Exception as exc:
        mapped: type[httpx.TransportError] | None = None
        for from_exc, to_exc in HTTPCORE_EXC_MAP.items():
            if not isinstance(exc, from_exc):
                continue
            if mapped is None or issubclass(to_exc, mapped):
                mapped = to_exc

        if mapped is None:
            raise

        raise mapped(str(exc)) from exc


def to_core_request(
    request: httpx.Request,
    content: typing.Any = None,
    extensions: dict | None = None,
) -> httpcore.Request:
    return httpcore.Request(
        method=request.method,
        url=httpcore.URL(
            scheme=request.url.raw_scheme,
            host=request.url.raw_host,
            port=request.url.port,
            target=request.url.raw_path,
        ),
        headers=request.headers.raw,
        content=request.stream if content is None else content,
        extensions=request.extensions if extensions is None else extensions,
    )


def with_timeout_overrides(
    extensions: dict,
    *,
    read: float | None = None,
    write: float | None = None,
) -> dict:
    '''
    Copy request extensions, replacing the read/write timeouts that are given.
    '''
    if read is None and write is None:
        return extensions

    timeouts = dict(extensions.get('timeout', {}))
    if read is not None:
        timeouts['read'] = read
    if write is not None:
        timeouts['write'] = write
    return {**extensions, 'timeout': timeouts}


class ResponseStream(httpx.SyncByteStream):
    '''
    Streams a pooled response body, `on_close` runs exactly once when the
    body is closed (which is when the lease goes back to the pool).
    '''

    def __init__(self, core_stream: typing.Iterable[bytes], on_close: Callable[[], None]) -> None:
        self._core_stream = core_stream
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        with map_httpcore_exceptions():
            for part in self._core_stream:
                yield part

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if hasattr(self._core_stream, 'close'):
                self._core_stream.close()
        finally:
            self._on_close()


class BorrowedTransport(httpx.BaseTransport):
    '''
    Lends a connection manager to an `httpx.Client`, closing the client
    leaves the manager running.
    '''

    def __init__(self, manager: httpx.BaseTransport) -> None:
        self._manager = manager

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._manager.handle_request(request)

    def close(self) -> None:
        logger.debug(f'Returning borrowed {type(self._manager).__name__}')


class AsyncBorrowedTransport(httpx.AsyncBaseTransport):
    def __init__(self, manager: httpx.AsyncBaseTransport) -> None:
        self._manager = manager

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._manager.handle_async_request(request)

    async def aclose(self) -> None:
        logger.debug(f'Returning borrowed {type(self._manager).__name__}')
