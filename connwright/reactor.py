'''
**connwright.reactor**
---------

A single multiplexed event loop for the asynchronous connection managers.
The reactor owns one worker thread running an asyncio loop; work is handed to
it with `submit()` (from any thread) or `run()` (from another event loop).
'''
import asyncio
import concurrent.futures
import contextlib
import dataclasses as dc
import enum
import functools
import logging
import os
import socket
import struct
import threading
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from connwright._errors import IOReactorStartupError
from connwright.config import normalize_option_name
from connwright.sockets import SockOpt

logger = logging.getLogger(__name__)

T = TypeVar('T')

HousekeepingHook = Callable[[], Awaitable[None]]

# loop close after the grace period: draining the queue and shutting down generators
TEARDOWN_ALLOWANCE = 2.0


def _available_processors() -> int:
    return os.cpu_count() or 1


@dc.dataclass(frozen=True, slots=True)
class IOReactorConfig:
    '''
    Reactor tuning knobs, every field is independent of the others.

    Attributes
    ----------
    connect_timeout : int
        connect timeout in milliseconds for new connections, 0 means the
        request's own timeout is used
    interest_op_queued : bool
        whether dispatched work is queued and picked up by the loop instead of
        being scheduled immediately
    io_thread_count : int
        number of worker threads for blocking I/O (DNS lookups)
    rcv_buf_size : int
        SO_RCVBUF for new sockets, 0 means the system default
    select_interval : int
        milliseconds between checks for expired sessions
    shutdown_grace_period : int
        milliseconds to wait for the loop to terminate cleanly
    snd_buf_size : int
        SO_SNDBUF for new sockets, 0 means the system default
    so_keep_alive : bool
    so_linger : int
        SO_LINGER in seconds, -1 leaves it disabled
    so_timeout : int
        socket read timeout in milliseconds, 0 means the request's own timeout
    tcp_no_delay : bool
    '''
    connect_timeout: int = 0
    interest_op_queued: bool = False
    io_thread_count: int = dc.field(default_factory=_available_processors)
    rcv_buf_size: int = 0
    select_interval: int = 1000
    shutdown_grace_period: int = 500
    snd_buf_size: int = 0
    so_keep_alive: bool = False
    so_linger: int = -1
    so_timeout: int = 0
    tcp_no_delay: bool = True

    def socket_options(self) -> list[SockOpt]:
        opts: list[SockOpt] = []

        if self.tcp_no_delay and hasattr(socket, "TCP_NODELAY"):
            opts.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))

        if self.so_keep_alive:
            opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        if self.rcv_buf_size > 0:
            opts.append((socket.SOL_SOCKET, socket.SO_RCVBUF, self.rcv_buf_size))

        if self.snd_buf_size > 0:
            opts.append((socket.SOL_SOCKET, socket.SO_SNDBUF, self.snd_buf_size))

        if self.so_linger >= 0:
            opts.append((
                socket.SOL_SOCKET,
                socket.SO_LINGER,
                struct.pack('ii', 1, self.so_linger),
            ))

        return opts


def make_io_reactor_config(
    io_config: IOReactorConfig | Mapping[str, Any] | None = None,
) -> IOReactorConfig:
    '''
    Start from the defaults and overwrite one knob per present field,
    `None` values and unknown keys are ignored.

    Parameters
    ----------
    io_config : IOReactorConfig | Mapping[str, Any] | None, optional

    Returns
    -------
    IOReactorConfig
    '''
    if isinstance(io_config, IOReactorConfig):
        return io_config

    config = IOReactorConfig()
    if not io_config:
        return config

    known = {field.name for field in dc.fields(IOReactorConfig)}
    overrides = {}
    for key, value in io_config.items():
        name = normalize_option_name(key)
        if name in known and value is not None:
            overrides[name] = value
        elif name not in known:
            logger.debug(f'Ignoring unrecognized io-config option {key!r}')

    return dc.replace(config, **overrides)


class ReactorStatus(enum.Enum):
    INACTIVE = 'inactive'
    ACTIVE = 'active'
    SHUTTING_DOWN = 'shutting down'
    SHUT_DOWN = 'shut down'


def _copy_task_outcome(future: concurrent.futures.Future, task: asyncio.Task) -> None:
    # the future stays pending until here, so the caller can still cancel it
    if task.cancelled():
        future.cancel()
    if not future.set_running_or_notify_cancel():
        return
    if (exc := task.exception()) is not None:
        future.set_exception(exc)
    else:
        future.set_result(task.result())


class IOReactor:
    '''
    One asyncio event loop on one owned worker thread.
    '''

    def __init__(
        self,
        config: IOReactorConfig | None = None,
        *,
        name: str = 'connwright-reactor',
    ) -> None:
        self._config: IOReactorConfig = config or IOReactorConfig()
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._stop_event: asyncio.Event | None = None
        self._queue: asyncio.Queue | None = None
        self._hooks: list[HousekeepingHook] = []
        self._tasks: set[asyncio.Task] = set()
        self._grace_ms = self._config.shutdown_grace_period
        self._status = ReactorStatus.INACTIVE
        self._failure: BaseException | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> IOReactorConfig:
        return self._config

    @property
    def status(self) -> ReactorStatus:
        return self._status

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def is_running(self) -> bool:
        return (
            self._status is ReactorStatus.ACTIVE
            and self._thread is not None
            and self._thread.is_alive()
        )

    def in_reactor_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def add_housekeeping_hook(self, hook: HousekeepingHook) -> None:
        '''
        Register a coroutine function run every `select_interval`.
        '''
        self._hooks.append(hook)

    def execute(self) -> None:
        '''
        Start the worker thread running the event loop. The loop exists
        before this returns, work submitted right away is queued until the
        loop spins.

        Raises
        ------
        RuntimeError
            If the reactor was already started.
        '''
        with self._lock:
            if self._status is not ReactorStatus.INACTIVE:
                raise RuntimeError(f'I/O reactor is already {self._status.value}')

            self._loop = asyncio.new_event_loop()
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, self._config.io_thread_count),
                thread_name_prefix=f'{self._name}-io',
            )
            self._loop.set_default_executor(self._executor)
            self._stop_event = asyncio.Event()
            self._queue = asyncio.Queue()
            self._thread = threading.Thread(
                target=self._run,
                name=self._name,
                daemon=True,
            )
            self._status = ReactorStatus.ACTIVE
            self._thread.start()

        logger.debug(f'Started I/O reactor {self._name} with {self._config}')

    def _run(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._main())
        except BaseException as exc:
            self._failure = exc
            logger.exception(f'I/O reactor {self._name} terminated abnormally')
        finally:
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                self._status = ReactorStatus.SHUT_DOWN
                self._executor.shutdown(wait=False, cancel_futures=True)
                loop.close()

    async def _main(self) -> None:
        if self._config.interest_op_queued:
            self._track(asyncio.create_task(self._dispatch_queued(), name=f'{self._name}-dispatch'))

        interval = max(self._config.select_interval, 1) / 1000
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                await self._run_hooks()

        await self._drain()

    async def _run_hooks(self) -> None:
        for hook in list(self._hooks):
            try:
                await hook()
            except Exception:
                logger.exception(f'I/O reactor housekeeping hook {hook!r} failed')

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_when_abandoned(self, task: asyncio.Task, future: concurrent.futures.Future) -> None:
        if not future.cancelled():
            return
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(task.cancel)

    async def _dispatch_queued(self) -> None:
        while True:
            coro, future = await self._queue.get()
            if future.cancelled():
                coro.close()
                continue
            task = self._track(asyncio.ensure_future(coro))
            task.add_done_callback(functools.partial(_copy_task_outcome, future))
            future.add_done_callback(functools.partial(self._cancel_when_abandoned, task))

    async def _drain(self) -> None:
        grace = max(self._grace_ms, 0) / 1000
        current = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks() if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace)
            if pending:
                logger.warning(
                    f'{len(pending)} task(s) still running after the '
                    f'{self._grace_ms}ms grace period'
                )

        while not self._queue.empty():
            coro, future = self._queue.get_nowait()
            coro.close()
            future.cancel()

    def _check_dispatchable(self) -> None:
        if self._failure is not None:
            raise IOReactorStartupError(
                f'I/O reactor {self._name} failed: {self._failure!r}'
            ) from self._failure

        if self._status is not ReactorStatus.ACTIVE:
            raise IOReactorStartupError(
                f'I/O reactor {self._name} is {self._status.value}'
            )

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        '''
        Schedule a coroutine on the reactor loop from any thread.

        Parameters
        ----------
        coro : Coroutine[Any, Any, T]

        Returns
        -------
        concurrent.futures.Future[T]

        Raises
        ------
        IOReactorStartupError
            If the loop failed to launch or is no longer running.
        '''
        try:
            self._check_dispatchable()
            if self._config.interest_op_queued:
                future: concurrent.futures.Future[T] = concurrent.futures.Future()
                self._loop.call_soon_threadsafe(self._queue.put_nowait, (coro, future))
                return future
            return asyncio.run_coroutine_threadsafe(coro, self._loop)
        except RuntimeError as exc:
            coro.close()
            if isinstance(exc, IOReactorStartupError):
                raise
            raise IOReactorStartupError(f'I/O reactor {self._name} is not running') from exc

    async def run(self, coro: Coroutine[Any, Any, T]) -> T:
        '''
        Await a coroutine on the reactor loop from another event loop.
        '''
        if self.in_reactor_thread():
            return await coro
        return await asyncio.wrap_future(self.submit(coro))

    def shutdown(self, grace_period: int | None = None) -> None:
        '''
        Signal the loop to stop and join the worker thread within the
        grace period (milliseconds, defaults to the configured one).
        Calling it again is a no-op.
        '''
        grace_ms = self._config.shutdown_grace_period if grace_period is None else grace_period
        with self._lock:
            if self._status is ReactorStatus.INACTIVE:
                self._status = ReactorStatus.SHUT_DOWN
                return
            if self._status is not ReactorStatus.ACTIVE:
                return
            self._status = ReactorStatus.SHUTTING_DOWN
            self._grace_ms = grace_ms

        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._stop_event.set)

        if self.in_reactor_thread():
            return

        self._thread.join(timeout=max(grace_ms, 0) / 1000 + TEARDOWN_ALLOWANCE)
        if self._thread.is_alive():
            logger.warning(
                f'I/O reactor {self._name} did not stop within {grace_ms}ms'
            )
        else:
            logger.debug(f'I/O reactor {self._name} shut down')

    def __repr__(self) -> str:
        return f'IOReactor({self._name!r}, status={self._status.value!r})'


def build_io_reactor(
    io_config: IOReactorConfig | Mapping[str, Any] | None = None,
    *,
    name: str = 'connwright-reactor',
) -> IOReactor:
    '''
    Build a reactor from a flat, fully optional tuning mapping. The reactor
    is returned unstarted, call `execute()` to launch its loop.

    Parameters
    ----------
    io_config : IOReactorConfig | Mapping[str, Any] | None, optional

    Returns
    -------
    IOReactor
    '''
    return IOReactor(make_io_reactor_config(io_config), name=name)
