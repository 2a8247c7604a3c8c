"""iorpc session: call dispatcher and inbound router over one channel.

Both peers run the same class. Each side:
- sends calls through ``session.remote`` (or ``session.call``)
- feeds every packet that arrives on the channel into ``route_input``

There is no separate response message. A caller that wants a result allocates
a call-ID and registers a pending entry for it; the peer answers by calling
that call-ID fire-and-forget with the return value as the only argument.
Callables passed as arguments get call-IDs the same way, so the peer can call
them back until it unbinds them. Errors travel as ``iorpcThrowError`` control
packets and surface locally as :class:`RemoteError`.

Example:
    ```python
    a = IorpcSession(send=lambda p: b.route_input(p), local_api={"add": add})
    b = IorpcSession(send=lambda p: a.route_input(p))
    assert await b.remote.add(2, 3) == 5
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, NamedTuple

from iorpc.codec import ArgumentCodec
from iorpc.config import IorpcConfig
from iorpc.error import RemoteError, RpcError, format_stack
from iorpc.registry import PendingRegistry
from iorpc.stubs import RemoteApi, RemoteCallback
from iorpc.types import CallContext, LocalApi, accepts_context
from iorpc.wire import (
    THROW_ERROR,
    UNBIND,
    NoResponse,
    Packet,
    coerce_packet,
    is_int_not_bool,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[Packet], Awaitable[None] | None]
Subscribe = Callable[[Callable[[Any], None]], Any]


class IorpcSession:
    """One end of an iorpc channel.

    Owns its pending registry exclusively; create one session per channel.

    Args:
        send: Called with every outgoing :class:`Packet`. May return an
            awaitable, which is scheduled on the running loop.
        local_api: Mapping of name to callable, or an object whose public
            methods are exposed to the peer.
        config: An :class:`IorpcConfig` or a mapping of its options.
        subscribe: If given, called once with ``route_input`` so the channel
            can deliver inbound packets.
        registry: Pending registry to use instead of a fresh one.
    """

    def __init__(
        self,
        send: SendFn,
        local_api: Mapping[str, Callable[..., Any]] | Any | None = None,
        config: IorpcConfig | Mapping[str, Any] | None = None,
        *,
        subscribe: Subscribe | None = None,
        registry: PendingRegistry | None = None,
    ) -> None:
        self._send_fn = send
        self.config = IorpcConfig.from_options(config)
        self.local_api = LocalApi(local_api)
        self.registry = registry if registry is not None else PendingRegistry(self.config.max_pending_responses)
        self.codec = ArgumentCodec(
            nested=self.config.allow_nested_functions,
            max_depth=self.config.max_depth,
        )
        self.remote = RemoteApi(self)
        self.context = CallContext(self.remote, self.pending)

        # Handler and send tasks still running, for drain()/close()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        if subscribe is not None:
            subscribe(self.route_input)

    def pending(self) -> int:
        """Number of live pending registry entries."""
        return len(self.registry)

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        mode = "nested" if self.codec.nested else "flat"
        return f"IorpcSession(pending={self.pending()}, mode={mode})"

    # -------------------------------------------------------------------------
    # Outgoing
    # -------------------------------------------------------------------------

    def call(
        self,
        api_func: str | int,
        *args: Any,
        no_wait: bool = False,
    ) -> asyncio.Future[Any] | None:
        """Call a function on the peer.

        Args:
            api_func: Name in the peer's API, or a call-ID it gave us.
            *args: Arguments. Callables are exposed to the peer.
            no_wait: Send without a response call-ID and return None.

        Returns:
            A future for the return value, or None with ``no_wait``.

        Raises:
            RpcError: If the session is closed.
            ValueError: If nested args contain a cycle or are too deep.
        """
        if self._closed:
            raise RpcError.internal("Session is closed")

        future: asyncio.Future[Any] | None = None
        cb_id: int | NoResponse = False
        if not no_wait:
            future = asyncio.get_running_loop().create_future()
            cb_id = self.registry.allocate_id()
            self._await_response(cb_id, future)

        try:
            out_args, transform = self.codec.extract(args, self.registry.add_callback)
        except Exception:
            if cb_id is not False:
                self.registry.pop(cb_id)
            raise

        # Entry is registered first so a synchronous channel can answer in send()
        self._send(Packet(api_func, cb_id, out_args, transform))
        return future

    def send_throw_error(self, cb_id: int, message: str, stack: str | None = None) -> None:
        """Reject the peer's pending call ``cb_id``."""
        self.call(THROW_ERROR, cb_id, message, stack, no_wait=True)

    def send_unbind(self, call_id: int) -> None:
        """Ask the peer to release the callback it registered as ``call_id``."""
        self.call(UNBIND, call_id, no_wait=True)

    def _await_response(self, cb_id: int, future: asyncio.Future[Any]) -> None:
        registry = self.registry

        def resolve(*values: Any) -> None:
            registry.pop(cb_id)
            if not future.done():
                future.set_result(values[0] if values else None)

        def reject(error: BaseException) -> None:
            if not future.done():
                future.set_exception(error)

        registry.add_awaiting(cb_id, resolve, reject)

    def _send(self, packet: Packet) -> None:
        result = self._send_fn(packet)
        if inspect.isawaitable(result):
            self._spawn(result, "send")

    def _spawn(self, awaitable: Awaitable[Any], what: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(t, what))
        return task

    def _task_done(self, task: asyncio.Task[Any], what: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Unhandled error in iorpc %s task", what, exc_info=error)

    def _make_callback(self, call_id: int) -> RemoteCallback:
        return RemoteCallback(self, call_id)

    # -------------------------------------------------------------------------
    # Incoming
    # -------------------------------------------------------------------------

    def route_input(self, message: Packet | dict[str, Any]) -> None:
        """Handle one packet received from the peer.

        Raises:
            ValueError: If ``message`` is not a valid packet.
            Exception: Whatever a handler raised, when ``expose_errors`` is off.
        """
        packet = coerce_packet(message)
        if self._closed:
            logger.debug("Session closed, dropping packet for %r", packet.api_func)
            return
        api_func = packet.api_func

        if api_func == THROW_ERROR:
            self._handle_throw_error(packet)
            return
        if api_func == UNBIND:
            self._handle_unbind(packet)
            return

        fn: Callable[..., Any] | None = None
        if isinstance(api_func, str):
            fn = self.local_api.lookup(api_func)
        else:
            entry = self.registry.touch(api_func)
            if entry is not None:
                fn = entry.resolve

        if fn is None:
            self._handle_not_found(packet)
            return

        try:
            self.codec.rehydrate(packet.args, packet.args_transform, self._make_callback)
            kwargs = {}
            if self.config.inject_to_this and accepts_context(fn):
                kwargs["ctx"] = self.context
            result = fn(*packet.args, **kwargs)
        except Exception as e:
            if not self.config.expose_errors:
                raise
            self._report_error(packet.cb_id, e)
            return

        if inspect.isawaitable(result):
            self._spawn(self._respond_when_ready(packet.cb_id, result), "handler")
        elif packet.cb_id is not False:
            self._respond(packet.cb_id, result)

    def _handle_throw_error(self, packet: Packet) -> None:
        cb_id, message, stack = (list(packet.args) + [None, None, None])[:3]
        entry = self.registry.get(cb_id) if is_int_not_bool(cb_id) else None
        if entry is None or entry.reject is None:
            logger.debug("Dropping error for unknown call id %r: %s", cb_id, message)
            return
        self.registry.pop(cb_id)
        entry.reject(RemoteError(str(message), stack if isinstance(stack, str) else None))

    def _handle_unbind(self, packet: Packet) -> None:
        call_id = packet.args[0] if packet.args else None
        if not is_int_not_bool(call_id) or self.registry.pop(call_id) is None:
            logger.debug("Unbind for unknown call id %r", call_id)

    def _handle_not_found(self, packet: Packet) -> None:
        if isinstance(packet.api_func, str):
            error = RpcError.not_registered(packet.api_func)
        else:
            if self.config.ignore_callback_unavailable:
                return
            error = RpcError.callback_unavailable(packet.api_func)

        if packet.cb_id is False:
            logger.debug("%s (no response expected)", error.message)
            return
        self.send_throw_error(packet.cb_id, error.message, format_stack(error))

    def _respond(self, cb_id: int, result: Any) -> None:
        # A callable result is extracted like any callable argument, so the
        # caller's future resolves to a RemoteCallback
        self.call(cb_id, result, no_wait=True)

    async def _respond_when_ready(self, cb_id: int | NoResponse, awaitable: Awaitable[Any]) -> None:
        try:
            result = await awaitable
        except Exception as e:
            if not self.config.expose_errors:
                raise
            self._report_error(cb_id, e)
            return
        if cb_id is not False and not self._closed:
            self._respond(cb_id, result)

    def _report_error(self, cb_id: int | NoResponse, error: Exception) -> None:
        if cb_id is False:
            logger.error("Error in iorpc handler with no caller to notify", exc_info=error)
            return
        if self._closed:
            return
        message = error.message if isinstance(error, (RpcError, RemoteError)) else str(error)
        self.send_throw_error(cb_id, message, format_stack(error))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for handler and send tasks started so far (and any they start)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel running tasks and reject every awaited call."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for entry in self.registry.clear():
            if entry.reject is not None:
                entry.reject(RpcError.internal("Session closed"))


class Iorpc(NamedTuple):
    """Result of :func:`create_iorpc`."""

    remote: RemoteApi
    route_input: Callable[[Packet | dict[str, Any]], None]
    pending: Callable[[], int]
    session: IorpcSession


class IorpcPair(NamedTuple):
    """Result of :func:`pair`."""

    local: Any
    remote: RemoteApi
    pending: Callable[[], int]
    session: IorpcSession


def create_iorpc(
    send: SendFn,
    local_api: Mapping[str, Callable[..., Any]] | Any | None = None,
    options: IorpcConfig | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> Iorpc:
    """Create a session and return its calling surface, router and pending count."""
    session = IorpcSession(send, local_api, IorpcConfig.from_options(options, **overrides))
    return Iorpc(session.remote, session.route_input, session.pending, session)


def pair(
    *,
    on: Subscribe,
    send: SendFn,
    local: Mapping[str, Callable[..., Any]] | Any | None = None,
    options: IorpcConfig | Mapping[str, Any] | None = None,
) -> IorpcPair:
    """Create a session and subscribe its router with ``on``.

    Example:
        ```python
        api = pair(on=channel.on_message, send=channel.post, local={"ping": lambda: "pong"})
        await api.remote.ping()
        ```
    """
    session = IorpcSession(send, local, options, subscribe=on)
    return IorpcPair(local, session.remote, session.pending, session)
