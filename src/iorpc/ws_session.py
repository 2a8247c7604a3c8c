"""WebSocket channel for iorpc sessions.

Packets travel as JSON text frames, one packet per frame. The adapter only
moves packets; all protocol behavior lives in :class:`IorpcSession`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

import aiohttp
from aiohttp import web

from iorpc.config import IorpcConfig
from iorpc.session import IorpcSession
from iorpc.stubs import RemoteApi
from iorpc.wire import Packet, parse_packet, serialize_packet

logger = logging.getLogger(__name__)

LocalApiSource = Mapping[str, Callable[..., Any]] | Any | None


class WebSocketChannel:
    """Sends and receives packets over an aiohttp WebSocket (client or server side)."""
    __slots__ = ('_ws', '_closed')

    def __init__(self, ws: aiohttp.ClientWebSocketResponse | web.WebSocketResponse) -> None:
        self._ws = ws
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._ws.closed

    async def send(self, packet: Packet) -> None:
        """Send a packet to the peer."""
        if self.closed:
            raise ConnectionError("WebSocket is closed")
        await self._ws.send_str(serialize_packet(packet))

    async def receive(self) -> Packet:
        """Receive the next packet. Raises ConnectionError once the socket closes."""
        if self._closed:
            raise ConnectionError("WebSocket is closed")

        msg = await self._ws.receive()

        if msg.type == aiohttp.WSMsgType.TEXT:
            return parse_packet(msg.data)
        elif msg.type == aiohttp.WSMsgType.BINARY:
            return parse_packet(msg.data.decode("utf-8"))
        elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
            self._closed = True
            raise ConnectionError("WebSocket closed")
        elif msg.type == aiohttp.WSMsgType.ERROR:
            self._closed = True
            raise ConnectionError(f"WebSocket error: {self._ws.exception()}")
        else:
            raise ValueError(f"Unexpected message type: {msg.type}")

    async def pump(self, session: IorpcSession) -> None:
        """Feed received packets into ``session`` until the socket closes.

        Malformed frames are dropped. Any other error escaping the router
        (a handler failure with ``expose_errors`` off) ends the loop.
        """
        while True:
            try:
                packet = await self.receive()
            except ConnectionError:
                break
            except ValueError as e:
                logger.warning("Dropping malformed frame: %s", e)
                continue

            try:
                session.route_input(packet)
            except Exception:
                logger.exception("Error routing packet, closing channel")
                await self.close()
                break

    async def close(self) -> None:
        self._closed = True
        if not self._ws.closed:
            await self._ws.close()


class WebSocketIorpcClient:
    """iorpc over a client WebSocket connection.

    Example:
        ```python
        async with WebSocketIorpcClient("ws://localhost:8080/rpc", local_api={"log": print}) as client:
            print(await client.remote.add(2, 3))
        ```
    """

    def __init__(
        self,
        url: str,
        local_api: LocalApiSource = None,
        config: IorpcConfig | Mapping[str, Any] | None = None,
    ) -> None:
        self.url = url
        self._local_api = local_api
        self._config = config
        self._http_session: aiohttp.ClientSession | None = None
        self._channel: WebSocketChannel | None = None
        self._session: IorpcSession | None = None
        self._pump_task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> WebSocketIorpcClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def connect(self) -> None:
        self._http_session = aiohttp.ClientSession()
        ws = await self._http_session.ws_connect(self.url)
        self._channel = WebSocketChannel(ws)
        self._session = IorpcSession(self._channel.send, self._local_api, self._config)
        self._pump_task = asyncio.create_task(self._channel.pump(self._session))

    @property
    def session(self) -> IorpcSession:
        if self._session is None:
            raise RuntimeError("Not connected")
        return self._session

    @property
    def remote(self) -> RemoteApi:
        return self.session.remote

    def pending(self) -> int:
        return self.session.pending()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
        if self._channel:
            await self._channel.close()
            self._channel = None
        if self._pump_task:
            await self._pump_task
            self._pump_task = None
        if self._http_session:
            await self._http_session.close()
            self._http_session = None


async def handle_websocket_rpc(
    request: web.Request,
    local_api: LocalApiSource,
    config: IorpcConfig | Mapping[str, Any] | None = None,
    on_session: Callable[[IorpcSession], Any] | None = None,
) -> web.WebSocketResponse:
    """Serve one iorpc connection from an aiohttp route handler.

    Args:
        request: The aiohttp request
        local_api: API exposed to the connecting peer
        config: Session configuration
        on_session: Called with the session once it is created, e.g. to keep
            a handle for calling back into the client.

    Example:
        ```python
        async def rpc(request):
            return await handle_websocket_rpc(request, {"add": lambda a, b: a + b})

        app.router.add_get("/rpc", rpc)
        ```
    """
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    channel = WebSocketChannel(ws)
    session = IorpcSession(channel.send, local_api, config)
    if on_session is not None:
        on_session(session)

    try:
        await channel.pump(session)
    finally:
        await session.close()
        logger.debug("WebSocket iorpc session ended")

    return ws
