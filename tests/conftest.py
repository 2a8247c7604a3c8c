"""Pytest configuration for all tests."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

import pytest_asyncio

from iorpc.session import IorpcSession
from iorpc.wire import Packet, parse_packet, serialize_packet


class MemoryChannel:
    """One end of an in-memory channel.

    Packets are queued and routed by a background task, so delivery is
    asynchronous like a real transport. With ``json_wire`` every packet is
    serialized and parsed on the way.
    """

    def __init__(self, name: str, json_wire: bool = False) -> None:
        self.name = name
        self.json_wire = json_wire
        self.peer: MemoryChannel | None = None
        self.sent: list[Packet] = []
        self.host_errors: list[Exception] = []
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    def send(self, packet: Packet) -> None:
        assert self.peer is not None
        self.sent.append(packet)
        data = serialize_packet(packet) if self.json_wire else packet
        self.peer.inbox.put_nowait(data)

    def start(self, session: IorpcSession) -> None:
        self._task = asyncio.create_task(self._pump(session))

    async def _pump(self, session: IorpcSession) -> None:
        while True:
            data = await self.inbox.get()
            packet = parse_packet(data) if isinstance(data, str) else data
            try:
                session.route_input(packet)
            except Exception as e:
                # What a host sees when the router lets an error escape
                self.host_errors.append(e)

    @property
    def idle(self) -> bool:
        return self.inbox.empty()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class Peers:
    """Two sessions joined by a pair of memory channels."""

    def __init__(
        self,
        a: IorpcSession,
        b: IorpcSession,
        channel_a: MemoryChannel,
        channel_b: MemoryChannel,
    ) -> None:
        self.a = a
        self.b = b
        self.channel_a = channel_a
        self.channel_b = channel_b

    async def settle(self) -> None:
        """Wait until no packets are in flight and no handler tasks run."""
        for _ in range(200):
            await asyncio.sleep(0)
            if self.channel_a.idle and self.channel_b.idle:
                await asyncio.gather(self.a.drain(), self.b.drain())
                await asyncio.sleep(0)
                if self.channel_a.idle and self.channel_b.idle:
                    return
        raise AssertionError("channels did not settle")

    async def close(self) -> None:
        await self.channel_a.stop()
        await self.channel_b.stop()
        await self.a.close()
        await self.b.close()


PeersFactory = Callable[..., Peers]


@pytest_asyncio.fixture
async def make_peers() -> AsyncIterator[PeersFactory]:
    """Factory for connected session pairs, closed after the test.

    ``make_peers(local_a, local_b, json_wire=False, a_options=..., b_options=..., **shared)``
    """
    created: list[Peers] = []

    def factory(
        local_a: Any = None,
        local_b: Any = None,
        *,
        json_wire: bool = False,
        a_options: dict[str, Any] | None = None,
        b_options: dict[str, Any] | None = None,
        **shared: Any,
    ) -> Peers:
        channel_a = MemoryChannel("a", json_wire)
        channel_b = MemoryChannel("b", json_wire)
        channel_a.peer = channel_b
        channel_b.peer = channel_a
        a = IorpcSession(channel_a.send, local_a, {**shared, **(a_options or {})})
        b = IorpcSession(channel_b.send, local_b, {**shared, **(b_options or {})})
        channel_a.start(a)
        channel_b.start(b)
        peers = Peers(a, b, channel_a, channel_b)
        created.append(peers)
        return peers

    yield factory

    for peers in created:
        await peers.close()
