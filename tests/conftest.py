import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional, Tuple

import pytest

from client.line_client import ClientSession
from server.config import ServerConfig
from server.core.ConnectionLink import ConnectionLink
from server.server import RelayServer


class DummyWriter:
    """Stands in for asyncio.StreamWriter; records every line written."""

    def __init__(self, peer=("127.0.0.1", 50000), fail_on_send: bool = False, drain_delay: float = 0.0,
                 strict_drain: bool = False) -> None:
        self.peer = peer
        self.fail_on_send = fail_on_send
        self.drain_delay = drain_delay
        self.strict_drain = strict_drain
        self._draining = False
        self.buffer = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.fail_on_send:
            raise ConnectionResetError("peer reset")
        self.buffer.extend(data)

    async def drain(self) -> None:
        # StreamWriter.drain() on a paused transport supports one waiter at a time
        if self.strict_drain and self._draining:
            raise AssertionError("concurrent drain")
        self._draining = True
        try:
            if self.drain_delay:
                await asyncio.sleep(self.drain_delay)
        finally:
            self._draining = False

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def get_extra_info(self, name: str, default=None):
        return self.peer if name == "peername" else default

    @property
    def lines(self) -> list:
        return self.buffer.decode("utf-8").splitlines()


@pytest.fixture
def make_link():
    """Factory: ConnectionLink over a pre-fed StreamReader and a DummyWriter.

    Must be called from inside a running event loop.
    """

    def _make(*lines: str, eof: bool = True, **writer_kwargs) -> Tuple[ConnectionLink, DummyWriter]:
        reader = asyncio.StreamReader()
        for line in lines:
            reader.feed_data(line.encode("utf-8") + b"\n")
        if eof:
            reader.feed_eof()
        writer = DummyWriter(**writer_kwargs)
        return ConnectionLink(reader, writer), writer

    return _make


@pytest.fixture
def relay_server():
    """Async context manager factory running a RelayServer on an ephemeral port."""

    @asynccontextmanager
    async def _start(**overrides):
        config = ServerConfig(host="127.0.0.1", port=0, **overrides).validated()
        server = RelayServer(config)
        task = asyncio.create_task(server.start_server())
        await asyncio.wait_for(server.started.wait(), timeout=3.0)
        try:
            yield server
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    return _start


@pytest.fixture
def connect_client():
    """Factory: connect a ClientSession to a running server, optionally registering."""

    async def _connect(server: RelayServer, username: Optional[str] = None) -> ClientSession:
        session = ClientSession("127.0.0.1", server.bound_port)
        await session.connect()
        if username is not None:
            await session.register(username)
        return session

    return _connect


async def wait_for(predicate, timeout: float = 3.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
def wait_until():
    return wait_for
