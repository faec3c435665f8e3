from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from shared.framing import MAX_LINE_BYTES, decode_line, encode_line
from shared.log import get_logger

logger = get_logger(__name__)


LineHandler = Callable[[str], Awaitable[None]]


class ServerLineKind(str, Enum):
    ECHO = "echo"
    INCOMING = "incoming"
    ERROR = "error"
    OTHER = "other"


@dataclass(frozen=True)
class ServerLine:
    kind: ServerLineKind
    text: str
    peer: Optional[str] = None
    body: Optional[str] = None


_ECHO_PREFIX = "[You] to ["
_INCOMING_PREFIX = "[Message from "
_ERROR_PREFIX = "ERROR: "


def parse_server_line(line: str) -> ServerLine:
    """
    Classify a line received from the relay.

    '[You] to [bob]: hi'        -> ECHO(peer='bob', body='hi')
    '[Message from alice]: hi'  -> INCOMING(peer='alice', body='hi')
    'ERROR: ...'                -> ERROR(body='...')
    """
    if line.startswith(_ECHO_PREFIX):
        rest = line[len(_ECHO_PREFIX):]
        peer, sep, body = rest.partition("]: ")
        if sep:
            return ServerLine(ServerLineKind.ECHO, line, peer=peer, body=body)
    elif line.startswith(_INCOMING_PREFIX):
        rest = line[len(_INCOMING_PREFIX):]
        peer, sep, body = rest.partition("]: ")
        if sep:
            return ServerLine(ServerLineKind.INCOMING, line, peer=peer, body=body)
    elif line.startswith(_ERROR_PREFIX):
        return ServerLine(ServerLineKind.ERROR, line, body=line[len(_ERROR_PREFIX):])
    return ServerLine(ServerLineKind.OTHER, line)


class ClientSession:
    """
    Relay client session over one TCP connection.

    Sends plain text lines; reads lines until the server closes the stream.
    """

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.username: Optional[str] = None
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self) -> None:
        """Open the TCP connection. Raises OSError if the server is unreachable."""
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port, limit=MAX_LINE_BYTES
        )
        logger.debug(f"Connected to {self.host}:{self.port}")

    async def send_line(self, text: str) -> None:
        assert self.writer is not None
        self.writer.write(encode_line(text))
        await self.writer.drain()

    async def register(self, username: str) -> None:
        """Send the registration line. The relay does not acknowledge it."""
        self.username = username
        await self.send_line(username)

    async def send_message(self, recipient: str, body: str) -> None:
        await self.send_line(f"{recipient} {body}")

    async def exit(self) -> None:
        await self.send_line("/exit")

    async def recv_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Next line from the server, or None once the server has closed the connection.

        Raises asyncio.TimeoutError if ``timeout`` elapses first.
        """
        assert self.reader is not None
        try:
            if timeout is None:
                raw = await self.reader.readline()
            else:
                raw = await asyncio.wait_for(self.reader.readline(), timeout=timeout)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.info(f"Connection lost: {e!r}")
            return None
        return decode_line(raw)

    async def recv_loop(self, handler: LineHandler) -> None:
        """Pass every received line to ``handler`` until end-of-stream."""
        while True:
            line = await self.recv_line()
            if line is None:
                logger.debug("Server closed the connection")
                return
            try:
                await handler(line)
            except Exception as e:
                logger.error("Failed to process inbound line: %s", e)

    async def close(self) -> None:
        if self.writer is None:
            return
        writer, self.writer = self.writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing: {e!r}")
