from __future__ import annotations

import asyncio
import itertools
import time
from typing import Optional

from server.core.MessageTypes import (
    BAD_FORMAT_DETAIL,
    SESSION_REPLACED_DETAIL,
    error_frame,
    name_in_use_detail,
    user_not_online_detail,
)
from shared.framing import decode_line, encode_line
from shared.log import get_logger
from shared.utils import format_peer

logger = get_logger(__name__)

_connection_ids = itertools.count(1)


class ConnectionLink:
    """Wrapper around one accepted TCP stream pair with connection metadata.

    This is the send-capable handle stored in the user table. Reads are only
    ever issued by the owning session handler; any task may call the send
    methods.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.connection_id: int = next(_connection_ids)
        self.peer: str = format_peer(writer.get_extra_info("peername"))
        self.username: Optional[str] = None
        self.last_seen: float = time.monotonic()
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    def log_context(self) -> dict:
        return {"connection_id": self.connection_id, "peer": self.peer, "username": self.username}

    async def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Read one line.

        Returns None on end-of-stream, read failure or timeout. Callers treat
        None as the connection being gone; nothing is raised.
        """
        try:
            if timeout is None:
                raw = await self.reader.readline()
            else:
                raw = await asyncio.wait_for(self.reader.readline(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("Timed out waiting for a line", extra=self.log_context())
            return None
        except (ConnectionError, OSError, asyncio.IncompleteReadError) as e:
            logger.info(f"Read failed: {e!r}", extra=self.log_context())
            return None
        except (asyncio.LimitOverrunError, ValueError) as e:
            # line longer than the stream limit; the framing is lost
            logger.warning(f"Oversized line, dropping connection: {e}", extra=self.log_context())
            return None

        line = decode_line(raw)
        if line is not None:
            self.last_seen = time.monotonic()
        return line

    async def send_line(self, text: str) -> bool:
        """Write one full line and flush. Returns False if the peer is gone."""
        if self.closed:
            logger.debug("Dropping line for closed connection", extra=self.log_context())
            return False
        try:
            # drain() allows a single waiter; concurrent senders queue here
            async with self._send_lock:
                self.writer.write(encode_line(text))
                await self.writer.drain()
            return True
        except (ConnectionError, OSError) as e:
            logger.warning(f"Connection lost while sending: {e!r}", extra=self.log_context())
            return False
        except RuntimeError as e:
            # transport already torn down under us
            logger.warning(f"Error sending line: {e}", extra=self.log_context())
            return False

    async def send_error(self, detail: str) -> bool:
        """Send an 'ERROR: <detail>' line"""
        return await self.send_line(error_frame(detail))

    # Convenience methods for the protocol's error lines
    async def on_error_user_not_online(self, recipient: str) -> bool:
        return await self.send_error(user_not_online_detail(recipient))

    async def on_error_bad_format(self) -> bool:
        return await self.send_error(BAD_FORMAT_DETAIL)

    async def on_error_name_in_use(self, username: str) -> bool:
        return await self.send_error(name_in_use_detail(username))

    async def on_session_replaced(self) -> bool:
        return await self.send_error(SESSION_REPLACED_DETAIL)

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing connection: {e!r}", extra=self.log_context())

    def __repr__(self) -> str:
        return f"ConnectionLink(id={self.connection_id}, peer={self.peer}, username={self.username})"
