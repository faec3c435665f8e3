from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from server.core.ConnectionLink import ConnectionLink
from server.core.MemoryTable import DuplicatePolicy, UserTable
from server.core.MessageHandlers import DirectMessageRouter
from server.core.MessageTypes import LineKind, parse_client_line
from shared.errors import NameInUseError
from shared.log import get_logger, log_relay_event
from shared.utils import normalize_username

logger = get_logger(__name__)


class HandlerState(str, Enum):
    CONNECTED = "connected"
    REGISTERING = "registering"
    ONLINE = "online"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionHandler:
    """
    Lifecycle of one client connection:

        CONNECTED -> REGISTERING -> ONLINE -> CLOSING -> CLOSED

    A connection that never registers goes from REGISTERING straight to
    CLOSED; cleanup then only releases the connection.

    The first line is the username. After that every line is either '/exit'
    or '<recipient> <message>'. Whatever ends the session (exit command,
    end-of-stream, read failure, cancellation) goes through cleanup(), which
    removes the user table entry and closes the connection exactly once.
    """

    def __init__(
        self,
        link: ConnectionLink,
        users: UserTable,
        router: Optional[DirectMessageRouter] = None,
        *,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT,
        registration_timeout: Optional[float] = None,
    ):
        self.link = link
        self.users = users
        self.router = router or DirectMessageRouter(users)
        self.duplicate_policy = duplicate_policy
        self.registration_timeout = registration_timeout
        self.username: Optional[str] = None
        self.state = HandlerState.CONNECTED
        self._cleanup_started = False

    async def run(self) -> None:
        """Drive the session to CLOSED. Never raises except for cancellation."""
        try:
            if await self.register():
                await self.message_loop()
        except asyncio.CancelledError:
            logger.info("Session cancelled", extra=self.link.log_context())
            raise
        except Exception:
            logger.exception("Unexpected error in session", extra=self.link.log_context())
        finally:
            await self.cleanup()

    async def register(self) -> bool:
        """Read the username line and claim it. Returns True once ONLINE."""
        self.state = HandlerState.REGISTERING
        line = await self.link.read_line(timeout=self.registration_timeout)
        username = normalize_username(line)
        if username is None:
            logger.info("No username given; dropping connection", extra=self.link.log_context())
            return False

        try:
            _, displaced = self.users.claim(username, self.link, self.duplicate_policy)
        except NameInUseError:
            logger.warning(f"Username {username} already in use", extra=self.link.log_context())
            await self.link.on_error_name_in_use(username)
            return False

        self.username = username
        self.link.username = username
        self.state = HandlerState.ONLINE

        if displaced is not None:
            logger.info("Disconnecting previous session for reused username",
                        extra=displaced.log_context())
            await displaced.on_session_replaced()
            await displaced.close()

        log_relay_event(logger, "info", "User registered", **self.link.log_context())
        return True

    async def message_loop(self) -> None:
        while self.state == HandlerState.ONLINE:
            line = await self.link.read_line()
            if line is None:
                log_relay_event(logger, "info", "Client disconnected", **self.link.log_context())
                break
            try:
                await self.handle_line(line)
            except Exception:
                # one bad line must not end the session
                logger.exception("Error processing line", extra=self.link.log_context())

    async def handle_line(self, line: str) -> None:
        assert self.username is not None
        parsed = parse_client_line(line)
        if parsed.kind == LineKind.EXIT:
            logger.info("Client requested exit", extra=self.link.log_context())
            self.state = HandlerState.CLOSING
        elif parsed.kind == LineKind.DIRECT:
            assert parsed.recipient is not None and parsed.body is not None
            await self.router.deliver(self.username, parsed.recipient, parsed.body, sender_link=self.link)
        else:
            await self.link.on_error_bad_format()

    async def cleanup(self) -> None:
        """Remove from the user table (if registered) and close the connection. Idempotent."""
        if self._cleanup_started:
            return
        self._cleanup_started = True
        if self.username is not None:
            self.state = HandlerState.CLOSING
        try:
            if self.username is not None:
                if self.users.remove(self.username, link=self.link):
                    log_relay_event(logger, "info", "User removed", **self.link.log_context())
                else:
                    logger.debug("User entry already gone or owned by a newer session",
                                 extra=self.link.log_context())
        finally:
            await self.link.close()
            self.state = HandlerState.CLOSED
