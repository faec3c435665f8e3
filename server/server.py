#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import time
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, Optional, Set

import typer

from server.config import ServerConfig, load_config
from server.core.ConnectionLink import ConnectionLink
from server.core.MemoryTable import DuplicatePolicy, UserTable
from server.core.MessageHandlers import DirectMessageRouter
from server.core.SessionHandler import SessionHandler
from shared.errors import ConfigError
from shared.framing import MAX_LINE_BYTES
from shared.log import configure_root_logging, get_logger

# Configure Logging
logger = get_logger(__name__)


class RelayServer:
    """
    Accepts TCP connections and runs one SessionHandler task per connection.

    The user table is created once here (or injected) and shared by every
    handler; nothing else is shared between sessions.
    """

    def __init__(self, config: Optional[ServerConfig] = None, users: Optional[UserTable] = None):
        self.config = (config or ServerConfig()).validated()
        self.users = users if users is not None else UserTable(self.config.registry_shards)
        self.router = DirectMessageRouter(self.users)
        self.started = asyncio.Event()
        self.bound_port: Optional[int] = None
        self._handler_tasks: Set[asyncio.Task] = set()

    def _track_handler_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to handler tasks until completion."""
        self._handler_tasks.add(task)

        def _discard(_task: asyncio.Task) -> None:
            self._handler_tasks.discard(_task)

        task.add_done_callback(_discard)

    async def start_server(self) -> None:
        """
        Bind and serve until cancelled.

        Raises:
            OSError: if the listening socket cannot be bound
        """
        host, port = self.config.host, self.config.port
        logger.info(f"Starting relay server on {host}:{port}")

        server = await asyncio.start_server(self.handle_connection, host, port, limit=MAX_LINE_BYTES)
        if server.sockets:
            self.bound_port = server.sockets[0].getsockname()[1]

        logger.info(f"Relay server listening on {host}:{self.bound_port} "
                    f"(duplicate policy: {self.config.duplicate_policy.value})")
        self.started.set()
        try:
            await asyncio.Future()  # Run forever
        except asyncio.CancelledError:
            logger.info("Server task cancelled")
            raise
        finally:
            # stop accepting first; wait_closed() only returns once sessions are gone
            server.close()
            await self._shutdown_handlers()
            await server.wait_closed()

    async def _shutdown_handlers(self) -> None:
        tasks = list(self._handler_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info(f"Closed {len(tasks)} open session(s)")

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Per-connection entry point; asyncio runs each call in its own task."""
        task = asyncio.current_task()
        if task is not None:
            self._track_handler_task(task)

        try:
            link = ConnectionLink(reader, writer)
        except Exception as e:
            logger.error(f"Failed to set up new connection: {e!r}")
            with suppress(OSError, RuntimeError):
                writer.close()
            return

        logger.info("New connection", extra=link.log_context())
        handler = SessionHandler(
            link,
            self.users,
            self.router,
            duplicate_policy=self.config.duplicate_policy,
            registration_timeout=self.config.registration_timeout,
        )
        await handler.run()

    def get_status(self) -> Dict[str, Any]:
        records = self.users.records()
        usernames = [record.username for record in records]
        return {
            "host": self.config.host,
            "port": self.bound_port if self.bound_port is not None else self.config.port,
            "online_count": len(usernames),
            "online_users": usernames,
            "open_sessions": len(self._handler_tasks),
            "sessions": {
                record.username: {
                    "peer": record.link.peer,
                    "connected_at": record.connected_at,
                    "idle_seconds": max(0.0, time.monotonic() - record.link.last_seen),
                }
                for record in records
            },
        }


async def main_async(config: ServerConfig) -> None:
    server = RelayServer(config)
    await server.start_server()


app = typer.Typer(help="Direct message relay server (newline-delimited text over TCP)")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind (default 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, help="TCP port to listen on (default 8888)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file", dir_okay=False),
    duplicate_policy: Optional[DuplicatePolicy] = typer.Option(
        None, case_sensitive=False, help="What to do when a username is already online"
    ),
    registration_timeout: Optional[float] = typer.Option(
        None, help="Seconds to wait for the username line (default: no limit)"
    ),
    log_level: Optional[str] = typer.Option(None, help="DEBUG, INFO, WARNING or ERROR"),
):
    """Run the relay server until interrupted."""
    try:
        cfg = load_config(
            config,
            host=host,
            port=port,
            duplicate_policy=duplicate_policy,
            registration_timeout=registration_timeout,
            log_level=log_level,
        )
    except ConfigError as e:
        logger.error(str(e))
        raise typer.Exit(code=2)

    configure_root_logging(cfg.log_level)
    try:
        asyncio.run(main_async(cfg))
    except OSError as e:
        logger.error(f"Cannot listen on {cfg.host}:{cfg.port}: {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
