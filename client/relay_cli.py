#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import os
from contextlib import suppress
from typing import List, Optional, Tuple

import aioconsole
import typer
from rich.console import Console
from rich.markup import escape

from shared.log import get_logger
from shared.utils import is_hostport, normalize_username
from .line_client import ClientSession, ServerLine, ServerLineKind, parse_server_line

app = typer.Typer(help="Direct message relay client")
console = Console()
logger = get_logger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8888


def _default_server() -> str:
    host = os.getenv("RELAY_SERVER_HOST", DEFAULT_HOST)
    port = os.getenv("RELAY_SERVER_PORT", str(DEFAULT_PORT))
    return f"{host}:{port}"


def _split_server(server: str) -> Tuple[str, int]:
    if not is_hostport(server):
        raise typer.BadParameter(f"expected host:port, got {server!r}", param_hint="--server")
    host, port_s = server.rsplit(":", 1)
    return host, int(port_s)


def render_line(line: ServerLine) -> str:
    """Rich markup for one line received from the relay."""
    text = escape(line.text)
    if line.kind == ServerLineKind.INCOMING:
        return f"[bold cyan]{text}[/]"
    if line.kind == ServerLineKind.ECHO:
        return f"[dim]{text}[/]"
    if line.kind == ServerLineKind.ERROR:
        return f"[red]{text}[/]"
    return text


def _print_banner(username: str, server: str) -> None:
    console.print(f"[bold green]Connected[/] to {escape(server)} as [bold]{escape(username)}[/]")
    console.print("\n--- Chat Commands ---")
    console.print("Send a message:  <recipient> <message>")
    console.print("Leave the chat:  /exit\n")


@app.command()
def run(
    server: str = typer.Option(_default_server(), help="Relay address as host:port"),
    username: Optional[str] = typer.Option(None, help="Name to register; prompted if omitted"),
):
    """Start the interactive client loop."""
    host, port = _split_server(server)

    async def main_loop() -> int:
        session = ClientSession(host, port)
        try:
            await session.connect()
        except OSError as e:
            console.print(f"[red]Could not connect to server[/]: {escape(str(e))}")
            return 1

        name = normalize_username(username)
        while name is None:
            name = normalize_username(await aioconsole.ainput("Enter your username: "))
        await session.register(name)
        _print_banner(name, server)

        async def print_line(line: str) -> None:
            console.print(render_line(parse_server_line(line)))

        recv_task = asyncio.create_task(session.recv_loop(print_line))
        try:
            while True:
                input_task = asyncio.ensure_future(aioconsole.ainput(""))
                done, _ = await asyncio.wait({input_task, recv_task}, return_when=asyncio.FIRST_COMPLETED)
                if recv_task in done:
                    input_task.cancel()
                    console.print("[yellow]Disconnected from server.[/]")
                    break
                line = input_task.result()
                await session.send_line(line)
                if line.strip().lower() == "/exit":
                    break
        except (EOFError, ConnectionError) as e:
            logger.debug(f"Input loop ended: {e!r}")
        finally:
            recv_task.cancel()
            await session.close()
        return 0

    code = asyncio.run(main_loop())
    if code:
        raise typer.Exit(code=code)


@app.command()
def send(
    recipient: str = typer.Argument(..., help="Who to message"),
    message: List[str] = typer.Argument(..., help="Message text"),
    sender: str = typer.Option(..., "--as", help="Name to register as for this message"),
    server: str = typer.Option(_default_server(), help="Relay address as host:port"),
    wait: float = typer.Option(0.5, help="Seconds to wait for replies"),
):
    """Register, send one message, print the replies and exit."""
    host, port = _split_server(server)
    body = " ".join(message)

    async def one_shot() -> int:
        session = ClientSession(host, port)
        try:
            await session.connect()
        except OSError as e:
            console.print(f"[red]Could not connect to server[/]: {escape(str(e))}")
            return 1
        try:
            await session.register(sender)
            await session.send_message(recipient, body)
            while True:
                try:
                    line = await session.recv_line(timeout=wait)
                except asyncio.TimeoutError:
                    break
                if line is None:
                    break
                console.print(render_line(parse_server_line(line)))
            with suppress(ConnectionError):
                await session.exit()
        finally:
            await session.close()
        return 0

    code = asyncio.run(one_shot())
    if code:
        raise typer.Exit(code=code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
