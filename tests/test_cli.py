import socket

import pytest
from typer.testing import CliRunner

from client.line_client import ServerLineKind, parse_server_line
from client.relay_cli import app as client_app, render_line
from server.server import app as server_app

runner = CliRunner()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.mark.parametrize(
    "line, kind, peer, body",
    [
        ("[You] to [bob]: hello there", ServerLineKind.ECHO, "bob", "hello there"),
        ("[Message from alice]: hi: again", ServerLineKind.INCOMING, "alice", "hi: again"),
        ("ERROR: User carol is not online.", ServerLineKind.ERROR, None, "User carol is not online."),
        ("welcome", ServerLineKind.OTHER, None, None),
    ],
)
def test_parse_server_line(line, kind, peer, body):
    parsed = parse_server_line(line)
    assert parsed.kind == kind
    assert parsed.peer == peer
    assert parsed.body == body
    assert parsed.text == line


def test_render_line_escapes_markup():
    rendered = render_line(parse_server_line("[Message from alice]: [bold]hi"))
    assert rendered.startswith("[bold cyan]")
    assert "\\[bold]hi" in rendered
    assert render_line(parse_server_line("ERROR: nope")).startswith("[red]")


def test_client_send_reports_unreachable_server():
    port = _free_port()
    result = runner.invoke(client_app, ["send", "bob", "hi", "--as", "alice", "--server", f"127.0.0.1:{port}"])

    assert result.exit_code == 1
    assert "Could not connect to server" in result.output


def test_client_rejects_bad_server_address():
    result = runner.invoke(client_app, ["send", "bob", "hi", "--as", "alice", "--server", "nowhere"])

    assert result.exit_code == 2


def test_server_exits_nonzero_when_port_is_taken():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as held:
        held.bind(("127.0.0.1", 0))
        held.listen()
        port = held.getsockname()[1]

        result = runner.invoke(server_app, ["--host", "127.0.0.1", "--port", str(port)])

    assert result.exit_code == 1


def test_server_exits_on_bad_config(tmp_path):
    path = tmp_path / "relay.yaml"
    path.write_text("port: not-a-port\n")

    result = runner.invoke(server_app, ["--config", str(path)])

    assert result.exit_code == 2
