from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from shared.utils import split_directed


class ClientCommand(str, Enum):
    """Literal control lines a registered client may send."""

    EXIT = "/exit"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is exactly a known command."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


class LineKind(str, Enum):
    """Classification of one line read from an ONLINE client."""

    EXIT = "exit"
    DIRECT = "direct"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ClientLine:
    kind: LineKind
    recipient: Optional[str] = None
    body: Optional[str] = None


def parse_client_line(line: str) -> ClientLine:
    """
    Interpret a line received after registration.

    '/exit'            -> EXIT
    'bob hello there'  -> DIRECT(recipient='bob', body='hello there')
    'bob'              -> MALFORMED
    """
    if ClientCommand.is_valid(line):
        return ClientLine(LineKind.EXIT)
    parts = split_directed(line)
    if parts is None:
        return ClientLine(LineKind.MALFORMED)
    recipient, body = parts
    return ClientLine(LineKind.DIRECT, recipient=recipient, body=body)


# Server -> client frames

ERROR_PREFIX = "ERROR: "
BAD_FORMAT_DETAIL = "Private message format is [recipient] [message]"


def echo_frame(recipient: str, body: str) -> str:
    return f"[You] to [{recipient}]: {body}"


def incoming_frame(sender: str, body: str) -> str:
    return f"[Message from {sender}]: {body}"


def error_frame(detail: str) -> str:
    return f"{ERROR_PREFIX}{detail}"


def user_not_online_detail(recipient: str) -> str:
    return f"User {recipient} is not online."


def name_in_use_detail(username: str) -> str:
    return f"Username {username} is already taken."


SESSION_REPLACED_DETAIL = "You have been signed in from another connection."
