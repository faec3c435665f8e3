"""
Line framing for the relay wire protocol.

Every frame in either direction is one UTF-8 line terminated by ``\\n``:

    alice                       (registration, first line only)
    bob hello there             (directed message)
    /exit                       (graceful disconnect)

There is no envelope; a frame is the text of the line.
"""

from __future__ import annotations

from typing import Optional

ENCODING = "utf-8"
LINE_TERMINATOR = b"\n"

# asyncio.StreamReader limit for a single line
MAX_LINE_BYTES = 64 * 1024


def encode_line(text: str) -> bytes:
    """Encode one outbound line.

    Embedded newlines would split the frame on the wire, so they are folded
    into spaces.
    """
    text = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
    return text.encode(ENCODING) + LINE_TERMINATOR


def decode_line(raw: bytes) -> Optional[str]:
    """Decode one inbound line as read by ``StreamReader.readline()``.

    Returns None for an empty read, which asyncio uses to signal
    end-of-stream. A partial final line (no terminator) is still returned.
    Undecodable bytes are replaced rather than failing the session.
    """
    if not raw:
        return None
    if raw.endswith(LINE_TERMINATOR):
        raw = raw[:-1]
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode(ENCODING, errors="replace")
