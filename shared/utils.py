from __future__ import annotations
from typing import Optional, Tuple

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================

def normalize_username(raw: Optional[str]) -> Optional[str]:
    """
    Returns the trimmed username, or None if nothing usable is left.

    Usernames are opaque: no format rules beyond non-empty after trimming.
    """
    if raw is None:
        return None
    name = raw.strip()
    return name or None


def split_directed(line: str) -> Optional[Tuple[str, str]]:
    """
    Split '<recipient> <body>' on the first space only.

    'bob hello there bob' -> ('bob', 'hello there bob')
    Returns None when the line has no space at all.
    """
    parts = line.split(" ", 1)
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


def is_valid_port(port: int, *, allow_ephemeral: bool = True) -> bool:
    """
    Port must be an integer between 1 and 65535 (0 asks the OS for a free one).
    """
    if isinstance(port, bool) or not isinstance(port, int):
        return False
    low = 0 if allow_ephemeral else 1
    return low <= port <= 65535


def is_hostport(s: str) -> bool:
    """
    Accepts 'hostname:port' or 'A.B.C.D:port'.

    Validates that:
    - Port is a valid integer between 1 and 65535
    - Hostname is non-empty

    Examples: "localhost:8888", "192.168.1.5:8080"
    """
    try:
        if ':' not in s:
            return False
        host, port_s = s.rsplit(':', 1)  # rsplit to handle IPv6 future-proofing
        if not host:  # Empty hostname
            return False
        return is_valid_port(int(port_s), allow_ephemeral=False)
    except ValueError:
        return False


def format_peer(peername: object) -> str:
    """Render a socket peername tuple as host:port for logs."""
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername) if peername else "unknown"
