from __future__ import annotations


class RelayError(Exception):
    """Base class for errors raised by the relay itself."""
    pass


class NameInUseError(RelayError):
    """Raised when a username is already held by an online session."""

    def __init__(self, username: str):
        super().__init__(f"Username {username} is already taken")
        self.username = username


class ConfigError(RelayError):
    """Raised when configuration is missing, malformed or out of range."""

    def __init__(self, key: str, detail: str):
        super().__init__(f"Invalid config value for '{key}': {detail}")
        self.key = key
        self.detail = detail
