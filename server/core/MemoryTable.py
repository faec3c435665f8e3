from __future__ import annotations

'''
Online-user table.

The table maps username -> UserRecord. A record holds the session's
ConnectionLink, which is the only thing other sessions need (a send-capable
handle); the session handler itself is never referenced from here.

Storage is lock-striped: names hash onto a fixed number of shards, each a
plain dict with its own threading.Lock, so lookups for unrelated users never
contend on one global lock. Every public method is safe to call from any
thread or task.
'''
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from shared.errors import NameInUseError

if TYPE_CHECKING:
    from server.core.ConnectionLink import ConnectionLink


class DuplicatePolicy(str, Enum):
    """What to do when a name is claimed while another session holds it."""

    REJECT = "reject"      # refuse the newcomer
    REPLACE = "replace"    # last writer wins; the old session stays connected but unreachable
    KICK = "kick"          # disconnect the old session, then register the newcomer


@dataclass
class UserRecord:
    username: str
    link: "ConnectionLink"
    connected_at: float = field(default_factory=time.time)


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: Dict[str, UserRecord] = field(default_factory=dict)


class UserTable:
    """Concurrent username -> UserRecord mapping. Single source of truth for who is online."""

    DEFAULT_SHARDS = 16

    def __init__(self, shards: int = DEFAULT_SHARDS):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards: List[_Shard] = [_Shard() for _ in range(shards)]

    def _shard_for(self, username: str) -> _Shard:
        return self._shards[hash(username) % len(self._shards)]

    def register(self, username: str, link: "ConnectionLink") -> UserRecord:
        """Insert unconditionally, overwriting any existing entry."""
        record = UserRecord(username=username, link=link)
        shard = self._shard_for(username)
        with shard.lock:
            shard.users[username] = record
        return record

    def claim(
        self,
        username: str,
        link: "ConnectionLink",
        policy: DuplicatePolicy = DuplicatePolicy.REJECT,
    ) -> Tuple[UserRecord, Optional["ConnectionLink"]]:
        """
        Atomically check for a holder of ``username`` and insert ``link``.

        Returns (new_record, displaced_link). displaced_link is only set under
        KICK, and the caller is responsible for disconnecting it.

        Raises:
            NameInUseError: under REJECT when another link holds the name
        """
        shard = self._shard_for(username)
        with shard.lock:
            existing = shard.users.get(username)
            displaced: Optional["ConnectionLink"] = None
            if existing is not None and existing.link is not link:
                if policy == DuplicatePolicy.REJECT:
                    raise NameInUseError(username)
                if policy == DuplicatePolicy.KICK:
                    displaced = existing.link
            record = UserRecord(username=username, link=link)
            shard.users[username] = record
        return record, displaced

    def lookup(self, username: str) -> Optional[UserRecord]:
        shard = self._shard_for(username)
        with shard.lock:
            return shard.users.get(username)

    def remove(self, username: str, link: Optional["ConnectionLink"] = None) -> bool:
        """
        Delete ``username``. Idempotent: returns False if nothing was removed.

        With ``link`` given, only an entry owned by that link is removed, so a
        displaced session's cleanup cannot evict the session that replaced it.
        """
        shard = self._shard_for(username)
        with shard.lock:
            existing = shard.users.get(username)
            if existing is None:
                return False
            if link is not None and existing.link is not link:
                return False
            del shard.users[username]
            return True

    def records(self) -> List[UserRecord]:
        """Snapshot of all records, sorted by username."""
        records: List[UserRecord] = []
        for shard in self._shards:
            with shard.lock:
                records.extend(shard.users.values())
        return sorted(records, key=lambda r: r.username)

    def usernames(self) -> List[str]:
        """Sorted snapshot of online usernames."""
        return [record.username for record in self.records()]

    def __contains__(self, username: object) -> bool:
        if not isinstance(username, str):
            return False
        return self.lookup(username) is not None

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.users)
        return total
