"""
Connection directory: which live WebSocket sessions belong to which user.

The Event Broadcaster resolves recipients through this directory and never
talks to the transport directly. A session is identified by its channel
layer channel name (ChatConsumer.channel_name).

Implementations:
    RedisConnectionDirectory: One Redis set per user, shared by every
        worker process. Entries expire unless refreshed by heartbeats.
    LocalConnectionDirectory: In-process registry for single-process
        deployments (runserver, tests) paired with InMemoryChannelLayer.

The active implementation is chosen by settings.CHAT_CONNECTION_DIRECTORY.

Usage:
    from chat.connections import get_connection_directory

    directory = get_connection_directory()
    first_session = directory.register(user.id, self.channel_name)
    for channel_name in directory.sessions_for(user.id):
        ...
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Protocol

from django.conf import settings
from django.utils.module_loading import import_string

from chat.constants import PRESENCE_CONFIG

logger = logging.getLogger(__name__)


class ConnectionDirectory(Protocol):
    """Lookup from user id to that user's live session channel names."""

    def register(self, user_id: int, channel_name: str) -> bool:
        """Add a session. Returns True if it is the user's only session."""
        ...

    def unregister(self, user_id: int, channel_name: str) -> bool:
        """Remove a session. Returns True if the user has no sessions left."""
        ...

    def touch(self, user_id: int) -> None:
        """Refresh the expiry of the user's sessions (heartbeat)."""
        ...

    def sessions_for(self, user_id: int) -> list[str]:
        """Channel names of the user's live sessions."""
        ...

    def is_online(self, user_id: int) -> bool:
        """Whether the user has at least one live session."""
        ...


class LocalConnectionDirectory:
    """
    Process-local connection directory.

    Sessions registered in one process are invisible to others, so this is
    only correct when a single process serves every WebSocket.
    """

    def __init__(self):
        self._sessions: dict[int, set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def register(self, user_id: int, channel_name: str) -> bool:
        with self._lock:
            sessions = self._sessions[user_id]
            sessions.add(channel_name)
            return len(sessions) == 1

    def unregister(self, user_id: int, channel_name: str) -> bool:
        with self._lock:
            sessions = self._sessions.get(user_id)
            if not sessions or channel_name not in sessions:
                return False
            sessions.discard(channel_name)
            if sessions:
                return False
            del self._sessions[user_id]
            return True

    def touch(self, user_id: int) -> None:
        # Local sessions never expire
        return None

    def sessions_for(self, user_id: int) -> list[str]:
        with self._lock:
            return sorted(self._sessions.get(user_id, ()))

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            return bool(self._sessions.get(user_id))

    def clear(self) -> None:
        """Forget every session."""
        with self._lock:
            self._sessions.clear()


class RedisConnectionDirectory:
    """
    Redis-backed connection directory.

    Each user has a set at "chat:sessions:<user_id>" holding channel names.
    The set's TTL is refreshed on register and heartbeat so sessions of a
    crashed worker disappear on their own.

    Register and unregister run as Lua scripts so the add/remove and the
    resulting cardinality are read atomically, which is what decides
    USER_ONLINE / USER_OFFLINE.
    """

    # Keys: [sessions_key]
    # Args: [channel_name, ttl_seconds]
    # Returns: 1 if this is the only session after the add, else 0
    LUA_REGISTER = """
    local added = redis.call('SADD', KEYS[1], ARGV[1])
    redis.call('EXPIRE', KEYS[1], ARGV[2])
    if added == 1 and redis.call('SCARD', KEYS[1]) == 1 then
        return 1
    end
    return 0
    """

    # Keys: [sessions_key]
    # Args: [channel_name]
    # Returns: 1 if the set became empty because of this removal, else 0
    LUA_UNREGISTER = """
    local removed = redis.call('SREM', KEYS[1], ARGV[1])
    if removed == 1 and redis.call('SCARD', KEYS[1]) == 0 then
        return 1
    end
    return 0
    """

    def __init__(self, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds or PRESENCE_CONFIG.SESSION_TTL_SECONDS
        self._lua_register = None
        self._lua_unregister = None

    @staticmethod
    def _get_redis_client():
        """Get raw Redis client from django-redis."""
        from django_redis import get_redis_connection

        return get_redis_connection("default")

    @staticmethod
    def _sessions_key(user_id: int) -> str:
        """Build Redis key for a user's session set."""
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_SESSIONS}:{user_id}"

    def register(self, user_id: int, channel_name: str) -> bool:
        client = self._get_redis_client()
        if self._lua_register is None:
            self._lua_register = client.register_script(self.LUA_REGISTER)
        result = self._lua_register(
            keys=[self._sessions_key(user_id)],
            args=[channel_name, self.ttl_seconds],
        )
        return int(result) == 1

    def unregister(self, user_id: int, channel_name: str) -> bool:
        client = self._get_redis_client()
        if self._lua_unregister is None:
            self._lua_unregister = client.register_script(self.LUA_UNREGISTER)
        result = self._lua_unregister(
            keys=[self._sessions_key(user_id)],
            args=[channel_name],
        )
        return int(result) == 1

    def touch(self, user_id: int) -> None:
        self._get_redis_client().expire(self._sessions_key(user_id), self.ttl_seconds)

    def sessions_for(self, user_id: int) -> list[str]:
        members = self._get_redis_client().smembers(self._sessions_key(user_id))
        return sorted(
            m.decode("utf-8") if isinstance(m, bytes) else m for m in members
        )

    def is_online(self, user_id: int) -> bool:
        return self._get_redis_client().scard(self._sessions_key(user_id)) > 0


_directory: ConnectionDirectory | None = None
_directory_lock = threading.Lock()


def get_connection_directory() -> ConnectionDirectory:
    """
    Return the process-wide connection directory.

    Built once from settings.CHAT_CONNECTION_DIRECTORY (a dotted path to a
    class taking no arguments).
    """
    global _directory
    if _directory is None:
        with _directory_lock:
            if _directory is None:
                path = getattr(
                    settings,
                    "CHAT_CONNECTION_DIRECTORY",
                    "chat.connections.RedisConnectionDirectory",
                )
                _directory = import_string(path)()
                logger.info(f"Connection directory initialised: {path}")
    return _directory


def reset_connection_directory() -> None:
    """Drop the cached directory so the next call rebuilds it from settings."""
    global _directory
    with _directory_lock:
        _directory = None
