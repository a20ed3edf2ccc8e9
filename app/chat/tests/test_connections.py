"""
Tests for the connection directory.

This module tests:
- LocalConnectionDirectory: first/last session detection, lookups
- RedisConnectionDirectory: key layout, Lua scripts, TTL refresh
- get_connection_directory: settings-driven singleton
"""

from unittest.mock import MagicMock, patch

import pytest

from chat.connections import (
    LocalConnectionDirectory,
    RedisConnectionDirectory,
    get_connection_directory,
    reset_connection_directory,
)


class TestLocalConnectionDirectory:
    """
    Tests for LocalConnectionDirectory.

    Verifies:
    - register reports the first session
    - unregister reports the last session
    - sessions_for / is_online reflect registrations
    """

    def test_first_session_is_reported(self):
        """
        Only the first session of a user reports True.

        Why it matters: USER_ONLINE is emitted once, not per tab.
        """
        directory = LocalConnectionDirectory()

        assert directory.register(1, "chan-a") is True
        assert directory.register(1, "chan-b") is False

    def test_last_session_is_reported(self):
        directory = LocalConnectionDirectory()
        directory.register(1, "chan-a")
        directory.register(1, "chan-b")

        assert directory.unregister(1, "chan-a") is False
        assert directory.unregister(1, "chan-b") is True
        assert directory.is_online(1) is False

    def test_unregister_unknown_session_is_false(self):
        directory = LocalConnectionDirectory()
        directory.register(1, "chan-a")

        assert directory.unregister(1, "chan-zzz") is False
        assert directory.unregister(2, "chan-a") is False
        assert directory.is_online(1) is True

    def test_sessions_for_is_sorted_and_per_user(self):
        directory = LocalConnectionDirectory()
        directory.register(1, "chan-b")
        directory.register(1, "chan-a")
        directory.register(2, "chan-c")

        assert directory.sessions_for(1) == ["chan-a", "chan-b"]
        assert directory.sessions_for(3) == []

    def test_clear_forgets_everyone(self):
        directory = LocalConnectionDirectory()
        directory.register(1, "chan-a")

        directory.clear()

        assert directory.is_online(1) is False


class TestRedisConnectionDirectory:
    """Tests for RedisConnectionDirectory against a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        with patch.object(RedisConnectionDirectory, "_get_redis_client", return_value=client):
            yield client

    def test_register_runs_script_with_user_key_and_ttl(self, redis_client):
        script = MagicMock(return_value=1)
        redis_client.register_script.return_value = script
        directory = RedisConnectionDirectory(ttl_seconds=90)

        assert directory.register(7, "chan-a") is True
        script.assert_called_once_with(keys=["chat:sessions:7"], args=["chan-a", 90])

    def test_register_reports_additional_session(self, redis_client):
        redis_client.register_script.return_value = MagicMock(return_value=0)

        assert RedisConnectionDirectory().register(7, "chan-b") is False

    def test_scripts_are_registered_once(self, redis_client):
        """
        Lua scripts are loaded once per directory instance.

        Why it matters: Re-registering on every connect wastes round trips.
        """
        redis_client.register_script.return_value = MagicMock(return_value=0)
        directory = RedisConnectionDirectory()

        directory.register(1, "a")
        directory.register(2, "b")

        redis_client.register_script.assert_called_once_with(
            RedisConnectionDirectory.LUA_REGISTER
        )

    def test_unregister_reports_last_session(self, redis_client):
        script = MagicMock(return_value=1)
        redis_client.register_script.return_value = script

        assert RedisConnectionDirectory().unregister(7, "chan-a") is True
        script.assert_called_once_with(keys=["chat:sessions:7"], args=["chan-a"])

    def test_touch_refreshes_ttl(self, redis_client):
        RedisConnectionDirectory(ttl_seconds=60).touch(7)

        redis_client.expire.assert_called_once_with("chat:sessions:7", 60)

    def test_default_ttl(self, redis_client):
        assert RedisConnectionDirectory().ttl_seconds == 120

    def test_sessions_for_decodes_and_sorts(self, redis_client):
        redis_client.smembers.return_value = {b"chan-b", b"chan-a"}

        assert RedisConnectionDirectory().sessions_for(7) == ["chan-a", "chan-b"]

    def test_is_online_uses_cardinality(self, redis_client):
        redis_client.scard.return_value = 0
        directory = RedisConnectionDirectory()

        assert directory.is_online(7) is False
        redis_client.scard.return_value = 2
        assert directory.is_online(7) is True


class TestGetConnectionDirectory:
    """Tests for get_connection_directory()."""

    def test_returns_same_instance(self):
        assert get_connection_directory() is get_connection_directory()

    def test_uses_configured_class(self, settings):
        settings.CHAT_CONNECTION_DIRECTORY = "chat.connections.RedisConnectionDirectory"
        reset_connection_directory()

        assert isinstance(get_connection_directory(), RedisConnectionDirectory)

    def test_test_settings_use_local_directory(self):
        assert isinstance(get_connection_directory(), LocalConnectionDirectory)
