"""
Unit tests for store initialization and health checks.
"""

from unittest.mock import MagicMock, patch

import pytest
import redis

from linkgate.database import check_redis_health, close_redis, init_redis
from linkgate.errors import ConfigurationError
from linkgate.storage import MemoryStore


@pytest.fixture
def unreachable_redis():
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("Connection refused")
    with patch("linkgate.database.build_redis_client", return_value=client):
        yield client
    close_redis()


class TestInitRedis:
    """Backend selection and the unreachable-Redis fallback."""

    def test_memory_backend(self):
        client = init_redis({"CACHE_BACKEND": "memory"})

        assert isinstance(client, MemoryStore)
        close_redis()

    def test_unreachable_redis_falls_back_outside_production(self, unreachable_redis):
        client = init_redis({"CACHE_BACKEND": "redis", "FLASK_ENV": "development"})

        assert isinstance(client, MemoryStore)

    def test_unreachable_redis_is_fatal_in_production(self, unreachable_redis):
        with pytest.raises(ConfigurationError, match="Redis is unreachable"):
            init_redis({"CACHE_BACKEND": "redis", "FLASK_ENV": "production"})

    def test_reachable_redis_is_used(self):
        client = MagicMock()
        with patch("linkgate.database.build_redis_client", return_value=client):
            assert init_redis({"CACHE_BACKEND": "redis", "FLASK_ENV": "production"}) is client
        close_redis()


class TestCheckRedisHealth:
    def test_memory_backend_is_healthy_when_chosen(self):
        status = check_redis_health(MemoryStore(), "memory")

        assert status["status"] == "healthy"
        assert status["cache"] == "memory"

    def test_memory_standing_in_for_redis_is_degraded(self, unreachable_redis):
        client = init_redis({"CACHE_BACKEND": "redis", "FLASK_ENV": "development"})

        status = check_redis_health(client, "redis")

        assert status["status"] == "degraded"
        assert status["connected"] is False
        assert "per process" in status["error"]

    def test_redis_ping_failure_is_unhealthy(self, unreachable_redis):
        status = check_redis_health(unreachable_redis, "redis")

        assert status["status"] == "unhealthy"
        assert status["cache"] == "redis"

    def test_uninitialized(self):
        close_redis()

        assert check_redis_health()["status"] == "unavailable"
