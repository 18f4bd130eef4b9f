"""
Tests for settings validation and structured logging.
"""

import json
import logging

import pytest

from shared.config.logging import DevelopmentFormatter, StructuredFormatter, get_logger
from shared.config.settings import DEFAULT_STATIC_ROOT, Settings
from shared.infrastructure.correlation import (
    ConnectionIdFilter,
    bind_connection_id,
    reset_connection_id,
)
from ws_gateway.main import create_app


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("REDIS_URL", "WS_GATEWAY_PORT", "STATIC_ROOT"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.redis_url == "redis://localhost:4245"
        assert settings.ws_gateway_port == 8080
        assert settings.static_root_path == DEFAULT_STATIC_ROOT
        assert settings.validate_pool_limits() == []

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://broker:6379/1")
        monkeypatch.setenv("REDIS_POOL_MAX_ACTIVE", "10")

        settings = Settings(_env_file=None)

        assert settings.redis_url == "redis://broker:6379/1"
        assert settings.redis_pool_max_active == 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"redis_pool_max_active": 0},
            {"redis_pool_idle_timeout": -1.0},
            {"redis_pool_acquire_timeout": 0.0},
            {"ws_bridge_poll_interval": 0.0},
        ],
    )
    def test_invalid_pool_limits(self, overrides):
        assert Settings(_env_file=None, **overrides).validate_pool_limits()

    def test_invalid_limits_fail_startup(self, client_factory):
        from fastapi.testclient import TestClient

        app = create_app(Settings(_env_file=None, redis_pool_max_active=0), client_factory=client_factory)

        with pytest.raises(RuntimeError, match="REDIS_POOL_MAX_ACTIVE"):
            with TestClient(app):
                pass


def make_record(**extra):
    record = logging.LogRecord("ws_gateway.test", logging.INFO, __file__, 1, "Client connected", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    def test_structured_formatter_emits_json(self):
        record = make_record(extra_data={"origin": "x"}, connection_id="abc123")

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Client connected"
        assert data["connection_id"] == "abc123"
        assert data["data"] == {"origin": "x"}

    def test_development_formatter_shows_short_connection_id(self):
        record = make_record(extra_data={"code": 1000}, connection_id="0123456789abcdef")

        line = DevelopmentFormatter().format(record)

        assert "[01234567]" in line
        assert "code=1000" in line

    def test_connection_id_filter(self):
        record = make_record()
        token = bind_connection_id("feedbeef")
        try:
            ConnectionIdFilter().filter(record)
        finally:
            reset_connection_id(token)

        assert record.connection_id == "feedbeef"

        ConnectionIdFilter().filter(record)
        assert record.connection_id == "-"

    def test_keyword_arguments_become_extra_data(self, caplog):
        logger = get_logger("ws_gateway.test_kwargs")

        with caplog.at_level(logging.INFO, logger="ws_gateway.test_kwargs"):
            logger.info("Bridge terminated", relayed=3, dropped=1)

        assert caplog.records[-1].extra_data == {"relayed": 3, "dropped": 1}
