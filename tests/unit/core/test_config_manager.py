"""
ConfigManager Unit Tests
"""
import pytest

from core.config_manager import ConfigManager, Environment

pytestmark = pytest.mark.unit


def test_environment_aliases():
    assert Environment.from_string("prod") is Environment.PRODUCTION
    assert Environment.from_string("testing") is Environment.TESTING
    assert Environment.from_string(None) is Environment.DEVELOPMENT
    assert Environment.from_string("unknown") is Environment.DEVELOPMENT


def test_service_prefixed_setting_wins(monkeypatch):
    monkeypatch.setenv("WITHDRAWAL_SERVICE_PORT", "9100")
    monkeypatch.setenv("SERVICE_PORT", "9000")

    config = ConfigManager("withdrawal_service").get_service_config()

    assert config.service_port == 9100


def test_port_unset_is_zero(monkeypatch):
    monkeypatch.delenv("WITHDRAWAL_SERVICE_PORT", raising=False)
    monkeypatch.delenv("SERVICE_PORT", raising=False)

    assert ConfigManager("withdrawal_service").get_service_config().service_port == 0


def test_get_and_get_int(monkeypatch):
    monkeypatch.setenv("WITHDRAWAL_SERVICE_TOKEN_LIMIT", "15")
    manager = ConfigManager("withdrawal_service")

    assert manager.get("TOKEN_LIMIT") == "15"
    assert manager.get_int("TOKEN_LIMIT", 10) == 15
    assert manager.get("MISSING_KEY", "fallback") == "fallback"
    assert manager.get_int("MISSING_KEY", 10) == 10


def test_discover_service(monkeypatch):
    monkeypatch.setenv("POSTGRES_HOST", "db.internal")
    monkeypatch.delenv("POSTGRES_PORT", raising=False)
    manager = ConfigManager("withdrawal_service")

    host, port = manager.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )

    assert (host, port) == ("db.internal", 5432)


def test_peer_urls(monkeypatch):
    monkeypatch.setenv("ACCOUNT_SERVICE_URL", "http://account:8202")

    assert ConfigManager("withdrawal_service").peers.account_service_url == "http://account:8202"
