"""Tests for settings loading and redaction."""

import json

import pytest
from pydantic import ValidationError

from brokerlink.config import apply_env_overrides, load_settings
from brokerlink.settings import BrokerCredentials, BrokerSettings, Settings

CONFIG = """
env: prod
request_timeout: 5
brokers:
  bybit-main:
    exchange: bybit
    sandbox: true
    symbols: [BTCUSDT, ETHUSDT]
    credentials:
      api_key: key-abc
      api_secret: secret-def
  okx-hedge:
    exchange: OKX
    enabled: false
    credentials:
      api_key: okx-key
      api_secret: okx-secret
      passphrase: okx-pass
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


class TestLoadSettings:
    def test_loads_yaml(self, config_file):
        settings = load_settings(config_file, environ={})

        assert settings.env == "prod"
        assert settings.request_timeout == 5.0
        bybit = settings.brokers["bybit-main"]
        assert bybit.exchange == "BYBIT"
        assert bybit.symbols == ["BTCUSDT", "ETHUSDT"]
        assert bybit.credentials.api_key.get_secret_value() == "key-abc"
        assert settings.brokers["okx-hedge"].enabled is False

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yml", environ={})

        assert settings.env == "dev"
        assert settings.request_timeout == 10.0
        assert settings.brokers == {}

    def test_config_path_from_environment(self, config_file):
        settings = load_settings(environ={"BROKERLINK_CONFIG": str(config_file)})

        assert "bybit-main" in settings.brokers

    def test_env_overrides(self, config_file):
        settings = load_settings(config_file, environ={
            "BROKERLINK_REQUEST_TIMEOUT": "2.5",
            "BROKERLINK_BROKERS__OKX-HEDGE__ENABLED": "true",
            "BROKERLINK_LOG_LEVEL": "DEBUG",
            "OTHER_VAR": "ignored",
        })

        assert settings.request_timeout == 2.5
        assert settings.brokers["okx-hedge"].enabled is True

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("request_timeout: -1\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_settings(path, environ={})

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("brokers:\n  x:\n    exchange: bybit\n    leverage: 10\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_settings(path, environ={})

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            load_settings(path, environ={})


def test_apply_env_overrides_parses_scalars():
    merged = apply_env_overrides({}, {"BROKERLINK_A__B": "42", "BROKERLINK_A__C": "[x, y]"})

    assert merged == {"a": {"b": 42, "c": ["x", "y"]}}


class TestSecrets:
    def test_redacted_masks_credentials(self, config_file):
        settings = load_settings(config_file, environ={})

        dumped = json.dumps(settings.redacted())

        for secret in ("key-abc", "secret-def", "okx-key", "okx-secret", "okx-pass"):
            assert secret not in dumped
        assert settings.redacted()["brokers"]["okx-hedge"]["credentials"]["passphrase"] == "***"

    def test_repr_hides_secrets(self):
        credentials = BrokerCredentials(api_key="key-abc", api_secret="secret-def")

        assert "key-abc" not in repr(credentials)
        assert "secret-def" not in str(credentials)

    def test_credentials_are_frozen(self):
        credentials = BrokerCredentials(api_key="k", api_secret="s")

        with pytest.raises(ValidationError):
            credentials.sandbox = True

    def test_fingerprint_is_stable(self):
        a = BrokerCredentials(api_key="k", api_secret="s1")
        b = BrokerCredentials(api_key="k", api_secret="s2")

        assert a.fingerprint == b.fingerprint
        assert len(a.fingerprint) == 12


class TestBrokerSettings:
    def test_sandbox_flag_is_applied(self):
        broker = BrokerSettings(
            exchange="bybit",
            sandbox=True,
            credentials=BrokerCredentials(api_key="k", api_secret="s"),
        )

        assert broker.bound_credentials().sandbox is True
        assert broker.credentials.sandbox is False

    def test_without_credentials(self):
        assert BrokerSettings(exchange="delta").bound_credentials() is None

    def test_request_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            Settings(request_timeout=0)
