"""Tests for broker_config.py."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from broker_config import (
    DEFAULT_STATE_SECRET,
    GITHUB_TOKEN_URL,
    BrokerConfig,
    ConfigurationError,
    load_config,
)

ENV = {
    "GITHUB_CLIENT_ID": "client-123",
    "GITHUB_CLIENT_SECRET": "secret-456",
    "PUBLIC_BASE_URL": "https://broker.example/",
    "OAUTH_STATE_SECRET": "state-secret",
    "ALLOWED_ORIGINS": " https://cms.example , https://Other.example/admin/ ,, ",
}


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

class TestFromEnv:
    def test_reads_env(self):
        config = BrokerConfig.from_env(ENV)
        assert config.client_id == "client-123"
        assert config.client_secret == "secret-456"
        assert config.public_base_url == "https://broker.example"
        assert config.redirect_uri == "https://broker.example/callback"
        assert config.allowed_origins == frozenset({"https://cms.example", "https://other.example"})
        assert config.missing_fields() == []

    def test_defaults(self):
        config = BrokerConfig.from_env({})
        assert config.state_secret == DEFAULT_STATE_SECRET
        assert config.scope == "repo,user"
        assert config.auth_page == "redirect"
        assert config.admin_path == "/admin/"
        assert config.exchange_timeout == 10.0
        assert config.token_url == GITHUB_TOKEN_URL
        assert config.allowed_origins == frozenset()

    def test_missing_fields_never_raise(self):
        config = BrokerConfig.from_env({"GITHUB_CLIENT_ID": "x"})
        assert config.missing_fields() == ["GITHUB_CLIENT_SECRET", "PUBLIC_BASE_URL"]

    def test_immutable(self):
        config = BrokerConfig.from_env(ENV)
        with pytest.raises(AttributeError):
            config.client_id = "other"

    def test_invalid_auth_page(self):
        with pytest.raises(ConfigurationError, match="auth_page"):
            BrokerConfig.from_env({**ENV, "OAUTH_AUTH_PAGE": "popup"})

    @pytest.mark.parametrize("value", ["soon", "0", "-1", "nan", "inf", "-inf"])
    def test_invalid_timeout(self, value):
        with pytest.raises(ConfigurationError, match="exchange_timeout"):
            BrokerConfig.from_env({**ENV, "GITHUB_EXCHANGE_TIMEOUT": value})

    def test_unparsable_allow_list_entry_kept_verbatim(self):
        config = BrokerConfig.from_env({**ENV, "ALLOWED_ORIGINS": "cms.example"})
        assert config.allowed_origins == frozenset({"cms.example"})


# ---------------------------------------------------------------------------
# YAML file
# ---------------------------------------------------------------------------

class TestLoadConfig:
    def test_yaml_values(self, tmp_path):
        path = tmp_path / "broker.yaml"
        path.write_text(
            "broker:\n"
            "  client_id: from-file\n"
            "  client_secret: file-secret\n"
            "  public_base_url: https://broker.example\n"
            "  allowed_origins:\n"
            "    - https://cms.example\n"
            "  auth_page: handshake\n"
        )
        config = load_config(path, environ={})
        assert config.client_id == "from-file"
        assert config.allowed_origins == frozenset({"https://cms.example"})
        assert config.auth_page == "handshake"

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "broker.yaml"
        path.write_text("broker:\n  client_id: from-file\n")
        config = load_config(path, environ={"GITHUB_CLIENT_ID": "from-env"})
        assert config.client_id == "from-env"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_bad_shape(self, tmp_path):
        path = tmp_path / "broker.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="broker"):
            load_config(path, environ={})

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "broker.yaml"
        path.write_text("broker:\n  client_idd: typo\n")
        with pytest.raises(ConfigurationError, match="client_idd"):
            load_config(path, environ={})

    def test_default_secret_warns(self, caplog):
        with caplog.at_level("WARNING", logger="cms-oauth"):
            load_config(None, environ={})
        assert "OAUTH_STATE_SECRET" in caplog.text
