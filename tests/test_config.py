"""Tests for config.py — TOML loading, defaults, validation, overrides."""

import os

import pytest

from config import Config, ConfigError, load_config

MINIMAL_TOML = """\
[connection]
type = "cli"

[http]
port = 8080
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("PORT", "CHATBRIDGE_SIDECAR_URL", "CHATBRIDGE_SIDECAR_TOKEN"):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_empty_config_valid(self):
        cfg = Config({})
        assert cfg.connection_type == "cli"
        assert cfg.http_port == 3000
        assert cfg.delivery_max_attempts == 3
        assert cfg.delivery_retry_delay == 1.0
        assert cfg.inbound_lookup_timeout == 0
        assert cfg.inbound_download_timeout == 0

    def test_static_dir_relative_to_config(self, tmp_path):
        cfg = Config({"http": {"static_dir": "web"}}, config_dir=tmp_path)
        assert cfg.static_dir == (tmp_path / "web").resolve()

    def test_static_dir_absolute(self, tmp_path):
        cfg = Config({"http": {"static_dir": str(tmp_path)}})
        assert cfg.static_dir == tmp_path

    def test_fixture_data(self, minimal_toml_data):
        cfg = Config(minimal_toml_data)
        assert cfg.cli_contacts == {"36301234567": "Anna"}
        assert cfg.http_host == "127.0.0.1"


class TestValidation:
    def test_unknown_connection_type(self):
        with pytest.raises(ConfigError, match="connection.*type"):
            Config({"connection": {"type": "carrier-pigeon"}})

    def test_sidecar_requires_base_url(self):
        with pytest.raises(ConfigError, match="base_url"):
            Config({"connection": {"type": "sidecar"}})

    def test_sidecar_valid(self):
        cfg = Config({"connection": {"type": "sidecar",
                                     "sidecar": {"base_url": "http://localhost:8088"}}})
        assert cfg.sidecar_base_url == "http://localhost:8088"
        assert cfg.sidecar_poll_timeout == 30

    @pytest.mark.parametrize("port", [-1, 70000, "3000", True])
    def test_bad_port(self, port):
        with pytest.raises(ConfigError, match="port"):
            Config({"http": {"port": port}})

    def test_bad_attempts(self):
        with pytest.raises(ConfigError, match="max_attempts"):
            Config({"delivery": {"max_attempts": 0}})

    def test_negative_delay(self):
        with pytest.raises(ConfigError, match="retry_delay"):
            Config({"delivery": {"retry_delay": -1}})

    def test_negative_timeout(self):
        with pytest.raises(ConfigError, match="lookup_timeout"):
            Config({"inbound": {"lookup_timeout": -5}})

    @pytest.mark.parametrize("section, key, value", [
        ("delivery", "retry_delay", "soon"),
        ("delivery", "max_attempts", 2.5),
        ("inbound", "lookup_timeout", "never"),
        ("inbound", "download_timeout", [1]),
        ("inbound", "queue_size", "big"),
        ("http", "client_queue_size", 0),
        ("logging", "backup_count", True),
    ])
    def test_bad_numeric_value(self, section, key, value):
        with pytest.raises(ConfigError, match=key):
            Config({section: {key: value}})

    def test_bad_poll_timeout(self):
        with pytest.raises(ConfigError, match="poll_timeout"):
            Config({"connection": {"sidecar": {"poll_timeout": "30s"}}})

    def test_contacts_must_be_table(self):
        with pytest.raises(ConfigError, match="contacts"):
            Config({"connection": {"cli": {"contacts": ["Anna"]}}})

    def test_terminal_qr_must_be_bool(self):
        with pytest.raises(ConfigError, match="terminal_qr"):
            Config({"session": {"terminal_qr": "yes"}})

    def test_terminal_qr_default_on(self):
        assert Config({}).terminal_qr is True

    def test_all_errors_reported(self):
        with pytest.raises(ConfigError) as exc_info:
            Config({"connection": {"type": "x"}, "delivery": {"max_attempts": 0}})
        assert "type" in str(exc_info.value)
        assert "max_attempts" in str(exc_info.value)


class TestEnvOverrides:
    def test_port_env(self, monkeypatch):
        monkeypatch.setenv("PORT", "4000")
        assert Config({}).http_port == 4000

    def test_port_env_beats_file(self, monkeypatch):
        monkeypatch.setenv("PORT", "4000")
        assert Config({"http": {"port": 8080}}).http_port == 4000

    def test_bad_port_env(self, monkeypatch):
        monkeypatch.setenv("PORT", "abc")
        with pytest.raises(ConfigError, match="PORT"):
            Config({})

    def test_cli_override_beats_env(self, monkeypatch):
        monkeypatch.setenv("PORT", "4000")
        assert Config({}, overrides={"http.port": 5000}).http_port == 5000

    def test_sidecar_token_from_env(self, monkeypatch):
        monkeypatch.setenv("CHATBRIDGE_SIDECAR_TOKEN", "tok")
        assert Config({}).sidecar_token == "tok"

    def test_custom_token_env(self, monkeypatch):
        monkeypatch.setenv("MY_TOKEN", "abc")
        cfg = Config({"connection": {"sidecar": {"token_env": "MY_TOKEN"}}})
        assert cfg.sidecar_token == "abc"


class TestLoadConfig:
    def test_load_file(self, tmp_path):
        p = tmp_path / "chatbridge.toml"
        p.write_text(MINIMAL_TOML)
        cfg = load_config(p)
        assert cfg.http_port == 8080
        assert cfg.config_dir == tmp_path.resolve()

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_default_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        cfg = load_config()
        assert cfg.http_port == 3000

    def test_invalid_toml(self, tmp_path):
        p = tmp_path / "chatbridge.toml"
        p.write_text("[http\nport=")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(p)

    def test_overrides(self, tmp_path):
        p = tmp_path / "chatbridge.toml"
        p.write_text(MINIMAL_TOML)
        cfg = load_config(p, overrides={"connection.type": "sidecar",
                                        "connection.sidecar.base_url": "http://gw"})
        assert cfg.connection_type == "sidecar"

    def test_dotenv_loaded(self, tmp_path):
        p = tmp_path / "chatbridge.toml"
        p.write_text(MINIMAL_TOML)
        (tmp_path / ".env").write_text("# comment\nPORT=9090\n")
        try:
            cfg = load_config(p)
            assert cfg.http_port == 9090
        finally:
            os.environ.pop("PORT", None)

    def test_dotenv_does_not_override_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PORT", "7070")
        p = tmp_path / "chatbridge.toml"
        p.write_text(MINIMAL_TOML)
        (tmp_path / ".env").write_text("PORT=9090\n")
        assert load_config(p).http_port == 7070
