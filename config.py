"""Configuration loader for the chat bridge.

Loads chatbridge.toml, applies environment variable overrides,
validates fields, and provides typed access to all settings.
Immutable after load — no runtime config reloading.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./chatbridge.toml"

CONNECTION_TYPES = ("cli", "sidecar")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# Environment variable overrides: env var -> (section path, key, cast)
_ENV_OVERRIDES = {
    "PORT": (("http",), "port", int),
    "CHATBRIDGE_SIDECAR_URL": (("connection", "sidecar"), "base_url", str),
}


def _deep_get(d: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if not isinstance(d, dict):
            return default
        d = d.get(key, default)
    return d


def _resolve_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


# Numeric settings checked at load: key path, type check, minimum
_NUMERIC_KEYS = (
    (("connection", "sidecar", "poll_timeout"), _is_number, 1),
    (("http", "client_queue_size"), _is_int, 1),
    (("delivery", "max_attempts"), _is_int, 1),
    (("delivery", "retry_delay"), _is_number, 0),
    (("inbound", "queue_size"), _is_int, 0),
    (("inbound", "lookup_timeout"), _is_number, 0),
    (("inbound", "download_timeout"), _is_number, 0),
    (("logging", "max_bytes"), _is_int, 0),
    (("logging", "backup_count"), _is_int, 0),
)


class Config:
    """Immutable configuration loaded from chatbridge.toml."""

    def __init__(self, data: dict, config_dir: Path | None = None,
                 overrides: dict | None = None):
        self._data = data
        self._config_dir = config_dir or Path.cwd()
        self._apply_env_overrides()
        # CLI overrides win over environment
        _apply_overrides(self._data, overrides)
        self._validate()

    def _apply_env_overrides(self):
        for env_var, (sections, key, cast) in _ENV_OVERRIDES.items():
            val = os.environ.get(env_var)
            if not val:
                continue
            try:
                val = cast(val)
            except ValueError as exc:
                raise ConfigError(f"{env_var} must be {cast.__name__}, got {val!r}") from exc
            d = self._data
            for section in sections:
                d = d.setdefault(section, {})
            d[key] = val

    def _validate(self):
        errors = []
        conn_type = self.connection_type
        if conn_type not in CONNECTION_TYPES:
            errors.append(f"[connection] type must be one of {', '.join(CONNECTION_TYPES)}, "
                          f"got {conn_type!r}")
        if conn_type == "sidecar" and not self.sidecar_base_url:
            errors.append("[connection.sidecar] base_url is required")
        if not isinstance(self.cli_contacts, dict):
            errors.append("[connection.cli] contacts must be a table of number = name")
        port = self.http_port
        if not _is_int(port) or not 0 <= port <= 65535:
            errors.append(f"[http] port must be an integer 0-65535, got {port!r}")

        for keys, check, minimum in _NUMERIC_KEYS:
            value = _deep_get(self._data, *keys)
            if value is None:
                continue
            if not check(value) or value < minimum:
                kind = "an integer" if check is _is_int else "a number"
                errors.append(f"[{'.'.join(keys[:-1])}] {keys[-1]} must be {kind} "
                              f">= {minimum}, got {value!r}")

        if not isinstance(self.terminal_qr, bool):
            errors.append(f"[session] terminal_qr must be true or false, got {self.terminal_qr!r}")
        if errors:
            raise ConfigError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    @property
    def config_dir(self) -> Path:
        """Directory containing chatbridge.toml (for resolving relative paths)."""
        return self._config_dir

    # --- Connection ---

    @property
    def connection_type(self) -> str:
        return _deep_get(self._data, "connection", "type", default="cli")

    @property
    def cli_contacts(self) -> dict[str, str]:
        return _deep_get(self._data, "connection", "cli", "contacts", default={})

    @property
    def sidecar_base_url(self) -> str:
        return _deep_get(self._data, "connection", "sidecar", "base_url", default="")

    @property
    def sidecar_token(self) -> str:
        env_var = _deep_get(self._data, "connection", "sidecar", "token_env",
                            default="CHATBRIDGE_SIDECAR_TOKEN")
        return os.environ.get(env_var, "") if env_var else ""

    @property
    def sidecar_poll_timeout(self) -> int:
        return _deep_get(self._data, "connection", "sidecar", "poll_timeout", default=30)

    # --- HTTP / realtime ---

    @property
    def http_host(self) -> str:
        return _deep_get(self._data, "http", "host", default="0.0.0.0")  # noqa: S104

    @property
    def http_port(self) -> int:
        return _deep_get(self._data, "http", "port", default=3000)

    @property
    def static_dir(self) -> Path:
        raw = _deep_get(self._data, "http", "static_dir", default="public")
        p = Path(raw).expanduser()
        return p if p.is_absolute() else (self._config_dir / p).resolve()

    @property
    def client_queue_size(self) -> int:
        return _deep_get(self._data, "http", "client_queue_size", default=1000)

    # --- Delivery ---

    @property
    def delivery_max_attempts(self) -> int:
        return _deep_get(self._data, "delivery", "max_attempts", default=3)

    @property
    def delivery_retry_delay(self) -> float:
        return float(_deep_get(self._data, "delivery", "retry_delay", default=1.0))

    # --- Inbound ---

    @property
    def inbound_queue_size(self) -> int:
        return _deep_get(self._data, "inbound", "queue_size", default=1000)

    @property
    def inbound_lookup_timeout(self) -> float:
        return float(_deep_get(self._data, "inbound", "lookup_timeout", default=0))

    @property
    def inbound_download_timeout(self) -> float:
        return float(_deep_get(self._data, "inbound", "download_timeout", default=0))

    # --- Session ---

    @property
    def terminal_qr(self) -> bool:
        """Render scan codes on stderr for pairing without a browser."""
        return _deep_get(self._data, "session", "terminal_qr", default=True)

    # --- Paths / logging ---

    @property
    def state_dir(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "state_dir", default="~/.chatbridge"))

    @property
    def log_file(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "log_file",
                                       default="~/.chatbridge/chatbridge.log"))

    @property
    def log_max_bytes(self) -> int:
        return _deep_get(self._data, "logging", "max_bytes", default=10 * 1024 * 1024)

    @property
    def log_backup_count(self) -> int:
        return _deep_get(self._data, "logging", "backup_count", default=3)


def _load_dotenv(toml_path: Path) -> None:
    """Load .env file from same directory as chatbridge.toml if it exists."""
    env_file = toml_path.parent / ".env"
    if not env_file.exists():
        return
    with open(env_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, val = line.partition("=")
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            # Only set if not already in environment (env takes precedence)
            if key not in os.environ:
                os.environ[key] = val


def _apply_overrides(data: dict, overrides: dict | None) -> None:
    for key_path, value in (overrides or {}).items():
        keys = key_path.split(".")
        d = data
        for k in keys[:-1]:
            d = d.setdefault(k, {})
        d[keys[-1]] = value


def load_config(path: str | Path | None = None, overrides: dict | None = None) -> Config:
    """Load and validate config from a TOML file.

    Args:
        path: Path to chatbridge.toml. None means the default path, which
              may be absent (all defaults apply); an explicit path must exist.
        overrides: Dict of dotted-key overrides applied to the raw TOML data
                   before constructing Config (e.g. CLI args).
    """
    explicit = path is not None
    p = Path(path if explicit else DEFAULT_CONFIG_PATH).expanduser().resolve()
    data: dict = {}
    if p.exists():
        _load_dotenv(p)
        try:
            with open(p, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {p}: {e}") from e
    elif explicit:
        raise ConfigError(f"Config file not found: {p}")
    else:
        log.debug("No config file at %s, using defaults", p)
    return Config(data, config_dir=p.parent, overrides=overrides)
