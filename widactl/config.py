"""Console configuration persisted in SQLite"""

import json
import os
import sqlite3
from dataclasses import dataclass, asdict, replace
from typing import Optional, Dict, Any

from .errors import ConfigError

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_DB_PATH = "widactl.db"

# Workers are offline once their last heartbeat is this old (seconds)
HEARTBEAT_TIMEOUT = 60.0


@dataclass
class ConsoleConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = 3.0
    request_timeout: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConsoleConfig':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def _positive_float(key: str, value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"'{key}' must be a number, got '{value}'")
    if number <= 0:
        raise ConfigError(f"'{key}' must be greater than zero")
    return number


def apply_setting(config: ConsoleConfig, key: str, value: str) -> ConsoleConfig:
    """Return a copy of config with one CLI-style key set"""
    if key == 'base-url':
        if not value.startswith(("http://", "https://")):
            raise ConfigError(f"'base-url' must be an http(s) URL, got '{value}'")
        return replace(config, base_url=value.rstrip("/"))
    if key == 'poll-interval':
        return replace(config, poll_interval=_positive_float(key, value))
    if key == 'request-timeout':
        if value.lower() == 'none':
            return replace(config, request_timeout=None)
        return replace(config, request_timeout=_positive_float(key, value))
    raise ConfigError(
        f"Unknown config key '{key}'. Valid keys: base-url, poll-interval, request-timeout"
    )


class ConfigStore:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or os.getenv("WIDACTL_DB", DEFAULT_DB_PATH)
        self.init_db()

    def init_db(self):
        """Initialize the config table"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    def save_config(self, config: ConsoleConfig):
        """Save configuration"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO config (key, value)
                VALUES ('console_config', ?)
            """, (json.dumps(config.to_dict()),))

    def get_config(self) -> ConsoleConfig:
        """Get the stored configuration, or defaults"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("SELECT value FROM config WHERE key = 'console_config'")
            row = cursor.fetchone()
            if row:
                return ConsoleConfig.from_dict(json.loads(row[0]))
        return ConsoleConfig()


def resolve_config(store: ConfigStore, url: Optional[str] = None) -> ConsoleConfig:
    """Stored config with the WIDA_URL env var and --url option applied on top"""
    config = store.get_config()
    override = url or os.getenv("WIDA_URL")
    if override:
        config = replace(config, base_url=override.rstrip("/"))
    return config
