import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from edgeflow.config.models import DEFAULT_CONFIG, ProxyConfig

logger = logging.getLogger("uvicorn.error")


class ConfigError(Exception):
    """Raised when a stored configuration document cannot be turned into a ProxyConfig."""


def parse_config(payload) -> ProxyConfig:
    if not isinstance(payload, dict):
        raise ConfigError("Configuration must be a JSON object")
    try:
        return ProxyConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration structure: {exc}") from exc


class ConfigStore(ABC):
    name = "store"

    @abstractmethod
    def load(self) -> Optional[ProxyConfig]:
        """Return the stored configuration, or None when nothing is stored."""


class WritableConfigStore(ConfigStore):
    @abstractmethod
    def save(self, config: ProxyConfig) -> None:
        pass


class SqliteConfigStore(WritableConfigStore):
    """
    Single-row configuration table. This is the primary, writable store.
    """

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS proxy_config (
                    id INTEGER PRIMARY KEY,
                    config TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            conn.commit()

    def load(self) -> Optional[ProxyConfig]:
        with self._connect() as conn:
            row = conn.execute("SELECT config FROM proxy_config WHERE id = 1").fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Stored configuration is not valid JSON: {exc}") from exc
        return parse_config(payload)

    def save(self, config: ProxyConfig) -> None:
        document = json.dumps(config.to_payload())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO proxy_config (id, config, updated_at)
                VALUES (1, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    config=excluded.config,
                    updated_at=excluded.updated_at
                """,
                (document,),
            )
            conn.commit()


class JsonFileConfigStore(ConfigStore):
    """Read-only configuration document on disk (CONFIG_PATH)."""

    name = "file"

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None

    def load(self) -> Optional[ProxyConfig]:
        if self.path is None or not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {self.path} is not valid JSON: {exc}") from exc
        return parse_config(payload)


class ConfigProvider:
    """
    Resolves the configuration snapshot for one request cycle.

    Stores are consulted in order; the first one that yields a configuration
    wins. A store that is empty or fails is skipped, and when every store is
    exhausted the hardcoded default applies. Resolution never raises.
    """

    def __init__(
        self,
        stores: Sequence[ConfigStore] = (),
        default: ProxyConfig = DEFAULT_CONFIG,
    ):
        self.stores = list(stores)
        self.default = default

    def resolve(self) -> ProxyConfig:
        for store in self.stores:
            config = self._try_load(store)
            if config is not None:
                return config
        return self.default

    def writable_store(self) -> Optional[WritableConfigStore]:
        for store in self.stores:
            if isinstance(store, WritableConfigStore):
                return store
        return None

    @staticmethod
    def _try_load(store: ConfigStore) -> Optional[ProxyConfig]:
        try:
            return store.load()
        except Exception as e:
            logger.warning(
                f"[Config] {store.name} store unavailable, trying next source: {e}"
            )
            return None
