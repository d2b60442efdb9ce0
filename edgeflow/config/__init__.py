from .models import DEFAULT_CONFIG, ProxyConfig, RuleKind, TransformRule
from .provider import (
    ConfigError,
    ConfigProvider,
    ConfigStore,
    JsonFileConfigStore,
    SqliteConfigStore,
    WritableConfigStore,
    parse_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "ProxyConfig",
    "RuleKind",
    "TransformRule",
    "ConfigError",
    "ConfigProvider",
    "ConfigStore",
    "JsonFileConfigStore",
    "SqliteConfigStore",
    "WritableConfigStore",
    "parse_config",
]
