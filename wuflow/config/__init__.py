"""Configuration models and loader for `.wuflow.yaml`."""

from wuflow.config.loader import load_config, load_wuflow_config, resolve_push_retry_config
from wuflow.config.schema import (
    FormatterConfig,
    GitSettings,
    LocalLockConfig,
    PushRetryConfig,
    StateConfig,
    WuflowConfig,
)

__all__ = [
    "FormatterConfig",
    "GitSettings",
    "LocalLockConfig",
    "PushRetryConfig",
    "StateConfig",
    "WuflowConfig",
    "load_config",
    "load_wuflow_config",
    "resolve_push_retry_config",
]
