from pathlib import Path
from typing import Optional, Type, TypeVar

import yaml
from pydantic import BaseModel
from structlog import get_logger

from wuflow.config.schema import PushRetryConfig, WuflowConfig
from wuflow.constants import CONFIG_FILENAME
from wuflow.utils import expand_env_vars

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if hasattr(model, "model_extra") and model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def load_config(path: Path, model_class: Type[T]) -> T:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML file.
        model_class: The Pydantic model class to use for validation.

    Returns:
        The validated configuration model.
    """
    if not path.exists():
        return model_class()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return model_class()

    expanded = expand_env_vars(raw)
    model = model_class.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return model


def load_wuflow_config(repo_root: Path) -> WuflowConfig:
    """Load `.wuflow.yaml` from the repository root (defaults when absent)."""
    return load_config(Path(repo_root) / CONFIG_FILENAME, WuflowConfig)


def resolve_push_retry_config(
    global_config: Optional[PushRetryConfig] = None,
    operation_override: Optional[dict[str, object]] = None,
) -> PushRetryConfig:
    """Merge defaults, file config, and a per-operation override (highest wins)."""
    merged: dict[str, object] = PushRetryConfig().model_dump()
    if global_config is not None:
        merged.update(global_config.model_dump())
    if operation_override:
        merged.update({key: value for key, value in operation_override.items() if value is not None})
    return PushRetryConfig.model_validate(merged)
