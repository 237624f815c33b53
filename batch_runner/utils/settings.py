"""
Settings management for the batch runner.

Defaults live in this module; ``config/settings.yaml`` is deep-merged over
them and a couple of environment variables override the result.

Precedence order: env > config > default
"""

import copy
import functools
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from batch_runner.utils.logging_utils import get_logger
from batch_runner.utils.path_utils import get_config_path

__all__ = [
    "DEFAULTS",
    "get_batching_settings",
    "get_settings",
    "load_settings",
    "reload_settings",
    "validate_settings",
]

logger = get_logger(__name__)

DEFAULTS: Dict[str, Any] = {
    "batching": {
        "batch_size": 10,
        "deadline_seconds": 30.0,
        "log_level": "INFO",
        "max_workers": 64,
    },
}

ENV_BATCH_SIZE = "BATCH_RUNNER_BATCH_SIZE"
ENV_DEADLINE_SECONDS = "BATCH_RUNNER_DEADLINE_SECONDS"


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


@functools.lru_cache(maxsize=1)
def load_settings(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load settings from a YAML file with defaults.

    Cached; use reload_settings() to force a fresh load.

    Args:
        path: Path to settings YAML file (None for get_config_path())

    Returns:
        Dictionary with settings (user config merged over defaults)

    """
    settings_path = Path(path) if path is not None else get_config_path()
    merged = copy.deepcopy(DEFAULTS)

    try:
        with open(settings_path) as f:
            user_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Settings file not found: {settings_path}. Using defaults.")
        return merged
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading settings from {settings_path}: {e}. Using defaults.")
        return merged

    if not isinstance(user_config, dict):
        logger.warning(f"Settings file {settings_path} is not a mapping. Using defaults.")
        return merged

    logger.debug(f"Settings loaded from {settings_path}")
    return _deep_merge(merged, user_config)


def reload_settings(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Force reload settings from file (clears cache)."""
    load_settings.cache_clear()
    return get_settings(path)


def _env_override(settings: Dict[str, Any]) -> Dict[str, Any]:
    batching = settings.setdefault("batching", {})

    raw_size = os.environ.get(ENV_BATCH_SIZE)
    if raw_size is not None:
        try:
            batching["batch_size"] = int(raw_size)
        except ValueError:
            logger.warning(f"Ignoring {ENV_BATCH_SIZE}={raw_size!r}: not an integer")

    raw_deadline = os.environ.get(ENV_DEADLINE_SECONDS)
    if raw_deadline is not None:
        try:
            batching["deadline_seconds"] = float(raw_deadline)
        except ValueError:
            logger.warning(f"Ignoring {ENV_DEADLINE_SECONDS}={raw_deadline!r}: not a number")

    return settings


def get_settings(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Get settings with environment overrides applied.

    Returns a copy; callers may mutate it freely.
    """
    return _env_override(copy.deepcopy(load_settings(path)))


def get_batching_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Returns the ``batching`` section with defaults filled in.

    Args:
        settings: Settings dict to use. If None, uses get_settings().

    Returns:
        Dict with batch_size, deadline_seconds, log_level and max_workers

    """
    if settings is None:
        settings = get_settings()
    return {**DEFAULTS["batching"], **settings.get("batching", {})}


def validate_settings(settings: Optional[Dict[str, Any]] = None) -> List[str]:
    """Returns list of validation warnings.

    Args:
        settings: Settings dict to validate. If None, uses get_settings().

    Returns:
        List of validation warning messages.

    """
    warnings = []
    batching = get_batching_settings(settings)

    batch_size = batching.get("batch_size")
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size < 1:
        warnings.append(f"batching.batch_size must be a positive int, got {batch_size}")

    deadline = batching.get("deadline_seconds")
    if deadline is not None and (
        not isinstance(deadline, (int, float)) or isinstance(deadline, bool) or deadline < 0
    ):
        warnings.append(
            f"batching.deadline_seconds must be a non-negative number or null, got {deadline}"
        )

    max_workers = batching.get("max_workers")
    if max_workers is not None and (
        not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1
    ):
        warnings.append(f"batching.max_workers must be a positive int or null, got {max_workers}")

    log_level = batching.get("log_level")
    if str(log_level).upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        warnings.append(f"batching.log_level must be a logging level name, got {log_level}")

    return warnings
