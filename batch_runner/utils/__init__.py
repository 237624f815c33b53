"""Utility modules for the batch runner.
"""

from .logging_utils import get_logger, setup_logging
from .path_utils import get_config_path, get_project_root
from .settings import (
    get_batching_settings,
    get_settings,
    load_settings,
    reload_settings,
    validate_settings,
)

__all__ = [
    "get_batching_settings",
    "get_config_path",
    "get_logger",
    "get_project_root",
    "get_settings",
    "load_settings",
    "reload_settings",
    "setup_logging",
    "validate_settings",
]
