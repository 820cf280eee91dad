"""Utility modules for the verification gateway."""
from verifygate.utils.logger import (
    get_logger,
    setup_logger,
    route_library_loggers,
    set_log_level,
)
from verifygate.utils.config_validator import (
    ConfigError,
    Settings,
    load_settings,
)

__all__ = [
    "get_logger",
    "setup_logger",
    "route_library_loggers",
    "set_log_level",
    "ConfigError",
    "Settings",
    "load_settings",
]
