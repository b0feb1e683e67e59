"""
Утилиты для пула воркеров.
"""

from .config import (
    Config,
    PoolConfig,
    LifecycleConfig,
    MonitoringConfig,
    load_config,
    load_config_from_env,
    save_config
)
from .logger import get_logger, setup_logging, get_log_metrics
from .monitoring import HealthChecker, HealthStatus, UnitProcessStats

__all__ = [
    "Config",
    "PoolConfig",
    "LifecycleConfig",
    "MonitoringConfig",
    "load_config",
    "load_config_from_env",
    "save_config",
    "get_logger",
    "setup_logging",
    "get_log_metrics",
    "HealthChecker",
    "HealthStatus",
    "UnitProcessStats"
]
