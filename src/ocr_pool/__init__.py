"""
Ограниченный пул изолированных процессов для OCR-задач.

Основные компоненты:
- PoolCoordinator: пул воркеров с очередью, дедлайнами и заменой упавших воркеров
- WorkerUnit: процесс воркера с однократно загруженным движком
- LifecycleManager: запуск пула и однократная остановка по сигналу
- JobEngine: интерфейс движка, выполняемого внутри воркера
"""

from .core.coordinator import PoolCoordinator
from .core.lifecycle import LifecycleManager, ShutdownPhase, ShutdownStatus
from .engines import JobEngine, TextEngine
from .models.task import TaskEnvelope, TaskStatus
from .models.pool_metrics import PoolSnapshot, PoolState
from .utils.config import Config, PoolConfig, LifecycleConfig, MonitoringConfig, load_config, load_config_from_env
from .utils.logger import get_logger, setup_logging
from .utils.monitoring import HealthChecker
from .exceptions import (
    WorkerPoolError,
    ConfigurationError,
    InitError,
    TaskError,
    EngineFailure,
    TimedOut,
    UnitCrashed,
    PoolNotInitialized,
    PoolShuttingDown,
    ShutdownAbandoned,
    QueueFull,
    PoolDegraded
)

__version__ = "1.0.0"
__author__ = "Worker Pool Team"

__all__ = [
    "PoolCoordinator",
    "LifecycleManager",
    "ShutdownPhase",
    "ShutdownStatus",
    "JobEngine",
    "TextEngine",
    "TaskEnvelope",
    "TaskStatus",
    "PoolSnapshot",
    "PoolState",
    "Config",
    "PoolConfig",
    "LifecycleConfig",
    "MonitoringConfig",
    "load_config",
    "load_config_from_env",
    "get_logger",
    "setup_logging",
    "HealthChecker",
    "WorkerPoolError",
    "ConfigurationError",
    "InitError",
    "TaskError",
    "EngineFailure",
    "TimedOut",
    "UnitCrashed",
    "PoolNotInitialized",
    "PoolShuttingDown",
    "ShutdownAbandoned",
    "QueueFull",
    "PoolDegraded"
]
