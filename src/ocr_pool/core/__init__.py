"""
Основные компоненты пула воркеров.
"""

from .coordinator import PoolCoordinator
from .wait_queue import WaitQueue
from .worker_unit import WorkerUnit
from .lifecycle import LifecycleManager, ShutdownPhase, ShutdownStatus

__all__ = [
    "PoolCoordinator",
    "WaitQueue",
    "WorkerUnit",
    "LifecycleManager",
    "ShutdownPhase",
    "ShutdownStatus"
]
