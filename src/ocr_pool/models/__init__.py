"""
Модели данных для пула воркеров.
"""

from .task import TaskEnvelope, PendingTask, TaskStatus
from .worker import UnitState, UnitMetrics, can_transition
from .messages import MessageKind, UnitMessage
from .pool_metrics import PoolMetrics, PoolSnapshot, PoolState

__all__ = [
    "TaskEnvelope",
    "PendingTask",
    "TaskStatus",
    "UnitState",
    "UnitMetrics",
    "can_transition",
    "MessageKind",
    "UnitMessage",
    "PoolMetrics",
    "PoolSnapshot",
    "PoolState"
]
