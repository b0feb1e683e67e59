"""
Модели воркеров для пула.
"""

from enum import Enum
from typing import Optional
from dataclasses import dataclass
from datetime import datetime


class UnitState(Enum):
    """Состояния воркера."""
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    TERMINATING = "terminating"
    DEAD = "dead"


# Допустимые переходы. DEAD конечное: воркер не воскрешается, только заменяется новым.
_TRANSITIONS = {
    UnitState.INITIALIZING: {UnitState.READY, UnitState.TERMINATING, UnitState.DEAD},
    UnitState.READY: {UnitState.BUSY, UnitState.TERMINATING, UnitState.DEAD},
    UnitState.BUSY: {UnitState.READY, UnitState.TERMINATING, UnitState.DEAD},
    UnitState.TERMINATING: {UnitState.DEAD},
    UnitState.DEAD: set(),
}


def can_transition(current: UnitState, target: UnitState) -> bool:
    """Проверка допустимости перехода состояния."""
    return target in _TRANSITIONS[current]


@dataclass
class UnitMetrics:
    """Метрики воркера."""

    tasks_completed: int = 0
    tasks_failed: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    last_task_at: Optional[datetime] = None

    def record(self, execution_time: float, success: bool = True):
        """Учет завершенной задачи."""
        if success:
            self.tasks_completed += 1
        else:
            self.tasks_failed += 1
        self.total_execution_time += execution_time
        total = self.tasks_completed + self.tasks_failed
        self.average_execution_time = self.total_execution_time / total
        self.last_task_at = datetime.now()

    def get_success_rate(self) -> float:
        """Получение процента успешных задач."""
        total = self.tasks_completed + self.tasks_failed
        if total == 0:
            return 0.0
        return (self.tasks_completed / total) * 100
