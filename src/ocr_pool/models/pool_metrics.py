"""
Метрики и снимок состояния пула воркеров.
"""

from enum import Enum
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict
from datetime import datetime


class PoolState(Enum):
    """Статусы пула."""
    NEW = "new"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PoolSnapshot:
    """Снимок состояния пула для health-check."""

    initialized: bool
    total_units: int
    busy_units: int
    queued_tasks: int
    idle_units: int = 0
    starting_units: int = 0
    target_units: int = 0
    degraded: bool = False
    state: str = PoolState.NEW.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PoolMetrics:
    """Метрики пула воркеров."""

    # Задачи
    tasks_submitted: int = 0
    tasks_dispatched: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_timed_out: int = 0
    tasks_crashed: int = 0
    tasks_abandoned: int = 0
    tasks_rejected: int = 0
    tasks_cancelled: int = 0

    # Воркеры
    units_started: int = 0
    units_replaced: int = 0
    replacement_failures: int = 0

    # Время
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    max_execution_time: float = 0.0
    total_queue_wait_time: float = 0.0
    average_queue_wait_time: float = 0.0
    max_queue_size: int = 0

    pool_start_time: Optional[datetime] = None
    pool_stop_time: Optional[datetime] = None

    def start_pool(self):
        """Запуск пула."""
        self.pool_start_time = datetime.now()

    def stop_pool(self):
        """Остановка пула."""
        self.pool_stop_time = datetime.now()

    def record_dispatch(self, queue_wait_time: float):
        """Учет отправки задачи воркеру."""
        self.tasks_dispatched += 1
        self.total_queue_wait_time += queue_wait_time
        self.average_queue_wait_time = self.total_queue_wait_time / self.tasks_dispatched

    def record_completion(self, execution_time: float, success: bool = True):
        """Учет завершения задачи воркером."""
        if success:
            self.tasks_completed += 1
        else:
            self.tasks_failed += 1
        self.total_execution_time += execution_time
        self.max_execution_time = max(self.max_execution_time, execution_time)
        finished = self.tasks_completed + self.tasks_failed
        self.average_execution_time = self.total_execution_time / finished

    def update_queue_size(self, size: int):
        """Обновление максимального размера очереди."""
        self.max_queue_size = max(self.max_queue_size, size)

    def get_uptime(self) -> float:
        """Получение времени работы пула."""
        if not self.pool_start_time:
            return 0.0
        end = self.pool_stop_time or datetime.now()
        return (end - self.pool_start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        data = asdict(self)
        data['pool_start_time'] = self.pool_start_time.isoformat() if self.pool_start_time else None
        data['pool_stop_time'] = self.pool_stop_time.isoformat() if self.pool_stop_time else None
        data['uptime'] = self.get_uptime()
        return data
