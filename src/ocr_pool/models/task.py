"""
Модели задач для пула воркеров.
"""

import time
import uuid
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from typing import Any, Optional
from dataclasses import dataclass, field


class TaskStatus(Enum):
    """Статусы задач."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.TIMED_OUT)


@dataclass(frozen=True)
class TaskEnvelope:
    """
    Неизменяемый конверт задачи.

    Пул не заглядывает в ``payload``: он целиком передается движку воркера.
    ``deadline`` задается в секундах и начинает отсчитываться с момента
    отправки задачи воркеру, а не с постановки в очередь.
    """

    payload: Any
    deadline: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        """Валидация после инициализации."""
        if self.deadline is None or self.deadline <= 0:
            raise ValueError("Task deadline must be a positive number of seconds")


@dataclass(eq=False)
class PendingTask:
    """Задача на стороне координатора вместе с future вызывающего."""

    envelope: TaskEnvelope
    future: Future = field(default_factory=Future)
    status: TaskStatus = TaskStatus.QUEUED
    submitted_at: float = field(default_factory=time.monotonic)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    unit_id: Optional[str] = None

    @property
    def task_id(self) -> str:
        return self.envelope.id

    @property
    def deadline_at(self) -> Optional[float]:
        """Абсолютный дедлайн по ``time.monotonic()``; ``None`` пока задача в очереди."""
        if self.started_at is None:
            return None
        return self.started_at + self.envelope.deadline

    def mark_running(self, unit_id: str):
        self.status = TaskStatus.RUNNING
        self.unit_id = unit_id
        self.started_at = time.monotonic()

    def mark_finished(self, status: TaskStatus):
        self.status = status
        self.finished_at = time.monotonic()

    def queue_wait_time(self) -> float:
        """Время ожидания в очереди в секундах."""
        end = self.started_at if self.started_at is not None else time.monotonic()
        return end - self.submitted_at

    def execution_time(self) -> float:
        """Время выполнения в секундах."""
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def resolve(self, data: Any) -> bool:
        """Успешное завершение future. Возвращает False, если future уже завершен."""
        try:
            self.future.set_result(data)
        except InvalidStateError:
            return False
        return True

    def reject(self, error: BaseException) -> bool:
        """Завершение future с ошибкой. Возвращает False, если future уже завершен."""
        try:
            self.future.set_exception(error)
        except InvalidStateError:
            return False
        return True
