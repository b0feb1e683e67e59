"""
Исключения для пула OCR-воркеров.
"""

from typing import Optional


class WorkerPoolError(Exception):
    """Базовое исключение для пула воркеров."""
    pass


class ConfigurationError(WorkerPoolError):
    """Ошибка конфигурации."""
    pass


class InitError(WorkerPoolError):
    """Пул не смог запуститься: хотя бы один воркер не инициализировался."""

    def __init__(self, message: str, unit_id: Optional[str] = None):
        super().__init__(message)
        self.unit_id = unit_id


class TaskError(WorkerPoolError):
    """
    Ошибка конкретной задачи.

    Атрибут ``kind`` повторяет имя подкласса в snake_case и удобен
    для маппинга в HTTP-ответы.
    """

    kind = "task_error"

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class EngineFailure(TaskError):
    """Движок внутри воркера сообщил об ошибке."""

    kind = "engine_failure"

    def __init__(self, message: str, task_id: Optional[str] = None, error_type: str = ""):
        super().__init__(message, task_id)
        self.error_type = error_type


class TimedOut(TaskError):
    """Задача не уложилась в дедлайн, воркер был принудительно завершен."""

    kind = "timed_out"

    def __init__(self, message: str, task_id: Optional[str] = None, deadline: Optional[float] = None):
        super().__init__(message, task_id)
        self.deadline = deadline


class UnitCrashed(TaskError):
    """Воркер неожиданно завершился во время выполнения задачи."""

    kind = "unit_crashed"

    def __init__(self, message: str, task_id: Optional[str] = None, exitcode: Optional[int] = None):
        super().__init__(message, task_id)
        self.exitcode = exitcode


class PoolNotInitialized(TaskError):
    """Задача отправлена до инициализации пула."""

    kind = "pool_not_initialized"


class PoolShuttingDown(TaskError):
    """Пул завершает работу и не принимает задачи."""

    kind = "pool_shutting_down"


class ShutdownAbandoned(TaskError):
    """Задача была в работе или в очереди в момент остановки пула."""

    kind = "shutdown_abandoned"


class QueueFull(TaskError):
    """Очередь ожидания заполнена."""

    kind = "queue_full"


class PoolDegraded(TaskError):
    """В пуле не осталось живых воркеров, и замена прекращена."""

    kind = "pool_degraded"
