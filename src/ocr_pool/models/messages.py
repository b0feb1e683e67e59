"""
Сообщения между координатором и воркерами.

Все сообщения пересылаются через ``multiprocessing.Pipe`` и копируются
при сериализации; общего изменяемого состояния нет.
"""

from enum import Enum
from typing import Any, Optional
from dataclasses import dataclass


class MessageKind(Enum):
    """Типы сообщений."""
    # координатор -> воркер
    TASK = "task"
    SHUTDOWN = "shutdown"
    # воркер -> координатор
    READY = "ready"
    INIT_ERROR = "init_error"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class UnitMessage:
    """Сообщение протокола воркера."""

    kind: MessageKind
    task_id: Optional[str] = None
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def task(cls, task_id: str, payload: Any) -> "UnitMessage":
        return cls(MessageKind.TASK, task_id=task_id, data=payload)

    @classmethod
    def shutdown(cls) -> "UnitMessage":
        return cls(MessageKind.SHUTDOWN)

    @classmethod
    def ready(cls) -> "UnitMessage":
        return cls(MessageKind.READY)

    @classmethod
    def init_error(cls, exc: BaseException) -> "UnitMessage":
        return cls(MessageKind.INIT_ERROR, error=str(exc), error_type=type(exc).__name__)

    @classmethod
    def result(cls, task_id: str, data: Any) -> "UnitMessage":
        return cls(MessageKind.RESULT, task_id=task_id, data=data)

    @classmethod
    def failure(cls, task_id: str, exc: BaseException) -> "UnitMessage":
        return cls(MessageKind.ERROR, task_id=task_id, error=str(exc), error_type=type(exc).__name__)

    @property
    def is_terminal(self) -> bool:
        """Терминальное сообщение по задаче: ровно одно на каждую принятую задачу."""
        return self.kind in (MessageKind.RESULT, MessageKind.ERROR)
