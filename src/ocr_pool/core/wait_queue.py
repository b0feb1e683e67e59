"""
FIFO-очередь ожидания задач пула воркеров.
"""

from collections import deque
from typing import Deque, Dict, List, Optional

from ..models.pool_metrics import PoolMetrics
from ..models.task import PendingTask
from ..exceptions import QueueFull
from ..utils.logger import get_logger


logger = get_logger(__name__)


class WaitQueue:
    """
    Очередь задач, ожидающих свободного воркера.

    Не потокобезопасна сама по себе: все обращения идут под блокировкой
    координатора. Порядок строго FIFO; задачи, отмененные вызывающим кодом
    через ``Future.cancel()``, пропускаются при выборке.
    """

    def __init__(self, max_size: int = 0, metrics: Optional[PoolMetrics] = None):
        self.max_size = max_size
        self._items: Deque[PendingTask] = deque()
        self._pool_metrics = metrics
        self._metrics: Dict[str, int] = {
            'tasks_enqueued': 0,
            'tasks_dequeued': 0,
            'tasks_cancelled': 0,
            'queue_overflows': 0,
            'max_size_reached': 0
        }

    def push(self, pending: PendingTask):
        """
        Добавление задачи в хвост очереди.

        Raises:
            QueueFull: очередь достигла ``max_size``
        """
        if self.max_size and len(self._items) >= self.max_size:
            self.purge_cancelled()
            if len(self._items) >= self.max_size:
                self._metrics['queue_overflows'] += 1
                raise QueueFull(
                    f"Wait queue is full ({self.max_size} tasks)",
                    task_id=pending.task_id
                )

        self._items.append(pending)
        self._metrics['tasks_enqueued'] += 1
        self._metrics['max_size_reached'] = max(self._metrics['max_size_reached'], len(self._items))
        if self._pool_metrics is not None:
            self._pool_metrics.update_queue_size(len(self._items))

        logger.debug(f"Task {pending.task_id} queued (queue size {len(self._items)})")

    def pop_next(self) -> Optional[PendingTask]:
        """
        Выборка первой неотмененной задачи.

        Future возвращенной задачи переводится в RUNNING, после чего
        вызывающий код уже не может ее отменить.
        """
        while self._items:
            pending = self._items.popleft()
            if pending.future.set_running_or_notify_cancel():
                self._metrics['tasks_dequeued'] += 1
                return pending
            self._count_cancelled(pending)
        return None

    def purge_cancelled(self) -> int:
        """Удаление отмененных задач. Возвращает количество удаленных."""
        kept = deque()
        removed = 0
        for pending in self._items:
            if pending.future.cancelled():
                self._count_cancelled(pending)
                removed += 1
            else:
                kept.append(pending)
        self._items = kept
        return removed

    def drain(self) -> List[PendingTask]:
        """Извлечение всех задач (при остановке пула)."""
        items = list(self._items)
        self._items.clear()
        return items

    def _count_cancelled(self, pending: PendingTask):
        self._metrics['tasks_cancelled'] += 1
        if self._pool_metrics is not None:
            self._pool_metrics.tasks_cancelled += 1
        logger.debug(f"Skipping cancelled task {pending.task_id}")

    def get_metrics(self) -> Dict[str, int]:
        """Получение метрик очереди."""
        metrics = self._metrics.copy()
        metrics['current_size'] = len(self._items)
        return metrics

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"WaitQueue(size={len(self)}, max_size={self.max_size})"
