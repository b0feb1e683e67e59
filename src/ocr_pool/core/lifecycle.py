"""
Управление жизненным циклом процесса с пулом воркеров.

Запуск пула при старте и однократная остановка по сигналу завершения.
Обработчик сигнала только инициирует остановку: сама остановка пула
выполняется в отдельном потоке, поэтому повторные и одновременные сигналы
безопасны.
"""

import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..utils.config import LifecycleConfig
from ..utils.logger import get_logger


logger = get_logger(__name__)


class ShutdownPhase(Enum):
    """Фазы завершения работы."""
    INITIATED = "initiated"
    STOPPING_POOL = "stopping_pool"
    RUNNING_CLEANUP = "running_cleanup"
    COMPLETED = "completed"


@dataclass
class ShutdownStatus:
    """Статус завершения работы."""
    phase: ShutdownPhase
    start_time: datetime
    reason: str = ""
    cleanup_callbacks_executed: int = 0
    error_count: int = 0
    completed: bool = False
    error: Optional[Exception] = None

    def get_elapsed_time(self) -> float:
        return (datetime.now() - self.start_time).total_seconds()


class LifecycleManager:
    """Запуск пула и его остановка ровно один раз."""

    def __init__(self, pool, config: Optional[LifecycleConfig] = None, health_checker=None):
        self.pool = pool
        self.config = config or LifecycleConfig()
        self.health_checker = health_checker

        # Захватывается один раз и не освобождается: неблокирующий захват атомарен
        # и для вложенного вызова из обработчика сигнала
        self._once = threading.Lock()
        self._status: Optional[ShutdownStatus] = None
        self._shutdown_thread: Optional[threading.Thread] = None
        self._done = threading.Event()
        self._callbacks: List[Callable] = []
        self._previous_handlers: Dict[int, object] = {}

        logger.info(f"LifecycleManager initialized with config: {self.config}")

    def start(self, timeout: Optional[float] = None):
        """
        Инициализация пула и установка обработчиков сигналов.

        Args:
            timeout: Таймаут инициализации пула

        Raises:
            InitError: пул не смог запуститься
        """
        self.pool.initialize(timeout)
        if self.config.signal_handling:
            self._install_signal_handlers()
        logger.info("Lifecycle started")

    def _install_signal_handlers(self):
        """Регистрация обработчиков системных сигналов."""
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handlers can only be installed from the main thread")
            return

        for name in self.config.signals:
            signum = getattr(signal, name, None)
            if signum is None:
                logger.warning(f"Unknown signal {name}, skipping")
                continue
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not register handler for {name}: {e}")

    def _restore_signal_handlers(self):
        """Возврат обработчиков, действовавших до ``start()``."""
        if threading.current_thread() is not threading.main_thread():
            return

        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not restore handler for signal {signum}: {e}")
        self._previous_handlers.clear()

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, initiating shutdown")
        self.request_shutdown(f"signal {signal.Signals(signum).name}")

    def request_shutdown(self, reason: str = "requested") -> Optional[ShutdownStatus]:
        """
        Инициация остановки без ожидания.

        Безопасно вызывать из обработчика сигнала. Только первый вызов
        запускает остановку, остальные возвращают текущий статус (None, если
        первый вызов еще не успел его создать).
        """
        if not self._once.acquire(blocking=False):
            logger.debug(f"Shutdown already in progress, ignoring: {reason}")
            return self._status

        status = ShutdownStatus(
            phase=ShutdownPhase.INITIATED,
            start_time=datetime.now(),
            reason=reason
        )
        self._status = status
        self._shutdown_thread = threading.Thread(
            target=self._execute_shutdown,
            args=(status,),
            name="ocr-pool-shutdown"
        )
        self._shutdown_thread.start()

        logger.info(f"Shutdown initiated: {reason}")
        return status

    def _execute_shutdown(self, status: ShutdownStatus):
        status.phase = ShutdownPhase.STOPPING_POOL
        try:
            self.pool.shutdown()
        except Exception as e:
            status.error = e
            status.error_count += 1
            logger.error(f"Error during pool shutdown: {e}", exc_info=True)

        status.phase = ShutdownPhase.RUNNING_CLEANUP
        for callback in list(self._callbacks):
            try:
                logger.debug(f"Executing cleanup callback: {callback}")
                callback()
                status.cleanup_callbacks_executed += 1
            except Exception as e:
                logger.error(f"Error in cleanup callback {callback}: {e}")
                status.error_count += 1

        status.phase = ShutdownPhase.COMPLETED
        status.completed = True
        logger.info(f"Shutdown completed in {status.get_elapsed_time():.2f} seconds")
        self._done.set()

    def shutdown(self, reason: str = "shutdown requested", timeout: Optional[float] = None) -> Optional[ShutdownStatus]:
        """
        Синхронная остановка: инициирует (если еще нет) и ждет завершения.

        Returns:
            Статус завершения работы
        """
        self.request_shutdown(reason)
        if not self.wait(timeout):
            logger.warning(f"Shutdown did not complete within {timeout}s")
        self._restore_signal_handlers()
        return self._status

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Ожидание завершения остановки.

        Returns:
            True если остановка завершена, False если таймаут
        """
        return self._done.wait(timeout)

    def run_forever(self):
        """Запуск и работа до сигнала завершения с периодическим логом состояния."""
        self.start()
        interval = self.config.health_log_interval
        try:
            while not self._done.wait(interval if interval > 0 else 1.0):
                if interval > 0 and not self.is_shutdown_requested():
                    self._log_health()
        finally:
            self.shutdown("run_forever exiting")

    def _log_health(self):
        if self.health_checker is not None:
            health = self.health_checker.check_health()
            if health.is_healthy:
                logger.info(f"Pool healthy: {self.pool.snapshot().to_dict()}")
            else:
                logger.warning(f"Pool unhealthy: issues={health.issues}, warnings={health.warnings}")
        else:
            logger.info(f"Pool state: {self.pool.snapshot().to_dict()}")

    def add_cleanup_callback(self, callback: Callable):
        """Добавление callback'а, выполняемого после остановки пула."""
        self._callbacks.append(callback)
        logger.debug(f"Added cleanup callback: {callback}")

    def remove_cleanup_callback(self, callback: Callable):
        """Удаление cleanup callback'а."""
        try:
            self._callbacks.remove(callback)
            logger.debug(f"Removed cleanup callback: {callback}")
        except ValueError:
            pass

    def is_shutdown_requested(self) -> bool:
        return self._once.locked()

    def is_shutdown_completed(self) -> bool:
        return self._done.is_set()

    def get_status(self) -> Optional[ShutdownStatus]:
        """Получение текущего статуса."""
        return self._status

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown("context exit")

    def __repr__(self) -> str:
        if self._status:
            return f"LifecycleManager(phase={self._status.phase.value}, elapsed={self._status.get_elapsed_time():.1f}s)"
        return "LifecycleManager(running)"
