"""
Воркер пула: изолированный процесс с однократно загруженным движком.

Воркер общается с координатором только сообщениями через ``Pipe``.
Принудительное завершение - это SIGKILL процесса, а не кооперативная отмена:
движок не обязан проверять флаги отмены.
"""

import signal
import uuid
import multiprocessing
from multiprocessing.connection import wait
from typing import Any, Dict, Mapping, Optional, Union
from datetime import datetime

from ..engines import EngineFactory, create_engine
from ..exceptions import InitError, WorkerPoolError
from ..models.messages import MessageKind, UnitMessage
from ..models.task import TaskEnvelope
from ..models.worker import UnitMetrics, UnitState, can_transition
from ..utils.logger import get_logger, setup_logging


logger = get_logger(__name__)


def unit_main(
    conn,
    engine: Union[str, EngineFactory],
    engine_options: Optional[Mapping[str, Any]] = None,
    log_level: str = "INFO"
):
    """
    Точка входа процесса воркера.

    Загружает движок, отправляет ``ready`` (или ``init_error``), затем
    обрабатывает задачи по одной, отвечая ровно одним сообщением на задачу.
    """
    # Сигналы завершения обрабатывает процесс координатора
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    setup_logging(log_level, enable_metrics=False)

    try:
        instance = create_engine(engine, engine_options)
    except Exception as e:
        logger.error(f"Engine initialization failed: {type(e).__name__}: {e}")
        try:
            conn.send(UnitMessage.init_error(e))
        finally:
            conn.close()
        return

    conn.send(UnitMessage.ready())
    logger.debug("Unit ready")

    try:
        while True:
            try:
                message = conn.recv()
            except (EOFError, OSError):
                logger.warning("Coordinator connection lost, exiting")
                break

            if message.kind is MessageKind.SHUTDOWN:
                logger.debug("Shutdown requested")
                break

            if message.kind is not MessageKind.TASK:
                logger.warning(f"Ignoring unexpected message: {message.kind.value}")
                continue

            try:
                reply = UnitMessage.result(message.task_id, instance.run_job(message.data))
            except Exception as e:
                logger.debug(f"Task {message.task_id} failed: {type(e).__name__}: {e}")
                reply = UnitMessage.failure(message.task_id, e)

            try:
                conn.send(reply)
            except OSError:
                logger.warning("Coordinator connection lost, exiting")
                break
            except Exception as e:
                # Результат не сериализуется: сообщаем об ошибке вместо него
                conn.send(UnitMessage.failure(message.task_id, e))
    finally:
        try:
            instance.close()
        except Exception as e:
            logger.error(f"Engine close failed: {e}")
        conn.close()


class WorkerUnit:
    """Воркер на стороне координатора: процесс, канал и состояние."""

    def __init__(
        self,
        engine: Union[str, EngineFactory],
        engine_options: Optional[Dict[str, Any]] = None,
        context=None,
        log_level: str = "INFO",
        kill_grace: float = 0.5
    ):
        self.id = f"unit-{uuid.uuid4().hex[:8]}"
        self.state = UnitState.INITIALIZING
        self.metrics = UnitMetrics()
        self.created_at = datetime.now()
        self.current_task_id: Optional[str] = None

        self._engine = engine
        self._engine_options = dict(engine_options or {})
        self._ctx = context or multiprocessing.get_context()
        self._log_level = log_level
        self._kill_grace = kill_grace
        self._process = None
        self._conn = None

    def start(self):
        """Запуск процесса воркера. Готовность приходит отдельным сообщением ``ready``."""
        if self._process is not None:
            raise WorkerPoolError(f"Unit {self.id} already started")

        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        self._process = self._ctx.Process(
            target=unit_main,
            args=(child_conn, self._engine, self._engine_options, self._log_level),
            name=f"ocr-{self.id}",
            daemon=True
        )
        self._process.start()
        # Своя копия дочернего конца не нужна: иначе EOF не будет замечен
        child_conn.close()
        self._conn = parent_conn
        logger.info(f"Started unit {self.id} (pid {self._process.pid})")

    def wait_ready(self, timeout: Optional[float] = None):
        """
        Синхронное ожидание готовности воркера.

        Args:
            timeout: Таймаут ожидания в секундах

        Raises:
            InitError: движок не загрузился, процесс завершился или истек таймаут
        """
        ready = wait([self._conn, self._process.sentinel], timeout)
        if not ready:
            raise InitError(f"Unit {self.id} did not become ready within {timeout}s", unit_id=self.id)

        message = self.receive() if self._conn in ready or self._conn.poll() else None
        if message is None:
            self._process.join(self._kill_grace)
            raise InitError(
                f"Unit {self.id} exited during initialization (exit code {self._process.exitcode})",
                unit_id=self.id
            )
        self.handle_startup_message(message)

    def handle_startup_message(self, message: UnitMessage):
        """Обработка ``ready``/``init_error`` от воркера в состоянии INITIALIZING."""
        if message.kind is MessageKind.READY:
            self._transition(UnitState.READY)
            logger.info(f"Unit {self.id} ready")
        elif message.kind is MessageKind.INIT_ERROR:
            raise InitError(
                f"Unit {self.id} failed to initialize engine: {message.error_type}: {message.error}",
                unit_id=self.id
            )
        else:
            raise InitError(f"Unit {self.id} sent {message.kind.value} before ready", unit_id=self.id)

    def run(self, envelope: TaskEnvelope):
        """Отправка задачи воркеру. Допустима только в состоянии READY."""
        if self.state is not UnitState.READY:
            raise WorkerPoolError(f"Unit {self.id} cannot accept a task in state {self.state.value}")

        self._conn.send(UnitMessage.task(envelope.id, envelope.payload))
        self._transition(UnitState.BUSY)
        self.current_task_id = envelope.id

    def complete(self, execution_time: float, success: bool):
        """Возврат воркера в READY после ответа по задаче."""
        self._transition(UnitState.READY)
        self.current_task_id = None
        self.metrics.record(execution_time, success)

    def receive(self) -> Optional[UnitMessage]:
        """Чтение сообщения; ``None`` если канал закрыт."""
        try:
            return self._conn.recv()
        except (EOFError, OSError):
            return None

    def has_message(self) -> bool:
        """Есть ли непрочитанное сообщение в канале."""
        try:
            return self._conn.poll()
        except (EOFError, OSError):
            return False

    def request_shutdown(self):
        """Штатная остановка простаивающего воркера (движок выполнит ``close``)."""
        if self.state in (UnitState.TERMINATING, UnitState.DEAD):
            return
        try:
            self._conn.send(UnitMessage.shutdown())
        except OSError:
            pass
        self._transition(UnitState.TERMINATING)

    def terminate(self):
        """Принудительное завершение процесса независимо от выполняемой работы."""
        if self.state is UnitState.DEAD:
            return
        if self.state is not UnitState.TERMINATING:
            self._transition(UnitState.TERMINATING)
        if self._process is not None and self._process.is_alive():
            self._process.kill()
            logger.info(f"Killed unit {self.id} (pid {self._process.pid})")

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Ожидание завершения процесса.

        Если процесс не завершился за ``timeout``, он убивается.

        Returns:
            True если процесс завершен
        """
        if self._process is None:
            self._mark_dead()
            return True

        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning(f"Unit {self.id} did not exit in {timeout}s, killing")
            self._process.kill()
            self._process.join(self._kill_grace)

        if self._process.is_alive():
            return False

        self._mark_dead()
        return True

    def _mark_dead(self):
        if self.state is not UnitState.DEAD:
            self.state = UnitState.DEAD
        if self._conn is not None:
            self._conn.close()

    def _transition(self, target: UnitState):
        if not can_transition(self.state, target):
            raise WorkerPoolError(f"Unit {self.id}: invalid transition {self.state.value} -> {target.value}")
        self.state = target

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def exitcode(self) -> Optional[int]:
        return self._process.exitcode if self._process is not None else None

    @property
    def sentinel(self):
        return self._process.sentinel

    @property
    def connection(self):
        return self._conn

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def __repr__(self) -> str:
        return f"WorkerUnit(id={self.id}, state={self.state.value}, pid={self.pid})"
