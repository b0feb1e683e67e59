"""
Координатор пула воркеров.

Владеет фиксированным набором воркеров, FIFO-очередью ожидания и дедлайнами.
Вся бухгалтерия (состояния воркеров, очередь, завершение future) выполняется
под одной блокировкой; сообщения воркеров, их завершение и истечение дедлайнов
обрабатывает один поток-монитор.
"""

import heapq
import multiprocessing
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from multiprocessing.connection import wait
from typing import Any, Dict, List, Optional, Tuple

from .wait_queue import WaitQueue
from .worker_unit import WorkerUnit

from ..models.messages import MessageKind, UnitMessage
from ..models.pool_metrics import PoolMetrics, PoolSnapshot, PoolState
from ..models.task import PendingTask, TaskEnvelope, TaskStatus
from ..models.worker import UnitState

from ..utils.config import PoolConfig
from ..utils.logger import get_logger
from ..exceptions import (
    EngineFailure,
    InitError,
    PoolDegraded,
    PoolNotInitialized,
    PoolShuttingDown,
    QueueFull,
    ShutdownAbandoned,
    TimedOut,
    UnitCrashed
)


logger = get_logger(__name__)

# Верхняя граница ожидания монитора, если нет ни дедлайнов, ни замен
_MAX_WAIT = 1.0


class PoolCoordinator:
    """Пул изолированных воркеров с очередью, дедлайнами и самовосстановлением."""

    def __init__(self, config: Optional[PoolConfig] = None):
        self.config = config or PoolConfig()
        self._ctx = multiprocessing.get_context(self.config.start_method)

        self._lock = threading.RLock()
        self._lifecycle_lock = threading.Lock()
        self._state = PoolState.NEW

        # Воркеры в пуле (INITIALIZING, READY, BUSY)
        self._units: Dict[str, WorkerUnit] = {}
        # Свободные воркеры: взять любой и удалить умерший - O(1)
        self._idle: "OrderedDict[str, WorkerUnit]" = OrderedDict()
        # unit_id -> выполняемая задача
        self._running: Dict[str, PendingTask] = {}
        # Убитые воркеры, ожидающие join
        self._dying: Dict[str, WorkerUnit] = {}

        self._deadlines: List[Tuple[float, str, str]] = []
        self._replacements_due: List[float] = []
        self._replacement_failures = 0
        self._degraded = False

        self._metrics = PoolMetrics()
        self._queue = WaitQueue(self.config.max_queue_size, self._metrics)

        self._monitor: Optional[threading.Thread] = None
        self._stop_monitor = threading.Event()
        self._wake_reader, self._wake_writer = self._ctx.Pipe(duplex=False)
        self._wake_pending = False

        logger.info(f"PoolCoordinator created with config: {self.config}")

    # ------------------------------------------------------------------
    # Жизненный цикл

    def initialize(self, timeout: Optional[float] = None):
        """
        Запуск ``pool_size`` воркеров и ожидание готовности каждого.

        Повторный вызов на инициализированном пуле ничего не делает.

        Args:
            timeout: Таймаут ожидания готовности (по умолчанию ``init_timeout``)

        Raises:
            InitError: хотя бы один воркер не смог загрузить движок
            PoolShuttingDown: пул уже был остановлен
        """
        with self._lifecycle_lock:
            with self._lock:
                if self._state is PoolState.RUNNING:
                    logger.debug("Pool already initialized")
                    return
                if self._state in (PoolState.STOPPING, PoolState.STOPPED):
                    raise PoolShuttingDown("Pool has been shut down and cannot be initialized again")
                self._state = PoolState.STARTING

            timeout = self.config.init_timeout if timeout is None else timeout
            logger.info(f"Initializing worker pool (pool_size={self.config.pool_size})")

            units = [self._new_unit() for _ in range(self.config.pool_size)]
            started: List[WorkerUnit] = []
            try:
                # Запускаем все процессы сразу, затем ждем каждого в пределах общего таймаута
                for unit in units:
                    unit.start()
                    started.append(unit)

                deadline = time.monotonic() + timeout
                for unit in units:
                    unit.wait_ready(max(0.0, deadline - time.monotonic()))
            except Exception as e:
                logger.error(f"Worker pool initialization failed: {e}")
                for unit in started:
                    unit.terminate()
                for unit in started:
                    unit.join(self.config.kill_grace)
                with self._lock:
                    self._state = PoolState.NEW
                if isinstance(e, InitError):
                    raise
                raise InitError(f"Worker pool initialization failed: {e}") from e

            with self._lock:
                for unit in units:
                    self._units[unit.id] = unit
                    self._idle[unit.id] = unit
                self._metrics.units_started += len(units)
                self._metrics.start_pool()
                self._state = PoolState.RUNNING

                self._stop_monitor.clear()
                self._monitor = threading.Thread(
                    target=self._monitor_loop,
                    name="ocr-pool-monitor",
                    daemon=True
                )
                self._monitor.start()

            logger.info(f"Worker pool initialized with {len(units)} units")

    def shutdown(self, timeout: Optional[float] = None):
        """
        Остановка пула.

        Новые задачи отклоняются сразу; выполняемые и ожидающие в очереди задачи
        завершаются ошибкой ``ShutdownAbandoned``. Возвращает управление после
        завершения всех процессов. Повторный вызов ничего не делает.

        Args:
            timeout: Ожидание завершения процессов (по умолчанию ``shutdown_timeout``)
        """
        with self._lifecycle_lock:
            with self._lock:
                if self._state is PoolState.STOPPED:
                    logger.debug("Pool already shut down")
                    return
                if self._state is PoolState.NEW:
                    self._state = PoolState.STOPPED
                    self._close_wake_pipe()
                    logger.info("Pool shut down before initialization")
                    return

                logger.info("Shutting down worker pool")
                self._state = PoolState.STOPPING

                abandoned = list(self._running.values()) + self._queue.drain()
                units = list(self._units.values())
                dying = list(self._dying.values())

                self._running.clear()
                self._deadlines.clear()
                self._replacements_due.clear()
                self._units.clear()
                self._idle.clear()
                self._dying.clear()

            for pending in abandoned:
                pending.mark_finished(TaskStatus.FAILED)
                if pending.reject(ShutdownAbandoned("Task abandoned: pool is shutting down", pending.task_id)):
                    self._metrics.tasks_abandoned += 1
            if abandoned:
                logger.warning(f"Abandoned {len(abandoned)} in-flight and queued tasks")

            self._stop_monitor_thread()

            # Свободные воркеры закрывают движок сами, остальные убиваются
            for unit in units:
                if unit.state is UnitState.READY:
                    unit.request_shutdown()
                else:
                    unit.terminate()

            timeout = self.config.shutdown_timeout if timeout is None else timeout
            deadline = time.monotonic() + timeout
            for unit in units + dying:
                if not unit.join(max(0.0, deadline - time.monotonic())):
                    logger.error(f"Unit {unit.id} (pid {unit.pid}) could not be terminated")

            with self._lock:
                self._close_wake_pipe()
                self._metrics.stop_pool()
                self._state = PoolState.STOPPED

            logger.info("Worker pool shut down")

    # ------------------------------------------------------------------
    # Задачи

    def submit(self, payload: Any, deadline: Optional[float] = None) -> Future:
        """
        Отправка задачи в пул.

        Если есть свободный воркер, задача отправляется ему сразу, иначе
        ставится в конец очереди ожидания.

        Args:
            payload: Входные данные движка (передаются без изменений)
            deadline: Дедлайн выполнения в секундах (по умолчанию ``task_timeout``);
                отсчитывается с момента отправки воркеру

        Returns:
            Future с результатом движка; ошибки задачи - подклассы ``TaskError``

        Raises:
            PoolNotInitialized, PoolShuttingDown, QueueFull, PoolDegraded
        """
        if deadline is None:
            deadline = self.config.task_timeout
        pending = PendingTask(TaskEnvelope(payload=payload, deadline=deadline))

        with self._lock:
            if self._state in (PoolState.STOPPING, PoolState.STOPPED):
                self._metrics.tasks_rejected += 1
                raise PoolShuttingDown("Pool is shutting down", pending.task_id)
            if self._state is not PoolState.RUNNING:
                self._metrics.tasks_rejected += 1
                raise PoolNotInitialized("Worker pool not initialized", pending.task_id)
            if self._degraded and not self._units:
                self._metrics.tasks_rejected += 1
                raise PoolDegraded("Worker pool has no units left", pending.task_id)

            unit = self._take_idle_unit()
            if unit is not None:
                pending.future.set_running_or_notify_cancel()
                self._metrics.tasks_submitted += 1
                if self._dispatch(unit, pending):
                    self._on_unit_free(unit)
            else:
                try:
                    self._queue.push(pending)
                except QueueFull:
                    self._metrics.tasks_rejected += 1
                    raise
                self._metrics.tasks_submitted += 1

        return pending.future

    def _take_idle_unit(self) -> Optional[WorkerUnit]:
        if not self._idle:
            return None
        _, unit = self._idle.popitem(last=False)
        return unit

    def _dispatch(self, unit: WorkerUnit, pending: PendingTask) -> bool:
        """
        Отправка задачи свободному воркеру и постановка дедлайна.

        Returns:
            True если задача не отправлена, а воркер остался свободным
            (payload не сериализуется)
        """
        try:
            unit.run(pending.envelope)
        except OSError as e:
            logger.warning(f"Unit {unit.id} is unreachable, failing task {pending.task_id}: {e}")
            pending.mark_finished(TaskStatus.FAILED)
            self._metrics.tasks_crashed += 1
            self._retire_unit(unit)
            self._schedule_replacement()
            pending.reject(UnitCrashed(
                f"Unit {unit.id} became unavailable before the task started: {e}",
                pending.task_id,
                exitcode=unit.exitcode
            ))
            return False
        except Exception as e:
            # Payload не сериализуется: воркер не затронут
            logger.error(f"Task {pending.task_id} could not be sent to unit {unit.id}: {e}")
            pending.mark_finished(TaskStatus.FAILED)
            self._metrics.tasks_failed += 1
            pending.reject(EngineFailure(
                f"Payload could not be serialized: {type(e).__name__}: {e}",
                pending.task_id,
                error_type=type(e).__name__
            ))
            return True

        pending.mark_running(unit.id)
        self._running[unit.id] = pending
        self._metrics.record_dispatch(pending.queue_wait_time())
        heapq.heappush(self._deadlines, (pending.deadline_at, unit.id, pending.task_id))
        self._wake()
        logger.debug(f"Task {pending.task_id} dispatched to unit {unit.id}")
        return False

    def _on_unit_free(self, unit: WorkerUnit):
        """Воркер освободился: берет следующую задачу из очереди или становится свободным."""
        while True:
            next_task = self._queue.pop_next()
            if next_task is None:
                self._idle[unit.id] = unit
                return
            if not self._dispatch(unit, next_task):
                return

    # ------------------------------------------------------------------
    # Поток-монитор

    def _monitor_loop(self):
        """Основной цикл монитора."""
        logger.debug("Monitor thread started")
        while not self._stop_monitor.is_set():
            try:
                self._monitor_iteration()
            except Exception as e:
                logger.error(f"Error in monitor loop: {e}", exc_info=True)
                time.sleep(0.1)
        logger.debug("Monitor thread stopped")

    def _monitor_iteration(self):
        with self._lock:
            running = self._state is PoolState.RUNNING
            if running:
                conn_owner = {unit.connection: unit for unit in self._units.values()}
                sentinel_owner = {unit.sentinel: unit for unit in self._units.values()}
                sentinel_owner.update({unit.sentinel: unit for unit in self._dying.values()})
                timeout = self._next_timeout()

        if not running:
            self._stop_monitor.wait(_MAX_WAIT)
            return

        ready = wait([self._wake_reader] + list(conn_owner) + list(sentinel_owner), timeout)

        with self._lock:
            if self._state is not PoolState.RUNNING or self._stop_monitor.is_set():
                return

            if self._wake_reader in ready:
                self._drain_wake_pipe()

            for obj in ready:
                unit = conn_owner.get(obj) if not isinstance(obj, int) else None
                if unit is not None and unit.id in self._units:
                    self._handle_messages(unit)

            for obj in ready:
                if isinstance(obj, int) and obj in sentinel_owner:
                    self._handle_exit(sentinel_owner[obj])

            self._expire_deadlines()
            self._run_due_replacements()

    def _next_timeout(self) -> float:
        candidates = []
        if self._deadlines:
            candidates.append(self._deadlines[0][0])
        if self._replacements_due:
            candidates.append(self._replacements_due[0])
        if not candidates:
            return _MAX_WAIT
        return min(_MAX_WAIT, max(0.0, min(candidates) - time.monotonic()))

    def _handle_messages(self, unit: WorkerUnit):
        while unit.id in self._units and unit.has_message():
            message = unit.receive()
            if message is None:
                # Канал закрыт: выход процесса обработает sentinel
                break
            self._handle_message(unit, message)

    def _handle_message(self, unit: WorkerUnit, message: UnitMessage):
        if unit.state is UnitState.INITIALIZING:
            self._handle_replacement_startup(unit, message)
            return

        if not message.is_terminal:
            logger.warning(f"Unit {unit.id} sent unexpected {message.kind.value} message")
            return

        pending = self._running.get(unit.id)
        if pending is None or pending.task_id != message.task_id:
            logger.warning(f"Unit {unit.id} answered unknown task {message.task_id}")
            return

        del self._running[unit.id]
        success = message.kind is MessageKind.RESULT
        pending.mark_finished(TaskStatus.COMPLETED if success else TaskStatus.FAILED)
        execution_time = pending.execution_time()
        unit.complete(execution_time, success)
        self._metrics.record_completion(execution_time, success)

        if success:
            logger.debug(f"Task {pending.task_id} completed on unit {unit.id} in {execution_time:.3f}s")
            pending.resolve(message.data)
        else:
            logger.info(f"Task {pending.task_id} failed on unit {unit.id}: {message.error_type}: {message.error}")
            pending.reject(EngineFailure(
                f"{message.error_type}: {message.error}",
                pending.task_id,
                error_type=message.error_type or ""
            ))

        self._on_unit_free(unit)

    def _handle_exit(self, unit: WorkerUnit):
        """Процесс воркера завершился."""
        if unit.id in self._dying:
            if unit.join(self.config.kill_grace):
                del self._dying[unit.id]
                logger.debug(f"Reaped unit {unit.id} (exit code {unit.exitcode})")
            return

        if unit.id not in self._units:
            return

        # Сообщения, отправленные перед выходом, обрабатываются первыми
        self._handle_messages(unit)
        if unit.id not in self._units:
            return

        previous_state = unit.state
        self._remove_unit(unit)
        unit.join(self.config.kill_grace)
        exitcode = unit.exitcode

        if previous_state is UnitState.INITIALIZING:
            self._replacement_failed(unit, f"exited during initialization (exit code {exitcode})")
            return

        logger.warning(f"Unit {unit.id} exited unexpectedly (state {previous_state.value}, exit code {exitcode})")
        pending = self._running.pop(unit.id, None)
        if pending is not None:
            pending.mark_finished(TaskStatus.FAILED)
            self._metrics.tasks_crashed += 1
            pending.reject(UnitCrashed(
                f"Unit {unit.id} crashed while running the task (exit code {exitcode})",
                pending.task_id,
                exitcode=exitcode
            ))

        self._schedule_replacement()

    def _expire_deadlines(self):
        now = time.monotonic()
        while self._deadlines and self._deadlines[0][0] <= now:
            _, unit_id, task_id = heapq.heappop(self._deadlines)
            pending = self._running.get(unit_id)
            if pending is None or pending.task_id != task_id:
                # Задача уже завершилась
                continue

            unit = self._units[unit_id]
            del self._running[unit_id]
            pending.mark_finished(TaskStatus.TIMED_OUT)
            self._metrics.tasks_timed_out += 1
            logger.warning(
                f"Task {task_id} exceeded its {pending.envelope.deadline}s deadline on unit {unit_id}, "
                f"terminating unit"
            )
            self._retire_unit(unit)
            self._schedule_replacement()
            pending.reject(TimedOut(
                f"Task processing timeout after {pending.envelope.deadline}s",
                task_id,
                deadline=pending.envelope.deadline
            ))

    # ------------------------------------------------------------------
    # Воркеры и замены

    def _new_unit(self) -> WorkerUnit:
        return WorkerUnit(
            engine=self.config.engine,
            engine_options=self.config.engine_options,
            context=self._ctx,
            log_level=self.config.log_level,
            kill_grace=self.config.kill_grace
        )

    def _remove_unit(self, unit: WorkerUnit):
        self._units.pop(unit.id, None)
        self._idle.pop(unit.id, None)

    def _retire_unit(self, unit: WorkerUnit):
        """Удаление воркера из пула и принудительное завершение процесса."""
        self._remove_unit(unit)
        unit.terminate()
        self._dying[unit.id] = unit
        self._wake()

    def _schedule_replacement(self, delay: float = 0.0):
        """Асинхронная замена воркера; выполняется потоком-монитором."""
        if self._state is not PoolState.RUNNING:
            return
        if self._degraded:
            # Замен больше не будет: без живых воркеров очередь не разобрать
            self._fail_queue_without_capacity()
            return
        heapq.heappush(self._replacements_due, time.monotonic() + delay)
        self._wake()

    def _run_due_replacements(self):
        now = time.monotonic()
        while self._replacements_due and self._replacements_due[0] <= now:
            heapq.heappop(self._replacements_due)
            if len(self._units) >= self.config.pool_size:
                continue

            unit = self._new_unit()
            try:
                unit.start()
            except Exception as e:
                logger.error(f"Failed to start replacement unit: {e}")
                self._replacement_failed(unit, f"could not start: {e}")
                continue

            self._units[unit.id] = unit
            self._metrics.units_started += 1
            logger.info(f"Replacement unit {unit.id} starting")

    def _handle_replacement_startup(self, unit: WorkerUnit, message: UnitMessage):
        try:
            unit.handle_startup_message(message)
        except InitError as e:
            self._remove_unit(unit)
            if unit.is_alive():
                unit.terminate()
                self._dying[unit.id] = unit
            else:
                unit.join(self.config.kill_grace)
            self._replacement_failed(unit, str(e))
            return

        self._replacement_failures = 0
        self._metrics.units_replaced += 1
        logger.info(f"Replacement unit {unit.id} joined the pool")
        self._on_unit_free(unit)

    def _replacement_failed(self, unit: WorkerUnit, reason: str):
        self._replacement_failures += 1
        self._metrics.replacement_failures += 1
        logger.error(
            f"Replacement unit {unit.id} failed ({self._replacement_failures}/"
            f"{self.config.max_replacement_failures}): {reason}"
        )

        if self._replacement_failures >= self.config.max_replacement_failures:
            self._degraded = True
            self._replacements_due.clear()
            logger.error(
                f"Giving up on unit replacement: pool capacity degraded to "
                f"{len(self._units)}/{self.config.pool_size} units"
            )
            self._fail_queue_without_capacity()
        else:
            self._schedule_replacement(self.config.replacement_backoff)

    def _fail_queue_without_capacity(self):
        """Без живых воркеров и без замен очередь никогда не разберется."""
        if self._units:
            return
        stranded = self._queue.drain()
        for pending in stranded:
            pending.mark_finished(TaskStatus.FAILED)
            pending.reject(PoolDegraded("Worker pool has no units left to run the task", pending.task_id))
        if stranded:
            logger.error(f"Failed {len(stranded)} queued tasks: no units left")

    # ------------------------------------------------------------------
    # Пробуждение монитора

    def _wake(self):
        if self._wake_pending or self._wake_writer.closed:
            return
        self._wake_pending = True
        try:
            self._wake_writer.send_bytes(b"\0")
        except OSError:
            pass

    def _drain_wake_pipe(self):
        while self._wake_reader.poll():
            self._wake_reader.recv_bytes()
        self._wake_pending = False

    def _stop_monitor_thread(self):
        self._stop_monitor.set()
        with self._lock:
            self._wake_pending = False
            self._wake()
        if self._monitor is not None and self._monitor.is_alive():
            self._monitor.join(timeout=5.0)
            if self._monitor.is_alive():
                logger.error("Monitor thread did not stop in time")
        self._monitor = None

    def _close_wake_pipe(self):
        self._wake_reader.close()
        self._wake_writer.close()

    # ------------------------------------------------------------------
    # Наблюдаемость

    def snapshot(self) -> PoolSnapshot:
        """Снимок состояния для health-check."""
        with self._lock:
            states = [unit.state for unit in self._units.values()]
            return PoolSnapshot(
                initialized=self._state is PoolState.RUNNING,
                total_units=sum(1 for s in states if s in (UnitState.READY, UnitState.BUSY)),
                busy_units=sum(1 for s in states if s is UnitState.BUSY),
                queued_tasks=len(self._queue),
                idle_units=len(self._idle),
                starting_units=sum(1 for s in states if s is UnitState.INITIALIZING),
                target_units=self.config.pool_size,
                degraded=self._degraded,
                state=self._state.value
            )

    def get_metrics(self) -> Dict[str, Any]:
        """Получение метрик пула."""
        with self._lock:
            metrics = self._metrics.to_dict()
            metrics['queue_metrics'] = self._queue.get_metrics()
            metrics['unit_metrics'] = {
                unit.id: {
                    'state': unit.state.value,
                    'pid': unit.pid,
                    'tasks_completed': unit.metrics.tasks_completed,
                    'tasks_failed': unit.metrics.tasks_failed,
                    'average_execution_time': unit.metrics.average_execution_time,
                    'success_rate': unit.metrics.get_success_rate()
                }
                for unit in self._units.values()
            }
            return metrics

    def unit_pids(self) -> Dict[str, Optional[int]]:
        """PID процессов воркеров пула."""
        with self._lock:
            return {unit.id: unit.pid for unit in self._units.values()}

    def get_units(self) -> List[WorkerUnit]:
        """Получение списка воркеров пула."""
        with self._lock:
            return list(self._units.values())

    @property
    def state(self) -> PoolState:
        return self._state

    def is_running(self) -> bool:
        """Проверка работы пула."""
        return self._state is PoolState.RUNNING

    def __enter__(self):
        """Контекстный менеджер - вход."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Контекстный менеджер - выход."""
        self.shutdown()

    def __repr__(self) -> str:
        snapshot = self.snapshot()
        return (f"PoolCoordinator(state={snapshot.state}, "
                f"units={snapshot.total_units}/{snapshot.target_units}, "
                f"busy={snapshot.busy_units}, queued={snapshot.queued_tasks})")
