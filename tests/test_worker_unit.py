"""
Тесты для воркера пула.
"""

import signal
import multiprocessing

import pytest

from ocr_pool.core.worker_unit import WorkerUnit
from ocr_pool.exceptions import InitError, WorkerPoolError
from ocr_pool.models.messages import MessageKind
from ocr_pool.models.task import TaskEnvelope
from ocr_pool.models.worker import UnitState
from tests.engines import BrokenInitEngine, ScriptedEngine


@pytest.fixture
def make_unit():
    """Фабрика воркеров; процессы гарантированно завершаются после теста."""
    units = []

    def factory(engine=ScriptedEngine, **options) -> WorkerUnit:
        unit = WorkerUnit(
            engine=engine,
            engine_options=options,
            context=multiprocessing.get_context("spawn"),
            log_level="WARNING"
        )
        units.append(unit)
        return unit

    yield factory

    for unit in units:
        unit.terminate()
        unit.join(5.0)


def receive(unit, timeout=15.0):
    assert unit.connection.poll(timeout)
    return unit.receive()


class TestWorkerUnit:
    """Тесты воркера."""

    def test_start_and_ready(self, make_unit):
        """Тест запуска и готовности воркера."""
        unit = make_unit()
        assert unit.state is UnitState.INITIALIZING
        assert unit.id.startswith("unit-")

        unit.start()
        unit.wait_ready(30.0)

        assert unit.state is UnitState.READY
        assert unit.pid is not None
        assert unit.is_alive()

    def test_run_task(self, make_unit):
        """Тест выполнения задачи."""
        unit = make_unit()
        unit.start()
        unit.wait_ready(30.0)

        envelope = TaskEnvelope(payload={"value": 42}, deadline=5.0)
        unit.run(envelope)
        assert unit.state is UnitState.BUSY
        assert unit.current_task_id == envelope.id

        message = receive(unit)
        assert message.kind is MessageKind.RESULT
        assert message.task_id == envelope.id
        assert message.data["value"] == 42
        assert message.data["pid"] == unit.pid

        unit.complete(0.1, success=True)
        assert unit.state is UnitState.READY
        assert unit.current_task_id is None
        assert unit.metrics.tasks_completed == 1

    def test_engine_error_message(self, make_unit):
        """Тест сообщения об ошибке движка."""
        unit = make_unit()
        unit.start()
        unit.wait_ready(30.0)

        envelope = TaskEnvelope(payload={"fail": "blurred scan"}, deadline=5.0)
        unit.run(envelope)

        message = receive(unit)
        assert message.kind is MessageKind.ERROR
        assert message.task_id == envelope.id
        assert message.error_type == "ValueError"
        assert message.error == "blurred scan"
        assert unit.is_alive()

    def test_run_requires_ready_state(self, make_unit):
        """Тест: задача принимается только в состоянии READY."""
        unit = make_unit()

        with pytest.raises(WorkerPoolError):
            unit.run(TaskEnvelope(payload=None, deadline=1.0))

    def test_init_error(self, make_unit):
        """Тест ошибки загрузки движка."""
        unit = make_unit(engine=BrokenInitEngine)
        unit.start()

        with pytest.raises(InitError) as exc_info:
            unit.wait_ready(30.0)

        assert exc_info.value.unit_id == unit.id
        assert "model files are missing" in str(exc_info.value)

    def test_unresolvable_engine(self, make_unit):
        """Тест несуществующей фабрики движка."""
        unit = make_unit(engine="tests.engines:NoSuchEngine")
        unit.start()

        with pytest.raises(InitError) as exc_info:
            unit.wait_ready(30.0)
        assert "ConfigurationError" in str(exc_info.value)

    def test_wait_ready_timeout(self, make_unit):
        """Тест таймаута ожидания готовности."""
        unit = make_unit(init_delay=10.0)
        unit.start()

        with pytest.raises(InitError):
            unit.wait_ready(0.5)

    def test_terminate_busy_unit(self, make_unit):
        """Тест принудительного завершения занятого воркера."""
        unit = make_unit()
        unit.start()
        unit.wait_ready(30.0)
        unit.run(TaskEnvelope(payload={"sleep": 60}, deadline=1.0))

        unit.terminate()
        assert unit.state is UnitState.TERMINATING
        assert unit.join(5.0)

        assert unit.state is UnitState.DEAD
        assert unit.exitcode == -signal.SIGKILL
        assert not unit.is_alive()

    def test_graceful_shutdown(self, make_unit, tmp_path):
        """Тест штатной остановки: движок закрывается, код выхода 0."""
        unit = make_unit(close_dir=str(tmp_path))
        unit.start()
        unit.wait_ready(30.0)
        pid = unit.pid

        unit.request_shutdown()
        assert unit.join(10.0)

        assert unit.exitcode == 0
        assert (tmp_path / str(pid)).exists()

    def test_crash_closes_channel(self, make_unit):
        """Тест: после падения процесса канал возвращает None."""
        unit = make_unit()
        unit.start()
        unit.wait_ready(30.0)
        unit.run(TaskEnvelope(payload={"crash": 7}, deadline=5.0))

        assert receive(unit) is None
        unit.join(5.0)
        assert unit.exitcode == 7

    def test_start_twice(self, make_unit):
        """Тест повторного запуска."""
        unit = make_unit()
        unit.start()

        with pytest.raises(WorkerPoolError):
            unit.start()
