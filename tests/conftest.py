"""
Общие фикстуры тестов.
"""

import sys
from pathlib import Path

import pytest

# Позволяет запускать тесты без установки пакета; процессы воркеров
# (spawn) наследуют sys.path родителя
SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from ocr_pool import PoolConfig, PoolCoordinator  # noqa: E402
from tests.engines import ScriptedEngine  # noqa: E402


@pytest.fixture
def make_pool():
    """Фабрика пулов; все созданные пулы останавливаются после теста."""
    pools = []

    def factory(**overrides) -> PoolCoordinator:
        params = dict(
            pool_size=2,
            task_timeout=10.0,
            init_timeout=30.0,
            shutdown_timeout=5.0,
            replacement_backoff=0.1,
            engine=ScriptedEngine,
            log_level="WARNING"
        )
        params.update(overrides)
        pool = PoolCoordinator(PoolConfig(**params))
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        pool.shutdown()


@pytest.fixture
def pool(make_pool):
    """Инициализированный пул из двух воркеров."""
    pool = make_pool()
    pool.initialize()
    return pool
