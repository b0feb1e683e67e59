"""
Базовый пример использования пула OCR-воркеров.
"""

import time
import random
from concurrent.futures import wait

from ocr_pool import (
    JobEngine,
    PoolConfig,
    PoolCoordinator,
    EngineFailure,
    TimedOut,
    setup_logging
)


class SlowEngine(JobEngine):
    """Движок, имитирующий долгое распознавание."""

    def initialize(self):
        # Имитация загрузки модели
        time.sleep(0.2)

    def run_job(self, payload):
        seconds = payload.get("seconds", 0.1)
        if payload.get("fail"):
            raise ValueError(f"Не удалось распознать документ {payload['name']}")
        time.sleep(seconds)
        return {"text": f"document {payload['name']}", "confidence": 93.5}


def text_engine_example():
    """Распознавание текстовых документов встроенным движком."""
    print("\n1. Встроенный TextEngine:")
    config = PoolConfig(pool_size=2, engine="ocr_pool.engines:TextEngine", engine_options={"lang": "eng+rus"})

    with PoolCoordinator(config) as pool:
        futures = [pool.submit(f"страница {i} распознана".encode("utf-8")) for i in range(4)]
        for future in futures:
            result = future.result()
            print(f"   {result['text']!r} (слов: {len(result['words'])}, язык: {result['language']})")


def queue_and_deadline_example():
    """Очередь сверх емкости пула, дедлайны и ошибки движка."""
    print("\n2. Очередь, дедлайны и ошибки:")
    config = PoolConfig(pool_size=2, task_timeout=2.0, engine=SlowEngine, replacement_backoff=0.5)

    with PoolCoordinator(config) as pool:
        futures = {}
        for i in range(6):
            payload = {"name": i, "seconds": random.uniform(0.1, 0.4)}
            futures[pool.submit(payload)] = i
        print(f"   Состояние после отправки: {pool.snapshot().to_dict()}")

        hung = pool.submit({"name": "hung", "seconds": 60}, deadline=0.5)
        broken = pool.submit({"name": "broken", "fail": True})

        wait(list(futures) + [hung, broken])
        for future, i in futures.items():
            print(f"   Документ {i}: {future.result()['text']}")

        try:
            hung.result()
        except TimedOut as e:
            print(f"   Зависшая задача: {e}")

        try:
            broken.result()
        except EngineFailure as e:
            print(f"   Ошибка движка ({e.error_type}): {e}")

        # Воркер, убитый по дедлайну, заменяется новым
        time.sleep(1.0)
        print(f"   Состояние после замены: {pool.snapshot().to_dict()}")
        print(f"   Метрики: {pool.get_metrics()['tasks_completed']} выполнено, "
              f"{pool.get_metrics()['tasks_timed_out']} по таймауту")


def main():
    """Основная функция с примерами использования."""
    setup_logging("WARNING")
    print("=== Базовый пример использования пула OCR-воркеров ===")
    text_engine_example()
    queue_and_deadline_example()
    print("\n=== Пример завершен ===")


if __name__ == "__main__":
    main()
