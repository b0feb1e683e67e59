"""
Вспомогательные функции тестов.
"""

import time


def wait_until(predicate, timeout: float = 15.0, interval: float = 0.05) -> bool:
    """Ожидание выполнения условия. Возвращает результат последней проверки."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
