"""
Система логирования для пула воркеров.
"""

import logging
import sys
import threading
from typing import Optional, Dict
from pathlib import Path


class WorkerPoolFormatter(logging.Formatter):
    """Кастомный форматтер для логов пула воркеров."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(processName)-14s | %(threadName)-15s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


class MetricsHandler(logging.Handler):
    """Обработчик логов для сбора метрик."""

    def __init__(self):
        super().__init__()
        self._metrics = self._empty()
        self._metrics_lock = threading.Lock()

    @staticmethod
    def _empty() -> Dict[str, int]:
        return {
            'total_logs': 0,
            'error_count': 0,
            'warning_count': 0,
            'info_count': 0,
            'debug_count': 0
        }

    def emit(self, record):
        with self._metrics_lock:
            self._metrics['total_logs'] += 1

            if record.levelno >= logging.ERROR:
                self._metrics['error_count'] += 1
            elif record.levelno >= logging.WARNING:
                self._metrics['warning_count'] += 1
            elif record.levelno >= logging.INFO:
                self._metrics['info_count'] += 1
            else:
                self._metrics['debug_count'] += 1

    def get_metrics(self) -> Dict[str, int]:
        """Получение метрик логов."""
        with self._metrics_lock:
            return self._metrics.copy()

    def reset_metrics(self):
        """Сброс метрик."""
        with self._metrics_lock:
            self._metrics = self._empty()


# Глобальный обработчик метрик
_metrics_handler = MetricsHandler()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_metrics: bool = True,
    log_format: Optional[str] = None
):
    """
    Настройка системы логирования.

    Вызывается в основном процессе и в каждом процессе воркера.

    Args:
        level: Уровень логирования
        log_file: Путь к файлу логов
        enable_console: Включить вывод в консоль
        enable_metrics: Включить сбор метрик
        log_format: Кастомный формат логов
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Очистка существующих обработчиков
    root_logger.handlers.clear()

    if log_format:
        formatter = logging.Formatter(log_format)
    else:
        formatter = WorkerPoolFormatter()

    # Консольный обработчик (stderr: stdout занят JSON-результатами CLI)
    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Файловый обработчик
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if enable_metrics:
        _metrics_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(_metrics_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Получение логгера для модуля.

    Args:
        name: Имя модуля

    Returns:
        Объект логгера
    """
    return logging.getLogger(name)


def get_log_metrics() -> Dict[str, int]:
    """Получение метрик логов."""
    return _metrics_handler.get_metrics()


def reset_log_metrics():
    """Сброс метрик логов."""
    _metrics_handler.reset_metrics()
