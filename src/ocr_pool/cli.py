"""
Командная строка ``ocr-pool``.

С файлами: распознает каждый файл через пул и печатает результаты в JSON
(по одной строке на файл). Без файлов: запускает пул и работает до
SIGTERM/SIGINT.
"""

import sys
import json
import argparse
from pathlib import Path
from typing import List, Optional

from .core.coordinator import PoolCoordinator
from .core.lifecycle import LifecycleManager
from .utils.config import Config, load_config, load_config_from_env
from .utils.logger import get_logger, setup_logging
from .utils.monitoring import HealthChecker
from .exceptions import TaskError, WorkerPoolError


logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocr-pool",
        description="Пул изолированных OCR-воркеров"
    )
    parser.add_argument(
        "files",
        nargs="*",
        help="Файлы для распознавания; без файлов пул работает до сигнала завершения"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--config",
        type=str,
        help="Путь к файлу конфигурации (YAML или JSON)"
    )
    source.add_argument(
        "--env",
        action="store_true",
        help="Загрузить конфигурацию из переменных окружения OCR_*"
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Количество воркеров"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Дедлайн задачи в секундах"
    )
    parser.add_argument(
        "--engine",
        type=str,
        help="Фабрика движка в виде 'package.module:attribute'"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Уровень логирования"
    )
    return parser


def build_config(args: argparse.Namespace) -> Config:
    """Конфигурация из файла или окружения с переопределениями из аргументов."""
    if args.config:
        config = load_config(args.config)
    elif args.env:
        config = load_config_from_env()
    else:
        config = Config()

    overrides = {}
    if args.workers is not None:
        overrides["pool_size"] = args.workers
    if args.timeout is not None:
        overrides["task_timeout"] = args.timeout
    if args.engine:
        overrides["engine"] = args.engine
    if args.log_level:
        overrides["log_level"] = args.log_level
        config.log_level = args.log_level

    if overrides:
        config = config.with_pool(**overrides)
    config.validate()
    return config


def process_files(pool: PoolCoordinator, files: List[str]) -> int:
    """Отправка файлов в пул и печать результатов. Возвращает код выхода."""
    submitted = []
    exit_code = 0

    for name in files:
        try:
            payload = Path(name).read_bytes()
        except OSError as e:
            print(json.dumps({"file": name, "error": str(e), "kind": "io_error"}, ensure_ascii=False))
            exit_code = 1
            continue
        try:
            submitted.append((name, pool.submit(payload)))
        except TaskError as e:
            print(json.dumps({"file": name, "error": str(e), "kind": e.kind}, ensure_ascii=False))
            exit_code = 1

    for name, future in submitted:
        try:
            record = {"file": name, "result": future.result()}
        except TaskError as e:
            record = {"file": name, "error": str(e), "kind": e.kind}
            exit_code = 1
        print(json.dumps(record, ensure_ascii=False, default=str))

    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Основная функция командной строки."""
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
    except (WorkerPoolError, OSError) as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_file)

    pool = PoolCoordinator(config.pool)
    health_checker = HealthChecker(pool, config.monitoring)
    lifecycle = LifecycleManager(pool, config.lifecycle, health_checker)

    try:
        if not args.files:
            lifecycle.run_forever()
            return 0

        lifecycle.start()
        try:
            return process_files(pool, args.files)
        finally:
            lifecycle.shutdown("all files processed")
    except WorkerPoolError as e:
        logger.error(f"Worker pool failed: {e}")
        pool.shutdown()
        return 1


if __name__ == "__main__":
    sys.exit(main())
