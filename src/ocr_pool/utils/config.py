"""
Система конфигурации для пула воркеров.
"""

import json
import yaml
import os
from typing import Any, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, asdict, field, fields, replace
from pathlib import Path

from ..exceptions import ConfigurationError


DEFAULT_ENGINE = "ocr_pool.engines:TextEngine"


@dataclass
class PoolConfig:
    """Конфигурация координатора пула."""
    pool_size: int = 2
    task_timeout: float = 30.0  # Дедлайн задачи по умолчанию, секунды
    max_queue_size: int = 1000  # 0 - без ограничения
    init_timeout: float = 60.0  # Ожидание готовности всех воркеров при старте
    shutdown_timeout: float = 10.0  # Ожидание завершения процессов при остановке
    kill_grace: float = 0.5  # Ожидание после SIGKILL перед повторной проверкой
    max_replacement_failures: int = 3  # Подряд неудачных замен до деградации
    replacement_backoff: float = 1.0  # Пауза перед повторной заменой, секунды
    start_method: str = "spawn"
    engine: Union[str, Callable] = DEFAULT_ENGINE
    engine_options: Dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"


@dataclass
class LifecycleConfig:
    """Конфигурация жизненного цикла процесса."""
    signal_handling: bool = True
    signals: List[str] = field(default_factory=lambda: ["SIGTERM", "SIGINT"])
    health_log_interval: float = 60.0  # 0 - не логировать health периодически


@dataclass
class MonitoringConfig:
    """Конфигурация health-check."""
    queue_warning_threshold: int = 100
    unit_memory_threshold_mb: float = 1024.0
    collect_process_stats: bool = True


@dataclass
class Config:
    """Основная конфигурация пула воркеров."""

    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Конфигурации компонентов
    pool: PoolConfig = None
    lifecycle: LifecycleConfig = None
    monitoring: MonitoringConfig = None

    def __post_init__(self):
        """Инициализация конфигураций по умолчанию."""
        if self.pool is None:
            self.pool = PoolConfig()
        if self.lifecycle is None:
            self.lifecycle = LifecycleConfig()
        if self.monitoring is None:
            self.monitoring = MonitoringConfig()

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        config_dict = asdict(self)
        # Фабрику движка в виде класса сохраняем как путь импорта
        engine = self.pool.engine
        if not isinstance(engine, str):
            config_dict['pool']['engine'] = f"{engine.__module__}:{engine.__qualname__}"
        return config_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Создание из словаря."""
        data = dict(data or {})

        # Извлекаем конфигурации компонентов
        pool_data = data.pop('pool', None) or {}
        lifecycle_data = data.pop('lifecycle', None) or {}
        monitoring_data = data.pop('monitoring', None) or {}

        _check_keys(cls, data, '')
        _check_keys(PoolConfig, pool_data, 'pool.')
        _check_keys(LifecycleConfig, lifecycle_data, 'lifecycle.')
        _check_keys(MonitoringConfig, monitoring_data, 'monitoring.')

        return cls(
            pool=PoolConfig(**pool_data),
            lifecycle=LifecycleConfig(**lifecycle_data),
            monitoring=MonitoringConfig(**monitoring_data),
            **data
        )

    def validate(self) -> bool:
        """Валидация конфигурации."""
        errors = []

        # Проверка параметров пула
        if self.pool.pool_size < 1:
            errors.append("pool.pool_size must be >= 1")

        if self.pool.task_timeout <= 0:
            errors.append("pool.task_timeout must be > 0")

        if self.pool.max_queue_size < 0:
            errors.append("pool.max_queue_size must be >= 0")

        if self.pool.init_timeout <= 0:
            errors.append("pool.init_timeout must be > 0")

        if self.pool.shutdown_timeout < 0:
            errors.append("pool.shutdown_timeout must be >= 0")

        if self.pool.max_replacement_failures < 1:
            errors.append("pool.max_replacement_failures must be >= 1")

        if self.pool.replacement_backoff < 0:
            errors.append("pool.replacement_backoff must be >= 0")

        if self.pool.start_method not in ("spawn", "fork", "forkserver"):
            errors.append(f"pool.start_method must be spawn, fork or forkserver, got {self.pool.start_method!r}")

        if isinstance(self.pool.engine, str) and ':' not in self.pool.engine:
            errors.append("pool.engine must look like 'package.module:attribute'")

        # Проверка конфигурации жизненного цикла
        if self.lifecycle.health_log_interval < 0:
            errors.append("lifecycle.health_log_interval must be >= 0")

        if self.monitoring.queue_warning_threshold < 0:
            errors.append("monitoring.queue_warning_threshold must be >= 0")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def update(self, **kwargs) -> 'Config':
        """Обновление конфигурации с новыми значениями."""
        new_config = self.to_dict()
        new_config.update(kwargs)
        return Config.from_dict(new_config)

    def with_pool(self, **kwargs) -> 'Config':
        """Копия конфигурации с измененными параметрами пула."""
        return replace(self, pool=replace(self.pool, **kwargs))


def _check_keys(config_cls, data: Dict[str, Any], prefix: str):
    known = {f.name for f in fields(config_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(prefix + key for key in unknown)}")


def load_config(file_path: Union[str, Path]) -> Config:
    """
    Загрузка конфигурации из файла.

    Args:
        file_path: Путь к файлу конфигурации

    Returns:
        Объект конфигурации
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            raise ConfigurationError(f"Unsupported configuration file format: {file_path.suffix}")

    config = Config.from_dict(data)
    config.validate()

    return config


def save_config(config: Config, file_path: Union[str, Path], format: str = 'yaml'):
    """
    Сохранение конфигурации в файл.

    Args:
        config: Объект конфигурации
        file_path: Путь к файлу
        format: Формат файла ('yaml' или 'json')
    """
    file_path = Path(file_path)
    data = config.to_dict()

    # Создаем директорию если не существует
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        if format.lower() == 'yaml':
            yaml.safe_dump(data, f, default_flow_style=False, indent=2)
        elif format.lower() == 'json':
            json.dump(data, f, indent=2, ensure_ascii=False)
        else:
            raise ConfigurationError(f"Unsupported format: {format}")


def load_config_from_env(environ: Optional[Dict[str, str]] = None) -> Config:
    """
    Загрузка конфигурации из переменных окружения.

    Имена переменных совпадают с переменными OCR-сервиса,
    таймаут задается в миллисекундах.

    Returns:
        Объект конфигурации
    """
    env = os.environ if environ is None else environ
    config_data = {}
    pool_data = {}

    try:
        if env.get('OCR_WORKER_THREADS'):
            pool_data['pool_size'] = int(env['OCR_WORKER_THREADS'])

        if env.get('OCR_TIMEOUT_MS'):
            pool_data['task_timeout'] = int(env['OCR_TIMEOUT_MS']) / 1000.0

        if env.get('OCR_QUEUE_MAX_SIZE'):
            pool_data['max_queue_size'] = int(env['OCR_QUEUE_MAX_SIZE'])
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric environment variable: {e}") from e

    if env.get('OCR_ENGINE'):
        pool_data['engine'] = env['OCR_ENGINE']

    if env.get('OCR_LANGUAGES'):
        pool_data['engine_options'] = {'lang': env['OCR_LANGUAGES']}

    if env.get('LOG_LEVEL'):
        config_data['log_level'] = env['LOG_LEVEL']
        pool_data['log_level'] = env['LOG_LEVEL']

    if env.get('LOG_FILE'):
        config_data['log_file'] = env['LOG_FILE']

    if pool_data:
        config_data['pool'] = pool_data

    config = Config.from_dict(config_data)
    config.validate()
    return config
