"""
Граница движка задач.

Движок загружается один раз в каждом воркере (``initialize``), затем
обрабатывает задачи по одной (``run_job``). Пул ничего не знает о формате
payload и результата: это контракт между вызывающим кодом и движком.
"""

import importlib
from typing import Any, Callable, Dict, List, Mapping, Union

from .exceptions import ConfigurationError
from .utils.logger import get_logger


logger = get_logger(__name__)


EngineFactory = Callable[..., "JobEngine"]


class JobEngine:
    """Базовый класс движка, выполняемого внутри воркера."""

    def initialize(self) -> None:
        """Однократная загрузка движка при старте воркера."""

    def run_job(self, payload: Any) -> Any:
        """Выполнение одной задачи. Исключение превращается в ошибку задачи."""
        raise NotImplementedError

    def close(self) -> None:
        """Освобождение ресурсов при штатной остановке воркера."""


class TextEngine(JobEngine):
    """
    Эталонный движок для текстовых документов.

    Принимает ``bytes``/``str`` или словарь ``{"image": bytes, "options": {...}}``
    и возвращает результат в формате OCR-сервиса:
    ``{"text": str, "confidence": float, "words": [...]}``.
    """

    def __init__(self, lang: str = "eng", encoding: str = "utf-8"):
        self.lang = lang
        self.encoding = encoding
        self._ready = False

    def initialize(self) -> None:
        logger.info(f"TextEngine loaded (lang={self.lang})")
        self._ready = True

    def run_job(self, payload: Any) -> Dict[str, Any]:
        if not self._ready:
            raise RuntimeError("TextEngine is not initialized")

        options: Mapping[str, Any] = {}
        if isinstance(payload, Mapping):
            options = payload.get("options") or {}
            payload = payload.get("image")

        if isinstance(payload, (bytes, bytearray)):
            text = bytes(payload).decode(options.get("encoding", self.encoding))
        elif isinstance(payload, str):
            text = payload
        else:
            raise TypeError(f"Unsupported payload type: {type(payload).__name__}")

        text = text.strip()
        words: List[Dict[str, Any]] = [
            {"text": word, "index": index} for index, word in enumerate(text.split())
        ]
        return {
            "text": text,
            "confidence": 100.0 if text else 0.0,
            "words": words,
            "language": options.get("language", self.lang),
        }


def resolve_engine_factory(engine: Union[str, EngineFactory]) -> EngineFactory:
    """
    Получение фабрики движка.

    Args:
        engine: Вызываемый объект или строка ``"package.module:attribute"``

    Returns:
        Вызываемый объект, создающий ``JobEngine``
    """
    if callable(engine):
        return engine

    if not isinstance(engine, str) or ":" not in engine:
        raise ConfigurationError(f"Engine must be a callable or 'module:attribute', got {engine!r}")

    module_name, _, attr_path = engine.partition(":")
    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import engine module {module_name!r}: {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise ConfigurationError(f"Engine {engine!r} not found: {e}") from e

    if not callable(target):
        raise ConfigurationError(f"Engine {engine!r} is not callable")
    return target


def create_engine(engine: Union[str, EngineFactory], options: Mapping[str, Any] = None) -> JobEngine:
    """Создание и однократная инициализация движка (вызывается в процессе воркера)."""
    factory = resolve_engine_factory(engine)
    instance = factory(**dict(options or {}))
    instance.initialize()
    return instance
