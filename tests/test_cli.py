"""
Тесты для командной строки.
"""

import json
from concurrent.futures import Future
from unittest.mock import Mock

import pytest

from ocr_pool.cli import build_config, build_parser, main, process_files
from ocr_pool.exceptions import ConfigurationError, QueueFull
from ocr_pool.utils.logger import setup_logging
from ocr_pool.utils.config import Config, save_config


@pytest.fixture(autouse=True)
def quiet_logging():
    """Консольный обработчик CLI не должен пережить перехват stderr теста."""
    yield
    setup_logging("WARNING", enable_console=False)


def parse_output(output: str):
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class TestBuildConfig:
    """Тесты сборки конфигурации из аргументов."""

    def test_defaults(self):
        """Тест конфигурации по умолчанию."""
        config = build_config(build_parser().parse_args([]))
        assert config.pool == Config().pool

    def test_overrides(self):
        """Тест переопределения параметров."""
        args = build_parser().parse_args([
            "--workers", "3", "--timeout", "4.5", "--engine", "tests.engines:ScriptedEngine",
            "--log-level", "DEBUG"
        ])
        config = build_config(args)

        assert config.pool.pool_size == 3
        assert config.pool.task_timeout == 4.5
        assert config.pool.engine == "tests.engines:ScriptedEngine"
        assert config.log_level == "DEBUG"
        assert config.pool.log_level == "DEBUG"

    def test_config_file(self, tmp_path):
        """Тест загрузки из файла с переопределением."""
        path = tmp_path / "config.yaml"
        save_config(Config().with_pool(pool_size=5, max_queue_size=7), path)

        config = build_config(build_parser().parse_args(["--config", str(path), "--workers", "2"]))
        assert config.pool.pool_size == 2
        assert config.pool.max_queue_size == 7

    def test_env(self, monkeypatch):
        """Тест загрузки из окружения."""
        monkeypatch.setenv("OCR_WORKER_THREADS", "6")
        monkeypatch.setenv("OCR_TIMEOUT_MS", "1500")

        config = build_config(build_parser().parse_args(["--env"]))
        assert config.pool.pool_size == 6
        assert config.pool.task_timeout == 1.5

    def test_invalid_override(self):
        """Тест некорректного значения."""
        with pytest.raises(ConfigurationError):
            build_config(build_parser().parse_args(["--workers", "0"]))


class TestMain:
    """Тесты запуска командной строки."""

    def test_process_files(self, tmp_path, capsys):
        """Тест распознавания файлов."""
        first = tmp_path / "page1.txt"
        second = tmp_path / "page2.txt"
        first.write_text("first page", encoding="utf-8")
        second.write_text("second page text", encoding="utf-8")

        exit_code = main(["--workers", "1", "--log-level", "WARNING", str(first), str(second)])

        assert exit_code == 0
        records = parse_output(capsys.readouterr().out)
        assert [r["file"] for r in records] == [str(first), str(second)]
        assert records[0]["result"]["text"] == "first page"
        assert len(records[1]["result"]["words"]) == 3

    def test_missing_file(self, tmp_path, capsys):
        """Тест отсутствующего файла."""
        existing = tmp_path / "page.txt"
        existing.write_text("text", encoding="utf-8")
        missing = tmp_path / "missing.txt"

        exit_code = main(["--workers", "1", "--log-level", "WARNING", str(missing), str(existing)])

        assert exit_code == 1
        records = parse_output(capsys.readouterr().out)
        assert records[0]["kind"] == "io_error"
        assert records[1]["result"]["text"] == "text"

    def test_task_error_is_reported(self, tmp_path, capsys):
        """Тест ошибки движка в выводе."""
        page = tmp_path / "page.bin"
        page.write_bytes(b"\xff\xfe\xfa")

        exit_code = main(["--workers", "1", "--log-level", "WARNING", str(page)])

        assert exit_code == 1
        record = parse_output(capsys.readouterr().out)[0]
        assert record["kind"] == "engine_failure"
        assert "UnicodeDecodeError" in record["error"]

    def test_rejected_submit_is_reported(self, tmp_path, capsys):
        """Тест: отказ пула принять файл не теряет результаты остальных."""
        first = tmp_path / "page1.txt"
        second = tmp_path / "page2.txt"
        first.write_text("first", encoding="utf-8")
        second.write_text("second", encoding="utf-8")

        done = Future()
        done.set_result({"text": "first"})
        pool = Mock()
        pool.submit.side_effect = [done, QueueFull("Wait queue is full", "task-2")]

        exit_code = process_files(pool, [str(first), str(second)])

        assert exit_code == 1
        records = {r["file"]: r for r in parse_output(capsys.readouterr().out)}
        assert records[str(second)]["kind"] == "queue_full"
        assert records[str(first)]["result"]["text"] == "first"

    def test_configuration_error(self, capsys):
        """Тест ошибки конфигурации."""
        assert main(["--workers", "0", "file.txt"]) == 2
        assert "Ошибка конфигурации" in capsys.readouterr().err

    def test_init_error(self, tmp_path):
        """Тест ошибки запуска пула."""
        page = tmp_path / "page.txt"
        page.write_text("text", encoding="utf-8")

        exit_code = main([
            "--workers", "1", "--log-level", "WARNING",
            "--engine", "tests.engines:BrokenInitEngine", str(page)
        ])
        assert exit_code == 1
