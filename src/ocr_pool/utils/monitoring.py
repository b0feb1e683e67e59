"""
Health-check и мониторинг процессов пула воркеров.
"""

import psutil
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, asdict
from datetime import datetime

from .config import MonitoringConfig
from .logger import get_logger, get_log_metrics


logger = get_logger(__name__)


@dataclass
class UnitProcessStats:
    """Ресурсы процесса одного воркера."""
    unit_id: str
    pid: Optional[int]
    alive: bool = False
    rss_mb: float = 0.0
    cpu_percent: float = 0.0


@dataclass
class HealthStatus:
    """Статус здоровья пула."""
    is_healthy: bool = True
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


class HealthChecker:
    """
    Проверка здоровья пула.

    Пул передается как объект с методами ``snapshot()`` и ``unit_pids()``,
    поэтому модуль не зависит от координатора.
    """

    def __init__(self, pool, config: Optional[MonitoringConfig] = None):
        self.pool = pool
        self.config = config or MonitoringConfig()
        self._processes: Dict[int, psutil.Process] = {}

    def collect_unit_stats(self) -> List[UnitProcessStats]:
        """Сбор метрик процессов воркеров через psutil."""
        stats = []
        live_pids = set()

        for unit_id, pid in self.pool.unit_pids().items():
            entry = UnitProcessStats(unit_id=unit_id, pid=pid)
            if pid is None:
                stats.append(entry)
                continue

            live_pids.add(pid)
            try:
                # Кэшируем psutil.Process: cpu_percent считается между вызовами
                process = self._processes.get(pid)
                if process is None:
                    process = psutil.Process(pid)
                    self._processes[pid] = process
                with process.oneshot():
                    entry.alive = process.is_running() and process.status() != psutil.STATUS_ZOMBIE
                    entry.rss_mb = process.memory_info().rss / (1024 * 1024)
                    entry.cpu_percent = process.cpu_percent(interval=None)
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.debug(f"Could not sample unit {unit_id} (pid {pid}): {e}")
                self._processes.pop(pid, None)

            stats.append(entry)

        # Забываем процессы, которых больше нет в пуле
        for pid in list(self._processes):
            if pid not in live_pids:
                del self._processes[pid]

        return stats

    def check_health(self) -> HealthStatus:
        """Выполнение всех проверок здоровья."""
        issues = []
        warnings = []

        snapshot = self.pool.snapshot()

        if not snapshot.initialized:
            issues.append(f"Pool is not initialized (state: {snapshot.state})")

        if snapshot.degraded:
            issues.append("Pool capacity is degraded: unit replacement gave up")

        if snapshot.initialized and snapshot.total_units < snapshot.target_units:
            live = snapshot.total_units + snapshot.starting_units
            message = f"Pool has {snapshot.total_units}/{snapshot.target_units} ready units"
            if live >= snapshot.target_units:
                warnings.append(message + " (replacement in progress)")
            else:
                issues.append(message)

        if snapshot.queued_tasks > self.config.queue_warning_threshold:
            warnings.append(f"High queue size: {snapshot.queued_tasks}")

        if self.config.collect_process_stats:
            for stats in self.collect_unit_stats():
                if stats.rss_mb > self.config.unit_memory_threshold_mb:
                    warnings.append(f"Unit {stats.unit_id} uses {stats.rss_mb:.1f} MB of memory")

        return HealthStatus(
            is_healthy=len(issues) == 0,
            issues=issues,
            warnings=warnings
        )

    def health_report(self) -> Dict[str, Any]:
        """Документ в формате health-эндпоинта OCR-сервиса."""
        snapshot = self.pool.snapshot()
        status = self.check_health()

        if snapshot.degraded:
            ocr_state = 'degraded'
        elif snapshot.initialized:
            ocr_state = 'healthy'
        else:
            ocr_state = 'initializing'

        units = []
        if self.config.collect_process_stats:
            units = [asdict(stats) for stats in self.collect_unit_stats()]

        return {
            'status': 'ok' if status.is_healthy else 'error',
            'timestamp': status.timestamp.isoformat(),
            'services': {
                'ocr': ocr_state,
                'workerPool': snapshot.to_dict(),
            },
            'issues': status.issues,
            'warnings': status.warnings,
            'units': units,
            'logs': get_log_metrics(),
        }

    def is_healthy(self) -> bool:
        """Быстрая проверка здоровья пула."""
        return self.check_health().is_healthy
