import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import psutil

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class OSMetrics:
    cpu_usage: float
    memory_used: int
    memory_total: int
    disk_used: int
    disk_total: int
    network_rx: int
    network_tx: int
    uptime: int


@dataclass(frozen=True)
class StatsSnapshot:
    metrics: OSMetrics
    refreshed_at: float
    sampled_at: datetime


def _percent(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return used / total * 100


def prime_cpu_percent() -> None:
    # the first non-blocking cpu_percent call only sets the baseline and reports 0.0
    psutil.cpu_percent(interval=None)


def collect_os_metrics() -> OSMetrics:
    """Read CPU, memory, disk, network and uptime figures from the OS."""
    memory = psutil.virtual_memory()

    disk_used = disk_total = 0
    seen_devices = set()
    for partition in psutil.disk_partitions(all=False):
        if partition.device in seen_devices:
            continue
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError:
            log.debug("Skipping unreadable mount %s", partition.mountpoint)
            continue
        seen_devices.add(partition.device)
        disk_used += usage.used
        disk_total += usage.total

    net = psutil.net_io_counters()
    network_rx = net.bytes_recv if net else 0
    network_tx = net.bytes_sent if net else 0

    return OSMetrics(
        cpu_usage=psutil.cpu_percent(interval=None),
        memory_used=memory.used,
        memory_total=memory.total,
        disk_used=disk_used,
        disk_total=disk_total,
        network_rx=network_rx,
        network_tx=network_tx,
        uptime=max(int(time.time() - psutil.boot_time()), 0),
    )


class StatsCache:
    """
    Holds the last OS metrics snapshot and re-reads it at most once per
    ``refresh_interval`` seconds.

    The lock only guards the synchronous check-and-refresh; callers get an
    immutable snapshot back and do their own I/O after it is released.
    """

    def __init__(
        self,
        refresh_interval: float = 0.5,
        collector: Callable[[], OSMetrics] = collect_os_metrics,
        clock: Callable[[], float] = time.monotonic,
    ):
        if refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        self.refresh_interval = refresh_interval
        self._collector = collector
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[StatsSnapshot] = None
        if collector is collect_os_metrics:
            prime_cpu_percent()

    @property
    def update_rate_hz(self) -> int:
        return round(1 / self.refresh_interval)

    def snapshot(self, now: Optional[float] = None) -> StatsSnapshot:
        with self._lock:
            if now is None:
                now = self._clock()
            self._refresh_if_stale(now)
            return self._snapshot

    def _refresh_if_stale(self, now: float) -> None:
        current = self._snapshot
        if current is not None and now - current.refreshed_at < self.refresh_interval:
            return
        self._snapshot = StatsSnapshot(
            metrics=self._collector(),
            refreshed_at=now,
            sampled_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def memory_percent(metrics: OSMetrics) -> float:
        return _percent(metrics.memory_used, metrics.memory_total)

    @staticmethod
    def disk_percent(metrics: OSMetrics) -> float:
        return _percent(metrics.disk_used, metrics.disk_total)
