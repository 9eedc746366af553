from datetime import datetime

from pydantic import BaseModel


class SystemStats(BaseModel):
    cpu_usage: float
    memory_used: int
    memory_total: int
    memory_percent: float
    disk_used: int
    disk_total: int
    disk_percent: float
    network_rx: int
    network_tx: int
    total_files: int
    total_file_size: int
    uptime: int
    update_rate_hz: int
    sampled_at: datetime
