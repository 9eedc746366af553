import logging

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.core.deps import get_current_claims, get_stats_cache
from filevault.core.security import Claims
from filevault.database import get_async_session
from filevault.repositories.files import FileRepository
from filevault.schemas.stats import SystemStats
from filevault.services.stats import StatsCache

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/stats",
    tags=["Stats"]
)


@router.get("", response_model=SystemStats)
async def get_stats(
    session: AsyncSession = Depends(get_async_session),
    claims: Claims = Depends(get_current_claims),
    cache: StatsCache = Depends(get_stats_cache),
):
    # OS enumeration runs off the event loop; the aggregate below is always fresh
    snap = await run_in_threadpool(cache.snapshot)
    metrics = snap.metrics

    try:
        total_files, total_file_size = await FileRepository(session).aggregate(claims.user_id)
    except SQLAlchemyError:
        log.exception("File aggregate failed for %s", claims.user_id)
        raise HTTPException(status_code=500, detail="Database error")

    return SystemStats(
        cpu_usage=metrics.cpu_usage,
        memory_used=metrics.memory_used,
        memory_total=metrics.memory_total,
        memory_percent=cache.memory_percent(metrics),
        disk_used=metrics.disk_used,
        disk_total=metrics.disk_total,
        disk_percent=cache.disk_percent(metrics),
        network_rx=metrics.network_rx,
        network_tx=metrics.network_tx,
        total_files=total_files,
        total_file_size=total_file_size,
        uptime=metrics.uptime,
        update_rate_hz=cache.update_rate_hz,
        sampled_at=snap.sampled_at,
    )
