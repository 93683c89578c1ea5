import logging
from datetime import timedelta
from typing import List

from sqlmodel import select

from robotops.db import ExecutionStatus, get_session, utcnow

logger = logging.getLogger(__name__)

STUCK_HOURS_THRESHOLD = 2


async def reset_stuck_runs(hours_threshold: float = STUCK_HOURS_THRESHOLD) -> List[ExecutionStatus]:
    """Mark RUNNING status rows untouched for ``hours_threshold`` hours as FAILED.

    A worker that dies mid-run never writes its final status; this keeps the
    last-run table from reporting such runs as live forever.
    """
    cutoff = utcnow() - timedelta(hours=hours_threshold)
    async with get_session() as session:
        rows = (
            await session.exec(
                select(ExecutionStatus)
                .where(ExecutionStatus.status == "RUNNING", ExecutionStatus.updated_at < cutoff)
                .order_by(ExecutionStatus.updated_at.desc())
            )
        ).all()
        now = utcnow()
        for row in rows:
            row.status = "FAILED"
            row.error_message = f"Run stuck in RUNNING for more than {hours_threshold} hours"
            row.updated_at = now
            session.add(row)
            logger.warning(
                "Resetting stuck run for site %s activity %s (instance %s)",
                row.site_id,
                row.activity_name,
                row.instance_id,
            )
        await session.commit()
    return list(rows)
