import logging
import os
import traceback
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sqlmodel import select

from robotops.db import ExecutionStatus, RunHistory, get_session, utcnow

_logger = logging.getLogger("robotops")
_initialized = False


def init_monitoring() -> None:
    global _initialized
    if _initialized:
        return

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    dsn = os.getenv("SENTRY_DSN")
    if dsn:
        sentry_logging = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
        sentry_sdk.init(
            dsn=dsn,
            integrations=[sentry_logging],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
            environment=os.getenv("SENTRY_ENVIRONMENT", os.getenv("ENVIRONMENT", "development")),
        )
        _logger.info("Sentry initialized")
    else:
        _logger.info("Sentry DSN not provided; skipping initialization")

    _initialized = True


async def record_run(
    *,
    stage: str,
    site_id: str,
    activity_name: str,
    success: bool,
    duration_ms: float,
    instance_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    user_id: Optional[str] = None,
    error_text: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    entry = RunHistory(
        site_id=site_id,
        activity_name=activity_name,
        instance_id=instance_id,
        plan_id=plan_id,
        user_id=user_id,
        stage=stage,
        success=success,
        error_text=error_text[:1024] if error_text else None,
        duration_ms=duration_ms,
        details=details,
    )
    async with get_session() as session:
        session.add(entry)
        await session.commit()


async def update_status(
    *,
    site_id: str,
    activity_name: str,
    status: str,
    instance_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    error_message: Optional[str] = None,
) -> ExecutionStatus:
    """Upsert the last-run row for ``site_id`` / ``activity_name``."""
    now = utcnow()
    async with get_session() as session:
        row = (
            await session.exec(
                select(ExecutionStatus).where(
                    ExecutionStatus.site_id == site_id,
                    ExecutionStatus.activity_name == activity_name,
                )
            )
        ).first()
        if not row:
            row = ExecutionStatus(site_id=site_id, activity_name=activity_name, created_at=now)
        row.status = status
        row.instance_id = instance_id or row.instance_id
        row.plan_id = plan_id or row.plan_id
        row.error_message = error_message[:1024] if error_message else None
        row.last_run = now
        row.updated_at = now
        session.add(row)
        await session.commit()
        await session.refresh(row)
        return row


async def get_status(site_id: str, activity_name: str) -> Optional[ExecutionStatus]:
    async with get_session() as session:
        return (
            await session.exec(
                select(ExecutionStatus).where(
                    ExecutionStatus.site_id == site_id,
                    ExecutionStatus.activity_name == activity_name,
                )
            )
        ).first()


def capture_exception(exc: BaseException) -> None:
    _logger.error("Exception captured", exc_info=exc)
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc)


def format_exception(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
