import asyncio
import os
from typing import Any, Dict, Optional

from celery import Celery

from robotops import monitoring
from robotops.jobs import reset_stuck_runs
from robotops.robot.orchestrator import run_robot_workflow
from robotops.robot.start import start_robot


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL", "redis://localhost:6379/0")


celery_app = Celery(
    "robotops",
    broker=_broker_url(),
    backend=os.getenv("CELERY_RESULT_BACKEND", _broker_url()),
)
celery_app.conf.task_acks_late = True


@celery_app.on_after_configure.connect
def _setup_monitoring(sender, **kwargs) -> None:
    monitoring.init_monitoring()


@celery_app.task
def start_robot_task(site_id: str, activity: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    return asyncio.run(start_robot(site_id, activity, user_id)).to_dict()


@celery_app.task
def run_robot_task(
    site_id: str,
    activity: str,
    instance_id: str,
    instance_plan_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    result = asyncio.run(run_robot_workflow(site_id, activity, instance_id, instance_plan_id, user_id))
    return result.to_dict()


@celery_app.task
def reset_stuck_runs_task(hours_threshold: float = 2) -> int:
    return len(asyncio.run(reset_stuck_runs(hours_threshold)))
