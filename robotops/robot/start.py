import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from robotops import monitoring
from robotops.integrations import robots_api
from robotops.robot.errors import RemoteCallError

logger = logging.getLogger("robot.start")


@dataclass
class StartRobotResult:
    success: bool
    site_id: str
    activity: str
    user_id: Optional[str] = None
    instance_id: Optional[str] = None
    instance_plan_id: Optional[str] = None
    instance_data: Optional[Dict[str, Any]] = None
    plan_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.__dict__)
        payload["executed_at"] = self.executed_at.isoformat()
        return payload


async def start_robot(site_id: str, activity: str, user_id: Optional[str] = None, *, api=None) -> StartRobotResult:
    """Create a robot instance and ask the planning service for its first plan."""
    api = api or robots_api.get_client()
    result = StartRobotResult(success=False, site_id=site_id, activity=activity, user_id=user_id)

    try:
        instance_data = await api.create_instance(site_id, activity, user_id)
    except RemoteCallError as exc:
        monitoring.capture_exception(exc)
        result.error = f"Instance call failed: {exc}"
        return result

    result.instance_data = instance_data
    instance_id = (instance_data or {}).get("instance_id")
    if not instance_id:
        logger.error("start", extra={"start": {"site_id": site_id, "activity": activity, "status": "missing_instance_id"}})
        result.error = "Instance API did not return instance_id"
        return result
    result.instance_id = instance_id

    try:
        plan_data = await api.create_plan(site_id, activity, instance_id, user_id)
    except RemoteCallError as exc:
        monitoring.capture_exception(exc)
        result.error = f"Plan call failed: {exc}"
        return result

    result.plan_data = plan_data
    result.instance_plan_id = (plan_data or {}).get("instance_plan_id")
    result.success = True
    logger.info(
        "start",
        extra={
            "start": {
                "site_id": site_id,
                "activity": activity,
                "instance_id": instance_id,
                "instance_plan_id": result.instance_plan_id,
                "status": "started",
            }
        },
    )
    return result
