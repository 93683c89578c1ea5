import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from robotops.robot.errors import PlanReplacementFailed, RemoteCallError, TransportExhausted
from robotops.robot.state import PlanExecutionState
from robotops.schemas import CreatePlanData

logger = logging.getLogger("robot.planning")

RECENT_STEP_LIMIT = 3


def build_error_context(state: PlanExecutionState, limit: int = RECENT_STEP_LIMIT) -> Dict[str, Any]:
    return {
        "previous_plan_id": state.plan_id,
        "cycle_count": state.cycle_count,
        "recent_steps": [step.to_dict() for step in state.recent_steps(limit)],
    }


class PlanReplacementGateway:
    def __init__(self, api):
        self.api = api

    async def request_new_plan(
        self,
        site_id: str,
        activity_name: str,
        instance_id: str,
        error_context: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> str:
        """Ask the planning service for a fresh plan and return its id.

        Transport exhaustion propagates unchanged; every other failure,
        including a reply without a plan id, becomes PlanReplacementFailed.
        """
        try:
            data = await self.api.create_plan(site_id, activity_name, instance_id, user_id, error_context)
        except TransportExhausted:
            raise
        except RemoteCallError as exc:
            raise PlanReplacementFailed(f"Plan creation failed: {exc}") from exc

        try:
            plan_id = CreatePlanData.model_validate(data or {}).resolved_plan_id
        except ValidationError as exc:
            raise PlanReplacementFailed(f"Plan creation returned an unexpected payload: {exc}") from exc
        if not plan_id:
            raise PlanReplacementFailed("Plan creation did not return an instance_plan_id")

        logger.info(
            "plan_replaced",
            extra={
                "planning": {
                    "instance_id": instance_id,
                    "previous_plan_id": error_context.get("previous_plan_id"),
                    "plan_id": plan_id,
                }
            },
        )
        return plan_id
