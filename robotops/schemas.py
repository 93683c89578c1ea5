from typing import Optional

from pydantic import BaseModel


class StepIn(BaseModel):
    id: Optional[str] = None
    order: Optional[int] = None
    title: Optional[str] = None
    status: Optional[str] = None
    result: Optional[str] = None


class PlanProgressIn(BaseModel):
    completed_steps: Optional[int] = None
    total_steps: Optional[int] = None
    percentage: Optional[float] = None


class TokenUsageIn(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class ActResponseData(BaseModel):
    """``data`` object returned by the plan act endpoint.

    Every field is optional; a missing or null flag means ``False``, a null
    count means zero and a missing message means the robot said nothing
    classifiable. ``agent_response`` takes precedence over ``message``.
    """

    agent_response: Optional[str] = None
    message: Optional[str] = None
    step: Optional[StepIn] = None
    plan_progress: Optional[PlanProgressIn] = None
    execution_time_ms: Optional[float] = None
    steps_executed: Optional[int] = None
    token_usage: Optional[TokenUsageIn] = None
    remote_instance_id: Optional[str] = None
    instance_plan_id: Optional[str] = None
    plan_completed: Optional[bool] = None
    is_blocked: Optional[bool] = None
    waiting_for_session: Optional[bool] = None
    requires_continuation: Optional[bool] = None
    plan_failed: Optional[bool] = None
    failure_reason: Optional[str] = None
    instance_status: Optional[str] = None
    instance_paused: Optional[bool] = None
    waiting_for_instructions: Optional[bool] = None


class CreatePlanData(BaseModel):
    instance_plan_id: Optional[str] = None
    plan_id: Optional[str] = None

    @property
    def resolved_plan_id(self) -> Optional[str]:
        return self.instance_plan_id or self.plan_id


class RobotStartIn(BaseModel):
    site_id: str
    activity: str
    user_id: Optional[str] = None


class RobotRunIn(BaseModel):
    site_id: str
    activity: str
    instance_id: str
    instance_plan_id: Optional[str] = None
    user_id: Optional[str] = None
    enqueue: bool = False
