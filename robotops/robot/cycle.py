import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from robotops.robot.classifier import classify
from robotops.robot.errors import RemoteCallError
from robotops.robot.state import PlanExecutionState, Progress, StepInfo, StepResult, TokenUsage
from robotops.schemas import ActResponseData

logger = logging.getLogger("robot.cycle")


def build_step_result(cycle: int, data: Dict[str, Any]) -> StepResult:
    parsed_data = ActResponseData.model_validate(data or {})
    raw_message = parsed_data.agent_response or parsed_data.message or ""
    progress = None
    if parsed_data.plan_progress:
        reported = parsed_data.plan_progress
        progress = Progress(
            completed_steps=reported.completed_steps or 0,
            total_steps=reported.total_steps or 0,
            percentage=reported.percentage or 0.0,
        )
    tokens = None
    if parsed_data.token_usage:
        tokens = TokenUsage(
            input_tokens=parsed_data.token_usage.input_tokens or 0,
            output_tokens=parsed_data.token_usage.output_tokens or 0,
        )
    step = None
    if parsed_data.step:
        step = StepInfo(**parsed_data.step.model_dump())
    execution_ms = None
    if parsed_data.execution_time_ms is not None:
        execution_ms = int(parsed_data.execution_time_ms)

    return StepResult(
        cycle=cycle,
        raw_message=raw_message,
        parsed=classify(raw_message),
        progress=progress,
        execution_time_ms=execution_ms,
        token_usage=tokens,
        step=step,
        steps_executed=parsed_data.steps_executed,
        remote_instance_id=parsed_data.remote_instance_id,
        instance_plan_id=parsed_data.instance_plan_id,
        is_blocked=bool(parsed_data.is_blocked),
        waiting_for_session=bool(parsed_data.waiting_for_session),
        requires_continuation=bool(parsed_data.requires_continuation),
        plan_completed=bool(parsed_data.plan_completed),
        plan_failed=bool(parsed_data.plan_failed),
        failure_reason=parsed_data.failure_reason,
        instance_status=parsed_data.instance_status,
        instance_paused=bool(parsed_data.instance_paused),
        waiting_for_instructions=bool(parsed_data.waiting_for_instructions),
    )


class CycleExecutor:
    """Runs one act round against the robot and turns the reply into a StepResult.

    The state is only read here; committing the result is the caller's job.
    """

    def __init__(self, api):
        self.api = api

    async def run_cycle(self, state: PlanExecutionState) -> StepResult:
        cycle = state.cycle_count + 1
        data = await self.api.act_on_plan(
            state.site_id,
            state.activity_name,
            state.instance_id,
            state.plan_id,
            state.user_id,
        )
        try:
            result = build_step_result(cycle, data)
        except ValidationError as exc:
            raise RemoteCallError("act_on_plan", f"unexpected response shape: {exc}") from exc
        self._log(state, result)
        return result

    @staticmethod
    def _log(state: PlanExecutionState, result: StepResult) -> None:
        payload: Dict[str, Optional[Any]] = {
            "instance_id": state.instance_id,
            "cycle": result.cycle,
            "response": result.parsed.tag,
            "plan_completed": result.plan_completed,
        }
        if result.progress:
            payload["progress"] = f"{result.progress.completed_steps}/{result.progress.total_steps} ({result.progress.percentage}%)"
        if result.step:
            payload["step"] = f"{result.step.title} ({result.step.status})"
        if result.execution_time_ms is not None:
            payload["execution_time_ms"] = result.execution_time_ms
        if result.is_blocked:
            payload["blocked"] = True
        if result.waiting_for_session:
            payload["waiting_for_session"] = True
        logger.info("cycle", extra={"cycle": payload})
