import asyncio
import logging
import os
import time
from typing import Any, Dict, Optional

from robotops import monitoring
from robotops.integrations import robots_api
from robotops.robot.cycle import CycleExecutor
from robotops.robot.errors import ExecutionLimitReached, RobotRunError, RunCancelled
from robotops.robot.escalation import EscalationContext, EscalationGateway
from robotops.robot.planning import PlanReplacementGateway, build_error_context
from robotops.robot.sessions import SessionRegistry
from robotops.robot.state import (
    MAX_CYCLES,
    MAX_USER_ATTENTION_RETRIES,
    NewPlanRequired,
    NewSessionAcquired,
    PlanExecutionState,
    PlanFailed,
    RobotRunResult,
    SessionNeeded,
    StepCanceled,
    StepCompleted,
    StepFailed,
    StepResult,
    TerminalState,
    UserAttentionRequired,
)
from robotops.robot.timers import CancellableTimer, Sleeper

CYCLE_DELAY_SECONDS = float(os.getenv("ROBOT_CYCLE_DELAY_SECONDS", "30"))
USER_ATTENTION_DELAY_SECONDS = float(os.getenv("ROBOT_USER_ATTENTION_DELAY_SECONDS", "300"))
PAUSED_FAILURE_REASON = "Instance paused and waiting for instructions - manual intervention required"


def configured_max_cycles() -> int:
    """``ROBOT_MAX_CYCLES`` may lower the cycle limit but never raise it past ``MAX_CYCLES``."""
    return max(1, min(int(os.getenv("ROBOT_MAX_CYCLES", str(MAX_CYCLES))), MAX_CYCLES))


DEFAULT_MAX_CYCLES = configured_max_cycles()


class RobotWorkflow:
    """Drives a robot through act cycles until its plan completes or fails.

    Each cycle asks the robot to act, commits the resulting StepResult and
    then reacts to the classified reply: finishing the run, swapping the
    plan, saving a session, waiting for a human or simply pacing the next
    call. Plan failures and an exhausted attention budget end the run with
    ``success=False``; transport exhaustion, a failed plan replacement and
    the cycle limit raise a ``RobotRunError`` instead.
    """

    def __init__(
        self,
        site_id: str,
        activity_name: str,
        instance_id: str,
        *,
        plan_id: Optional[str] = None,
        user_id: Optional[str] = None,
        api=None,
        escalation: Optional[EscalationGateway] = None,
        planner: Optional[PlanReplacementGateway] = None,
        sessions: Optional[SessionRegistry] = None,
        max_cycles: int = DEFAULT_MAX_CYCLES,
        max_user_attention_retries: int = MAX_USER_ATTENTION_RETRIES,
        cycle_delay: float = CYCLE_DELAY_SECONDS,
        user_attention_delay: float = USER_ATTENTION_DELAY_SECONDS,
        stop_event: Optional[asyncio.Event] = None,
        sleep: Optional[Sleeper] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if api is None:
            api = robots_api.get_client()
        self.state = PlanExecutionState(
            instance_id=instance_id,
            site_id=site_id,
            activity_name=activity_name,
            plan_id=plan_id,
            user_id=user_id,
            max_cycles=min(max_cycles, MAX_CYCLES),
            max_user_attention_retries=max_user_attention_retries,
        )
        self.executor = CycleExecutor(api)
        self.escalation = escalation or EscalationGateway(api)
        self.planner = planner or PlanReplacementGateway(api)
        self.sessions = sessions or SessionRegistry()
        self.cycle_delay = cycle_delay
        self.user_attention_delay = user_attention_delay
        self.timer = CancellableTimer(stop_event, sleep)
        self.logger = logger or logging.getLogger("robot.workflow")

    async def run(self) -> RobotRunResult:
        state = self.state
        self._log("run", "start", extra={"plan_id": state.plan_id})
        try:
            while state.running:
                self.timer.check()
                result = await self.executor.run_cycle(state)
                self.timer.check()
                state.commit_cycle(result)
                self._adopt_plan_id(result)

                delay = await self._react(result)
                if state.running and delay > 0:
                    self._log("pace", "waiting", extra={"seconds": delay})
                    await self.timer.wait(delay)

            if state.terminal_state is TerminalState.NONE:
                self._log("run", "limit_reached", extra={"max_cycles": state.max_cycles})
                raise ExecutionLimitReached(state.max_cycles)
        finally:
            await self.escalation.drain()

        self._log("run", state.terminal_state.value, extra={"plan_id": state.plan_id})
        return RobotRunResult.from_state(state)

    def enqueue(self) -> "asyncio.Task[RobotRunResult]":
        loop = asyncio.get_running_loop()
        return loop.create_task(self.run())

    def cancel(self) -> None:
        self.timer.cancel()

    async def _react(self, result: StepResult) -> float:
        """Apply the policy for one committed cycle and return the pacing delay."""
        state = self.state
        parsed = result.parsed

        if isinstance(parsed, (StepCompleted, StepFailed, StepCanceled)):
            state.reset_attention()

        if result.instance_paused and result.waiting_for_instructions:
            self._fail(PAUSED_FAILURE_REASON)
            return 0

        if isinstance(parsed, PlanFailed):
            reason = f"Plan failed: {parsed.reason}"
            self._fail(result.failure_reason or reason)
            self._escalate(reason)
            return 0

        if result.plan_failed:
            self._fail(result.failure_reason or "Plan execution failed")
            return 0

        if self._is_complete(result):
            state.finish(TerminalState.COMPLETED)
            return 0

        if isinstance(parsed, NewPlanRequired):
            await self._replace_plan()
            return self.cycle_delay

        if isinstance(parsed, NewSessionAcquired):
            await self._save_session(parsed)
            return self.cycle_delay

        if isinstance(parsed, SessionNeeded):
            self._log("session", "needed", extra={"platform": parsed.platform, "domain": parsed.domain})
            return self.cycle_delay

        if isinstance(parsed, UserAttentionRequired):
            reason = f"User attention required: {parsed.explanation}"
            if state.user_attention_retries < state.max_user_attention_retries:
                state.user_attention_retries += 1
                self._log(
                    "attention",
                    "retrying",
                    extra={"retry": state.user_attention_retries, "explanation": parsed.explanation},
                )
                await self.timer.wait(self.user_attention_delay)
                return self.cycle_delay
            self._fail(reason)
            self._escalate(reason)
            return 0

        if isinstance(parsed, StepCompleted):
            return 0
        return self.cycle_delay

    def _fail(self, reason: str) -> None:
        self.state.finish(TerminalState.FAILED, reason)
        self._log("run", "failing", extra={"reason": reason})

    @staticmethod
    def _is_complete(result: StepResult) -> bool:
        if result.plan_completed:
            return True
        return (
            isinstance(result.parsed, StepCompleted)
            and result.progress is not None
            and result.progress.percentage == 100
        )

    def _adopt_plan_id(self, result: StepResult) -> None:
        if result.instance_plan_id and not self.state.plan_id:
            self.state.plan_id = result.instance_plan_id
            self._log("plan", "adopted", extra={"plan_id": result.instance_plan_id})

    async def _replace_plan(self) -> None:
        state = self.state
        error_context = build_error_context(state)
        try:
            plan_id = await self.planner.request_new_plan(
                state.site_id,
                state.activity_name,
                state.instance_id,
                error_context,
                user_id=state.user_id,
            )
        except RobotRunError as exc:
            state.finish(TerminalState.FAILED, str(exc))
            self._log("plan", "replacement_failed", extra={"error": str(exc)})
            raise
        previous = state.plan_id
        state.replace_plan(plan_id)
        self._log("plan", "replaced", extra={"previous_plan_id": previous, "plan_id": plan_id})

    async def _save_session(self, parsed: NewSessionAcquired) -> None:
        try:
            await self.sessions.save_session(self.state.instance_id, parsed.platform, parsed.domain)
        except Exception as exc:
            self._log("session", "save_failed", extra={"platform": parsed.platform, "error": str(exc)})
            monitoring.capture_exception(exc)

    def _escalate(self, reason: str) -> None:
        state = self.state
        context = EscalationContext(
            instance_id=state.instance_id,
            site_id=state.site_id,
            activity_name=state.activity_name,
            reason=reason,
            user_id=state.user_id,
            plan_id=state.plan_id,
            cycle=state.cycle_count,
        )
        self._log("escalation", "dispatched", extra={"reason": reason})
        self.escalation.dispatch(context)

    def _log(self, step: str, status: str, extra: Optional[Dict[str, Any]] = None) -> None:
        state = self.state
        payload = {
            "site_id": state.site_id,
            "activity": state.activity_name,
            "instance_id": state.instance_id,
            "cycle": state.cycle_count,
            "step": step,
            "status": status,
        }
        if extra:
            payload.update(extra)
        self.logger.info("workflow", extra={"workflow": payload})


async def _safe_status(**kwargs: Any) -> None:
    try:
        await monitoring.update_status(**kwargs)
    except Exception as exc:
        monitoring.capture_exception(exc)


async def _safe_record(**kwargs: Any) -> None:
    try:
        await monitoring.record_run(**kwargs)
    except Exception as exc:
        monitoring.capture_exception(exc)


async def run_robot_workflow(
    site_id: str,
    activity: str,
    instance_id: str,
    instance_plan_id: Optional[str] = None,
    user_id: Optional[str] = None,
    *,
    record: bool = True,
    **options: Any,
) -> RobotRunResult:
    """Run a robot plan to the end and return a result instead of raising.

    ``RobotRunError`` subclasses are folded into ``success=False`` with
    ``error_kind`` naming the cause, so callers can decide whether the whole
    invocation is worth retrying.
    """
    workflow = RobotWorkflow(site_id, activity, instance_id, plan_id=instance_plan_id, user_id=user_id, **options)
    if record:
        await _safe_status(site_id=site_id, activity_name=activity, status="RUNNING", instance_id=instance_id, plan_id=instance_plan_id)

    started = time.perf_counter()
    try:
        result = await workflow.run()
    except RobotRunError as exc:
        if not isinstance(exc, RunCancelled):
            monitoring.capture_exception(exc)
        result = RobotRunResult.from_state(workflow.state, error=str(exc), error_kind=exc.kind)
    duration_ms = (time.perf_counter() - started) * 1000

    if record:
        if result.success:
            status = "COMPLETED"
        elif result.error_kind:
            status = "ERROR"
        else:
            status = "FAILED"
        await _safe_status(
            site_id=site_id,
            activity_name=activity,
            status=status,
            instance_id=instance_id,
            plan_id=result.final_plan_id,
            error_message=result.error,
        )
        await _safe_record(
            stage="robot_plan",
            site_id=site_id,
            activity_name=activity,
            instance_id=instance_id,
            plan_id=result.final_plan_id,
            user_id=user_id,
            success=result.success,
            duration_ms=duration_ms,
            error_text=result.error,
            details={
                "total_cycles": result.total_cycles,
                "terminal_state": result.terminal_state.value,
                "error_kind": result.error_kind,
            },
        )
    return result
