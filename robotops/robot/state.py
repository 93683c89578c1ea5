"""Value types for a single robot plan run."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

MAX_CYCLES = 100
MAX_USER_ATTENTION_RETRIES = 1


class TerminalState(str, Enum):
    NONE = "none"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ParsedResponse:
    tag: ClassVar[str] = "unclassified"

    def to_dict(self) -> Dict[str, Any]:
        payload = {k: v for k, v in self.__dict__.items() if v is not None}
        payload["type"] = self.tag
        return payload


@dataclass(frozen=True)
class StepCompleted(ParsedResponse):
    tag: ClassVar[str] = "step_completed"
    step_number: Optional[int] = None


@dataclass(frozen=True)
class StepFailed(ParsedResponse):
    tag: ClassVar[str] = "step_failed"
    step_number: Optional[int] = None


@dataclass(frozen=True)
class StepCanceled(ParsedResponse):
    tag: ClassVar[str] = "step_canceled"
    step_number: Optional[int] = None


@dataclass(frozen=True)
class PlanFailed(ParsedResponse):
    tag: ClassVar[str] = "plan_failed"
    reason: str = ""


@dataclass(frozen=True)
class NewPlanRequired(ParsedResponse):
    tag: ClassVar[str] = "new_plan_required"


@dataclass(frozen=True)
class NewSessionAcquired(ParsedResponse):
    tag: ClassVar[str] = "new_session_acquired"
    platform: str = ""
    domain: Optional[str] = None


@dataclass(frozen=True)
class SessionNeeded(ParsedResponse):
    tag: ClassVar[str] = "session_needed"
    platform: str = ""
    domain: Optional[str] = None


@dataclass(frozen=True)
class UserAttentionRequired(ParsedResponse):
    tag: ClassVar[str] = "user_attention_required"
    explanation: str = ""


@dataclass(frozen=True)
class Unclassified(ParsedResponse):
    tag: ClassVar[str] = "unclassified"


@dataclass(frozen=True)
class Progress:
    completed_steps: int = 0
    total_steps: int = 0
    percentage: float = 0.0


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class StepInfo:
    id: Optional[str] = None
    order: Optional[int] = None
    title: Optional[str] = None
    status: Optional[str] = None
    result: Optional[str] = None


@dataclass(frozen=True)
class StepResult:
    cycle: int
    raw_message: str
    parsed: ParsedResponse
    progress: Optional[Progress] = None
    execution_time_ms: Optional[int] = None
    token_usage: Optional[TokenUsage] = None
    step: Optional[StepInfo] = None
    steps_executed: Optional[int] = None
    remote_instance_id: Optional[str] = None
    instance_plan_id: Optional[str] = None
    is_blocked: bool = False
    waiting_for_session: bool = False
    requires_continuation: bool = False
    plan_completed: bool = False
    plan_failed: bool = False
    failure_reason: Optional[str] = None
    instance_status: Optional[str] = None
    instance_paused: bool = False
    waiting_for_instructions: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "message": self.raw_message,
            "parsed": self.parsed.to_dict(),
            "plan_progress": self.progress.__dict__ if self.progress else None,
            "execution_time_ms": self.execution_time_ms,
            "token_usage": self.token_usage.__dict__ if self.token_usage else None,
            "step": self.step.__dict__ if self.step else None,
            "steps_executed": self.steps_executed,
            "remote_instance_id": self.remote_instance_id,
            "instance_plan_id": self.instance_plan_id,
            "is_blocked": self.is_blocked,
            "waiting_for_session": self.waiting_for_session,
            "requires_continuation": self.requires_continuation,
            "plan_completed": self.plan_completed,
            "plan_failed": self.plan_failed,
            "failure_reason": self.failure_reason,
            "instance_status": self.instance_status,
            "instance_paused": self.instance_paused,
            "waiting_for_instructions": self.waiting_for_instructions,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PlanExecutionState:
    instance_id: str
    site_id: str
    activity_name: str
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    max_cycles: int = MAX_CYCLES
    max_user_attention_retries: int = MAX_USER_ATTENTION_RETRIES
    cycle_count: int = 0
    user_attention_retries: int = 0
    history: List[StepResult] = field(default_factory=list)
    terminal_state: TerminalState = TerminalState.NONE
    failure_reason: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.terminal_state is TerminalState.NONE and self.cycle_count < self.max_cycles

    def commit_cycle(self, result: StepResult) -> None:
        """Append a finished cycle and advance the counter as one step."""
        if self.cycle_count >= self.max_cycles:
            raise RuntimeError("cycle limit already reached")
        if result.cycle != self.cycle_count + 1:
            raise ValueError(f"expected cycle {self.cycle_count + 1}, got {result.cycle}")
        self.history.append(result)
        self.cycle_count += 1

    def finish(self, terminal_state: TerminalState, reason: Optional[str] = None) -> None:
        if terminal_state is TerminalState.NONE:
            raise ValueError("terminal state must be COMPLETED or FAILED")
        if self.terminal_state is not TerminalState.NONE:
            raise RuntimeError(f"run already finished as {self.terminal_state.value}")
        self.terminal_state = terminal_state
        if terminal_state is TerminalState.FAILED:
            self.failure_reason = reason or "Plan execution failed"

    def replace_plan(self, plan_id: str) -> None:
        self.plan_id = plan_id
        self.user_attention_retries = 0

    def reset_attention(self) -> None:
        self.user_attention_retries = 0

    def recent_steps(self, limit: int = 3) -> List[StepResult]:
        return self.history[-limit:] if limit > 0 else []


@dataclass
class RobotRunResult:
    success: bool
    instance_id: str
    site_id: str
    activity_name: str
    user_id: Optional[str] = None
    final_plan_id: Optional[str] = None
    history: List[StepResult] = field(default_factory=list)
    total_cycles: int = 0
    total_execution_time_ms: int = 0
    total_tokens: TokenUsage = field(default_factory=TokenUsage)
    final_progress: Optional[Progress] = None
    terminal_state: TerminalState = TerminalState.NONE
    error: Optional[str] = None
    error_kind: Optional[str] = None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_state(cls, state: PlanExecutionState, *, error: Optional[str] = None, error_kind: Optional[str] = None) -> "RobotRunResult":
        total_ms = sum(step.execution_time_ms or 0 for step in state.history)
        tokens = TokenUsage()
        for step in state.history:
            if step.token_usage:
                tokens = tokens + step.token_usage
        if error is None:
            error = state.failure_reason
        return cls(
            success=state.terminal_state is TerminalState.COMPLETED and error is None,
            instance_id=state.instance_id,
            site_id=state.site_id,
            activity_name=state.activity_name,
            user_id=state.user_id,
            final_plan_id=state.plan_id,
            history=list(state.history),
            total_cycles=state.cycle_count,
            total_execution_time_ms=total_ms,
            total_tokens=tokens,
            final_progress=state.history[-1].progress if state.history else None,
            terminal_state=state.terminal_state,
            error=error,
            error_kind=error_kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "instance_id": self.instance_id,
            "instance_plan_id": self.final_plan_id,
            "site_id": self.site_id,
            "activity": self.activity_name,
            "user_id": self.user_id,
            "plan_results": [step.to_dict() for step in self.history],
            "total_plan_cycles": self.total_cycles,
            "total_execution_time": self.total_execution_time_ms,
            "total_token_usage": self.total_tokens.__dict__,
            "final_progress": self.final_progress.__dict__ if self.final_progress else None,
            "terminal_state": self.terminal_state.value,
            "error": self.error,
            "error_kind": self.error_kind,
            "executed_at": self.executed_at.isoformat(),
        }
