import re
from typing import Callable, List, Optional

from robotops.robot.state import (
    NewPlanRequired,
    NewSessionAcquired,
    ParsedResponse,
    PlanFailed,
    SessionNeeded,
    StepCanceled,
    StepCompleted,
    StepFailed,
    Unclassified,
    UserAttentionRequired,
)

_PLAN_FAILED = re.compile(r"plan\s+failed:\s*(.+)", re.IGNORECASE | re.DOTALL)
_USER_ATTENTION = re.compile(r"user\s+attention\s+required:\s*(.+)", re.IGNORECASE | re.DOTALL)
_NEW_SESSION = re.compile(
    r"new\s+(\w+)\s+session\s+acquired(?:\s+(?:for|on)\s+(\S+))?",
    re.IGNORECASE,
)
_SESSION_NEEDED = re.compile(r"session\s+needed\s+(\w+)(?:\s+(\S+))?", re.IGNORECASE)
_NEW_PLAN = re.compile(r"\bnew\s+plan\b", re.IGNORECASE)
_STEP_FINISHED = re.compile(r"(?:step\s+(\d+)\s+)?finished", re.IGNORECASE)
_STEP_FAILED = re.compile(r"(?:step\s+(\d+)\s+)?failed", re.IGNORECASE)
_STEP_CANCELED = re.compile(r"(?:step\s+(\d+)\s+)?cancell?ed", re.IGNORECASE)


def _step_number(match: "re.Match[str]") -> Optional[int]:
    return int(match.group(1)) if match.group(1) else None


def _domain(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.rstrip(".,;:") or None


def _plan_failed(text: str) -> Optional[ParsedResponse]:
    match = _PLAN_FAILED.search(text)
    return PlanFailed(reason=match.group(1).strip()) if match else None


def _user_attention(text: str) -> Optional[ParsedResponse]:
    match = _USER_ATTENTION.search(text)
    return UserAttentionRequired(explanation=match.group(1).strip()) if match else None


def _new_session(text: str) -> Optional[ParsedResponse]:
    match = _NEW_SESSION.search(text)
    if not match:
        return None
    return NewSessionAcquired(platform=match.group(1), domain=_domain(match.group(2)))


def _session_needed(text: str) -> Optional[ParsedResponse]:
    match = _SESSION_NEEDED.search(text)
    if not match:
        return None
    return SessionNeeded(platform=match.group(1), domain=_domain(match.group(2)))


def _new_plan(text: str) -> Optional[ParsedResponse]:
    return NewPlanRequired() if _NEW_PLAN.search(text) else None


def _step_finished(text: str) -> Optional[ParsedResponse]:
    match = _STEP_FINISHED.search(text)
    return StepCompleted(step_number=_step_number(match)) if match else None


def _step_failed(text: str) -> Optional[ParsedResponse]:
    match = _STEP_FAILED.search(text)
    return StepFailed(step_number=_step_number(match)) if match else None


def _step_canceled(text: str) -> Optional[ParsedResponse]:
    match = _STEP_CANCELED.search(text)
    return StepCanceled(step_number=_step_number(match)) if match else None


# Order matters: the plan/attention/session phrases contain the generic
# "failed" and "finished" words, so they are checked first.
RULES: List[Callable[[str], Optional[ParsedResponse]]] = [
    _plan_failed,
    _user_attention,
    _new_session,
    _session_needed,
    _new_plan,
    _step_finished,
    _step_failed,
    _step_canceled,
]


def classify(raw: Optional[str]) -> ParsedResponse:
    """Map a free-form robot message onto exactly one response category.

    Pure and deterministic: the same text always yields an equal value, and
    anything no rule recognises becomes ``Unclassified``.
    """
    if not raw or not raw.strip():
        return Unclassified()
    text = raw.strip()
    for rule in RULES:
        parsed = rule(text)
        if parsed is not None:
            return parsed
    return Unclassified()
