from typing import Optional


class RobotRunError(Exception):
    """Base class for conditions that abort a robot run instead of failing the plan."""

    kind = "error"


class RemoteCallError(RobotRunError):
    """The robots API rejected a call in a way retrying cannot fix."""

    kind = "remote_call"

    def __init__(self, endpoint: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


class TransportExhausted(RemoteCallError):
    """A remote call kept failing transiently until the attempt budget ran out."""

    kind = "transport"

    def __init__(self, endpoint: str, attempts: int, message: str, status_code: Optional[int] = None):
        super().__init__(endpoint, f"failed after {attempts} attempts: {message}", status_code)
        self.attempts = attempts


class PlanReplacementFailed(RobotRunError):
    kind = "plan_replacement"


class ExecutionLimitReached(RobotRunError):
    kind = "execution_limit"

    def __init__(self, max_cycles: int):
        super().__init__(f"Execution limit reached: plan did not finish within {max_cycles} cycles")
        self.max_cycles = max_cycles


class RunCancelled(RobotRunError):
    kind = "cancelled"
