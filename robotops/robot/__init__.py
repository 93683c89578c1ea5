from robotops.robot.classifier import classify
from robotops.robot.errors import (
    ExecutionLimitReached,
    PlanReplacementFailed,
    RemoteCallError,
    RobotRunError,
    RunCancelled,
    TransportExhausted,
)
from robotops.robot.orchestrator import RobotWorkflow, run_robot_workflow
from robotops.robot.start import start_robot
from robotops.robot.state import PlanExecutionState, RobotRunResult, StepResult, TerminalState

__all__ = [
    "classify",
    "ExecutionLimitReached",
    "PlanExecutionState",
    "PlanReplacementFailed",
    "RemoteCallError",
    "RobotRunError",
    "RobotRunResult",
    "RobotWorkflow",
    "RunCancelled",
    "StepResult",
    "TerminalState",
    "TransportExhausted",
    "run_robot_workflow",
    "start_robot",
]
