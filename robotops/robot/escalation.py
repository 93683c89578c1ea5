import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Set

from robotops import monitoring
from robotops.integrations import slack

logger = logging.getLogger("robot.escalation")


@dataclass(frozen=True)
class EscalationContext:
    instance_id: str
    site_id: str
    activity_name: str
    reason: str
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    cycle: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class EscalationGateway:
    """Hands a stuck run over to a human.

    Delivery is best-effort: every channel failure is logged and reported to
    Sentry, and nothing is ever raised back into the run.
    """

    def __init__(self, api=None, *, use_slack: Optional[bool] = None, slack_sender=None):
        self.api = api
        self.use_slack = slack.is_configured() if use_slack is None else use_slack
        self.slack_sender = slack_sender or slack.send_escalation
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, context: EscalationContext) -> "asyncio.Task[bool]":
        task = asyncio.get_running_loop().create_task(self.escalate(context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def escalate(self, context: EscalationContext) -> bool:
        payload = context.to_payload()
        delivered = True
        attempted = False

        if self.api is not None:
            attempted = True
            try:
                await self.api.notify_attention(payload)
            except Exception as exc:
                delivered = False
                self._log_failure("api", context, exc)

        if self.use_slack:
            attempted = True
            try:
                await self.slack_sender(payload)
            except Exception as exc:
                delivered = False
                self._log_failure("slack", context, exc)

        if not attempted:
            logger.warning("escalation", extra={"escalation": {**payload, "status": "no_channel"}})
            return False
        if delivered:
            logger.info("escalation", extra={"escalation": {**payload, "status": "sent"}})
        return delivered

    @staticmethod
    def _log_failure(channel: str, context: EscalationContext, exc: Exception) -> None:
        logger.error(
            "escalation",
            extra={
                "escalation": {
                    "instance_id": context.instance_id,
                    "channel": channel,
                    "status": "failed",
                    "error": str(exc),
                }
            },
        )
        monitoring.capture_exception(exc)
