import os
from typing import Any, Dict, List, Optional

import httpx

SLACK_API_URL = "https://slack.com/api/chat.postMessage"
DEFAULT_TIMEOUT = float(os.getenv("SLACK_TIMEOUT_SECONDS", "10"))


def escalation_channel() -> Optional[str]:
    return os.getenv("ROBOT_ESCALATION_SLACK_CHANNEL") or None


def is_configured() -> bool:
    return bool(os.getenv("SLACK_BOT_TOKEN") and escalation_channel())


def build_escalation_blocks(context: Dict[str, Any]) -> List[Dict[str, Any]]:
    fields = [
        {"type": "mrkdwn", "text": f"*Site*\n{context.get('site_id')}"},
        {"type": "mrkdwn", "text": f"*Activity*\n{context.get('activity_name')}"},
        {"type": "mrkdwn", "text": f"*Instance*\n{context.get('instance_id')}"},
    ]
    if context.get("user_id"):
        fields.append({"type": "mrkdwn", "text": f"*User*\n{context['user_id']}"})
    return [
        {"type": "header", "text": {"type": "plain_text", "text": "Robot needs a human"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": context.get("reason") or "No reason given"}},
        {"type": "section", "fields": fields},
    ]


async def send_escalation(context: Dict[str, Any], *, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    token = os.getenv("SLACK_BOT_TOKEN")
    channel = escalation_channel()
    if not token or not channel:
        raise RuntimeError("Slack escalation channel not configured")

    payload = {
        "channel": channel,
        "text": f"Robot escalation for {context.get('site_id')}/{context.get('activity_name')}: {context.get('reason')}",
        "blocks": build_escalation_blocks(context),
    }
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json; charset=utf-8",
    }

    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, transport=transport) as client:
        response = await client.post(SLACK_API_URL, json=payload, headers=headers)
    try:
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPStatusError, ValueError) as exc:
        raise RuntimeError(f"Slack request failed: {exc}") from exc

    if not data.get("ok", False):
        raise RuntimeError(f"Slack API error: {data.get('error', 'unknown_error')}")
    return data
