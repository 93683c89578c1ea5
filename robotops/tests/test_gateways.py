import json

import httpx
import pytest

from robotops.integrations import slack
from robotops.robot.errors import PlanReplacementFailed, RemoteCallError, TransportExhausted
from robotops.robot.escalation import EscalationContext, EscalationGateway
from robotops.robot.planning import PlanReplacementGateway, build_error_context
from robotops.robot.sessions import SessionRegistry
from robotops.robot.start import start_robot
from robotops.robot.state import PlanExecutionState, StepResult, Unclassified

pytestmark = pytest.mark.asyncio


CONTEXT = EscalationContext(
    instance_id="inst-1",
    site_id="site-1",
    activity_name="outreach",
    reason="Plan failed: blocked",
    user_id="user-1",
)


async def test_escalation_sends_to_api_and_slack(fake_api):
    api = fake_api([])
    sent = []

    async def slack_sender(payload):
        sent.append(payload)

    gateway = EscalationGateway(api, use_slack=True, slack_sender=slack_sender)

    assert await gateway.escalate(CONTEXT) is True
    assert api.notifications == [CONTEXT.to_payload()]
    assert sent[0]["reason"] == "Plan failed: blocked"


async def test_escalation_failures_are_swallowed(fake_api):
    api = fake_api([], notify_error=RemoteCallError("/api/notifications/robotAttention", "HTTP 500"))

    async def slack_sender(payload):
        raise RuntimeError("Slack API error: channel_not_found")

    gateway = EscalationGateway(api, use_slack=True, slack_sender=slack_sender)

    assert await gateway.escalate(CONTEXT) is False


async def test_dispatched_escalation_can_be_drained(fake_api):
    api = fake_api([])
    gateway = EscalationGateway(api, use_slack=False)

    task = gateway.dispatch(CONTEXT)
    await gateway.drain()

    assert task.done()
    assert task.result() is True
    assert len(api.notifications) == 1


async def test_escalation_without_channels_reports_undelivered():
    gateway = EscalationGateway(None, use_slack=False)

    assert await gateway.escalate(CONTEXT) is False


def _state_with_history(count):
    state = PlanExecutionState(instance_id="inst-1", site_id="site-1", activity_name="outreach", plan_id="plan-1")
    for cycle in range(1, count + 1):
        state.commit_cycle(StepResult(cycle=cycle, raw_message=f"msg {cycle}", parsed=Unclassified()))
    return state


async def test_error_context_keeps_last_three_steps():
    context = build_error_context(_state_with_history(5))

    assert context["previous_plan_id"] == "plan-1"
    assert context["cycle_count"] == 5
    assert [step["message"] for step in context["recent_steps"]] == ["msg 3", "msg 4", "msg 5"]


async def test_plan_gateway_returns_new_plan_id(fake_api):
    api = fake_api([], plan_ids=[{"instance_plan_id": "plan-2"}])

    plan_id = await PlanReplacementGateway(api).request_new_plan("site-1", "outreach", "inst-1", {"previous_plan_id": "plan-1"}, "user-1")

    assert plan_id == "plan-2"
    assert api.plan_calls[0]["user_id"] == "user-1"


async def test_plan_gateway_wraps_remote_errors(fake_api):
    api = fake_api([], plan_ids=[RemoteCallError("/api/agents/growth/robot/plan", "HTTP 422")])

    with pytest.raises(PlanReplacementFailed):
        await PlanReplacementGateway(api).request_new_plan("site-1", "outreach", "inst-1", {})


async def test_plan_gateway_lets_transport_exhaustion_through(fake_api):
    api = fake_api([], plan_ids=[TransportExhausted("/api/agents/growth/robot/plan", 3, "timeout")])

    with pytest.raises(TransportExhausted):
        await PlanReplacementGateway(api).request_new_plan("site-1", "outreach", "inst-1", {})


async def test_session_registry_saves_once(database):
    registry = SessionRegistry()

    assert await registry.save_session("inst-1", "linkedin", "linkedin.com") is True
    assert await registry.save_session("inst-1", "linkedin", "linkedin.com") is True
    assert await registry.save_session("inst-1", "google") is True
    assert await registry.save_session("inst-1", "google", "") is True

    rows = await registry.list_sessions("inst-1")
    assert sorted((row.platform, row.domain) for row in rows) == [("google", None), ("linkedin", "linkedin.com")]


async def test_session_registry_failure_returns_false(monkeypatch):
    import robotops.robot.sessions as sessions_module

    def broken_session():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(sessions_module, "get_session", broken_session)

    assert await SessionRegistry().save_session("inst-1", "linkedin") is False


class StartApi:
    def __init__(self, instance=None, plan=None, instance_error=None):
        self.instance = instance
        self.plan = plan
        self.instance_error = instance_error
        self.plan_calls = []

    async def create_instance(self, site_id, activity, user_id=None):
        if self.instance_error:
            raise self.instance_error
        return self.instance

    async def create_plan(self, site_id, activity, instance_id, user_id=None, error_context=None):
        self.plan_calls.append(instance_id)
        return self.plan


async def test_start_robot_creates_instance_then_plan():
    api = StartApi(instance={"instance_id": "inst-7"}, plan={"instance_plan_id": "plan-7", "steps": 4})

    result = await start_robot("site-1", "outreach", "user-1", api=api)

    assert result.success is True
    assert result.instance_id == "inst-7"
    assert result.instance_plan_id == "plan-7"
    assert api.plan_calls == ["inst-7"]


async def test_start_robot_requires_instance_id():
    api = StartApi(instance={"status": "pending"})

    result = await start_robot("site-1", "outreach", api=api)

    assert result.success is False
    assert result.error == "Instance API did not return instance_id"
    assert api.plan_calls == []


async def test_start_robot_reports_instance_failure():
    api = StartApi(instance_error=TransportExhausted("/api/robots/instance", 3, "HTTP 503"))

    result = await start_robot("site-1", "outreach", api=api)

    assert result.success is False
    assert result.error.startswith("Instance call failed")


async def test_slack_escalation_message(monkeypatch):
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-test")
    monkeypatch.setenv("ROBOT_ESCALATION_SLACK_CHANNEL", "#robots")
    captured = {}

    def handler(request):
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "ts": "1.0"})

    data = await slack.send_escalation(CONTEXT.to_payload(), transport=httpx.MockTransport(handler))

    assert data["ok"] is True
    assert captured["auth"] == "Bearer xoxb-test"
    assert captured["body"]["channel"] == "#robots"
    assert "Plan failed: blocked" in captured["body"]["text"]
    assert slack.is_configured() is True


async def test_slack_api_error_raises(monkeypatch):
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-test")
    monkeypatch.setenv("ROBOT_ESCALATION_SLACK_CHANNEL", "#robots")

    def handler(request):
        return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

    with pytest.raises(RuntimeError, match="channel_not_found"):
        await slack.send_escalation(CONTEXT.to_payload(), transport=httpx.MockTransport(handler))
