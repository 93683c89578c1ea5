from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from robotops.robot.errors import RemoteCallError


def act(
    message: str = "",
    percentage: Optional[float] = None,
    *,
    plan_completed: Optional[bool] = None,
    execution_time_ms: Optional[int] = None,
    tokens: Optional[tuple] = None,
    **extra: Any,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"message": message}
    if percentage is not None:
        data["plan_progress"] = {
            "completed_steps": int(round(percentage / 100 * 3)),
            "total_steps": 3,
            "percentage": percentage,
        }
    if plan_completed is not None:
        data["plan_completed"] = plan_completed
    if execution_time_ms is not None:
        data["execution_time_ms"] = execution_time_ms
    if tokens is not None:
        data["token_usage"] = {"input_tokens": tokens[0], "output_tokens": tokens[1]}
    data.update(extra)
    return data


class FakeRobotsApi:
    """Scripted stand-in for RobotsApiClient."""

    def __init__(self, responses: List[Any], plan_ids: Optional[List[Any]] = None, notify_error: Optional[Exception] = None):
        self.responses = list(responses)
        self.plan_ids = list(plan_ids or [])
        self.notify_error = notify_error
        self.act_calls: List[Dict[str, Any]] = []
        self.plan_calls: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    async def act_on_plan(self, site_id, activity, instance_id, instance_plan_id=None, user_id=None):
        self.act_calls.append(
            {
                "site_id": site_id,
                "activity": activity,
                "instance_id": instance_id,
                "instance_plan_id": instance_plan_id,
                "user_id": user_id,
            }
        )
        if not self.responses:
            raise AssertionError("robot asked to act more often than scripted")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def create_plan(self, site_id, activity, instance_id, user_id=None, error_context=None):
        self.plan_calls.append({"instance_id": instance_id, "user_id": user_id, "error_context": error_context})
        item = self.plan_ids.pop(0) if self.plan_ids else RemoteCallError("/api/agents/growth/robot/plan", "no plan scripted")
        if isinstance(item, Exception):
            raise item
        return item

    async def notify_attention(self, payload):
        self.notifications.append(payload)
        if self.notify_error:
            raise self.notify_error
        return {"ok": True}


class FakeSessions:
    def __init__(self, error: Optional[Exception] = None):
        self.saved: List[tuple] = []
        self.error = error

    async def save_session(self, instance_id, platform, domain=None):
        self.saved.append((instance_id, platform, domain))
        if self.error:
            raise self.error
        return True


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest_asyncio.fixture
async def database(monkeypatch, tmp_path):
    import robotops.db as db

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'robotops.db'}", future=True)
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autocommit=False)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "async_session_factory", factory)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield db
    finally:
        await engine.dispose()


@pytest.fixture
def act_response():
    return act


@pytest.fixture
def fake_api():
    return FakeRobotsApi


@pytest.fixture
def fake_sessions():
    return FakeSessions
