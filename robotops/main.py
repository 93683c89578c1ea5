"""FastAPI surface for starting robots and running their plans."""

import os
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request

from robotops import monitoring
from robotops.auth import JWTAuthMiddleware
from robotops.db import init_db
from robotops.jobs import reset_stuck_runs
from robotops.robot.orchestrator import run_robot_workflow
from robotops.robot.sessions import SessionRegistry
from robotops.robot.start import start_robot
from robotops.schemas import RobotRunIn, RobotStartIn
from robotops.worker import run_robot_task

API_PORT = int(os.getenv("API_PORT", "8000"))

monitoring.init_monitoring()

scheduler = AsyncIOScheduler()

app = FastAPI(title="robotops")
app.add_middleware(
    JWTAuthMiddleware,
    exempt_paths={"/healthz"},
    exempt_prefixes={"/docs", "/openapi", "/redoc"},
)

session_registry = SessionRegistry()


def _user_id(request: Request, explicit: Optional[str]) -> Optional[str]:
    return explicit or getattr(request.state, "user_id", None)


@app.on_event("startup")
async def on_startup():
    await init_db()
    if not scheduler.running:
        scheduler.start()
    if not scheduler.get_job("stuck-runs"):
        scheduler.add_job(
            reset_stuck_runs,
            "interval",
            minutes=30,
            id="stuck-runs",
        )


@app.on_event("shutdown")
async def on_shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/robots/start")
async def robots_start(payload: RobotStartIn, request: Request) -> Dict[str, Any]:
    result = await start_robot(payload.site_id, payload.activity, _user_id(request, payload.user_id))
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)
    return result.to_dict()


@app.post("/robots/run")
async def robots_run(payload: RobotRunIn, request: Request) -> Dict[str, Any]:
    user_id = _user_id(request, payload.user_id)
    if payload.enqueue:
        task = run_robot_task.delay(
            payload.site_id,
            payload.activity,
            payload.instance_id,
            payload.instance_plan_id,
            user_id,
        )
        return {"queued": True, "task_id": task.id}

    result = await run_robot_workflow(
        payload.site_id,
        payload.activity,
        payload.instance_id,
        payload.instance_plan_id,
        user_id,
    )
    return result.to_dict()


@app.get("/robots/status/{site_id}/{activity}")
async def robots_status(site_id: str, activity: str) -> Dict[str, Any]:
    row = await monitoring.get_status(site_id, activity)
    if not row:
        raise HTTPException(status_code=404, detail="No runs recorded")
    return row.model_dump(mode="json")


@app.get("/robots/sessions/{instance_id}")
async def robots_sessions(instance_id: str) -> List[Dict[str, Any]]:
    rows = await session_registry.list_sessions(instance_id)
    return [row.model_dump(mode="json") for row in rows]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=API_PORT)
