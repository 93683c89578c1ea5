"""HTTP client for the remote robots / planning API."""

import asyncio
import logging
import os
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from robotops.robot.errors import RemoteCallError, TransportExhausted

ACT_ENDPOINT = "/api/robots/plan/act"
PLAN_ENDPOINT = "/api/agents/growth/robot/plan"
INSTANCE_ENDPOINT = "/api/robots/instance"
NOTIFY_ENDPOINT = "/api/notifications/robotAttention"

DEFAULT_TIMEOUT = float(os.getenv("ROBOTS_API_TIMEOUT_SECONDS", "300"))
MAX_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0

logger = logging.getLogger("robots.api")

Sleeper = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, initial: float = INITIAL_BACKOFF_SECONDS, maximum: float = MAX_BACKOFF_SECONDS) -> float:
    return min(initial * (2 ** (attempt - 1)), maximum)


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def _unwrap(body: Any) -> Dict[str, Any]:
    """Return ``{"success", "data", "error"}`` regardless of how the API wrapped it."""
    if isinstance(body, dict) and "success" in body and "data" in body:
        envelope = body
    else:
        envelope = {"success": True, "data": body}
    data = envelope.get("data")
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    return {"success": bool(envelope.get("success")), "data": data, "error": envelope.get("error")}


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "Unknown error")
    return str(error or "Unknown error")


class RobotsApiClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleeper] = None,
    ):
        if not base_url:
            raise RuntimeError("API_BASE_URL environment variable is not configured")
        if not api_key:
            raise RuntimeError("API_KEY environment variable is not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-api-key": self.api_key}

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``payload`` and return the unwrapped ``data`` object.

        Network errors, 5xx and 429 responses are retried with exponential
        backoff; anything else that is not a success raises
        ``RemoteCallError`` straight away.
        """
        last_error = ""
        last_status: Optional[int] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self._url(endpoint), json=payload, headers=self._headers())
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = None
                logger.warning("robots_api", extra={"robots_api": {"endpoint": endpoint, "attempt": attempt, "error": last_error}})
            else:
                if response.status_code < 400:
                    try:
                        body = response.json()
                    except ValueError as exc:
                        raise RemoteCallError(endpoint, f"invalid JSON response: {exc}", response.status_code) from exc
                    unwrapped = _unwrap(body)
                    if not unwrapped["success"]:
                        raise RemoteCallError(endpoint, _error_message(unwrapped["error"]), response.status_code)
                    return unwrapped["data"] or {}
                last_status = response.status_code
                last_error = f"HTTP {response.status_code}: {response.text[:500]}"
                if not _is_transient(response.status_code):
                    raise RemoteCallError(endpoint, last_error, response.status_code)
                logger.warning("robots_api", extra={"robots_api": {"endpoint": endpoint, "attempt": attempt, "status": last_status}})

            if attempt < self.max_attempts:
                await self._sleep(backoff_delay(attempt))
        raise TransportExhausted(endpoint, self.max_attempts, last_error, last_status)

    async def act_on_plan(
        self,
        site_id: str,
        activity: str,
        instance_id: str,
        instance_plan_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"site_id": site_id, "activity": activity, "instance_id": instance_id}
        if instance_plan_id:
            payload["instance_plan_id"] = instance_plan_id
        if user_id:
            payload["user_id"] = user_id
        return await self.post(ACT_ENDPOINT, payload)

    async def create_plan(
        self,
        site_id: str,
        activity: str,
        instance_id: str,
        user_id: Optional[str] = None,
        error_context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"site_id": site_id, "activity": activity, "instance_id": instance_id}
        if user_id:
            payload["user_id"] = user_id
        if error_context:
            payload["error_context"] = error_context
        return await self.post(PLAN_ENDPOINT, payload)

    async def create_instance(self, site_id: str, activity: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"site_id": site_id, "activity": activity}
        if user_id:
            payload["user_id"] = user_id
        return await self.post(INSTANCE_ENDPOINT, payload)

    async def notify_attention(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.post(NOTIFY_ENDPOINT, payload)


def is_configured() -> bool:
    return bool(os.getenv("API_BASE_URL") and os.getenv("API_KEY"))


@lru_cache(maxsize=1)
def get_client() -> RobotsApiClient:
    return RobotsApiClient(os.getenv("API_BASE_URL", ""), os.getenv("API_KEY", ""))
