import logging
from typing import List, Optional

from sqlmodel import select

from robotops import monitoring
from robotops.db import RobotSession, get_session

logger = logging.getLogger("robot.sessions")


class SessionRegistry:
    """Stores authentication sessions the robot reports mid-run."""

    async def save_session(self, instance_id: str, platform: str, domain: Optional[str] = None) -> bool:
        domain = domain or None
        try:
            async with get_session() as session:
                existing = (
                    await session.exec(
                        select(RobotSession).where(
                            RobotSession.instance_id == instance_id,
                            RobotSession.platform == platform,
                            RobotSession.domain == domain if domain else RobotSession.domain.is_(None),
                        )
                    )
                ).first()
                if not existing:
                    session.add(RobotSession(instance_id=instance_id, platform=platform, domain=domain))
                    await session.commit()
        except Exception as exc:
            logger.error(
                "session",
                extra={"session": {"instance_id": instance_id, "platform": platform, "status": "failed", "error": str(exc)}},
            )
            monitoring.capture_exception(exc)
            return False

        logger.info(
            "session",
            extra={"session": {"instance_id": instance_id, "platform": platform, "domain": domain, "status": "saved"}},
        )
        return True

    async def list_sessions(self, instance_id: str) -> List[RobotSession]:
        async with get_session() as session:
            rows = await session.exec(
                select(RobotSession).where(RobotSession.instance_id == instance_id).order_by(RobotSession.created_at.asc())
            )
            return list(rows.all())
