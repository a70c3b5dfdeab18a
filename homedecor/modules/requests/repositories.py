"""
Request Repositories

Both repositories take a session factory rather than a session: the
pipeline runs in the background long after the HTTP request that created
the row has returned, so every call opens and closes its own session.
"""

from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homedecor.core.logging import get_logger
from homedecor.modules.requests.models import GenerationRequest, LogSeverity, RequestLog, utc_now

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


# =============================================================================
# Generation Request Repository
# =============================================================================

class GenerationRequestRepository:
    """Persistence for generation requests."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def create(self, request: GenerationRequest) -> GenerationRequest:
        async with self.session_factory() as session:
            session.add(request)
            await session.commit()
            await session.refresh(request)
            return request

    async def get_by_id(self, request_id: str) -> Optional[GenerationRequest]:
        async with self.session_factory() as session:
            return await session.get(GenerationRequest, request_id)

    async def update(self, request: GenerationRequest) -> GenerationRequest:
        """Persist every field of ``request`` (last writer wins)."""
        request.updated_at = utc_now()
        async with self.session_factory() as session:
            merged = await session.merge(request)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def get_by_user(self, user_id: str, limit: int = 10) -> List[GenerationRequest]:
        """Most recent requests of one user, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(GenerationRequest)
                .where(GenerationRequest.user_id == user_id)
                .order_by(GenerationRequest.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_recent(self, limit: int = 100) -> List[GenerationRequest]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(GenerationRequest)
                .order_by(GenerationRequest.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


# =============================================================================
# Request Log Repository
# =============================================================================

class RequestLogRepository:
    """Per-request log stream. Writing never raises into the caller."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def log(self, request_id: str, severity: LogSeverity, message: str) -> Optional[RequestLog]:
        entry = RequestLog(request_id=request_id, severity=severity.value, message=message)
        try:
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
                await session.refresh(entry)
                return entry
        except Exception as e:
            logger.error(
                "request_log_write_failed",
                request_id=request_id,
                severity=severity.value,
                log_message=message,
                error=str(e),
            )
            return None

    async def get_logs(self, request_id: str) -> List[RequestLog]:
        """Events of one request in the order they were written."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RequestLog)
                .where(RequestLog.request_id == request_id)
                .order_by(RequestLog.timestamp.asc(), RequestLog.id.asc())
            )
            return list(result.scalars().all())
