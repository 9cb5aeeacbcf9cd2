import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select, update, delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import StorageUnavailable, SaveFailed
from core.logger import logger
from models.identity import SessionIdentity, SessionFilter
from models.session import ExamSession, Answer, utcnow
from services.live_session import SessionSnapshot


class SessionStore:
    """Durable session and answer records. Every write is one transaction."""

    def __init__(self, session_factory: async_sessionmaker = None):
        if session_factory is None:
            from db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory

    async def create(self, identity: SessionIdentity, timer_enabled: bool, time_remaining: int = None) -> ExamSession:
        now = utcnow()
        session = ExamSession(
            id=str(uuid.uuid4()),
            test_kind=identity.test_kind.value,
            pass_number=identity.pass_number,
            historical_year=identity.historical_year,
            historical_semester=identity.historical_semester.value if identity.historical_semester else None,
            current_question_number=1,
            time_remaining=settings.EXAM_DURATION_SECONDS if time_remaining is None else time_remaining,
            timer_enabled=timer_enabled,
            is_completed=False,
            started_at=now,
            last_updated=now,
            answers=[],
        )
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    db.add(session)
        except SQLAlchemyError as e:
            logger.error("Failed to create exam session", identity=identity.label(), error=str(e))
            raise StorageUnavailable("Could not create exam session") from e
        return session

    async def list_sessions(self, session_filter: Optional[SessionFilter] = None) -> List[ExamSession]:
        query = select(ExamSession).order_by(ExamSession.started_at)
        if session_filter is not None:
            if session_filter.test_kind is not None:
                query = query.filter(ExamSession.test_kind == session_filter.test_kind.value)
            if session_filter.pass_number is not None:
                query = query.filter(ExamSession.pass_number == session_filter.pass_number)
            if session_filter.is_completed is not None:
                query = query.filter(ExamSession.is_completed == session_filter.is_completed)
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list exam sessions", error=str(e))
            raise StorageUnavailable("Could not read exam sessions") from e

        if session_filter is not None:
            rows = [row for row in rows if session_filter.matches(row)]
        return rows

    async def load_open_session(self, identity: SessionIdentity) -> Optional[ExamSession]:
        rows = await self.list_sessions(SessionFilter(identity=identity, is_completed=False))
        return rows[0] if rows else None

    async def save(self, snapshot: SessionSnapshot):
        """Rewrite the session header and its full answer set in one transaction."""
        now = utcnow()
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        update(ExamSession)
                        .where(ExamSession.id == snapshot.session_id)
                        .values(
                            current_question_number=snapshot.current_question_number,
                            time_remaining=snapshot.time_remaining,
                            is_completed=snapshot.is_completed,
                            last_updated=now,
                        )
                    )
                    if result.rowcount == 0:
                        raise SaveFailed(f"Session {snapshot.session_id} no longer exists")

                    await db.execute(delete(Answer).where(Answer.session_id == snapshot.session_id))
                    if snapshot.answers:
                        await db.execute(
                            insert(Answer),
                            [
                                {
                                    "session_id": snapshot.session_id,
                                    "question_number": question_number,
                                    "selected_option": entry.option,
                                    "answered_at": entry.answered_at,
                                }
                                for question_number, entry in snapshot.answers
                            ],
                        )
        except SQLAlchemyError as e:
            logger.error("Exam session save failed", session_id=snapshot.session_id, error=str(e))
            raise SaveFailed(f"Could not save session {snapshot.session_id}") from e
        return now

    async def delete(self, session_ids: Iterable[str]) -> int:
        session_ids = list(session_ids)
        if not session_ids:
            return 0
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    await db.execute(delete(Answer).where(Answer.session_id.in_(session_ids)))
                    result = await db.execute(delete(ExamSession).where(ExamSession.id.in_(session_ids)))
                    deleted = result.rowcount
        except SQLAlchemyError as e:
            logger.error("Failed to delete exam sessions", session_ids=session_ids, error=str(e))
            raise StorageUnavailable("Could not delete exam sessions") from e
        return deleted

    async def delete_matching(self, session_filter: SessionFilter) -> List[str]:
        rows = await self.list_sessions(session_filter)
        ids = [row.id for row in rows]
        await self.delete(ids)
        return ids
