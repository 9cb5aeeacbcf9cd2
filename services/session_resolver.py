from typing import Callable, List, Optional

from core.config import settings
from core.logger import logger
from models.identity import SessionIdentity, SessionFilter
from models.session import ExamSession
from services.session_store import SessionStore


def is_well_formed(row: ExamSession, questions_per_pass: int = None) -> bool:
    """A stored session that can be resumed as-is."""
    questions_per_pass = questions_per_pass or settings.QUESTIONS_PER_PASS
    try:
        row.identity
    except ValueError:
        return False
    if not 1 <= row.current_question_number <= questions_per_pass:
        return False
    if row.time_remaining is None or row.time_remaining < 0:
        return False
    numbers = [answer.question_number for answer in row.answers]
    if len(numbers) != len(set(numbers)):
        return False
    return all(1 <= n <= questions_per_pass for n in numbers)


class SessionResolver:
    """
    Finds the open (non-completed) session for an identity.
    Reads only; scans the full session list, which stays at a few dozen rows.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    async def open_sessions(self, identity: SessionIdentity) -> List[ExamSession]:
        rows = await self.store.list_sessions()
        return [row for row in rows if not row.is_completed and identity.matches(row)]

    async def find_open_session(self, identity: SessionIdentity) -> Optional[ExamSession]:
        candidates = await self.open_sessions(identity)
        for row in candidates:
            if is_well_formed(row):
                return row
            logger.warning("Ignoring malformed exam session", session_id=row.id, identity=identity.label())
        return None

    async def has_any_open_session(self, predicate: Callable[[SessionIdentity], bool]) -> bool:
        rows = await self.store.list_sessions(SessionFilter(is_completed=False))
        for row in rows:
            if not is_well_formed(row):
                continue
            if predicate(row.identity):
                return True
        return False
