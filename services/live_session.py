import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from models.identity import SessionIdentity
from services.answer_ledger import AnswerLedger, LedgerEntry


class SessionState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CLOSED = "closed"  # screen left, durable session stays resumable
    DISCARDED = "discarded"  # identity restarted while live


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything a save writes, captured under the session lock."""
    session_id: str
    version: int
    current_question_number: int
    time_remaining: int
    is_completed: bool
    answers: Tuple[Tuple[int, LedgerEntry], ...]


@dataclass(eq=False)
class LiveSession:
    """
    The in-memory side of an open exam session.

    All mutations go through `lock`; writes to the store go through `save_lock`
    so that a timer checkpoint and an answer-driven save never interleave.
    """
    id: str
    identity: SessionIdentity
    timer_enabled: bool
    started_at: datetime
    current_question_number: int = 1
    time_remaining: int = 0
    last_updated: Optional[datetime] = None
    state: SessionState = SessionState.ACTIVE
    ledger: AnswerLedger = field(default_factory=AnswerLedger)

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    save_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    version: int = 0
    saved_version: int = 0

    @classmethod
    def from_row(cls, row) -> "LiveSession":
        return cls(
            id=row.id,
            identity=row.identity,
            timer_enabled=row.timer_enabled,
            started_at=row.started_at,
            current_question_number=row.current_question_number,
            time_remaining=row.time_remaining,
            last_updated=row.last_updated,
            state=SessionState.COMPLETED if row.is_completed else SessionState.ACTIVE,
            ledger=AnswerLedger.from_records(row.answers),
        )

    @property
    def is_completed(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def selected_option(self) -> Optional[str]:
        return self.ledger.get(self.current_question_number)

    @property
    def answers(self) -> List[Tuple[int, str]]:
        return self.ledger.ordered_entries()

    def touch(self):
        """Mark a mutation; must be called while holding `lock`."""
        self.version += 1

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            version=self.version,
            current_question_number=self.current_question_number,
            time_remaining=self.time_remaining,
            is_completed=self.is_completed,
            answers=tuple(self.ledger.ordered_records()),
        )
