from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base
from models.identity import SessionIdentity, ExamKind, Semester


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExamSession(Base):
    __tablename__ = "exam_sessions"

    id = Column(String(36), primary_key=True)

    # Identity (immutable after creation)
    test_kind = Column(String(16), index=True, nullable=False)
    pass_number = Column(Integer, index=True, nullable=False)
    historical_year = Column(String(8), nullable=True)
    historical_semester = Column(String(4), nullable=True)

    current_question_number = Column(Integer, default=1, nullable=False)
    time_remaining = Column(Integer, nullable=False)  # seconds
    timer_enabled = Column(Boolean, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    answers = relationship(
        "Answer",
        back_populates="session",
        order_by="Answer.question_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def identity(self) -> SessionIdentity:
        # Raises ValueError for rows written with an unknown kind or semester
        return SessionIdentity(
            test_kind=ExamKind(self.test_kind),
            pass_number=self.pass_number,
            historical_year=self.historical_year,
            historical_semester=Semester(self.historical_semester) if self.historical_semester else None,
        )


class Answer(Base):
    __tablename__ = "exam_answers"
    __table_args__ = (UniqueConstraint("session_id", "question_number", name="uq_answer_question"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    question_number = Column(Integer, nullable=False)
    selected_option = Column(String(8), nullable=False)
    answered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    session = relationship("ExamSession", back_populates="answers")
