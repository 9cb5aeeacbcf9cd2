from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ExamKind(str, Enum):
    QUANT = "KVANT"
    VERBAL = "VERBAL"


class Semester(str, Enum):
    FALL = "HT"
    SPRING = "VT"


class SessionIdentity(BaseModel):
    """
    Distinguishes one practice pass from another.
    pass_number 0 is a freshly generated (non-historical) test.
    """
    model_config = ConfigDict(frozen=True)

    test_kind: ExamKind
    pass_number: int = Field(0, ge=0)
    historical_year: Optional[str] = None
    historical_semester: Optional[Semester] = None

    @property
    def is_generated(self) -> bool:
        return self.pass_number == 0

    def matches(self, row) -> bool:
        """Exact match against a stored ExamSession row (None only matches None)."""
        return (
            row.test_kind == self.test_kind.value
            and row.pass_number == self.pass_number
            and row.historical_year == self.historical_year
            and row.historical_semester == (self.historical_semester.value if self.historical_semester else None)
        )

    def label(self) -> str:
        if self.historical_year:
            semester = self.historical_semester.value if self.historical_semester else ""
            return f"{self.test_kind.value} {semester}{self.historical_year} pass {self.pass_number}"
        return f"{self.test_kind.value} pass {self.pass_number}"


class SessionFilter(BaseModel):
    """Row filter for listing sessions. None fields match anything."""
    model_config = ConfigDict(frozen=True)

    test_kind: Optional[ExamKind] = None
    pass_number: Optional[int] = None
    is_completed: Optional[bool] = None
    identity: Optional[SessionIdentity] = None

    def matches(self, row) -> bool:
        if self.test_kind is not None and row.test_kind != self.test_kind.value:
            return False
        if self.pass_number is not None and row.pass_number != self.pass_number:
            return False
        if self.is_completed is not None and row.is_completed != self.is_completed:
            return False
        if self.identity is not None and not self.identity.matches(row):
            return False
        return True
