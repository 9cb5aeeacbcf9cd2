from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from models.session import utcnow


class LedgerEntry(NamedTuple):
    option: str
    answered_at: datetime


class AnswerLedger:
    """
    In-memory question number -> selected option map for the open session.
    Rebuilt from durable answers on open and flushed in full on every save.
    """

    def __init__(self, entries: Optional[Dict[int, LedgerEntry]] = None):
        self._entries: Dict[int, LedgerEntry] = dict(entries or {})

    @classmethod
    def from_records(cls, records: Iterable) -> "AnswerLedger":
        return cls({r.question_number: LedgerEntry(r.selected_option, r.answered_at) for r in records})

    def get(self, question_number: int) -> Optional[str]:
        entry = self._entries.get(question_number)
        return entry.option if entry else None

    def set(self, question_number: int, option: Optional[str]):
        if option is None:
            self._entries.pop(question_number, None)
        else:
            self._entries[question_number] = LedgerEntry(option, utcnow())

    def toggle(self, question_number: int, option: str) -> Optional[str]:
        """Select option, or clear it when it is already selected. Returns the new selection."""
        if self.get(question_number) == option:
            self.set(question_number, None)
            return None
        self.set(question_number, option)
        return option

    def ordered_entries(self) -> List[Tuple[int, str]]:
        return [(q, self._entries[q].option) for q in sorted(self._entries)]

    def ordered_records(self) -> List[Tuple[int, LedgerEntry]]:
        return [(q, self._entries[q]) for q in sorted(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)
