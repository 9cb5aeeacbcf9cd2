from typing import Dict, List, Tuple

from models.identity import ExamKind

# (section code, first question, last question) per 40-question pass
SECTION_LAYOUT: Dict[ExamKind, List[Tuple[str, int, int]]] = {
    ExamKind.QUANT: [
        ("XYZ", 1, 12),
        ("KVA", 13, 22),
        ("NOG", 23, 28),
        ("DTK", 29, 40),
    ],
    ExamKind.VERBAL: [
        ("ORD", 1, 10),
        ("LÄS", 11, 20),
        ("MEK", 21, 26),
        ("ELF", 27, 40),
    ],
}

FIVE_OPTION_SECTIONS = {"ORD", "NOG"}
OPTION_LETTERS = "ABCDE"


class ContentService:
    """Answer-option lookups for the exam screen. Pure, no I/O."""

    def section_code(self, test_kind: ExamKind, question_number: int) -> str:
        kind = ExamKind(test_kind)
        for code, first, last in SECTION_LAYOUT[kind]:
            if first <= question_number <= last:
                return code
        raise ValueError(f"Question {question_number} is outside the {kind.value} pass")

    def answer_alphabet_size(self, section_code: str) -> int:
        known = {code for layout in SECTION_LAYOUT.values() for code, _, _ in layout}
        if section_code not in known:
            raise ValueError(f"Unknown section code: {section_code}")
        return 5 if section_code in FIVE_OPTION_SECTIONS else 4

    def options_for(self, test_kind: ExamKind, question_number: int) -> List[str]:
        size = self.answer_alphabet_size(self.section_code(test_kind, question_number))
        return list(OPTION_LETTERS[:size])
