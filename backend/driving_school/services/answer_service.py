"""
services/answer_service.py

Per-question answer / review-mark bookkeeping and the question cursor of a
test session. State only, no I/O.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from ..errors import InvalidAnswerError
from ..models.question_model import OPTION_LABELS

_SHORT_LABELS = {label[-1]: label for label in OPTION_LABELS}


def normalize_option(option: str) -> str:
    """Map `a`/`option_a` (any case) to `option_a`; reject anything else."""
    value = (option or "").strip().lower()
    if value in OPTION_LABELS:
        return value
    if value in _SHORT_LABELS:
        return _SHORT_LABELS[value]
    raise InvalidAnswerError(f"Unknown option {option!r}; expected one of {', '.join(OPTION_LABELS)}")


class AnswerTracker:
    """Selected option per question plus the set of questions marked for review.

    A question missing from `answers` is unanswered.
    """

    def __init__(self, question_ids: Iterable[str]):
        self._question_ids: List[str] = list(question_ids)
        self._known = set(self._question_ids)
        self._answers: Dict[str, str] = {}
        self._marked: List[str] = []

    def _check_question(self, question_id: str) -> None:
        if question_id not in self._known:
            raise InvalidAnswerError(f"Question {question_id!r} is not part of this test")

    def select_option(self, question_id: str, option: str) -> str:
        self._check_question(question_id)
        label = normalize_option(option)
        self._answers[question_id] = label
        return label

    def clear_option(self, question_id: str) -> None:
        self._check_question(question_id)
        self._answers.pop(question_id, None)

    def toggle_review(self, question_id: str) -> bool:
        """Flip the review mark; returns the new state."""
        self._check_question(question_id)
        if question_id in self._marked:
            self._marked.remove(question_id)
            return False
        self._marked.append(question_id)
        return True

    def selected(self, question_id: str) -> Optional[str]:
        return self._answers.get(question_id)

    def is_marked(self, question_id: str) -> bool:
        return question_id in self._marked

    @property
    def answers(self) -> Dict[str, str]:
        return dict(self._answers)

    @property
    def marked(self) -> List[str]:
        return list(self._marked)

    def restore(self, answers: Mapping[str, str], marked: Iterable[str]) -> List[str]:
        """Seed from a saved snapshot. Entries that no longer fit the test are
        dropped; their descriptions are returned for logging."""
        dropped = []
        for question_id, option in answers.items():
            try:
                self.select_option(question_id, option)
            except InvalidAnswerError as e:
                dropped.append(str(e))
        for question_id in marked:
            if question_id in self._known and question_id not in self._marked:
                self._marked.append(question_id)
            elif question_id not in self._known:
                dropped.append(f"mark on unknown question {question_id!r}")
        return dropped


class NavigationController:
    """Current-question cursor over `count` questions. No wraparound."""

    def __init__(self, count: int, index: int = 0):
        self.count = count
        self.index = 0
        self.go_to(index)

    def go_to(self, index: int) -> int:
        self.index = max(0, min(index, self.count - 1)) if self.count else 0
        return self.index

    def next(self) -> int:
        if self.index < self.count - 1:
            self.index += 1
        return self.index

    def previous(self) -> int:
        if self.index > 0:
            self.index -= 1
        return self.index

    @property
    def at_start(self) -> bool:
        return self.index == 0

    @property
    def at_end(self) -> bool:
        return self.index >= self.count - 1
