from collections.abc import Iterable
from datetime import date

from src.quiz.domain.models import Question


class BonusUnlockGate:
    """
    Pure predicate deciding whether the day's bonus question is offered once
    the required questions are done.
    """

    @staticmethod
    def select(
        today: date,
        bonus_questions: Iterable[Question | None],
        answered_ids: set[str],
    ) -> Question | None:
        """
        Returns the bonus question to offer, or None.

        At most one bonus question may own a date (enforced when questions are
        written). Should the store still hold several, the lowest id wins so
        every reload resolves to the same question.
        """
        eligible = sorted(
            (q for q in bonus_questions if q is not None and q.is_eligible_on(today)),
            key=lambda q: q.id,
        )
        if not eligible:
            return None
        bonus = eligible[0]
        if bonus.id in answered_ids:
            return None
        return bonus

    @classmethod
    def should_offer(
        cls,
        today: date,
        bonus_questions: Iterable[Question | None],
        answered_ids: set[str],
    ) -> bool:
        return cls.select(today, bonus_questions, answered_ids) is not None
