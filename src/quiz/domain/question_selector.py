import random

from src.config import Difficulty, GameConfig
from src.quiz.domain.errors import InsufficientQuestionsError
from src.quiz.domain.models import Question
from src.quiz.domain.ports import IQuizRepository
from src.shared.telemetry import Telemetry, measure_time


class QuestionSelector:
    """
    Picks one unseen, non-bonus question per required tier.

    A question the user has answered in any past session is never served again,
    so a user who exhausted a tier cannot start a new day until more questions
    are added.
    """

    def __init__(
        self,
        repo: IQuizRepository,
        rng: random.Random | None = None,
        pool_limit: int = GameConfig.CANDIDATE_POOL_LIMIT,
    ) -> None:
        self.repo = repo
        self.rng = rng or random.Random()
        self.pool_limit = pool_limit
        self.telemetry = Telemetry("QuestionSelector")

    @staticmethod
    def choose(candidates: list[Question], rng: random.Random) -> Question | None:
        """Uniform pick among the eligible pool."""
        if not candidates:
            return None
        return rng.choice(candidates)

    @measure_time("select_daily_questions")
    def select(self, user_id: str) -> list[Question]:
        answered = self.repo.get_answered_question_ids(user_id)

        selected: list[Question] = []
        shortfalls: dict[Difficulty, int] = {}

        for tier in Difficulty.required():
            pool = self.repo.find_questions(
                tier,
                exclude_bonus=True,
                exclude_ids=answered,
                limit=self.pool_limit,
            )
            # Adapters already filter, this keeps the no-repeat rule local.
            pool = [q for q in pool if q.id not in answered and not q.is_bonus]

            picked = self.choose(pool, self.rng)
            if picked is None:
                shortfalls[tier] = len(pool)
                continue
            selected.append(picked)

        if shortfalls:
            bank_counts = self.repo.count_questions_by_difficulty()
            self.telemetry.log_info(
                "Question bank exhausted",
                user_id=user_id,
                short=[t.code for t in shortfalls],
                bank={t.code: n for t, n in bank_counts.items()},
            )
            raise InsufficientQuestionsError(shortfalls, bank_counts)

        self.telemetry.log_info(
            "Daily questions selected",
            user_id=user_id,
            question_ids=[q.id for q in selected],
            answered_before=len(answered),
        )
        return selected
