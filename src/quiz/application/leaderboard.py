from collections.abc import Iterable

from src.quiz.domain.models import Attempt, LeaderboardEntry
from src.quiz.domain.ports import IQuizRepository
from src.shared.telemetry import Telemetry, measure_time

DEFAULT_NAME = "مستخدم"


def rank_attempts(attempts: Iterable[Attempt]) -> list[LeaderboardEntry]:
    """
    Sums every day's attempt per user and ranks by total, highest first.
    Ties keep first-seen order and still get distinct ranks.
    """
    totals: dict[str, int] = {}
    names: dict[str, str] = {}
    for attempt in attempts:
        totals[attempt.user_id] = totals.get(attempt.user_id, 0) + attempt.score
        if attempt.user_id not in names or attempt.user_name:
            names[attempt.user_id] = attempt.user_name or DEFAULT_NAME

    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        LeaderboardEntry(user_id=user_id, name=names[user_id], total_score=total, rank=i + 1)
        for i, (user_id, total) in enumerate(ordered)
    ]


class LeaderboardService:
    def __init__(self, repo: IQuizRepository) -> None:
        self.repo = repo
        self.telemetry = Telemetry("LeaderboardService")

    @measure_time("leaderboard")
    def get_leaderboard(self, limit: int | None = None) -> list[LeaderboardEntry]:
        entries = rank_attempts(self.repo.list_attempts())
        return entries[:limit] if limit else entries

    def get_rank(self, user_id: str) -> LeaderboardEntry | None:
        return next((e for e in self.get_leaderboard() if e.user_id == user_id), None)
