from src.config import Difficulty, GameConfig


class ScoringPolicy:
    """Maps a tier to its fixed point value."""

    @staticmethod
    def points_for(tier: Difficulty) -> int:
        return tier.points

    @staticmethod
    def award(tier: Difficulty, is_correct: bool) -> int:
        return tier.points if is_correct else 0

    @staticmethod
    def max_daily_points() -> int:
        return GameConfig.MAX_DAILY_POINTS
