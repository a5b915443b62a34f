from src.config import Difficulty


class QuizError(Exception):
    """Base class for every error the quiz raises on purpose."""


class UnauthenticatedError(QuizError):
    def __init__(self) -> None:
        super().__init__("No authenticated user")


class UnauthorizedError(QuizError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class QuizDisabledError(QuizError):
    def __init__(self) -> None:
        super().__init__("The quiz is currently disabled")


class InsufficientQuestionsError(QuizError):
    """
    The selector could not fill every required tier.

    Attributes:
        shortfalls: tier -> number of unseen candidates found (always 0 today,
            kept as a count so callers can render the diagnostic as-is).
        bank_counts: tier -> total questions of that tier in the bank.
    """

    def __init__(
        self,
        shortfalls: dict[Difficulty, int],
        bank_counts: dict[Difficulty, int] | None = None,
    ) -> None:
        self.shortfalls = shortfalls
        self.bank_counts = bank_counts or {}
        tiers = ", ".join(f"{t.code}: found {n}" for t, n in shortfalls.items())
        super().__init__(f"Not enough questions ({tiers})")

    @property
    def tiers(self) -> list[Difficulty]:
        return list(self.shortfalls)


class ConflictError(QuizError):
    """A uniqueness constraint rejected the write."""


class StorageError(QuizError):
    """Transient I/O failure talking to the store. Safe to retry."""


class InvalidQuestionError(QuizError):
    pass
