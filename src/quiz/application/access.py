from datetime import datetime

from src.config import GameConfig
from src.quiz.application.daily_session import Clock, utc_now
from src.quiz.domain.errors import (
    QuizDisabledError,
    UnauthenticatedError,
    UnauthorizedError,
)
from src.quiz.domain.models import User, UserRole
from src.quiz.domain.ports import IAuthProvider, IQuizRepository
from src.shared.telemetry import Telemetry, measure_time


class AccessGuard:
    """
    Route-level gating: who may see the dashboard, the quiz and the admin pages.
    """

    def __init__(
        self, repo: IQuizRepository, auth: IAuthProvider, clock: Clock = utc_now
    ) -> None:
        self.repo = repo
        self.auth = auth
        self.clock = clock
        self.telemetry = Telemetry("AccessGuard")

    def register(self, user_id: str, email: str | None, name: str) -> User:
        """Creates the profile row after sign-up; only refreshes the name if it already exists."""
        existing = self.repo.get_user(user_id)
        if existing is not None:
            if name and existing.name != name:
                self.repo.update_user_name(user_id, name)
                existing.name = name
            return existing

        user = User(
            id=user_id,
            email=email,
            name=name or self._fallback_name(email),
            role=UserRole.USER,
            last_active=self.clock(),
        )
        self.telemetry.log_info("User registered", user_id=user_id)
        return self.repo.create_user(user)

    @staticmethod
    def _fallback_name(email: str | None) -> str:
        if email and "@" in email:
            return email.split("@")[0]
        return "User"

    @measure_time("require_user")
    def require_user(self) -> User:
        user_id = self.auth.current_user_id()
        if not user_id:
            raise UnauthenticatedError()

        user = self.repo.get_user(user_id)
        if user is None:
            # Identity exists but the profile row is gone: recreate it.
            identity = self.auth.current_identity()
            email = identity.get("email")
            self.telemetry.log_info("Profile missing, recreating", user_id=user_id)
            user = self.repo.create_user(
                User(
                    id=user_id,
                    email=email,
                    name=identity.get("name") or self._fallback_name(email),
                    role=UserRole.USER,
                    last_active=self.clock(),
                )
            )
        return user

    def require_active_user(self) -> User:
        user = self.require_user()
        if user.is_banned:
            raise UnauthorizedError("banned")
        return user

    def require_admin(self) -> User:
        user = self.require_user()
        if not user.is_admin:
            raise UnauthorizedError("admin role required")
        return user

    def is_quiz_enabled(self) -> bool:
        return bool(self.repo.get_setting(GameConfig.QUIZ_ENABLED_KEY, True))

    def require_quiz_access(self) -> User:
        user = self.require_active_user()
        if not self.is_quiz_enabled():
            raise QuizDisabledError()
        now: datetime = self.clock()
        self.repo.touch_last_active(user.id, now)
        user.last_active = now
        return user
