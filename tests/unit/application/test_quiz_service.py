from datetime import timedelta

from src.quiz.application.service import QuizService
from src.quiz.domain.models import User


def test_dashboard_before_playing(populated_repo, clock, sample_user_id):
    service = QuizService(populated_repo, clock=clock)

    summary = service.get_dashboard_summary(populated_repo.get_user(sample_user_id))

    assert summary.user_name == "Tester"
    assert summary.today_score == 0
    assert summary.streak_days == 0
    assert summary.completed_today is False
    assert summary.bonus_available is False
    assert summary.max_daily_points == 30
    assert summary.quiz_enabled is True


def test_dashboard_after_completing_day(populated_repo, clock, rng, sample_user_id):
    service = QuizService(populated_repo, clock=clock, rng=rng)
    quiz = service.open_session(sample_user_id)
    quiz.enter()
    quiz.confirm_start()
    for _ in range(3):
        quiz.submit_answer(0)
        clock.advance(2)
        quiz.advance()

    summary = service.get_dashboard_summary(populated_repo.get_user(sample_user_id))

    assert summary.today_score == 30
    assert summary.completed_today
    assert summary.streak_days == 1
    assert summary.total_days_participated == 1
    assert summary.bonus_available is True


def test_streak_counts_previous_days(in_memory_repo, clock):
    in_memory_repo.create_user(User(id="u1"))
    for days_back in (1, 2):
        day = clock().date() - timedelta(days=days_back)
        session = in_memory_repo.create_session("u1", day, ["a", "b", "c"], clock())
        in_memory_repo.update_session(session.id, {"completed": True})

    summary = QuizService(in_memory_repo, clock=clock).get_dashboard_summary(
        in_memory_repo.get_user("u1")
    )
    assert summary.streak_days == 2
