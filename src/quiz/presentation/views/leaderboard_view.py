import streamlit as st

from src.quiz.application.leaderboard import LeaderboardService

MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}


def render(leaderboard: LeaderboardService) -> None:
    st.title("🏆 لوحة الصدارة")
    entries = leaderboard.get_leaderboard()
    if not entries:
        st.info("لا يوجد متسابقون بعد")
        return

    for entry in entries:
        medal = MEDALS.get(entry.rank, f"#{entry.rank}")
        st.markdown(f"{medal} **{entry.name}**: {entry.total_score}")
