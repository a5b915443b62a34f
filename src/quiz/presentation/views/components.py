import streamlit as st

from src.config import GameConfig
from src.quiz.domain.models import DashboardSummary
from src.shared.telemetry import Telemetry


def apply_styles() -> None:
    st.markdown(
        """
        <style>
            .block-container { padding-top: 2rem !important; direction: rtl; }
            .stat-box { padding: 10px; background-color: #f0f2f6; border-radius: 5px; text-align: center; font-weight: bold; }
            .question-text { font-size: 1.2rem; font-weight: 600; margin-bottom: 1rem; }
        </style>
        """,
        unsafe_allow_html=True,
    )


ROUTES = ["dashboard", "quiz", "leaderboard", "admin"]


def render_sidebar(
    current_user: str | None, users: list[str], current_route: str = "dashboard"
) -> tuple[str | None, str]:
    """Local identity picker and navigation. Returns (user_id, route)."""
    st.sidebar.header("⚙️ الإعدادات")

    options = users or ["demo"]
    index = options.index(current_user) if current_user in options else 0
    user_id = st.sidebar.selectbox("المستخدم", options, index=index)
    new_user = st.sidebar.text_input("مستخدم جديد")
    if new_user.strip():
        user_id = new_user.strip()

    index = ROUTES.index(current_route) if current_route in ROUTES else 0
    route = st.sidebar.radio("الصفحة", ROUTES, index=index)

    with st.sidebar.expander("🕵️‍♂️ Telemetry"):
        st.caption(f"Trace ID: {Telemetry.get_trace_id()}")

    return user_id, route


def render_stats(summary: DashboardSummary) -> None:
    col1, col2, col3 = st.columns(3)
    col1.markdown(f'<div class="stat-box">🔥 {summary.streak_days} أيام</div>', unsafe_allow_html=True)
    col2.markdown(
        f'<div class="stat-box">⭐ {summary.today_score} / {GameConfig.MAX_DAILY_POINTS}</div>',
        unsafe_allow_html=True,
    )
    col3.markdown(
        f'<div class="stat-box">📅 {summary.total_days_participated}</div>', unsafe_allow_html=True
    )
