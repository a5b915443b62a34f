import streamlit as st

from src.quiz.application.service import QuizService
from src.quiz.domain.models import User
from src.quiz.presentation.views.components import render_stats


def render(service: QuizService, user: User) -> None:
    summary = service.get_dashboard_summary(user)

    st.title(f"مرحباً {summary.user_name}")
    render_stats(summary)

    if not summary.quiz_enabled:
        st.info("المسابقة متوقفة حالياً")
    elif summary.completed_today and not summary.bonus_available:
        st.success("أكملت اختبار اليوم، عُد غداً!")
    elif summary.bonus_available:
        st.info("🎁 سؤال البونص متاح اليوم!")
