from datetime import date

import streamlit as st

from src.config import Difficulty, GameConfig
from src.quiz.application.admin import AdminService
from src.quiz.domain.errors import ConflictError, InvalidQuestionError


def render(admin: AdminService) -> None:
    st.title("لوحة التحكم")

    overview = admin.overview()
    cols = st.columns(len(overview))
    for col, (label, value) in zip(cols, overview.items(), strict=True):
        col.metric(label, value)

    enabled = admin.is_quiz_enabled()
    if st.toggle("المسابقة مفعّلة", value=enabled) != enabled:
        admin.toggle_quiz()
        st.rerun()

    questions_tab, users_tab, submissions_tab = st.tabs(["الأسئلة", "المستخدمون", "الإجابات"])
    with questions_tab:
        _render_questions(admin)
    with users_tab:
        _render_users(admin)
    with submissions_tab:
        _render_submissions(admin)


def _render_questions(admin: AdminService) -> None:
    with st.form("add_question", clear_on_submit=True):
        text = st.text_area("نص السؤال")
        options = [st.text_input(f"الخيار {i + 1}") for i in range(GameConfig.OPTIONS_PER_QUESTION)]
        correct = st.radio("الإجابة الصحيحة", range(GameConfig.OPTIONS_PER_QUESTION), horizontal=True)
        difficulty = st.selectbox("الصعوبة", Difficulty.required(), format_func=lambda d: d.label)
        is_bonus = st.checkbox("سؤال بونص")
        bonus_date = st.date_input("تاريخ البونص", value=date.today()) if is_bonus else None

        if st.form_submit_button("إضافة"):
            try:
                admin.add_question(text, options, int(correct), difficulty, is_bonus, bonus_date)
                st.success("تمت الإضافة")
            except InvalidQuestionError as e:
                st.error(str(e))
            except ConflictError:
                st.error("يوجد سؤال بونص لهذا التاريخ")

    for q in admin.list_questions():
        col1, col2 = st.columns([5, 1])
        tag = f"بونص - {q.bonus_date}" if q.is_bonus else q.difficulty.label
        col1.write(f"[{tag}] {q.text}")
        if col2.button("حذف", key=f"del_{q.id}"):
            admin.delete_question(q.id)
            st.rerun()


def _render_users(admin: AdminService) -> None:
    search = st.text_input("بحث")
    for stats in admin.list_user_stats(search=search):
        col1, col2 = st.columns([5, 1])
        col1.write(
            f"{stats.user.name} • {stats.status.value} • {stats.total_score} نقطة • "
            f"{stats.attempts_count} أيام"
        )
        label = "إلغاء الحظر" if stats.user.is_banned else "حظر"
        if col2.button(label, key=f"ban_{stats.user.id}"):
            admin.toggle_ban(stats.user.id)
            st.rerun()


def _render_submissions(admin: AdminService) -> None:
    for sub in admin.list_submissions():
        icon = "✅" if sub.answer.is_correct else "❌"
        text = sub.question.text if sub.question else sub.answer.question_id
        st.write(f"{icon} {sub.session_date} • {sub.user_name} • {text} • +{sub.answer.score}")
