import time

import streamlit as st

from src.config import Difficulty, GameConfig
from src.fsm import QuizState
from src.quiz.application.daily_session import QuizSnapshot
from src.quiz.presentation.viewmodel import QuizViewModel


def render(vm: QuizViewModel) -> None:
    """
    Quiz screen. Every rerun ticks the timer through the view model, so a
    one-second rerun loop is enough to drive the countdown.
    """
    snap = vm.heartbeat() if vm.quiz else vm.open_quiz()
    if snap is None:
        return

    if vm.error:
        st.error(vm.error)

    match snap.state:
        case QuizState.AWAITING_CONFIRMATION:
            _render_confirm(vm)
        case QuizState.QUESTION_ACTIVE | QuizState.BONUS_OFFERED:
            _render_question(vm, snap)
        case QuizState.ANSWER_REVEALED | QuizState.BONUS_REVEALED:
            _render_result(snap)
        case QuizState.COMPLETED | QuizState.BONUS_DONE:
            _render_done(snap)
        case _:
            st.info("جاري التحميل...")


def _render_confirm(vm: QuizViewModel) -> None:
    st.warning(
        f"لديك {GameConfig.QUESTIONS_PER_DAY} أسئلة، ولكل سؤال "
        f"{GameConfig.QUESTION_TIMER_SECONDS} ثانية. لا يمكن إيقاف المؤقت بعد البدء."
    )
    if st.button("ابدأ الاختبار", type="primary"):
        vm.confirm_start()
        st.rerun()


def _render_question(vm: QuizViewModel, snap: QuizSnapshot) -> None:
    q = snap.question
    assert q is not None
    is_bonus = snap.state == QuizState.BONUS_OFFERED

    tier = Difficulty.BONUS if is_bonus else q.difficulty
    header = "سؤال البونص" if is_bonus else f"السؤال {snap.question_number} / {GameConfig.QUESTIONS_PER_DAY}"
    st.caption(f"{header} • {tier.label} • {tier.points} نقاط")
    st.progress(snap.remaining_seconds / GameConfig.QUESTION_TIMER_SECONDS)
    st.markdown(f"⏱️ **{snap.remaining_seconds}**")
    st.markdown(f'<div class="question-text">{q.text}</div>', unsafe_allow_html=True)

    for i, option in enumerate(q.options):
        if st.button(option, key=f"opt_{q.id}_{i}", use_container_width=True, disabled=snap.submitting):
            vm.answer(i)
            st.rerun()

    time.sleep(1)
    st.rerun()


def _render_result(snap: QuizSnapshot) -> None:
    outcome = snap.last_outcome
    if outcome is None:
        return
    if outcome.timed_out:
        st.error("انتهى الوقت!")
    elif outcome.is_correct:
        st.success(f"إجابة صحيحة! +{outcome.score}")
    else:
        correct = outcome.question.options[outcome.question.correct_option]
        st.error(f"إجابة خاطئة. الصحيح: {correct}")
    st.metric("مجموع اليوم", outcome.total_score)

    time.sleep(1)
    st.rerun()


def _render_done(snap: QuizSnapshot) -> None:
    st.balloons()
    st.success("أحسنت! أكملت أسئلة اليوم.")
    if snap.session:
        st.metric("مجموع اليوم", snap.session.total_score)
    for answer in snap.answers:
        icon = "✅" if answer.is_correct else ("⏱️" if answer.timed_out else "❌")
        st.write(f"{icon} +{answer.score}")
