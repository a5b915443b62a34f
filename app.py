import logging
import os

import streamlit as st

# --- OTel & Observability Imports ---
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

# --- Prometheus Import ---
from prometheus_client import start_http_server

# --- Application Imports ---
from src.config import GameConfig
from src.quiz.adapters.db_manager import DatabaseManager
from src.quiz.adapters.seeder import DataSeeder
from src.quiz.adapters.sqlite_repository import SQLiteQuizRepository
from src.quiz.adapters.supabase_repository import SupabaseAuthProvider, SupabaseQuizRepository
from src.quiz.application.access import AccessGuard
from src.quiz.application.admin import AdminService
from src.quiz.application.leaderboard import LeaderboardService
from src.quiz.application.service import QuizService
from src.quiz.domain.errors import UnauthenticatedError, UnauthorizedError
from src.quiz.domain.ports import IAuthProvider, IQuizRepository
from src.quiz.presentation.state_provider import SessionStateAuthProvider, StreamlitStateProvider
from src.quiz.presentation.viewmodel import QuizViewModel
from src.quiz.presentation.views import (
    admin_view,
    components,
    dashboard_view,
    leaderboard_view,
    quiz_view,
)


# --- 1. Observability ---
def configure_observability():
    """
    Sends traces and logs over OTLP when OTEL_* is configured and exposes
    Prometheus metrics on GameConfig.METRICS_PORT.
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    headers = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")

    if endpoint and headers:
        resource = Resource.create({"service.name": "ramadan-daily-quiz"})

        trace_provider = TracerProvider(resource=resource)
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=headers))
        )
        trace.set_tracer_provider(trace_provider)

        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=endpoint, headers=headers))
        )
        set_logger_provider(logger_provider)
        logging.getLogger().addHandler(
            LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
        )
    else:
        logging.getLogger(__name__).warning(
            "OTEL env vars not set. Telemetry will not be sent to Cloud."
        )

    try:
        start_http_server(GameConfig.METRICS_PORT)
        logging.getLogger(__name__).info(
            f"Prometheus metrics server started on port {GameConfig.METRICS_PORT}"
        )
    except OSError:
        logging.getLogger(__name__).warning(
            f"Prometheus port {GameConfig.METRICS_PORT} already in use (likely Streamlit reload)."
        )


if "observability_configured" not in st.session_state:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    configure_observability()
    st.session_state.observability_configured = True


# --- 2. Composition Root ---
@st.cache_resource
def get_repository() -> IQuizRepository:
    if GameConfig.USE_SQLITE:
        repo: IQuizRepository = SQLiteQuizRepository(DatabaseManager(GameConfig.DB_PATH))
    else:
        repo = SupabaseQuizRepository.from_credentials(
            GameConfig.SUPABASE_URL or "", GameConfig.SUPABASE_KEY or ""
        )
    DataSeeder(repo).seed_if_empty(GameConfig.SEED_FILE)
    return repo


def get_auth(state_provider: StreamlitStateProvider, repo: IQuizRepository) -> IAuthProvider:
    if isinstance(repo, SupabaseQuizRepository):
        return SupabaseAuthProvider(repo.client)
    return SessionStateAuthProvider(state_provider)


def main():
    st.set_page_config(page_title=GameConfig.APP_TITLE, layout="centered")
    components.apply_styles()

    repo = get_repository()
    state_provider = StreamlitStateProvider()
    auth = get_auth(state_provider, repo)

    service = QuizService(repo)
    guard = AccessGuard(repo, auth)
    vm = QuizViewModel(service, guard, state_provider)

    # --- Sidebar (local identity + navigation) ---
    if isinstance(auth, SessionStateAuthProvider):
        users = [u.id for u in repo.list_users()]
        sel_user, sel_route = components.render_sidebar(auth.current_user_id(), users, vm.route)
        if sel_user and sel_user != auth.current_user_id():
            auth.login(sel_user, name=sel_user)
            guard.register(sel_user, None, sel_user)
            state_provider.pop("daily_quiz")
            st.rerun()
    else:
        _, sel_route = components.render_sidebar(auth.current_user_id(), [], vm.route)

    if sel_route != vm.route and vm.route not in ("login", "blocked"):
        vm.navigate(sel_route)
        state_provider.pop("daily_quiz")

    # --- Router ---
    match vm.route:
        case "login":
            st.warning("يرجى تسجيل الدخول")
            vm.navigate("dashboard")
        case "blocked":
            st.error("تم حظر حسابك")
        case "quiz":
            quiz_view.render(vm)
        case "leaderboard":
            leaderboard_view.render(LeaderboardService(repo))
        case "admin":
            try:
                guard.require_admin()
            except (UnauthenticatedError, UnauthorizedError):
                st.error("هذه الصفحة للمشرفين فقط")
                return
            admin_view.render(AdminService(repo))
        case _:
            if vm.error:
                st.error(vm.error)
            try:
                user = guard.require_active_user()
            except UnauthenticatedError:
                st.info("اختر مستخدماً من القائمة الجانبية")
                return
            except UnauthorizedError:
                st.error("تم حظر حسابك")
                return
            dashboard_view.render(service, user)
            if st.button("ابدأ اختبار اليوم", type="primary"):
                vm.navigate("quiz")
                st.rerun()


if __name__ == "__main__":
    main()
