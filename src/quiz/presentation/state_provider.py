from abc import ABC, abstractmethod
from typing import Any

import streamlit as st

from src.quiz.domain.ports import IAuthProvider


class IStateProvider(ABC):
    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def pop(self, key: str) -> Any:
        pass


class StreamlitStateProvider(IStateProvider):
    def get(self, key: str, default: Any = None) -> Any:
        return st.session_state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        st.session_state[key] = value

    def pop(self, key: str) -> Any:
        return st.session_state.pop(key, None)


class SessionStateAuthProvider(IAuthProvider):
    """
    Local (SQLite) identity: whoever was picked in the sidebar.
    Hosted deployments use SupabaseAuthProvider instead.
    """

    USER_KEY = "user_id"

    def __init__(self, state: IStateProvider) -> None:
        self.state = state

    def login(self, user_id: str, email: str | None = None, name: str | None = None) -> None:
        self.state.set(self.USER_KEY, user_id)
        self.state.set("identity", {"email": email, "name": name})

    def logout(self) -> None:
        self.state.pop(self.USER_KEY)
        self.state.pop("identity")

    def current_user_id(self) -> str | None:
        return self.state.get(self.USER_KEY)

    def current_identity(self) -> dict[str, Any]:
        return dict(self.state.get("identity") or {})
