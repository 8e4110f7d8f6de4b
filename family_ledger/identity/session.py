"""
Session-Scoped Key/Value Storage

The delegated Drive token must survive a page reload within one browser
session and must never outlive it. A SessionScope is the host
environment's per-session state; nothing written here reaches durable
storage.
"""

from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from typing import Any, Optional


class SessionScope(ABC):
    """Key/value scope that lives exactly as long as the host session."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        pass


class InMemorySessionScope(SessionScope):
    """Process-scoped session state, for scripts, workers and tests."""

    def __init__(self):
        self._values: dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._values


class StreamlitSessionScope(SessionScope):
    """
    Session state of a Streamlit browser session.

    `st.session_state` survives script reruns within one websocket
    session. A browser reload opens a new session with empty state, so
    the principal signs in again and the token is acquired afresh.
    """

    def __init__(self, state: Optional[MutableMapping] = None, prefix: str = "family_ledger."):
        if state is None:
            import streamlit as st
            state = st.session_state
        self._state = state
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        return self._state.get(self._key(key))

    def set(self, key: str, value: Any) -> None:
        self._state[self._key(key)] = value

    def delete(self, key: str) -> None:
        if self._key(key) in self._state:
            del self._state[self._key(key)]
