"""Persistent session state."""

from kairo.state.store import SessionNotFoundError, StateStore, StateStoreError

__all__ = ["SessionNotFoundError", "StateStore", "StateStoreError"]
