"""
Модуль хранения состояния сессий.
"""

from .session_state_store import SessionStateStore, state_from_snapshot, state_to_snapshot

__all__ = [
    'SessionStateStore',
    'state_from_snapshot',
    'state_to_snapshot'
]
