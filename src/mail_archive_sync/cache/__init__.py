"""Local result cache and session persistence."""

from .result_cache import ResultCache, SaveOutcome
from .session_store import SessionStore

__all__ = ["ResultCache", "SaveOutcome", "SessionStore"]
