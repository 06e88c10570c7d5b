"""Storage backends and models."""

from suggestion_engine.storage.base import BoardStore, SuggestionStore
from suggestion_engine.storage.memory import InMemoryBoardStore, InMemorySuggestionStore
from suggestion_engine.storage.models import Suggestion
from suggestion_engine.storage.postgres import PostgresBoardStore, PostgresSuggestionStore

__all__ = [
    "BoardStore",
    "InMemoryBoardStore",
    "InMemorySuggestionStore",
    "PostgresBoardStore",
    "PostgresSuggestionStore",
    "Suggestion",
    "SuggestionStore",
]
