"""Persistence backends for the rulebook engine."""

from rulebook_engine.store.base import Row, RulebookStore
from rulebook_engine.store.memory import InMemoryRulebookStore
from rulebook_engine.store.postgrest import PostgrestRulebookStore

__all__ = [
    "Row",
    "RulebookStore",
    "InMemoryRulebookStore",
    "PostgrestRulebookStore",
]
