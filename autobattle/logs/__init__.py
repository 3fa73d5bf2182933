"""Structured journaling for battle sessions."""

from .journal import (
    BattleJournal,
    JournalEventType,
    JournalEntry,
    JournalSummary,
    SummarizationConfig,
    create_journal,
)

__all__ = [
    "BattleJournal",
    "JournalEventType",
    "JournalEntry",
    "JournalSummary",
    "SummarizationConfig",
    "create_journal",
]
