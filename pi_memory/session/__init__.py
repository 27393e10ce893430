"""Session log module."""

from pi_memory.session.entries import ContentBlock, Entry, NewEntry
from pi_memory.session.manager import Session, SessionManager
from pi_memory.session.serializer import ConversationSerializer, TruncationPolicy
from pi_memory.session.store import EntryStore, InMemoryEntryStore, JsonlEntryStore
from pi_memory.session.tree import TreeNavigator

__all__ = [
    "ContentBlock",
    "ConversationSerializer",
    "Entry",
    "EntryStore",
    "InMemoryEntryStore",
    "JsonlEntryStore",
    "NewEntry",
    "Session",
    "SessionManager",
    "TreeNavigator",
    "TruncationPolicy",
]
