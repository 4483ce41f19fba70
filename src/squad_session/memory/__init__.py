from squad_session.memory.message_store import InMemoryMessageStore, LocalMessageStore, SqliteMessageStore
from squad_session.memory.store import MemoryStore

__all__ = [
    "InMemoryMessageStore",
    "LocalMessageStore",
    "MemoryStore",
    "SqliteMessageStore",
]
