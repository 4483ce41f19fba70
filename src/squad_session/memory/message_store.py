from __future__ import annotations

import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from loguru import logger

from squad_session.memory.store import MemoryStore
from squad_session.models import ConversationTurn, Role, utc_now


@runtime_checkable
class LocalMessageStore(Protocol):
    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        """Append a turn; appending an already stored turn id is a no-op."""
        ...

    def load_recent(self, conversation_id: str, limit: int) -> list[ConversationTurn]:
        """Return up to ``limit`` most recent turns, oldest first."""
        ...

    def clear_conversation(self, conversation_id: str) -> None: ...

    def list_conversations(self) -> list[str]: ...


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._turns: dict[str, list[ConversationTurn]] = {}
        self._ids: set[str] = set()

    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        with self._lock:
            if turn.id in self._ids:
                return
            self._ids.add(turn.id)
            self._turns.setdefault(conversation_id, []).append(turn)

    def load_recent(self, conversation_id: str, limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._turns.get(conversation_id, [])[-limit:])

    def clear_conversation(self, conversation_id: str) -> None:
        with self._lock:
            for turn in self._turns.pop(conversation_id, []):
                self._ids.discard(turn.id)

    def list_conversations(self) -> list[str]:
        with self._lock:
            return list(self._turns)


class SqliteMessageStore:
    def __init__(self, store: MemoryStore):
        self._store = store

    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        now = utc_now().isoformat()
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO conversations (id, created_at, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (conversation_id, now, now),
            )
            row = self._store.execute(
                "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            cursor = self._store.execute(
                """
                INSERT OR IGNORE INTO messages (id, conversation_id, seq, role, content, created_at, token_estimate)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    turn.id,
                    conversation_id,
                    int(row["max_seq"]) + 1,
                    turn.role.value,
                    turn.content,
                    turn.created_at.isoformat(),
                    turn.approx_token_count,
                ),
            )
        if cursor.rowcount == 0:
            logger.debug(f"Turn {turn.id} already stored for conversation {conversation_id}")

    def load_recent(self, conversation_id: str, limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        rows = self._store.execute(
            """
            SELECT id, role, content, created_at, token_estimate
            FROM messages
            WHERE conversation_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ).fetchall()
        return [
            ConversationTurn(
                id=row["id"],
                role=Role(row["role"]),
                content=row["content"],
                created_at=datetime.fromisoformat(row["created_at"]),
                approx_token_count=int(row["token_estimate"]),
            )
            for row in reversed(rows)
        ]

    def clear_conversation(self, conversation_id: str) -> None:
        with self._store.transaction():
            self._store.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            self._store.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        logger.info(f"Cleared conversation {conversation_id}")

    def list_conversations(self) -> list[str]:
        rows = self._store.execute(
            "SELECT id FROM conversations ORDER BY updated_at DESC, created_at DESC"
        ).fetchall()
        return [str(row["id"]) for row in rows]
