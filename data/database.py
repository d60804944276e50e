"""Async SQLite database layer using aiosqlite.

Handles schema creation and CRUD for conversations, decisions, debate
turns and audio manifests.  Debate turns are append-only: a re-run of a
decision's debate opens a new ``run_number`` instead of touching the
rows of earlier runs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from data.models import (
    AudioManifest,
    ConversationRecord,
    DebateTurnRecord,
    DecisionRecord,
    DecisionStatus,
    MessageRecord,
    validate_transition,
)

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS conversations (
    id          TEXT    PRIMARY KEY,
    title       TEXT    NOT NULL,
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT    NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role            TEXT    NOT NULL,
    content         TEXT    NOT NULL,
    created_at      TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS decisions (
    id                    TEXT PRIMARY KEY,
    conversation_id       TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    title                 TEXT NOT NULL,
    status                TEXT NOT NULL DEFAULT 'exploring',
    summary_json          TEXT,
    user_choice           TEXT,
    user_choice_reasoning TEXT,
    outcome               TEXT,
    outcome_date          TEXT,
    debate_started_at     TEXT,
    debate_completed_at   TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS debate_turns (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    decision_id     TEXT    NOT NULL REFERENCES decisions(id) ON DELETE CASCADE,
    run_number      INTEGER NOT NULL DEFAULT 1,
    round_number    INTEGER NOT NULL,
    exchange_number INTEGER NOT NULL DEFAULT 1,
    agent           TEXT    NOT NULL,
    content         TEXT    NOT NULL,
    created_at      TEXT    NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_debate_turns_slot
    ON debate_turns (decision_id, run_number, round_number, exchange_number, agent);

CREATE TABLE IF NOT EXISTS audio_manifests (
    decision_id   TEXT PRIMARY KEY REFERENCES decisions(id) ON DELETE CASCADE,
    manifest_json TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);
"""

# Columns that ``update_decision_status`` may touch alongside the status.
_STATUS_FIELDS = frozenset(
    {
        "user_choice",
        "user_choice_reasoning",
        "outcome",
        "outcome_date",
        "debate_started_at",
        "debate_completed_at",
    }
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CommitteeDatabase:
    """Async wrapper around an SQLite database for decision persistence."""

    def __init__(self, db_path: str | Path = "data/committee.db") -> None:
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open connection and ensure schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.info("Database connected: %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Conversations & messages
    # ------------------------------------------------------------------

    async def create_conversation(self, record: ConversationRecord) -> str:
        await self.conn.execute(
            "INSERT INTO conversations (id, title, created_at) VALUES (?, ?, ?)",
            (record.id, record.title, record.created_at.isoformat()),
        )
        await self.conn.commit()
        return record.id

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation; its decisions, turns and manifests cascade."""
        await self.conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        await self.conn.commit()

    async def add_message(self, record: MessageRecord) -> int:
        cur = await self.conn.execute(
            "INSERT INTO messages (conversation_id, role, content, created_at) "
            "VALUES (?, ?, ?, ?)",
            (
                record.conversation_id,
                record.role,
                record.content,
                record.created_at.isoformat(),
            ),
        )
        await self.conn.commit()
        return cur.lastrowid  # type: ignore[return-value]

    async def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id",
            (conversation_id,),
        )
        rows = await cur.fetchall()
        return [
            MessageRecord(
                id=r["id"],
                conversation_id=r["conversation_id"],
                role=r["role"],
                content=r["content"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def create_decision(self, record: DecisionRecord) -> str:
        """Insert a new decision and return its id."""
        await self.conn.execute(
            "INSERT INTO decisions "
            "(id, conversation_id, title, status, summary_json, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.conversation_id,
                record.title,
                record.status.value,
                record.summary_json,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ),
        )
        await self.conn.commit()
        return record.id

    async def get_decision(self, decision_id: str) -> DecisionRecord | None:
        cur = await self.conn.execute("SELECT * FROM decisions WHERE id = ?", (decision_id,))
        row = await cur.fetchone()
        if row is None:
            return None
        return self._decision_from_row(row)

    async def list_decisions(self, limit: int = 20) -> list[DecisionRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM decisions ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        rows = await cur.fetchall()
        return [self._decision_from_row(r) for r in rows]

    async def update_decision_summary(self, decision_id: str, summary_json: str) -> None:
        await self.conn.execute(
            "UPDATE decisions SET summary_json = ?, updated_at = ? WHERE id = ?",
            (summary_json, _now(), decision_id),
        )
        await self.conn.commit()

    async def update_decision_status(
        self,
        decision_id: str,
        status: DecisionStatus | str,
        **fields: Any,
    ) -> None:
        """Move a decision to *status*, optionally setting extra columns.

        Raises ``KeyError`` for an unknown decision, ``ValueError`` for an
        unknown column and :class:`~data.models.InvalidStatusTransition` for
        an illegal move.
        """
        status = DecisionStatus(status)
        unknown = set(fields) - _STATUS_FIELDS
        if unknown:
            raise ValueError(f"Unknown decision fields: {sorted(unknown)}")

        current = await self.get_decision(decision_id)
        if current is None:
            raise KeyError(decision_id)
        validate_transition(current.status, status)

        assignments = ["status = ?", "updated_at = ?"]
        values: list[Any] = [status.value, _now()]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            values.append(value.isoformat() if isinstance(value, datetime) else value)
        values.append(decision_id)

        await self.conn.execute(
            f"UPDATE decisions SET {', '.join(assignments)} WHERE id = ?",
            values,
        )
        await self.conn.commit()

    @staticmethod
    def _decision_from_row(row: aiosqlite.Row) -> DecisionRecord:
        return DecisionRecord(
            id=row["id"],
            conversation_id=row["conversation_id"],
            title=row["title"],
            status=row["status"],
            summary_json=row["summary_json"],
            user_choice=row["user_choice"],
            user_choice_reasoning=row["user_choice_reasoning"],
            outcome=row["outcome"],
            outcome_date=row["outcome_date"],
            debate_started_at=row["debate_started_at"],
            debate_completed_at=row["debate_completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Debate turns
    # ------------------------------------------------------------------

    async def start_debate_run(self, decision_id: str) -> int:
        """Open a fresh run for *decision_id* and return its number.

        Earlier runs stay in the table untouched; ``load_turns`` only shows
        the newest one by default.
        """
        cur = await self.conn.execute(
            "SELECT COALESCE(MAX(run_number), 0) AS last FROM debate_turns "
            "WHERE decision_id = ?",
            (decision_id,),
        )
        row = await cur.fetchone()
        return (row["last"] if row else 0) + 1

    async def save_turn(
        self,
        decision_id: str,
        round_number: int,
        exchange_number: int,
        agent: str,
        text: str,
        *,
        run_number: int = 1,
    ) -> int:
        """Append one finalized turn and return its id."""
        cur = await self.conn.execute(
            "INSERT INTO debate_turns "
            "(decision_id, run_number, round_number, exchange_number, agent, content, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (decision_id, run_number, round_number, exchange_number, agent, text, _now()),
        )
        await self.conn.commit()
        return cur.lastrowid  # type: ignore[return-value]

    async def load_turns(
        self, decision_id: str, run_number: int | None = None
    ) -> list[DebateTurnRecord]:
        """Return the turns of one run (default: the newest) in transcript order."""
        if run_number is None:
            runs = await self.list_runs(decision_id)
            if not runs:
                return []
            run_number = runs[-1]
        cur = await self.conn.execute(
            "SELECT * FROM debate_turns WHERE decision_id = ? AND run_number = ? "
            "ORDER BY round_number, exchange_number, id",
            (decision_id, run_number),
        )
        rows = await cur.fetchall()
        return [
            DebateTurnRecord(
                id=r["id"],
                decision_id=r["decision_id"],
                run_number=r["run_number"],
                round_number=r["round_number"],
                exchange_number=r["exchange_number"],
                agent=r["agent"],
                content=r["content"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def list_runs(self, decision_id: str) -> list[int]:
        cur = await self.conn.execute(
            "SELECT DISTINCT run_number FROM debate_turns WHERE decision_id = ? "
            "ORDER BY run_number",
            (decision_id,),
        )
        rows = await cur.fetchall()
        return [r["run_number"] for r in rows]

    # ------------------------------------------------------------------
    # Audio manifests
    # ------------------------------------------------------------------

    async def save_manifest(self, manifest: AudioManifest) -> None:
        """Store *manifest*, replacing any earlier one for the decision."""
        await self.conn.execute(
            "INSERT OR REPLACE INTO audio_manifests (decision_id, manifest_json, updated_at) "
            "VALUES (?, ?, ?)",
            (manifest.decision_id, manifest.model_dump_json(), _now()),
        )
        await self.conn.commit()

    async def load_manifest(self, decision_id: str) -> AudioManifest | None:
        cur = await self.conn.execute(
            "SELECT manifest_json FROM audio_manifests WHERE decision_id = ?",
            (decision_id,),
        )
        row = await cur.fetchone()
        if row is None:
            return None
        return AudioManifest.model_validate_json(row["manifest_json"])
