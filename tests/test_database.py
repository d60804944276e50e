"""Tests for the data layer (database + models)."""

from __future__ import annotations

import sqlite3

import pytest

from data.database import CommitteeDatabase
from data.models import (
    AudioManifest,
    AudioSegment,
    ConversationRecord,
    DebateTurnRecord,
    DecisionRecord,
    DecisionStatus,
    InvalidStatusTransition,
    validate_transition,
)


async def _decision(db: CommitteeDatabase, title: str = "Decide") -> DecisionRecord:
    conversation_id = await db.create_conversation(ConversationRecord(title=title))
    record = DecisionRecord(conversation_id=conversation_id, title=title)
    await db.create_decision(record)
    return record


class TestModels:
    def test_summary_property(self):
        rec = DecisionRecord(conversation_id="c", title="t", summary_json='{"options": []}')
        assert rec.summary == {"options": []}

    def test_bad_summary_is_none(self):
        rec = DecisionRecord(conversation_id="c", title="t", summary_json="{oops")
        assert rec.summary is None

    def test_default_status(self):
        assert DecisionRecord(conversation_id="c", title="t").status == DecisionStatus.EXPLORING

    def test_ids_are_uuid_hex(self):
        rec = DecisionRecord(conversation_id="c", title="t")
        assert len(rec.id) == 32
        int(rec.id, 16)

    def test_manifest_segment_lookup(self):
        seg = AudioSegment(index=2, agent="a", round_number=1, text="t", audio_file="f", duration_ms=5)
        manifest = AudioManifest(decision_id="d", segments=[seg], total_duration_ms=5)
        assert manifest.segment(2) is seg
        assert manifest.segment(0) is None


class TestStatusTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            ("exploring", "analyzing"),
            ("analyzing", "debating"),
            ("debating", "recommended"),
            ("debating", "analyzing"),
            ("recommended", "decided"),
            ("decided", "reviewed"),
            ("decided", "exploring"),
            ("reviewed", "exploring"),
            ("recommended", "recommended"),
        ],
    )
    def test_allowed(self, current, target):
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            ("exploring", "decided"),
            ("reviewed", "debating"),
            ("decided", "debating"),
            ("analyzing", "exploring"),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidStatusTransition):
            validate_transition(current, target)


class TestDatabase:
    @pytest.mark.asyncio
    async def test_create_and_get_decision(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db, "Move abroad?")
        fetched = await test_db.get_decision(rec.id)
        assert fetched is not None
        assert fetched.title == "Move abroad?"
        assert fetched.status == DecisionStatus.EXPLORING

    @pytest.mark.asyncio
    async def test_get_missing_decision(self, test_db: CommitteeDatabase):
        assert await test_db.get_decision("nope") is None

    @pytest.mark.asyncio
    async def test_list_decisions(self, test_db: CommitteeDatabase):
        for i in range(5):
            await _decision(test_db, f"Decision {i}")
        decisions = await test_db.list_decisions(limit=3)
        assert len(decisions) == 3
        # Most recent first
        assert decisions[0].title == "Decision 4"

    @pytest.mark.asyncio
    async def test_update_status_with_fields(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        await test_db.update_decision_status(rec.id, DecisionStatus.DEBATING)
        await test_db.update_decision_status(rec.id, "recommended")
        await test_db.update_decision_status(rec.id, "decided", user_choice="Stay")
        fetched = await test_db.get_decision(rec.id)
        assert fetched.status == DecisionStatus.DECIDED
        assert fetched.user_choice == "Stay"

    @pytest.mark.asyncio
    async def test_update_status_errors(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        with pytest.raises(InvalidStatusTransition):
            await test_db.update_decision_status(rec.id, "reviewed")
        with pytest.raises(ValueError, match="Unknown decision fields"):
            await test_db.update_decision_status(rec.id, "analyzing", title="x")
        with pytest.raises(KeyError):
            await test_db.update_decision_status("missing", "analyzing")

    @pytest.mark.asyncio
    async def test_update_summary(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        await test_db.update_decision_summary(rec.id, '{"options": [{"label": "A"}]}')
        fetched = await test_db.get_decision(rec.id)
        assert fetched.summary == {"options": [{"label": "A"}]}


class TestDebateTurns:
    @pytest.mark.asyncio
    async def test_save_and_load_in_transcript_order(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        await test_db.save_turn(rec.id, 2, 1, "a", "rebuttal")
        await test_db.save_turn(rec.id, 1, 1, "b", "opening b")
        await test_db.save_turn(rec.id, 1, 1, "a", "opening a")
        turns = await test_db.load_turns(rec.id)
        assert [(t.round_number, t.agent) for t in turns] == [(1, "b"), (1, "a"), (2, "a")]
        assert all(isinstance(t, DebateTurnRecord) for t in turns)

    @pytest.mark.asyncio
    async def test_agent_speaks_once_per_slot(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        await test_db.save_turn(rec.id, 1, 1, "a", "first")
        with pytest.raises(sqlite3.IntegrityError):
            await test_db.save_turn(rec.id, 1, 1, "a", "again")

    @pytest.mark.asyncio
    async def test_runs_are_archived(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        assert await test_db.start_debate_run(rec.id) == 1
        await test_db.save_turn(rec.id, 1, 1, "a", "old", run_number=1)
        assert await test_db.start_debate_run(rec.id) == 2
        await test_db.save_turn(rec.id, 1, 1, "a", "new", run_number=2)

        assert [t.content for t in await test_db.load_turns(rec.id)] == ["new"]
        assert [t.content for t in await test_db.load_turns(rec.id, 1)] == ["old"]
        assert await test_db.list_runs(rec.id) == [1, 2]

    @pytest.mark.asyncio
    async def test_no_turns(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        assert await test_db.load_turns(rec.id) == []


class TestManifests:
    @pytest.mark.asyncio
    async def test_save_replaces_wholesale(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        seg = AudioSegment(index=0, agent="a", round_number=1, text="t", audio_file="001_a_r1.mp3", duration_ms=900)
        await test_db.save_manifest(AudioManifest(decision_id=rec.id, segments=[seg], total_duration_ms=900))
        await test_db.save_manifest(AudioManifest(decision_id=rec.id, segments=[], total_duration_ms=0))

        loaded = await test_db.load_manifest(rec.id)
        assert loaded is not None
        assert loaded.segments == []

    @pytest.mark.asyncio
    async def test_missing_manifest(self, test_db: CommitteeDatabase):
        assert await test_db.load_manifest("none") is None

    @pytest.mark.asyncio
    async def test_cascade_delete(self, test_db: CommitteeDatabase):
        rec = await _decision(test_db)
        await test_db.save_turn(rec.id, 1, 1, "a", "x")
        await test_db.delete_conversation(rec.conversation_id)
        assert await test_db.get_decision(rec.id) is None
        assert await test_db.load_turns(rec.id) == []
