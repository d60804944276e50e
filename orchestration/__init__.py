"""Orchestration layer – event bus, debate schedules and decision briefs.

The debate manager itself lives in :mod:`orchestration.debate_manager`; it is
not re-exported here because the audio pipeline imports the event bus from
this package.
"""

from orchestration.brief import compile_brief, format_transcript, is_ready_for_debate, merge_summary
from orchestration.events import EventBus, Subscription
from orchestration.protocols import (
    MODERATOR_SLOT,
    DebateProtocol,
    FullProtocol,
    QuickProtocol,
    Slot,
    create_protocol,
)

__all__ = [
    "MODERATOR_SLOT",
    "DebateProtocol",
    "EventBus",
    "FullProtocol",
    "QuickProtocol",
    "Slot",
    "Subscription",
    "compile_brief",
    "create_protocol",
    "format_transcript",
    "is_ready_for_debate",
    "merge_summary",
]
