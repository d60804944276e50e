"""Debate protocols that define the speaking schedule.

A protocol expands the selected debaters into an ordered list of slots.
The moderator's synthesis (round 99) is always the final slot.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from data.models import MODERATOR_ROUND

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """One (round, exchange) step of the schedule."""

    round_number: int
    exchange_number: int = 1

    @property
    def is_moderator(self) -> bool:
        return self.round_number == MODERATOR_ROUND

    @property
    def key(self) -> tuple[int, int]:
        return (self.round_number, self.exchange_number)


MODERATOR_SLOT = Slot(MODERATOR_ROUND, 1)


class DebateProtocol(ABC):
    """Base class for debate schedules."""

    name: str

    @abstractmethod
    def debater_slots(self) -> list[Slot]:
        """Ordered debater slots; every selected debater speaks once in each."""
        ...

    def schedule(self, debaters: list[str], moderator: str) -> list[tuple[Slot, str]]:
        """Full ordered (slot, agent key) sequence, moderator last."""
        order = [(slot, key) for slot in self.debater_slots() for key in debaters]
        order.append((MODERATOR_SLOT, moderator))
        return order


class QuickProtocol(DebateProtocol):
    """Opening statements only, then the moderator."""

    name = "quick"

    def debater_slots(self) -> list[Slot]:
        return [Slot(1)]


class FullProtocol(DebateProtocol):
    """Openings, two rebuttal exchanges, closing votes, then the moderator."""

    name = "full"

    def debater_slots(self) -> list[Slot]:
        return [Slot(1), Slot(2, 1), Slot(2, 2), Slot(3)]


def create_protocol(quick_mode: bool) -> DebateProtocol:
    return QuickProtocol() if quick_mode else FullProtocol()
