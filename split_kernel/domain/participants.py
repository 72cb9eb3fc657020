"""
Participants -- who takes part in an expense and with which split input.

Each participant carries exactly one split input variant. Only the variant
the active split method reads is addressable, so a stale percent can never
resurface after the method changes (see ``strategies.switch_strategy``).

The roster de-duplicates by participant id with a set checked before every
insertion; insertion order is preserved for display and for the
deterministic placement of rounding remainders.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from split_kernel.domain.values import Money
from split_kernel.exceptions import SplitValidationError
from split_kernel.invariants import SplitInvariant


@dataclass(frozen=True, slots=True)
class NoInput:
    """Participant input for methods that read nothing per participant."""


@dataclass(frozen=True, slots=True)
class PercentInput:
    """PERCENTAGE input: the participant's percent of the total."""

    percent: Decimal

    def __post_init__(self) -> None:
        if isinstance(self.percent, float):
            raise TypeError("percent must be Decimal, int or str, not float")
        object.__setattr__(self, "percent", Decimal(str(self.percent)))


@dataclass(frozen=True, slots=True)
class ExactInput:
    """EXACT_AMOUNTS input: the participant's owed amount."""

    amount: Money


@dataclass(frozen=True, slots=True)
class ShareInput:
    """SHARES input: the participant's share count."""

    count: int

    def __post_init__(self) -> None:
        if isinstance(self.count, bool) or not isinstance(self.count, int):
            raise TypeError(f"share count must be int, got {type(self.count).__name__}")


SplitInput = Union[NoInput, PercentInput, ExactInput, ShareInput]


@dataclass(frozen=True, slots=True)
class Participant:
    """One person taking part in an expense."""

    id: str
    display_name: str
    split_input: SplitInput = NoInput()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Participant id must be non-empty")

    def with_input(self, split_input: SplitInput) -> Participant:
        return Participant(self.id, self.display_name, split_input)


class ParticipantRoster:
    """
    Ordered, id-unique collection of participants.

    Guarantees:
        - No two participants share an id
        - Iteration order is insertion order
        - Immutable: ``with_participant`` returns a new roster
    """

    __slots__ = ("_participants", "_ids")

    def __init__(self, participants: Iterable[Participant] = ()):
        ordered: list[Participant] = []
        ids: set[str] = set()
        for participant in participants:
            if participant.id in ids:
                raise SplitValidationError(
                    SplitInvariant.UNIQUE_PARTICIPANTS,
                    f"Participant {participant.id} appears more than once",
                    {"participant_id": participant.id},
                )
            ids.add(participant.id)
            ordered.append(participant)
        self._participants: tuple[Participant, ...] = tuple(ordered)
        self._ids: frozenset[str] = frozenset(ids)

    def with_participant(self, participant: Participant) -> ParticipantRoster:
        """Return a new roster with ``participant`` appended."""
        return ParticipantRoster((*self._participants, participant))

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._ids

    def __iter__(self) -> Iterator[Participant]:
        return iter(self._participants)

    def __len__(self) -> int:
        return len(self._participants)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParticipantRoster):
            return NotImplemented
        return self._participants == other._participants

    def __hash__(self) -> int:
        return hash(self._participants)

    def __repr__(self) -> str:
        return f"ParticipantRoster({[p.id for p in self._participants]!r})"

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(p.id for p in self._participants)

    def get(self, participant_id: str) -> Participant | None:
        for participant in self._participants:
            if participant.id == participant_id:
                return participant
        return None
