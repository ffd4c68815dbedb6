from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from tripsplit.db.models import (
    CustomSplitPolicy,
    Expense,
    ExpenseParticipant,
    ExternalRef,
    GroupMember,
    MemberRef,
    ParticipantRef,
    SplitMode,
)
from tripsplit.services.errors import (
    DuplicateNameError,
    EmptySelectionError,
    InvalidParticipantReferenceError,
    SplitSumError,
)
from tripsplit.utils.parse import HUNDRED, parse_percentage, round2

SPLIT_TOLERANCE = Decimal("0.01")


@dataclass(slots=True)
class ParticipantEntry:
    ref: ParticipantRef
    split_percentage: Decimal = Decimal(0)
    is_selected: bool = False


def compute_even_split(selected_count: int) -> Decimal:
    if selected_count < 0:
        raise ValueError("selected_count must be non-negative")
    if selected_count == 0:
        return Decimal(0)
    return HUNDRED / Decimal(selected_count)


def apply_even_split(entries: Sequence[ParticipantEntry]) -> list[ParticipantEntry]:
    even = compute_even_split(sum(1 for entry in entries if entry.is_selected))
    return [
        replace(entry, split_percentage=even if entry.is_selected else Decimal(0))
        for entry in entries
    ]


def toggle_participant(entries: Sequence[ParticipantEntry], index: int) -> list[ParticipantEntry]:
    _check_index(entries, index)
    updated = list(entries)
    updated[index] = replace(updated[index], is_selected=not updated[index].is_selected)
    # custom percentages are discarded on every selection change
    return apply_even_split(updated)


def set_custom_percentage(
    entries: Sequence[ParticipantEntry],
    index: int,
    raw_value: object,
    policy: CustomSplitPolicy = CustomSplitPolicy.REDISTRIBUTE,
) -> list[ParticipantEntry]:
    _check_index(entries, index)
    if not entries[index].is_selected:
        raise ValueError("Cannot set a percentage for an unselected participant")

    value = parse_percentage(raw_value)
    updated = list(entries)

    if policy == CustomSplitPolicy.INDEPENDENT:
        updated[index] = replace(updated[index], split_percentage=value)
        return updated

    others = [i for i, entry in enumerate(updated) if entry.is_selected and i != index]
    if not others:
        updated[index] = replace(updated[index], split_percentage=HUNDRED)
        return updated

    updated[index] = replace(updated[index], split_percentage=value)
    share = (HUNDRED - value) / Decimal(len(others))
    for i in others:
        updated[i] = replace(updated[i], split_percentage=share)
    return updated


def add_external_participant(entries: Sequence[ParticipantEntry], name: str) -> list[ParticipantEntry]:
    clean = (name or "").strip()
    if not clean:
        raise InvalidParticipantReferenceError("External participant name must not be empty.")
    if any(isinstance(entry.ref, ExternalRef) and entry.ref.name == clean for entry in entries):
        raise DuplicateNameError(clean)

    updated = list(entries)
    updated.append(ParticipantEntry(ref=ExternalRef(clean), is_selected=True))
    return apply_even_split(updated)


def remove_participant(
    entries: Sequence[ParticipantEntry],
    index: int,
    mode: SplitMode,
) -> list[ParticipantEntry]:
    _check_index(entries, index)
    if not isinstance(entries[index].ref, ExternalRef):
        raise ValueError("Only external participants can be removed; deselect members instead")

    updated = [entry for i, entry in enumerate(entries) if i != index]
    if mode == SplitMode.EVEN:
        return apply_even_split(updated)
    return updated


def selected_total(entries: Iterable[ParticipantEntry]) -> Decimal:
    return sum((entry.split_percentage for entry in entries if entry.is_selected), Decimal(0))


def check_split_sum(percentages: Sequence[Decimal], tolerance: Decimal = SPLIT_TOLERANCE) -> None:
    if not percentages:
        raise EmptySelectionError()
    total = sum(percentages, Decimal(0))
    if abs(total - HUNDRED) > tolerance:
        raise SplitSumError(total)


def allocate(total_amount: Decimal, shares: Iterable[tuple[ParticipantRef, Decimal]]) -> list[ExpenseParticipant]:
    """Derive ``amount_owed`` for every share; rounding slack is left where it falls."""
    return [
        ExpenseParticipant(
            ref=ref,
            split_percentage=percentage,
            amount_owed=round2(total_amount * percentage / HUNDRED),
        )
        for ref, percentage in shares
    ]


def validate_for_submit(
    entries: Sequence[ParticipantEntry],
    total_amount: Decimal,
    tolerance: Decimal = SPLIT_TOLERANCE,
) -> list[ExpenseParticipant]:
    if total_amount < 0:
        raise ValueError("total_amount must be non-negative")
    selected = [entry for entry in entries if entry.is_selected]
    check_split_sum([entry.split_percentage for entry in selected], tolerance)
    return allocate(total_amount, ((entry.ref, entry.split_percentage) for entry in selected))


def build_candidates(
    members: Sequence[GroupMember],
    expense: Optional[Expense] = None,
) -> list[ParticipantEntry]:
    if expense is None:
        even = compute_even_split(len(members))
        return [
            ParticipantEntry(ref=MemberRef(member.id), split_percentage=even, is_selected=True)
            for member in members
        ]

    entries = [
        ParticipantEntry(ref=participant.ref, split_percentage=participant.split_percentage, is_selected=True)
        for participant in expense.participants
    ]
    taken = {entry.ref for entry in entries}
    for member in members:
        ref = MemberRef(member.id)
        if ref not in taken:
            entries.append(ParticipantEntry(ref=ref))
    return entries


def detect_split_mode(entries: Sequence[ParticipantEntry]) -> SplitMode:
    selected = [entry for entry in entries if entry.is_selected]
    even = compute_even_split(len(selected))
    if all(abs(entry.split_percentage - even) < SPLIT_TOLERANCE for entry in selected):
        return SplitMode.EVEN
    return SplitMode.CUSTOM


def _check_index(entries: Sequence[ParticipantEntry], index: int) -> None:
    if not 0 <= index < len(entries):
        raise IndexError(f"participant index {index} out of range")
