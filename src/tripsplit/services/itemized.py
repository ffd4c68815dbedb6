from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from tripsplit.db.models import ExpenseParticipant, LineItem, ParticipantRef
from tripsplit.services.errors import LineItemSumMismatchError
from tripsplit.services.split import SPLIT_TOLERANCE, allocate, check_split_sum
from tripsplit.utils.parse import CENT, HUNDRED, round2


def line_items_total(line_items: Sequence[LineItem]) -> Decimal:
    return sum((item.line_total for item in line_items), Decimal(0))


def check_line_items_total(amount: Decimal, line_items: Sequence[LineItem]) -> None:
    total = line_items_total(line_items)
    if abs(round2(total) - round2(amount)) >= CENT:
        raise LineItemSumMismatchError(expected=round2(amount), actual=round2(total))


def price_line_item(item: LineItem, tolerance: Decimal = SPLIT_TOLERANCE) -> LineItem:
    """Validate one line item's split and derive each share of its line total."""
    if item.quantity < 1:
        raise ValueError("quantity must be at least 1")
    check_split_sum([p.split_percentage for p in item.participants], tolerance)
    participants = allocate(item.line_total, ((p.ref, p.split_percentage) for p in item.participants))
    return LineItem(
        id=item.id,
        description=item.description,
        amount=item.amount,
        quantity=item.quantity,
        category=item.category,
        participants=participants,
    )


def aggregate_line_items(line_items: Sequence[LineItem]) -> list[ExpenseParticipant]:
    """
    Collapse per-line-item shares into one effective share per participant.

    The result is only meant for balance computation and is never stored as the
    expense's own participant list. ``split_percentage`` on the result is the
    participant's share of all line totals, rounded to cents.
    """
    owed: dict[ParticipantRef, Decimal] = {}
    for item in line_items:
        for participant in item.participants:
            owed[participant.ref] = owed.get(participant.ref, Decimal(0)) + participant.amount_owed

    total = line_items_total(line_items)
    result: list[ExpenseParticipant] = []
    for ref, amount in owed.items():
        percentage = round2(amount * HUNDRED / total) if total else Decimal(0)
        result.append(ExpenseParticipant(ref=ref, split_percentage=percentage, amount_owed=amount))
    return result
