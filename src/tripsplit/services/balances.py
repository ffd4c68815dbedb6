from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from tripsplit.db.models import Expense, ExpenseParticipant, MemberRef, TripInfo
from tripsplit.services.itemized import aggregate_line_items

UNKNOWN_MEMBER = "Unknown"


@dataclass(slots=True)
class PairBalance:
    member_id: str
    member_name: str
    amount: Decimal


@dataclass(slots=True)
class BalanceEntry:
    member_id: str
    member_name: str
    total_owed: Decimal = Decimal(0)
    total_owing: Decimal = Decimal(0)
    balances_with: list[PairBalance] = field(default_factory=list)

    @property
    def net_balance(self) -> Decimal:
        return self.total_owed - self.total_owing


def effective_participants(expense: Expense) -> list[ExpenseParticipant]:
    if expense.line_items:
        return aggregate_line_items(expense.line_items)
    return list(expense.participants)


def accumulate_debts(expenses: Iterable[Expense]) -> tuple[dict[tuple[str, str], Decimal], set[str]]:
    """
    Sum what each member owes each payer.

    Keys are ``(creditor_id, debtor_id)``. External participants and the payer's
    own share never enter the ledger. Also returns every member id seen.
    """
    debts: dict[tuple[str, str], Decimal] = {}
    seen: set[str] = set()
    for expense in expenses:
        seen.add(expense.owner_id)
        for participant in effective_participants(expense):
            if not isinstance(participant.ref, MemberRef):
                continue
            debtor = participant.ref.member_id
            seen.add(debtor)
            if debtor == expense.owner_id:
                continue
            key = (expense.owner_id, debtor)
            debts[key] = debts.get(key, Decimal(0)) + participant.amount_owed
    return debts, seen


def calculate_balance_sheet(
    expenses: Iterable[Expense],
    member_names: Optional[Mapping[str, str]] = None,
) -> list[BalanceEntry]:
    names = member_names or {}
    debts, seen = accumulate_debts(expenses)

    entries = {
        member_id: BalanceEntry(member_id=member_id, member_name=names.get(member_id, UNKNOWN_MEMBER))
        for member_id in sorted(seen)
    }

    pairs = {tuple(sorted(key)) for key in debts}
    for a, b in sorted(pairs):
        net = debts.get((a, b), Decimal(0)) - debts.get((b, a), Decimal(0))
        if not net:
            continue
        entries[a].balances_with.append(PairBalance(b, entries[b].member_name, net))
        entries[b].balances_with.append(PairBalance(a, entries[a].member_name, -net))
        creditor, debtor = (a, b) if net > 0 else (b, a)
        entries[creditor].total_owed += abs(net)
        entries[debtor].total_owing += abs(net)

    for entry in entries.values():
        entry.balances_with.sort(key=lambda pair: (-pair.amount, pair.member_id))

    return list(entries.values())


def total_expenses(expenses: Iterable[Expense]) -> Decimal:
    return sum((expense.amount for expense in expenses), Decimal(0))


def serialize_balance(entry: BalanceEntry) -> dict[str, Any]:
    return {
        "memberId": entry.member_id,
        "memberName": entry.member_name,
        "totalOwed": float(entry.total_owed),
        "totalOwing": float(entry.total_owing),
        "netBalance": float(entry.net_balance),
        "balancesWith": [
            {"memberId": pair.member_id, "memberName": pair.member_name, "amount": float(pair.amount)}
            for pair in entry.balances_with
        ],
    }


def serialize_trip(trip: TripInfo) -> dict[str, Any]:
    return {
        "id": trip.id,
        "name": trip.name,
        "destination": trip.destination,
        "startDate": trip.start_date.isoformat() if trip.start_date else None,
        "endDate": trip.end_date.isoformat() if trip.end_date else None,
    }


def balance_sheet_payload(
    expenses: list[Expense],
    member_names: Optional[Mapping[str, str]] = None,
    trip: Optional[TripInfo] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "balances": [serialize_balance(entry) for entry in calculate_balance_sheet(expenses, member_names)],
        "totalExpenses": float(total_expenses(expenses)),
    }
    if trip is not None:
        payload["trip"] = serialize_trip(trip)
    return payload
