from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from tripsplit.db.models import Expense, MemberRef, TripInfo
from tripsplit.services.balances import UNKNOWN_MEMBER, effective_participants

UNCATEGORIZED = "uncategorized"


@dataclass(slots=True)
class DayExpenses:
    day_id: Optional[str]
    expenses: list[Expense] = field(default_factory=list)


@dataclass(slots=True)
class TripExpenseSummary:
    total: Decimal
    count: int
    by_category: dict[str, Decimal]
    by_day: list[DayExpenses]


def summarize_trip_expenses(expenses: Sequence[Expense]) -> TripExpenseSummary:
    by_category: dict[str, Decimal] = {}
    by_day: dict[Optional[str], DayExpenses] = {}
    for expense in expenses:
        category = expense.category or UNCATEGORIZED
        by_category[category] = by_category.get(category, Decimal(0)) + expense.amount
        by_day.setdefault(expense.day_id, DayExpenses(day_id=expense.day_id)).expenses.append(expense)

    return TripExpenseSummary(
        total=sum((expense.amount for expense in expenses), Decimal(0)),
        count=len(expenses),
        by_category=by_category,
        by_day=list(by_day.values()),
    )


@dataclass(slots=True)
class TripBreakdown:
    trip_id: str
    trip_name: str
    total_expenses: Decimal = Decimal(0)
    paid: Decimal = Decimal(0)
    you_owe: Decimal = Decimal(0)
    owed_to_you: Decimal = Decimal(0)


@dataclass(slots=True)
class Counterparty:
    member_id: str
    member_name: str
    amount: Decimal = Decimal(0)
    trips: dict[str, Decimal] = field(default_factory=dict)

    def add(self, trip_id: str, amount: Decimal) -> None:
        self.amount += amount
        self.trips[trip_id] = self.trips.get(trip_id, Decimal(0)) + amount


@dataclass(slots=True)
class PersonalSummary:
    member_id: str
    member_name: str
    total_expenses: Decimal
    total_you_owe: Decimal
    total_owed_to_you: Decimal
    trips: list[TripBreakdown]
    people_you_owe: list[Counterparty]
    people_who_owe_you: list[Counterparty]

    @property
    def net_balance(self) -> Decimal:
        return self.total_owed_to_you - self.total_you_owe


def personal_summary(
    member_id: str,
    expenses: Iterable[Expense],
    trips: Sequence[TripInfo],
    member_names: Mapping[str, str],
) -> PersonalSummary:
    """
    One member's gross position across trips.

    Amounts are not netted between people: paying someone back shows up on both
    sides. External participants are ignored.
    """
    breakdowns = {trip.id: TripBreakdown(trip_id=trip.id, trip_name=trip.name) for trip in trips}
    you_owe: dict[str, Counterparty] = {}
    owe_you: dict[str, Counterparty] = {}

    for expense in expenses:
        trip = breakdowns.get(expense.trip_id)
        if trip is None:
            continue
        trip.total_expenses += expense.amount
        if expense.owner_id == member_id:
            trip.paid += expense.amount

        for participant in effective_participants(expense):
            if not isinstance(participant.ref, MemberRef):
                continue
            debtor = participant.ref.member_id
            if debtor == expense.owner_id:
                continue
            if expense.owner_id == member_id:
                trip.owed_to_you += participant.amount_owed
                _counterparty(owe_you, debtor, member_names).add(trip.trip_id, participant.amount_owed)
            elif debtor == member_id:
                trip.you_owe += participant.amount_owed
                _counterparty(you_owe, expense.owner_id, member_names).add(trip.trip_id, participant.amount_owed)

    def by_amount(people: dict[str, Counterparty]) -> list[Counterparty]:
        return sorted(people.values(), key=lambda person: (-person.amount, person.member_id))

    rows = list(breakdowns.values())
    return PersonalSummary(
        member_id=member_id,
        member_name=member_names.get(member_id, UNKNOWN_MEMBER),
        total_expenses=sum((row.total_expenses for row in rows), Decimal(0)),
        total_you_owe=sum((row.you_owe for row in rows), Decimal(0)),
        total_owed_to_you=sum((row.owed_to_you for row in rows), Decimal(0)),
        trips=rows,
        people_you_owe=by_amount(you_owe),
        people_who_owe_you=by_amount(owe_you),
    )


def _counterparty(people: dict[str, Counterparty], member_id: str, names: Mapping[str, str]) -> Counterparty:
    if member_id not in people:
        people[member_id] = Counterparty(member_id=member_id, member_name=names.get(member_id, UNKNOWN_MEMBER))
    return people[member_id]
