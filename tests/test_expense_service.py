from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from tripsplit.db.models import CustomSplitPolicy, ExternalParticipant, ExternalRef, GroupMember, MemberRef, TripInfo
from tripsplit.services.errors import (
    DuplicateNameError,
    EmptySelectionError,
    ExpenseNotFoundError,
    LineItemSumMismatchError,
    SplitSumError,
    TripNotFoundError,
    UnknownMemberError,
)
from tripsplit.services.expenses import ExpenseService


class StubStore:
    def __init__(self) -> None:
        self.trips = {"t1": TripInfo(id="t1", name="Lisbon", start_date=date(2025, 6, 1), end_date=date(2025, 6, 7))}
        self.expenses = {}
        self.writes = 0

    async def create_expense(self, group_id, expense):
        self.writes += 1
        expense.id = f"e{len(self.expenses) + 1}"
        expense.group_id = group_id
        self.expenses[expense.id] = expense
        return expense

    async def replace_expense(self, expense_id, expense):
        if expense_id not in self.expenses:
            return None
        self.writes += 1
        expense.id = expense_id
        expense.group_id = self.expenses[expense_id].group_id
        self.expenses[expense_id] = expense
        return expense

    async def get_expense(self, expense_id):
        return self.expenses.get(expense_id)

    async def delete_expense(self, expense_id):
        return self.expenses.pop(expense_id, None) is not None

    async def list_expenses(self, group_id, trip_id=None):
        return [
            e for e in self.expenses.values()
            if e.group_id == group_id and (trip_id is None or e.trip_id == trip_id)
        ]

    async def get_trip(self, group_id, trip_id):
        return self.trips.get(trip_id) if group_id == "g1" else None

    async def list_trips(self, group_id):
        return list(self.trips.values()) if group_id == "g1" else []


class StubDirectory:
    async def list_members(self, group_id):
        if group_id != "g1":
            return []
        return [
            GroupMember(id="a", group_id="g1", display_name="Ann"),
            GroupMember(id="b", group_id="g1", display_name="Bo"),
            GroupMember(id="c", group_id="g1", display_name="Cy"),
        ]


class StubRegistry:
    def __init__(self) -> None:
        self.touched = []

    async def list_recent(self, group_id, limit=50):
        return [
            ExternalParticipant(id=str(i), group_id=group_id, name=name, last_used_at=datetime.now(timezone.utc))
            for i, name in enumerate(reversed(self.touched))
        ][:limit]

    async def touch(self, group_id, name):
        if name in self.touched:
            self.touched.remove(name)
        self.touched.append(name)
        return ExternalParticipant(id=name, group_id=group_id, name=name)


@pytest.fixture
def store():
    return StubStore()


@pytest.fixture
def registry():
    return StubRegistry()


@pytest.fixture
def service(store, registry):
    return ExpenseService(store, StubDirectory(), registry)


def payload(**extra):
    data = {"description": "Dinner", "amount": 90, "ownerId": "a", "tripId": "t1"}
    data.update(extra)
    return data


@pytest.mark.asyncio
async def test_create_expense_computes_amounts(service, store, registry):
    expense = await service.create_expense(
        "g1",
        payload(
            participants=[
                {"participantId": "a", "splitPercentage": 50},
                {"participantId": "b", "splitPercentage": 25},
                {"externalName": "Sam", "splitPercentage": 25},
            ]
        ),
    )

    assert expense.id == "e1"
    assert [p.amount_owed for p in expense.participants] == [Decimal("45.00"), Decimal("22.50"), Decimal("22.50")]
    assert registry.touched == ["Sam"]
    assert store.writes == 1


@pytest.mark.asyncio
async def test_create_rejects_empty_selection_before_any_write(service, store):
    with pytest.raises(EmptySelectionError):
        await service.create_expense("g1", payload(participants=[]))
    assert store.writes == 0


@pytest.mark.asyncio
async def test_create_rejects_bad_split(service, store):
    with pytest.raises(SplitSumError):
        await service.create_expense("g1", payload(participants=[{"participantId": "a", "splitPercentage": 90}]))
    assert store.writes == 0


@pytest.mark.asyncio
async def test_create_rejects_duplicate_external(service):
    with pytest.raises(DuplicateNameError):
        await service.create_expense(
            "g1",
            payload(
                participants=[
                    {"externalName": "Sam", "splitPercentage": 50},
                    {"externalName": "Sam", "splitPercentage": 50},
                ]
            ),
        )


@pytest.mark.asyncio
async def test_create_rejects_unknown_member(service, store):
    with pytest.raises(UnknownMemberError):
        await service.create_expense("g1", payload(participants=[{"participantId": "zz", "splitPercentage": 100}]))
    with pytest.raises(UnknownMemberError):
        await service.create_expense(
            "g1", payload(ownerId="zz", participants=[{"participantId": "a", "splitPercentage": 100}])
        )
    assert store.writes == 0


@pytest.mark.asyncio
async def test_create_rejects_unknown_trip(service):
    with pytest.raises(TripNotFoundError):
        await service.create_expense(
            "g1", payload(tripId="nope", participants=[{"participantId": "a", "splitPercentage": 100}])
        )


@pytest.mark.asyncio
async def test_create_itemized_expense(service, registry):
    expense = await service.create_expense(
        "g1",
        payload(
            amount=50,
            lineItems=[
                {"description": "Pizza", "amount": 25, "participants": [{"participantId": "b", "splitPercentage": 100}]},
                {
                    "description": "Salad",
                    "amount": 12.5,
                    "quantity": 2,
                    "participants": [
                        {"participantId": "c", "splitPercentage": 50},
                        {"externalName": "Sam", "splitPercentage": 50},
                    ],
                },
            ],
        ),
    )

    assert expense.participants == []
    assert [p.amount_owed for p in expense.line_items[1].participants] == [Decimal("12.50"), Decimal("12.50")]
    assert registry.touched == ["Sam"]


@pytest.mark.asyncio
async def test_create_itemized_total_mismatch(service, store):
    with pytest.raises(LineItemSumMismatchError):
        await service.create_expense(
            "g1",
            payload(
                amount=40,
                lineItems=[
                    {"description": "Pizza", "amount": 25, "participants": [{"participantId": "b", "splitPercentage": 100}]},
                ],
            ),
        )
    assert store.writes == 0


@pytest.mark.asyncio
async def test_update_replaces_participants(service, store):
    created = await service.create_expense("g1", payload(participants=[{"participantId": "b", "splitPercentage": 100}]))
    updated = await service.update_expense(
        "g1",
        created.id,
        {
            "description": "Dinner",
            "amount": 30,
            "ownerId": "a",
            "participants": [
                {"participantId": "b", "splitPercentage": 50},
                {"participantId": "c", "splitPercentage": 50},
            ],
        },
    )

    assert updated.trip_id == "t1"
    assert [(p.ref, p.amount_owed) for p in updated.participants] == [
        (MemberRef("b"), Decimal("15.00")),
        (MemberRef("c"), Decimal("15.00")),
    ]
    assert store.writes == 2


@pytest.mark.asyncio
async def test_update_and_delete_other_group_expense(service):
    created = await service.create_expense("g1", payload(participants=[{"participantId": "b", "splitPercentage": 100}]))

    with pytest.raises(ExpenseNotFoundError):
        await service.update_expense("g2", created.id, payload(participants=[{"participantId": "b", "splitPercentage": 100}]))
    with pytest.raises(ExpenseNotFoundError):
        await service.delete_expense("g2", created.id)
    with pytest.raises(ExpenseNotFoundError):
        await service.delete_expense("g1", "missing")


@pytest.mark.asyncio
async def test_delete_expense_updates_balances(service):
    created = await service.create_expense("g1", payload(participants=[{"participantId": "b", "splitPercentage": 100}]))
    before = await service.trip_balances("g1", "t1")
    await service.delete_expense("g1", created.id)
    after = await service.trip_balances("g1", "t1")

    assert before["totalExpenses"] == 90.0
    assert after == {"balances": [], "totalExpenses": 0.0, "trip": before["trip"]}


@pytest.mark.asyncio
async def test_trip_balances(service):
    await service.create_expense("g1", payload(amount=30, ownerId="b", participants=[{"participantId": "a", "splitPercentage": 100}]))
    await service.create_expense("g1", payload(amount=10, ownerId="a", participants=[{"participantId": "b", "splitPercentage": 100}]))

    result = await service.trip_balances("g1", "t1")
    balances = {entry["memberId"]: entry for entry in result["balances"]}

    assert result["totalExpenses"] == 40.0
    assert result["trip"]["startDate"] == "2025-06-01"
    assert balances["b"]["balancesWith"] == [{"memberId": "a", "memberName": "Ann", "amount": 20.0}]
    assert balances["a"]["netBalance"] == -20.0


@pytest.mark.asyncio
async def test_trip_balances_unknown_trip(service):
    with pytest.raises(TripNotFoundError):
        await service.trip_balances("g1", "nope")


@pytest.mark.asyncio
async def test_candidates_and_recent_externals(service):
    created = await service.create_expense(
        "g1",
        payload(
            participants=[
                {"participantId": "b", "splitPercentage": 60},
                {"externalName": "Sam", "splitPercentage": 40},
            ]
        ),
    )

    fresh = await service.candidates("g1")
    assert [e.ref for e in fresh] == [MemberRef("a"), MemberRef("b"), MemberRef("c")]

    editing = await service.candidates("g1", created.id)
    assert [e.ref for e in editing] == [MemberRef("b"), ExternalRef("Sam"), MemberRef("a"), MemberRef("c")]

    recent = await service.recent_externals("g1")
    assert [r.name for r in recent] == ["Sam"]


@pytest.mark.asyncio
async def test_personal_and_trip_summary(service):
    await service.create_expense(
        "g1",
        payload(
            amount=30,
            category="food",
            participants=[
                {"participantId": "a", "splitPercentage": 50},
                {"participantId": "b", "splitPercentage": 50},
            ],
        ),
    )
    await service.create_expense("g1", payload(amount=8, ownerId="b", participants=[{"participantId": "a", "splitPercentage": 100}]))

    summary = await service.personal_summary("g1", "a")
    assert summary.total_owed_to_you == Decimal("15.00")
    assert summary.total_you_owe == Decimal("8.00")
    assert summary.net_balance == Decimal("7.00")
    assert summary.trips[0].paid == Decimal("30.00")

    trip = await service.trip_summary("g1", "t1")
    assert trip.count == 2
    assert trip.by_category == {"food": Decimal("30.00"), "uncategorized": Decimal("8.00")}

    with pytest.raises(UnknownMemberError):
        await service.personal_summary("g1", "zz")


@pytest.mark.asyncio
async def test_set_percentage_follows_configured_policy(store, registry):
    redistribute = ExpenseService(store, StubDirectory(), registry)
    independent = ExpenseService(store, StubDirectory(), registry, policy=CustomSplitPolicy.INDEPENDENT)
    entries = await redistribute.candidates("g1")

    assert [e.split_percentage for e in redistribute.set_percentage(entries, 0, "50")] == [50, 25, 25]
    assert [e.split_percentage for e in independent.set_percentage(entries, 0, "50")][0] == 50
    assert sum(e.split_percentage for e in independent.set_percentage(entries, 0, "50")) != 100


@pytest.mark.asyncio
async def test_update_rejects_unknown_trip(service, store):
    created = await service.create_expense("g1", payload(participants=[{"participantId": "b", "splitPercentage": 100}]))

    with pytest.raises(TripNotFoundError):
        await service.update_expense(
            "g1", created.id, payload(tripId="no-such-trip", participants=[{"participantId": "b", "splitPercentage": 100}])
        )
    assert store.expenses[created.id].trip_id == "t1"
    assert store.writes == 1


@pytest.mark.asyncio
async def test_update_moves_expense_to_other_trip(service, store):
    store.trips["t2"] = TripInfo(id="t2", name="Porto")
    created = await service.create_expense("g1", payload(participants=[{"participantId": "b", "splitPercentage": 100}]))

    updated = await service.update_expense(
        "g1", created.id, payload(tripId="t2", participants=[{"participantId": "b", "splitPercentage": 100}])
    )

    assert updated.trip_id == "t2"
    assert (await service.trip_balances("g1", "t1"))["balances"] == []


@pytest.mark.asyncio
async def test_zero_percent_shares_are_dropped(service):
    expense = await service.create_expense(
        "g1",
        payload(
            ownerId="b",
            participants=[
                {"participantId": "a", "splitPercentage": 100},
                {"participantId": "c", "splitPercentage": 0},
            ],
        ),
    )

    assert [p.ref for p in expense.participants] == [MemberRef("a")]
    result = await service.trip_balances("g1", "t1")
    assert sorted(entry["memberId"] for entry in result["balances"]) == ["a", "b"]


@pytest.mark.asyncio
async def test_zero_percent_line_item_shares_are_dropped(service, registry):
    expense = await service.create_expense(
        "g1",
        payload(
            amount=20,
            lineItems=[
                {
                    "description": "Wine",
                    "amount": 20,
                    "participants": [
                        {"participantId": "b", "splitPercentage": 100},
                        {"externalName": "Sam", "splitPercentage": 0},
                    ],
                },
            ],
        ),
    )

    assert [p.ref for p in expense.line_items[0].participants] == [MemberRef("b")]
    assert registry.touched == []


class FailingStore(StubStore):
    async def create_expense(self, group_id, expense):
        raise RuntimeError("insert failed")


@pytest.mark.asyncio
async def test_externals_not_registered_when_write_fails(registry):
    service = ExpenseService(FailingStore(), StubDirectory(), registry)

    with pytest.raises(RuntimeError):
        await service.create_expense(
            "g1",
            payload(
                participants=[
                    {"participantId": "a", "splitPercentage": 50},
                    {"externalName": "Sam", "splitPercentage": 50},
                ]
            ),
        )
    assert registry.touched == []
