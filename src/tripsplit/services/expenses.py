from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence, Union

from tripsplit.db.models import (
    CustomSplitPolicy,
    Expense,
    ExpenseParticipant,
    ExternalParticipant,
    ExternalRef,
    GroupMember,
    LineItem,
    MemberRef,
    TripInfo,
)
from tripsplit.logging import get_logger
from tripsplit.schemas import ExpenseInput, LineItemSplitInput, ParticipantSplitInput, parse_expense_input
from tripsplit.services.balances import balance_sheet_payload
from tripsplit.services.errors import (
    DuplicateNameError,
    ExpenseNotFoundError,
    InvalidParticipantReferenceError,
    TripNotFoundError,
    UnknownMemberError,
)
from tripsplit.services.itemized import check_line_items_total, price_line_item
from tripsplit.services.split import (
    SPLIT_TOLERANCE,
    ParticipantEntry,
    allocate,
    build_candidates,
    check_split_sum,
    set_custom_percentage,
)
from tripsplit.services.summary import PersonalSummary, TripExpenseSummary, personal_summary, summarize_trip_expenses


class ExpenseStore(Protocol):
    async def create_expense(self, group_id: str, expense: Expense) -> Expense: ...

    async def replace_expense(self, expense_id: str, expense: Expense) -> Expense | None: ...

    async def get_expense(self, expense_id: str) -> Expense | None: ...

    async def delete_expense(self, expense_id: str) -> bool: ...

    async def list_expenses(self, group_id: str, trip_id: Optional[str] = None) -> list[Expense]: ...

    async def get_trip(self, group_id: str, trip_id: str) -> TripInfo | None: ...

    async def list_trips(self, group_id: str) -> list[TripInfo]: ...


class GroupMembershipDirectory(Protocol):
    async def list_members(self, group_id: str) -> list[GroupMember]: ...


class ExternalParticipantRegistry(Protocol):
    async def list_recent(self, group_id: str, limit: int = 50) -> list[ExternalParticipant]: ...

    async def touch(self, group_id: str, name: str) -> ExternalParticipant: ...


Payload = Union[Mapping[str, Any], ExpenseInput]


def prepare_expense(data: ExpenseInput, tolerance: Decimal = SPLIT_TOLERANCE) -> Expense:
    """Validate a parsed payload and derive every ``amount_owed``. Performs no I/O."""
    if data.trip_id is None:
        raise ValueError("trip_id is required")

    expense = Expense(
        description=data.description,
        amount=data.amount,
        owner_id=data.owner_id,
        trip_id=data.trip_id,
        category=data.category,
        day_id=data.day_id,
        event_id=data.event_id,
    )

    if isinstance(data, ParticipantSplitInput):
        shares = _nonzero(data.participants)
        _check_unique_refs(shares)
        check_split_sum([p.split_percentage for p in shares], tolerance)
        expense.participants = allocate(data.amount, ((p.ref, p.split_percentage) for p in shares))
        return expense

    assert isinstance(data, LineItemSplitInput)
    priced: list[LineItem] = []
    for item in data.line_items:
        item = replace(item, participants=_nonzero(item.participants))
        _check_unique_refs(item.participants)
        priced.append(price_line_item(item, tolerance))
    check_line_items_total(data.amount, priced)
    expense.line_items = priced
    return expense


def member_ids(expense: Expense) -> set[str]:
    ids = {expense.owner_id}
    for participant in _all_participants(expense):
        if isinstance(participant.ref, MemberRef):
            ids.add(participant.ref.member_id)
    return ids


def external_names(expense: Expense) -> list[str]:
    names: list[str] = []
    for participant in _all_participants(expense):
        if isinstance(participant.ref, ExternalRef) and participant.ref.name not in names:
            names.append(participant.ref.name)
    return names


class ExpenseService:
    def __init__(
        self,
        store: ExpenseStore,
        directory: GroupMembershipDirectory,
        registry: ExternalParticipantRegistry,
        *,
        tolerance: Decimal = SPLIT_TOLERANCE,
        policy: CustomSplitPolicy = CustomSplitPolicy.REDISTRIBUTE,
        recent_limit: int = 50,
    ) -> None:
        self.store = store
        self.directory = directory
        self.registry = registry
        self.tolerance = tolerance
        self.policy = policy
        self.recent_limit = recent_limit
        self._log = get_logger(__name__)

    async def create_expense(self, group_id: str, payload: Payload) -> Expense:
        expense = prepare_expense(_parse(payload, update=False), self.tolerance)

        if await self.store.get_trip(group_id, expense.trip_id) is None:
            raise TripNotFoundError(expense.trip_id)
        await self._check_members(group_id, expense)

        stored = await self.store.create_expense(group_id, expense)
        await self._register_externals(group_id, stored)
        self._log.info(
            "expense.created",
            expense_id=stored.id,
            trip_id=stored.trip_id,
            amount=str(stored.amount),
            itemized=stored.is_itemized,
        )
        return stored

    async def update_expense(self, group_id: str, expense_id: str, payload: Payload) -> Expense:
        data = _parse(payload, update=True)
        existing = await self._get_owned(group_id, expense_id)
        if data.trip_id is None:
            data = replace(data, trip_id=existing.trip_id)
        expense = prepare_expense(data, self.tolerance)

        if expense.trip_id != existing.trip_id and await self.store.get_trip(group_id, expense.trip_id) is None:
            raise TripNotFoundError(expense.trip_id)
        await self._check_members(group_id, expense)

        stored = await self.store.replace_expense(expense_id, expense)
        if stored is None:
            raise ExpenseNotFoundError(expense_id)
        await self._register_externals(group_id, stored)
        self._log.info("expense.updated", expense_id=expense_id, amount=str(stored.amount))
        return stored

    async def delete_expense(self, group_id: str, expense_id: str) -> None:
        await self._get_owned(group_id, expense_id)
        if not await self.store.delete_expense(expense_id):
            raise ExpenseNotFoundError(expense_id)
        self._log.info("expense.deleted", expense_id=expense_id)

    async def trip_balances(self, group_id: str, trip_id: Optional[str] = None) -> dict[str, Any]:
        trip = None
        if trip_id is not None:
            trip = await self.store.get_trip(group_id, trip_id)
            if trip is None:
                raise TripNotFoundError(trip_id)

        expenses = await self.store.list_expenses(group_id, trip_id)
        names = await self._member_names(group_id)
        payload = balance_sheet_payload(expenses, names, trip)
        self._log.info("balances.computed", group_id=group_id, trip_id=trip_id, expenses=len(expenses))
        return payload

    async def trip_summary(self, group_id: str, trip_id: str) -> TripExpenseSummary:
        if await self.store.get_trip(group_id, trip_id) is None:
            raise TripNotFoundError(trip_id)
        return summarize_trip_expenses(await self.store.list_expenses(group_id, trip_id))

    async def personal_summary(self, group_id: str, member_id: str) -> PersonalSummary:
        names = await self._member_names(group_id)
        if member_id not in names:
            raise UnknownMemberError(member_id)
        trips = await self.store.list_trips(group_id)
        expenses = await self.store.list_expenses(group_id)
        return personal_summary(member_id, expenses, trips, names)

    async def candidates(self, group_id: str, expense_id: Optional[str] = None) -> list[ParticipantEntry]:
        members = await self.directory.list_members(group_id)
        expense = await self._get_owned(group_id, expense_id) if expense_id else None
        return build_candidates(members, expense)

    def set_percentage(self, entries: Sequence[ParticipantEntry], index: int, raw_value: object) -> list[ParticipantEntry]:
        return set_custom_percentage(entries, index, raw_value, self.policy)

    async def recent_externals(self, group_id: str) -> list[ExternalParticipant]:
        return await self.registry.list_recent(group_id, self.recent_limit)

    async def _get_owned(self, group_id: str, expense_id: str) -> Expense:
        expense = await self.store.get_expense(expense_id)
        if expense is None or (expense.group_id is not None and expense.group_id != group_id):
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def _member_names(self, group_id: str) -> dict[str, str]:
        return {member.id: member.display_name for member in await self.directory.list_members(group_id)}

    async def _check_members(self, group_id: str, expense: Expense) -> None:
        known = set(await self._member_names(group_id))
        for member_id in sorted(member_ids(expense)):
            if member_id not in known:
                raise UnknownMemberError(member_id)

    async def _register_externals(self, group_id: str, expense: Expense) -> None:
        for name in external_names(expense):
            await self.registry.touch(group_id, name)


def _parse(payload: Payload, *, update: bool) -> ExpenseInput:
    if isinstance(payload, (ParticipantSplitInput, LineItemSplitInput)):
        return payload
    return parse_expense_input(payload, update=update)


def _all_participants(expense: Expense) -> Iterable[ExpenseParticipant]:
    yield from expense.participants
    for item in expense.line_items:
        yield from item.participants


def _nonzero(participants: Sequence[ExpenseParticipant]) -> list[ExpenseParticipant]:
    # a 0% share owes nothing and is not stored
    return [p for p in participants if p.split_percentage > 0]


def _check_unique_refs(participants: Sequence[ExpenseParticipant]) -> None:
    seen = set()
    for participant in participants:
        if participant.ref in seen:
            if isinstance(participant.ref, ExternalRef):
                raise DuplicateNameError(participant.ref.name)
            raise InvalidParticipantReferenceError(f"Member {participant.ref.member_id} is listed twice.")
        seen.add(participant.ref)
