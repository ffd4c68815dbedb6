from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class SplitMode(str, Enum):
    EVEN = "even"
    CUSTOM = "custom"


class CustomSplitPolicy(str, Enum):
    INDEPENDENT = "independent"
    REDISTRIBUTE = "redistribute"


@dataclass(frozen=True, slots=True)
class MemberRef:
    member_id: str


@dataclass(frozen=True, slots=True)
class ExternalRef:
    name: str


ParticipantRef = Union[MemberRef, ExternalRef]


@dataclass(slots=True)
class GroupMember:
    id: str
    group_id: str
    display_name: str


@dataclass(slots=True)
class ExternalParticipant:
    id: str
    group_id: str
    name: str
    last_used_at: Optional[datetime] = None


@dataclass(slots=True)
class TripInfo:
    id: str
    name: str
    destination: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(slots=True)
class ExpenseParticipant:
    ref: ParticipantRef
    split_percentage: Decimal
    amount_owed: Decimal = Decimal("0.00")


@dataclass(slots=True)
class LineItem:
    description: str
    amount: Decimal
    participants: list[ExpenseParticipant]
    quantity: int = 1
    category: Optional[str] = None
    id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.amount * self.quantity


@dataclass(slots=True)
class Expense:
    description: str
    amount: Decimal
    owner_id: str
    trip_id: str
    participants: list[ExpenseParticipant] = field(default_factory=list)
    line_items: list[LineItem] = field(default_factory=list)
    category: Optional[str] = None
    day_id: Optional[str] = None
    event_id: Optional[str] = None
    group_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_itemized(self) -> bool:
        return bool(self.line_items)
