"""Request payloads accepted by the expense service."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from tripsplit.db.models import ExpenseParticipant, ExternalRef, LineItem, MemberRef
from tripsplit.services.errors import (
    EmptySelectionError,
    InvalidParticipantReferenceError,
    SplitModeError,
)
from tripsplit.utils.parse import round2


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ParticipantShareIn(_Payload):
    participant_id: Optional[str] = Field(None, alias="participantId")
    external_name: Optional[str] = Field(None, alias="externalName", max_length=255)
    split_percentage: Decimal = Field(..., alias="splitPercentage", ge=0, le=100)

    def to_share(self) -> ExpenseParticipant:
        # the browser form sends "" for the unused half of the reference
        member_id = self.participant_id or None
        name = self.external_name or None
        if (member_id is None) == (name is None):
            raise InvalidParticipantReferenceError(
                "Each participant needs exactly one of participantId or externalName."
            )
        ref = MemberRef(member_id) if member_id else ExternalRef(name)
        return ExpenseParticipant(ref=ref, split_percentage=self.split_percentage)


class LineItemIn(_Payload):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0)
    quantity: int = Field(1, ge=1)
    category: Optional[str] = Field(None, max_length=100)
    participants: list[ParticipantShareIn] = Field(default_factory=list)


class ExpenseIn(_Payload):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    category: Optional[str] = Field(None, max_length=100)
    owner_id: str = Field(..., alias="ownerId", min_length=1)
    trip_id: str = Field(..., alias="tripId", min_length=1)
    day_id: Optional[str] = Field(None, alias="dayId")
    event_id: Optional[str] = Field(None, alias="eventId")
    participants: Optional[list[ParticipantShareIn]] = None
    line_items: Optional[list[LineItemIn]] = Field(None, alias="lineItems")


class ExpenseUpdateIn(ExpenseIn):
    trip_id: Optional[str] = Field(None, alias="tripId")


@dataclass(slots=True)
class ExpenseHeader:
    description: str
    amount: Decimal
    owner_id: str
    trip_id: Optional[str] = None
    category: Optional[str] = None
    day_id: Optional[str] = None
    event_id: Optional[str] = None


@dataclass(slots=True)
class ParticipantSplitInput(ExpenseHeader):
    participants: list[ExpenseParticipant] = field(default_factory=list)


@dataclass(slots=True)
class LineItemSplitInput(ExpenseHeader):
    line_items: list[LineItem] = field(default_factory=list)


ExpenseInput = Union[ParticipantSplitInput, LineItemSplitInput]


def parse_expense_input(payload: Union[Mapping[str, Any], ExpenseIn], *, update: bool = False) -> ExpenseInput:
    """
    Validate a create/update payload and pick its split mode.

    Exactly one of ``participants`` / ``lineItems`` may be non-empty. An explicit
    empty ``participants`` list with no line items means nobody was selected.
    """
    if isinstance(payload, ExpenseIn):
        data = payload
    else:
        data = (ExpenseUpdateIn if update else ExpenseIn).model_validate(payload)

    if data.participants and data.line_items:
        raise SplitModeError("Send either participants or lineItems, not both.")
    if not data.participants and not data.line_items:
        if data.participants is not None:
            raise EmptySelectionError()
        raise SplitModeError("Send participants or lineItems.")

    header = dict(
        description=data.description,
        amount=round2(data.amount),
        owner_id=data.owner_id,
        trip_id=data.trip_id,
        category=data.category or None,
        day_id=data.day_id or None,
        event_id=data.event_id or None,
    )

    if data.participants:
        return ParticipantSplitInput(participants=[p.to_share() for p in data.participants], **header)

    return LineItemSplitInput(
        line_items=[
            LineItem(
                description=item.description,
                amount=round2(item.amount),
                quantity=item.quantity,
                category=item.category or None,
                participants=[p.to_share() for p in item.participants],
            )
            for item in data.line_items or []
        ],
        **header,
    )
