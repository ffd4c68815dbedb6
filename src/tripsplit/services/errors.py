from __future__ import annotations


class SplitError(ValueError):
    code = "split_error"


class EmptySelectionError(SplitError):
    code = "empty_selection"

    def __init__(self, message: str = "Select at least one participant.") -> None:
        super().__init__(message)


class SplitSumError(SplitError):
    code = "split_sum"

    def __init__(self, total) -> None:
        super().__init__(f"Split percentages must sum to 100% (got {total}%).")
        self.total = total


class LineItemSumMismatchError(SplitError):
    code = "line_item_sum_mismatch"

    def __init__(self, expected, actual) -> None:
        super().__init__(f"Line items add up to {actual}, expense amount is {expected}.")
        self.expected = expected
        self.actual = actual


class DuplicateNameError(SplitError):
    code = "duplicate_name"

    def __init__(self, name: str) -> None:
        super().__init__(f"External participant {name!r} is already in the list.")
        self.name = name


class InvalidParticipantReferenceError(SplitError):
    code = "invalid_participant_reference"


class SplitModeError(SplitError):
    code = "split_mode"


class UnknownMemberError(SplitError):
    code = "unknown_member"

    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member {member_id} does not belong to this group.")
        self.member_id = member_id


class ExpenseNotFoundError(LookupError):
    code = "expense_not_found"


class TripNotFoundError(LookupError):
    code = "trip_not_found"
