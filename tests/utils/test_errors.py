"""Error hierarchy tests."""

import pytest

from tdcore.utils.errors import (
    ErrorCode,
    InvalidTournamentStateError,
    LockUnavailableError,
    PartialBalanceFailureError,
    SeatOccupiedError,
    TableNotEmptyError,
    TournamentError,
    TournamentNotFoundError,
)


class TestTournamentError:
    def test_to_dict(self):
        error = TournamentError(ErrorCode.INVALID_REQUEST, "bad input", {"field": "x"})

        assert error.to_dict() == {
            "errorCode": "INVALID_REQUEST",
            "errorMessage": "bad input",
            "details": {"field": "x"},
            "recoverable": True,
        }
        assert str(error) == "bad input"

    def test_accepts_plain_string_code(self):
        assert TournamentError("CUSTOM", "x").code == "CUSTOM"

    def test_error_code_is_str_enum(self):
        assert ErrorCode.TABLE_FULL == "TABLE_FULL"


class TestSubclasses:
    @pytest.mark.parametrize(
        "error, code, recoverable",
        [
            (InvalidTournamentStateError("pause", "paused", ["running"]), ErrorCode.INVALID_TOURNAMENT_STATE, True),
            (TournamentNotFoundError("t1"), ErrorCode.TOURNAMENT_NOT_FOUND, False),
            (SeatOccupiedError("tbl", 3, "r1"), ErrorCode.SEAT_OCCUPIED, True),
            (TableNotEmptyError("tbl", 2), ErrorCode.TABLE_NOT_EMPTY, True),
            (PartialBalanceFailureError(2, [{"move_id": "m"}]), ErrorCode.PARTIAL_BALANCE_FAILURE, True),
            (LockUnavailableError("lock:t1", 500), ErrorCode.LOCK_UNAVAILABLE, True),
        ],
    )
    def test_codes(self, error, code, recoverable):
        assert isinstance(error, TournamentError)
        assert error.code == code.value
        assert error.recoverable is recoverable

    def test_invalid_state_details(self):
        error = InvalidTournamentStateError("pause", "paused", ["running"])
        assert error.message == "Cannot pause while clock is paused"
        assert error.details["allowedStatuses"] == ["running"]

    def test_table_not_empty_merges_details(self):
        error = TableNotEmptyError("tbl", 1, details={"failed": []})
        assert error.details == {"tableId": "tbl", "occupied": 1, "failed": []}
