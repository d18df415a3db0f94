"""Utility modules."""

from tdcore.utils.errors import ErrorCode, TournamentError

__all__ = [
    "ErrorCode",
    "TournamentError",
]
