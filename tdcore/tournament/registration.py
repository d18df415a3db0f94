"""Registration lookups and status guards shared by seating and player operations."""

from typing import Iterable

from tdcore.utils.errors import PlayerNotActiveError, RegistrationNotFoundError
from .models import Registration, RegistrationStatus, TournamentState


def get_registration(state: TournamentState, registration_id: str) -> Registration:
    reg = state.registrations.get(registration_id)
    if reg is None:
        raise RegistrationNotFoundError(registration_id, state.tournament_id)
    return reg


def get_player_registration(state: TournamentState, player_id: str) -> Registration:
    reg = state.find_registration(player_id)
    if reg is None:
        raise RegistrationNotFoundError(player_id, state.tournament_id)
    return reg


def require_status(
    registration: Registration,
    allowed: Iterable[RegistrationStatus],
    operation: str,
) -> None:
    if registration.status not in tuple(allowed):
        raise PlayerNotActiveError(
            registration.registration_id,
            registration.status.value,
            operation,
        )
