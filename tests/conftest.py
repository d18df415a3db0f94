"""Shared fixtures for tournament tests."""

from decimal import Decimal
from typing import List, Optional

import pytest

from tdcore.config import Settings
from tdcore.tournament.distributed_lock import LocalLockManager
from tdcore.tournament.engine import LiveTournamentEngine
from tdcore.tournament.models import (
    Registration,
    RegistrationStatus,
    Table,
    TournamentConfig,
    TournamentState,
)
from tdcore.tournament.store import InMemoryTournamentStore


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockRedis:
    """Mock Redis client covering the commands the lock and store use."""

    def __init__(self):
        self._data = {}
        self._hashes = {}

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self._data:
            return None
        self._data[key] = value
        return True

    async def get(self, key):
        return self._data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            if self._hashes.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, key):
        return 1 if key in self._data or key in self._hashes else 0

    async def hset(self, key, field=None, value=None, mapping=None):
        bucket = self._hashes.setdefault(key, {})
        if mapping:
            bucket.update(mapping)
        elif field is not None:
            bucket[field] = value

    async def hget(self, key, field):
        return self._hashes.get(key, {}).get(field)

    async def hgetall(self, key):
        return dict(self._hashes.get(key, {}))

    def register_script(self, script):
        """Emulate the Lua scripts by their effect."""
        if "hset" in script:

            async def cas_save(keys=None, args=None):
                bucket = self._hashes.get(keys[0], {})
                current = bucket.get("version", "0")
                if current != args[0]:
                    return 0
                self._hashes[keys[0]] = {"version": args[1], "state": args[2]}
                return 1

            return cas_save

        if "pexpire" in script:

            async def renew(keys=None, args=None):
                return 1 if self._data.get(keys[0]) == args[0] else 0

            return renew

        async def release(keys=None, args=None):
            if self._data.get(keys[0]) == args[0]:
                del self._data[keys[0]]
                return 1
            return 0

        return release


def build_state(
    counts: List[int],
    max_seats: int = 9,
    config: Optional[TournamentConfig] = None,
    tournament_id: str = "t1",
) -> TournamentState:
    """Active tables seated from seat 1 upward with active registrations."""
    state = TournamentState(
        tournament_id=tournament_id,
        config=config or TournamentConfig(default_max_seats=max_seats),
    )
    for number, count in enumerate(counts, start=1):
        table = Table.create(tournament_id, number, max_seats)
        for seat in range(1, count + 1):
            reg = Registration(
                player_id=f"p{number}-{seat}",
                tournament_id=tournament_id,
                status=RegistrationStatus.ACTIVE,
                chip_count=10000,
                paid_amount=Decimal("100"),
            )
            state = state.with_registration(reg)
            table = table.with_player_seated(reg.registration_id, seat)
        state = state.with_table(table)
    return state


@pytest.fixture
def manual_clock():
    return ManualClock()


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryTournamentStore()


@pytest.fixture
def lock_manager():
    return LocalLockManager()


@pytest.fixture
def engine(store, lock_manager, manual_clock, settings):
    return LiveTournamentEngine(store, lock_manager, now=manual_clock, settings=settings)


@pytest.fixture
def state_factory():
    return build_state
