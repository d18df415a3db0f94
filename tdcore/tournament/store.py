"""
Tournament Store - Persistence of the Aggregate Root with Version CAS.

save(state, expected_version)는 저장소의 현재 버전이 expected_version과
일치할 때만 성공하고, 버전을 1 증가시킨 상태를 반환.
불일치 시 ConcurrentModificationError (재시도 없음).

expected_version == 0 은 "아직 존재하지 않음"을 의미.
"""

import json
from typing import Dict, Optional, Protocol

import redis.asyncio as redis

from tdcore.logging_config import get_logger
from tdcore.utils.errors import ConcurrentModificationError
from .models import TournamentState

logger = get_logger(__name__)


class TournamentStore(Protocol):
    """Persistence boundary for tournament aggregates."""

    async def load(self, tournament_id: str) -> Optional[TournamentState]:
        ...

    async def save(self, state: TournamentState, expected_version: int) -> TournamentState:
        ...

    async def exists(self, tournament_id: str) -> bool:
        ...


class InMemoryTournamentStore:
    """Process-local store, used by tests and single-worker deployments."""

    def __init__(self):
        self._states: Dict[str, TournamentState] = {}

    async def load(self, tournament_id: str) -> Optional[TournamentState]:
        return self._states.get(tournament_id)

    async def save(self, state: TournamentState, expected_version: int) -> TournamentState:
        current = self._states.get(state.tournament_id)
        current_version = current.version if current else 0
        if current_version != expected_version:
            raise ConcurrentModificationError(state.tournament_id, expected_version)

        saved = state.with_version(expected_version + 1)
        self._states[state.tournament_id] = saved
        return saved

    async def exists(self, tournament_id: str) -> bool:
        return tournament_id in self._states


class RedisTournamentStore:
    """
    Redis hash per tournament: {prefix}:tournament:{id} → {version, state}.

    state는 JSON 직렬화된 TournamentState.to_dict().
    버전 비교와 쓰기는 Lua 스크립트 하나로 원자적으로 수행.
    """

    # 현재 버전이 ARGV[1]과 같을 때만 덮어씀 (키 없음 = 버전 0)
    CAS_SAVE_SCRIPT = """
    local current = redis.call("hget", KEYS[1], "version")
    if current == false then
        current = "0"
    end
    if current == ARGV[1] then
        redis.call("hset", KEYS[1], "version", ARGV[2], "state", ARGV[3])
        return 1
    else
        return 0
    end
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "tdcore"):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._cas_script = None

    def _key(self, tournament_id: str) -> str:
        return f"{self.key_prefix}:tournament:{tournament_id}"

    def _ensure_scripts(self) -> None:
        if self._cas_script is None:
            self._cas_script = self.redis.register_script(self.CAS_SAVE_SCRIPT)

    async def load(self, tournament_id: str) -> Optional[TournamentState]:
        raw = await self.redis.hget(self._key(tournament_id), "state")
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return TournamentState.from_dict(json.loads(raw))

    async def save(self, state: TournamentState, expected_version: int) -> TournamentState:
        self._ensure_scripts()

        saved = state.with_version(expected_version + 1)
        payload = json.dumps(saved.to_dict())

        result = await self._cas_script(
            keys=[self._key(state.tournament_id)],
            args=[str(expected_version), str(saved.version), payload],
        )
        if result != 1:
            logger.warning(
                "tournament_save_conflict",
                tournament_id=state.tournament_id,
                expected_version=expected_version,
            )
            raise ConcurrentModificationError(state.tournament_id, expected_version)
        return saved

    async def exists(self, tournament_id: str) -> bool:
        return await self.redis.exists(self._key(tournament_id)) == 1
