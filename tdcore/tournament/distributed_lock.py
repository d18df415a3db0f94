"""
Per-Tournament Locking.

하나의 토너먼트에 대한 read-tick-persist 시퀀스를 직렬화.
서로 다른 토너먼트는 절대 같은 락을 공유하지 않음.

두 가지 구현:
- LocalLockManager: 단일 프로세스용 asyncio.Lock (토너먼트 ID별)
- DistributedLockManager: Redis SET NX PX 기반 분산 락

Key 구조 (Redis):
- {prefix}:lock:tournament:{id}
"""

import asyncio
import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncGenerator, Dict, Optional, Protocol
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from tdcore.config import Settings
from tdcore.logging_config import get_logger
from tdcore.utils.errors import LockUnavailableError

logger = get_logger(__name__)


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float


class TournamentLockManager(Protocol):
    """Anything that can serialize work on one tournament."""

    def lock(self, tournament_id: str) -> AsyncContextManager[LockInfo]:
        ...


class LocalLockManager:
    """
    In-process lock manager: one asyncio.Lock per tournament id.

    Suitable when a single worker owns the tournaments it serves.
    """

    def __init__(self, acquire_timeout_ms: Optional[int] = None):
        self.acquire_timeout_ms = acquire_timeout_ms
        self._locks: Dict[str, asyncio.Lock] = {}
        # 보유 중이거나 대기 중인 호출 수 (0이 되면 락 제거)
        self._users: Dict[str, int] = {}

    def _get_lock(self, tournament_id: str) -> asyncio.Lock:
        lock = self._locks.get(tournament_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tournament_id] = lock
        return lock

    @property
    def tracked_count(self) -> int:
        """Tournaments with a lock currently held or awaited."""
        return len(self._locks)

    def is_locked(self, tournament_id: str) -> bool:
        lock = self._locks.get(tournament_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def lock(self, tournament_id: str) -> AsyncGenerator[LockInfo, None]:
        lock = self._get_lock(tournament_id)
        key = f"lock:tournament:{tournament_id}"
        self._users[tournament_id] = self._users.get(tournament_id, 0) + 1

        try:
            if self.acquire_timeout_ms is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), self.acquire_timeout_ms / 1000)
                except asyncio.TimeoutError:
                    raise LockUnavailableError(key, self.acquire_timeout_ms)

            now = time.time()
            try:
                yield LockInfo(lock_key=key, owner_id="local", acquired_at=now, expires_at=now)
            finally:
                lock.release()
        finally:
            self._users[tournament_id] -= 1
            if self._users[tournament_id] == 0:
                del self._users[tournament_id]
                del self._locks[tournament_id]


class DistributedLockManager:
    """
    Redis-based distributed lock manager.

    Redis 명령어 사용:
    - SET NX PX: 원자적 락 획득 (key가 없을 때만 설정, 만료시간 포함)
    - GET + DEL (Lua): 원자적 락 해제 (owner 확인 후 삭제)
    - GET + PEXPIRE (Lua): 락 갱신 (owner 확인 후 TTL 연장)

    획득 실패 시 retry_interval_ms 간격으로 재시도하고,
    acquire_timeout_ms 초과 시 LockUnavailableError 발생.
    """

    # 락 소유자 확인 후 삭제 - 다른 프로세스의 락을 실수로 해제하지 않음
    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    RENEW_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "tdcore",
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
        retry_interval_ms: int = 50,
    ):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self.retry_interval_ms = retry_interval_ms

        self._instance_id = str(uuid4())
        # lock_key -> owner token
        self._held_locks: Dict[str, str] = {}

        self._release_script = None
        self._renew_script = None

    @classmethod
    def from_settings(cls, redis_client: redis.Redis, settings: Settings) -> "DistributedLockManager":
        return cls(
            redis_client,
            key_prefix=settings.redis_key_prefix,
            default_lock_timeout_ms=settings.lock_timeout_ms,
            default_acquire_timeout_ms=settings.lock_acquire_timeout_ms,
            retry_interval_ms=settings.lock_retry_interval_ms,
        )

    def _ensure_scripts(self) -> None:
        """Register Lua scripts if not already done."""
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        if self._renew_script is None:
            self._renew_script = self.redis.register_script(self.RENEW_LOCK_SCRIPT)

    def make_lock_key(self, tournament_id: str) -> str:
        return f"{self.key_prefix}:lock:tournament:{tournament_id}"

    def _make_owner_token(self) -> str:
        """Instance ID + timestamp + random, hashed."""
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        tournament_id: str,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire the tournament lock.

        Raises:
            LockUnavailableError: If the lock cannot be acquired within timeout
        """
        self._ensure_scripts()

        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms

        lock_key = self.make_lock_key(tournament_id)
        owner_token = self._make_owner_token()

        start_time = time.monotonic() * 1000

        while True:
            acquired = await self.redis.set(
                lock_key,
                owner_token,
                nx=True,
                px=lock_timeout,
            )

            if acquired:
                now = time.time()
                self._held_locks[lock_key] = owner_token
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + (lock_timeout / 1000),
                )

            elapsed = (time.monotonic() * 1000) - start_time
            if elapsed >= acquire_timeout:
                logger.warning(
                    "lock_acquire_timeout",
                    lock_key=lock_key,
                    timeout_ms=acquire_timeout,
                )
                raise LockUnavailableError(lock_key, acquire_timeout)

            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """
        Release the lock if this owner still holds it.

        Returns:
            True if released, False if not held (expired or taken over)
        """
        self._ensure_scripts()

        result = await self._release_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id],
        )

        self._held_locks.pop(lock_info.lock_key, None)
        if result != 1:
            logger.warning("lock_release_not_held", lock_key=lock_info.lock_key)
        return result == 1

    async def renew(self, lock_info: LockInfo, additional_time_ms: Optional[int] = None) -> bool:
        """Extend the lock TTL; False when the lock is no longer held."""
        self._ensure_scripts()

        ttl = additional_time_ms or self.default_lock_timeout_ms
        result = await self._renew_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id, ttl],
        )
        if result == 1:
            lock_info.expires_at = time.time() + ttl / 1000
            return True
        return False

    async def is_locked(self, tournament_id: str) -> bool:
        return await self.redis.exists(self.make_lock_key(tournament_id)) == 1

    async def get_lock_holder(self, tournament_id: str) -> Optional[str]:
        """Get current lock holder token (for debugging)."""
        return await self.redis.get(self.make_lock_key(tournament_id))

    @asynccontextmanager
    async def lock(
        self,
        tournament_id: str,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """
        Context manager for automatic lock acquire/release.

        ```python
        async with lock_manager.lock("t1"):
            # 이 블록 내에서 t1에 대한 배타적 접근 보장
            ...
        ```
        """
        lock_info = await self.acquire(tournament_id, lock_timeout_ms, acquire_timeout_ms)
        try:
            yield lock_info
        finally:
            await self.release(lock_info)

    async def cleanup_all(self) -> int:
        """
        Release all locks held by this instance (shutdown).

        Owner-checked like release(): a key that expired and was taken by
        another worker is left alone.
        비정상 종료 시에는 TTL에 의해 자동 만료.
        """
        self._ensure_scripts()

        released = 0
        for lock_key, owner_token in list(self._held_locks.items()):
            try:
                result = await self._release_script(keys=[lock_key], args=[owner_token])
                if result == 1:
                    released += 1
                else:
                    logger.warning("lock_cleanup_not_held", lock_key=lock_key)
            except RedisError as e:
                logger.warning("lock_cleanup_failed", lock_key=lock_key, error=str(e))
            self._held_locks.pop(lock_key, None)
        return released
