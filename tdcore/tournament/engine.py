"""
Live Tournament Engine - Async Facade over the Tournament Components.

요청 계층이 호출하는 유일한 진입점. 논리적 액션 하나당 메서드 하나.

모든 호출의 처리 순서:
─────────────────────────────────────────────────────────────────────────────────

1. 토너먼트 락 획득 (토너먼트 ID별, 다른 토너먼트와 공유하지 않음)
2. 상태 로드 (없으면 TournamentNotFoundError)
3. 시계 tick_to(now) - 저장된 updated_at 기준 경과 시간 반영
4. 컴포넌트 연산 적용 (순수 함수: state → new state)
5. expected_version으로 CAS 저장 (불일치 시 ConcurrentModificationError)
6. 결과 + 스냅샷 반환

연산이 예외를 던지면 아무것도 저장되지 않음 (tick 포함).
다음 호출이 같은 updated_at에서 다시 계산하므로 시간 손실 없음.

─────────────────────────────────────────────────────────────────────────────────
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

from tdcore.config import Settings, get_settings
from tdcore.logging_config import get_logger, tournament_context
from tdcore.utils.errors import TournamentError, TournamentNotFoundError
from tdcore.utils.redis_client import init_redis
from .balancer import (
    BalanceResult,
    BalanceStatus,
    BalancingPlan,
    PlayerMove,
    TableBalancer,
    TableBreakResult,
    TableBreakSuggestion,
)
from .clock import TournamentClock
from .distributed_lock import DistributedLockManager, LocalLockManager, TournamentLockManager
from .ledger import TransactionLedger, TransactionSummary
from .models import (
    Registration,
    Table,
    TournamentConfig,
    TournamentState,
    Transaction,
    TransactionType,
)
from .operations import OperationResult, PlayerOperations, WithdrawalStatistics
from .schemas import TournamentSnapshot
from .seats import AutoSeatResult, SeatAssignment, SeatManager
from .store import InMemoryTournamentStore, RedisTournamentStore, TournamentStore
from .tables import TableManager

logger = get_logger(__name__)

T = TypeVar("T")

Mutation = Callable[[TournamentState], Tuple[TournamentState, Any]]


@dataclass
class ActionResult(Generic[T]):
    """Outcome of one mutating engine call."""

    snapshot: TournamentSnapshot
    result: Optional[T] = None


class LiveTournamentEngine:
    """
    Live tournament engine.

    Args:
        store: Aggregate persistence with version CAS
        lock_manager: Per-tournament serialization (local or Redis)
        now: Time source in seconds (monotonic for one worker, wall time
            when several workers share a store); injectable for tests
        settings: Engine settings (defaults to get_settings())
    """

    def __init__(
        self,
        store: TournamentStore,
        lock_manager: TournamentLockManager,
        now: Callable[[], float] = time.monotonic,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.lock_manager = lock_manager
        self._now = now

        self.clock = TournamentClock(
            max_tick_seconds=self.settings.tick_max_elapsed_seconds,
            default_level_duration=self.settings.default_level_duration_seconds,
            default_break_duration=self.settings.default_break_duration_seconds,
        )
        self.ledger = TransactionLedger()
        self.tables = TableManager()
        self.seats = SeatManager(self.tables)
        self.balancer = TableBalancer(self.seats, self.tables)
        self.operations = PlayerOperations(self.ledger, self.seats)

    # =========================================================================
    # Core read/mutate cycle
    # =========================================================================

    async def _load(self, tournament_id: str) -> TournamentState:
        state = await self.store.load(tournament_id)
        if state is None:
            raise TournamentNotFoundError(tournament_id)
        return state

    async def _read(self, tournament_id: str) -> TournamentState:
        """Tick-then-read; the tick is persisted so it is applied exactly once."""
        async with self.lock_manager.lock(tournament_id):
            loaded = await self._load(tournament_id)
            ticked = self.clock.tick_to(loaded, self._now())
            if ticked.clock == loaded.clock:
                return loaded
            return await self.store.save(ticked, loaded.version)

    async def _mutate(
        self,
        tournament_id: str,
        action: str,
        mutation: Mutation,
    ) -> Tuple[TournamentState, Any]:
        with tournament_context(tournament_id, action):
            async with self.lock_manager.lock(tournament_id):
                loaded = await self._load(tournament_id)
                state = self.clock.tick_to(loaded, self._now())
                try:
                    state, result = mutation(state)
                except TournamentError as e:
                    logger.info("action_rejected", error_code=e.code, message=e.message)
                    raise
                saved = await self.store.save(state, loaded.version)
                logger.debug("action_applied", version=saved.version)
                return saved, result

    async def _act(self, tournament_id: str, action: str, mutation: Mutation) -> ActionResult:
        state, result = await self._mutate(tournament_id, action, mutation)
        return ActionResult(TournamentSnapshot.from_state(state), result)

    # =========================================================================
    # Lifecycle & reads
    # =========================================================================

    async def initialize_tournament(
        self,
        tournament_id: str,
        config: Optional[TournamentConfig] = None,
    ) -> TournamentSnapshot:
        """Create the tournament record on first access; later calls return it unchanged."""
        async with self.lock_manager.lock(tournament_id):
            existing = await self.store.load(tournament_id)
            if existing is not None:
                return TournamentSnapshot.from_state(existing)

            config = config or TournamentConfig(default_max_seats=self.settings.default_max_seats)
            state = await self.store.save(
                TournamentState(tournament_id=tournament_id, config=config),
                expected_version=0,
            )
            logger.info("tournament_initialized", tournament_id=tournament_id, name=config.name)
            return TournamentSnapshot.from_state(state)

    async def get_state(self, tournament_id: str) -> TournamentSnapshot:
        return TournamentSnapshot.from_state(await self._read(tournament_id))

    async def get_tournament_state(self, tournament_id: str) -> TournamentState:
        """Full aggregate after the tick, for callers that need more than the snapshot."""
        return await self._read(tournament_id)

    # =========================================================================
    # Clock
    # =========================================================================

    async def start_clock(
        self,
        tournament_id: str,
        level_duration: Optional[float] = None,
    ) -> ActionResult:
        return await self._act(
            tournament_id,
            "start_clock",
            lambda s: (self.clock.start(s, self._now(), level_duration), None),
        )

    async def pause_clock(
        self,
        tournament_id: str,
        time_remaining: Optional[float] = None,
    ) -> ActionResult:
        return await self._act(
            tournament_id,
            "pause_clock",
            lambda s: (self.clock.pause(s, self._now(), time_remaining), None),
        )

    async def resume_clock(self, tournament_id: str) -> ActionResult:
        return await self._act(
            tournament_id,
            "resume_clock",
            lambda s: (self.clock.resume(s, self._now()), None),
        )

    async def advance_level(
        self,
        tournament_id: str,
        next_level_duration: Optional[float] = None,
    ) -> ActionResult:
        return await self._act(
            tournament_id,
            "advance_level",
            lambda s: (self.clock.advance_level(s, self._now(), next_level_duration), None),
        )

    async def start_break(
        self,
        tournament_id: str,
        break_duration: Optional[float] = None,
    ) -> ActionResult:
        return await self._act(
            tournament_id,
            "start_break",
            lambda s: (self.clock.start_break(s, self._now(), break_duration), None),
        )

    async def end_break(
        self,
        tournament_id: str,
        next_level_duration: Optional[float] = None,
    ) -> ActionResult:
        return await self._act(
            tournament_id,
            "end_break",
            lambda s: (self.clock.end_break(s, self._now(), next_level_duration), None),
        )

    async def add_time(self, tournament_id: str, seconds: float) -> ActionResult:
        return await self._act(
            tournament_id,
            "add_time",
            lambda s: (self.clock.add_time(s, self._now(), seconds), None),
        )

    async def finish_tournament(self, tournament_id: str) -> ActionResult:
        return await self._act(
            tournament_id,
            "finish_tournament",
            lambda s: (self.clock.finish(s, self._now()), None),
        )

    # =========================================================================
    # Tables & seats
    # =========================================================================

    async def add_table(
        self,
        tournament_id: str,
        max_seats: Optional[int] = None,
    ) -> ActionResult[Table]:
        return await self._act(
            tournament_id,
            "add_table",
            lambda s: self.tables.add_table(s, max_seats),
        )

    async def remove_table(self, tournament_id: str, table_id: str) -> ActionResult[Table]:
        return await self._act(
            tournament_id,
            "remove_table",
            lambda s: self.tables.remove_table(s, table_id),
        )

    async def validate_assignment(
        self,
        tournament_id: str,
        registration_id: str,
        to_table_id: str,
        to_seat_number: int,
    ) -> None:
        """Preview a seat change; raises the error a move would raise."""
        state = await self._read(tournament_id)
        self.seats.validate_assignment(state, registration_id, to_table_id, to_seat_number)

    async def move_player(
        self,
        tournament_id: str,
        registration_id: str,
        to_table_id: str,
        to_seat_number: int,
    ) -> ActionResult[SeatAssignment]:
        def mutation(state: TournamentState):
            self.seats.validate_assignment(state, registration_id, to_table_id, to_seat_number)
            return self.seats.move_player(state, registration_id, to_table_id, to_seat_number)

        return await self._act(tournament_id, "move_player", mutation)

    async def unseat_player(
        self,
        tournament_id: str,
        registration_id: str,
    ) -> ActionResult[SeatAssignment]:
        return await self._act(
            tournament_id,
            "unseat_player",
            lambda s: self.seats.unseat_player(s, registration_id),
        )

    async def auto_seat_player(
        self,
        tournament_id: str,
        registration_id: str,
    ) -> ActionResult[SeatAssignment]:
        return await self._act(
            tournament_id,
            "auto_seat_player",
            lambda s: self.seats.auto_seat_player(s, registration_id),
        )

    async def auto_seat_players(self, tournament_id: str) -> ActionResult[AutoSeatResult]:
        return await self._act(
            tournament_id,
            "auto_seat_players",
            self.seats.auto_seat_players,
        )

    # =========================================================================
    # Balancing
    # =========================================================================

    async def get_balance_plan(self, tournament_id: str) -> BalancingPlan:
        return self.balancer.calculate_balance_plan(await self._read(tournament_id))

    async def get_balance_status(self, tournament_id: str) -> BalanceStatus:
        return self.balancer.get_balance_status(await self._read(tournament_id))

    async def suggest_table_break(self, tournament_id: str) -> TableBreakSuggestion:
        return self.balancer.suggest_table_break(await self._read(tournament_id))

    async def execute_balance(
        self,
        tournament_id: str,
        moves: Optional[Iterable[PlayerMove]] = None,
    ) -> ActionResult[BalanceResult]:
        """
        Apply a balance plan move by move.

        With no moves given, the plan is computed under the lock against
        the current seating. Partial failure is reported in the result,
        not raised; see BalanceResult.raise_for_partial().
        """

        def mutation(state: TournamentState):
            planned = (
                list(moves)
                if moves is not None
                else self.balancer.calculate_balance_plan(state).moves
            )
            return self.balancer.execute_balance(state, planned)

        return await self._act(tournament_id, "execute_balance", mutation)

    async def execute_table_break(
        self,
        tournament_id: str,
        table_id: str,
        moves: Optional[Iterable[PlayerMove]] = None,
    ) -> ActionResult[TableBreakResult]:
        """
        Evacuate and break a table.

        Moves that landed are persisted even when the table could not be
        emptied; in that case TableNotEmptyError is raised afterwards.
        """

        def mutation(state: TournamentState):
            planned = (
                list(moves)
                if moves is not None
                else self.balancer.plan_table_break(state, table_id).moves
            )
            return self.balancer.execute_table_break(state, table_id, planned)

        outcome = await self._act(tournament_id, "execute_table_break", mutation)
        if outcome.result.error is not None:
            raise outcome.result.error
        return outcome

    # =========================================================================
    # Player operations
    # =========================================================================

    async def register_player(
        self,
        tournament_id: str,
        player_id: str,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "register_player",
            lambda s: self.operations.register_player(s, player_id),
        )

    async def process_buyin(
        self,
        tournament_id: str,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "process_buyin",
            lambda s: self.operations.process_buyin(s, player_id, amount, chips, actor_user_id),
        )

    async def process_bustout(
        self,
        tournament_id: str,
        player_id: str,
        eliminated_by: Iterable[str] = (),
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        hitmen = list(eliminated_by)
        return await self._act(
            tournament_id,
            "process_bustout",
            lambda s: self.operations.process_bustout(s, player_id, hitmen, actor_user_id),
        )

    async def process_rebuy(
        self,
        tournament_id: str,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "process_rebuy",
            lambda s: self.operations.process_rebuy(s, player_id, amount, chips, actor_user_id),
        )

    async def process_addon(
        self,
        tournament_id: str,
        player_id: str,
        amount: Any,
        chips: Optional[int] = None,
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "process_addon",
            lambda s: self.operations.process_addon(s, player_id, amount, chips, actor_user_id),
        )

    async def process_chip_adjustment(
        self,
        tournament_id: str,
        player_id: str,
        delta: int,
        reason: str,
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "process_chip_adjustment",
            lambda s: self.operations.process_chip_adjustment(
                s, player_id, delta, reason, actor_user_id
            ),
        )

    async def process_withdrawal(
        self,
        tournament_id: str,
        player_id: str,
        reason: str = "",
        withdrawal_type: str = "declined_reentry",
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "process_withdrawal",
            lambda s: self.operations.process_withdrawal(
                s, player_id, reason, withdrawal_type, actor_user_id
            ),
        )

    async def get_bustout_order(self, tournament_id: str) -> List[Registration]:
        return self.operations.get_bustout_order(await self._read(tournament_id))

    async def get_tournament_winner(self, tournament_id: str) -> Optional[Registration]:
        return self.operations.get_tournament_winner(await self._read(tournament_id))

    async def complete_tournament(
        self,
        tournament_id: str,
        actor_user_id: Optional[str] = None,
    ) -> ActionResult[OperationResult]:
        return await self._act(
            tournament_id,
            "complete_tournament",
            lambda s: self.operations.process_tournament_completion(s, actor_user_id),
        )

    async def get_withdrawn_players(self, tournament_id: str) -> List[Registration]:
        return self.operations.get_withdrawn_players(await self._read(tournament_id))

    async def get_withdrawal_statistics(self, tournament_id: str) -> WithdrawalStatistics:
        return self.operations.get_withdrawal_statistics(await self._read(tournament_id))

    # =========================================================================
    # Ledger reads
    # =========================================================================

    async def get_transactions(
        self,
        tournament_id: str,
        transaction_type: Optional[TransactionType] = None,
        player_id: Optional[str] = None,
        order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Transaction]:
        state = await self._read(tournament_id)
        return self.ledger.get_tournament_transactions(
            state,
            transaction_type=transaction_type,
            player_id=player_id,
            order=order,
            limit=limit,
            offset=offset,
        )

    async def get_transaction_summary(self, tournament_id: str) -> List[TransactionSummary]:
        return self.ledger.get_transaction_summary(await self._read(tournament_id))


async def create_engine(
    settings: Optional[Settings] = None,
    now: Optional[Callable[[], float]] = None,
) -> LiveTournamentEngine:
    """
    Build an engine wired for the configured lock backend.

    - local: in-process store + asyncio locks, time.monotonic (single worker)
    - redis: Redis store + distributed locks, time.time (multiple workers)

    Workers sharing a Redis store compare their own clock against the
    stored updated_at, so the redis backend needs a time base that every
    host agrees on. Monotonic readings are only comparable inside one process.
    """
    settings = settings or get_settings()

    if settings.lock_backend == "redis":
        client = await init_redis(settings)
        store = RedisTournamentStore(client, key_prefix=settings.redis_key_prefix)
        lock_manager = DistributedLockManager.from_settings(client, settings)
        now = now or time.time
    else:
        store = InMemoryTournamentStore()
        lock_manager = LocalLockManager(settings.lock_acquire_timeout_ms)
        now = now or time.monotonic

    logger.info("engine_created", lock_backend=settings.lock_backend, app_env=settings.app_env)
    return LiveTournamentEngine(store, lock_manager, now=now, settings=settings)
