"""
Tournament Clock - Poll-Driven Level/Break State Machine.

백그라운드 타이머 없이 저장된 타임스탬프로부터 경과 시간을 계산.

핵심 설계:
─────────────────────────────────────────────────────────────────────────────────

1. Poll 기반 시간 진행:
   - 상태를 읽는 모든 요청이 tick_to(now)를 먼저 수행
   - elapsed = now - updated_at, [0, 30s] 범위로 제한
   - 여러 폴링 주기를 놓친 클라이언트로부터 시간 손실 방어

2. 레벨 자동 진행 없음:
   - time_remaining이 0에 도달해도 레벨을 넘기지 않음
   - 디렉터가 알림을 보고 advance_level을 직접 호출

3. 상태 전이 (허용되지 않은 전이는 InvalidTournamentStateError):

   not_started ──start──▶ running ◀──resume── paused
                            │  ▲                 ▲
                            │  └──end_break──┐   │
                            ├──start_break──▶ on_break
                            └──pause─────────────┘
   (any except finished) ──finish──▶ finished

─────────────────────────────────────────────────────────────────────────────────
"""

from dataclasses import replace
from typing import Iterable, Optional

from tdcore.logging_config import get_logger
from tdcore.utils.errors import InvalidAmountError, InvalidTournamentStateError
from .models import BlindLevel, ClockState, ClockStatus, TournamentState

logger = get_logger(__name__)


# 단일 tick에 적용되는 최대 경과 시간 (초)
MAX_TICK_SECONDS = 30.0

DEFAULT_LEVEL_DURATION = 900
DEFAULT_BREAK_DURATION = 600

_ADJUSTABLE = (ClockStatus.RUNNING, ClockStatus.PAUSED)


class TournamentClock:
    """
    Clock state machine over a tournament aggregate.

    Every operation takes the current state and a monotonic `now`
    reading and returns a new state; nothing here sleeps or schedules.
    """

    def __init__(
        self,
        max_tick_seconds: float = MAX_TICK_SECONDS,
        default_level_duration: int = DEFAULT_LEVEL_DURATION,
        default_break_duration: int = DEFAULT_BREAK_DURATION,
    ):
        self.max_tick_seconds = max_tick_seconds
        self.default_level_duration = default_level_duration
        self.default_break_duration = default_break_duration

    # =========================================================================
    # Time accounting
    # =========================================================================

    def tick(self, clock: ClockState, elapsed: float) -> ClockState:
        """
        Subtract elapsed seconds from a running clock.

        elapsed is clamped to [0, max_tick_seconds]; time_remaining is
        floored at zero. Non-running clocks are returned unchanged.
        """
        if clock.status != ClockStatus.RUNNING:
            return clock

        elapsed = min(max(elapsed, 0.0), self.max_tick_seconds)
        new_remaining = max(0.0, clock.time_remaining - elapsed)
        return replace(clock, time_remaining=new_remaining)

    def tick_to(self, state: TournamentState, now: float) -> TournamentState:
        """Apply the elapsed time since updated_at and stamp updated_at=now."""
        clock = state.clock
        if clock.status != ClockStatus.RUNNING:
            return state

        elapsed = now - clock.updated_at
        ticked = self.tick(clock, elapsed)

        if ticked.time_remaining == 0 and clock.time_remaining > 0:
            logger.info(
                "level_time_expired",
                tournament_id=state.tournament_id,
                level=clock.current_level,
            )

        return state.with_clock(replace(ticked, updated_at=now))

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(
        self,
        state: TournamentState,
        now: float,
        level_duration: Optional[float] = None,
    ) -> TournamentState:
        self._require(state, "start", (ClockStatus.NOT_STARTED,))
        duration = self._level_duration(state, 1, level_duration)

        clock = ClockState(
            status=ClockStatus.RUNNING,
            current_level=1,
            time_remaining=duration,
            updated_at=now,
        )
        logger.info("clock_started", tournament_id=state.tournament_id, duration=duration)
        return state.with_clock(clock)

    def pause(
        self,
        state: TournamentState,
        now: float,
        time_remaining: Optional[float] = None,
    ) -> TournamentState:
        """
        Pause a running clock.

        The caller's remaining time is authoritative (it already ticked
        client-side); without one, the server-side ticked value is kept.
        """
        self._require(state, "pause", (ClockStatus.RUNNING,))

        if time_remaining is None:
            remaining = self.tick_to(state, now).clock.time_remaining
        else:
            self._check_duration(time_remaining)
            remaining = float(time_remaining)

        clock = replace(
            state.clock,
            status=ClockStatus.PAUSED,
            time_remaining=remaining,
            updated_at=now,
        )
        logger.info("clock_paused", tournament_id=state.tournament_id, time_remaining=remaining)
        return state.with_clock(clock)

    def resume(self, state: TournamentState, now: float) -> TournamentState:
        # 일시정지 구간은 차감하지 않음 - updated_at만 재설정
        self._require(state, "resume", (ClockStatus.PAUSED,))
        clock = replace(state.clock, status=ClockStatus.RUNNING, updated_at=now)
        logger.info("clock_resumed", tournament_id=state.tournament_id)
        return state.with_clock(clock)

    def advance_level(
        self,
        state: TournamentState,
        now: float,
        next_level_duration: Optional[float] = None,
    ) -> TournamentState:
        self._require(state, "advance level", _ADJUSTABLE)
        next_level = state.clock.current_level + 1
        duration = self._level_duration(state, next_level, next_level_duration)

        clock = replace(
            state.clock,
            current_level=next_level,
            time_remaining=duration,
            updated_at=now,
        )
        logger.info("level_advanced", tournament_id=state.tournament_id, level=next_level)
        return state.with_clock(clock)

    def start_break(
        self,
        state: TournamentState,
        now: float,
        break_duration: Optional[float] = None,
    ) -> TournamentState:
        self._require(state, "start break", _ADJUSTABLE)

        if break_duration is None:
            break_duration = (
                state.config.break_duration_seconds(state.clock.current_level)
                or self.default_break_duration
            )
        self._check_duration(break_duration)

        clock = replace(
            state.clock,
            status=ClockStatus.ON_BREAK,
            time_remaining=float(break_duration),
            updated_at=now,
        )
        logger.info("break_started", tournament_id=state.tournament_id, duration=break_duration)
        return state.with_clock(clock)

    def end_break(
        self,
        state: TournamentState,
        now: float,
        next_level_duration: Optional[float] = None,
    ) -> TournamentState:
        self._require(state, "end break", (ClockStatus.ON_BREAK,))
        next_level = state.clock.current_level + 1
        duration = self._level_duration(state, next_level, next_level_duration)

        clock = ClockState(
            status=ClockStatus.RUNNING,
            current_level=next_level,
            time_remaining=duration,
            updated_at=now,
        )
        logger.info("break_ended", tournament_id=state.tournament_id, level=next_level)
        return state.with_clock(clock)

    def add_time(self, state: TournamentState, now: float, seconds: float) -> TournamentState:
        """Adjust remaining time by a signed amount (floored at zero)."""
        self._require(
            state,
            "add time",
            (ClockStatus.RUNNING, ClockStatus.PAUSED, ClockStatus.ON_BREAK),
        )
        # running 상태면 경과 시간을 먼저 반영
        state = self.tick_to(state, now)
        remaining = max(0.0, state.clock.time_remaining + seconds)
        clock = replace(state.clock, time_remaining=remaining, updated_at=now)

        logger.info(
            "clock_time_adjusted",
            tournament_id=state.tournament_id,
            seconds=seconds,
            time_remaining=remaining,
        )
        return state.with_clock(clock)

    def finish(self, state: TournamentState, now: float) -> TournamentState:
        self._require(
            state,
            "finish",
            (
                ClockStatus.NOT_STARTED,
                ClockStatus.RUNNING,
                ClockStatus.PAUSED,
                ClockStatus.ON_BREAK,
            ),
        )
        state = self.tick_to(state, now)
        clock = replace(state.clock, status=ClockStatus.FINISHED, updated_at=now)
        logger.info("clock_finished", tournament_id=state.tournament_id)
        return state.with_clock(clock)

    # =========================================================================
    # Blind info
    # =========================================================================

    @staticmethod
    def current_blind(state: TournamentState) -> Optional[BlindLevel]:
        return state.config.get_blind_level(state.clock.current_level)

    @staticmethod
    def next_blind(state: TournamentState) -> Optional[BlindLevel]:
        return state.config.get_blind_level(state.clock.current_level + 1)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _require(
        state: TournamentState,
        operation: str,
        allowed: Iterable[ClockStatus],
    ) -> None:
        allowed = tuple(allowed)
        if state.clock.status not in allowed:
            raise InvalidTournamentStateError(
                operation,
                state.clock.status.value,
                [s.value for s in allowed],
            )

    def _level_duration(
        self,
        state: TournamentState,
        level: int,
        explicit: Optional[float],
    ) -> float:
        if explicit is None:
            explicit = state.config.level_duration_seconds(level) or self.default_level_duration
        self._check_duration(explicit)
        return float(explicit)

    @staticmethod
    def _check_duration(seconds: float) -> None:
        if seconds < 0:
            raise InvalidAmountError(seconds, "duration must not be negative")
