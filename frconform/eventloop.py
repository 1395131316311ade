"""Event loop tick planning, phase ordering and readiness dispatch contracts."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import ClassVar, Iterable, Optional


@dataclass(frozen=True)
class TickBudget:
    """Upper bounds on the work one event loop tick may perform."""

    max_accepts: int = 64
    max_commands: int = 4096

    BLOCKED_MODE_MAX_ACCEPTS: ClassVar[int] = 1
    BLOCKED_MODE_MAX_COMMANDS: ClassVar[int] = 128

    def bounded_for_blocked_mode(self) -> TickBudget:
        """Return this budget clamped to the blocked-mode limits."""
        return TickBudget(
            max_accepts=min(self.max_accepts, self.BLOCKED_MODE_MAX_ACCEPTS),
            max_commands=min(self.max_commands, self.BLOCKED_MODE_MAX_COMMANDS),
        )


class EventLoopMode(enum.Enum):
    NORMAL = "normal"
    BLOCKED = "blocked"


class EventLoopPhase(enum.Enum):
    BEFORE_SLEEP = "before_sleep"
    POLL = "poll"
    FILE_DISPATCH = "file_dispatch"
    TIME_DISPATCH = "time_dispatch"
    AFTER_SLEEP = "after_sleep"


EVENT_LOOP_PHASE_ORDER: tuple[EventLoopPhase, ...] = (
    EventLoopPhase.BEFORE_SLEEP,
    EventLoopPhase.POLL,
    EventLoopPhase.FILE_DISPATCH,
    EventLoopPhase.TIME_DISPATCH,
    EventLoopPhase.AFTER_SLEEP,
)


class PhaseReplayErrorKind(enum.Enum):
    EMPTY_TRACE = "empty_trace"
    MISSING_MAIN_LOOP_ENTRY = "missing_main_loop_entry"
    STAGE_TRANSITION_INVALID = "stage_transition_invalid"
    PARTIAL_TICK = "partial_tick"


class PhaseReplayError(Exception):
    """Raised when a recorded phase trace does not follow the loop order."""

    def __init__(
        self,
        kind: PhaseReplayErrorKind,
        *,
        first: Optional[EventLoopPhase] = None,
        from_phase: Optional[EventLoopPhase] = None,
        to_phase: Optional[EventLoopPhase] = None,
        observed: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.first = first
        self.from_phase = from_phase
        self.to_phase = to_phase
        self.observed = observed
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.kind is PhaseReplayErrorKind.EMPTY_TRACE:
            return "phase trace is empty"
        if self.kind is PhaseReplayErrorKind.MISSING_MAIN_LOOP_ENTRY:
            return f"trace starts at {self.first.value}, not before_sleep"
        if self.kind is PhaseReplayErrorKind.STAGE_TRANSITION_INVALID:
            return (
                f"invalid transition {self.from_phase.value} -> {self.to_phase.value}"
            )
        return f"partial tick after {self.observed} phases"

    def reason_code(self) -> str:
        if self.kind in (
            PhaseReplayErrorKind.EMPTY_TRACE,
            PhaseReplayErrorKind.MISSING_MAIN_LOOP_ENTRY,
        ):
            return "eventloop.main_loop_entry_missing"
        if self.kind is PhaseReplayErrorKind.STAGE_TRANSITION_INVALID:
            return "eventloop.dispatch.stage_transition_invalid"
        return "eventloop.dispatch.order_mismatch"


@dataclass(frozen=True)
class LoopBootstrap:
    """Which hooks and timers were installed when the loop started."""

    before_sleep_hook_installed: bool
    after_sleep_hook_installed: bool
    server_cron_timer_installed: bool

    @classmethod
    def fully_wired(cls) -> LoopBootstrap:
        return cls(True, True, True)


class BootstrapErrorKind(enum.Enum):
    BEFORE_SLEEP_HOOK_MISSING = "before_sleep_hook_missing"
    AFTER_SLEEP_HOOK_MISSING = "after_sleep_hook_missing"
    SERVER_CRON_TIMER_MISSING = "server_cron_timer_missing"


class BootstrapError(Exception):
    """Raised when the loop bootstrap lacks a required hook or timer."""

    def __init__(self, kind: BootstrapErrorKind) -> None:
        self.kind = kind
        super().__init__(kind.value)

    def reason_code(self) -> str:
        if self.kind is BootstrapErrorKind.SERVER_CRON_TIMER_MISSING:
            return "eventloop.server_cron_timer_missing"
        return "eventloop.hook_install_missing"


def validate_bootstrap(bootstrap: LoopBootstrap) -> None:
    """Raise BootstrapError for the first missing hook or timer."""
    if not bootstrap.before_sleep_hook_installed:
        raise BootstrapError(BootstrapErrorKind.BEFORE_SLEEP_HOOK_MISSING)
    if not bootstrap.after_sleep_hook_installed:
        raise BootstrapError(BootstrapErrorKind.AFTER_SLEEP_HOOK_MISSING)
    if not bootstrap.server_cron_timer_installed:
        raise BootstrapError(BootstrapErrorKind.SERVER_CRON_TIMER_MISSING)


_NEXT_PHASE = {
    phase: EVENT_LOOP_PHASE_ORDER[(idx + 1) % len(EVENT_LOOP_PHASE_ORDER)]
    for idx, phase in enumerate(EVENT_LOOP_PHASE_ORDER)
}


def next_phase(phase: EventLoopPhase) -> EventLoopPhase:
    """Return the phase that follows ``phase``, wrapping after AFTER_SLEEP."""
    return _NEXT_PHASE[phase]


def replay_phase_trace(trace: Iterable[EventLoopPhase]) -> int:
    """Check a phase trace and return the number of completed ticks."""
    phases = list(trace)
    if not phases:
        raise PhaseReplayError(PhaseReplayErrorKind.EMPTY_TRACE)
    first, *rest = phases
    if first is not EventLoopPhase.BEFORE_SLEEP:
        raise PhaseReplayError(PhaseReplayErrorKind.MISSING_MAIN_LOOP_ENTRY, first=first)

    completed_ticks = 0
    current = first
    for phase in rest:
        if phase is not next_phase(current):
            raise PhaseReplayError(
                PhaseReplayErrorKind.STAGE_TRANSITION_INVALID,
                from_phase=current,
                to_phase=phase,
            )
        if current is EventLoopPhase.AFTER_SLEEP:
            completed_ticks += 1
        current = phase
    if current is not EventLoopPhase.AFTER_SLEEP:
        raise PhaseReplayError(PhaseReplayErrorKind.PARTIAL_TICK, observed=len(phases))
    return completed_ticks + 1


@dataclass(frozen=True)
class TickStats:
    accepted: int
    processed_commands: int
    accept_backlog_remaining: int
    command_backlog_remaining: int


@dataclass(frozen=True)
class TickPlan:
    mode: EventLoopMode
    poll_timeout_ms: int
    stats: TickStats
    phase_order: tuple[EventLoopPhase, ...] = field(default=EVENT_LOOP_PHASE_ORDER)


def run_tick(pending_accepts: int, pending_commands: int, budget: TickBudget) -> TickStats:
    """Apply a budget to pending work and report what remains."""
    accepted = min(pending_accepts, budget.max_accepts)
    processed = min(pending_commands, budget.max_commands)
    return TickStats(
        accepted=accepted,
        processed_commands=processed,
        accept_backlog_remaining=max(0, pending_accepts - accepted),
        command_backlog_remaining=max(0, pending_commands - processed),
    )


def plan_tick(
    pending_accepts: int,
    pending_commands: int,
    budget: TickBudget,
    mode: EventLoopMode,
) -> TickPlan:
    """Plan one tick: effective budget, poll timeout and phase order."""
    effective = budget if mode is EventLoopMode.NORMAL else budget.bounded_for_blocked_mode()
    stats = run_tick(pending_accepts, pending_commands, effective)
    if mode is EventLoopMode.BLOCKED or pending_accepts > 0 or pending_commands > 0:
        poll_timeout_ms = 0
    else:
        poll_timeout_ms = 10
    return TickPlan(mode=mode, poll_timeout_ms=poll_timeout_ms, stats=stats)


class ReadinessCallback(enum.Enum):
    READABLE = "readable"
    WRITABLE = "writable"


@dataclass(frozen=True)
class CallbackDispatchOrder:
    first: Optional[ReadinessCallback] = None
    second: Optional[ReadinessCallback] = None


class BarrierOrderError(Exception):
    """Raised when the AE_BARRIER writable-before-readable order is broken."""

    def __init__(self, observed: Optional[CallbackDispatchOrder] = None) -> None:
        self.observed = observed
        super().__init__("writable callback must run before readable under AE_BARRIER")

    def reason_code(self) -> str:
        return "eventloop.ae_barrier_violation"


_BARRIER_ORDER = CallbackDispatchOrder(
    first=ReadinessCallback.WRITABLE, second=ReadinessCallback.READABLE
)


def plan_readiness_callback_order(
    readable_ready: bool, writable_ready: bool, ae_barrier: bool
) -> CallbackDispatchOrder:
    """Return the order in which readiness callbacks should fire."""
    if readable_ready and writable_ready:
        if ae_barrier:
            return _BARRIER_ORDER
        return CallbackDispatchOrder(ReadinessCallback.READABLE, ReadinessCallback.WRITABLE)
    if readable_ready:
        return CallbackDispatchOrder(ReadinessCallback.READABLE)
    if writable_ready:
        return CallbackDispatchOrder(ReadinessCallback.WRITABLE)
    return CallbackDispatchOrder()


def validate_ae_barrier_order(
    readable_ready: bool,
    writable_ready: bool,
    ae_barrier: bool,
    observed: CallbackDispatchOrder,
) -> None:
    """Raise BarrierOrderError if a barrier-protected dispatch ran out of order."""
    if readable_ready and writable_ready and ae_barrier and observed != _BARRIER_ORDER:
        raise BarrierOrderError(observed)