"""Event loop I/O path contracts: fd registration, accept, read, write and TLS limits."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence


class FdRegistrationErrorKind(enum.Enum):
    FD_OUT_OF_RANGE = "fd_out_of_range"
    FD_RESIZE_FAILURE = "fd_resize_failure"


class FdRegistrationError(Exception):
    """Raised when a file descriptor cannot be registered with the loop."""

    def __init__(
        self,
        kind: FdRegistrationErrorKind,
        *,
        fd: Optional[int] = None,
        setsize: Optional[int] = None,
        requested_fd: Optional[int] = None,
        max_setsize: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.fd = fd
        self.setsize = setsize
        self.requested_fd = requested_fd
        self.max_setsize = max_setsize
        if kind is FdRegistrationErrorKind.FD_OUT_OF_RANGE:
            message = f"fd {fd} is outside setsize {setsize}"
        else:
            message = f"cannot grow setsize to hold fd {requested_fd} (max {max_setsize})"
        super().__init__(message)

    def reason_code(self) -> str:
        if self.kind is FdRegistrationErrorKind.FD_OUT_OF_RANGE:
            return "eventloop.fd_out_of_range"
        return "eventloop.fd_resize_failure"


def validate_fd_registration_bounds(fd: int, setsize: int) -> None:
    """Raise FdRegistrationError if ``fd`` does not fit in ``setsize``."""
    if fd >= setsize:
        raise FdRegistrationError(
            FdRegistrationErrorKind.FD_OUT_OF_RANGE, fd=fd, setsize=setsize
        )


def plan_fd_setsize_growth(current_setsize: int, requested_fd: int, max_setsize: int) -> int:
    """Return the setsize needed to hold ``requested_fd``, doubling up to the maximum."""
    required = requested_fd + 1
    failure = FdRegistrationError(
        FdRegistrationErrorKind.FD_RESIZE_FAILURE,
        requested_fd=requested_fd,
        max_setsize=max_setsize,
    )
    if required > max_setsize:
        raise failure
    if requested_fd < current_setsize:
        return current_setsize

    next_setsize = max(current_setsize, 1)
    while next_setsize < required and next_setsize < max_setsize:
        next_setsize = min(next_setsize * 2, max_setsize)
    if next_setsize < required:
        raise failure
    return next_setsize


class AcceptPathErrorKind(enum.Enum):
    MAX_CLIENTS_REACHED = "max_clients_reached"
    HANDLER_BIND_FAILURE = "handler_bind_failure"


class AcceptPathError(Exception):
    """Raised when a new connection cannot be accepted."""

    def __init__(
        self,
        kind: AcceptPathErrorKind,
        *,
        current_clients: Optional[int] = None,
        max_clients: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.current_clients = current_clients
        self.max_clients = max_clients
        if kind is AcceptPathErrorKind.MAX_CLIENTS_REACHED:
            message = f"max clients reached ({current_clients}/{max_clients})"
        else:
            message = "read handler could not be bound"
        super().__init__(message)

    def reason_code(self) -> str:
        if self.kind is AcceptPathErrorKind.MAX_CLIENTS_REACHED:
            return "eventloop.accept.maxclients_reached"
        return "eventloop.accept.handler_bind_failure"


def validate_accept_path(current_clients: int, max_clients: int, read_handler_bound: bool) -> None:
    """Raise AcceptPathError if the client limit is hit or no read handler is bound."""
    if current_clients >= max_clients:
        raise AcceptPathError(
            AcceptPathErrorKind.MAX_CLIENTS_REACHED,
            current_clients=current_clients,
            max_clients=max_clients,
        )
    if not read_handler_bound:
        raise AcceptPathError(AcceptPathErrorKind.HANDLER_BIND_FAILURE)


class ReadPathErrorKind(enum.Enum):
    QUERY_BUFFER_LIMIT_EXCEEDED = "query_buffer_limit_exceeded"
    FATAL_ERROR_DISCONNECT = "fatal_error_disconnect"


class ReadPathError(Exception):
    """Raised when a client read must be rejected or the client disconnected."""

    def __init__(
        self,
        kind: ReadPathErrorKind,
        *,
        observed: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.observed = observed
        self.limit = limit
        if kind is ReadPathErrorKind.QUERY_BUFFER_LIMIT_EXCEEDED:
            message = f"query buffer length {observed} exceeds limit {limit}"
        else:
            message = "fatal read error, disconnecting client"
        super().__init__(message)

    def reason_code(self) -> str:
        if self.kind is ReadPathErrorKind.QUERY_BUFFER_LIMIT_EXCEEDED:
            return "eventloop.read.querybuf_limit_exceeded"
        return "eventloop.read.fatal_error_disconnect"


def validate_read_path(
    current_query_buffer_len: int,
    newly_read_bytes: int,
    query_buffer_limit: int,
    fatal_read_error: bool,
) -> int:
    """Return the new query buffer length, or raise ReadPathError."""
    if fatal_read_error:
        raise ReadPathError(ReadPathErrorKind.FATAL_ERROR_DISCONNECT)
    next_len = current_query_buffer_len + newly_read_bytes
    if next_len > query_buffer_limit:
        raise ReadPathError(
            ReadPathErrorKind.QUERY_BUFFER_LIMIT_EXCEEDED,
            observed=next_len,
            limit=query_buffer_limit,
        )
    return next_len


class PendingWriteErrorKind(enum.Enum):
    FLUSH_ORDER_VIOLATION = "flush_order_violation"
    PENDING_REPLY_LOST = "pending_reply_lost"


class PendingWriteError(Exception):
    """Raised when pending replies are flushed out of order or lost."""

    def __init__(self, kind: PendingWriteErrorKind, client_id: int) -> None:
        self.kind = kind
        self.client_id = client_id
        super().__init__(f"{kind.value} for client {client_id}")

    def reason_code(self) -> str:
        if self.kind is PendingWriteErrorKind.FLUSH_ORDER_VIOLATION:
            return "eventloop.write.flush_order_violation"
        return "eventloop.write.pending_reply_lost"


def validate_pending_write_delivery(
    queued_before_flush: Sequence[int],
    flushed_now: Iterable[int],
    pending_after_flush: Iterable[int],
) -> None:
    """Check that flushed plus still-pending clients cover the queue, in queue order."""
    positions: dict[int, int] = {}
    for idx, client_id in enumerate(queued_before_flush):
        if client_id in positions:
            raise PendingWriteError(PendingWriteErrorKind.FLUSH_ORDER_VIOLATION, client_id)
        positions[client_id] = idx

    seen: set[int] = set()
    prev_index: Optional[int] = None
    for client_id in itertools.chain(flushed_now, pending_after_flush):
        index = positions.get(client_id)
        if index is None:
            raise PendingWriteError(PendingWriteErrorKind.PENDING_REPLY_LOST, client_id)
        if client_id in seen:
            raise PendingWriteError(PendingWriteErrorKind.FLUSH_ORDER_VIOLATION, client_id)
        seen.add(client_id)
        if prev_index is not None and index < prev_index:
            raise PendingWriteError(PendingWriteErrorKind.FLUSH_ORDER_VIOLATION, client_id)
        prev_index = index

    for client_id in queued_before_flush:
        if client_id not in seen:
            raise PendingWriteError(PendingWriteErrorKind.PENDING_REPLY_LOST, client_id)


@dataclass(frozen=True)
class TlsAcceptPlan:
    accepted_tls: int
    deferred_tls: int
    accepted_non_tls: int
    total_accepted: int


def apply_tls_accept_rate_limit(
    total_accept_budget: int,
    pending_tls_accepts: int,
    pending_non_tls_accepts: int,
    max_new_tls_connections_per_cycle: int,
) -> TlsAcceptPlan:
    """Split an accept budget between TLS and plain connections, capping TLS handshakes."""
    tls_budget = min(total_accept_budget, max_new_tls_connections_per_cycle)
    accepted_tls = min(pending_tls_accepts, tls_budget)
    remaining = max(0, total_accept_budget - accepted_tls)
    accepted_non_tls = min(pending_non_tls_accepts, remaining)
    return TlsAcceptPlan(
        accepted_tls=accepted_tls,
        deferred_tls=max(0, pending_tls_accepts - accepted_tls),
        accepted_non_tls=accepted_non_tls,
        total_accepted=accepted_tls + accepted_non_tls,
    )


class ActiveExpireCycleKind(enum.Enum):
    SLOW = "slow"
    FAST = "fast"


@dataclass(frozen=True)
class ActiveExpireCycleBudget:
    slow_cycle_sample_limit: int = 64
    fast_cycle_sample_limit: int = 16


@dataclass(frozen=True)
class ActiveExpireCyclePlan:
    kind: ActiveExpireCycleKind
    sample_limit: int
    start_db_index: int
    next_db_index: int


def plan_active_expire_cycle(
    kind: ActiveExpireCycleKind,
    pending_expirable_keys: int,
    current_db_index: int,
    db_count: int,
    budget: ActiveExpireCycleBudget = ActiveExpireCycleBudget(),
) -> ActiveExpireCyclePlan:
    """Plan one active expire cycle: sample limit and round-robin database index."""
    db_count = max(db_count, 1)
    start = current_db_index % db_count
    configured = (
        budget.slow_cycle_sample_limit
        if kind is ActiveExpireCycleKind.SLOW
        else budget.fast_cycle_sample_limit
    )
    return ActiveExpireCyclePlan(
        kind=kind,
        sample_limit=min(pending_expirable_keys, configured),
        start_db_index=start,
        next_db_index=(start + 1) % db_count,
    )