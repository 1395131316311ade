import pytest

from frconform.eventloop_io import (
    AcceptPathError,
    AcceptPathErrorKind,
    ActiveExpireCycleBudget,
    ActiveExpireCycleKind,
    FdRegistrationError,
    FdRegistrationErrorKind,
    PendingWriteError,
    PendingWriteErrorKind,
    ReadPathError,
    ReadPathErrorKind,
    apply_tls_accept_rate_limit,
    plan_active_expire_cycle,
    plan_fd_setsize_growth,
    validate_accept_path,
    validate_fd_registration_bounds,
    validate_pending_write_delivery,
    validate_read_path,
)


def test_fd_registration_rejects_out_of_range_descriptor():
    with pytest.raises(FdRegistrationError) as info:
        validate_fd_registration_bounds(64, 64)
    err = info.value
    assert err.kind is FdRegistrationErrorKind.FD_OUT_OF_RANGE
    assert (err.fd, err.setsize) == (64, 64)
    assert err.reason_code() == "eventloop.fd_out_of_range"


def test_fd_resize_growth_is_deterministic():
    assert plan_fd_setsize_growth(64, 120, 1024) == 128


def test_fd_resize_keeps_current_size_when_fd_fits():
    assert plan_fd_setsize_growth(64, 10, 1024) == 64


@pytest.mark.parametrize("current,fd", [(1, 5), (3, 100), (64, 1000), (0, 7)])
def test_fd_resize_growth_holds_requested_fd(current, fd):
    grown = plan_fd_setsize_growth(current, fd, 1024)
    assert fd < grown <= 1024
    validate_fd_registration_bounds(fd, grown)
    assert grown >= current


def test_fd_resize_failure_reports_reason_code():
    with pytest.raises(FdRegistrationError) as info:
        plan_fd_setsize_growth(64, 2048, 1024)
    err = info.value
    assert err.kind is FdRegistrationErrorKind.FD_RESIZE_FAILURE
    assert (err.requested_fd, err.max_setsize) == (2048, 1024)
    assert err.reason_code() == "eventloop.fd_resize_failure"


def test_accept_path_rejects_over_maxclients():
    with pytest.raises(AcceptPathError) as info:
        validate_accept_path(10_000, 10_000, True)
    err = info.value
    assert err.kind is AcceptPathErrorKind.MAX_CLIENTS_REACHED
    assert (err.current_clients, err.max_clients) == (10_000, 10_000)
    assert err.reason_code() == "eventloop.accept.maxclients_reached"


def test_accept_path_detects_handler_bind_failure():
    with pytest.raises(AcceptPathError) as info:
        validate_accept_path(9_999, 10_000, False)
    assert info.value.kind is AcceptPathErrorKind.HANDLER_BIND_FAILURE
    assert info.value.reason_code() == "eventloop.accept.handler_bind_failure"


def test_read_path_enforces_query_buffer_limit():
    with pytest.raises(ReadPathError) as info:
        validate_read_path(6, 5, 10, False)
    err = info.value
    assert err.kind is ReadPathErrorKind.QUERY_BUFFER_LIMIT_EXCEEDED
    assert (err.observed, err.limit) == (11, 10)
    assert err.reason_code() == "eventloop.read.querybuf_limit_exceeded"


def test_read_path_at_limit_returns_new_length():
    assert validate_read_path(6, 4, 10, False) == 10


def test_read_path_terminates_on_fatal_error():
    with pytest.raises(ReadPathError) as info:
        validate_read_path(0, 0, 32, True)
    assert info.value.kind is ReadPathErrorKind.FATAL_ERROR_DISCONNECT
    assert info.value.reason_code() == "eventloop.read.fatal_error_disconnect"


def test_pending_write_delivery_rejects_reordered_flushes():
    with pytest.raises(PendingWriteError) as info:
        validate_pending_write_delivery([11, 13, 17], [13, 11], [17])
    err = info.value
    assert err.kind is PendingWriteErrorKind.FLUSH_ORDER_VIOLATION
    assert err.client_id == 11
    assert err.reason_code() == "eventloop.write.flush_order_violation"


def test_pending_write_delivery_rejects_missing_replies():
    with pytest.raises(PendingWriteError) as info:
        validate_pending_write_delivery([11, 13, 17], [11], [17])
    err = info.value
    assert err.kind is PendingWriteErrorKind.PENDING_REPLY_LOST
    assert err.client_id == 13
    assert err.reason_code() == "eventloop.write.pending_reply_lost"


def test_pending_write_delivery_rejects_unknown_client():
    with pytest.raises(PendingWriteError) as info:
        validate_pending_write_delivery([11], [11, 99], [])
    assert info.value.kind is PendingWriteErrorKind.PENDING_REPLY_LOST
    assert info.value.client_id == 99


def test_pending_write_delivery_rejects_duplicate_queue_entry():
    with pytest.raises(PendingWriteError) as info:
        validate_pending_write_delivery([11, 11], [11], [])
    assert info.value.kind is PendingWriteErrorKind.FLUSH_ORDER_VIOLATION
    assert info.value.client_id == 11


def test_pending_write_delivery_rejects_duplicate_delivery():
    with pytest.raises(PendingWriteError) as info:
        validate_pending_write_delivery([11, 13], [11], [11, 13])
    assert info.value.kind is PendingWriteErrorKind.FLUSH_ORDER_VIOLATION


def test_tls_accept_limit_clamps_tls_accepts():
    plan = apply_tls_accept_rate_limit(10, 15, 5, 4)
    assert plan.accepted_tls == 4
    assert plan.deferred_tls == 11
    assert plan.accepted_non_tls == 5
    assert plan.total_accepted == 9


def test_tls_accept_limit_preserves_non_tls_when_tls_is_zero():
    plan = apply_tls_accept_rate_limit(8, 6, 10, 0)
    assert plan.accepted_tls == 0
    assert plan.deferred_tls == 6
    assert plan.accepted_non_tls == 8
    assert plan.total_accepted == 8


def test_tls_accept_limit_respects_global_accept_budget():
    plan = apply_tls_accept_rate_limit(3, 2, 8, 5)
    assert plan.accepted_tls == 2
    assert plan.deferred_tls == 0
    assert plan.accepted_non_tls == 1
    assert plan.total_accepted == 3


@pytest.mark.parametrize("budget,tls,plain,cap", [(0, 3, 3, 3), (5, 0, 0, 2), (20, 7, 1, 9)])
def test_tls_accept_plan_invariants(budget, tls, plain, cap):
    plan = apply_tls_accept_rate_limit(budget, tls, plain, cap)
    assert plan.total_accepted == plan.accepted_tls + plan.accepted_non_tls
    assert plan.total_accepted <= budget
    assert plan.accepted_tls <= cap
    assert plan.accepted_tls + plan.deferred_tls == tls


def test_active_expire_cycle_budget_is_deterministic():
    budget = ActiveExpireCycleBudget()
    fast = plan_active_expire_cycle(ActiveExpireCycleKind.FAST, 99, 0, 1, budget)
    assert fast.sample_limit == budget.fast_cycle_sample_limit == 16
    assert (fast.start_db_index, fast.next_db_index) == (0, 0)

    slow = plan_active_expire_cycle(ActiveExpireCycleKind.SLOW, 99, 0, 1, budget)
    assert slow.sample_limit == budget.slow_cycle_sample_limit == 64
    assert (slow.start_db_index, slow.next_db_index) == (0, 0)
    assert slow.kind is ActiveExpireCycleKind.SLOW


def test_active_expire_cycle_rotates_db_index_fairly():
    budget = ActiveExpireCycleBudget()
    plan = plan_active_expire_cycle(ActiveExpireCycleKind.SLOW, 2, 1, 4, budget)
    assert plan.start_db_index == 1
    assert plan.next_db_index == 2
    assert plan.sample_limit == 2

    wrapped = plan_active_expire_cycle(ActiveExpireCycleKind.SLOW, 2, 3, 4, budget)
    assert wrapped.start_db_index == 3
    assert wrapped.next_db_index == 0


def test_active_expire_cycle_handles_zero_db_count():
    plan = plan_active_expire_cycle(ActiveExpireCycleKind.FAST, 3, 77, 0, ActiveExpireCycleBudget())
    assert plan.start_db_index == 0
    assert plan.next_db_index == 0