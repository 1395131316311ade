import pytest

from frconform.expire import ExpiryDecision, evaluate_expiry


def test_no_expiry_is_persistent():
    decision = evaluate_expiry(10, None)
    assert decision.remaining_ms == -1
    assert not decision.should_evict


def test_expired_key_is_evicted():
    decision = evaluate_expiry(100, 99)
    assert decision.remaining_ms == -2
    assert decision.should_evict


def test_deadline_equal_to_now_is_evicted():
    assert evaluate_expiry(100, 100) == ExpiryDecision(should_evict=True, remaining_ms=-2)


def test_future_deadline_reports_remaining():
    assert evaluate_expiry(10, 25) == ExpiryDecision(should_evict=False, remaining_ms=15)


@pytest.mark.parametrize("now,deadline", [(0, 1), (5, 1000), (123, 124)])
def test_remaining_plus_now_equals_deadline(now, deadline):
    decision = evaluate_expiry(now, deadline)
    assert not decision.should_evict
    assert now + decision.remaining_ms == deadline


def test_remaining_is_clamped_to_signed_64_bit():
    decision = evaluate_expiry(0, 2**64 - 1)
    assert decision.remaining_ms == 2**63 - 1
    assert not decision.should_evict