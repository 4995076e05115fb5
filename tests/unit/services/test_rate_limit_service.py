# tests/unit/services/test_rate_limit_service.py
import random

import pytest

from stockrelay.core.enums import StoreHealth, ThrottleStatus
from stockrelay.services.rate_limit_service import (
    DLQ_SENTINEL,
    RateLimitService,
    classify_throttle,
    parse_graphql_extensions,
    parse_rest_headers,
)

STORE = "retailer-shop"


def _extensions(available, maximum=1000.0, restore=50.0):
    return {
        "cost": {
            "requestedQueryCost": 10,
            "actualQueryCost": 10,
            "throttleStatus": {
                "maximumAvailable": maximum,
                "currentlyAvailable": available,
                "restoreRate": restore,
            },
        }
    }


"""
1. Header and extension parsing
"""

def test_parse_rest_headers():
    limit = parse_rest_headers({"X-Shopify-Shop-Api-Call-Limit": "32/40"})
    assert (limit.used, limit.limit, limit.remaining) == (32, 40, 8)


@pytest.mark.parametrize("headers", [None, {}, {"X-Shopify-Shop-Api-Call-Limit": "abc"}, {"Other": "1/40"}])
def test_parse_rest_headers_missing_or_malformed(headers):
    assert parse_rest_headers(headers) is None


@pytest.mark.parametrize("available,expected", [
    (0, ThrottleStatus.THROTTLED),
    (-5, ThrottleStatus.THROTTLED),
    (50, ThrottleStatus.APPROACHING),
    (100, ThrottleStatus.APPROACHING),
    (101, ThrottleStatus.OK),
    (900, ThrottleStatus.OK),
])
def test_classify_throttle(available, expected):
    assert classify_throttle(available, 1000, 50, 0.1) == expected


def test_parse_graphql_extensions():
    throttle = parse_graphql_extensions(_extensions(20), approaching_fraction=0.1)
    assert throttle.available == 20
    assert throttle.status == ThrottleStatus.APPROACHING
    assert parse_graphql_extensions({"cost": {}}) is None
    assert parse_graphql_extensions(None) is None


"""
2. Backoff and dead-letter routing
"""

def test_backoff_without_jitter_doubles_and_caps():
    limiter = RateLimitService(jitter=0, base_backoff_ms=1000, max_backoff_ms=60000)
    assert [limiter.calculate_backoff(n) for n in range(0, 9)] == [
        0, 1000, 2000, 4000, 8000, 16000, 32000, 60000, 60000,
    ]


def test_backoff_jitter_stays_within_bounds():
    limiter = RateLimitService(jitter=0.25, rng=random.Random(3))
    for attempt in range(1, 12):
        base = min(60000, 1000 * 2 ** (attempt - 1))
        for _ in range(20):
            delay = limiter.calculate_backoff(attempt)
            assert 0 <= delay <= 60000
            assert base * 0.75 - 1 <= delay <= base * 1.25 + 1


def test_backoff_non_decreasing_in_expectation():
    limiter = RateLimitService(jitter=0.25, rng=random.Random(11))
    means = []
    for attempt in range(1, 8):
        samples = [limiter.calculate_backoff(attempt) for _ in range(200)]
        means.append(sum(samples) / len(samples))
    assert all(later >= earlier * 0.99 for earlier, later in zip(means, means[1:]))


def test_five_consecutive_429s_dead_letter_the_store(rate_limiter):
    for attempt in range(1, 5):
        rate_limiter.record_response(STORE, status_code=429)
        assert rate_limiter.should_use_dlq(STORE) is False
        assert rate_limiter.get_required_delay(STORE) == 1000 * 2 ** (attempt - 1)

    rate_limiter.record_response(STORE, status_code=429)
    assert rate_limiter.should_use_dlq(STORE) is True
    assert rate_limiter.get_required_delay(STORE) == DLQ_SENTINEL

    rate_limiter.record_response(STORE, status_code=200)
    state = rate_limiter.get_state(STORE)
    assert state.consecutive_errors == 0
    assert state.current_delay_ms == 0
    assert rate_limiter.get_required_delay(STORE) == 0
    assert rate_limiter.should_use_dlq(STORE) is False


def test_retry_after_raises_the_delay(rate_limiter):
    rate_limiter.record_response(STORE, status_code=429, retry_after=4)
    assert rate_limiter.get_required_delay(STORE) == 4000


def test_reset_state_restores_defaults(rate_limiter):
    for _ in range(6):
        rate_limiter.record_throttled(STORE)
    state = rate_limiter.reset_state(STORE)
    assert state.consecutive_errors == 0
    assert state.rest_remaining == 40
    assert state.graphql_points_remaining == 1000.0
    assert rate_limiter.get_required_delay(STORE) == 0


"""
3. Pacing and store tiers
"""

def test_approaching_budget_paces_without_counting_errors(rate_limiter):
    rate_limiter.record_response(STORE, extensions=_extensions(30))
    state = rate_limiter.get_state(STORE)
    assert state.throttle_status == ThrottleStatus.APPROACHING
    assert state.consecutive_errors == 0
    assert state.current_delay_ms == 0
    assert rate_limiter.get_required_delay(STORE) == 500

    rate_limiter.record_response(STORE, extensions=_extensions(800))
    assert rate_limiter.get_required_delay(STORE) == 0


def test_low_rest_budget_paces(rate_limiter):
    rate_limiter.record_response(STORE, headers={"X-Shopify-Shop-Api-Call-Limit": "35/40"})
    assert rate_limiter.get_state(STORE).rest_remaining == 5
    assert rate_limiter.get_required_delay(STORE) == 500


def test_plus_store_detection(rate_limiter):
    rate_limiter.record_response(STORE, headers={"X-Shopify-Shop-Api-Call-Limit": "10/80"})
    state = rate_limiter.get_state(STORE)
    assert state.is_plus is True
    assert state.rate_multiplier == 2.0
    assert rate_limiter.get_required_delay(STORE) == 0


def test_health_summary(rate_limiter):
    rate_limiter.record_success("healthy-shop")
    rate_limiter.record_throttled("slow-shop")
    for _ in range(5):
        rate_limiter.record_throttled("broken-shop")

    summary = rate_limiter.get_health_summary()

    assert (summary["healthy"], summary["throttled"], summary["erroring"]) == (1, 1, 1)
    by_store = {s["store_id"]: s for s in summary["stores"]}
    assert by_store["broken-shop"]["status"] == StoreHealth.ERRORING.value
    assert by_store["broken-shop"]["required_delay_ms"] == DLQ_SENTINEL
    assert by_store["slow-shop"]["errors"] == 1
