# stockrelay/services/rate_limit_service.py
"""
Per-store adaptive throttling for downstream Shopify writes.

Every response from a downstream store feeds its RateLimitState:
- REST responses carry X-Shopify-Shop-Api-Call-Limit ("used/limit")
- GraphQL responses carry extensions.cost.throttleStatus
- a 429 (or THROTTLED GraphQL error) counts as a consecutive error

get_required_delay() turns that state into either a delay in milliseconds or
DLQ_SENTINEL once a store has failed too many times in a row. A dead-lettered
store stays that way until a call succeeds or an operator resets it.

All mutation happens on the event loop (direct-write path and the propagation
queue's flush task), so the state map is not locked.
"""

import logging
import random
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from stockrelay.core.config import get_settings
from stockrelay.core.enums import StoreHealth, ThrottleStatus

logger = logging.getLogger(__name__)

DLQ_SENTINEL = -1

CALL_LIMIT_HEADER = "x-shopify-shop-api-call-limit"
_CALL_LIMIT_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")

DEFAULT_REST_LIMIT = 40
DEFAULT_GRAPHQL_POINTS = 1000.0
DEFAULT_RESTORE_RATE = 50.0
PLUS_REST_LIMIT = 80


@dataclass
class RestCallLimit:
    used: int
    limit: int
    remaining: int


@dataclass
class GraphQLThrottle:
    available: float
    restore_rate: float
    max_available: float
    status: ThrottleStatus


@dataclass
class RateLimitState:
    store_id: str
    rest_limit: int = DEFAULT_REST_LIMIT
    rest_remaining: int = DEFAULT_REST_LIMIT
    graphql_points_remaining: float = DEFAULT_GRAPHQL_POINTS
    graphql_max_available: float = DEFAULT_GRAPHQL_POINTS
    graphql_restore_rate: float = DEFAULT_RESTORE_RATE
    throttle_status: ThrottleStatus = ThrottleStatus.OK
    consecutive_errors: int = 0
    last_429_at: Optional[datetime] = None
    last_request_at: Optional[datetime] = None
    # Backoff owed because of 429s; cleared by any non-429 response
    current_delay_ms: int = 0
    # Pacing while the bucket is nearly empty; never counts as an error
    pacing_delay_ms: int = 0
    is_plus: bool = False
    rate_multiplier: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["throttle_status"] = self.throttle_status.value
        for key in ("last_429_at", "last_request_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def parse_rest_headers(headers: Optional[Mapping[str, str]]) -> Optional[RestCallLimit]:
    """
    Parse X-Shopify-Shop-Api-Call-Limit ("32/40").

    Returns None when the header is missing or malformed; that means
    "unknown", not an error.
    """
    if not headers:
        return None

    raw = None
    for name, value in headers.items():
        if name.lower() == CALL_LIMIT_HEADER:
            raw = value
            break
    if not raw:
        return None

    match = _CALL_LIMIT_RE.match(str(raw))
    if not match:
        return None

    used = int(match.group(1))
    limit = int(match.group(2))
    if limit <= 0:
        return None
    return RestCallLimit(used=used, limit=limit, remaining=max(0, limit - used))


def classify_throttle(available: float, max_available: float, restore_rate: float,
                      approaching_fraction: float) -> ThrottleStatus:
    if available <= 0:
        return ThrottleStatus.THROTTLED
    # Low water mark: a fraction of the bucket, but never less than one second of restore
    low_water_mark = max(max_available * approaching_fraction, restore_rate)
    if available <= low_water_mark:
        return ThrottleStatus.APPROACHING
    return ThrottleStatus.OK


def parse_graphql_extensions(extensions: Optional[Mapping[str, Any]],
                             approaching_fraction: Optional[float] = None) -> Optional[GraphQLThrottle]:
    """Parse extensions.cost.throttleStatus from a GraphQL response."""
    if not extensions:
        return None
    cost = extensions.get("cost") or {}
    throttle = cost.get("throttleStatus") if isinstance(cost, Mapping) else None
    if not throttle:
        return None

    try:
        available = float(throttle["currentlyAvailable"])
        restore_rate = float(throttle.get("restoreRate", DEFAULT_RESTORE_RATE))
        max_available = float(throttle.get("maximumAvailable", DEFAULT_GRAPHQL_POINTS))
    except (KeyError, TypeError, ValueError):
        return None

    if approaching_fraction is None:
        approaching_fraction = get_settings().RATE_LIMIT_APPROACHING_FRACTION

    return GraphQLThrottle(
        available=available,
        restore_rate=restore_rate,
        max_available=max_available,
        status=classify_throttle(available, max_available, restore_rate, approaching_fraction),
    )


class RateLimitService:
    """Holds one RateLimitState per downstream store."""

    def __init__(
        self,
        max_consecutive_errors: Optional[int] = None,
        base_backoff_ms: Optional[int] = None,
        max_backoff_ms: Optional[int] = None,
        jitter: Optional[float] = None,
        approaching_fraction: Optional[float] = None,
        rest_approaching_threshold: Optional[int] = None,
        pacing_delay_ms: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        settings = get_settings()
        self.max_consecutive_errors = max_consecutive_errors if max_consecutive_errors is not None else settings.RATE_LIMIT_MAX_CONSECUTIVE_ERRORS
        self.base_backoff_ms = base_backoff_ms if base_backoff_ms is not None else settings.RATE_LIMIT_BASE_BACKOFF_MS
        self.max_backoff_ms = max_backoff_ms if max_backoff_ms is not None else settings.RATE_LIMIT_MAX_BACKOFF_MS
        self.jitter = jitter if jitter is not None else settings.RATE_LIMIT_JITTER
        self.approaching_fraction = approaching_fraction if approaching_fraction is not None else settings.RATE_LIMIT_APPROACHING_FRACTION
        self.rest_approaching_threshold = rest_approaching_threshold if rest_approaching_threshold is not None else settings.RATE_LIMIT_REST_APPROACHING
        self.pacing_delay_ms = pacing_delay_ms if pacing_delay_ms is not None else settings.RATE_LIMIT_PACING_DELAY_MS
        self._rng = rng or random.Random()
        self._states: Dict[str, RateLimitState] = {}

    def get_state(self, store_id: str) -> RateLimitState:
        state = self._states.get(store_id)
        if state is None:
            state = RateLimitState(store_id=store_id)
            self._states[store_id] = state
        return state

    def calculate_backoff(self, attempt: int) -> int:
        """
        Exponential backoff with multiplicative jitter:
        1s, 2s, 4s, ... capped at max_backoff_ms, each +/- jitter.
        """
        if attempt <= 0:
            return 0
        exponential = min(self.max_backoff_ms, self.base_backoff_ms * (2 ** (attempt - 1)))
        spread = exponential * self.jitter * (self._rng.random() * 2 - 1)
        return int(round(min(self.max_backoff_ms, max(0, exponential + spread))))

    def record_response(
        self,
        store_id: str,
        headers: Optional[Mapping[str, str]] = None,
        extensions: Optional[Mapping[str, Any]] = None,
        status_code: int = 200,
        retry_after: Optional[float] = None,
    ) -> RateLimitState:
        """
        Feed one remote response into the store's state.

        A 429 (or a THROTTLED cost status on a request that errored) goes
        through record_throttled(); everything else counts as a success.
        """
        state = self.get_state(store_id)
        state.last_request_at = datetime.now(timezone.utc)

        rest = parse_rest_headers(headers)
        if rest is not None:
            state.rest_limit = rest.limit
            state.rest_remaining = rest.remaining
            self.detect_plus(store_id, rest.limit)

        gql = parse_graphql_extensions(extensions, self.approaching_fraction)
        if gql is not None:
            state.graphql_points_remaining = gql.available
            state.graphql_max_available = gql.max_available
            state.graphql_restore_rate = gql.restore_rate
            state.throttle_status = gql.status

        if status_code == 429:
            return self.record_throttled(store_id, retry_after)

        self._record_success(state)
        return state

    def record_throttled(self, store_id: str, retry_after: Optional[float] = None) -> RateLimitState:
        state = self.get_state(store_id)
        now = datetime.now(timezone.utc)
        state.last_request_at = now
        state.last_429_at = now
        state.consecutive_errors += 1
        state.current_delay_ms = self.calculate_backoff(state.consecutive_errors)
        if retry_after:
            state.current_delay_ms = min(self.max_backoff_ms, max(state.current_delay_ms, int(retry_after * 1000)))
        self._update_pacing(state)

        logger.warning(
            f"Rate limited (429) for store {store_id}: consecutive_errors={state.consecutive_errors}, "
            f"delay_ms={state.current_delay_ms}"
        )
        if state.consecutive_errors == self.max_consecutive_errors:
            logger.error(f"Store {store_id} reached {state.consecutive_errors} consecutive rate-limit errors; routing to DLQ")
        return state

    def record_success(self, store_id: str) -> RateLimitState:
        state = self.get_state(store_id)
        state.last_request_at = datetime.now(timezone.utc)
        self._record_success(state)
        return state

    def _record_success(self, state: RateLimitState):
        if state.consecutive_errors > 0:
            logger.info(f"Store {state.store_id} recovered after {state.consecutive_errors} rate-limit errors")
        state.consecutive_errors = 0
        state.current_delay_ms = 0
        self._update_pacing(state)

    def _update_pacing(self, state: RateLimitState):
        low_rest = state.rest_remaining < self.rest_approaching_threshold
        if low_rest or state.throttle_status == ThrottleStatus.APPROACHING:
            state.pacing_delay_ms = self.pacing_delay_ms
        else:
            state.pacing_delay_ms = 0

    def get_required_delay(self, store_id: str) -> int:
        """
        0 when healthy, the backoff (or pacing) delay in ms otherwise, and
        DLQ_SENTINEL once consecutive errors reach the threshold.
        """
        state = self.get_state(store_id)
        if state.consecutive_errors >= self.max_consecutive_errors:
            return DLQ_SENTINEL
        return max(state.current_delay_ms, state.pacing_delay_ms)

    def should_use_dlq(self, store_id: str) -> bool:
        return self.get_state(store_id).consecutive_errors >= self.max_consecutive_errors

    def reset_state(self, store_id: str) -> RateLimitState:
        """Manual operator recovery: full budget, zero errors, zero delay."""
        logger.info(f"Resetting rate limit state for store {store_id}")
        self._states.pop(store_id, None)
        return self.get_state(store_id)

    def detect_plus(self, store_id: str, limit: int) -> bool:
        """Standard stores get a 40 call bucket; Plus stores get 80 or more."""
        is_plus = limit >= PLUS_REST_LIMIT
        state = self.get_state(store_id)
        if is_plus and not state.is_plus:
            state.is_plus = True
            state.rate_multiplier = limit / DEFAULT_REST_LIMIT
            logger.info(f"Detected Shopify Plus for store {store_id}, multiplier: {state.rate_multiplier}")
        return is_plus

    def store_health(self, store_id: str) -> StoreHealth:
        state = self.get_state(store_id)
        if state.consecutive_errors >= self.max_consecutive_errors:
            return StoreHealth.ERRORING
        if state.consecutive_errors > 0 or state.throttle_status == ThrottleStatus.THROTTLED:
            return StoreHealth.THROTTLED
        return StoreHealth.HEALTHY

    def get_health_summary(self) -> Dict[str, Any]:
        counts = {health: 0 for health in StoreHealth}
        stores = []
        for store_id in sorted(self._states):
            health = self.store_health(store_id)
            counts[health] += 1
            state = self._states[store_id]
            stores.append({
                "store_id": store_id,
                "status": health.value,
                "errors": state.consecutive_errors,
                "required_delay_ms": self.get_required_delay(store_id),
                "is_plus": state.is_plus,
            })
        return {
            "healthy": counts[StoreHealth.HEALTHY],
            "throttled": counts[StoreHealth.THROTTLED],
            "erroring": counts[StoreHealth.ERRORING],
            "stores": stores,
        }
