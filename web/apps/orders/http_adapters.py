"""HTTP client for the stock ledger service with retries and a circuit breaker.

This module implements ``StockLedgerPort`` over the ledger service's REST API
using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    the gateway middleware.
- A circuit breaker for the ledger to avoid hammering an unhealthy service,
    with HALF_OPEN probing after a timeout.
- A retry policy with exponential backoff for transport errors and 5xx.

Every ledger call carries the reservation id, so a retry of a call whose
response was lost is applied by the service at most once.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

import httpx
from django.conf import settings

from gateway.context import REQUEST_ID_CTX

from .domain import StockError, StockKey, StockLedgerPort, StockLine, UpstreamUnavailable

logger = logging.getLogger("orders.ledger")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            UpstreamUnavailable: If the circuit is OPEN or a HALF_OPEN probe
                is already in flight.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise UpstreamUnavailable("CIRCUIT_OPEN", service=self.name)
            if st == "HALF_OPEN":
                # allow only one concurrent probe
                if self._half_open_probe_in_flight:
                    raise UpstreamUnavailable("CIRCUIT_HALF_OPEN_BUSY", service=self.name)
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False

    def reset(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._opened_at = 0.0
            self._half_open_probe_in_flight = False


ledger_breaker = CircuitBreaker(
    "ledger",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_attempts, backoff_base, max_sleep)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _lines_payload(lines: List[StockLine]) -> list[dict]:
    return [{"product_id": ln.key.product_id, "size": ln.key.size, "quantity": ln.quantity} for ln in lines]


# ---------------- Ledger Adapter ---------------- #

class HttpStockLedgerClient(StockLedgerPort):
    """HTTP client for the ledger service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, breaker: CircuitBreaker | None = None):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.breaker = breaker or ledger_breaker

    def _call(self, method: str, path: str, payload: dict, business: Callable[[httpx.Response], object]):
        """Send one logical request, retrying transport errors and 5xx.

        ``business`` receives every response with a status below 500 and
        either returns the result or raises a domain error; such responses
        never count as circuit failures.

        Raises:
            UpstreamUnavailable: Circuit open, or retries exhausted.
        """
        max_attempts, backoff, cap = _retry_policy()
        state = self.breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
        tries = 0
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=payload, headers=headers)
                        if resp.status_code < 500:
                            self.breaker.on_success()
                            return business(resp)
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)
                    if tries >= max_attempts or not _should_retry(resp, exc):
                        self.breaker.on_failure()
                        logger.warning(
                            "ledger call failed",
                            extra={"path": path, "attempts": tries, "status": getattr(resp, "status_code", None)},
                        )
                        raise UpstreamUnavailable(service="ledger", path=path) from exc

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    if sleep_s > 0:
                        time.sleep(min(sleep_s, cap))
        finally:
            self.breaker.on_finish()

    def reserve(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Reserve all lines or none.

        Maps business responses:
        - 200 → reserved (also for a replayed reservation id)
        - 422 → ``StockError`` with the failing line index

        Raises:
            StockError: Insufficient stock for a line.
            UpstreamUnavailable: Ledger unreachable after retries.
        """
        def business(resp: httpx.Response):
            if resp.status_code == 422:
                detail = resp.json().get("detail")
                if isinstance(detail, dict) and detail.get("detail") == "INSUFFICIENT_STOCK":
                    line = detail.get("line")
                    key = lines[line].key if isinstance(line, int) and 0 <= line < len(lines) else None
                    raise StockError(
                        line=line,
                        product_id=key.product_id if key else None,
                        size=key.size if key else None,
                    )
            resp.raise_for_status()
            return None

        self._call("POST", "/reservations", {"reservation_id": reservation_id, "items": _lines_payload(lines)}, business)

    def commit(self, reservation_id: str, lines: List[StockLine]) -> None:
        self._call("POST", f"/reservations/{reservation_id}/commit", {"items": _lines_payload(lines)}, _expect_ok)

    def release(self, reservation_id: str, lines: List[StockLine]) -> None:
        self._call("POST", f"/reservations/{reservation_id}/release", {"items": _lines_payload(lines)}, _expect_ok)

    def set_available(self, key: StockKey, available: int) -> None:
        payload = {"product_id": key.product_id, "size": key.size, "available": available}
        self._call("PUT", "/stock", payload, _expect_ok)

    def get_available(self, keys: List[StockKey]) -> Dict[StockKey, int]:
        """Read the available counts of several keys in one call."""
        if not keys:
            return {}
        payload = {"keys": [{"product_id": k.product_id, "size": k.size} for k in keys]}
        body = self._call("POST", "/stock/levels", payload, _expect_ok)
        levels = {(lv["product_id"], lv.get("size") or None): lv["available"] for lv in body.get("levels", [])}
        return {k: levels.get((k.product_id, k.size), 0) for k in keys}

    def health(self) -> bool:
        """Probe ``/health``; never raises."""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                return client.get(f"{self.base_url}/health", headers=_request_headers()).status_code == 200
        except httpx.HTTPError:
            return False


def _expect_ok(resp: httpx.Response):
    resp.raise_for_status()
    return resp.json()
