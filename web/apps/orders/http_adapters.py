"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients using ``httpx``:

- ``HttpCatalogClient`` implements ``CatalogStore`` against the catalog
  service (``services/catalog``).
- ``HttpMomoClient`` sends signed create-payment requests to the MoMo
  gateway.

Both add:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
  the gateway middleware.
- Circuit breaker per downstream service to avoid hammering unhealthy
  dependencies, with HALF_OPEN probing after a timeout.
- Retry policy with exponential backoff. Idempotent calls retry on
  transport errors and 5xx; non-idempotent calls (stock increments,
  reservations, payment creation) only retry when the connection could not
  be established, so a request is never applied twice.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import CatalogStore, FieldNotFound, PaymentGatewayError, Product, VariantStock

logger = logging.getLogger(__name__)


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

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._failures >= self.fail_threshold and self._state != "OPEN":
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


# Per-service instances
_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)
_momo_cb = CircuitBreaker(
    "momo",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception], idempotent: bool) -> bool:
    """Decide whether to retry based on response status or transport error."""
    if exc is not None:
        return idempotent or isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
    if resp is not None and 500 <= resp.status_code < 600:
        return idempotent
    return False


def _send(breaker: CircuitBreaker, method: str, url: str, timeout: float, idempotent: bool, **kwargs):
    """Send one logical request with circuit breaker and retries.

    Responses below 500 are returned to the caller, who maps business
    statuses; 5xx and transport errors count as circuit failures once the
    retries are spent.

    Raises:
        httpx.RequestError: For network/transport errors after retries.
        httpx.HTTPStatusError: For 5xx responses after retries.
        RuntimeError: When the circuit is open.
    """
    max_retries, backoff = _retry_policy()
    tries = 0

    state = breaker.before_call()
    headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
    headers.update(kwargs.pop("headers", None) or {})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.request(method, url, headers=headers, **kwargs)
                    if resp.status_code < 500:
                        breaker.on_success()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                headers["X-Retry-Count"] = str(tries)

                if tries > max_retries or not _should_retry(resp, exc, idempotent):
                    breaker.on_failure()
                    if exc:
                        raise exc
                    resp.raise_for_status()

                sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()


def _money(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def product_from_json(data: dict) -> Product:
    return Product(
        id=str(data["id"]),
        name=data.get("name", ""),
        price=_money(data.get("price")) or Decimal("0"),
        old_price=_money(data.get("old_price")),
        image=data.get("image") or "",
        in_stock=bool(data.get("in_stock", True)),
        stock=int(data.get("stock", 0)),
        is_active=bool(data.get("is_active", True)),
        variants=tuple(
            VariantStock(name=v["name"], stock=int(v["stock"])) for v in data.get("color_stocks", [])
        ),
    )


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogStore):
    """HTTP client for the catalog service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _url(self, product_id: str, suffix: str = "") -> str:
        return f"{self.base_url}/products/{product_id}{suffix}"

    def get(self, product_id: str) -> Optional[Product]:
        """Fetch a product; 404 maps to None."""
        resp = _send(_catalog_cb, "GET", self._url(product_id), self.timeout, idempotent=True)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return product_from_json(resp.json())

    def update_fields(self, product_id: str, fields: dict) -> None:
        resp = _send(_catalog_cb, "PATCH", self._url(product_id), self.timeout, idempotent=True, json=fields)
        if resp.status_code in (404, 422):
            raise FieldNotFound(product_id)
        resp.raise_for_status()

    def increment_field(self, product_id: str, field_path: str, delta: int) -> int:
        """Apply ``delta`` to one counter; 404 (unknown product/path) raises FieldNotFound."""
        resp = _send(
            _catalog_cb,
            "POST",
            self._url(product_id, "/increment"),
            self.timeout,
            idempotent=False,
            json={"field": field_path, "delta": delta},
        )
        if resp.status_code == 404:
            raise FieldNotFound(field_path)
        resp.raise_for_status()
        return int(resp.json()["value"])

    def decrement_if_available(self, product_id: str, variant: str, quantity: int) -> bool:
        """Reserve stock; 200 → True, 422 (insufficient stock) → False."""
        resp = _send(
            _catalog_cb,
            "POST",
            self._url(product_id, "/reserve"),
            self.timeout,
            idempotent=False,
            json={"variant": variant, "quantity": quantity},
        )
        if resp.status_code in (404, 422):
            return False
        resp.raise_for_status()
        return bool(resp.json().get("reserved", False))


# ---------------- MoMo Adapter ---------------- #

class HttpMomoClient:
    """HTTP client for the MoMo create-payment endpoint."""

    def __init__(self, endpoint: str | None = None, timeout: float | None = None):
        self.endpoint = endpoint or settings.MOMO_ENDPOINT
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def create(self, payload: dict) -> dict:
        """Post a signed create request and return the gateway's JSON answer.

        Raises:
            PaymentGatewayError: When the gateway answers with a 4xx status.
        """
        resp = _send(_momo_cb, "POST", self.endpoint, self.timeout, idempotent=False, json=payload)
        if resp.status_code >= 400:
            raise PaymentGatewayError(f"MoMo rejected the payment request ({resp.status_code}).")
        return resp.json()
