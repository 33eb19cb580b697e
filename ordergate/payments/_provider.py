"""
Payment provider client — Toss Payments over HTTPS.

The provider is opaque to the engines: confirm() and cancel() return
LazyCoroResult[..., ProviderFailure]. Blocking requests calls run in a
worker thread and are bounded by combinators.timeout on top of the
socket timeout.

Mock mode answers locally with the same shapes, so the confirmation and
refund engines run identical code paths with or without a gateway.
"""

from __future__ import annotations

import base64
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import requests
import structlog
from combinators import TimeoutError as CombinatorTimeout, timeout
from kungfu import Result, Ok, Error, LazyCoroResult

from ordergate import lift as L
from ordergate.config import Settings

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Toss Payments request timed out"
MISSING_KEY_MESSAGE = "Toss Payments secret key is not configured"

# ═══════════════════════════════════════════════════════════════════════════════
# Provider Values
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ProviderPayment:
    payment_id: str
    approved_at: datetime | None = None
    raw: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    message: str
    payload: Any = None


class PaymentProvider(Protocol):
    name: str

    @property
    def mock_mode(self) -> bool: ...

    def confirm(
        self,
        payment_key: str,
        order_id: str,
        amount: int,
    ) -> LazyCoroResult[ProviderPayment, ProviderFailure]: ...

    def cancel(
        self,
        payment_key: str,
        amount: int,
        reason: str,
    ) -> LazyCoroResult[Mapping[str, Any], ProviderFailure]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Response Decoding
# ═══════════════════════════════════════════════════════════════════════════════


def _parse_approved_at(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def decode_response(response: requests.Response) -> Result[Mapping[str, Any], ProviderFailure]:
    """Body as JSON ({"raw": text} if not JSON); non-2xx becomes ProviderFailure."""
    text = response.text
    data: Any
    try:
        data = response.json() if text else None
    except ValueError:
        data = {"raw": text}

    if not response.ok:
        message = data.get("message") if isinstance(data, dict) else None
        return Error(ProviderFailure(message or f"HTTP {response.status_code}", data))

    return Ok(data if isinstance(data, dict) else {})


def _transport_failure(exc: Exception) -> ProviderFailure:
    if isinstance(exc, requests.Timeout):
        return ProviderFailure(TIMEOUT_MESSAGE)
    return ProviderFailure(str(exc) or exc.__class__.__name__)


def _timeout_failure(error: ProviderFailure | CombinatorTimeout) -> ProviderFailure:
    if isinstance(error, CombinatorTimeout):
        return ProviderFailure(TIMEOUT_MESSAGE)
    return error


# ═══════════════════════════════════════════════════════════════════════════════
# Toss Payments Client
# ═══════════════════════════════════════════════════════════════════════════════


class TossPaymentsClient:
    name = "TOSS"

    def __init__(
        self,
        *,
        secret_key: str | None,
        base_url: str = "https://api.tosspayments.com/v1",
        timeout_seconds: float = 15.0,
        mock_mode: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._mock_mode = mock_mode
        self._http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> TossPaymentsClient:
        return cls(
            secret_key=settings.toss_secret_key,
            base_url=settings.toss_api_base_url,
            timeout_seconds=settings.provider_timeout,
            mock_mode=settings.mock_mode,
        )

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def confirm(
        self,
        payment_key: str,
        order_id: str,
        amount: int,
    ) -> LazyCoroResult[ProviderPayment, ProviderFailure]:
        if self._mock_mode:
            logger.warning("provider.mock_confirm", order_id=order_id, amount=amount)
            return L.pure(ProviderPayment(payment_id=f"mock_{int(time.time() * 1000)}"))

        body = {"paymentKey": payment_key, "orderId": order_id, "amount": amount}
        return self._post("/payments/confirm", body).map(
            lambda data: ProviderPayment(
                payment_id=data.get("paymentKey") or payment_key,
                approved_at=_parse_approved_at(data.get("approvedAt")),
                raw=data,
            )
        )

    def cancel(
        self,
        payment_key: str,
        amount: int,
        reason: str,
    ) -> LazyCoroResult[Mapping[str, Any], ProviderFailure]:
        if self._mock_mode:
            logger.warning("provider.mock_cancel", payment_key=payment_key, amount=amount)
            return L.pure({})

        body = {"cancelReason": reason, "cancelAmount": amount}
        return self._post(f"/payments/{payment_key}/cancel", body)

    def _post(
        self,
        path: str,
        body: Mapping[str, Any],
    ) -> LazyCoroResult[Mapping[str, Any], ProviderFailure]:
        if not self._secret_key:
            return L.fail(ProviderFailure(MISSING_KEY_MESSAGE))

        url = f"{self._base_url}{path}"
        token = base64.b64encode(f"{self._secret_key}:".encode()).decode()
        headers = {"Authorization": f"Basic {token}", "Content-Type": "application/json"}

        def send() -> requests.Response:
            return self._http.post(url, json=dict(body), headers=headers, timeout=self._timeout)

        call = L.in_thread(send, on_error=_transport_failure)
        return (
            timeout(call, seconds=self._timeout)
            .map_err(_timeout_failure)
            .then(lambda response: L.from_result(decode_response(response)))
        )


__all__ = (
    "ProviderPayment",
    "ProviderFailure",
    "PaymentProvider",
    "TossPaymentsClient",
    "decode_response",
    "TIMEOUT_MESSAGE",
    "MISSING_KEY_MESSAGE",
)
