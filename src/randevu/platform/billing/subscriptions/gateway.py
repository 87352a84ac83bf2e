"""
Payment gateway collaborator.

The lifecycle manager and sweeper only see :class:`PaymentGateway`. Real
deployments wrap :class:`HttpPaymentGateway` in
:class:`TimeoutGuardedGateway` so a slow or broken provider turns into a
failed charge instead of a hung request.
"""

import asyncio
from decimal import Decimal
from typing import Any, Protocol

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from randevu.platform.logging import get_logger

logger = get_logger(__name__)


class ChargeResult(BaseModel):
    """Outcome of a charge or credit request."""

    success: bool
    transaction_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(Protocol):
    """Contract consumed from the payment provider."""

    async def charge(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult: ...

    async def refund_or_credit(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult: ...


class HttpPaymentGateway:
    """Talks to the payment provider's REST API with httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient()

    # Only connection failures are retried: the request never reached the provider
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    )
    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        idempotency_key = (payload.get("metadata") or {}).get("idempotency_key")
        if idempotency_key:
            headers["Idempotency-Key"] = str(idempotency_key)

        logger.debug("payment_gateway.request", path=path, amount=payload["amount"])
        return await self._client.post(f"{self.base_url}{path}", json=payload, headers=headers)

    async def _send(
        self,
        path: str,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        metadata: dict[str, Any] | None,
    ) -> ChargeResult:
        response = await self._post(
            path,
            {
                "payment_method_id": payment_method_id,
                "amount": str(amount),
                "currency": currency,
                "description": description,
                "metadata": metadata or {},
            },
        )
        if response.status_code >= 500:
            response.raise_for_status()

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if response.is_success and body.get("success", True):
            return ChargeResult(success=True, transaction_id=body.get("transaction_id"))

        return ChargeResult(
            success=False,
            transaction_id=body.get("transaction_id"),
            failure_reason=body.get("failure_reason") or body.get("error") or "declined",
        )

    async def charge(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        return await self._send(
            "/v1/charges", payment_method_id, amount, currency, description, metadata
        )

    async def refund_or_credit(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        return await self._send(
            "/v1/credits", payment_method_id, amount, currency, description, metadata
        )

    async def close(self) -> None:
        await self._client.aclose()


class TimeoutGuardedGateway:
    """Bounds every call of ``inner`` and converts failures into declined results."""

    def __init__(self, inner: PaymentGateway, timeout_seconds: float) -> None:
        self.inner = inner
        self.timeout_seconds = timeout_seconds

    async def _guard(self, operation: str, call: Any, **log_context: Any) -> ChargeResult:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning(
                "payment_gateway.timeout",
                operation=operation,
                timeout_seconds=self.timeout_seconds,
                **log_context,
            )
            return ChargeResult(success=False, failure_reason="timeout")
        except httpx.HTTPError as exc:
            logger.warning(
                "payment_gateway.transport_error",
                operation=operation,
                error=str(exc),
                **log_context,
            )
            return ChargeResult(success=False, failure_reason="gateway_unavailable")

    async def charge(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        return await self._guard(
            "charge",
            self.inner.charge(payment_method_id, amount, currency, description, metadata),
            payment_method_id=payment_method_id,
            amount=str(amount),
            currency=currency,
        )

    async def refund_or_credit(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        return await self._guard(
            "refund_or_credit",
            self.inner.refund_or_credit(payment_method_id, amount, currency, description, metadata),
            payment_method_id=payment_method_id,
            amount=str(amount),
            currency=currency,
        )


__all__ = ["ChargeResult", "PaymentGateway", "HttpPaymentGateway", "TimeoutGuardedGateway"]
