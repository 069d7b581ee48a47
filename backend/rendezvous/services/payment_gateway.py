"""Stripe adapter for authorizations, captures, refunds and Connect transfers.

Every mutating call carries an idempotency key derived from the appointment
id, so replaying a half-finished operation never charges, refunds or
transfers twice.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import stripe
import structlog

from rendezvous.core.exceptions import PaymentGatewayError

logger = structlog.get_logger(__name__)

# PaymentIntent statuses
REQUIRES_CAPTURE = "requires_capture"
SUCCEEDED = "succeeded"
CANCELED = "canceled"


@dataclass(frozen=True)
class Authorization:
    handle: str | None
    client_secret: str | None


class PaymentGateway(Protocol):
    async def create_authorization(self, amount: int, currency: str, metadata: dict[str, Any]) -> Authorization: ...

    async def capture(self, handle: str, idempotency_key: str) -> None: ...

    async def cancel_uncaptured(self, handle: str, idempotency_key: str) -> None: ...

    async def refund(self, handle: str, idempotency_key: str, amount: int | None = None) -> None: ...

    async def release_or_refund(self, handle: str, idempotency_key: str) -> str: ...

    async def transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> str: ...


class StripePaymentGateway:
    """PaymentGateway backed by the Stripe async API."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def _configure(self) -> None:
        stripe.api_key = self.api_key

    async def create_authorization(self, amount: int, currency: str, metadata: dict[str, Any]) -> Authorization:
        self._configure()
        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=amount,
                currency=currency,
                capture_method="manual",
                automatic_payment_methods={"enabled": True},
                metadata={key: str(value) for key, value in metadata.items()},
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError("authorization", str(exc)) from exc

        logger.info("payment_authorization_created", payment_intent_id=intent.id, amount=amount)
        return Authorization(handle=intent.id, client_secret=intent.client_secret)

    async def capture(self, handle: str, idempotency_key: str) -> None:
        self._configure()
        try:
            await stripe.PaymentIntent.capture_async(handle, idempotency_key=idempotency_key)
        except stripe.StripeError as exc:
            # A capture that already went through (replay past the idempotency window) is fine.
            if await self._status(handle) == SUCCEEDED:
                logger.info("payment_already_captured", payment_intent_id=handle)
                return
            raise PaymentGatewayError("capture", str(exc)) from exc

        logger.info("payment_captured", payment_intent_id=handle)

    async def cancel_uncaptured(self, handle: str, idempotency_key: str) -> None:
        self._configure()
        try:
            await stripe.PaymentIntent.cancel_async(handle, idempotency_key=idempotency_key)
        except stripe.StripeError as exc:
            if await self._status(handle) == CANCELED:
                logger.info("payment_already_cancelled", payment_intent_id=handle)
                return
            raise PaymentGatewayError("cancel", str(exc)) from exc

        logger.info("payment_authorization_cancelled", payment_intent_id=handle)

    async def refund(self, handle: str, idempotency_key: str, amount: int | None = None) -> None:
        self._configure()
        params: dict[str, Any] = {"payment_intent": handle}
        if amount is not None:
            params["amount"] = amount
        try:
            await stripe.Refund.create_async(idempotency_key=idempotency_key, **params)
        except stripe.StripeError as exc:
            raise PaymentGatewayError("refund", str(exc)) from exc

        logger.info("payment_refunded", payment_intent_id=handle, amount=amount)

    async def release_or_refund(self, handle: str, idempotency_key: str) -> str:
        """Full refund: cancel an uncaptured authorization, otherwise refund the charge."""
        status = await self._status(handle)
        if status == REQUIRES_CAPTURE:
            await self.cancel_uncaptured(handle, idempotency_key)
            return "cancelled"
        if status == CANCELED:
            return "cancelled"
        await self.refund(handle, idempotency_key)
        return "refunded"

    async def transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> str:
        self._configure()
        try:
            transfer = await stripe.Transfer.create_async(
                amount=amount,
                currency=currency,
                destination=destination,
                description=description or "",
                metadata={key: str(value) for key, value in (metadata or {}).items()},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError("transfer", str(exc)) from exc

        logger.info("transfer_created", transfer_id=transfer.id, amount=amount, destination=destination)
        return transfer.id

    async def _status(self, handle: str) -> str:
        self._configure()
        try:
            intent = await stripe.PaymentIntent.retrieve_async(handle)
        except stripe.StripeError as exc:
            raise PaymentGatewayError("retrieve", str(exc)) from exc
        return intent.status
