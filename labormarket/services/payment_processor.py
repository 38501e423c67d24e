"""Payment processor collaborators.

The lifecycle engine only needs ``capture``: charge an amount for an
assignment and say whether it went through. The simulated processor is for
development; the HTTP processor talks to the real gateway.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import httpx

from labormarket.config import settings
from labormarket.errors import PaymentError
from labormarket.schemas.payment import PaymentDetails
from labormarket.utils.money import format_amount

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    success: bool
    reference: str | None = None
    message: str = ""


class PaymentProcessor(ABC):
    @abstractmethod
    async def capture(
        self,
        assignment_id: uuid.UUID,
        amount: Decimal,
        card: PaymentDetails,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        """Charge ``amount``. Raises PaymentError when the processor can't be reached.

        Attempts sharing an ``idempotency_key`` are charged at most once.
        """


class SimulatedPaymentProcessor(PaymentProcessor):
    """Approves everything except the configured decline card."""

    def __init__(self, delay_seconds: float | None = None, decline_number: str | None = None) -> None:
        self.delay_seconds = (
            settings.payment_simulated_delay_seconds if delay_seconds is None else delay_seconds
        )
        self.decline_number = decline_number or settings.payment_decline_card_number

    async def capture(
        self,
        assignment_id: uuid.UUID,
        amount: Decimal,
        card: PaymentDetails,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if card.card_number == self.decline_number:
            logger.info("Simulated decline for assignment %s", assignment_id)
            return PaymentResult(success=False, message="Card was declined")
        reference = f"sim_{uuid.uuid4().hex[:16]}"
        logger.info(
            "Simulated capture %s of %s for assignment %s",
            reference, format_amount(amount), assignment_id,
        )
        return PaymentResult(success=True, reference=reference, message="Payment successful")


def _read_json(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        logger.error(
            "Payment processor returned unreadable body (status %d): %s",
            resp.status_code, resp.text[:500],
        )
        raise PaymentError("Payment processor returned an unreadable response, please retry")
    return data


class HttpPaymentProcessor(PaymentProcessor):
    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.transport = transport
        self.api_url = api_url or settings.payment_api_url
        self.api_key = api_key if api_key is not None else settings.payment_api_key
        self.timeout = timeout or settings.payment_timeout_seconds

    async def capture(
        self,
        assignment_id: uuid.UUID,
        amount: Decimal,
        card: PaymentDetails,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        if not self.api_key:
            raise PaymentError("Payment processing is not configured on this server")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(
                    f"{self.api_url}/captures",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Idempotency-Key": idempotency_key or str(assignment_id),
                    },
                    json={
                        "amount": format_amount(amount),
                        "reference": str(assignment_id),
                        "card": {
                            "name": card.card_name,
                            "number": card.card_number,
                            "expiry": card.card_expiry,
                            "cvc": card.card_cvc,
                        },
                    },
                )
            except httpx.TimeoutException:
                logger.error("Payment processor timed out for assignment %s", assignment_id)
                raise PaymentError("Payment processor timed out, please retry")
            except httpx.RequestError as e:
                logger.error("Payment processor request failed: %s", e)
                raise PaymentError("Failed to reach the payment processor, please retry")

        if resp.status_code == 402:
            data = _read_json(resp)
            return PaymentResult(success=False, message=data.get("message", "Card was declined"))

        if resp.status_code != 200:
            logger.error(
                "Payment processor returned %d: %s", resp.status_code, resp.text[:500]
            )
            raise PaymentError(f"Payment processor error (status {resp.status_code})")

        data = _read_json(resp)
        return PaymentResult(
            success=bool(data.get("captured", True)),
            reference=data.get("id"),
            message=data.get("message", "Payment successful"),
        )


def get_payment_processor() -> PaymentProcessor:
    if settings.payment_backend == "http":
        return HttpPaymentProcessor()
    return SimulatedPaymentProcessor()
