"""Tests for payment capture, the audit log and the processor clients."""

import json
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.errors import AuthorizationError, ConflictError, PaymentError, ValidationError
from labormarket.models.assignment import PaymentStatus
from labormarket.models.payment import PaymentOutcome
from labormarket.models.profile import Profile
from labormarket.schemas.payment import PaymentDetails
from labormarket.services import payment as payment_service
from labormarket.services.payment_processor import (
    HttpPaymentProcessor,
    PaymentProcessor,
    PaymentResult,
    SimulatedPaymentProcessor,
)
from tests.conftest import auth_for, make_assignment, make_auth_headers

CARD = PaymentDetails(
    card_name="Carol Client",
    card_number="4242 4242 4242 4242",
    card_expiry="12/30",
    card_cvc="123",
)


def _processor(result: PaymentResult | None = None, error: Exception | None = None) -> MagicMock:
    processor = MagicMock(spec=PaymentProcessor)
    processor.capture = AsyncMock(return_value=result, side_effect=error)
    return processor


@pytest.mark.asyncio
async def test_capture_marks_paid_and_audits(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    processor = _processor(PaymentResult(success=True, reference="ch_1", message="ok"))

    paid, result = await payment_service.capture_payment(
        db_session, auth_for(client_profile), assignment.id, CARD, processor
    )

    assert paid.payment_status == PaymentStatus.COMPLETED
    assert result.reference == "ch_1"
    processor.capture.assert_awaited_once_with(
        assignment.id, Decimal("110.00"), CARD, idempotency_key=f"{assignment.id}:1"
    )

    history = await payment_service.get_payment_history(db_session, auth_for(laborer_profile), assignment.id)
    assert [h.outcome for h in history] == [PaymentOutcome.CAPTURED]
    assert history[0].detail == "card ending 4242"
    assert history[0].amount == Decimal("110.00")


@pytest.mark.asyncio
async def test_second_capture_is_rejected(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    processor = _processor(PaymentResult(success=True, reference="ch_1"))
    await payment_service.capture_payment(db_session, auth_for(client_profile), assignment.id, CARD, processor)

    with pytest.raises(ConflictError, match="Payment has already been completed"):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, processor
        )
    assert processor.capture.await_count == 1


@pytest.mark.asyncio
async def test_capture_requires_completed_work(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile)
    processor = _processor(PaymentResult(success=True))

    with pytest.raises(ConflictError):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, processor
        )
    processor.capture.assert_not_awaited()


@pytest.mark.asyncio
async def test_only_client_pays(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    with pytest.raises(AuthorizationError, match="Only the client who posted this job"):
        await payment_service.capture_payment(
            db_session, auth_for(laborer_profile), assignment.id, CARD, _processor()
        )


@pytest.mark.asyncio
async def test_missing_card_fields(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    details = PaymentDetails(card_name="Carol", card_number="4242424242424242", card_expiry="", card_cvc="")

    with pytest.raises(ValidationError, match="Please fill in all payment details."):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, details, _processor()
        )


@pytest.mark.asyncio
async def test_malformed_card_fields(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    details = PaymentDetails(card_name="Carol", card_number="42", card_expiry="13/30", card_cvc="1")

    with pytest.raises(ValidationError) as exc_info:
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, details, _processor()
        )
    assert "Card number" in exc_info.value.message
    assert "MM/YY" in exc_info.value.message


@pytest.mark.asyncio
async def test_decline_is_audited_and_leaves_payment_pending(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    processor = _processor(PaymentResult(success=False, message="Insufficient funds"))

    with pytest.raises(ValidationError, match="Payment declined: Insufficient funds"):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, processor
        )

    await db_session.refresh(assignment)
    assert assignment.payment_status == PaymentStatus.PENDING
    history = await payment_service.get_payment_history(db_session, auth_for(client_profile), assignment.id)
    assert [h.outcome for h in history] == [PaymentOutcome.DECLINED]


@pytest.mark.asyncio
async def test_processor_outage_is_audited_and_retryable(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    failing = _processor(error=PaymentError("Payment processor timed out, please retry"))

    with pytest.raises(PaymentError):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, failing
        )

    working = _processor(PaymentResult(success=True, reference="ch_2"))
    paid, _ = await payment_service.capture_payment(
        db_session, auth_for(client_profile), assignment.id, CARD, working
    )
    assert paid.payment_status == PaymentStatus.COMPLETED
    history = await payment_service.get_payment_history(db_session, auth_for(client_profile), assignment.id)
    assert [h.outcome for h in history] == [PaymentOutcome.FAILED, PaymentOutcome.CAPTURED]


@pytest.mark.asyncio
async def test_retry_after_decline_uses_a_new_idempotency_key(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    declining = _processor(PaymentResult(success=False, message="Card was declined"))
    with pytest.raises(ValidationError):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, declining
        )

    other_card = CARD.model_copy(update={"card_number": "5555555555554444"})
    working = _processor(PaymentResult(success=True, reference="ch_3"))
    await payment_service.capture_payment(
        db_session, auth_for(client_profile), assignment.id, other_card, working
    )

    first_key = declining.capture.await_args.kwargs["idempotency_key"]
    second_key = working.capture.await_args.kwargs["idempotency_key"]
    assert first_key == f"{assignment.id}:1"
    assert second_key == f"{assignment.id}:2"


@pytest.mark.asyncio
async def test_retry_after_failure_reuses_the_idempotency_key(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    failing = _processor(error=PaymentError("Payment processor timed out, please retry"))
    with pytest.raises(PaymentError):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, failing
        )

    working = _processor(PaymentResult(success=True, reference="ch_4"))
    await payment_service.capture_payment(
        db_session, auth_for(client_profile), assignment.id, CARD, working
    )

    assert (
        failing.capture.await_args.kwargs["idempotency_key"]
        == working.capture.await_args.kwargs["idempotency_key"]
    )


@pytest.mark.asyncio
async def test_unreadable_processor_response_is_audited_as_failure(
    db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    processor = HttpPaymentProcessor(
        api_url="https://pay.test/v1",
        api_key="sk_test",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(402, text="<html>declined</html>")
        ),
    )

    with pytest.raises(PaymentError, match="unreadable response"):
        await payment_service.capture_payment(
            db_session, auth_for(client_profile), assignment.id, CARD, processor
        )

    await db_session.refresh(assignment)
    assert assignment.payment_status == PaymentStatus.PENDING
    history = await payment_service.get_payment_history(db_session, auth_for(client_profile), assignment.id)
    assert [h.outcome for h in history] == [PaymentOutcome.FAILED]


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_simulated_processor_declines_configured_card() -> None:
    processor = SimulatedPaymentProcessor(delay_seconds=0, decline_number="4000000000000002")
    declined = await processor.capture(
        uuid.uuid4(), Decimal("10.00"), CARD.model_copy(update={"card_number": "4000000000000002"})
    )
    approved = await processor.capture(uuid.uuid4(), Decimal("10.00"), CARD)

    assert not declined.success
    assert approved.success
    assert approved.reference.startswith("sim_")


@pytest.mark.asyncio
async def test_http_processor_success() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"id": "ch_123", "captured": True})

    assignment_id = uuid.uuid4()
    processor = HttpPaymentProcessor(
        api_url="https://pay.test/v1", api_key="sk_test", transport=httpx.MockTransport(handler)
    )
    result = await processor.capture(assignment_id, Decimal("110"), CARD, idempotency_key="attempt-1")

    assert result.success
    assert result.reference == "ch_123"
    assert seen["url"] == "https://pay.test/v1/captures"
    assert seen["headers"]["Idempotency-Key"] == "attempt-1"
    assert seen["body"]["reference"] == str(assignment_id)
    assert seen["headers"]["Authorization"] == "Bearer sk_test"
    assert seen["body"]["amount"] == "110.00"
    assert seen["body"]["card"]["number"] == "4242424242424242"


@pytest.mark.asyncio
async def test_http_processor_decline() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(402, json={"message": "Card was declined"})
    )
    processor = HttpPaymentProcessor(api_url="https://pay.test/v1", api_key="sk_test", transport=transport)
    result = await processor.capture(uuid.uuid4(), Decimal("5"), CARD)
    assert not result.success
    assert result.message == "Card was declined"


@pytest.mark.asyncio
async def test_http_processor_rejects_non_json_bodies() -> None:
    bodies = [
        (402, {"text": "<html>declined</html>"}),
        (200, {"text": "<html>ok</html>"}),
        (200, {"json": ["not", "an", "object"]}),
    ]
    for status, body in bodies:
        processor = HttpPaymentProcessor(
            api_url="https://pay.test/v1",
            api_key="sk_test",
            transport=httpx.MockTransport(
                lambda request, status=status, body=body: httpx.Response(status, **body)
            ),
        )
        with pytest.raises(PaymentError, match="unreadable response"):
            await processor.capture(uuid.uuid4(), Decimal("5"), CARD)


@pytest.mark.asyncio
async def test_http_processor_errors_raise_payment_error() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    processor = HttpPaymentProcessor(
        api_url="https://pay.test/v1", api_key="sk_test", transport=httpx.MockTransport(timeout)
    )
    with pytest.raises(PaymentError, match="timed out"):
        await processor.capture(uuid.uuid4(), Decimal("5"), CARD)

    processor = HttpPaymentProcessor(
        api_url="https://pay.test/v1",
        api_key="sk_test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    with pytest.raises(PaymentError, match="status 500"):
        await processor.capture(uuid.uuid4(), Decimal("5"), CARD)

    with pytest.raises(PaymentError, match="not configured"):
        await HttpPaymentProcessor(api_key="").capture(uuid.uuid4(), Decimal("5"), CARD)


@pytest.mark.asyncio
async def test_pay_over_http_with_simulated_processor(
    client: AsyncClient, db_session: AsyncSession, client_profile: Profile, laborer_profile: Profile
) -> None:
    assignment = await make_assignment(db_session, client_profile, laborer_profile, complete=True)
    headers = make_auth_headers(client_profile.id)
    body = CARD.model_dump()

    resp = await client.post(f"/assignments/{assignment.id}/pay", json=body, headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["assignment"]["payment_status"] == "completed"
    assert data["reference"].startswith("sim_")

    resp = await client.post(f"/assignments/{assignment.id}/pay", json=body, headers=headers)
    assert resp.status_code == 409

    resp = await client.get(f"/assignments/{assignment.id}/payments", headers=headers)
    assert [p["outcome"] for p in resp.json()] == ["captured"]
