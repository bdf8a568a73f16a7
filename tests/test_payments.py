"""Tests for payment orders, callbacks and payment flags."""

import base64
import json
from datetime import time

import httpx
import pytest

from app.core.exceptions import (
    ExternalGatewayException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PreconditionFailedException,
)
from app.core.payment_gateway import PaymentGatewayClient, compute_signature, to_minor_units
from app.schemas.appointments import AppointmentStatus, PaymentType, PaymentVerification, RescheduleRequest
from app.schemas.scheduling import TimeSlot
from app.services.payment_service import PaymentService
from app.services.reschedule_service import RescheduleService
from conftest import GATEWAY_SECRET, MONDAY, POLICY, booking, fixed_clock


@pytest.fixture
def payments(db_session, gateway, service) -> PaymentService:
    return PaymentService(db_session, gateway, service, clock=fixed_clock())


def signed(order_ref: str, payment_ref: str = "pay_test_001") -> PaymentVerification:
    """Gateway callback signed with the test secret."""
    return PaymentVerification(
        order_ref=order_ref,
        payment_ref=payment_ref,
        signature=compute_signature(GATEWAY_SECRET, order_ref, payment_ref),
    )


def mock_gateway_http(monkeypatch, handler) -> None:
    """Route the gateway client's HTTP calls to ``handler``."""
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)


# Gateway client


def test_signature_verification():
    """Test callbacks verify against the shared secret in constant time."""
    client = PaymentGatewayClient("https://gateway.test/v1", "key_test", GATEWAY_SECRET)
    signature = compute_signature(GATEWAY_SECRET, "order_1", "pay_1")

    assert client.verify_signature("order_1", "pay_1", signature) is True
    assert client.verify_signature("order_1", "pay_2", signature) is False
    assert client.verify_signature("order_2", "pay_1", signature) is False
    assert client.verify_signature("order_1", "pay_1", "") is False
    assert client.verify_signature("order_1", "pay_1", compute_signature("other", "order_1", "pay_1")) is False


def test_to_minor_units():
    """Test amounts go to the gateway in minor units with a minimum of one unit."""
    assert to_minor_units(240) == 24000
    assert to_minor_units(0) == 100


@pytest.mark.asyncio
async def test_create_order_posts_to_gateway(monkeypatch):
    """Test the order request carries amount, receipt and basic auth."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc123", "amount": 24000, "currency": "INR"})

    mock_gateway_http(monkeypatch, handler)
    client = PaymentGatewayClient("https://gateway.test/v1/", "key_test", GATEWAY_SECRET)

    order = await client.create_order(240, receipt="appt_adv_" + "x" * 50, notes={"k": "v"})

    assert order["id"] == "order_abc123"
    assert captured["url"] == "https://gateway.test/v1/orders"
    expected_auth = base64.b64encode(f"key_test:{GATEWAY_SECRET}".encode()).decode()
    assert captured["auth"] == f"Basic {expected_auth}"
    assert captured["body"]["amount"] == 24000
    assert captured["body"]["currency"] == "INR"
    assert len(captured["body"]["receipt"]) == 40
    assert captured["body"]["notes"] == {"k": "v"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": {"description": "bad amount"}}),
        httpx.Response(500, text="upstream failure"),
        httpx.Response(200, json={"status": "created"}),
    ],
)
async def test_create_order_rejected(monkeypatch, response):
    """Test gateway errors and malformed orders surface as gateway errors."""
    mock_gateway_http(monkeypatch, lambda request: response)
    client = PaymentGatewayClient("https://gateway.test/v1", "key_test", GATEWAY_SECRET)

    with pytest.raises(ExternalGatewayException):
        await client.create_order(240, receipt="appt_adv_1")


@pytest.mark.asyncio
async def test_create_order_unreachable(monkeypatch):
    """Test network failures surface as gateway errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    mock_gateway_http(monkeypatch, handler)
    client = PaymentGatewayClient("https://gateway.test/v1", "key_test", GATEWAY_SECRET)

    with pytest.raises(ExternalGatewayException, match="unavailable"):
        await client.create_order(240, receipt="appt_adv_1")


# Payment service


@pytest.mark.asyncio
async def test_advance_order_and_callback(payments, service, practitioner, patient, gateway):
    """Test paying the advance through an order and a signed callback."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    order = await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)

    assert order.amount == 240
    assert order.payment_type == PaymentType.ADVANCE
    assert order.currency == "INR"
    gateway.create_order.assert_awaited_once()
    assert gateway.create_order.call_args.kwargs["receipt"].startswith("appt_adv_")

    paid = await payments.verify(signed(order.order_ref))

    assert paid.payment.advance_paid is True
    assert paid.payment.final_paid is False
    assert paid.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_replayed_callback_is_idempotent(payments, service, practitioner, patient):
    """Test applying the same callback twice changes nothing the second time."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    order = await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)

    first = await payments.verify(signed(order.order_ref))
    second = await payments.verify(signed(order.order_ref))

    assert second.payment.advance_paid is True
    assert second.version == first.version


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(payments, service, practitioner, patient):
    """Test a forged callback does not mark anything paid."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    order = await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)

    forged = PaymentVerification(order_ref=order.order_ref, payment_ref="pay_x", signature="deadbeef")
    with pytest.raises(ExternalGatewayException, match="signature"):
        await payments.verify(forged)

    current = await service.get_appointment(appointment.id, patient)
    assert current.payment.advance_paid is False


@pytest.mark.asyncio
async def test_callback_for_unknown_order(payments):
    """Test a correctly signed callback for an order nobody holds."""
    with pytest.raises(NotFoundException):
        await payments.verify(signed("order_unknown"))


@pytest.mark.asyncio
async def test_remaining_payment_flow(payments, service, practitioner, patient, practitioner_actor):
    """Test the remaining balance is payable once the appointment is confirmed."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    with pytest.raises(PreconditionFailedException):
        await payments.create_order(appointment.id, patient, PaymentType.REMAINING)

    advance = await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)
    await payments.verify(signed(advance.order_ref, "pay_adv"))

    with pytest.raises(PreconditionFailedException):
        await payments.create_order(appointment.id, patient, PaymentType.REMAINING)

    await service.confirm(appointment.id, practitioner_actor)
    remaining = await payments.create_order(appointment.id, patient, PaymentType.REMAINING)
    assert remaining.amount == 560

    paid = await payments.verify(signed(remaining.order_ref, "pay_rem"))

    assert paid.payment.final_paid is True
    assert paid.payment.remaining_amount == 0
    assert paid.payment.advance_amount + 560 == paid.payment.total_amount
    assert paid.payment.advance_payment_ref == "pay_adv"
    assert paid.payment.final_payment_ref == "pay_rem"
    assert await service.is_joinable(appointment.id, patient) is True

    with pytest.raises(InvalidTransitionException):
        await payments.create_order(appointment.id, patient, PaymentType.REMAINING)


@pytest.mark.asyncio
async def test_full_payment_flow(payments, service, practitioner, patient):
    """Test paying the whole fee at once sets both flags."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    order = await payments.create_order(appointment.id, patient, PaymentType.FULL)
    assert order.amount == 800

    paid = await payments.verify(signed(order.order_ref))

    assert paid.payment.advance_paid is True
    assert paid.payment.final_paid is True
    assert paid.payment.remaining_amount == 0
    assert paid.payment.advance_payment_ref == paid.payment.final_payment_ref == "pay_test_001"

    with pytest.raises(InvalidTransitionException):
        await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)


@pytest.mark.asyncio
async def test_callback_applies_the_ordered_payment(payments, service, practitioner, patient):
    """Test the stored order type decides which flag a callback sets."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)
    full = await payments.create_order(appointment.id, patient, PaymentType.FULL)

    # The latest order replaces the earlier one
    paid = await payments.verify(signed(full.order_ref))

    assert paid.payment.final_paid is True


@pytest.mark.asyncio
async def test_order_guards(payments, service, practitioner, patient, other_patient, practitioner_actor):
    """Test who may pay and when."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    for actor in (other_patient, practitioner_actor):
        with pytest.raises(ForbiddenException):
            await payments.create_order(appointment.id, actor, PaymentType.ADVANCE)

    await service.cancel(appointment.id, patient)
    with pytest.raises(InvalidTransitionException) as exc_info:
        await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)
    assert exc_info.value.current_status == "cancelled"


@pytest.mark.asyncio
async def test_payment_flag_rules(service, practitioner, patient):
    """Test payment flags respect ordering and closed appointments."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    with pytest.raises(InvalidTransitionException):
        await service.pay_final(appointment.id, "pay_rem")

    await service.cancel(appointment.id, patient)

    with pytest.raises(InvalidTransitionException):
        await service.pay_advance(appointment.id, "pay_adv")
    with pytest.raises(InvalidTransitionException):
        await service.pay_in_full(appointment.id, "pay_full")


@pytest.mark.asyncio
async def test_order_follows_rescheduled_appointment(payments, service, practitioner, patient, db_session, notifier):
    """Test a callback for an order placed before a reschedule pays the new appointment."""
    appointment = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    order = await payments.create_order(appointment.id, patient, PaymentType.ADVANCE)
    rescheduler = RescheduleService(db_session, clock=fixed_clock(), notifier=notifier, policy=POLICY)
    moved = await rescheduler.reschedule(
        appointment.id,
        patient,
        RescheduleRequest(new_date=MONDAY, new_slot=TimeSlot(start=time(10, 0), end=time(10, 30))),
    )

    paid = await payments.verify(signed(order.order_ref, "pay_adv_moved"))

    assert paid.id == moved.id
    assert paid.payment.advance_paid is True
    assert paid.payment.advance_payment_ref == "pay_adv_moved"
    original = await service.get_appointment(appointment.id, patient)
    assert original.status == AppointmentStatus.CANCELLED
    assert original.payment.advance_paid is False
