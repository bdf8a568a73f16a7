"""Tests for push notifications."""

from datetime import date, time
from unittest.mock import patch
from uuid import uuid4

import pytest
from firebase_admin import exceptions as firebase_exceptions

from app.services.notification_service import TEMPLATES, NotificationService, user_topic


def appointment_row(status: str = "confirmed") -> dict:
    return {
        "id": uuid4(),
        "patient_id": uuid4(),
        "practitioner_id": uuid4(),
        "appointment_date": date(2030, 1, 7),
        "slot_start": time(9, 30),
        "status": status,
    }


def test_user_topic():
    """Test every user has a dedicated topic."""
    user_id = uuid4()
    assert user_topic(user_id) == f"user-{user_id}"


def test_templates_cover_lifecycle_events():
    """Test each appointment event has a template."""
    for event in (
        "appointment_requested",
        "appointment_confirmed",
        "appointment_cancelled",
        "appointment_rescheduled",
        "appointment_completed",
        "appointment_no_show",
        "appointment_reminder",
    ):
        title, body = TEMPLATES[event]
        assert title
        assert "{date}" in body and "{time}" in body


@pytest.mark.asyncio
@patch("app.services.notification_service.messaging.send")
async def test_send_to_user(mock_send):
    """Test a message is sent to the user's topic."""
    mock_send.return_value = "projects/test/messages/1"
    user_id = uuid4()

    sent = await NotificationService().send_to_user(user_id, "Title", "Body", {"type": "test"})

    assert sent is True
    message = mock_send.call_args.args[0]
    assert message.topic == f"user-{user_id}"
    assert message.notification.title == "Title"
    assert message.data == {"type": "test"}


@pytest.mark.asyncio
@patch("app.services.notification_service.messaging.send")
async def test_send_failure_is_swallowed(mock_send):
    """Test delivery errors are reported, not raised."""
    mock_send.side_effect = firebase_exceptions.UnavailableError("FCM down")

    sent = await NotificationService().send_to_user(uuid4(), "Title", "Body")

    assert sent is False


@pytest.mark.asyncio
@patch("app.services.notification_service.messaging.send")
async def test_disabled_notifier_sends_nothing(mock_send):
    """Test a disabled notifier never calls FCM."""
    sent = await NotificationService(enabled=False).send_to_user(uuid4(), "Title", "Body")

    assert sent is False
    mock_send.assert_not_called()


@pytest.mark.asyncio
@patch("app.services.notification_service.messaging.send")
async def test_appointment_event_notifies_both_participants(mock_send):
    """Test the patient and the practitioner both receive the event."""
    mock_send.return_value = "projects/test/messages/1"
    appointment = appointment_row()

    await NotificationService().appointment_event("appointment_confirmed", appointment)

    topics = [call.args[0].topic for call in mock_send.call_args_list]
    assert topics == [
        user_topic(appointment["patient_id"]),
        user_topic(appointment["practitioner_id"]),
    ]
    message = mock_send.call_args_list[0].args[0]
    assert message.notification.title == "Appointment Confirmed"
    assert message.notification.body == "Your appointment on Jan 07 at 09:30 is confirmed"
    assert message.data["type"] == "appointment_confirmed"
    assert message.data["appointment_id"] == str(appointment["id"])
    assert message.data["status"] == "confirmed"
