"""Tests for WhatsApp appointment notifications."""

import json
from datetime import date, time
from urllib.parse import parse_qs
from uuid import uuid4

import httpx
import pytest

from app.config import Settings
from app.services.notification_port import (
    NotificationKind,
    NullNotifier,
    PatientContact,
    TwilioWhatsAppNotifier,
    build_notifier,
    build_template_variables,
    doctor_display_name,
    format_time_for_template,
    format_whatsapp_address,
)

APPOINTMENT = {
    "id": uuid4(),
    "date": date(2030, 3, 4),
    "time": time(14, 5),
}
CONTACT = PatientContact(name="Carla Reyes", phone="9988-7766", doctor_display_name="Dra. Ana Lopez")
TEMPLATES = {
    NotificationKind.CONFIRMATION: "HXconfirm",
    NotificationKind.RESCHEDULE: "HXreschedule",
}


def make_notifier(handler, templates=None) -> TwilioWhatsAppNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TwilioWhatsAppNotifier(
        account_sid="AC123",
        auth_token="secret",
        from_number="+14155238886",
        templates=TEMPLATES if templates is None else templates,
        default_country_code="+504",
        client=client,
    )


@pytest.mark.parametrize(
    ("phone", "expected"),
    [
        ("9988-7766", "whatsapp:+50499887766"),
        ("+50499887766", "whatsapp:+50499887766"),
        ("whatsapp:+15551234567", "whatsapp:+15551234567"),
    ],
)
def test_format_whatsapp_address(phone, expected):
    assert format_whatsapp_address(phone, "+504") == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (time(0, 30), "12:30 AM"),
        (time(9, 5), "9:05 AM"),
        (time(12, 0), "12:00 PM"),
        (time(23, 59), "11:59 PM"),
    ],
)
def test_format_time_for_template(value, expected):
    assert format_time_for_template(value) == expected


def test_doctor_display_name_defaults_prefix():
    assert doctor_display_name({"name": "Bruno Diaz", "prefix": None}) == "Dr. Bruno Diaz"
    assert doctor_display_name({"name": "Ana Lopez", "prefix": "Dra."}) == "Dra. Ana Lopez"


def test_build_template_variables():
    assert build_template_variables(APPOINTMENT, CONTACT) == {
        "1": "Carla Reyes",
        "2": "Dra. Ana Lopez",
        "3": "04/03/2030 a las 2:05 PM",
    }


@pytest.mark.asyncio
async def test_twilio_sends_template():
    """The Messages API receives the template and its variables."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SM999", "status": "queued"})

    result = await make_notifier(handler).notify(NotificationKind.RESCHEDULE, APPOINTMENT, CONTACT)

    assert result.sent is True
    assert result.provider_message_id == "SM999"
    assert captured["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
    assert captured["auth"].startswith("Basic ")
    form = captured["form"]
    assert form["To"] == ["whatsapp:+50499887766"]
    assert form["From"] == ["whatsapp:+14155238886"]
    assert form["ContentSid"] == ["HXreschedule"]
    assert json.loads(form["ContentVariables"][0])["3"] == "04/03/2030 a las 2:05 PM"


@pytest.mark.asyncio
async def test_twilio_rejection_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 63016, "message": "Template not approved"})

    result = await make_notifier(handler).notify(NotificationKind.CONFIRMATION, APPOINTMENT, CONTACT)

    assert result.sent is False
    assert result.error == "Template not approved"


@pytest.mark.asyncio
async def test_twilio_transport_error_reported():
    """Network failures come back as a result, never as an exception."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_notifier(handler).notify(NotificationKind.CONFIRMATION, APPOINTMENT, CONTACT)

    assert result.sent is False
    assert result.error.startswith("Transport error")


@pytest.mark.asyncio
async def test_twilio_skips_patient_without_phone():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"sid": "SM1"})

    contact = CONTACT.model_copy(update={"phone": None})
    result = await make_notifier(handler).notify(NotificationKind.CONFIRMATION, APPOINTMENT, contact)

    assert result.sent is False
    assert calls == []


@pytest.mark.asyncio
async def test_twilio_skips_unconfigured_template():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"sid": "SM1"})

    notifier = make_notifier(handler, templates={NotificationKind.CONFIRMATION: "HXconfirm"})
    result = await notifier.notify(NotificationKind.RESCHEDULE, APPOINTMENT, CONTACT)

    assert result.sent is False
    assert calls == []


@pytest.mark.asyncio
async def test_null_notifier():
    result = await NullNotifier().notify(NotificationKind.CONFIRMATION, APPOINTMENT, CONTACT)

    assert result.sent is False
    assert result.error == "Notifications are disabled"


def test_build_notifier_requires_configuration():
    """Twilio is used only when enabled and fully configured."""
    base = {"DATABASE_URL": "sqlite:///x.db", "JWT_SECRET_KEY": "k"}

    disabled = Settings(_env_file=None, **base, NOTIFICATIONS_ENABLED=False)
    assert isinstance(build_notifier(disabled), NullNotifier)

    incomplete = Settings(_env_file=None, **base, NOTIFICATIONS_ENABLED=True, TWILIO_ACCOUNT_SID="AC1")
    assert isinstance(build_notifier(incomplete), NullNotifier)

    configured = Settings(
        _env_file=None,
        **base,
        NOTIFICATIONS_ENABLED=True,
        TWILIO_ACCOUNT_SID="AC1",
        TWILIO_AUTH_TOKEN="token",
        TWILIO_WHATSAPP_FROM="+14155238886",
        TWILIO_TEMPLATE_CONFIRMATION="HXconfirm",
    )
    notifier = build_notifier(configured)
    assert isinstance(notifier, TwilioWhatsAppNotifier)
    assert NotificationKind.RESCHEDULE not in notifier.templates
