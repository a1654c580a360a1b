"""Patient notifications triggered by appointment transitions.

The scheduling core only calls ``notify`` after a write has committed, once
per transition, and treats whatever happens here as advisory.
"""

import json
import re
from datetime import date, time
from enum import Enum
from typing import Any, Protocol

import httpx
import structlog
from pydantic import BaseModel

from app.config import Settings

logger = structlog.get_logger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"


class NotificationKind(str, Enum):
    """Messages the scheduling core asks for."""

    CONFIRMATION = "confirmation"
    RESCHEDULE = "reschedule"


class PatientContact(BaseModel):
    """Who to message and how to address the doctor."""

    name: str
    phone: str | None = None
    doctor_display_name: str


class NotificationResult(BaseModel):
    """Delivery outcome reported by a notifier."""

    sent: bool
    provider_message_id: str | None = None
    error: str | None = None


class AppointmentNotifier(Protocol):
    """Port for sending appointment messages to patients."""

    async def notify(
        self,
        kind: NotificationKind,
        appointment: dict[str, Any],
        contact: PatientContact,
    ) -> NotificationResult: ...


def doctor_display_name(doctor: dict[str, Any]) -> str:
    """Prefix plus name, e.g. "Dra. Lopez"."""
    prefix = doctor.get("prefix") or "Dr."
    return f"{prefix} {doctor['name']}"


def format_whatsapp_address(phone: str, default_country_code: str) -> str:
    """
    Normalise a stored phone number into a Twilio WhatsApp address.

    Numbers without a leading ``+`` are treated as local and get the
    clinic's country code.
    """
    if phone.startswith("whatsapp:"):
        return phone

    if not phone.startswith("+"):
        digits = re.sub(r"\D", "", phone)
        phone = f"{default_country_code}{digits}"

    return f"whatsapp:{phone}"


def format_date_for_template(value: date) -> str:
    """dd/MM/yyyy."""
    return value.strftime("%d/%m/%Y")


def format_time_for_template(value: time) -> str:
    """12-hour clock without a leading zero, e.g. "9:05 AM"."""
    period = "PM" if value.hour >= 12 else "AM"
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {period}"


def build_template_variables(appointment: dict[str, Any], contact: PatientContact) -> dict[str, str]:
    """Positional variables shared by the confirmation and reschedule templates."""
    when = (
        f"{format_date_for_template(appointment['date'])} a las "
        f"{format_time_for_template(appointment['time'])}"
    )
    return {
        "1": contact.name,
        "2": contact.doctor_display_name,
        "3": when,
    }


class NullNotifier:
    """Notifier used when messaging is switched off."""

    async def notify(
        self,
        kind: NotificationKind,
        appointment: dict[str, Any],
        contact: PatientContact,
    ) -> NotificationResult:
        """Log the skipped message and report it as not sent."""
        logger.info(
            "appointment_notification_skipped",
            kind=kind.value,
            appointment_id=str(appointment["id"]),
        )
        return NotificationResult(sent=False, error="Notifications are disabled")


class TwilioWhatsAppNotifier:
    """Sends WhatsApp content templates through the Twilio Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        templates: dict[NotificationKind, str],
        default_country_code: str,
        messaging_service_sid: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize with Twilio credentials and one content template per message kind."""
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_address = (
            from_number if from_number.startswith("whatsapp:") else f"whatsapp:{from_number}"
        )
        self.templates = templates
        self.default_country_code = default_country_code
        self.messaging_service_sid = messaging_service_sid
        self.timeout = timeout
        self._client = client

    async def notify(
        self,
        kind: NotificationKind,
        appointment: dict[str, Any],
        contact: PatientContact,
    ) -> NotificationResult:
        """
        Send the template for ``kind`` to the patient.

        Args:
            kind: Which message to send
            appointment: Committed appointment row
            contact: Patient and doctor naming

        Returns:
            Outcome; transport errors are reported, not raised
        """
        appointment_id = str(appointment["id"])

        if not contact.phone:
            logger.warning("patient_without_phone", appointment_id=appointment_id)
            return NotificationResult(sent=False, error="Patient has no phone number")

        content_sid = self.templates.get(kind)
        if not content_sid:
            logger.warning(
                "whatsapp_template_not_configured",
                kind=kind.value,
                appointment_id=appointment_id,
            )
            return NotificationResult(sent=False, error=f"No template configured for {kind.value}")

        form = {
            "To": format_whatsapp_address(contact.phone, self.default_country_code),
            "From": self.from_address,
            "ContentSid": content_sid,
            "ContentVariables": json.dumps(build_template_variables(appointment, contact)),
        }
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid

        url = TWILIO_MESSAGES_URL.format(account_sid=self.account_sid)

        try:
            if self._client is not None:
                response = await self._post(self._client, url, form)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, url, form)
        except httpx.HTTPError as e:
            logger.error(
                "whatsapp_send_failed",
                kind=kind.value,
                appointment_id=appointment_id,
                error=str(e),
            )
            return NotificationResult(sent=False, error=f"Transport error: {e}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_success:
            logger.info(
                "whatsapp_message_sent",
                kind=kind.value,
                appointment_id=appointment_id,
                sid=payload.get("sid"),
            )
            return NotificationResult(sent=True, provider_message_id=payload.get("sid"))

        error = payload.get("error_message") or payload.get("message") or "Error sending WhatsApp"
        logger.error(
            "whatsapp_send_rejected",
            kind=kind.value,
            appointment_id=appointment_id,
            status_code=response.status_code,
            error=error,
        )
        return NotificationResult(sent=False, error=error)

    async def _post(self, client: httpx.AsyncClient, url: str, form: dict[str, str]) -> httpx.Response:
        return await client.post(
            url,
            data=form,
            auth=(self.account_sid, self.auth_token),
            timeout=self.timeout,
        )


def build_notifier(settings: Settings) -> AppointmentNotifier:
    """Pick the notifier for the current configuration."""
    if not settings.notifications_enabled or not settings.twilio_configured:
        return NullNotifier()

    templates = {NotificationKind.CONFIRMATION: settings.twilio_template_confirmation}
    if settings.twilio_template_reschedule:
        templates[NotificationKind.RESCHEDULE] = settings.twilio_template_reschedule

    return TwilioWhatsAppNotifier(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_whatsapp_from,
        templates=templates,
        default_country_code=settings.default_country_code,
        messaging_service_sid=settings.twilio_messaging_service_sid,
        timeout=settings.twilio_timeout_seconds,
    )
