"""Hubtel SMS gateway and the thank-you notification flow.

Sends are best-effort: ``HubtelSmsGateway.send_sms`` never raises, it
returns an ``SmsResult``. Transport errors and 5xx answers are retried with
capped exponential backoff; 4xx answers fail immediately.
"""

import re
import time
from dataclasses import dataclass, field

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .models import Visit, utc_now_naive

logger = structlog.get_logger("spadesk.notifications")


@dataclass
class SmsResult:
    success: bool
    data: dict | None = None
    error: str | None = None
    attempts: int = 0
    details: dict = field(default_factory=dict)


def retry_backoff_seconds(attempt: int) -> float:
    attempt_i = max(1, int(attempt))
    base = max(0.0, float(settings.SMS_RETRY_BASE_SECONDS))
    return min(float(settings.SMS_RETRY_MAX_SECONDS), base * (2 ** (attempt_i - 1)))


class HubtelSmsGateway:
    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        sender_id: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
    ):
        self.base_url = base_url or settings.HUBTEL_API_URL
        self.client_id = settings.HUBTEL_CLIENT_ID if client_id is None else client_id
        self.client_secret = settings.HUBTEL_CLIENT_SECRET if client_secret is None else client_secret
        self.sender_id = sender_id or settings.HUBTEL_SENDER_ID
        self._transport = transport
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return bool(settings.SMS_ENABLED and self.client_id and self.client_secret)

    @staticmethod
    def format_phone_number(phone_number: str) -> str:
        country = settings.SMS_COUNTRY_CODE
        raw = (phone_number or "").strip()
        cleaned = re.sub(r"\D", "", raw)
        if len(cleaned) == 9:
            return f"+{country}{cleaned}"
        if len(cleaned) == 10 and cleaned.startswith("0"):
            return f"+{country}{cleaned[1:]}"
        if len(cleaned) > 10:
            return f"+{cleaned}"
        return raw

    @staticmethod
    def thank_you_message(client_name: str, service_name: str, amount: float) -> str:
        return (
            f"Dear {client_name}, thank you for visiting our salon & spa today. "
            f"We appreciate your business and hope you enjoyed your {service_name}. "
            f"Total: {settings.CURRENCY} {float(amount):.2f}. We look forward to seeing you again soon!"
        )

    @staticmethod
    def promo_message(client_name: str, promo_details: str) -> str:
        return (
            f"Hello {client_name}! {promo_details} Visit us again soon at our salon & spa. "
            "To opt out, reply STOP."
        )

    def send_sms(self, phone_number: str, message: str) -> SmsResult:
        formatted_phone = self.format_phone_number(phone_number)
        if not self.is_configured:
            logger.warning("sms_gateway_not_configured", to=formatted_phone)
            return SmsResult(success=False, error="SMS gateway not configured")

        max_attempts = max(1, int(settings.SMS_MAX_ATTEMPTS))
        payload = {"from": self.sender_id, "to": formatted_phone, "content": message}
        last_error = "unknown error"
        details: dict = {}

        with httpx.Client(
            auth=(self.client_id, self.client_secret),
            timeout=float(settings.SMS_TIMEOUT_SECONDS),
            transport=self._transport,
        ) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    response = client.post(self.base_url, json=payload)
                except httpx.HTTPError as exc:
                    last_error = str(exc) or exc.__class__.__name__
                    logger.warning("sms_send_attempt_failed", to=formatted_phone, attempt=attempt, error=last_error)
                else:
                    if response.status_code < 400:
                        data = _json_or_text(response)
                        logger.info("sms_sent", to=formatted_phone, attempt=attempt)
                        return SmsResult(success=True, data=data, attempts=attempt)

                    details = _json_or_text(response)
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        "sms_send_attempt_failed",
                        to=formatted_phone,
                        attempt=attempt,
                        status=response.status_code,
                    )
                    if response.status_code < 500:
                        break

                if attempt < max_attempts:
                    self._sleep(retry_backoff_seconds(attempt))

        logger.error("sms_send_failed", to=formatted_phone, error=last_error, details=details)
        return SmsResult(success=False, error=last_error, attempts=attempt, details=details)

    def send_thank_you(self, visit: Visit) -> SmsResult:
        client = visit.client
        service_names = [item.service.name for item in visit.services if item.service]
        message = self.thank_you_message(
            client.first_name,
            ", ".join(service_names) or "treatment",
            float(visit.total_amount or 0),
        )
        return self.send_sms(client.phone, message)


def _json_or_text(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {"text": response.text[:500]}
    return body if isinstance(body, dict) else {"body": body}


_gateway: HubtelSmsGateway | None = None


def get_sms_gateway() -> HubtelSmsGateway:
    global _gateway
    if _gateway is None:
        _gateway = HubtelSmsGateway()
    return _gateway


def mark_sms_sent(db: Session, visit: Visit) -> Visit:
    visit.sms_sent = True
    visit.sms_sent_at = utc_now_naive()
    db.commit()
    db.refresh(visit)
    return visit


def deliver_thank_you_sms(session_factory: sessionmaker, gateway: HubtelSmsGateway, visit_id: int) -> bool:
    """Background task run after a visit is recorded.

    Opens its own session since the request session is closed by the time
    this runs. Never raises: the visit and client cascade are already
    committed and must not be affected by the outcome.
    """
    try:
        with session_factory() as db:
            visit = db.execute(select(Visit).where(Visit.id == visit_id)).scalar_one_or_none()
            if not visit or not visit.client:
                logger.warning("sms_visit_missing", visit_id=visit_id)
                return False
            result = gateway.send_thank_you(visit)
            if not result.success:
                logger.error("thank_you_sms_failed", visit_id=visit_id, error=result.error)
                return False
            mark_sms_sent(db, visit)
            logger.info("thank_you_sms_sent", visit_id=visit_id, attempts=result.attempts)
            return True
    except Exception:
        logger.exception("thank_you_sms_crashed", visit_id=visit_id)
        return False
