import json
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

import requests
from sqlalchemy.orm import Session

from dealerbook.config import settings
from dealerbook.errors import SmsGatewayError
from dealerbook.models import SmsRecord

logger = logging.getLogger(__name__)

DUE_LABEL = "বকেয়া"
COMMISSION_LABEL = "কমিশন"

DEFAULT_TEMPLATES = {
    "sms-template": (
        "{business_name}: প্রিয় {customer_name}, আপনার বকেয়ার পরিমাণ {due_amount} টাকা। "
        "অনুগ্রহ করে বকেয়া পরিশোধ করুন।"
    ),
    "sms-template-ledger": (
        "{business_name}: প্রিয় {employee_name}, {date} তারিখে খাতা নং #{ledger_no} থেকে "
        "{new_amount} টাকার একটি নতুন {amount_type} যোগ করা হয়েছে। "
        "আপনার নতুন মোট বকেয়া এখন {total_due} টাকা।"
    ),
    "sms-template-payment": (
        "Dear {employee_name}, a payment of {payment_amount} for {payment_type} from ledger "
        "#{ledger_no} has been recorded. Your new total due is {new_total_due}. -{business_name}"
    ),
    "sms-template-edit-ledger": (
        "Dear {employee_name}, Ledger #{ledger_no} has been updated. Your {amount_type} has "
        "changed from {old_amount} to {new_amount}. -{business_name}"
    ),
    "sms-template-manual-txn": (
        "Dear {employee_name}, a transaction of type {transaction_type} for {amount} has been "
        "processed. Your new total due is {total_due}. -{business_name}"
    ),
}

_BN_DIGITS = str.maketrans("0123456789", "০১২৩৪৫৬৭৮৯")


@dataclass
class SmsResult:
    success: bool
    message: str


@dataclass
class SmsNotification:
    employee_id: int
    employee_name: str
    phone_number: str
    kind: str
    message: str
    amount: float
    total_due: Optional[float] = None
    old_amount: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class SmsCredentials:
    api_key: str = ""
    sender_id: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key and self.sender_id)


@dataclass
class DeliveryReport:
    sent: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def format_currency(amount: float) -> str:
    return f"৳{amount:.2f}"


def bangla_date(value: date) -> str:
    return f"{value.day}/{value.month}/{value.year}".translate(_BN_DIGITS)


def render(template: str, values: dict) -> str:
    # only the first occurrence of each placeholder is filled
    message = template
    for key, value in values.items():
        message = message.replace("{" + key + "}", str(value), 1)
    return message


def sms_count(message: str) -> int:
    if any(ord(char) > 127 for char in message):
        if len(message) <= 70:
            return 1
        return math.ceil(len(message) / 67)
    if len(message) <= 160:
        return 1
    return math.ceil(len(message) / 153)


def parse_send_response(status_code: int, text: str) -> SmsResult:
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if payload is not None:
        if not isinstance(payload, dict):
            payload = {}
        if payload.get("response_code") == 202:
            return SmsResult(True, payload.get("success_message") or "SMS Submitted Successfully.")
        code = payload.get("response_code") or "Unknown"
        return SmsResult(False, payload.get("error_message") or f"API Error: {code}")

    parts = text.split("|")
    detail = parts[1].strip() if len(parts) > 1 else ""
    if 200 <= status_code < 300 and "1000" in text:
        return SmsResult(True, detail or "SMS sent successfully.")
    return SmsResult(False, detail or text or f"Failed to send SMS. Status: {status_code}")


def parse_balance_response(text: str) -> str:
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        if payload.get("response_code") == 202 and payload.get("balance") is not None:
            try:
                return format_currency(float(payload["balance"]))
            except (TypeError, ValueError):
                pass
    elif isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return format_currency(float(payload))
    raise SmsGatewayError(f"API Error: {text}")


class SmsGateway:
    """HTTP client for a BulkSMSBD style gateway."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, session=None) -> None:
        self.base_url = (base_url or settings.sms_api_base_url).rstrip("/")
        self.timeout = timeout or settings.sms_timeout_seconds
        self.session = session or requests.Session()

    def send(self, api_key: str, sender_id: str, phone_number: str, message: str) -> SmsResult:
        params = {
            "api_key": api_key,
            "senderid": sender_id,
            "number": phone_number,
            "message": message,
        }
        try:
            response = self.session.get(f"{self.base_url}/smsapi", params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            logger.exception("sms send to %s failed", phone_number)
            return SmsResult(False, str(exc) or "An unknown error occurred.")
        return parse_send_response(response.status_code, response.text)

    def balance(self, api_key: str) -> str:
        try:
            response = self.session.get(
                f"{self.base_url}/getBalanceApi", params={"api_key": api_key}, timeout=self.timeout
            )
        except requests.exceptions.RequestException as exc:
            raise SmsGatewayError(str(exc) or "An unknown error occurred while fetching balance.") from exc
        return parse_balance_response(response.text)


def record_history(db: Session, name: str, phone: str, message: str, result: SmsResult) -> SmsRecord:
    record = SmsRecord(
        id=f"sms-{uuid4().hex}",
        sent_at=datetime.now(timezone.utc),
        recipient_name=name,
        recipient_phone=phone,
        message=message,
        status="success" if result.success else "failed",
        status_message=result.message,
        sms_count=sms_count(message),
    )
    db.add(record)
    db.flush()
    stale = (
        db.query(SmsRecord.id)
        .order_by(SmsRecord.sent_at.desc(), SmsRecord.id.desc())
        .offset(settings.sms_history_limit)
        .all()
    )
    if stale:
        db.query(SmsRecord).filter(SmsRecord.id.in_([row.id for row in stale])).delete(
            synchronize_session=False
        )
    return record


def deliver(
    db: Session,
    gateway: SmsGateway,
    credentials: SmsCredentials,
    notifications: list[SmsNotification],
) -> DeliveryReport:
    report = DeliveryReport()
    if not notifications:
        return report
    if not credentials.is_complete:
        report.warnings.append("sms_skipped_missing_credentials")
        return report
    for notification in notifications:
        result = gateway.send(
            credentials.api_key,
            credentials.sender_id,
            notification.phone_number,
            notification.message,
        )
        record_history(db, notification.employee_name, notification.phone_number, notification.message, result)
        if not result.success:
            logger.warning("sms to %s failed: %s", notification.employee_name, result.message)
            report.warnings.append(f"sms_failed:{notification.employee_id}")
        report.sent.append(
            {
                "employee_id": notification.employee_id,
                "phone_number": notification.phone_number,
                "success": result.success,
                "status_message": result.message,
            }
        )
    return report
