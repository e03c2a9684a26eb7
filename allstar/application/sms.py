"""
SMS delivery via the Semaphore API.

Used for invoice notices, due-date reminders, disconnection warnings and
payment receipts. Delivery failures are logged and counted, never raised.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import requests

from allstar.config import get_settings
from allstar.utils.money import format_money

logger = logging.getLogger(__name__)


@dataclass
class SmsResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class BulkSmsResult:
    sent: int = 0
    failed: int = 0
    results: list[SmsResult] = field(default_factory=list)


def format_phone_number(phone: str) -> str:
    """0917xxxxxxx / +63917xxxxxxx / 917xxxxxxx -> 63917xxxxxxx"""
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith("0"):
        cleaned = "63" + cleaned[1:]
    if not cleaned.startswith("63"):
        cleaned = "63" + cleaned
    return cleaned


def send_sms(to: str, message: str) -> SmsResult:
    """Send one SMS. Returns SmsResult(success=False) on any failure."""
    settings = get_settings()
    if not settings.SMS_ENABLED:
        logger.info("SMS disabled, skipping message to %s", to)
        return SmsResult(success=False, error="SMS disabled")
    if not settings.SEMAPHORE_API_KEY:
        logger.warning("SEMAPHORE_API_KEY not configured, skipping SMS")
        return SmsResult(success=False, error="SMS service not configured")

    number = format_phone_number(to)
    try:
        resp = requests.post(
            settings.SEMAPHORE_API_URL,
            json={
                "apikey": settings.SEMAPHORE_API_KEY,
                "number": number,
                "message": message,
                "sendername": settings.SEMAPHORE_SENDER_NAME,
            },
            timeout=10,
        )
    except requests.RequestException as e:
        logger.error("Semaphore request failed for %s: %s", number, e)
        return SmsResult(success=False, error=str(e))

    try:
        data = resp.json()
    except ValueError:
        logger.error("Semaphore returned non-JSON (HTTP %d): %s", resp.status_code, resp.text[:200])
        return SmsResult(success=False, error=f"Invalid JSON response: {resp.text[:200]}")

    if isinstance(data, dict) and data.get("error"):
        logger.error("Semaphore error for %s: %s", number, data["error"])
        return SmsResult(success=False, error=str(data["error"]))

    if resp.ok:
        # Semaphore answers with a list of queued messages
        if isinstance(data, list) and data and data[0].get("message_id"):
            return SmsResult(success=True, message_id=str(data[0]["message_id"]))
        if isinstance(data, dict) and data.get("message_id"):
            return SmsResult(success=True, message_id=str(data["message_id"]))

    logger.error("Unexpected Semaphore response (HTTP %d): %s", resp.status_code, str(data)[:200])
    return SmsResult(success=False, error=f"Unexpected response: {str(data)[:200]}")


def send_bulk_sms(messages: list[tuple[str, str]]) -> BulkSmsResult:
    """Send (to, message) pairs one by one."""
    result = BulkSmsResult()
    for to, message in messages:
        r = send_sms(to, message)
        result.results.append(r)
        if r.success:
            result.sent += 1
        else:
            result.failed += 1
    if messages:
        logger.info("Bulk SMS: %d sent, %d failed", result.sent, result.failed)
    return result


# ============================================================================
# Templates
# ============================================================================


def _peso(amount) -> str:
    amount = Decimal(str(amount))
    return format_money(amount, decimals=0 if amount == amount.to_integral_value() else 2)


def format_date_ph(d: date) -> str:
    """December 15, 2025"""
    return f"{d.strftime('%B')} {d.day}, {d.year}"


def invoice_generated_text(customer_name: str, amount, due_date: date, business_unit: str) -> str:
    return (
        f"Hi {customer_name}! Your {business_unit} internet bill of {_peso(amount)} is now ready. "
        f"Due: {format_date_ph(due_date)}. Please pay on time to avoid disconnection. Thank you! - Allstar"
    )


def due_date_reminder_text(customer_name: str, amount, due_date: date) -> str:
    return (
        f"Reminder: Hi {customer_name}, your internet bill of {_peso(amount)} is due "
        f"{format_date_ph(due_date)}. Please settle to avoid service interruption. Thank you! - Allstar"
    )


def disconnection_warning_text(customer_name: str, disconnection_date: date) -> str:
    return (
        f"URGENT: Hi {customer_name}, your internet will be disconnected on "
        f"{format_date_ph(disconnection_date)} due to unpaid balance. "
        f"Please pay immediately to continue service. - Allstar"
    )


def payment_received_text(customer_name: str, amount, new_balance) -> str:
    new_balance = Decimal(str(new_balance))
    if new_balance > 0:
        tail = f"Remaining balance: {_peso(new_balance)}."
    elif new_balance < 0:
        tail = f"You have {_peso(-new_balance)} credits."
    else:
        tail = "Your account is fully paid."
    return f"Hi {customer_name}! We received your payment of {_peso(amount)}. {tail} Thank you! - Allstar"
