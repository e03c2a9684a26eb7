"""Tests for the Semaphore SMS client and message templates."""
from datetime import date
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from allstar.config import Settings
from allstar.application.sms import (
    format_phone_number, send_sms, send_bulk_sms, format_date_ph,
    invoice_generated_text, due_date_reminder_text, disconnection_warning_text, payment_received_text,
)


@pytest.fixture
def configured():
    settings = Settings(SEMAPHORE_API_KEY="test-key", SEMAPHORE_SENDER_NAME="ALLSTAR", SMS_ENABLED=True)
    with patch("allstar.application.sms.get_settings", return_value=settings):
        yield settings


def _response(payload, status=200):
    resp = Mock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


@pytest.mark.parametrize("raw", ["09171234567", "+63 917 123 4567", "917-123-4567", "639171234567"])
def test_format_phone_number(raw):
    assert format_phone_number(raw) == "639171234567"


class TestSendSms:
    def test_success(self, configured):
        with patch("allstar.application.sms.requests.post", return_value=_response([{"message_id": 42}])) as post:
            result = send_sms("09171234567", "hello")

        assert result.success
        assert result.message_id == "42"
        body = post.call_args.kwargs["json"]
        assert body == {
            "apikey": "test-key",
            "number": "639171234567",
            "message": "hello",
            "sendername": "ALLSTAR",
        }
        assert post.call_args.kwargs["timeout"] == 10

    def test_dict_response(self, configured):
        with patch("allstar.application.sms.requests.post", return_value=_response({"message_id": "7"})):
            assert send_sms("09171234567", "hi").message_id == "7"

    def test_api_error(self, configured):
        with patch("allstar.application.sms.requests.post", return_value=_response({"error": "bad key"}, 401)):
            result = send_sms("09171234567", "hi")
        assert not result.success
        assert result.error == "bad key"

    def test_network_error(self, configured):
        with patch("allstar.application.sms.requests.post", side_effect=requests.ConnectionError("timeout")):
            result = send_sms("09171234567", "hi")
        assert not result.success
        assert "timeout" in result.error

    def test_non_json(self, configured):
        resp = _response(None, 502)
        resp.json.side_effect = ValueError("no json")
        resp.text = "<html>Bad Gateway</html>"
        with patch("allstar.application.sms.requests.post", return_value=resp):
            result = send_sms("09171234567", "hi")
        assert not result.success
        assert "Invalid JSON" in result.error

    def test_missing_api_key(self):
        with patch("allstar.application.sms.get_settings", return_value=Settings(SEMAPHORE_API_KEY="")), \
                patch("allstar.application.sms.requests.post") as post:
            result = send_sms("09171234567", "hi")
        assert not result.success
        post.assert_not_called()

    def test_disabled(self):
        settings = Settings(SEMAPHORE_API_KEY="k", SMS_ENABLED=False)
        with patch("allstar.application.sms.get_settings", return_value=settings), \
                patch("allstar.application.sms.requests.post") as post:
            assert not send_sms("09171234567", "hi").success
        post.assert_not_called()


def test_bulk_counts(configured):
    responses = [_response([{"message_id": 1}]), _response({"error": "nope"})]
    with patch("allstar.application.sms.requests.post", side_effect=responses):
        result = send_bulk_sms([("09171234567", "a"), ("09181234567", "b")])
    assert result.sent == 1
    assert result.failed == 1
    assert len(result.results) == 2


class TestTemplates:
    def test_date(self):
        assert format_date_ph(date(2025, 12, 5)) == "December 5, 2025"

    def test_invoice(self):
        text = invoice_generated_text("Juan", Decimal("1500.00"), date(2025, 12, 15), "Bulihan")
        assert text.startswith("Hi Juan! Your Bulihan internet bill of P1,500 is now ready.")
        assert "Due: December 15, 2025" in text

    def test_centavos_kept(self):
        assert "P766.67" in due_date_reminder_text("Ana", Decimal("766.67"), date(2025, 3, 15))

    def test_disconnection(self):
        assert "disconnected on March 20, 2025" in disconnection_warning_text("Ana", date(2025, 3, 20))

    @pytest.mark.parametrize("balance,tail", [
        (Decimal("200"), "Remaining balance: P200."),
        (Decimal("-300"), "You have P300 credits."),
        (Decimal("0"), "Your account is fully paid."),
    ])
    def test_payment_received(self, balance, tail):
        assert tail in payment_received_text("Ana", 1000, balance)
