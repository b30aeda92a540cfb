"""Tests for daily alert email composition and SMTP delivery errors."""

import smtplib

import pytest

import alerts_email
from alerts_email import EmailSendError, build_daily_alert_email, build_search_link, send_email
from conftest import make_flight
from schemas.alerts import AlertDescriptor, DailyAlertSummary, DailyPriceUpdateEmail
from schemas.search import PriceLimit


def _summary(flights=None, **alert_overrides):
    values = {
        "id": "alert-1",
        "label": "San Francisco (SFO) to Tokyo (NRT)",
        "origin": "San Francisco (SFO)",
        "destination": "Tokyo (NRT)",
        "seatType": "Business",
        "stops": "Nonstop",
        "priceLimit": PriceLimit(amount=900),
    }
    values.update(alert_overrides)
    return DailyAlertSummary(
        alert=AlertDescriptor(**values),
        flights=flights if flights is not None else [make_flight(480.4)],
        generatedAt="2025-10-15T19:00:00",
    )


class TestBuildEmail:
    def test_subject_and_body(self):
        payload = DailyPriceUpdateEmail(summaryDate="2025-10-15", alerts=[_summary()])

        subject, body, html = build_daily_alert_email(payload)

        assert subject == "Daily flight alerts for 2025-10-15"
        assert "San Francisco (SFO) to Tokyo (NRT)" in body
        assert "Business | Nonstop | Under $900" in body
        assert "$480 | 15 Oct 2025 | United | Nonstop" in body
        assert "San Francisco (SFO) to Tokyo (NRT)" in html

    def test_html_is_escaped(self):
        payload = DailyPriceUpdateEmail(
            summaryDate="2025-10-15",
            alerts=[_summary(flights=[make_flight(300, airline="<Evil Air>")])],
        )

        _, _, html = build_daily_alert_email(payload)

        assert "<Evil Air>" not in html
        assert "&lt;Evil Air&gt;" in html

    def test_search_link_uses_codes(self):
        link = build_search_link(_summary(), make_flight(480, returnDate="2025-10-22"))

        assert "origin=SFO" in link
        assert "destination=NRT" in link
        assert "departureDate=2025-10-15" in link
        assert "returnDate=2025-10-22" in link

    def test_booking_url_wins(self):
        flight = make_flight(480, bookingUrl="https://book.example.com/x")
        assert build_search_link(_summary(), flight) == "https://book.example.com/x"


class TestSendEmail:
    def test_unconfigured_smtp_raises(self, monkeypatch):
        monkeypatch.setattr(alerts_email, "SMTP_USERNAME", None)

        with pytest.raises(EmailSendError):
            send_email("traveler@example.com", "subject", "body")

    def test_smtp_failure_is_wrapped(self, monkeypatch):
        monkeypatch.setattr(alerts_email, "SMTP_USERNAME", "user")
        monkeypatch.setattr(alerts_email, "SMTP_PASSWORD", "pass")

        class BrokenSMTP:
            def __init__(self, *args, **kwargs):
                raise smtplib.SMTPConnectError(421, "unavailable")

        monkeypatch.setattr(alerts_email.smtplib, "SMTP", BrokenSMTP)

        with pytest.raises(EmailSendError):
            send_email("traveler@example.com", "subject", "body")

    def test_sends_multipart_message(self, monkeypatch):
        monkeypatch.setattr(alerts_email, "SMTP_USERNAME", "user")
        monkeypatch.setattr(alerts_email, "SMTP_PASSWORD", "pass")
        sent = []

        class RecordingSMTP:
            def __init__(self, host, port, timeout=None):
                self.host = host

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def starttls(self):
                pass

            def login(self, username, password):
                sent.append(("login", username))

            def send_message(self, msg):
                sent.append(("message", msg))

        monkeypatch.setattr(alerts_email.smtplib, "SMTP", RecordingSMTP)

        send_email("traveler@example.com", "Daily flight alerts for 2025-10-15", "plain", html="<p>hi</p>")

        assert sent[0] == ("login", "user")
        msg = sent[1][1]
        assert msg["To"] == "traveler@example.com"
        assert msg.is_multipart()
