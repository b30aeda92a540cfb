import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape
from typing import List, Optional, Tuple
from urllib.parse import urlencode

from config import (
    ALERT_FROM_EMAIL,
    FRONTEND_BASE_URL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
)
from schemas.alerts import DailyAlertSummary, DailyPriceUpdateEmail
from schemas.search import FlightOption


class EmailSendError(Exception):
    pass


# =======================================
# SECTION: GENERIC SINGLE EMAIL SENDER
# =======================================

def _smtp_configured() -> bool:
    return bool(SMTP_USERNAME and SMTP_PASSWORD and ALERT_FROM_EMAIL)


def send_email(to_email: str, subject: str, body: str, html: Optional[str] = None) -> None:
    """Deliver one email over SMTP. Raises EmailSendError on any failure."""
    if not _smtp_configured():
        raise EmailSendError("SMTP settings are not fully configured on the server")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"Flights Tracker <{ALERT_FROM_EMAIL}>"
    msg["To"] = to_email
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30) as server:
            server.starttls()
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e

    print(f"[email] sent to={to_email} subject={subject!r}")


# =======================================
# SECTION: LINK BUILDERS
# =======================================

def build_search_link(summary: DailyAlertSummary, flight: Optional[FlightOption] = None) -> str:
    """Deep link into search results for an alert route, pinned to a flight's dates when given."""
    if flight is not None and flight.bookingUrl:
        return flight.bookingUrl

    base = FRONTEND_BASE_URL.rstrip("/")
    alert = summary.alert

    qp = {
        "origin": _iata_from_label(alert.origin),
        "destination": _iata_from_label(alert.destination),
        "alertId": alert.id,
    }
    if flight is not None:
        qp["departureDate"] = flight.departureDate
        if flight.returnDate:
            qp["returnDate"] = flight.returnDate

    return f"{base}/search?{urlencode(qp)}"


def _iata_from_label(label: str) -> str:
    # "Tokyo (NRT)" -> "NRT", bare codes pass through
    if label.endswith(")") and "(" in label:
        return label[label.rindex("(") + 1 : -1]
    return label


# =======================================
# SECTION: DAILY ALERT EMAIL
# =======================================

def daily_alert_subject(summary_date: str) -> str:
    return f"Daily flight alerts for {summary_date}"


def _date_label(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value[:10]).strftime("%d %b %Y")
    except ValueError:
        return value


def _price_label(flight: FlightOption) -> str:
    if flight.currency == "USD":
        return f"${int(round(flight.price))}"
    return f"{int(round(flight.price))} {flight.currency}"


def _criteria_line(summary: DailyAlertSummary) -> str:
    alert = summary.alert
    parts: List[str] = []
    if alert.seatType:
        parts.append(alert.seatType)
    if alert.stops:
        parts.append(alert.stops)
    if alert.airlines:
        parts.append("Airlines: " + ", ".join(alert.airlines))
    if alert.priceLimit:
        parts.append(f"Under ${alert.priceLimit.amount}")
    return " | ".join(parts)


def _flight_line(flight: FlightOption) -> str:
    dates = _date_label(flight.departureDate)
    if flight.returnDate:
        dates = f"{dates} to {_date_label(flight.returnDate)}"
    stops = "Nonstop" if flight.stops == 0 else f"{flight.stops} stop{'s' if flight.stops > 1 else ''}"
    return f"{_price_label(flight)} | {dates} | {flight.airline} | {stops}"


def build_daily_alert_email(payload: DailyPriceUpdateEmail) -> Tuple[str, str, str]:
    """
    One email for all of a user's alerts with flights.
    Returns (subject, plain text body, html body).
    """
    subject = daily_alert_subject(payload.summaryDate)

    # Plain text
    lines: List[str] = []
    lines.append(f"Your daily flight alerts for {_date_label(payload.summaryDate)}")
    lines.append("")

    for summary in payload.alerts:
        lines.append(summary.alert.label)
        criteria = _criteria_line(summary)
        if criteria:
            lines.append(criteria)
        for flight in summary.flights:
            lines.append(_flight_line(flight))
            lines.append(f"View flight: {build_search_link(summary, flight)}")
        lines.append("")

    lines.append("Manage your alerts:")
    lines.append(f"{FRONTEND_BASE_URL.rstrip('/')}/alerts")
    lines.append("")
    lines.append("You are receiving this because you created a daily flight alert.")
    body = "\n".join(lines)

    # HTML
    sections_html = ""
    for summary in payload.alerts:
        rows_html = ""
        for flight in summary.flights:
            rows_html += f"""
              <tr>
                <td style="padding:10px 12px;border-bottom:1px solid #eef0f5;font-size:14px;color:#111827;">
                  <strong>{escape(_price_label(flight))}</strong> {escape(flight.airline)}
                  <div style="font-size:13px;color:#6b7280;">{escape(_flight_line(flight))}</div>
                </td>
                <td style="padding:10px 12px;border-bottom:1px solid #eef0f5;text-align:right;">
                  <a href="{escape(build_search_link(summary, flight))}" style="font-size:13px;color:#2563eb;font-weight:700;">View flight</a>
                </td>
              </tr>
            """

        sections_html += f"""
          <div style="margin:0 0 20px 0;">
            <div style="font-size:18px;color:#111827;font-weight:800;">{escape(summary.alert.label)}</div>
            <div style="font-size:13px;color:#6b7280;margin:4px 0 10px 0;">{escape(_criteria_line(summary))}</div>
            <table role="presentation" width="100%" cellpadding="0" cellspacing="0">
              {rows_html}
            </table>
          </div>
        """

    html = f"""
    <html>
      <body style="margin:0;padding:0;background:#f6f7f9;font-family:Arial,Helvetica,sans-serif;">
        <div style="max-width:680px;margin:0 auto;padding:24px;">
          <div style="background:#ffffff;border:1px solid #e6e8ee;border-radius:14px;padding:26px;">
            <div style="font-size:24px;color:#111827;font-weight:800;margin:0 0 16px 0;">
              Your daily flight alerts for {escape(_date_label(payload.summaryDate))}
            </div>
            {sections_html}
            <a href="{escape(FRONTEND_BASE_URL.rstrip('/'))}/alerts" style="font-size:14px;color:#2563eb;">Manage your alerts</a>
          </div>
        </div>
      </body>
    </html>
    """

    return subject, body, html


def send_daily_alert_email(to_email: str, payload: DailyPriceUpdateEmail) -> str:
    """Compose and send the daily email. Returns the subject used."""
    subject, body, html = build_daily_alert_email(payload)
    send_email(to_email, subject, body, html=html)
    return subject
