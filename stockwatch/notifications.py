"""Brand stock alerts.

Alert text is built by depletion_message() / restock_message(). Delivery
goes through exactly one NotificationSink chosen at startup by build_sink():

    SendGrid API  (SENDGRID_API_KEY)      -- preferred, works where SMTP is blocked
    SMTP          (EMAIL_PASSWORD)
    Twilio SMS    (TWILIO_* + ALERT_PHONE)

Notifier wraps the sink with a hard timeout and never raises: callers get a
NotifyResult and decide what to do with a failure.
"""

import html
import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid

from curl_cffi import CurlError
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from . import config
from .errors import NotificationFailure
from .http_client import HttpClient
from .stock import BrandStockSnapshot

log = logging.getLogger(__name__)

SMS_MAX_LEN = 1600


@dataclass
class NotifyResult:
    success: bool
    method: str
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


# ──────────────────────────────────────────────
# Sinks
# ──────────────────────────────────────────────

class NotificationSink:
    """One delivery transport. send() returns a message id or raises NotificationFailure."""

    name = "none"

    def send(self, subject: str, body: str) -> str | None:
        raise NotificationFailure("No notification transport configured")


class SendGridSink(NotificationSink):
    name = "sendgrid"

    def __init__(self, api_key: str, sender: str, recipient: str, timeout: float = 10.0):
        self.api_key = api_key
        self.sender = sender
        self.recipient = recipient
        self.timeout = timeout

    def send(self, subject, body):
        payload = {
            "personalizations": [{"to": [{"email": self.recipient}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        try:
            with HttpClient(timeout=self.timeout, retry_on_throttle=False) as client:
                result = client.post_json(
                    config.SENDGRID_URL, payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except CurlError as e:
            raise NotificationFailure(f"SendGrid request failed: {e}") from e
        if not result.ok:
            detail = result.content.decode("utf-8", errors="replace")[:500]
            raise NotificationFailure(f"SendGrid error {result.status_code}: {detail}")
        return result.headers.get("x-message-id")


class SmtpSink(NotificationSink):
    name = "smtp"

    def __init__(self, host: str, port: int, user: str, password: str,
                 sender: str, recipient: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.recipient = recipient
        self.timeout = timeout

    def _build(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(body)
        msg.add_alternative(
            f'<div style="font-family: monospace; white-space: pre-wrap;">{html.escape(body)}</div>',
            subtype="html",
        )
        return msg

    def _connect(self) -> smtplib.SMTP:
        # 465 = implicit TLS, anything else = STARTTLS
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.starttls()
        return server

    def send(self, subject, body):
        msg = self._build(subject, body)
        try:
            with self._connect() as server:
                server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(f"SMTP error: {type(e).__name__}: {e}") from e
        return msg["Message-ID"]


class TwilioSink(NotificationSink):
    name = "twilio"

    def __init__(self, account_sid: str, api_key: str, api_secret: str, from_: str, to: str,
                 timeout: float = 10.0):
        self.from_ = from_
        self.to = to
        self._client = Client(api_key, api_secret, account_sid,
                              http_client=TwilioHttpClient(timeout=timeout))

    def send(self, subject, body):
        text = f"{subject}\n\n{body}"[:SMS_MAX_LEN]
        try:
            message = self._client.messages.create(to=self.to, from_=self.from_, body=text)
        except TwilioRestException as e:
            raise NotificationFailure(f"Twilio error {e.code} (HTTP {e.status}): {e.msg}") from e
        return message.sid


def build_sink() -> NotificationSink:
    """Pick the single active transport from configuration."""
    if config.SENDGRID_API_KEY:
        return SendGridSink(config.SENDGRID_API_KEY, config.EMAIL_FROM, config.EMAIL_TO)
    if config.EMAIL_PASSWORD:
        return SmtpSink(
            config.SMTP_HOST, config.SMTP_PORT, config.EMAIL_FROM, config.EMAIL_PASSWORD,
            config.EMAIL_FROM, config.EMAIL_TO,
        )
    if all([config.TWILIO_ACCOUNT_SID, config.TWILIO_API_KEY, config.TWILIO_API_SECRET,
            config.TWILIO_FROM, config.ALERT_PHONE]):
        return TwilioSink(
            config.TWILIO_ACCOUNT_SID, config.TWILIO_API_KEY, config.TWILIO_API_SECRET,
            config.TWILIO_FROM, config.ALERT_PHONE,
        )
    log.warning("No notification transport configured — alerts will fail")
    return NotificationSink()


# ──────────────────────────────────────────────
# Notifier
# ──────────────────────────────────────────────

class Notifier:
    """Dispatch through a sink with a timeout. notify() never raises."""

    def __init__(self, sink: NotificationSink, timeout: float | None = None):
        self.sink = sink
        self.timeout = config.NOTIFY_TIMEOUT if timeout is None else timeout
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")

    @property
    def method(self) -> str:
        return self.sink.name

    def notify(self, subject: str, body: str) -> NotifyResult:
        try:
            future = self._pool.submit(self.sink.send, subject, body)
        except RuntimeError as e:
            log.error(f"Notification dropped ({self.method}), notifier is closed: {subject}")
            return NotifyResult(False, self.method, error=f"Notifier closed: {e}")
        try:
            message_id = future.result(timeout=self.timeout)
        except FuturesTimeout:
            error = f"Notification timed out after {self.timeout:g}s"
            if future.cancel():
                log.error(f"{error} ({self.method}), never started: {subject}")
            else:
                # Already running; the sink's own transport timeout ends it.
                log.error(f"{error} ({self.method}), may still be delivered: {subject}")
            return NotifyResult(False, self.method, error=error)
        except NotificationFailure as e:
            log.error(f"Notification failed ({self.method}): {e}")
            return NotifyResult(False, self.method, error=str(e))
        except Exception as e:
            log.exception(f"Unexpected notification error ({self.method})")
            return NotifyResult(False, self.method, error=f"{type(e).__name__}: {e}")

        log.info(f"Notification sent via {self.method}: {subject}"
                 + (f" (id {message_id})" if message_id else ""))
        return NotifyResult(True, self.method, message_id=message_id)

    def close(self):
        self._pool.shutdown(wait=False)


# ──────────────────────────────────────────────
# Message formatting
# ──────────────────────────────────────────────

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def depletion_message(snapshot: BrandStockSnapshot) -> tuple[str, str]:
    """Subject and body for "every product of this brand is out of stock"."""
    brand = snapshot.brand
    subject = f"🚨 ALL {brand} Products OUT OF STOCK"
    body = (
        f'All {snapshot.total_products} products for "{brand}" are now out of stock.\n\n'
        f"⚠️ ACTION REQUIRED: Hide this brand from your brand page.\n\n"
        f"Brand: {brand}\n"
        f"Total Products: {snapshot.total_products}\n"
        f"Out of Stock: {snapshot.out_of_stock_products}\n\n"
        f"Timestamp: {_timestamp()}"
    )
    return subject, body


def restock_message(snapshot: BrandStockSnapshot) -> tuple[str, str]:
    """Subject and body for "this brand has stock again"."""
    brand = snapshot.brand
    subject = f"✅ {brand} Products BACK IN STOCK"
    body = (
        f'Good news! {snapshot.in_stock_products} product(s) for "{brand}" are back in stock.\n\n'
        f"✅ ACTION REQUIRED: Show this brand on your brand page.\n\n"
        f"Brand: {brand}\n"
        f"Total Products: {snapshot.total_products}\n"
        f"In Stock: {snapshot.in_stock_products}\n"
        f"Out of Stock: {snapshot.out_of_stock_products}\n\n"
        f"Timestamp: {_timestamp()}"
    )
    return subject, body


def sample_message(method: str) -> tuple[str, str]:
    subject = "🧪 Test Email from Shopify Monitor"
    body = (
        "This is a test message to verify your notification configuration is working.\n\n"
        f"Method: {method}\n"
        f"From: {config.EMAIL_FROM}\n"
        f"To: {config.EMAIL_TO}\n"
        f"Timestamp: {_timestamp()}\n\n"
        "If you're seeing this, your setup is working correctly! ✅"
    )
    return subject, body
