# Booking notification emails and the transports that deliver them
import atexit
import logging
import smtplib
import ssl
import sys
import threading
from datetime import timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import resend

logger = logging.getLogger(__name__)

DEFAULT_FROM_EMAIL = "no-reply@goldenfirmiana.com.au"

# Well-known mail services accepted in EMAIL_SERVICE
SMTP_SERVICES = {
    "gmail": ("smtp.gmail.com", 465, True),
    "outlook": ("smtp-mail.outlook.com", 587, False),
    "hotmail": ("smtp-mail.outlook.com", 587, False),
    "qq": ("smtp.qq.com", 465, True),
    "163": ("smtp.163.com", 465, True),
    "126": ("smtp.126.com", 465, True),
    "yahoo": ("smtp.mail.yahoo.com", 465, True),
}


class MemoryTransport:
    """Keeps every message in ``sent``; used for debugging and tests."""

    name = "memory"

    def __init__(self):
        self.sent: List[Dict] = []
        self._lock = threading.Lock()

    def send(self, params: Dict) -> Dict:
        with self._lock:
            self.sent.append(dict(params))
            message_id = f"memory-{len(self.sent)}"
        return {"id": message_id, "accepted": list(params["to"])}


class StreamTransport:
    """Writes each message to a text stream instead of delivering it."""

    name = "stream"

    def __init__(self, stream=None, owns_stream=False):
        self.stream = stream or sys.stdout
        # Only a file opened for this transport is closed by it
        self.owns_stream = owns_stream and stream is not None
        self._lock = threading.Lock()

    def send(self, params: Dict) -> Dict:
        with self._lock:
            self.stream.write(
                f"From: {params['from']}\nTo: {', '.join(params['to'])}\n"
                f"Subject: {params['subject']}\n\n{params['html']}\n\n"
            )
            self.stream.flush()
        return {"accepted": list(params["to"])}

    def close(self):
        with self._lock:
            if self.owns_stream and not self.stream.closed:
                self.stream.close()
            elif not self.stream.closed:
                self.stream.flush()


class SmtpTransport:
    name = "smtp"

    def __init__(self, host, port, secure, user=None, password=None, timeout=30):
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.timeout = timeout

    def _connect(self):
        if self.secure:
            return smtplib.SMTP_SSL(
                self.host,
                self.port,
                context=ssl.create_default_context(),
                timeout=self.timeout,
            )
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.starttls(context=ssl.create_default_context())
        return server

    def send(self, params: Dict) -> Dict:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = params["subject"]
        msg["From"] = params["from"]
        msg["To"] = ", ".join(params["to"])
        msg.attach(MIMEText(params["html"], "html", "utf-8"))

        with self._connect() as server:
            if self.user and self.password:
                server.login(self.user, self.password)
            refused = server.sendmail(params["from"], params["to"], msg.as_string())

        accepted = [to for to in params["to"] if to not in refused]
        return {"accepted": accepted, "rejected": list(refused)}


class ResendTransport:
    name = "resend"

    def __init__(self, api_key):
        resend.api_key = api_key

    def send(self, params: Dict) -> Dict:
        email_response = resend.Emails.send(params)
        return {"id": email_response.get("id"), "accepted": list(params["to"])}


def _as_bool(value) -> Optional[bool]:
    if value is None or value == "":
        return None
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def select_transport(config):
    """
    Pick the delivery transport from configuration.

    Debug transports win over live ones. Returns None when nothing is
    configured, which makes the dispatcher inert.
    """
    debug = (config.get("EMAIL_DEBUG_TRANSPORT") or "").strip().lower()
    if debug in ("memory", "json"):
        return MemoryTransport()
    if debug == "stream":
        path = config.get("EMAIL_DEBUG_STREAM")
        if not path:
            return StreamTransport()
        transport = StreamTransport(open(path, "a", encoding="utf-8"), owns_stream=True)
        atexit.register(transport.close)
        return transport

    service = (config.get("EMAIL_SERVICE") or "").strip().lower()
    host = config.get("EMAIL_HOST")
    if host or service:
        default_host, default_port, default_secure = SMTP_SERVICES.get(
            service, (host, 587, False)
        )
        port = int(config.get("EMAIL_PORT") or default_port)
        secure = _as_bool(config.get("EMAIL_SECURE"))
        if secure is None:
            secure = default_secure or port == 465
        if not (host or default_host):
            logger.warning("EMAIL_SERVICE '%s' is unknown and EMAIL_HOST is unset", service)
            return None
        return SmtpTransport(
            host or default_host,
            port,
            secure,
            user=config.get("EMAIL_USER"),
            password=config.get("EMAIL_PASS"),
        )

    if config.get("RESEND_API_KEY"):
        return ResendTransport(config["RESEND_API_KEY"])

    return None


def format_appointment_time(value, tz_name="Asia/Shanghai") -> str:
    """Render a UTC-naive instant as ``YYYY-MM-DD HH:MM`` in the given zone."""
    if value is None:
        return "Not provided"
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone).strftime("%Y-%m-%d %H:%M")


def _e(value, fallback="Not provided") -> str:
    if value is None or value == "":
        return escape(fallback)
    return escape(str(value))


class EmailService:
    """
    Builds and sends the booking emails over a single transport.

    A service without a transport is disabled: ``send`` is never called by the
    dispatcher in that case.
    """

    def __init__(self, transport=None, from_email=None, timezone_name="Asia/Shanghai"):
        self.transport = transport
        self.from_email = from_email or DEFAULT_FROM_EMAIL
        self.timezone_name = timezone_name

    @classmethod
    def from_config(cls, config):
        return cls(
            transport=select_transport(config),
            from_email=config.get("EMAIL_FROM") or config.get("EMAIL_USER"),
            timezone_name=config.get("NOTIFICATION_TIMEZONE") or "Asia/Shanghai",
        )

    @property
    def disabled(self) -> bool:
        return self.transport is None

    def send(self, to_email: str, subject: str, html: str) -> Dict:
        params = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        return self.transport.send(params)

    def booking_notification(self, event) -> Dict:
        """Subject and body for the admin/firm broadcast."""
        when = format_appointment_time(event.appointment_time, self.timezone_name)
        html = f"""
        <html>
            <body style="font-family: Arial, sans-serif; color: #2d3748;">
                <h2>New booking request</h2>
                <p>A client has submitted a new request. Please follow up promptly.</p>

                <h3>Client</h3>
                <ul>
                    <li>Name: {_e(event.client_name)}</li>
                    <li>Phone: {_e(event.client_phone)}</li>
                    <li>Email: {_e(event.client_email)}</li>
                </ul>

                <h3>Booking</h3>
                <ul>
                    <li>Firm: {_e(event.firm_name)}</li>
                    <li>Service: {_e(event.service_name, "Online consultation")}</li>
                    <li>Requested time: {_e(when)}</li>
                    <li>Reference: {_e(event.booking_id)}</li>
                </ul>
                <p style="white-space: pre-wrap;">{_e(event.remark, "No remark")}</p>
            </body>
        </html>
        """
        subject = (
            f"New booking - {event.client_name} - "
            f"{event.service_name or 'Online consultation'}"
        )
        return {"subject": subject, "html": html}

    def client_confirmation(self, event) -> Dict:
        """Subject and body for the confirmation sent to the client."""
        when = format_appointment_time(event.appointment_time, self.timezone_name)
        html = f"""
        <html>
            <body style="font-family: Arial, sans-serif; color: #2d3748;">
                <h2>We received your booking</h2>
                <p>Dear {_e(event.client_name, "client")},</p>
                <p>Your request has been submitted. The firm will contact you
                within 1-2 business days to confirm the details.</p>

                <h3>Booking details</h3>
                <ul>
                    <li>Firm: {_e(event.firm_name)}</li>
                    <li>Service: {_e(event.service_name, "Online consultation")}</li>
                    <li>Requested time: {_e(when)}</li>
                </ul>

                <p>Thank you for your trust. Reply to this email if you need to add anything.</p>
            </body>
        </html>
        """
        subject = (
            f"Booking confirmation - {event.firm_name or 'Golden Firmiana'} - "
            f"{event.service_name or 'Online consultation'}"
        )
        return {"subject": subject, "html": html}
