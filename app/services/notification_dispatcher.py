"""
Fan a booking event out to the admin/firm recipients and the client.

Every send runs on its own worker and is wrapped individually, so one failed
recipient never stops the others and ``dispatch`` never raises. The result is
a summary of per-recipient outcomes:

    {
        "notifications": [{"status": "fulfilled", "to": "...", "detail": {...}}],
        "clientConfirmation": {"status": "rejected", "to": "...", "detail": "..."} | None,
    }
"""

import atexit
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from app.config import split_list
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_EMAIL = "info@goldenfirmiana.com.au"
FULFILLED = "fulfilled"
REJECTED = "rejected"

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="notify")
# Background dispatches block on _executor, so they get their own workers.
_background_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify-bg")


def shutdown_executors(wait=True):
    """Stop the shared notification pools; background jobs submit to _executor."""
    _background_executor.shutdown(wait=wait)
    _executor.shutdown(wait=wait)


atexit.register(shutdown_executors)


@dataclass
class BookingEvent:
    client_name: str
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    firm_name: Optional[str] = None
    firm_email: Optional[str] = None
    service_name: Optional[str] = None
    appointment_time: Optional[datetime] = None
    remark: Optional[str] = None
    booking_id: Optional[str] = None


def _dedupe(addresses: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for address in addresses:
        address = (address or "").strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        unique.append(address)
    return unique


def default_recipients() -> List[str]:
    configured = split_list(
        os.environ.get("NOTIFICATION_EMAILS") or os.environ.get("ADMIN_EMAIL")
    )
    return configured or [DEFAULT_NOTIFICATION_EMAIL]


def resolve_recipients(override=None, firm_email=None) -> List[str]:
    """Explicit override wins; otherwise configured defaults plus the firm contact."""
    override = split_list(override)
    if override:
        return _dedupe(override)
    return _dedupe(default_recipients() + ([firm_email] if firm_email else []))


class NotificationDispatcher:
    def __init__(self, email_service: EmailService, executor=None, background_executor=None):
        self.email_service = email_service
        self.executor = executor or _executor
        self.background_executor = background_executor or _background_executor

    @property
    def inert(self) -> bool:
        return self.email_service.disabled

    def _send_one(self, to, message):
        try:
            detail = self.email_service.send(to, message["subject"], message["html"])
            return {"status": FULFILLED, "to": to, "detail": detail}
        except Exception as e:
            logger.error("Failed to send notification to %s: %s", to, e)
            return {"status": REJECTED, "to": to, "detail": str(e)}

    def dispatch(self, event: BookingEvent, recipients=None) -> dict:
        summary = {"notifications": [], "clientConfirmation": None}
        if self.inert:
            logger.info("No mail transport configured; skipping booking notifications")
            return summary

        broadcast = resolve_recipients(recipients, event.firm_email)
        admin_message = self.email_service.booking_notification(event)
        futures = [
            (to, self.executor.submit(self._send_one, to, admin_message))
            for to in broadcast
        ]

        client_future = None
        client_email = (event.client_email or "").strip()
        if client_email:
            client_message = self.email_service.client_confirmation(event)
            client_future = (
                client_email,
                self.executor.submit(self._send_one, client_email, client_message),
            )

        for to, future in futures:
            summary["notifications"].append(self._outcome(to, future))
        if client_future:
            summary["clientConfirmation"] = self._outcome(*client_future)

        failed = [n["to"] for n in summary["notifications"] if n["status"] == REJECTED]
        logger.info(
            "Booking %s notified %d/%d recipients",
            event.booking_id,
            len(broadcast) - len(failed),
            len(broadcast),
        )
        return summary

    @staticmethod
    def _outcome(to, future):
        try:
            return future.result()
        except Exception as e:
            return {"status": REJECTED, "to": to, "detail": str(e)}

    def dispatch_in_background(self, event: BookingEvent, recipients=None):
        """Fire-and-forget variant; the outcome is only logged."""
        future = self.background_executor.submit(self.dispatch, event, recipients)

        def _log_result(done):
            try:
                summary = done.result()
            except Exception as e:
                logger.error("Background notification for %s failed: %s", event.booking_id, e)
                return
            rejected = [n for n in summary["notifications"] if n["status"] == REJECTED]
            if rejected:
                logger.warning(
                    "Booking %s: %d notification(s) rejected", event.booking_id, len(rejected)
                )

        future.add_done_callback(_log_result)
        return future


def get_dispatcher(app) -> NotificationDispatcher:
    """One dispatcher per app; the transport is chosen once from its config."""
    dispatcher = app.extensions.get("notification_dispatcher")
    if dispatcher is None:
        dispatcher = NotificationDispatcher(EmailService.from_config(app.config))
        app.extensions["notification_dispatcher"] = dispatcher
    return dispatcher
