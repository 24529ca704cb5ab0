import io
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from app.services import email_service as email_module
from app.services import notification_dispatcher
from app.services.email_service import (
    EmailService,
    MemoryTransport,
    ResendTransport,
    SmtpTransport,
    StreamTransport,
    format_appointment_time,
    select_transport,
)
from app.services.notification_dispatcher import (
    DEFAULT_NOTIFICATION_EMAIL,
    BookingEvent,
    NotificationDispatcher,
    resolve_recipients,
)


class FlakyTransport(MemoryTransport):
    """Rejects every message addressed to one recipient."""

    def __init__(self, bad_address):
        super().__init__()
        self.bad_address = bad_address

    def send(self, params):
        if self.bad_address in params["to"]:
            raise RuntimeError("550 mailbox unavailable")
        return super().send(params)


@pytest.fixture
def event():
    return BookingEvent(
        client_name="Zhang San",
        client_phone="13800138000",
        client_email="client@example.com",
        firm_name="Golden Firmiana Partners",
        firm_email="bookings@firmiana.example",
        service_name="Property Settlement",
        appointment_time=datetime(2030, 1, 1, 2, 0, 0),
        remark="Please call",
        booking_id="42",
    )


@pytest.mark.notifications
class TestResolveRecipients:
    def test_default_recipient(self):
        assert resolve_recipients() == [DEFAULT_NOTIFICATION_EMAIL]

    def test_configured_recipients_plus_firm(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATION_EMAILS", "ops@x.com; team@x.com")

        assert resolve_recipients(firm_email="firm@x.com") == [
            "ops@x.com",
            "team@x.com",
            "firm@x.com",
        ]

    def test_legacy_admin_email_setting(self, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAIL", "legacy@x.com")

        assert resolve_recipients() == ["legacy@x.com"]

    def test_case_insensitive_dedupe_keeps_first_spelling(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATION_EMAILS", "Ops@X.com ops@x.com")

        assert resolve_recipients(firm_email="OPS@x.COM") == ["Ops@X.com"]

    def test_override_replaces_defaults(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATION_EMAILS", "ops@x.com")

        assert resolve_recipients(["a@x.com", "b@x.com", "A@x.com"], "firm@x.com") == [
            "a@x.com",
            "b@x.com",
        ]


@pytest.mark.notifications
class TestDispatch:
    def test_one_outcome_per_unique_recipient(self, monkeypatch, event):
        monkeypatch.setenv("NOTIFICATION_EMAILS", "ops@x.com,OPS@x.com,team@x.com")
        transport = MemoryTransport()
        dispatcher = NotificationDispatcher(EmailService(transport))

        summary = dispatcher.dispatch(event)

        expected = resolve_recipients(firm_email=event.firm_email)
        assert len(summary["notifications"]) == len(expected)
        assert {n["to"] for n in summary["notifications"]} <= set(expected)
        assert all(n["status"] == "fulfilled" for n in summary["notifications"])
        assert summary["clientConfirmation"]["to"] == "client@example.com"
        assert len(transport.sent) == len(expected) + 1

    def test_failed_recipient_does_not_block_others(self, monkeypatch, event):
        monkeypatch.setenv("NOTIFICATION_EMAILS", "ops@x.com,broken@x.com")
        dispatcher = NotificationDispatcher(EmailService(FlakyTransport("broken@x.com")))

        summary = dispatcher.dispatch(event)

        outcomes = {n["to"]: n for n in summary["notifications"]}
        assert outcomes["broken@x.com"]["status"] == "rejected"
        assert "550" in outcomes["broken@x.com"]["detail"]
        assert outcomes["ops@x.com"]["status"] == "fulfilled"
        assert outcomes["bookings@firmiana.example"]["status"] == "fulfilled"
        assert summary["clientConfirmation"]["status"] == "fulfilled"

    def test_failed_client_confirmation_is_reported(self, event):
        dispatcher = NotificationDispatcher(
            EmailService(FlakyTransport("client@example.com"))
        )

        summary = dispatcher.dispatch(event)

        assert summary["clientConfirmation"]["status"] == "rejected"
        assert all(n["status"] == "fulfilled" for n in summary["notifications"])

    def test_no_client_email_no_confirmation(self, event):
        event.client_email = None
        dispatcher = NotificationDispatcher(EmailService(MemoryTransport()))

        assert dispatcher.dispatch(event)["clientConfirmation"] is None

    def test_inert_without_transport(self, event):
        dispatcher = NotificationDispatcher(EmailService(None))

        assert dispatcher.inert
        assert dispatcher.dispatch(event) == {
            "notifications": [],
            "clientConfirmation": None,
        }

    def test_background_dispatch(self, event):
        transport = MemoryTransport()
        dispatcher = NotificationDispatcher(EmailService(transport))

        summary = dispatcher.dispatch_in_background(event).result(timeout=10)

        assert len(summary["notifications"]) == 2
        assert len(transport.sent) == 3

    def test_shutdown_executors(self, monkeypatch):
        pools = [ThreadPoolExecutor(max_workers=1), ThreadPoolExecutor(max_workers=1)]
        monkeypatch.setattr(notification_dispatcher, "_executor", pools[0])
        monkeypatch.setattr(notification_dispatcher, "_background_executor", pools[1])

        notification_dispatcher.shutdown_executors()

        for pool in pools:
            with pytest.raises(RuntimeError):
                pool.submit(print)

    def test_messages_are_escaped(self, event):
        event.client_name = "<script>alert(1)</script>"
        transport = MemoryTransport()
        NotificationDispatcher(EmailService(transport)).dispatch(event)

        for message in transport.sent:
            assert "<script>" not in message["html"]
            assert "&lt;script&gt;" in message["html"]

    def test_times_rendered_in_notification_timezone(self, event):
        transport = MemoryTransport()
        NotificationDispatcher(EmailService(transport, timezone_name="Asia/Shanghai")).dispatch(event)

        assert all("2030-01-01 10:00" in m["html"] for m in transport.sent)


@pytest.mark.notifications
class TestTransportSelection:
    def test_debug_memory_wins(self):
        config = {"EMAIL_DEBUG_TRANSPORT": "memory", "EMAIL_HOST": "smtp.x.com"}

        assert isinstance(select_transport(config), MemoryTransport)

    def test_debug_stream(self, tmp_path):
        path = tmp_path / "mail.log"
        transport = select_transport(
            {"EMAIL_DEBUG_TRANSPORT": "stream", "EMAIL_DEBUG_STREAM": str(path)}
        )

        assert isinstance(transport, StreamTransport)
        transport.send({"from": "a@x.com", "to": ["b@x.com"], "subject": "Hi", "html": "<p>x</p>"})
        transport.close()
        assert "Subject: Hi" in path.read_text(encoding="utf-8")

    def test_debug_stream_file_is_closed(self, tmp_path):
        transport = select_transport(
            {"EMAIL_DEBUG_TRANSPORT": "stream", "EMAIL_DEBUG_STREAM": str(tmp_path / "mail.log")}
        )

        assert transport.owns_stream is True
        transport.close()
        transport.close()

        assert transport.stream.closed

    def test_close_leaves_borrowed_stream_open(self):
        buffer = io.StringIO()
        transport = StreamTransport(buffer)

        transport.close()

        assert not buffer.closed
        assert StreamTransport().owns_stream is False

    def test_smtp_from_service_name(self):
        transport = select_transport({"EMAIL_SERVICE": "qq", "EMAIL_USER": "u@qq.com"})

        assert isinstance(transport, SmtpTransport)
        assert (transport.host, transport.port, transport.secure) == ("smtp.qq.com", 465, True)

    def test_smtp_from_host(self):
        transport = select_transport(
            {"EMAIL_HOST": "mail.firm.example", "EMAIL_PORT": "587", "EMAIL_SECURE": "false"}
        )

        assert (transport.host, transport.port, transport.secure) == ("mail.firm.example", 587, False)

    def test_smtp_beats_resend(self):
        transport = select_transport({"EMAIL_HOST": "mail.firm.example", "RESEND_API_KEY": "re_x"})

        assert isinstance(transport, SmtpTransport)

    def test_resend(self):
        transport = select_transport({"RESEND_API_KEY": "re_test"})

        assert isinstance(transport, ResendTransport)
        assert email_module.resend.api_key == "re_test"

    def test_nothing_configured(self):
        assert select_transport({}) is None

    def test_stream_transport_writes_headers(self):
        buffer = io.StringIO()
        StreamTransport(buffer).send(
            {"from": "a@x.com", "to": ["b@x.com", "c@x.com"], "subject": "S", "html": "H"}
        )

        assert "To: b@x.com, c@x.com" in buffer.getvalue()


def test_format_appointment_time():
    assert format_appointment_time(datetime(2030, 1, 1, 2, 0)) == "2030-01-01 10:00"
    assert format_appointment_time(datetime(2030, 1, 1, 2, 0), "UTC") == "2030-01-01 02:00"
    assert format_appointment_time(None) == "Not provided"
