"""
Tests for notification payloads, queueing and delivery.
"""
import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import settings
from app.db.models import PIRStatus
from app.services.notifications import NotificationDispatcher, NotificationType, build_payload, recipient_emails
from app.workers import jobs


def payload(**overrides):
    data = {
        "type": "REVIEW_COMPLETED",
        "pir": {
            "id": 7, "title": "REACH declaration", "status": "flagged",
            "status_label": "Changes Requested", "review_round": 1, "product_name": "PET tray",
        },
        "customer": {"id": 1, "name": "Acme Foods", "contact_email": "quality@acme.test"},
        "supplier": {"id": 2, "name": "PackRight & Sons", "contact_email": "compliance@packright.test"},
        "recipients": ["compliance@packright.test"],
        "extra": {
            "flagged": [{"number": "2.1.2", "question": "List substances", "note": "missing <CAS> number"}],
            "approved_count": 2,
        },
    }
    data.update(overrides)
    return data


class TestPayload:
    def test_payload_snapshots_the_pir(self, db, world, pir_factory):
        request = pir_factory(status=PIRStatus.FLAGGED)

        data = build_payload(db, NotificationType.PIR_STATUS_UPDATE, request, recipient="customer")

        assert data["type"] == "PIR_STATUS_UPDATE"
        assert data["pir"]["status"] == "flagged"
        assert data["pir"]["status_label"] == "Changes Requested"
        assert data["pir"]["product_name"] == "PET tray"
        assert data["recipients"] == ["quality@acme.test"]
        assert data["supplier"]["name"] == "PackRight Supplies"

    def test_recipients_fall_back_to_company_admins(self, db, world):
        world.outsider.contact_email = None
        db.commit()
        assert recipient_emails(db, world.outsider) == ["olly@elsewhere.test"]


class TestDispatcher:
    def test_disabled_dispatcher_queues_nothing(self):
        queued = []
        dispatcher = NotificationDispatcher(enqueue=queued.append, enabled=False)
        assert dispatcher.dispatch(payload()) is None
        assert queued == []

    def test_missing_recipient_is_a_warning(self):
        queued = []
        dispatcher = NotificationDispatcher(enqueue=queued.append, enabled=True)
        warning = dispatcher.dispatch(payload(recipients=[]))
        assert "no contact e-mail" in warning
        assert queued == []

    def test_queue_failure_is_a_warning(self):
        def broken_enqueue(data):
            raise RedisConnectionError("Connection refused")

        dispatcher = NotificationDispatcher(enqueue=broken_enqueue, enabled=True)
        warning = dispatcher.dispatch(payload())
        assert warning.startswith("Notification could not be sent")


class TestRendering:
    def test_one_message_per_recipient(self):
        messages = jobs.render_notification(payload(recipients=["a@x.test", "b@x.test"]))

        assert [m["to"] for m in messages] == ["a@x.test", "b@x.test"]
        assert messages[0]["subject"] == "Review completed for REACH declaration: Changes Requested"
        assert messages[0]["from_email"] == settings.NOTIFICATION_FROM_EMAIL

    def test_body_escapes_user_text(self):
        body = jobs.render_notification(payload())[0]["html_body"]

        assert "PackRight &amp; Sons" in body
        assert "missing &lt;CAS&gt; number" in body
        assert "Approved answers: 2" in body

    def test_status_update_subject(self):
        message = jobs.render_notification(payload(type="PIR_STATUS_UPDATE"))[0]
        assert message["subject"] == "REACH declaration is now Changes Requested"


class TestDelivery:
    def test_without_webhook_nothing_is_sent(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", None)
        assert jobs.send_notification_job(payload()) == 0

    def test_messages_are_posted_to_the_webhook(self, monkeypatch):
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(request)
            return httpx.Response(202)

        real_client = httpx.Client
        monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "https://mail.example.test/send")
        monkeypatch.setattr(
            jobs.httpx, "Client",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
        )

        assert jobs.send_notification_job(payload(recipients=["a@x.test", "b@x.test"])) == 2
        assert [str(r.url) for r in posted] == ["https://mail.example.test/send"] * 2

    def test_webhook_error_fails_the_job(self, monkeypatch):
        real_client = httpx.Client
        monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "https://mail.example.test/send")
        monkeypatch.setattr(
            jobs.httpx, "Client",
            lambda **kwargs: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(500)), **kwargs),
        )

        with pytest.raises(httpx.HTTPStatusError):
            jobs.send_notification_job(payload())
