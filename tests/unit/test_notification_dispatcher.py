from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from commerce.notifications.dispatcher import NotificationDispatcher
from commerce.notifications.emails import order_confirmation
from fakes import RecordingMailer, RecordingPublisher


def test_emit_and_email_counted():
    publisher, mailer = RecordingPublisher(), RecordingMailer()
    d = NotificationDispatcher(publisher=publisher, mailer=mailer)

    d.emit("order.created", {"orderId": "o1"}, key="o1")
    d.send_email("a@b.io", "Sujet", "<p>x</p>")

    assert publisher.events == [("order.created", {"orderId": "o1"}, "o1")]
    assert mailer.sent == [("a@b.io", "Sujet", "<p>x</p>")]
    assert d.stats() == {"events.sent": 1, "emails.sent": 1}


def test_failures_never_raise():
    publisher, mailer = RecordingPublisher(), RecordingMailer()
    publisher.fail = mailer.fail = True
    d = NotificationDispatcher(publisher=publisher, mailer=mailer)

    d.emit("order.created", {"orderId": "o1"})
    d.send_email("a@b.io", "Sujet", "<p>x</p>")

    assert d.stats() == {"events.failed": 1, "emails.failed": 1}


def test_missing_channels_are_skipped():
    d = NotificationDispatcher()
    d.emit("order.created", {})
    d.send_email("a@b.io", "s", "h")
    assert d.stats() == {"events.skipped": 1, "emails.skipped": 1}


def test_email_without_recipient_skipped():
    mailer = RecordingMailer()
    d = NotificationDispatcher(mailer=mailer)
    d.send_email(None, "s", "h")
    assert mailer.sent == []
    assert d.stats()["emails.skipped"] == 1


def test_request_invoice_payload():
    publisher = RecordingPublisher()
    NotificationDispatcher(publisher=publisher).request_invoice("o1", "u1")
    topic, payload, key = publisher.events[0]
    assert topic == "invoice.generate"
    assert key == "o1"
    assert payload["orderId"] == "o1"
    assert payload["userId"] == "u1"
    assert payload["generatedAt"]


def test_executor_runs_in_background_and_shutdown_flushes():
    publisher = MagicMock()
    d = NotificationDispatcher(publisher=publisher, executor=ThreadPoolExecutor(max_workers=1))

    d.emit("cart.updated", {"userId": "u1"}, key="u1")
    d.shutdown()

    publisher.publish.assert_called_once_with("cart.updated", {"userId": "u1"}, key="u1")
    publisher.flush.assert_called_once()
    assert d.stats() == {"events.sent": 1}


def test_order_confirmation_email():
    order = {"id": "o1", "total_amount": "25.00", "payment_mode": "cod", "shipping_address": {"city": "Paris"}}
    items = [{"product_id": "prod-1", "quantity": 2, "unit_price": "10.00", "total_price": "20.00"}]
    subject, html = order_confirmation(order, items)
    assert "o1" in subject
    assert "prod-1" in html
    assert "25.00" in html
