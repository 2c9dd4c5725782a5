from models.notification import Notification
from services import notifier


class _RecordingExecutor:
    def __init__(self):
        self.calls = []

    def submit(self, fn, *args):
        self.calls.append((fn, args))


def test_email_is_handed_to_worker_when_async(app, world, no_email, monkeypatch):
    executor = _RecordingExecutor()
    monkeypatch.setattr(notifier, "_executor", executor)
    app.config["EMAIL_ASYNC"] = True

    notifier.notify(world.customer.id, "Booking Confirmed", "See you soon.")

    # stored right away, mailed later
    assert Notification.query.filter_by(receiver_id=world.customer.id, title="Booking Confirmed").count() == 1
    assert no_email == []
    assert len(executor.calls) == 1

    fn, args = executor.calls[0]
    fn(*args)
    assert no_email == ["asha@example.com"]


def test_email_sent_inline_when_async_is_off(app, world, no_email, monkeypatch):
    executor = _RecordingExecutor()
    monkeypatch.setattr(notifier, "_executor", executor)

    notifier.notify(world.customer.id, "Booking Confirmed", "See you soon.")
    assert executor.calls == []
    assert no_email == ["asha@example.com"]


def test_in_app_only_notification_skips_email(world, no_email):
    notifier.notify(world.customer.id, "Heads up", "No mail for this one.", email=False)
    assert no_email == []
    assert Notification.query.filter_by(receiver_id=world.customer.id).count() == 1
