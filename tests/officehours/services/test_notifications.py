from datetime import date, time

import pytest
from sqlalchemy.exc import OperationalError

from officehours.models.notification import Notification
from officehours.services import notifications


def test_format_helpers_render_short_date_and_clock() -> None:
    assert notifications.format_day(date(2030, 6, 5)) == 'Jun 5'
    assert notifications.format_clock(time(9, 5)) == '09:05'


def test_inbox_lists_unread_and_marks_read(db, make_user) -> None:
    user = make_user()
    other = make_user()
    first = notifications.notify(db, user.id, 'test', 'First', 'one')
    notifications.notify(db, user.id, 'test', 'Second', 'two')
    notifications.notify(db, other.id, 'test', 'Elsewhere', 'three')

    assert notifications.count_unread(db, user.id) == 2
    assert notifications.mark_read(db, user.id, first.id) is True
    assert notifications.mark_read(db, other.id, first.id) is False
    assert [item.title for item in notifications.list_notifications(db, user.id)] == ['Second']
    assert len(notifications.list_notifications(db, user.id, include_read=True)) == 2

    assert notifications.mark_all_read(db, user.id) == 1
    assert notifications.count_unread(db, user.id) == 0
    assert notifications.count_unread(db, other.id) == 1


def test_notify_swallows_storage_errors(db, make_user, monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    user = make_user()

    def failing_commit():
        raise OperationalError('INSERT', {}, Exception('disk full'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    assert notifications.notify(db, user.id, 'test', 'Title', 'Body') is None
    assert 'Failed to store test notification' in caplog.text
    monkeypatch.undo()
    assert db.query(Notification).count() == 0


def test_waitlist_notification_for_missing_slot_is_skipped(db, make_user) -> None:
    assert notifications.notify_waitlist_spot_available(db, make_user().id, 999) is None
