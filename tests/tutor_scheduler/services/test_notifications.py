import asyncio
import time

import pytest
import resend

from tutor_scheduler.services import notifications
from tutor_scheduler.services.email_templates import render
from tutor_scheduler.services.notifications import (
    BOOKING_ADMIN_NOTICE,
    BOOKING_CONFIRMATION,
    ResendNotificationDispatcher,
)

CONTEXT = {
    'business_name': 'Test School',
    'support_email': 'support@example.com',
    'name': '<script>alert(1)</script>',
    'email': 'hanako@example.com',
    'phone': None,
    'company': 'Sato & Sons',
    'message': 'See you <b>soon</b>',
    'date_label': 'Monday, January 05, 2026',
    'time_label': '10:00',
    'duration_minutes': 60,
    'meeting_url': 'https://meet.google.com/abc-defg-hij',
    'event_id': 'evt-1',
}


def test_confirmation_escapes_requester_values() -> None:
    subject, html = render(BOOKING_CONFIRMATION, CONTEXT)

    assert subject == '[Test School] Your consultation is booked'
    assert '<script>' not in html
    assert '&lt;script&gt;' in html
    assert 'https://meet.google.com/abc-defg-hij' in html
    assert '10:00 (60 minutes)' in html


def test_admin_notice_lists_booking_details() -> None:
    subject, html = render(BOOKING_ADMIN_NOTICE, CONTEXT)

    assert subject.startswith('[New booking] ')
    assert 'Sato &amp; Sons' in html
    assert 'See you &lt;b&gt;soon&lt;/b&gt;' in html
    assert 'evt-1' in html
    assert 'Phone' not in html


def test_unknown_template_is_rejected() -> None:
    with pytest.raises(ValueError):
        render('reminder', CONTEXT)


def test_missing_api_key_is_reported_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(resend.Emails, 'send', lambda params: calls.append(params))
    dispatcher = ResendNotificationDispatcher(api_key='')

    result = asyncio.run(dispatcher.send('hanako@example.com', BOOKING_CONFIRMATION, CONTEXT))

    assert not result.success
    assert result.error == 'RESEND_API_KEY is not set'
    assert calls == []


def test_send_through_resend(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def fake_send(params):
        calls.append(params)
        return {'id': 'email-1'}

    monkeypatch.setattr(resend.Emails, 'send', fake_send)
    dispatcher = ResendNotificationDispatcher(api_key='re_test', from_email='School <noreply@example.com>')

    result = asyncio.run(dispatcher.send('hanako@example.com', BOOKING_CONFIRMATION, CONTEXT))

    assert result.success
    assert calls[0]['to'] == ['hanako@example.com']
    assert calls[0]['from'] == 'School <noreply@example.com>'
    assert calls[0]['subject'] == '[Test School] Your consultation is booked'


def test_provider_error_is_reported_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_send(params):
        raise RuntimeError('domain not verified')

    monkeypatch.setattr(resend.Emails, 'send', failing_send)
    dispatcher = ResendNotificationDispatcher(api_key='re_test')

    result = asyncio.run(dispatcher.send('admin@example.com', BOOKING_ADMIN_NOTICE, CONTEXT))

    assert not result.success
    assert result.error == 'domain not verified'


def test_slow_provider_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(resend.Emails, 'send', lambda params: time.sleep(0.2))
    dispatcher = ResendNotificationDispatcher(api_key='re_test', timeout_seconds=0.01)

    result = asyncio.run(dispatcher.send('admin@example.com', BOOKING_ADMIN_NOTICE, CONTEXT))

    assert not result.success
    assert result.error == 'timeout'


def test_module_dispatcher_is_shared() -> None:
    assert notifications.get_notification_dispatcher() is notifications.notification_dispatcher
