"""
Unit tests for recovery mailbox passcode retrieval
"""
import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from msauth.endpoints import OWA_SERVICE_URL, OWA_STARTUP_URL
from msauth.exceptions import MissingRecoverySessionError, OtpFetchError, OtpTimeoutError, TransientError
from msauth.otp_fetcher import (
    METHOD_CONVERSATION, METHOD_STARTUP, EmailSummary, OtpFetcher, OutlookMailClient,
    create_otp_fetcher_from_cookie_jar, parse_delivery_time
)
from msauth.session_store import HttpSession

from conftest import make_response

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
SECURITY_SENDER = 'account-security-noreply@accountprotection.microsoft.com'
FIND_CONVERSATION_URL = f"{OWA_SERVICE_URL}?action=FindConversation"


def conversation(code, age_seconds, subject='Microsoft account security code', sender=SECURITY_SENDER):
    return {
        'ConversationTopic': subject,
        'LastSender': {'Mailbox': {'EmailAddress': sender}},
        'LastDeliveryTime': (NOW - timedelta(seconds=age_seconds)).isoformat(),
        'Preview': f'Please use the following security code for the Microsoft account re*****@mail.com. '
                   f'Security code: {code}',
    }


def snapshot(conversations, folder_id='inbox-folder'):
    body = {'Conversations': conversations}
    if folder_id:
        body['FolderId'] = {'Id': folder_id}
    return {'findConversation': {'Body': body}}


class FakeClock:
    """Clock that only moves when the fetcher sleeps"""

    def __init__(self, start):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def client():
    return OutlookMailClient('mail-token', '0003ABC@tenant', session=HttpSession(timeout=5),
                             clock=lambda: NOW.timestamp())


@pytest.fixture
def fetcher(client):
    return OtpFetcher(client, sleep=Mock(), clock=lambda: NOW.timestamp())


class TestEmailSummary:
    """Test conversation parsing"""

    def test_missing_delivery_time(self):
        assert EmailSummary.from_conversation({'ConversationTopic': 'x'}) is None

    def test_naive_time_is_utc(self):
        assert parse_delivery_time('2026-01-01T12:00:00').tzinfo == timezone.utc

    def test_security_email_needs_subject_and_sender(self):
        assert EmailSummary.from_conversation(conversation('1234', 10)).is_security_email()
        assert not EmailSummary.from_conversation(
            conversation('1234', 10, sender='news@shop.example')).is_security_email()
        assert not EmailSummary.from_conversation(
            conversation('1234', 10, subject='Your order')).is_security_email()


class TestOtpFetcher:
    """Test one poll against the mail API"""

    def test_code_from_startup_snapshot(self, server, fetcher):
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot([conversation('482913', 30)])))

        result = fetcher.find_otp()

        assert result.code == '482913'
        assert result.method == METHOD_STARTUP
        assert server.urls() == [OWA_STARTUP_URL]
        _, _, kwargs = server.calls[0]
        assert kwargs['headers']['Authorization'] == 'MSAuth1.0 usertoken="mail-token", type="MSACT"'
        assert kwargs['headers']['X-Anchormailbox'] == 'PUID:0003ABC@tenant'
        assert kwargs['headers']['Action'] == 'FindConversation'

    def test_code_from_conversation_list(self, server, fetcher):
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot([])))
        server.add('POST', FIND_CONVERSATION_URL,
                   make_response(json_data={'Body': {'Conversations': [conversation('551002', 20)]}}))

        result = fetcher.find_otp()

        assert result.code == '551002'
        assert result.method == METHOD_CONVERSATION
        _, _, kwargs = server.calls[1]
        request_body = json.loads(kwargs['headers']['X-Owa-Urlpostdata'])
        assert request_body['Body']['Paging']['MaxEntriesReturned'] == 15

    def test_stale_email_rejected(self, server, fetcher):
        stale = [conversation('111111', 600)]
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot(stale)))
        server.add('POST', FIND_CONVERSATION_URL, make_response(json_data={'Body': {'Conversations': stale}}))

        assert fetcher.find_otp(max_age=300) is None

    def test_newest_code_wins(self, server, fetcher):
        conversations = [conversation('111111', 120), conversation('222222', 10)]
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot(conversations)))

        assert fetcher.find_otp().code == '222222'

    def test_code_is_not_returned_twice(self, server, fetcher):
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot([conversation('482913', 30)])))
        server.add('POST', FIND_CONVERSATION_URL, make_response(json_data={'Body': {'Conversations': []}}))

        assert fetcher.find_otp().code == '482913'
        assert fetcher.find_otp() is None

    def test_inbox_lookup_when_snapshot_has_no_folder(self, server, fetcher):
        server.add('POST', OWA_STARTUP_URL, make_response(json_data=snapshot([], folder_id=None)))
        server.add('POST', f"{OWA_SERVICE_URL}?action=GetFolder", make_response(json_data={
            'Body': {'ResponseMessages': {'Items': [{'Folders': [{'FolderId': {'Id': 'inbox-1'}}]}]}}
        }))
        server.add('POST', FIND_CONVERSATION_URL,
                   make_response(json_data={'Body': {'Conversations': [conversation('7781', 5)]}}))

        assert fetcher.find_otp().code == '7781'

    def test_rejected_token(self, server, fetcher):
        server.add('POST', OWA_STARTUP_URL, make_response(401))

        with pytest.raises(OtpFetchError):
            fetcher.find_otp()


class TestWaitForOtp:
    """Test polling until a code arrives"""

    @pytest.fixture
    def mock_client(self):
        client = Mock(spec=OutlookMailClient)
        client.startup_snapshot.return_value = {}
        client.get_folder_ids.return_value = None
        return client

    def test_timeout_reports_attempts(self, mock_client):
        clock = FakeClock(NOW.timestamp())
        fetcher = OtpFetcher(mock_client, sleep=clock.sleep, clock=clock)

        with pytest.raises(OtpTimeoutError) as exc_info:
            fetcher.wait_for_otp(timeout=10, poll_interval=5, initial_delay=0)

        assert exc_info.value.attempts == 2
        assert clock.sleeps == [5, 5]

    def test_transient_poll_failure_is_retried(self, mock_client):
        clock = FakeClock(NOW.timestamp())
        mock_client.startup_snapshot.side_effect = [
            TransientError("mail API down"),
            snapshot([conversation('482913', 30)]),
        ]
        fetcher = OtpFetcher(mock_client, sleep=clock.sleep, clock=clock)

        result = fetcher.wait_for_otp(timeout=60, poll_interval=5, initial_delay=2)

        assert result.code == '482913'
        assert clock.sleeps == [2, 5]

    def test_result_to_dict(self, mock_client):
        mock_client.startup_snapshot.return_value = snapshot([conversation('482913', 30)])
        fetcher = OtpFetcher(mock_client, sleep=Mock(), clock=lambda: NOW.timestamp())

        data = fetcher.wait_for_otp(initial_delay=0).to_dict()

        assert data['otp'] == '482913'
        assert data['method'] == METHOD_STARTUP
        assert len(data['email']['preview']) <= 200


class TestFetcherFactories:
    """Test building fetchers from stored sessions"""

    def test_cookie_jar_without_tokens(self):
        jar = HttpSession().export_cookie_jar()

        with pytest.raises(MissingRecoverySessionError):
            create_otp_fetcher_from_cookie_jar(jar)

    def test_cookie_jar_with_tokens(self):
        session = HttpSession()
        session.set_metadata('outlookTokens', {'access_token': 'mail-token'})
        session.set_metadata('mailboxValue', '0003ABC@tenant')

        fetcher = create_otp_fetcher_from_cookie_jar(session.export_cookie_jar())

        assert fetcher.client.access_token == 'mail-token'
        assert fetcher.client.mailbox_value == '0003ABC@tenant'
