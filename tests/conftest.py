"""
Test configuration and shared fixtures for msauth tests
"""
import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import requests
from requests.structures import CaseInsensitiveDict

from msauth.credential_manager import Credentials
from msauth.session_store import HttpSession

TEST_EMAIL = 'user@outlook.com'
TEST_PASSWORD = 'hunter2'
SECURITY_SENDER = 'account-security-noreply@accountprotection.microsoft.com'


def make_response(status=200, text='', url=None, headers=None, json_data=None):
    """Build a real requests.Response without touching the network"""
    response = requests.Response()
    response.status_code = status
    headers = dict(headers or {})
    if json_data is not None:
        text = json.dumps(json_data)
        headers.setdefault('Content-Type', 'application/json')
    response._content = text.encode('utf-8')
    response.encoding = 'utf-8'
    response.headers = CaseInsensitiveDict(headers)
    response.url = url
    return response


def redirect(location, status=302):
    return make_response(status=status, headers={'Location': location})


def server_data_page(data, title='Sign in to your Microsoft account', extra=''):
    """Login page carrying a ServerData block"""
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<script>var ServerData = {json.dumps(data)};</script>{extra}"
        f"</body></html>"
    )


def ppft_tag(token):
    return f'<input type="hidden" name="PPFT" id="i0327" value="{token}"/>'


def security_email_snapshot(code, age_seconds=30):
    """Mailbox startup data holding one recent security code email"""
    delivered = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
    conversation = {
        'ConversationTopic': 'Microsoft account security code',
        'LastSender': {'Mailbox': {'EmailAddress': SECURITY_SENDER}},
        'LastDeliveryTime': delivered.isoformat(),
        'Preview': f'Please use the following security code for the Microsoft account. Security code: {code}',
    }
    return {'findConversation': {'Body': {'Conversations': [conversation], 'FolderId': {'Id': 'inbox'}}}}


class FakeServer:
    """Routes patched requests.Session.request calls to canned responses"""

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, url, *responses):
        """
        Register responses for a route. URLs ending in ``*`` match by prefix.
        Responses are served in order; the last one repeats.
        """
        self.routes.append((method, url, list(responses)))

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for route_method, route_url, responses in self.routes:
            if route_method != method:
                continue
            if route_url.endswith('*'):
                matched = url.startswith(route_url[:-1])
            else:
                matched = url == route_url
            if matched:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if callable(response):
                    response = response(method, url, kwargs)
                if response.url is None:
                    response.url = url
                return response
        raise AssertionError(f"Unexpected request: {method} {url}")

    def urls(self, method=None):
        return [url for call_method, url, _ in self.calls if method in (None, call_method)]


@pytest.fixture
def server():
    """Fake HTTP endpoint patched under every HttpSession"""
    fake = FakeServer()
    with patch.object(requests.Session, 'request', side_effect=fake):
        yield fake


@pytest.fixture
def credentials():
    return Credentials(TEST_EMAIL, TEST_PASSWORD)


@pytest.fixture
def http_session():
    return HttpSession(timeout=5)


@pytest.fixture
def initial_page():
    """Entry page with a flow token and post URL"""
    return server_data_page({
        'sFTTag': ppft_tag('initial-token'),
        'urlPost': 'https://login.live.com/ppsecure/post.srf?uaid=1',
    })


@pytest.fixture
def kmsi_page():
    """"Stay signed in?" page"""
    return server_data_page({
        'sSigninName': TEST_EMAIL,
        'sFT': 'kmsi-token',
        'urlPost': 'https://login.live.com/ppsecure/kmsi.srf',
    }, title='Stay signed in?')


@pytest.fixture
def account_home_page():
    return "<html><head><title>Microsoft account | Home</title></head><body><h1>Welcome</h1></body></html>"


@pytest.fixture
def sample_html_pages():
    """Interstitial pages seen during sign-in"""
    return {
        'add_proof': """
        <html>
            <head><title>Let's protect your account</title></head>
            <body>
                <form id="frmAddProof" method="post" action="/proofs/Add?mkt=en-US">
                    <input type="hidden" name="canary" value="add-canary">
                    <input type="email" name="EmailAddress">
                </form>
            </body>
        </html>
        """,
        'verify_proof': """
        <html>
            <head><title>Enter the code we sent to re*****@mail.com</title></head>
            <body>
                <form id="frmVerifyProof" method="post" action="https://account.live.com/proofs/Verify">
                    <input type="hidden" name="canary" value="verify-canary">
                    <input type="text" name="iOttText">
                </form>
            </body>
        </html>
        """,
        'terms_auto_submit': """
        <html>
            <head><title>Working...</title></head>
            <body onload="javascript:DoSubmit();">
                <form name="fmHF" id="fmHF" method="post" action="https://account.live.com/tou/accrue?mkt=en-US">
                    <input type="hidden" name="pprid" value="abc">
                    <input type="hidden" name="ipt" value="def">
                </form>
            </body>
        </html>
        """,
        'object_moved': """
        <html>
            <head><title>Object moved</title></head>
            <body><h2>Object moved to <a href="/owa/landing">here</a>.</h2></body>
        </html>
        """,
        'privacy_notice': """
        <html>
            <head><title>Microsoft account</title></head>
            <body>
                <form name="fmHF" id="fmHF" method="post"
                      action="https://privacynotice.account.microsoft.com/notice?ru=https%3A%2F%2Flogin.live.com%2Fppsecure%2Fpost.srf%3Fcontinue%3D1">
                    <input type="hidden" name="correlation_id" value="corr-1">
                    <input type="hidden" name="code" value="notice-code">
                </form>
            </body>
        </html>
        """,
        'ucis_page': """
        <html>
            <head><title>A quick note about your Microsoft account</title></head>
            <body>
                <script type="text/javascript">
                    var ucis = ucis || {};
                    ucis.ClientId = 'client-1';
                    ucis.CorrelationId = 'corr-1';
                    ucis.SerializedEncryptionData = 'enc-data';
                    ucis.ModelVersion = '1.0';
                    ucis.NoticeId = 'notice-7';
                    ucis.UserId = 'user-9';
                </script>
            </body>
        </html>
        """,
    }
