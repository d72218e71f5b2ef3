"""
Unit tests for OAuth/PKCE token acquisition
"""
import base64
import hashlib
import json
import uuid
import pytest
from urllib.parse import parse_qs, urlparse

from msauth.config.auth_config import AuthConfig
from msauth.endpoints import OAUTH_REENTRY_URL, OUTLOOK_URL, TENANT_ID
from msauth.exceptions import MissingAuthorizationCodeError, TokenAcquisitionError, TransientError
from msauth.oauth import (
    OAuthTokenAcquirer, TokenSet, build_authorization_request, build_state,
    generate_pkce_pair, mailbox_from_id_token, new_guid
)
from msauth.redirects import RedirectDriver
from msauth.resolver import RedirectResolver
from msauth.utils import base64url_encode

from conftest import make_response, redirect

AUTHORIZE_URL = 'https://login.microsoftonline.com/consumers/oauth2/v2.0/authorize'
TOKEN_ENDPOINT = 'https://login.microsoftonline.com/consumers/oauth2/v2.0/token'


def make_id_token(claims):
    body = base64url_encode(json.dumps(claims).encode('utf-8'))
    return f"eyJhbGciOiJub25lIn0.{body}.sig"


def token_response(**overrides):
    data = {
        'access_token': 'access-1',
        'refresh_token': 'refresh-1',
        'id_token': make_id_token({'puid': '00037FFE1234'}),
        'expires_in': 3600,
    }
    data.update(overrides)
    return make_response(json_data=data)


@pytest.fixture
def outlook_profile():
    return AuthConfig().get_client_profile('outlook')


@pytest.fixture
def acquirer(http_session):
    driver = RedirectDriver(http_session, RedirectResolver())
    return OAuthTokenAcquirer(http_session, driver, clock=lambda: 1000.0)


class TestPkce:
    """Test request building helpers"""

    def test_challenge_matches_verifier(self):
        verifier, challenge = generate_pkce_pair()
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip('=')

        assert challenge == expected
        assert '=' not in verifier
        assert 43 <= len(verifier) <= 128

    def test_pairs_are_fresh(self):
        assert generate_pkce_pair() != generate_pkce_pair()

    def test_guid_is_version_4(self):
        value = uuid.UUID(new_guid())

        assert value.version == 4
        assert value.variant == uuid.RFC_4122

    def test_state_encodes_interaction_type(self):
        decoded = json.loads(base64.b64decode(build_state('none')))

        assert decoded['meta']['interactionType'] == 'silent'
        assert uuid.UUID(decoded['id']).version == 4

    def test_login_hint_included(self, outlook_profile):
        request = build_authorization_request(outlook_profile, login_hint='user@outlook.com')
        params = parse_qs(urlparse(request.url).query)

        assert request.url.startswith(AUTHORIZE_URL)
        assert params['login_hint'] == ['user@outlook.com']
        assert params['X-AnchorMailbox'] == ['UPN:user@outlook.com']
        assert params['code_challenge_method'] == ['S256']
        assert params['code_challenge'] == [request.code_challenge]
        assert params['prompt'] == ['none']

    def test_login_hint_omitted(self, outlook_profile):
        request = build_authorization_request(outlook_profile)
        params = parse_qs(urlparse(request.url).query)

        assert 'login_hint' not in params
        assert 'X-AnchorMailbox' not in params

    def test_requests_do_not_share_secrets(self, outlook_profile):
        first = build_authorization_request(outlook_profile)
        second = build_authorization_request(outlook_profile)

        assert first.nonce != second.nonce
        assert first.state != second.state
        assert first.code_verifier != second.code_verifier


class TestTokenSet:
    """Test token set bookkeeping"""

    def test_expiry_is_absolute(self):
        tokens = TokenSet.from_token_response({'access_token': 'a', 'expires_in': 60}, now_ms=5000)

        assert tokens.expires_at == 65000

    def test_save_and_load(self, http_session):
        tokens = TokenSet('a', refresh_token='r', id_token='i', expires_in=60,
                          mailbox_value='m@t', expires_at=123)
        tokens.save_to(http_session)

        loaded = TokenSet.from_session(http_session)

        assert loaded == tokens
        assert http_session.get_metadata('outlookTokensExpiry') == 123

    def test_mailbox_from_id_token(self):
        assert mailbox_from_id_token(make_id_token({'puid': 'ABC'})) == f"ABC@{TENANT_ID}"

    def test_mailbox_without_puid(self):
        with pytest.raises(TokenAcquisitionError):
            mailbox_from_id_token(make_id_token({'sub': 'x'}))


class TestAcquirer:
    """Test the silent authorize chain and token exchange"""

    def test_extract_code(self, acquirer):
        location = 'https://outlook.live.com/mail/oauthRedirect.html#code=M.C1_abc&state=xyz'

        assert acquirer.extract_code(location) == 'M.C1_abc'

    def test_extract_code_reports_error(self, acquirer):
        location = 'https://outlook.live.com/mail/oauthRedirect.html#error=interaction_required&error_description=x'

        with pytest.raises(MissingAuthorizationCodeError) as exc_info:
            acquirer.extract_code(location)

        assert exc_info.value.details['error'] == 'interaction_required'

    def test_silent_authorize_uses_iframe_headers(self, server, acquirer, outlook_profile):
        final = 'https://outlook.live.com/mail/oauthRedirect.html#code=abc'
        server.add('GET', AUTHORIZE_URL + '*', redirect(final))

        request, location = acquirer.silent_authorize(outlook_profile, 'user@outlook.com')

        assert location == final
        assert len(server.calls) == 1
        _, _, kwargs = server.calls[0]
        assert kwargs['headers']['Sec-Fetch-Dest'] == 'iframe'
        assert kwargs['headers']['Referer'] == 'https://outlook.live.com/'

    def test_silent_authorize_hop_bound(self, server, acquirer, outlook_profile):
        server.add('GET', AUTHORIZE_URL + '*', redirect(AUTHORIZE_URL + '?hop=1'))

        with pytest.raises(MissingAuthorizationCodeError):
            acquirer.silent_authorize(outlook_profile)

        assert len(server.calls) == 2

    def test_acquire(self, server, acquirer, account_home_page):
        server.add('GET', OUTLOOK_URL, make_response(text=account_home_page))
        server.add('GET', AUTHORIZE_URL + '*',
                   redirect('https://outlook.live.com/mail/oauthRedirect.html#code=the-code'))
        server.add('POST', TOKEN_ENDPOINT, token_response())

        tokens = acquirer.acquire(login_hint='user@outlook.com')

        assert tokens.access_token == 'access-1'
        assert tokens.mailbox_value == f"00037FFE1234@{TENANT_ID}"
        assert tokens.expires_at == 1000 * 1000 + 3600 * 1000
        _, _, kwargs = server.calls[-1]
        assert kwargs['data']['grant_type'] == 'authorization_code'
        assert kwargs['data']['code'] == 'the-code'
        assert kwargs['headers']['Origin'] == 'https://outlook.live.com'

    def test_acquire_reenters_once_without_code(self, server, acquirer, account_home_page):
        server.add('GET', OUTLOOK_URL, make_response(text=account_home_page))
        server.add('GET', OAUTH_REENTRY_URL, make_response(text=account_home_page))
        server.add('GET', AUTHORIZE_URL + '*',
                   redirect('https://outlook.live.com/mail/oauthRedirect.html#error=login_required'),
                   redirect('https://outlook.live.com/mail/oauthRedirect.html#code=second'))
        server.add('POST', TOKEN_ENDPOINT, token_response())

        tokens = acquirer.acquire(prime=False)

        assert tokens.access_token == 'access-1'
        assert OAUTH_REENTRY_URL in server.urls('GET')

    def test_acquire_gives_up_after_second_miss(self, server, acquirer, account_home_page):
        server.add('GET', OAUTH_REENTRY_URL, make_response(text=account_home_page))
        server.add('GET', AUTHORIZE_URL + '*',
                   redirect('https://outlook.live.com/mail/oauthRedirect.html#error=login_required'))

        with pytest.raises(MissingAuthorizationCodeError):
            acquirer.acquire(prime=False)

        assert server.urls('GET').count(OAUTH_REENTRY_URL) == 1

    def test_token_endpoint_rejection(self, server, acquirer):
        server.add('POST', TOKEN_ENDPOINT,
                   make_response(400, json_data={'error': 'invalid_grant', 'error_description': 'expired'}))

        with pytest.raises(TokenAcquisitionError) as exc_info:
            acquirer.refresh('old-refresh')

        assert 'expired' in exc_info.value.message

    def test_token_endpoint_outage_is_transient(self, server, acquirer):
        server.add('POST', TOKEN_ENDPOINT, make_response(503))

        with pytest.raises(TransientError):
            acquirer.refresh('old-refresh')
