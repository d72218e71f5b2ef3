"""
Unit tests for login page classification
"""
import pytest

from msauth.classifier import AuthState, PageDocument, classify, extract_privacy_notice

from conftest import make_response, ppft_tag, server_data_page


class TestClassifier:
    """Test the ordered state rules"""

    def test_initial_page(self, initial_page):
        assert classify(make_response(text=initial_page)) == AuthState.INITIAL_PAGE_OK

    def test_kmsi_page(self, kmsi_page):
        assert classify(make_response(text=kmsi_page)) == AuthState.KMSI_OK

    def test_kmsi_detected_despite_unrelated_markup(self):
        html = server_data_page(
            {'sSigninName': 'user@outlook.com', 'sFT': 'x', 'urlPost': '/kmsi', 'sFTTag': ppft_tag('t')},
            title='Stay signed in?',
            extra='<div class="banner">Learn more about privacy and security</div><a href="/help">Help</a>'
        )

        assert classify(make_response(text=html)) == AuthState.KMSI_OK

    def test_invalid_credentials_wins_over_initial_page(self):
        html = server_data_page({
            'sErrTxt': 'Your account or password is incorrect.',
            'sFTTag': ppft_tag('t'),
            'urlPost': '/post',
        })

        assert classify(make_response(text=html)) == AuthState.INVALID_CREDENTIALS

    def test_locked_wins_over_kmsi(self):
        html = server_data_page({'sSigninName': 'user@outlook.com'},
                                extra='<a href="https://account.live.com/Abuse?mkt=en-US">Unlock</a>')

        assert classify(make_response(text=html)) == AuthState.ACCOUNT_LOCKED

    @pytest.mark.parametrize('marker,state', [
        ('https://account.live.com/identity/confirm', AuthState.REAUTH_NEEDED),
        ('https://account.live.com/interrupt/passkey', AuthState.PASSKEY_INTERRUPT),
        ('https://account.live.com/proofs/Add', AuthState.NEED_TO_ADD_RECOVERY_PROOF),
        ('https://account.live.com/tou/accrue', AuthState.TERMS_UPDATE),
    ])
    def test_body_markers(self, marker, state):
        html = f'<html><body><form action="{marker}"></form></body></html>'

        assert classify(make_response(text=html)) == state

    def test_redirect_to_account_is_already_authenticated(self):
        response = make_response(302, headers={'Location': 'https://account.live.com/proofs/manage'})

        assert classify(response) == AuthState.ALREADY_AUTHENTICATED

    def test_account_home_title(self, account_home_page):
        assert classify(make_response(text=account_home_page)) == AuthState.ALREADY_AUTHENTICATED

    def test_privacy_notice(self, sample_html_pages):
        response = make_response(text=sample_html_pages['privacy_notice'])

        assert classify(response) == AuthState.PRIVACY_NOTICE

    def test_unknown(self):
        assert classify(make_response(text='<html><body>Nothing here</body></html>')) == AuthState.UNKNOWN

    def test_malformed_server_data_is_ignored(self):
        html = '<html><body><script>var ServerData = {broken;</script></body></html>'

        assert classify(make_response(text=html)) == AuthState.UNKNOWN


class TestPrivacyNoticeExtraction:
    """Test consent form extraction"""

    def test_extracts_action_and_hidden_fields(self, sample_html_pages):
        doc = PageDocument.from_response(make_response(text=sample_html_pages['privacy_notice'],
                                                       url='https://login.live.com/ppsecure/post.srf'))

        action, fields = extract_privacy_notice(doc)

        assert action.startswith('https://privacynotice.account.microsoft.com/notice?ru=')
        assert fields == {'correlation_id': 'corr-1', 'code': 'notice-code'}

    def test_missing_form(self):
        doc = PageDocument.from_response(make_response(text='<html></html>'))

        assert extract_privacy_notice(doc) is None
