#!/usr/bin/env python3
"""
OAuth2 / PKCE Token Acquisition

Builds MSAL-compatible authorization requests, walks the silent (iframe
style) authorize redirect chain with the signed-in cookie jar, and exchanges
the resulting authorization code for an access/refresh/id token set.
"""

import base64
import hashlib
import json
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, urljoin

import jwt
import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from .config.auth_config import AuthConfig
from .config.client_profiles import ClientProfile
from .endpoints import OAUTH_REENTRY_URL, OUTLOOK_URL, TENANT_ID
from .exceptions import MissingAuthorizationCodeError, TokenAcquisitionError, TransientError
from .redirects import RedirectDriver
from .session_store import HttpSession
from .utils import base64url_encode, parse_fragment

logger = logging.getLogger(__name__)

# Location markers that end the silent authorize chain
TERMINAL_LOCATION_MARKERS = ('#code', 'interaction_required', 'error=')

TOKEN_CLAIMS = '{"access_token":{"xms_cc":{"values":["CP1"]}}}'

FORM_HEADERS = {'Content-Type': 'application/x-www-form-urlencoded'}


def new_guid() -> str:
    """Random version-4 GUID with RFC 4122 variant bits"""
    return str(uuid.UUID(bytes=secrets.token_bytes(16), version=4))


def generate_pkce_pair() -> Tuple[str, str]:
    """Return (code_verifier, S256 code_challenge)"""
    verifier = base64url_encode(secrets.token_bytes(32))
    challenge = base64url_encode(hashlib.sha256(verifier.encode('ascii')).digest())
    return verifier, challenge


def build_state(prompt: str) -> str:
    """MSAL-style opaque state: base64 JSON with a GUID and interaction type"""
    payload = {
        'id': new_guid(),
        'meta': {'interactionType': 'silent' if prompt == 'none' else 'redirect'},
    }
    return base64.b64encode(json.dumps(payload, separators=(',', ':')).encode('utf-8')).decode('ascii')


@dataclass
class AuthorizationRequest:
    """Authorization URL plus the secrets needed to redeem its code"""
    url: str
    code_verifier: str
    code_challenge: str
    state: str
    nonce: str
    correlation_id: str
    scope: str
    params: Dict[str, str] = field(default_factory=dict)


def build_authorization_request(profile: ClientProfile,
                                login_hint: Optional[str] = None) -> AuthorizationRequest:
    """
    Build an authorization request for ``profile``

    ``login_hint`` and ``X-AnchorMailbox`` are only included when a hint is
    given. Every call produces fresh nonce, state, correlation id and PKCE pair.
    """
    verifier, challenge = generate_pkce_pair()
    nonce = new_guid()
    correlation_id = new_guid()
    state = build_state(profile.prompt)

    params = {
        'client_id': profile.client_id,
        'response_type': 'code',
        'redirect_uri': profile.redirect_uri,
        'scope': profile.scope,
        'state': state,
        'nonce': nonce,
        'prompt': profile.prompt,
        'code_challenge': challenge,
        'code_challenge_method': 'S256',
        'response_mode': profile.response_mode,
        'client-request-id': correlation_id,
        'x-client-SKU': profile.client_sku,
        'x-client-VER': profile.client_version,
        'client_info': '1',
    }
    if login_hint:
        params['login_hint'] = login_hint
        params['X-AnchorMailbox'] = f"UPN:{login_hint}"

    return AuthorizationRequest(
        url=f"{profile.authorize_url}?{urlencode(params)}",
        code_verifier=verifier,
        code_challenge=challenge,
        state=state,
        nonce=nonce,
        correlation_id=correlation_id,
        scope=profile.scope,
        params=params,
    )


def mailbox_from_id_token(id_token: str) -> str:
    """Derive the ``PUID@tenant`` mailbox anchor from an id_token"""
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TokenAcquisitionError(f"Could not decode id_token: {e}", step='oauth') from e

    puid = claims.get('puid')
    if not puid:
        raise TokenAcquisitionError("id_token carries no puid claim", step='oauth')
    return f"{puid}@{TENANT_ID}"


@dataclass
class TokenSet:
    """Mail API token set as stored in session metadata"""
    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: int = 0
    mailbox_value: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_token_response(cls, data: Dict[str, Any],
                            now_ms: Optional[int] = None) -> 'TokenSet':
        """Build from a token endpoint answer, stamping the absolute expiry"""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        expires_in = int(data.get('expires_in') or 0)
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            id_token=data.get('id_token'),
            expires_in=expires_in,
            expires_at=now_ms + expires_in * 1000,
        )

    @classmethod
    def from_session(cls, session: HttpSession) -> Optional['TokenSet']:
        """Load the stored token set, or None if incomplete"""
        stored = session.get_metadata('outlookTokens')
        if not isinstance(stored, dict) or not stored.get('access_token'):
            return None
        return cls(
            access_token=stored['access_token'],
            refresh_token=stored.get('refresh_token'),
            id_token=stored.get('id_token'),
            expires_in=int(stored.get('expires_in') or 0),
            mailbox_value=session.get_metadata('mailboxValue'),
            expires_at=session.get_metadata('outlookTokensExpiry'),
        )

    def to_metadata(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'id_token': self.id_token,
            'expires_in': self.expires_in,
        }

    def save_to(self, session: HttpSession):
        """Write tokens, mailbox anchor and expiry into session metadata"""
        session.set_metadata('outlookTokens', self.to_metadata())
        if self.mailbox_value:
            session.set_metadata('mailboxValue', self.mailbox_value)
        if self.expires_at is not None:
            session.set_metadata('outlookTokensExpiry', self.expires_at)


class OAuthTokenAcquirer:
    """Obtains mail API tokens for an already signed-in session"""

    def __init__(self, session: HttpSession, driver: RedirectDriver,
                 config: Optional[AuthConfig] = None, profile_name: str = 'outlook',
                 clock: Callable[[], float] = time.time):
        self.session = session
        self.driver = driver
        self.config = config or AuthConfig()
        self.profile = self.config.get_client_profile(profile_name)
        self._clock = clock

    def acquire(self, login_hint: Optional[str] = None, prime: bool = True) -> TokenSet:
        """
        Run the full acquisition: prime the mail site, authorize silently,
        redeem the code and derive the mailbox anchor

        A missing code triggers one silent re-entry and one more attempt.

        Raises:
            TokenAcquisitionError: If no token set could be obtained
        """
        if prime:
            logger.debug("Priming Outlook session")
            response = self.session.get(OUTLOOK_URL, step='oauth')
            self.driver.drive(response)

        def attempt() -> TokenSet:
            request, location = self.silent_authorize(self.profile, login_hint)
            code = self.extract_code(location)
            return self.exchange_code(request, code)

        retrying = Retrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(MissingAuthorizationCodeError),
            before_sleep=lambda _retry_state: self._reenter(),
            reraise=True,
        )
        tokens = retrying(attempt)
        tokens.mailbox_value = mailbox_from_id_token(tokens.id_token or '')
        logger.info("Acquired Outlook tokens")
        return tokens

    def silent_authorize(self, profile: ClientProfile,
                         login_hint: Optional[str] = None) -> Tuple[AuthorizationRequest, Optional[str]]:
        """
        Follow at most ``max_silent_hops`` authorize redirects as an iframe would

        Returns:
            (request, final Location header or None)
        """
        request = build_authorization_request(profile, login_hint)
        headers = {
            'Referer': profile.origin.rstrip('/') + '/',
            'Sec-Fetch-Dest': 'iframe',
            'Sec-Fetch-Site': 'cross-site',
        }

        current_url = request.url
        for _ in range(self.config.max_silent_hops):
            response = self.session.get(current_url, headers=headers,
                                        raise_for_status=False, step='oauth')
            if response.status_code >= 500:
                raise TransientError(f"Authorize endpoint returned {response.status_code}", step='oauth')

            location = response.headers.get('Location')
            if not location or any(marker in location for marker in TERMINAL_LOCATION_MARKERS):
                return request, location
            current_url = urljoin(current_url, location)

        raise MissingAuthorizationCodeError("No final response in OAuth flow", step='oauth')

    def extract_code(self, location: Optional[str]) -> str:
        """Pull the authorization code out of the final redirect"""
        if not location:
            raise MissingAuthorizationCodeError("Authorize chain ended without a redirect", step='oauth')

        params = parse_fragment(location)
        code = params.get('code')
        if not code:
            error = params.get('error', 'no code')
            raise MissingAuthorizationCodeError(
                f"Could not extract authorization code: {error}", step='oauth',
                details={'error': error, 'error_description': params.get('error_description')}
            )
        return code

    def exchange_code(self, request: AuthorizationRequest, code: str) -> TokenSet:
        """Redeem an authorization code with its PKCE verifier"""
        data = {
            'client_id': self.profile.client_id,
            'scope': request.scope,
            'redirect_uri': self.profile.redirect_uri,
            'grant_type': 'authorization_code',
            'code': code,
            'code_verifier': request.code_verifier,
            'client_info': '1',
            'client-request-id': request.correlation_id,
            'x-client-SKU': self.profile.client_sku,
            'x-client-VER': self.profile.client_version,
            'x-ms-lib-capability': 'retry-after, h429',
            'x-client-current-telemetry': '5|863,0,,,|,',
            'x-client-last-telemetry': '5|0|||0,0',
            'claims': TOKEN_CLAIMS,
        }
        return self._token_request(data)

    def refresh(self, refresh_token: str) -> TokenSet:
        """Redeem a refresh token for a new token set"""
        data = {
            'client_id': self.profile.client_id,
            'scope': self.profile.scope,
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        }
        return self._token_request(data)

    def _token_request(self, data: Dict[str, str]) -> TokenSet:
        headers = dict(FORM_HEADERS)
        headers['Origin'] = self.profile.origin
        response = self.session.post(self.profile.token_url, data=data, headers=headers,
                                     raise_for_status=False, step='oauth')
        if response.status_code >= 500:
            raise TransientError(f"Token endpoint returned {response.status_code}", step='oauth')

        payload = self._json(response)
        if response.status_code != 200 or not payload.get('access_token'):
            description = payload.get('error_description') or payload.get('error') or response.status_code
            raise TokenAcquisitionError(f"Token request failed: {description}", step='oauth',
                                        details={'grant_type': data['grant_type']})

        return TokenSet.from_token_response(payload, now_ms=int(self._clock() * 1000))

    def _reenter(self):
        logger.info("No authorization code, re-entering sign-in silently")
        response = self.session.get(OAUTH_REENTRY_URL, step='oauth')
        self.driver.drive(response)

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
