#!/usr/bin/env python3
"""
Response Classifier

Maps a login-flow response to exactly one :class:`AuthState`. Each state is
recognized by a pure predicate over a :class:`PageDocument`; predicates are
evaluated in a fixed order and the first match wins.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from .endpoints import PRIVACY_NOTICE_HOST
from .utils import extract_hidden_fields, extract_server_data, normalize_url

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class AuthState(Enum):
    """Known login page states"""
    INITIAL_PAGE_OK = 'initial-page-ok'
    KMSI_OK = 'kmsi-ok'
    INVALID_CREDENTIALS = 'invalid-credentials'
    ACCOUNT_LOCKED = 'account-locked'
    REAUTH_NEEDED = 'reauth-needed'
    PASSKEY_INTERRUPT = 'passkey-interrupt'
    PRIVACY_NOTICE = 'privacy-notice'
    NEED_TO_ADD_RECOVERY_PROOF = 'need-to-add-recovery-proof'
    TERMS_UPDATE = 'terms-update'
    ALREADY_AUTHENTICATED = 'already-authenticated'
    UNKNOWN = 'unknown'


# States that end a login attempt with a structured failure
TERMINAL_FAILURE_STATES = frozenset({
    AuthState.INVALID_CREDENTIALS,
    AuthState.ACCOUNT_LOCKED,
    AuthState.REAUTH_NEEDED,
    AuthState.PASSKEY_INTERRUPT,
    AuthState.NEED_TO_ADD_RECOVERY_PROOF,
})


@dataclass
class PageDocument:
    """Normalized view of one response"""
    status: int
    url: str
    location: Optional[str]
    html: str
    soup: BeautifulSoup
    server_data: Dict[str, Any]
    title: str

    @classmethod
    def from_response(cls, response: requests.Response) -> 'PageDocument':
        html = response.text or ''
        soup = BeautifulSoup(html, 'html.parser')
        title_tag = soup.find('title')
        return cls(
            status=response.status_code,
            url=response.url or '',
            location=response.headers.get('Location'),
            html=html,
            soup=soup,
            server_data=extract_server_data(html) or {},
            title=title_tag.get_text(strip=True) if title_tag else '',
        )

    def server_value(self, key: str) -> Any:
        return self.server_data.get(key)


def _redirects_to_account(doc: PageDocument) -> bool:
    return (doc.status in REDIRECT_STATUSES and bool(doc.location)
            and 'account.live.com' in doc.location)


def _incorrect_credentials(doc: PageDocument) -> bool:
    error_text = doc.server_value('sErrTxt')
    return isinstance(error_text, str) and 'incorrect' in error_text.lower()


def _body_contains(marker: str) -> Callable[[PageDocument], bool]:
    def predicate(doc: PageDocument) -> bool:
        return marker in doc.html
    return predicate


def _privacy_notice_form(doc: PageDocument) -> bool:
    form = doc.soup.select_one('form#fmHF')
    return form is not None and PRIVACY_NOTICE_HOST in (form.get('action') or '')


def _has_server_value(key: str) -> Callable[[PageDocument], bool]:
    def predicate(doc: PageDocument) -> bool:
        return bool(doc.server_value(key))
    return predicate


def _account_home_title(doc: PageDocument) -> bool:
    return 'Microsoft account | Home' in doc.title


STATE_RULES: List[Tuple[AuthState, Callable[[PageDocument], bool]]] = [
    (AuthState.ALREADY_AUTHENTICATED, _redirects_to_account),
    (AuthState.INVALID_CREDENTIALS, _incorrect_credentials),
    (AuthState.ACCOUNT_LOCKED, _body_contains('/Abuse')),
    (AuthState.REAUTH_NEEDED, _body_contains('identity/confirm')),
    (AuthState.PASSKEY_INTERRUPT, _body_contains('interrupt/passkey')),
    (AuthState.NEED_TO_ADD_RECOVERY_PROOF, _body_contains('proofs/Add')),
    (AuthState.TERMS_UPDATE, _body_contains('/tou/accrue')),
    (AuthState.PRIVACY_NOTICE, _privacy_notice_form),
    (AuthState.KMSI_OK, _has_server_value('sSigninName')),
    (AuthState.INITIAL_PAGE_OK, _has_server_value('sFTTag')),
    (AuthState.ALREADY_AUTHENTICATED, _account_home_title),
]


def classify_document(doc: PageDocument) -> AuthState:
    """Classify an already parsed page"""
    for state, predicate in STATE_RULES:
        if predicate(doc):
            return state
    return AuthState.UNKNOWN


def classify(response: requests.Response) -> AuthState:
    """Classify a response into exactly one AuthState"""
    return classify_document(PageDocument.from_response(response))


def extract_privacy_notice(doc: PageDocument) -> Optional[Tuple[str, Dict[str, str]]]:
    """Action URL and hidden fields of the privacy notice form, if present"""
    form = doc.soup.select_one('form#fmHF')
    if form is None or not form.get('action'):
        return None
    return normalize_url(form['action'], doc.url or None), extract_hidden_fields(form)
