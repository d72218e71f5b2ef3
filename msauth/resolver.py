#!/usr/bin/env python3
"""
Form and Redirect Resolver

Turns one response into the next action of the redirect-driving loop: follow
a redirect, submit an intermediate form, post the password again, or stop on
a final page.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

import requests
from bs4 import Tag

from .classifier import REDIRECT_STATUSES, PageDocument
from .credential_manager import RecoveryAccount
from .exceptions import (
    ConfigurationError, FormDetectionError, MissingRecoverySessionError
)
from .session_store import FlowContext
from .utils import extract_flow_token, extract_hidden_fields, js_unescape, mask_secret, normalize_url

if TYPE_CHECKING:
    from .plugins.base_plugin import BaseOtpProvider

logger = logging.getLogger(__name__)

META_REFRESH_URL = re.compile(r'url=(.*)', re.IGNORECASE)


class ActionType(Enum):
    """Next-step kinds produced by the resolver"""
    HTTP_REDIRECT = 'HTTP_REDIRECT'
    MANUAL_REDIRECT = 'MANUAL_REDIRECT'
    META_REDIRECT = 'META_REDIRECT'
    AUTO_SUBMIT = 'AUTO_SUBMIT'
    ENTER_PASSWORD = 'ENTER_PASSWORD'
    FINAL_PAGE = 'FINAL_PAGE'
    UNKNOWN = 'UNKNOWN'


@dataclass
class Resolution:
    """One resolved next step"""
    type: ActionType
    url: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    log: bool = False

    @property
    def is_redirect(self) -> bool:
        return self.type in (ActionType.HTTP_REDIRECT, ActionType.MANUAL_REDIRECT,
                             ActionType.META_REDIRECT)


class RedirectResolver:
    """Maps responses to next actions for one login attempt"""

    def __init__(self, recovery_account: Optional[RecoveryAccount] = None,
                 otp_provider: Optional['BaseOtpProvider'] = None):
        self.recovery_account = recovery_account
        self.otp_provider = otp_provider

    def resolve(self, response: requests.Response, last_url: Optional[str],
                flow: FlowContext) -> Resolution:
        """
        Resolve the next action for a response

        Args:
            response: Response of the previous step
            last_url: URL the response was fetched from
            flow: Live flow context; its terms-update flag may be set or cleared

        Returns:
            Resolution describing the next request

        Raises:
            ConfigurationError: If a recovery email is required to add a proof but not configured
            MissingRecoverySessionError: If a passcode is required without a recovery mailbox
            FormDetectionError: If a recognized form is missing its action or token
            OtpError: If a passcode was needed and could not be obtained
        """
        doc = PageDocument.from_response(response)
        base_url = last_url or doc.url or None

        if doc.status in REDIRECT_STATUSES and doc.location:
            return Resolution(ActionType.HTTP_REDIRECT, normalize_url(doc.location, base_url))

        if doc.title == 'Object moved':
            link = doc.soup.select_one('h2 > a[href]')
            if link is not None:
                return Resolution(ActionType.MANUAL_REDIRECT, normalize_url(link['href'], base_url))

        auto_form = doc.soup.select_one('form#fmHF[name="fmHF"]')
        if auto_form is not None and doc.soup.select_one('body[onload*="DoSubmit"]') is not None:
            action = auto_form.get('action') or ''
            if 'tou/accrue' in action:
                flow.terms_update_pending = True
            return Resolution(ActionType.AUTO_SUBMIT, self._form_action(auto_form, base_url),
                              extract_hidden_fields(auto_form))

        proof_form = doc.soup.select_one('form#fProofFreshness')
        if proof_form is not None and 'security info' in doc.title:
            payload = extract_hidden_fields(proof_form)
            payload['ProofFreshnessAction'] = 1
            return Resolution(ActionType.AUTO_SUBMIT, self._form_action(proof_form, base_url), payload)

        if 'msalInstance' in doc.html:
            meta = doc.soup.select_one('meta[http-equiv="refresh"]')
            if meta is not None:
                match = META_REFRESH_URL.search(meta.get('content') or '')
                if match:
                    return Resolution(ActionType.META_REDIRECT, normalize_url(match.group(1).strip(), base_url))

        add_proof_form = doc.soup.select_one('form#frmAddProof')
        if doc.status == 200 and add_proof_form is not None and 'protect your account' in doc.title:
            return self._resolve_add_proof(add_proof_form, base_url)

        verify_form = doc.soup.select_one('form#frmVerifyProof')
        if doc.status == 200 and verify_form is not None and 'Enter the code we sent to' in doc.title:
            return self._resolve_verify_proof(verify_form, base_url)

        canary = doc.server_value('sCanary')
        if doc.status == 200 and flow.terms_update_pending and canary is not None:
            terms_url = doc.server_value('urlRU')
            if not terms_url:
                raise FormDetectionError("Terms update URL not found", step='terms-update')
            flow.terms_update_pending = False
            return Resolution(ActionType.AUTO_SUBMIT, normalize_url(terms_url, base_url),
                              {'canary': js_unescape(canary)})

        if (doc.status == 200 and 'Sign in to your Microsoft account' in doc.title
                and doc.server_value('sSignInUsername')):
            flow_token = extract_flow_token(doc.server_data)
            if not flow_token:
                raise FormDetectionError("Flow token (PPFT) not found", step='enter-password')
            post_url = doc.server_value('urlPost')
            if not post_url:
                raise FormDetectionError("Post URL not found for password entry", step='enter-password')
            return Resolution(ActionType.ENTER_PASSWORD, post_url, {'PPFT': flow_token})

        if doc.status == 200:
            return Resolution(ActionType.FINAL_PAGE)

        return Resolution(ActionType.UNKNOWN)

    def _form_action(self, form: Tag, base_url: Optional[str]) -> str:
        action = form.get('action')
        if not action:
            raise FormDetectionError(f"Form {form.get('id')} has no action URL", step='auto-submit')
        return normalize_url(action, base_url)

    def _resolve_add_proof(self, form: Tag, base_url: Optional[str]) -> Resolution:
        payload = extract_hidden_fields(form)
        payload['iProofOptions'] = 'Email'
        payload['DisplayPhoneCountryISO'] = 'US'
        payload['DisplayPhoneNumber'] = ''

        recovery = self.recovery_account
        if recovery is not None and recovery.add:
            if not recovery.email:
                raise ConfigurationError("Recovery email not configured", step='add-proof')
            payload['action'] = 'AddProof'
            payload['EmailAddress'] = recovery.email
            logger.info(f"Adding recovery email {recovery.email}")
        else:
            payload['action'] = 'Skip'
            payload['EmailAddress'] = ''
            logger.info("Skipping recovery email addition")

        return Resolution(ActionType.AUTO_SUBMIT, self._form_action(form, base_url), payload)

    def _resolve_verify_proof(self, form: Tag, base_url: Optional[str]) -> Resolution:
        recovery = self.recovery_account
        if recovery is None or not recovery.email:
            raise MissingRecoverySessionError("Recovery email not configured for OTP verification",
                                              step='verify-proof')
        if self.otp_provider is None:
            raise MissingRecoverySessionError(
                "A passcode is required but no recovery mailbox is available", step='verify-proof'
            )

        action_url = self._form_action(form, base_url)
        code = self.otp_provider.get_code(recovery.email)
        logger.info(f"Passcode obtained for {recovery.email}: {mask_secret(code, 2)}")

        payload = extract_hidden_fields(form)
        payload['iProofOptions'] = f"OTT||{recovery.email}||Email||0||o"
        payload['iOttText'] = code
        payload['GeneralVerify'] = 0
        return Resolution(ActionType.AUTO_SUBMIT, action_url, payload, log=True)
