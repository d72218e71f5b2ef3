#!/usr/bin/env python3
"""
Recovery Mailbox OTP Provider

Fetches the passcode Microsoft mails to a recovery address:
1. Load the recovery mailbox session (live object or exported cookie jar)
2. Make sure its Outlook tokens are usable, refreshing or re-acquiring them
3. Poll the mailbox until a fresh security code arrives
"""

import logging
from typing import Optional

from ..config.auth_config import AuthConfig, ProxyConfig
from ..credential_manager import Credentials, RecoveryAccount
from ..exceptions import MissingRecoverySessionError, OtpFetchError, TokenAcquisitionError
from ..oauth import OAuthTokenAcquirer
from ..otp_fetcher import OtpFetcher, OutlookMailClient
from ..redirects import RedirectDriver
from ..resolver import RedirectResolver
from ..session_store import HttpSession
from ..tokens import TokenLifecycleManager
from ..utils import Deadline
from .base_plugin import BaseOtpProvider

logger = logging.getLogger(__name__)


class RecoveryMailboxOtpProvider(BaseOtpProvider):
    """Reads security codes from the recovery account's Outlook mailbox"""

    def __init__(self, recovery_account: RecoveryAccount, config: Optional[AuthConfig] = None,
                 proxy: Optional[ProxyConfig] = None, deadline: Optional[Deadline] = None):
        super().__init__()
        self.recovery_account = recovery_account
        self.auth_config = config or AuthConfig()
        self.proxy = proxy
        self.deadline = deadline or Deadline()
        self._session: Optional[HttpSession] = None

    def get_code(self, proof_email: str) -> str:
        session = self._load_session()
        try:
            tokens = self._token_manager(session).ensure_tokens()
        except TokenAcquisitionError as e:
            raise OtpFetchError(f"Recovery mailbox tokens unavailable: {e}", step='verify-proof') from e

        mail_session = HttpSession(proxy=self.proxy, timeout=15, deadline=self.deadline)
        client = OutlookMailClient(
            tokens.access_token, tokens.mailbox_value,
            session=mail_session,
            folder_cache_seconds=self.auth_config.otp.folder_cache_seconds,
        )
        fetcher = OtpFetcher(client, max_conversations=self.auth_config.otp.max_conversations,
                             sleep=self.deadline.sleep)

        logger.info(f"Waiting for passcode email sent to {proof_email}")
        polling = self.auth_config.otp
        result = fetcher.wait_for_otp(
            timeout=polling.timeout,
            poll_interval=polling.poll_interval,
            initial_delay=polling.initial_delay,
            max_age=polling.max_age,
        )
        logger.info(f"Passcode email '{result.source.subject}' received at {result.source.delivery_time}")
        return result.code

    def _load_session(self) -> HttpSession:
        if self._session is not None:
            return self._session

        recovery = self.recovery_account
        if recovery.session is not None:
            self._session = recovery.session
        elif recovery.cookie_jar:
            self._session = HttpSession.import_cookie_jar(
                recovery.cookie_jar, proxy=self.proxy,
                timeout=self.auth_config.request_timeout, deadline=self.deadline
            )

        if self._session is None:
            raise MissingRecoverySessionError(
                f"No usable mailbox session for recovery account {recovery.email}",
                step='verify-proof'
            )
        return self._session

    def _token_manager(self, session: HttpSession) -> TokenLifecycleManager:
        recovery = self.recovery_account
        credentials = None
        if recovery.email and recovery.password:
            credentials = Credentials(recovery.email, recovery.password)

        driver = RedirectDriver(session, RedirectResolver(), credentials=credentials,
                                max_steps=self.auth_config.max_redirect_steps,
                                log_prefix=f"[{recovery.email}]")
        acquirer = OAuthTokenAcquirer(session, driver, self.auth_config)

        on_update = None
        if recovery.on_session_update:
            def on_update(updated: HttpSession):
                recovery.on_session_update(updated.export_cookie_jar())

        return TokenLifecycleManager(session, acquirer, login_hint=recovery.email,
                                     on_update=on_update)
