#!/usr/bin/env python3
"""
Authentication Manager - Central coordinator for the Microsoft account login flow
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from .classifier import (
    TERMINAL_FAILURE_STATES, AuthState, PageDocument, classify_document, extract_privacy_notice
)
from .config.auth_config import AuthConfig, ProxyConfig
from .credential_manager import Credentials, RecoveryAccount
from .endpoints import (
    ADD_PROOF_URL, BING_SIGNIN_URL, CREDENTIAL_TYPE_URL, LOGIN_URL, PROFILE_URL,
    RECORD_NOTICE_URL, REWARDS_HOME_URL, REWARDS_URL
)
from .exceptions import (
    AuthenticationError, ConfigurationError, CredentialError, FormDetectionError,
    LoginFailedError, ProtocolStateError, TokenAcquisitionError, UnhandledStateError
)
from .oauth import OAuthTokenAcquirer
from .plugins.base_plugin import BaseOtpProvider
from .plugins.email_otp import RecoveryMailboxOtpProvider
from .redirects import FORM_HEADERS, RedirectDriver, password_form
from .resolver import RedirectResolver
from .session_store import FlowContext, HttpSession
from .tokens import TokenLifecycleManager
from .utils import Deadline, extract_flow_token, extract_ucis_data, get_query_param

logger = logging.getLogger(__name__)

COOKIE_TYPES = ('ALL', 'REWARDS', 'OUTLOOK', 'BING')
UCIS_REQUIRED_FIELDS = ('ClientId', 'SerializedEncryptionData')


@dataclass
class LoginOptions:
    """Per-attempt options supplied by the caller"""
    cookie_jar: Optional[str] = None
    proxy: Optional[ProxyConfig] = None
    recovery_account: Optional[RecoveryAccount] = None
    deadline_seconds: Optional[float] = None
    otp_provider: Optional[BaseOtpProvider] = None


@dataclass
class LoginResult:
    """Outcome of a login attempt"""
    success: bool
    cookies: Dict[str, bool] = field(default_factory=dict)
    cookie_jar: Optional[str] = None
    error: Optional[str] = None
    state: Optional[str] = None
    kind: Optional[str] = None
    step: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_error(cls, error: AuthenticationError) -> 'LoginResult':
        return cls(success=False, error=error.message, state=error.state,
                   kind=error.kind.value, step=error.step)

    def to_dict(self) -> Dict[str, Any]:
        """Render the caller-facing result, omitting empty fields"""
        result: Dict[str, Any] = {'success': self.success}
        if self.success:
            result['cookies'] = self.cookies
        optional = {
            'cookieJar': self.cookie_jar,
            'error': self.error,
            'state': self.state,
            'kind': self.kind,
            'step': self.step,
            'data': self.data,
        }
        result.update({key: value for key, value in optional.items() if value is not None})
        return result


class FlowRestartRequired(ProtocolStateError):
    """The provider sent the flow back to its entry point"""
    pass


class MicrosoftAuthenticator:
    """Signs one Microsoft account in and collects its cookies"""

    def __init__(self, credentials: Credentials, options: Optional[LoginOptions] = None,
                 config: Optional[AuthConfig] = None):
        """
        Initialize the authenticator

        Args:
            credentials: Account email and password
            options: Cookie jar to resume from, proxy, recovery account, deadline
            config: Timeouts, loop bounds and OTP polling settings
        """
        self.credentials = credentials
        self.options = options or LoginOptions()
        self.config = config or AuthConfig()
        self.log_prefix = f"[{credentials.email}]"
        self.deadline = Deadline(self.options.deadline_seconds)

        self.session = self._create_session(self.options.cookie_jar)
        self.recovery_account = self.options.recovery_account
        self.otp_provider = self.options.otp_provider or self._default_otp_provider()

        self.driver = self._create_driver(self.session)
        self.acquirer = OAuthTokenAcquirer(self.session, self.driver, self.config)
        self.token_manager = TokenLifecycleManager(self.session, self.acquirer,
                                                   login_hint=credentials.email)
        self.profile_data: Optional[Dict[str, Any]] = None

    # Public API

    def login(self, cookie_types: Iterable[str] = ('ALL',)) -> LoginResult:
        """
        Run the login flow, then collect the requested cookie types

        Args:
            cookie_types: Any of ALL, REWARDS, OUTLOOK, BING

        Returns:
            LoginResult; failures carry the error kind, step and page state
        """
        try:
            self._validate(cookie_types)
            self.log("Starting authentication...")

            blocked = self._perform_auth_flow()
            if blocked is not None:
                return blocked

            cookies = self._get_cookies(cookie_types)
            self.log("Authentication successful")
            return LoginResult(success=True, cookies=cookies,
                               cookie_jar=self.session.export_cookie_jar())

        except AuthenticationError as e:
            logger.error(f"{self.log_prefix} Authentication failed at {e.step}: {e.message}")
            return LoginResult.from_error(e)

    def add_recovery_proof(self) -> LoginResult:
        """Sign in, then walk the add-proof pages with the configured recovery account"""
        try:
            self._validate(())
            if self.recovery_account is None or not self.recovery_account.add:
                raise ConfigurationError("Recovery account with add=True is required",
                                         step='add-proof')

            blocked = self._perform_auth_flow()
            if blocked is not None:
                return blocked

            self.log("Adding recovery proof...")
            response = self.session.get(ADD_PROOF_URL, step='add-proof')
            self.driver.drive(response)

            verified = self.verify_session()
            return LoginResult(success=verified, cookies={'all': verified},
                               cookie_jar=self.session.export_cookie_jar(),
                               data=self.profile_data)

        except AuthenticationError as e:
            logger.error(f"{self.log_prefix} Adding recovery proof failed at {e.step}: {e.message}")
            return LoginResult.from_error(e)

    def get_account_information(self) -> LoginResult:
        """Look up the credential type data of the account on a fresh session"""
        try:
            fresh = HttpSession(proxy=self.options.proxy, timeout=self.config.request_timeout,
                                deadline=self.deadline)
            driver = self._create_driver(fresh)

            self._get_initial_page(fresh, driver)
            data = self._post_username(fresh, require_existing=False)
            return LoginResult(success=True, data=data)

        except AuthenticationError as e:
            logger.error(f"{self.log_prefix} Account lookup failed at {e.step}: {e.message}")
            return LoginResult.from_error(e)

    def verify_session(self) -> bool:
        """True when the account profile API answers for this account"""
        response = self.session.get(
            PROFILE_URL,
            headers={'Accept': 'application/json', 'X-Requested-With': 'XMLHttpRequest'},
            raise_for_status=False, step='verify-session'
        )
        if response.status_code != 200:
            logger.warning(f"{self.log_prefix} Profile check returned {response.status_code}")
            return False

        try:
            self.profile_data = response.json()
        except ValueError:
            logger.warning(f"{self.log_prefix} Profile check returned non-JSON content")
            return False

        sign_in_name = (self.profile_data or {}).get('signInName') or ''
        return sign_in_name.lower() == self.credentials.email.lower()

    def log(self, message: str):
        logger.info(f"{self.log_prefix} {message}")

    # Authentication flow

    def _perform_auth_flow(self) -> Optional[LoginResult]:
        """Returns None on success, a failed LoginResult for blocked accounts"""

        def before_restart(retry_state: RetryCallState):
            self.log(f"Restarting sign-in (attempt {retry_state.attempt_number + 1})")
            self.session.flow.reset()

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_flow_restarts),
            retry=retry_if_exception_type(FlowRestartRequired),
            before_sleep=before_restart,
            reraise=True,
        )
        return retrying(self._run_flow_once)

    def _run_flow_once(self) -> Optional[LoginResult]:
        state = self._get_initial_page(self.session, self.driver)
        if state == AuthState.ALREADY_AUTHENTICATED:
            self.log("Already authenticated")
            return None

        self._post_username(self.session)
        state = self._post_password()

        if state == AuthState.ALREADY_AUTHENTICATED:
            self.log("Already authenticated")
            return None

        return self._handle_auth_state(state)

    def _handle_auth_state(self, state: AuthState) -> Optional[LoginResult]:
        if state == AuthState.KMSI_OK:
            self._handle_kmsi_page()
            return None

        if state in TERMINAL_FAILURE_STATES:
            self.log(f"Authentication blocked: {state.value}")
            return LoginResult(success=False, state=state.value,
                               error=f"Authentication blocked: {state.value}",
                               kind=ProtocolStateError.kind.value, step='password',
                               data=self.session.flow.custom_data or None)

        if state == AuthState.INITIAL_PAGE_OK:
            raise FlowRestartRequired("Returned to the sign-in page", step='password',
                                      state=state.value)

        raise UnhandledStateError(f"Unexpected state: {state.value}", step='auth-flow',
                                  state=state.value)

    def _get_initial_page(self, session: HttpSession, driver: RedirectDriver) -> AuthState:
        """Step 1: load the entry page and capture its flow token"""
        for _ in range(self.config.max_flow_restarts):
            self.log("Fetching initial page...")
            response = session.get(LOGIN_URL, step='initial-page')
            doc = PageDocument.from_response(response)
            state = classify_document(doc)
            logger.debug(f"{self.log_prefix} Initial page state: {state.value}")

            if state == AuthState.ALREADY_AUTHENTICATED:
                return state

            if state == AuthState.TERMS_UPDATE:
                driver.drive(response)
                continue

            if state == AuthState.PRIVACY_NOTICE:
                self._handle_privacy_notice(session, response)
                continue

            if state != AuthState.INITIAL_PAGE_OK:
                raise UnhandledStateError(f"Unexpected initial state: {state.value}",
                                          step='initial-page', state=state.value)

            flow_token = extract_flow_token(doc.server_data)
            post_url = doc.server_value('urlPost')
            if not flow_token or not post_url:
                raise FormDetectionError("Flow token or post URL missing on initial page",
                                         step='initial-page', state=state.value)

            session.flow.advance(flow_token=flow_token, post_url=post_url)
            session.flow.last_url = response.url or LOGIN_URL
            return state

        raise LoginFailedError("Initial page kept redirecting to interstitials",
                               step='initial-page')

    def _post_username(self, session: HttpSession, require_existing: bool = True) -> Dict[str, Any]:
        """Step 2: credential type lookup"""
        self.log("Submitting username...")
        response = session.post(
            CREDENTIAL_TYPE_URL,
            json={
                'username': self.credentials.email,
                'flowToken': session.flow.require_flow_token('username'),
            },
            step='username'
        )

        try:
            data = response.json()
        except ValueError as e:
            raise FormDetectionError("Credential type response is not JSON", step='username') from e

        session.flow.custom_data = data
        if data.get('FlowToken'):
            session.flow.advance(flow_token=data['FlowToken'])

        if require_existing and data.get('IfExistsResult') != 0:
            raise LoginFailedError("Account does not exist", step='username',
                                   details={'IfExistsResult': data.get('IfExistsResult')})
        return data

    def _post_password(self) -> AuthState:
        """Step 3: password submission"""
        self.log("Submitting password...")
        flow = self.session.flow
        response = self.session.post(
            flow.post_url,
            data=password_form(self.credentials, flow.require_flow_token('password')),
            headers=FORM_HEADERS, step='password'
        )
        flow.last_url = flow.post_url

        doc = PageDocument.from_response(response)
        state = classify_document(doc)
        logger.debug(f"{self.log_prefix} Password step state: {state.value}")

        if state == AuthState.KMSI_OK:
            self._enter_kmsi_page(flow, doc, step='password')

        if state == AuthState.TERMS_UPDATE:
            self.driver.drive(response)
            raise FlowRestartRequired("Terms update accepted", step='password', state=state.value)

        if state == AuthState.PRIVACY_NOTICE:
            self._handle_privacy_notice(self.session, response)
            raise FlowRestartRequired("Privacy notice accepted", step='password', state=state.value)

        return state

    def _handle_kmsi_page(self):
        """Step 4: confirm "stay signed in", then settle the session"""
        self.log('Confirming "Stay signed in"...')
        flow = self.session.flow
        response = self.session.post(
            flow.post_url,
            data={
                'LoginOptions': '1',
                'type': '28',
                'ctx': '',
                'hpgrequestid': '',
                'PPFT': flow.require_flow_token('kmsi'),
                'canary': '',
            },
            headers=FORM_HEADERS, step='kmsi'
        )

        if response.status_code != 302 or not response.headers.get('Location'):
            raise LoginFailedError("Expected redirect after KMSI", step='kmsi')

        self.driver.drive(response)

        if not self.verify_session():
            raise LoginFailedError("Session verification failed", step='kmsi-verification')

    def _handle_privacy_notice(self, session: HttpSession, response: requests.Response) -> AuthState:
        """Accept the privacy notice and return the state of the page that follows"""
        self.log("Handling privacy notice...")
        notice = extract_privacy_notice(PageDocument.from_response(response))
        if notice is None:
            raise FormDetectionError("Could not extract privacy notice data", step='privacy-notice')

        action, fields = notice
        notice_page = session.post(action, data=fields, headers=FORM_HEADERS, step='privacy-notice')

        ucis = extract_ucis_data(notice_page.text)
        if not ucis or any(not ucis.get(name) for name in UCIS_REQUIRED_FIELDS):
            raise FormDetectionError("Could not extract UCIS data", step='privacy-notice')

        session.post(RECORD_NOTICE_URL, files=self._consent_fields(ucis), step='privacy-notice')

        next_url = get_query_param(action, 'ru')
        if not next_url:
            raise FormDetectionError("Privacy notice action has no return URL", step='privacy-notice')

        final_response = session.get(next_url, step='privacy-notice')
        doc = PageDocument.from_response(final_response)
        state = classify_document(doc)
        if state == AuthState.KMSI_OK:
            self._enter_kmsi_page(session.flow, doc, step='privacy-notice')
        return state

    @staticmethod
    def _enter_kmsi_page(flow: FlowContext, doc: PageDocument, step: str):
        """Make the KMSI page's own flow token the live one"""
        flow_token = doc.server_value('sFT')
        post_url = doc.server_value('urlPost')
        if not flow_token or not post_url:
            flow.flow_token = None
            raise FormDetectionError("Flow token or post URL missing on KMSI page", step=step)
        flow.advance(flow_token=flow_token, post_url=post_url)

    @staticmethod
    def _consent_fields(ucis: Dict[str, str]):
        """Multipart fields of the consent record, in submission order"""
        fields = [
            ('ClientId', ucis.get('ClientId', '')),
            ('ConsentSurface', 'SISU'),
            ('ConsentType', 'ucsisunotice'),
            ('correlation_id', ucis.get('CorrelationId', '')),
            ('CountryRegion', 'US'),
            ('DeviceId', ''),
            ('SerializedEncryptionData', ucis.get('SerializedEncryptionData', '')),
            ('FormFactor', 'Desktop'),
            ('Market', 'EN-GB'),
            ('ModelType', 'ucsisunotice'),
            ('ModelVersion', ucis.get('ModelVersion', '')),
            ('NoticeId', ucis.get('NoticeId', '')),
            ('Platform', 'Web'),
            ('UserId', ucis.get('UserId', '')),
            ('UserVersion', '1'),
        ]
        return [(name, (None, value)) for name, value in fields]

    # Cookie collection

    def _get_cookies(self, cookie_types: Iterable[str]) -> Dict[str, bool]:
        cookies = {}
        for cookie_type in cookie_types:
            kind = cookie_type.upper()
            if kind == 'ALL':
                cookies['all'] = self.verify_session()
            elif kind == 'REWARDS':
                cookies['rewards'] = self._authenticate_rewards()
            elif kind == 'OUTLOOK':
                cookies['outlook'] = self._authenticate_outlook()
            elif kind == 'BING':
                cookies['bing'] = self._authenticate_bing()
        return cookies

    def _authenticate_rewards(self) -> bool:
        self.log("Authenticating for Rewards...")
        response = self.session.get(REWARDS_URL, step='rewards')
        self.driver.drive(response)

        verify_response = self.session.get(REWARDS_HOME_URL, raise_for_status=False, step='rewards')
        return verify_response.status_code == 200

    def _authenticate_bing(self) -> bool:
        self.log("Authenticating for Bing...")
        response = self.session.get(BING_SIGNIN_URL, step='bing')
        result = self.driver.drive(response)
        logger.debug(f"{self.log_prefix} Bing cookies: {len(self.session.get_cookies_for_domain('bing.com'))}")
        return result.final_response.status_code == 200

    def _authenticate_outlook(self) -> bool:
        self.log("Authenticating for Outlook...")
        try:
            self.token_manager.ensure_tokens()
        except TokenAcquisitionError as e:
            logger.warning(f"{self.log_prefix} Failed to get Outlook tokens: {e}")
            return False
        return True

    # Setup helpers

    def _validate(self, cookie_types: Iterable[str]):
        if not self.credentials.validate():
            raise CredentialError("Email and password are required", step='validate')

        unknown = [name for name in cookie_types if name.upper() not in COOKIE_TYPES]
        if unknown:
            raise ConfigurationError(f"Unknown cookie types: {', '.join(unknown)}", step='validate')

        if self.recovery_account is not None:
            self.recovery_account.validate()

    def _create_session(self, cookie_jar: Optional[str]) -> HttpSession:
        kwargs = dict(proxy=self.options.proxy, timeout=self.config.request_timeout,
                      deadline=self.deadline)
        if cookie_jar:
            session = HttpSession.import_cookie_jar(cookie_jar, **kwargs)
            if session is not None:
                return session
            logger.warning(f"{self.log_prefix} Stored cookie jar unreadable, starting a fresh session")
        return HttpSession(**kwargs)

    def _create_driver(self, session: HttpSession) -> RedirectDriver:
        resolver = RedirectResolver(self.recovery_account, self.otp_provider)
        return RedirectDriver(session, resolver, credentials=self.credentials,
                              max_steps=self.config.max_redirect_steps,
                              log_prefix=self.log_prefix)

    def _default_otp_provider(self) -> Optional[BaseOtpProvider]:
        recovery = self.recovery_account
        if recovery is None or not recovery.has_mailbox_session:
            return None
        return RecoveryMailboxOtpProvider(recovery, config=self.config, proxy=self.options.proxy,
                                          deadline=self.deadline)

