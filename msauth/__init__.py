#!/usr/bin/env python3
"""
Microsoft Account Authentication
================================

Signs a Microsoft account in over plain HTTP and exports the resulting
cookie jar for later reuse.

Features:
- Username/password flow with "stay signed in" confirmation
- Interstitial handling (privacy notice, terms update, recovery proof)
- Passcode retrieval from a recovery Outlook mailbox
- Outlook API tokens via silent OAuth with PKCE, with refresh
- Cookie jar export and import

Usage:
    from msauth import create_authenticator

    auth = create_authenticator("user@outlook.com", "password")
    result = auth.login(['ALL', 'OUTLOOK'])
    if result.success:
        saved = result.cookie_jar
"""

from .auth_manager import LoginOptions, LoginResult, MicrosoftAuthenticator
from .classifier import AuthState, classify
from .config.auth_config import AuthConfig, ProxyConfig, load_config
from .credential_manager import Credentials, RecoveryAccount, get_credentials
from .exceptions import (
    AuthenticationError, ConfigurationError, ErrorKind, OtpError, ProtocolStateError, TransientError
)
from .oauth import OAuthTokenAcquirer, TokenSet
from .otp_fetcher import OtpFetcher, OutlookMailClient
from .plugins.base_plugin import BaseOtpProvider
from .session_store import HttpSession
from .tokens import TokenLifecycleManager

__version__ = "1.0.0"
__author__ = "msauth Team"

__all__ = [
    'MicrosoftAuthenticator',
    'LoginOptions',
    'LoginResult',
    'AuthState',
    'classify',
    'AuthConfig',
    'ProxyConfig',
    'load_config',
    'Credentials',
    'RecoveryAccount',
    'get_credentials',
    'AuthenticationError',
    'ConfigurationError',
    'ErrorKind',
    'OtpError',
    'ProtocolStateError',
    'TransientError',
    'OAuthTokenAcquirer',
    'TokenSet',
    'OtpFetcher',
    'OutlookMailClient',
    'BaseOtpProvider',
    'HttpSession',
    'TokenLifecycleManager',
    'create_authenticator'
]

def create_authenticator(email: str = None, password: str = None, config_path: str = None,
                         **kwargs) -> MicrosoftAuthenticator:
    """
    Factory function for easy authenticator setup

    Args:
        email: Account email (falls back to MS_EMAIL)
        password: Account password (falls back to MS_PASSWORD)
        config_path: Optional YAML configuration file
        **kwargs: LoginOptions fields (cookie_jar, proxy, recovery_account, ...)

    Returns:
        Configured MicrosoftAuthenticator instance
    """
    credentials = get_credentials(email, password)
    config = load_config(config_path) if config_path else AuthConfig()
    return MicrosoftAuthenticator(credentials, LoginOptions(**kwargs), config)
