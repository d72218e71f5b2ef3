#!/usr/bin/env python3
"""
Authentication Exception Classes

Every error raised by the login core carries a ``kind`` so callers can tell
configuration mistakes, unexpected pages, transient network trouble and OTP
failures apart without matching on message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Broad failure categories reported back to callers"""
    CONFIGURATION = "configuration"
    PROTOCOL_STATE = "protocol_state"
    TRANSIENT = "transient"
    OTP = "otp"


class AuthenticationError(Exception):
    """Base exception for authentication errors"""

    kind = ErrorKind.PROTOCOL_STATE

    def __init__(self, message: str, step: Optional[str] = None,
                 state: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.state = state
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in login results"""
        return {
            'error': self.message,
            'kind': self.kind.value,
            'step': self.step,
            'state': self.state,
        }


class ConfigurationError(AuthenticationError):
    """Raised when the caller supplied unusable options"""
    kind = ErrorKind.CONFIGURATION


class CredentialError(ConfigurationError):
    """Raised when credentials are invalid or missing"""
    pass


class ProtocolStateError(AuthenticationError):
    """Raised when the provider answers with a page the flow cannot continue from"""
    kind = ErrorKind.PROTOCOL_STATE


class LoginFailedError(ProtocolStateError):
    """Raised when login attempt fails"""
    pass


class UnhandledStateError(ProtocolStateError):
    """Raised when a page is classified or resolved as unknown"""
    pass


class FormDetectionError(ProtocolStateError):
    """Raised when an expected form or embedded data block cannot be parsed"""
    pass


class HttpStatusError(ProtocolStateError):
    """Raised on a 4xx answer the caller did not expect"""

    def __init__(self, message: str, status_code: int, url: str = '', **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.url = url


class TokenAcquisitionError(ProtocolStateError):
    """Raised when no OAuth token pair could be obtained"""
    pass


class MissingAuthorizationCodeError(TokenAcquisitionError):
    """Raised when the silent authorize chain ends without a code"""
    pass


class TransientError(AuthenticationError):
    """Raised for network failures, server errors and exhausted time budgets"""
    kind = ErrorKind.TRANSIENT


class RedirectLoopExceeded(TransientError):
    """Raised when the redirect loop hits its step bound"""

    def __init__(self, message: str, steps: int, **kwargs):
        super().__init__(message, **kwargs)
        self.steps = steps


class DeadlineExceededError(TransientError):
    """Raised when the caller's deadline has passed"""
    pass


class OtpError(AuthenticationError):
    """Base class for one-time passcode failures"""
    kind = ErrorKind.OTP


class OtpTimeoutError(OtpError):
    """Raised when no passcode arrived before the polling timeout"""

    def __init__(self, message: str, attempts: int, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class MissingRecoverySessionError(OtpError):
    """Raised when a passcode is needed but no recovery mailbox session exists"""
    pass


class OtpFetchError(OtpError):
    """Raised when the mail API rejects a request"""
    pass
