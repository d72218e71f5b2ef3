#!/usr/bin/env python3
"""
Credential Management for the Login Flow
"""

import os
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, TYPE_CHECKING

from .exceptions import ConfigurationError, CredentialError
from .utils import is_valid_email

if TYPE_CHECKING:
    from .session_store import HttpSession


class Credentials(NamedTuple):
    """Microsoft account credentials"""
    email: str
    password: str

    def validate(self) -> bool:
        """Validate credentials are present and the email is well formed"""
        return bool(self.password) and is_valid_email(self.email)


@dataclass
class RecoveryAccount:
    """
    Secondary mailbox that receives one-time passcodes

    ``add`` asks the flow to register ``email`` as a recovery proof when the
    provider requests one. The mailbox is read through ``session`` or an
    exported ``cookie_jar``; refreshed mail tokens are reported back through
    ``on_session_update`` with the re-exported cookie jar string.
    """
    email: Optional[str] = None
    password: Optional[str] = None
    add: bool = False
    session: Optional['HttpSession'] = None
    cookie_jar: Optional[str] = None
    on_session_update: Optional[Callable[[str], None]] = None

    def validate(self):
        """Raise ConfigurationError when the account cannot serve its purpose"""
        if self.add and not self.email:
            raise ConfigurationError("Recovery email is required to add a recovery proof")
        if self.email and not is_valid_email(self.email):
            raise ConfigurationError(f"Invalid recovery email: {self.email}")

    @property
    def has_mailbox_session(self) -> bool:
        return self.session is not None or bool(self.cookie_jar)


def get_credentials(email: str = None, password: str = None) -> Credentials:
    """
    Resolve credentials in priority order:
    1. Direct parameters
    2. ``MS_EMAIL`` / ``MS_PASSWORD`` environment variables

    Raises:
        CredentialError: If credentials are missing or malformed
    """
    email = email or os.getenv('MS_EMAIL')
    password = password or os.getenv('MS_PASSWORD')

    if not email or not password:
        raise CredentialError("No credentials found. Pass them directly or set MS_EMAIL and MS_PASSWORD.")

    credentials = Credentials(email.strip(), password)
    if not credentials.validate():
        raise CredentialError(f"Invalid email address: {email}")

    return credentials
