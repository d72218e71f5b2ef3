#!/usr/bin/env python3
"""
Token Lifecycle Manager

Keeps the mail API token set stored in a session usable: reuse it while the
probe endpoint accepts it, refresh it when it does not, and fall back to a
full acquisition when refreshing fails.
"""

import logging
from typing import Callable, Optional

from .endpoints import TOKEN_PROBE_URL
from .exceptions import AuthenticationError, TransientError
from .oauth import OAuthTokenAcquirer, TokenSet
from .session_store import HttpSession

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Validate, refresh or acquire tokens for one session"""

    def __init__(self, session: HttpSession, acquirer: OAuthTokenAcquirer,
                 login_hint: Optional[str] = None,
                 on_update: Optional[Callable[[HttpSession], None]] = None):
        """
        Args:
            session: Session whose metadata holds the token set
            acquirer: Used for refresh and full acquisition
            login_hint: Account email passed to the authorize request
            on_update: Called with the session after new tokens were written
        """
        self.session = session
        self.acquirer = acquirer
        self.login_hint = login_hint
        self.on_update = on_update

    def ensure_tokens(self) -> TokenSet:
        """
        Return a usable token set, writing any new one to session metadata

        Raises:
            TokenAcquisitionError: If neither refresh nor acquisition succeeded
        """
        saved = TokenSet.from_session(self.session)

        if saved is not None and saved.mailbox_value:
            if self.probe(saved):
                logger.debug("Saved Outlook tokens are valid")
                return saved

            if saved.refresh_token:
                refreshed = self._try_refresh(saved)
                if refreshed is not None:
                    return refreshed

        logger.info("Performing full Outlook token acquisition")
        tokens = self.acquirer.acquire(login_hint=self.login_hint)
        self._store(tokens)
        return tokens

    def probe(self, tokens: TokenSet) -> bool:
        """True when the mail API accepts the access token"""
        response = self.session.get(
            TOKEN_PROBE_URL,
            headers={
                'Authorization': f"Bearer {tokens.access_token}",
                'Accept': 'application/json',
            },
            raise_for_status=False, step='token-probe'
        )
        if response.status_code >= 500:
            raise TransientError(f"Token probe returned {response.status_code}", step='token-probe')
        return response.status_code == 200

    def _try_refresh(self, saved: TokenSet) -> Optional[TokenSet]:
        logger.info("Saved Outlook tokens expired, refreshing")
        try:
            refreshed = self.acquirer.refresh(saved.refresh_token)
        except TransientError:
            raise
        except AuthenticationError as e:
            logger.warning(f"Token refresh failed, falling back to full acquisition: {e}")
            return None

        # Refresh answers may omit the refresh token or id token
        refreshed.refresh_token = refreshed.refresh_token or saved.refresh_token
        refreshed.id_token = refreshed.id_token or saved.id_token
        refreshed.mailbox_value = saved.mailbox_value
        self._store(refreshed)
        return refreshed

    def _store(self, tokens: TokenSet):
        tokens.save_to(self.session)
        if self.on_update:
            self.on_update(self.session)
