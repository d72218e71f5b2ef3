#!/usr/bin/env python3
"""
Redirect-Driving Loop

Repeatedly resolves the current response and performs the resulting request
until a final page is reached or the step bound is exhausted.
"""

import logging
from typing import NamedTuple, Optional

import requests

from .credential_manager import Credentials
from .exceptions import RedirectLoopExceeded, UnhandledStateError
from .resolver import ActionType, RedirectResolver, Resolution
from .session_store import HttpSession

logger = logging.getLogger(__name__)

FORM_HEADERS = {'Content-Type': 'application/x-www-form-urlencoded'}


def password_form(credentials: Credentials, flow_token: str):
    """Form fields of the password submission"""
    return {
        'login': credentials.email,
        'loginfmt': credentials.email,
        'passwd': credentials.password,
        'PPFT': flow_token,
        'type': '11',
        'ps': '2',
        'NewUser': '1',
        'i19': '16425',
    }


class DriveResult(NamedTuple):
    """Outcome of one loop run"""
    final_response: requests.Response
    steps: int


class RedirectDriver:
    """Drives intermediate pages of one session to a final page"""

    def __init__(self, session: HttpSession, resolver: RedirectResolver,
                 credentials: Optional[Credentials] = None, max_steps: int = 20,
                 log_prefix: str = ''):
        self.session = session
        self.resolver = resolver
        self.credentials = credentials
        self.max_steps = max_steps
        self.log_prefix = log_prefix

    def drive(self, initial_response: requests.Response) -> DriveResult:
        """
        Follow redirects and auto-submitted forms from ``initial_response``

        Returns:
            DriveResult with the final page and the number of requests sent

        Raises:
            RedirectLoopExceeded: After ``max_steps`` requests without a final page
            UnhandledStateError: If a response cannot be resolved
        """
        flow = self.session.flow
        current = initial_response
        if current.url:
            flow.last_url = current.url

        for step in range(self.max_steps):
            resolution = self.resolver.resolve(current, flow.last_url, flow)

            if resolution.type == ActionType.FINAL_PAGE:
                flow.last_response = current
                logger.debug(f"{self.log_prefix} Final page reached after {step} steps")
                return DriveResult(current, step)

            current = self._dispatch(resolution)

        raise RedirectLoopExceeded(
            f"Exceeded maximum redirects ({self.max_steps})",
            steps=self.max_steps, step='redirects'
        )

    def _dispatch(self, resolution: Resolution) -> requests.Response:
        flow = self.session.flow
        logger.debug(f"{self.log_prefix} {resolution.type.value} -> {resolution.url}")

        if resolution.is_redirect:
            flow.last_url = resolution.url
            return self.session.get(resolution.url, step='redirects')

        if resolution.type == ActionType.AUTO_SUBMIT:
            flow.last_url = resolution.url
            response = self.session.post(resolution.url, data=resolution.payload,
                                         headers=FORM_HEADERS, step='redirects')
            if resolution.log:
                logger.info(f"{self.log_prefix} Proof verification answered {response.status_code}")
            return response

        if resolution.type == ActionType.ENTER_PASSWORD:
            if self.credentials is None:
                raise UnhandledStateError("Password requested but no credentials available",
                                          step='redirects')
            flow.advance(flow_token=resolution.payload['PPFT'], post_url=resolution.url)
            return self.session.post(
                resolution.url,
                data=password_form(self.credentials, resolution.payload['PPFT']),
                headers=FORM_HEADERS, step='redirects'
            )

        raise UnhandledStateError(f"Unknown redirect type: {resolution.type.value}",
                                  step='redirects', state=resolution.type.value)
