#!/usr/bin/env python3
"""
Session Storage and HTTP Transport for the Login Flow

An :class:`HttpSession` owns the cookie jar and metadata of one account and
sends every request of a login attempt. Sessions can be exported to a single
JSON string and imported again by a later attempt.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
from requests.cookies import RequestsCookieJar, create_cookie

from .config.auth_config import ProxyConfig
from .endpoints import BROWSER_PROFILE
from .exceptions import HttpStatusError, ProtocolStateError, TransientError
from .utils import Deadline

logger = logging.getLogger(__name__)

JAR_VERSION = 'msauth-cookiejar/1'


@dataclass
class FlowContext:
    """Per-attempt login state; only one flow token is live at a time"""
    flow_token: Optional[str] = None
    post_url: Optional[str] = None
    last_url: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict)
    terms_update_pending: bool = False
    last_response: Optional[requests.Response] = None

    def advance(self, flow_token: Optional[str] = None, post_url: Optional[str] = None):
        """Replace the live flow token and post URL"""
        if flow_token is not None:
            self.flow_token = flow_token
        if post_url is not None:
            self.post_url = post_url

    def require_flow_token(self, step: str) -> str:
        """Return the live flow token or fail the step"""
        if not self.flow_token:
            raise ProtocolStateError("Missing flow token", step=step)
        return self.flow_token

    def reset(self):
        """Forget everything learned during the current attempt"""
        self.flow_token = None
        self.post_url = None
        self.last_url = None
        self.custom_data = {}
        self.terms_update_pending = False
        self.last_response = None


class HttpSession:
    """Cookie jar, metadata map and redirect-free transport for one account"""

    def __init__(self, proxy: Optional[ProxyConfig] = None,
                 cookie_jar: Optional[RequestsCookieJar] = None,
                 metadata: Optional[Dict[str, Any]] = None,
                 timeout: float = 30,
                 deadline: Optional[Deadline] = None,
                 http: Optional[requests.Session] = None):
        self.http = http or requests.Session()
        self.http.headers.update(BROWSER_PROFILE)
        if cookie_jar is not None:
            self.http.cookies = cookie_jar
        if proxy:
            self.http.proxies.update(proxy.to_requests_proxies())

        self.timeout = timeout
        self.deadline = deadline or Deadline()
        self.flow = FlowContext()
        self._metadata: Dict[str, Any] = dict(metadata or {})

    @property
    def cookies(self) -> RequestsCookieJar:
        return self.http.cookies

    # Transport

    def request(self, method: str, url: str, headers: Dict[str, str] = None,
                raise_for_status: bool = True, step: str = None, **kwargs) -> requests.Response:
        """
        Send one request without following redirects

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Extra headers merged over the browser profile
            raise_for_status: Map 4xx/5xx answers to exceptions
            step: Flow step name attached to raised errors
            **kwargs: Passed through to ``requests.Session.request``

        Returns:
            The response, including 3xx answers

        Raises:
            TransientError: On network failures, timeouts and 5xx answers
            HttpStatusError: On other 4xx answers when ``raise_for_status`` is set
            DeadlineExceededError: When the caller's deadline has passed
        """
        timeout = self.deadline.clip(self.timeout)

        try:
            response = self.http.request(
                method, url,
                headers=headers,
                allow_redirects=False,
                timeout=timeout,
                **kwargs
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"{method} {url} failed: {e}", step=step) from e

        logger.debug(f"{method} {url} -> {response.status_code}")

        if raise_for_status:
            if response.status_code >= 500:
                raise TransientError(
                    f"{method} {url} returned {response.status_code}", step=step
                )
            if response.status_code >= 400:
                raise HttpStatusError(
                    f"{method} {url} returned {response.status_code}",
                    status_code=response.status_code, url=url, step=step
                )

        return response

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.request('GET', url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        return self.request('POST', url, **kwargs)

    # Metadata

    def set_metadata(self, key: str, value: Any):
        """Store a JSON-serializable value next to the cookies"""
        self._metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self._metadata.get(key, default)

    def has_metadata(self, key: str) -> bool:
        return key in self._metadata

    def remove_metadata(self, key: str):
        self._metadata.pop(key, None)

    def all_metadata(self) -> Dict[str, Any]:
        return dict(self._metadata)

    # Export / import

    def export_cookie_jar(self) -> str:
        """Serialize cookies and metadata into one transportable string"""
        return json.dumps({
            'cookies': {
                'version': JAR_VERSION,
                'cookies': [cookie_to_dict(cookie) for cookie in self.http.cookies],
            },
            'metadata': self._metadata,
            'exportedAt': datetime.now(timezone.utc).isoformat(),
        })

    @classmethod
    def import_cookie_jar(cls, serialized: Union[str, Dict[str, Any]],
                          **kwargs) -> Optional['HttpSession']:
        """Build a session from an exported string, or None if it cannot be read"""
        parsed = parse_cookie_jar(serialized)
        if parsed is None:
            return None

        jar, metadata = parsed
        return cls(cookie_jar=jar, metadata=metadata, **kwargs)

    def get_cookies_for_domain(self, domain: str) -> List[Dict[str, str]]:
        """Cookies that would be sent to ``domain``"""
        domain = domain.lower()
        return [
            {'name': cookie.name, 'value': cookie.value}
            for cookie in self.http.cookies
            if domain == cookie.domain.lstrip('.') or domain.endswith('.' + cookie.domain.lstrip('.'))
        ]


def cookie_to_dict(cookie) -> Dict[str, Any]:
    """Render a cookielib cookie in the exported jar format"""
    host_only = not cookie.domain.startswith('.')
    expires = 'Infinity'
    if cookie.expires is not None:
        expires = datetime.fromtimestamp(cookie.expires, tz=timezone.utc).isoformat()

    return {
        'key': cookie.name,
        'value': cookie.value,
        'domain': cookie.domain.lstrip('.'),
        'path': cookie.path,
        'expires': expires,
        'secure': bool(cookie.secure),
        'httpOnly': any(cookie.has_nonstandard_attr(name) for name in ('HttpOnly', 'httponly')),
        'hostOnly': host_only,
    }


def cookie_from_dict(data: Dict[str, Any]):
    """Inverse of :func:`cookie_to_dict`; also accepts ``name`` for the key"""
    name = data.get('key', data.get('name'))
    if not name:
        raise ValueError("Cookie entry has no name")

    domain = data.get('domain', '')
    if domain and not data.get('hostOnly', False) and not domain.startswith('.'):
        domain = '.' + domain

    rest = {'HttpOnly': None} if data.get('httpOnly') else {}
    return create_cookie(
        name,
        data.get('value', ''),
        domain=domain,
        path=data.get('path') or '/',
        secure=bool(data.get('secure', False)),
        expires=_parse_expires(data.get('expires')),
        rest=rest,
    )


def _parse_expires(value: Any) -> Optional[int]:
    if value in (None, '', 'Infinity'):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return int(datetime.fromisoformat(str(value).replace('Z', '+00:00')).timestamp())


def parse_cookie_jar(serialized: Union[str, Dict[str, Any]]) -> Optional[Tuple[RequestsCookieJar, Dict[str, Any]]]:
    """
    Parse any of the accepted export shapes

    Accepted shapes:
        ``{"cookies": <jar>, "metadata": {...}}``
        a bare jar ``{"cookies": [...]}`` without metadata
        a double-wrapped ``{"cookies": {"cookies": <jar>, "metadata": {...}}}``

    Returns:
        (cookie jar, metadata) or None when the input cannot be read
    """
    try:
        data = json.loads(serialized) if isinstance(serialized, str) else serialized
    except ValueError as e:
        logger.warning(f"Failed to parse cookie jar: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning("Failed to parse cookie jar: not an object")
        return None

    metadata = {}
    if 'metadata' in data:
        metadata = data.get('metadata') or {}
        data = data.get('cookies')

    # Unwrap exports that were stored inside another export's cookie slot
    while isinstance(data, dict) and isinstance(data.get('cookies'), dict):
        if 'metadata' in data:
            metadata = data.get('metadata') or metadata
        data = data['cookies']

    if not isinstance(data, dict) or not isinstance(data.get('cookies'), list):
        logger.warning("Failed to parse cookie jar: no cookie list found")
        return None

    jar = RequestsCookieJar()
    try:
        for entry in data['cookies']:
            jar.set_cookie(cookie_from_dict(entry))
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to parse cookie jar: {e}")
        return None

    return jar, metadata
