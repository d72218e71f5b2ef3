#!/usr/bin/env python3
"""
Authentication Utility Functions
"""

import base64
import json
import logging
import re
import time
import urllib.parse
from typing import Any, Callable, Dict, Optional

from bs4 import BeautifulSoup, Tag

from .exceptions import DeadlineExceededError

logger = logging.getLogger(__name__)

SERVER_DATA_PATTERN = re.compile(r'var\s+ServerData\s*=\s*')
UCIS_MARKER = 'var ucis = ucis || {};'
UCIS_STRING_PATTERN = re.compile(r"ucis\.(\w+)\s*=\s*'(.*?)'")


def normalize_url(url: str, base_url: str = None) -> str:
    """Normalize and resolve relative URLs"""
    if base_url and not url.startswith(('http://', 'https://')):
        return urllib.parse.urljoin(base_url, url)
    return url


def extract_server_data(html: str) -> Optional[Dict[str, Any]]:
    """
    Extract the ``ServerData`` object embedded in login pages

    The object is decoded with a streaming JSON decoder starting at the
    opening brace, so braces inside string values do not cut it short.

    Returns:
        The decoded dict, or None when absent or not valid JSON
    """
    if not html:
        return None

    match = SERVER_DATA_PATTERN.search(html)
    if not match:
        return None

    start = html.find('{', match.end())
    if start < 0:
        return None

    try:
        data, _ = json.JSONDecoder().raw_decode(html, start)
    except ValueError:
        logger.debug("ServerData block present but not valid JSON")
        return None

    return data if isinstance(data, dict) else None


def extract_flow_token(server_data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Extract the PPFT flow token from ``ServerData.sFTTag``"""
    if not server_data or not server_data.get('sFTTag'):
        return None

    soup = BeautifulSoup(server_data['sFTTag'], 'html.parser')
    field = soup.select_one('input[name="PPFT"]')
    if field is None:
        return None
    return field.get('value')


def extract_hidden_fields(form: Tag) -> Dict[str, str]:
    """Collect name/value pairs of every hidden input in a form"""
    fields = {}
    for input_field in form.find_all('input', {'type': 'hidden'}):
        name = input_field.get('name')
        if name:
            fields[name] = input_field.get('value', '')
    return fields


def extract_ucis_data(html: str) -> Optional[Dict[str, str]]:
    """Extract the ``ucis.*`` string assignments from the consent page script"""
    if not html:
        return None

    soup = BeautifulSoup(html, 'html.parser')
    for script in soup.find_all('script'):
        text = script.string or script.get_text()
        if text and UCIS_MARKER in text:
            return dict(UCIS_STRING_PATTERN.findall(text))

    return None


def js_unescape(value: str) -> str:
    """Decode a JavaScript string literal body (``\\u002f`` style escapes)"""
    try:
        return json.loads('"' + value.replace('"', '\\"') + '"')
    except ValueError:
        return value


def get_query_param(url: str, name: str) -> Optional[str]:
    """Return the first value of a query parameter, or None"""
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    values = query.get(name)
    return values[0] if values else None


def parse_fragment(url: str) -> Dict[str, str]:
    """Parse the fragment of a redirect URL as if it were a query string"""
    parsed = urllib.parse.urlparse(url)
    params = urllib.parse.parse_qs(parsed.fragment or parsed.query)
    return {key: values[0] for key, values in params.items()}


def base64url_encode(data: bytes) -> str:
    """Unpadded URL-safe base64"""
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Shorten a secret for log output"""
    if not value:
        return '<empty>'
    if len(value) <= visible:
        return '*' * len(value)
    return value[:visible] + '...'


def is_valid_email(email: str) -> bool:
    """Loose address check used for credentials and recovery accounts"""
    return bool(re.match(r'^[\w.+-]+@[\w-]+(\.[\w-]+)+$', email or ''))


class Deadline:
    """Wall-clock budget shared by every request and sleep in one attempt"""

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds if seconds is not None else None

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded"""
        if self.expires_at is None:
            return None
        return self.expires_at - self._clock()

    def check(self, step: Optional[str] = None):
        """Raise DeadlineExceededError once the budget is spent"""
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError("Deadline exceeded", step=step)

    def clip(self, timeout: float) -> float:
        """Clip a timeout to the remaining budget"""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def sleep(self, seconds: float, sleeper: Callable[[float], None] = time.sleep):
        """Sleep for at most the remaining budget"""
        if seconds <= 0:
            return
        sleeper(self.clip(seconds))
        self.check()

