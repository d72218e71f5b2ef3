#!/usr/bin/env python3
"""
Outlook OTP Retrieval

Reads recent conversations of a recovery mailbox through the Outlook web
service endpoints and extracts the newest Microsoft security code.

Usage:
    fetcher = create_otp_fetcher_from_session(recovery_session)
    result = fetcher.wait_for_otp(timeout=120, poll_interval=5)
    print(result.code, result.method)
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set, Tuple, Union

from .endpoints import OWA_SERVICE_URL, OWA_STARTUP_URL
from .exceptions import HttpStatusError, MissingRecoverySessionError, OtpFetchError, OtpTimeoutError, TransientError
from .otp_patterns import extract_otp
from .session_store import HttpSession, parse_cookie_jar

logger = logging.getLogger(__name__)

SUBJECT_KEYWORDS = ('security code', 'verification code', 'security info', 'verify')
SENDER_KEYWORDS = ('microsoft', 'accountprotection', 'account-security')
PREVIEW_LENGTH = 200

METHOD_STARTUP = 'startup_data_direct'
METHOD_CONVERSATION = 'conversation_api'


class FolderIds(NamedTuple):
    search_folder_id: str
    folder_id: str


@dataclass
class EmailSummary:
    """The conversation a passcode was read from"""
    subject: str
    sender: str
    delivery_time: datetime
    preview: str

    @classmethod
    def from_conversation(cls, conversation: Dict[str, Any]) -> Optional['EmailSummary']:
        """Parse an OWA conversation; None when it has no usable delivery time"""
        delivery_time = parse_delivery_time(conversation.get('LastDeliveryTime'))
        if delivery_time is None:
            return None

        sender = ((conversation.get('LastSender') or {}).get('Mailbox') or {}).get('EmailAddress') or ''
        return cls(
            subject=conversation.get('ConversationTopic') or '',
            sender=sender,
            delivery_time=delivery_time,
            preview=conversation.get('Preview') or '',
        )

    def is_security_email(self) -> bool:
        subject = self.subject.lower()
        sender = self.sender.lower()
        return (any(keyword in subject for keyword in SUBJECT_KEYWORDS)
                and any(keyword in sender for keyword in SENDER_KEYWORDS))

    def age_seconds(self, now: float) -> float:
        return now - self.delivery_time.timestamp()


@dataclass
class OtpResult:
    """A passcode and where it came from"""
    code: str
    source: EmailSummary
    method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'otp': self.code,
            'email': {
                'subject': self.source.subject,
                'sender': self.source.sender,
                'deliveryTime': self.source.delivery_time.isoformat(),
                'preview': self.source.preview[:PREVIEW_LENGTH],
            },
            'method': self.method,
        }


def parse_delivery_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an OWA timestamp; naive values are taken as UTC"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Unparseable delivery time: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def conversations_from_snapshot(snapshot: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Locate the conversation list in any of the known snapshot layouts"""
    for container in (snapshot.get('findConversation'), snapshot, snapshot.get('FindConversation')):
        if isinstance(container, dict):
            conversations = (container.get('Body') or {}).get('Conversations')
            if isinstance(conversations, list):
                return conversations
    return []


def folder_ids_from_snapshot(snapshot: Dict[str, Any]) -> Optional[FolderIds]:
    """Folder ids carried in the snapshot, if any"""
    body = (snapshot.get('findConversation') or {}).get('Body') or {}
    folder_id = (body.get('FolderId') or {}).get('Id')
    search_folder_id = (body.get('SearchFolderId') or {}).get('Id')
    if folder_id:
        return FolderIds(search_folder_id or folder_id, folder_id)

    folder_id = ((snapshot.get('Body') or {}).get('FolderId') or {}).get('Id')
    if folder_id:
        return FolderIds(folder_id, folder_id)
    return None


class OutlookMailClient:
    """Thin client for the Outlook web service calls used to read previews"""

    def __init__(self, access_token: str, mailbox_value: str,
                 session: Optional[HttpSession] = None,
                 folder_cache_seconds: float = 300,
                 clock: Callable[[], float] = time.time):
        self.access_token = access_token
        self.mailbox_value = mailbox_value
        self.session = session or HttpSession(timeout=15)
        self.folder_cache_seconds = folder_cache_seconds
        self._clock = clock
        self._folder_cache: Optional[FolderIds] = None
        self._folder_cache_time: Optional[float] = None

        self.base_headers = {
            'Host': 'outlook.live.com',
            'X-Req-Source': 'Mail',
            'Authorization': f'MSAuth1.0 usertoken="{access_token}", type="MSACT"',
            'X-Anchormailbox': f'PUID:{mailbox_value}',
            'X-Owa-Hosted-Ux': 'false',
            'Prefer': 'IdType="ImmutableId", exchange.behavior="IncludeThirdPartyOnlineMeetingProviders"',
            'Content-Type': 'application/json; charset=utf-8',
            'Accept': '*/*',
            'Origin': 'https://outlook.live.com',
            'Cookie': 'a=a;',
        }

    def startup_snapshot(self) -> Dict[str, Any]:
        """Fetch the mailbox startup data, which embeds recent conversations"""
        return self._post(OWA_STARTUP_URL, {'Action': 'FindConversation'})

    def find_conversations(self, max_entries: int = 15) -> List[Dict[str, Any]]:
        """Newest inbox conversations, sorted by last delivery time"""
        payload = {
            '__type': 'FindConversationJsonRequest:#Exchange',
            'Header': {
                '__type': 'JsonRequestHeaders:#Exchange',
                'RequestServerVersion': 'V2018_01_08',
            },
            'Body': {
                'ParentFolderId': {'__type': 'DistinguishedFolderId:#Exchange', 'Id': 'inbox'},
                'ConversationShape': {'__type': 'ConversationResponseShape:#Exchange', 'BaseShape': 'IdOnly'},
                'ShapeName': 'ReactConversationListView',
                'Paging': {
                    '__type': 'IndexedPageView:#Exchange',
                    'BasePoint': 'Beginning',
                    'Offset': 0,
                    'MaxEntriesReturned': max_entries,
                },
                'ViewFilter': 'All',
                'SortOrder': [{
                    '__type': 'SortResults:#Exchange',
                    'Order': 'Descending',
                    'Path': {'__type': 'PropertyUri:#Exchange', 'FieldURI': 'ConversationLastDeliveryTime'},
                }],
            },
        }
        data = self._post(f"{OWA_SERVICE_URL}?action=FindConversation", {
            'Action': 'FindConversation',
            'X-Owa-Urlpostdata': json.dumps(payload),
        })
        conversations = (data.get('Body') or {}).get('Conversations')
        return conversations if isinstance(conversations, list) else []

    def get_folder_ids(self, snapshot: Optional[Dict[str, Any]] = None) -> Optional[FolderIds]:
        """Folder ids from cache, the snapshot, or the inbox lookup"""
        if self._folder_cache and self._folder_cache_time is not None:
            if self._clock() - self._folder_cache_time < self.folder_cache_seconds:
                return self._folder_cache

        folder_ids = folder_ids_from_snapshot(snapshot or {})
        if folder_ids is None:
            logger.debug("Snapshot carried no folder ids, asking for the inbox folder")
            folder_ids = self.get_inbox_folder_ids()

        if folder_ids is not None:
            self._folder_cache = folder_ids
            self._folder_cache_time = self._clock()
        return folder_ids

    def get_inbox_folder_ids(self) -> Optional[FolderIds]:
        """Resolve the inbox folder id through GetFolder"""
        payload = {
            '__type': 'GetFolderRequest:#Exchange',
            'Header': {
                '__type': 'JsonRequestHeaders:#Exchange',
                'RequestServerVersion': 'V2018_01_08',
            },
            'Body': {
                'FolderIds': [{'__type': 'DistinguishedFolderId:#Exchange', 'Id': 'inbox'}],
                'FolderShape': {'__type': 'FolderResponseShape:#Exchange', 'BaseShape': 'IdOnly'},
            },
        }
        data = self._post(f"{OWA_SERVICE_URL}?action=GetFolder", {
            'Action': 'GetFolder',
            'X-Owa-Urlpostdata': json.dumps(payload),
        })
        try:
            inbox_id = data['Body']['ResponseMessages']['Items'][0]['Folders'][0]['FolderId']['Id']
        except (KeyError, IndexError, TypeError):
            return None
        return FolderIds(inbox_id, inbox_id)

    def clear_cache(self):
        self._folder_cache = None
        self._folder_cache_time = None

    def _post(self, url: str, extra_headers: Dict[str, str]) -> Dict[str, Any]:
        headers = dict(self.base_headers)
        headers.update(extra_headers)
        try:
            response = self.session.post(url, json={}, headers=headers, step='otp-fetch')
        except HttpStatusError as e:
            raise OtpFetchError(f"Mail API rejected request: {e}", step='otp-fetch',
                                details={'status_code': e.status_code}) from e
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class OtpFetcher:
    """Polls a mailbox for the newest unused Microsoft security code"""

    def __init__(self, client: OutlookMailClient, max_conversations: int = 15,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.max_conversations = max_conversations
        self._sleep = sleep
        self._clock = clock
        self._consumed: Set[Tuple[str, str]] = set()

    def find_otp(self, max_age: float = 300) -> Optional[OtpResult]:
        """
        One poll: scan the startup snapshot, then the conversation list

        Args:
            max_age: Oldest acceptable email, in seconds

        Returns:
            OtpResult or None when no fresh unused code was found
        """
        self.client.clear_cache()

        snapshot = self.client.startup_snapshot()
        result = self._scan(conversations_from_snapshot(snapshot), METHOD_STARTUP, max_age)
        if result:
            return result

        if self.client.get_folder_ids(snapshot) is None:
            logger.debug("Could not obtain folder ids and no code found in startup data")
            return None

        conversations = self.client.find_conversations(self.max_conversations)
        return self._scan(conversations, METHOD_CONVERSATION, max_age)

    def wait_for_otp(self, timeout: float = 120, poll_interval: float = 5,
                     initial_delay: float = 2, max_age: float = 300) -> OtpResult:
        """
        Poll until a code arrives

        Raises:
            OtpTimeoutError: When ``timeout`` seconds pass without a code
            OtpFetchError: When the mail API rejects the credentials
        """
        if initial_delay > 0:
            self._sleep(initial_delay)

        start = self._clock()
        attempts = 0

        while self._clock() - start < timeout:
            attempts += 1
            logger.debug(f"Passcode poll attempt {attempts}")

            try:
                result = self.find_otp(max_age=max_age)
            except TransientError as e:
                logger.warning(f"Passcode poll {attempts} failed: {e}")
                result = None

            if result:
                logger.info(f"Passcode found after {attempts} attempts via {result.method}")
                return result

            remaining = timeout - (self._clock() - start)
            wait = min(poll_interval, remaining)
            if wait > 0:
                self._sleep(wait)

        raise OtpTimeoutError(f"Timeout after {attempts} attempts", attempts=attempts,
                              step='otp-fetch')

    def _scan(self, conversations: List[Dict[str, Any]], method: str,
              max_age: float) -> Optional[OtpResult]:
        now = self._clock()
        candidates = []

        for conversation in conversations:
            summary = EmailSummary.from_conversation(conversation)
            if summary is None:
                logger.debug(f"Skipping conversation without delivery time: {conversation.get('ConversationTopic')}")
                continue
            if not summary.is_security_email():
                continue
            if summary.age_seconds(now) > max_age:
                logger.debug(f"Email too old: {summary.subject}")
                continue
            candidates.append(summary)

        candidates.sort(key=lambda summary: summary.delivery_time, reverse=True)

        for summary in candidates:
            code = extract_otp(summary.preview)
            if not code:
                continue
            key = (code, summary.delivery_time.isoformat())
            if key in self._consumed:
                logger.debug("Skipping already used passcode")
                continue
            self._consumed.add(key)
            summary.preview = summary.preview[:PREVIEW_LENGTH]
            return OtpResult(code=code, source=summary, method=method)

        return None


def create_otp_fetcher_from_session(session: HttpSession, **kwargs) -> OtpFetcher:
    """Build a fetcher from the tokens stored in a session's metadata"""
    tokens = session.get_metadata('outlookTokens') or {}
    mailbox = session.get_metadata('mailboxValue')
    if not tokens.get('access_token') or not mailbox:
        raise MissingRecoverySessionError("Missing Outlook tokens or mailbox value in session",
                                          step='otp-fetch')
    return OtpFetcher(OutlookMailClient(tokens['access_token'], mailbox), **kwargs)


def create_otp_fetcher_from_cookie_jar(cookie_jar: Union[str, Dict[str, Any]], **kwargs) -> OtpFetcher:
    """Build a fetcher from an exported cookie jar string"""
    parsed = parse_cookie_jar(cookie_jar)
    if parsed is None:
        raise MissingRecoverySessionError("Invalid cookie jar format", step='otp-fetch')
    _, metadata = parsed
    return create_otp_fetcher_from_session(HttpSession(metadata=metadata), **kwargs)
