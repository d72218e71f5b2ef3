#!/usr/bin/env python3
"""
Predefined OAuth client profiles
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any


@dataclass
class ClientProfile:
    """Public OAuth client the authorization request impersonates"""
    name: str
    client_id: str
    authority: str
    redirect_uri: str
    scopes: List[str] = field(default_factory=list)
    origin: str = ''
    prompt: str = 'none'
    response_mode: str = 'fragment'
    client_sku: str = 'msal.js.browser'
    client_version: str = '4.14.0'

    @property
    def authorize_url(self) -> str:
        return f"{self.authority.rstrip('/')}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.authority.rstrip('/')}/oauth2/v2.0/token"

    @property
    def scope(self) -> str:
        return ' '.join(self.scopes)

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'ClientProfile':
        """Create a profile from a config mapping"""
        return cls(
            name=name,
            client_id=data['client_id'],
            authority=data['authority'],
            redirect_uri=data['redirect_uri'],
            scopes=list(data.get('scopes', [])),
            origin=data.get('origin', ''),
            prompt=data.get('prompt', 'none'),
            response_mode=data.get('response_mode', 'fragment'),
            client_sku=data.get('client_sku', 'msal.js.browser'),
            client_version=data.get('client_version', '4.14.0'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('name')
        return data


def get_predefined_client_profiles() -> Dict[str, ClientProfile]:
    """Get the built-in Outlook client profile"""
    return {
        'outlook': ClientProfile(
            name='outlook',
            client_id='9199bf20-a13f-4107-85dc-02114787ef48',
            authority='https://login.microsoftonline.com/consumers',
            redirect_uri='https://outlook.live.com/mail/oauthRedirect.html',
            scopes=[
                'service::outlook.office.com::MBI_SSL',
                'openid',
                'profile',
                'offline_access',
            ],
            origin='https://outlook.live.com',
        ),
    }
