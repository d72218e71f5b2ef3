#!/usr/bin/env python3
"""
Microsoft account endpoints and the fixed browser header profile
"""

LOGIN_URL = 'https://login.live.com/'
CREDENTIAL_TYPE_URL = 'https://login.live.com/GetCredentialType.srf'
OAUTH_REENTRY_URL = 'https://login.live.com/login.srf?wreply=https://outlook.live.com/owa/0/'

REWARDS_URL = 'https://rewards.bing.com/Signin?idru=%2F'
REWARDS_HOME_URL = 'https://rewards.bing.com/'
OUTLOOK_URL = 'https://outlook.live.com/owa/'
BING_URL = 'https://www.bing.com/'
BING_SIGNIN_URL = BING_URL + 'fd/auth/signin/v2?action=interactive&isSilent=true'
ADD_PROOF_URL = 'https://account.live.com/proofs/Add'
PROFILE_URL = 'https://account.microsoft.com/home/api/profile/personal-info'

PRIVACY_NOTICE_HOST = 'privacynotice.account.microsoft.com'
RECORD_NOTICE_URL = f'https://{PRIVACY_NOTICE_HOST}/recordnotice'

TOKEN_PROBE_URL = 'https://outlook.office.com/api/v2.0/me'

OWA_STARTUP_URL = 'https://outlook.live.com/owa/0/startupdata.ashx'
OWA_SERVICE_URL = 'https://outlook.live.com/owa/0/service.svc'

# Tenant suffix of consumer mailbox anchors
TENANT_ID = '84df9e7f-e9f6-40af-b435-aaaaaaaaaaaa'

BROWSER_PROFILE = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36'
    ),
    'sec-ch-ua': '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
    'sec-ch-ua-mobile': '?0',
    'sec-ch-ua-platform': '"Windows"',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Sec-Fetch-Site': 'same-origin',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Dest': 'document',
}
