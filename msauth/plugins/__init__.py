#!/usr/bin/env python3
"""
One-Time Passcode Providers Package
"""

from .base_plugin import BaseOtpProvider
from .fixed_code import FixedCodeProvider
from .email_otp import RecoveryMailboxOtpProvider

__all__ = [
    'BaseOtpProvider',
    'FixedCodeProvider',
    'RecoveryMailboxOtpProvider'
]
