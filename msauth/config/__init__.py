#!/usr/bin/env python3
"""
Authentication Configuration Management
"""

from .auth_config import (
    AuthConfig, LoggingConfig, OtpPollingConfig, ProxyConfig,
    apply_env_overrides, load_config
)
from .client_profiles import ClientProfile, get_predefined_client_profiles
from .logging_config import setup_logging

__all__ = [
    'AuthConfig',
    'LoggingConfig',
    'OtpPollingConfig',
    'ProxyConfig',
    'ClientProfile',
    'apply_env_overrides',
    'load_config',
    'get_predefined_client_profiles',
    'setup_logging'
]
