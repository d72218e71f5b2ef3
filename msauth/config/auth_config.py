#!/usr/bin/env python3
"""
Authentication Configuration Models
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote

import yaml
from dotenv import load_dotenv

from .client_profiles import ClientProfile, get_predefined_client_profiles

logger = logging.getLogger(__name__)


@dataclass
class ProxyConfig:
    """Outbound HTTP proxy"""
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    def to_url(self) -> str:
        auth = ''
        if self.username:
            auth = quote(self.username, safe='')
            if self.password:
                auth += ':' + quote(self.password, safe='')
            auth += '@'
        return f"http://{auth}{self.host}:{self.port}"

    def to_requests_proxies(self) -> Dict[str, str]:
        url = self.to_url()
        return {'http': url, 'https': url}


@dataclass
class OtpPollingConfig:
    """Recovery mailbox polling, all values in seconds"""
    timeout: float = 120
    poll_interval: float = 5
    initial_delay: float = 2
    max_age: float = 300
    folder_cache_seconds: float = 300
    max_conversations: int = 15


@dataclass
class LoggingConfig:
    """Logging output settings"""
    level: str = 'INFO'
    log_to_file: bool = False
    log_filename: str = 'msauth.log'
    logs_dir: str = 'logs'
    rotate_logs: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level': self.level,
            'log_to_file': self.log_to_file,
            'log_filename': self.log_filename,
            'logs_dir': self.logs_dir,
            'rotate_logs': self.rotate_logs,
        }


@dataclass
class AuthConfig:
    """Main authentication configuration"""
    request_timeout: float = 30
    max_redirect_steps: int = 20
    max_silent_hops: int = 2
    max_flow_restarts: int = 3
    otp: OtpPollingConfig = field(default_factory=OtpPollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    client_profiles: Dict[str, ClientProfile] = field(default_factory=get_predefined_client_profiles)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'AuthConfig':
        """Create AuthConfig from dictionary"""
        auth_config = cls()
        auth_config.request_timeout = float(config_dict.get('request_timeout', 30))
        auth_config.max_redirect_steps = int(config_dict.get('max_redirect_steps', 20))
        auth_config.max_silent_hops = int(config_dict.get('max_silent_hops', 2))
        auth_config.max_flow_restarts = int(config_dict.get('max_flow_restarts', 3))

        otp_data = config_dict.get('otp', {})
        auth_config.otp = OtpPollingConfig(
            timeout=float(otp_data.get('timeout', 120)),
            poll_interval=float(otp_data.get('poll_interval', 5)),
            initial_delay=float(otp_data.get('initial_delay', 2)),
            max_age=float(otp_data.get('max_age', 300)),
            folder_cache_seconds=float(otp_data.get('folder_cache_seconds', 300)),
            max_conversations=int(otp_data.get('max_conversations', 15)),
        )

        logging_data = config_dict.get('logging', {})
        auth_config.logging = LoggingConfig(
            level=logging_data.get('level', 'INFO'),
            log_to_file=logging_data.get('log_to_file', False),
            log_filename=logging_data.get('log_filename', 'msauth.log'),
            logs_dir=logging_data.get('logs_dir', 'logs'),
            rotate_logs=logging_data.get('rotate_logs', True),
        )

        # Configured profiles override the built-in ones of the same name
        for name, profile_data in config_dict.get('client_profiles', {}).items():
            auth_config.client_profiles[name] = ClientProfile.from_dict(name, profile_data)

        return auth_config

    @classmethod
    def from_yaml_file(cls, file_path: Path) -> 'AuthConfig':
        """Load configuration from YAML file"""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config_dict = yaml.safe_load(f) or {}
            return cls.from_dict(config_dict.get('authentication', {}))
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load auth config from {file_path}: {e}")
            return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'request_timeout': self.request_timeout,
            'max_redirect_steps': self.max_redirect_steps,
            'max_silent_hops': self.max_silent_hops,
            'max_flow_restarts': self.max_flow_restarts,
            'otp': {
                'timeout': self.otp.timeout,
                'poll_interval': self.otp.poll_interval,
                'initial_delay': self.otp.initial_delay,
                'max_age': self.otp.max_age,
                'folder_cache_seconds': self.otp.folder_cache_seconds,
                'max_conversations': self.otp.max_conversations,
            },
            'logging': self.logging.to_dict(),
            'client_profiles': {
                name: profile.to_dict() for name, profile in self.client_profiles.items()
            },
        }

    def get_client_profile(self, name: str) -> ClientProfile:
        """Get a client profile by name"""
        return self.client_profiles[name]


def _to_bool(value: str) -> bool:
    return value.lower() in ('1', 'true', 'yes')


ENV_MAPPINGS: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    'MSAUTH_REQUEST_TIMEOUT': (None, 'request_timeout', float),
    'MSAUTH_MAX_REDIRECT_STEPS': (None, 'max_redirect_steps', int),
    'MSAUTH_MAX_SILENT_HOPS': (None, 'max_silent_hops', int),
    'MSAUTH_MAX_FLOW_RESTARTS': (None, 'max_flow_restarts', int),
    'MSAUTH_OTP_TIMEOUT': ('otp', 'timeout', float),
    'MSAUTH_OTP_POLL_INTERVAL': ('otp', 'poll_interval', float),
    'MSAUTH_OTP_INITIAL_DELAY': ('otp', 'initial_delay', float),
    'MSAUTH_OTP_MAX_AGE': ('otp', 'max_age', float),
    'MSAUTH_LOG_LEVEL': ('logging', 'level', str),
    'MSAUTH_LOG_TO_FILE': ('logging', 'log_to_file', _to_bool),
}


def apply_env_overrides(auth_config: AuthConfig) -> AuthConfig:
    """Apply environment variable overrides to configuration"""
    for env_var, (section, key, converter) in ENV_MAPPINGS.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        try:
            converted_value = converter(value)
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid value for {env_var}: {value} - {e}")
            continue

        target = getattr(auth_config, section) if section else auth_config
        setattr(target, key, converted_value)

    return auth_config


def load_config(config_path: Optional[str] = 'config.yaml') -> AuthConfig:
    """Load configuration from a YAML file, ``.env`` and the environment"""
    load_dotenv()

    if config_path and Path(config_path).exists():
        auth_config = AuthConfig.from_yaml_file(Path(config_path))
    else:
        auth_config = AuthConfig()

    return apply_env_overrides(auth_config)
