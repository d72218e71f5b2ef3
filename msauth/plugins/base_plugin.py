#!/usr/bin/env python3
"""
Base One-Time Passcode Provider
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseOtpProvider(ABC):
    """Abstract source of one-time passcodes for the proof verification page"""

    def __init__(self, config: Dict[str, Any] = None):
        """
        Initialize provider with configuration

        Args:
            config: Provider-specific configuration dictionary
        """
        self.config = config or {}

    @abstractmethod
    def get_code(self, proof_email: str) -> str:
        """
        Obtain the passcode that was sent to ``proof_email``

        Args:
            proof_email: Address the provider says it sent the code to

        Returns:
            The numeric code as a string

        Raises:
            OtpError: If no code could be obtained
        """
        pass

