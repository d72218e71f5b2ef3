#!/usr/bin/env python3
"""
Fixed-code OTP provider used in tests and scripted runs
"""

from typing import Iterable, List

from ..exceptions import OtpError
from .base_plugin import BaseOtpProvider


class FixedCodeProvider(BaseOtpProvider):
    """Hands out pre-arranged codes in order and records every request"""

    def __init__(self, codes: Iterable[str]):
        super().__init__()
        self._codes: List[str] = list(codes)
        self.requests: List[str] = []

    def get_code(self, proof_email: str) -> str:
        self.requests.append(proof_email)
        if not self._codes:
            raise OtpError(f"No code left for {proof_email}", step='verify-proof')
        return self._codes.pop(0)
