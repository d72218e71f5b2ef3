#!/usr/bin/env python3
"""
Passcode extraction from email previews
"""

import logging
import re
from typing import List, Optional, Pattern

logger = logging.getLogger(__name__)

# Labeled patterns first, bare digit runs last
OTP_PATTERNS: List[str] = [
    r"security code:\s*(\d{4,8})(?!\d)",
    r"security code\s+is\s+(\d{4,8})(?!\d)",
    r"security code\s+(\d{4,8})(?!\d)",
    r"verification code:\s*(\d{4,8})(?!\d)",
    r"verification code\s+(\d{4,8})(?!\d)",
    r"verify.*?code:\s*(\d{4,8})(?!\d)",
    r"your code:\s*(\d{4,8})(?!\d)",
    r"your code\s+(\d{4,8})(?!\d)",
    r"code is:\s*(\d{4,8})(?!\d)",
    r"code is\s+(\d{4,8})(?!\d)",
    r"one-time code:?\s*(\d{4,8})(?!\d)",
    r"OTP:?\s*(\d{4,8})(?!\d)",
    r"pass\s?code:?\s*(\d{4,8})(?!\d)",
    r"use\s+(?:the\s+)?(?:following\s+)?(?:security\s+)?code[:\s]+(\d{4,8})(?!\d)",
    r"please\s+use.*?code[:\s]+(\d{4,8})(?!\d)",
    r"access code:?\s*(\d{4,8})(?!\d)",
    r"(?:código|код|代码|コード|codice|kode):\s*(\d{4,8})(?!\d)",
    r"code:\s*(\d{4,8})(?!\d)",
    r"[\[({](\d{4,8})[\])}]",
    r"\b(\d{6})\b",
    r"\b(\d{4,8})\b",
]


class OtpPatternMatcher:
    """Regex-based passcode extractor"""

    def __init__(self, custom_patterns: Optional[List[str]] = None):
        patterns = custom_patterns or OTP_PATTERNS
        self._patterns: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in patterns]

    def extract_otp(self, text: str) -> Optional[str]:
        """
        Extract a 4 to 8 digit passcode from text

        Returns:
            The code, or None when nothing matched
        """
        if not text:
            return None

        clean_text = re.sub(r'\s+', ' ', text).strip()

        for pattern in self._patterns:
            match = pattern.search(clean_text)
            if match:
                logger.debug(f"Passcode matched pattern {pattern.pattern}")
                return match.group(1)

        logger.debug(f"No passcode in text: {clean_text[:100]}")
        return None


_default_matcher = OtpPatternMatcher()


def extract_otp(text: str) -> Optional[str]:
    """Extract a passcode with the default patterns"""
    return _default_matcher.extract_otp(text)
