"""
Opaque referral codes.

A code is a truncated HMAC-SHA256 of the visitor id. It reveals nothing
about the visitor; the referrer is found by looking the code up in the
ledger, never by decoding it.
"""

from __future__ import annotations

import hashlib
import hmac
import re

CODE_LENGTH = 20
DISPLAY_LENGTH = 8

_CODE_PATTERN = re.compile(rf"^[0-9a-f]{{{CODE_LENGTH}}}$")


def _digest(purpose: str, visitor_id: str, secret: str) -> str:
    message = f"{purpose}:{visitor_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def make_referral_code(visitor_id: str, secret: str) -> str:
    return _digest("code", visitor_id, secret)[:CODE_LENGTH]


def normalize_referral_code(code: str) -> str | None:
    """Return the canonical form of a presented code, or None if it cannot be one."""
    code = code.strip().lower()
    if not _CODE_PATTERN.match(code):
        return None
    return code


def display_code(visitor_id: str, secret: str, prefix: str = "ADX-") -> str:
    """Short human-readable form, e.g. ADX-1A2B3C4D."""
    return prefix + _digest("display", visitor_id, secret)[:DISPLAY_LENGTH].upper()


def referral_link(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/?ref={code}"
