"""
taxgate.engine.tokens — Verification token encode/decode
=========================================================

A verification token binds ``(user_id, group_id, issued_at)`` plus a random
nonce so it cannot be guessed from public IDs.  The decoded text is what
the session row stores; the transport only ever sees the URL-safe base64
form.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass
from datetime import datetime

from taxgate.constants import as_utc

NONCE_BYTES = 12


@dataclass(frozen=True, slots=True)
class VerificationToken:
    user_id: int
    group_id: int
    issued_ms: int
    raw: str

    @property
    def encoded(self) -> str:
        return base64.urlsafe_b64encode(self.raw.encode()).decode().rstrip("=")


def issue_token(user_id: int, group_id: int, issued_at: datetime) -> VerificationToken:
    issued_ms = int(as_utc(issued_at).timestamp() * 1000)
    nonce = secrets.token_hex(NONCE_BYTES)
    raw = f"{user_id}_{group_id}_{issued_ms}_{nonce}"
    return VerificationToken(user_id, group_id, issued_ms, raw)


def decode_token(encoded: str) -> VerificationToken | None:
    """Parse an encoded token.  Returns None if it is malformed."""
    if not encoded:
        return None
    padded = encoded.strip() + "=" * (-len(encoded.strip()) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode()).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None

    parts = raw.split("_")
    if len(parts) != 4 or not parts[3]:
        return None
    try:
        user_id, group_id, issued_ms = (int(p) for p in parts[:3])
    except ValueError:
        return None
    return VerificationToken(user_id, group_id, issued_ms, raw)
