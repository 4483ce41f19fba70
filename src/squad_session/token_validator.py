from __future__ import annotations

import base64
import binascii
import json
import math
import time
from typing import Callable

Clock = Callable[[], float]


def _decode_payload(token: str) -> dict | None:
    segments = token.split(".")
    if len(segments) < 2 or not segments[1]:
        return None

    payload = segments[1]
    payload += "=" * (-len(payload) % 4)
    try:
        raw = base64.urlsafe_b64decode(payload.encode("ascii"))
        claims = json.loads(raw)
    except (binascii.Error, UnicodeError, ValueError):
        return None

    return claims if isinstance(claims, dict) else None


def expires_at(token: str) -> float | None:
    """Return the ``exp`` claim (seconds since epoch), or None if it can't be read.

    The signature is not verified; the issuer and TLS are trusted for that.
    """
    claims = _decode_payload(token)
    if claims is None:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        value = float(exp)
    except OverflowError:
        return None
    # json.loads accepts NaN and Infinity; treat them like a missing claim.
    if not math.isfinite(value):
        return None
    return value


def is_expired(token: str | None, now: Clock | None = None) -> bool:
    if not token:
        return True
    exp = expires_at(token)
    if exp is None:
        return True
    current = (now or time.time)()
    return exp <= current


class TokenValidator:
    def __init__(self, clock: Clock = time.time, leeway_seconds: float = 0.0):
        self._clock = clock
        self._leeway = leeway_seconds

    def is_expired(self, token: str | None) -> bool:
        return is_expired(token, lambda: self._clock() + self._leeway)

    def expires_at(self, token: str) -> float | None:
        return expires_at(token)
