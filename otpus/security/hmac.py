"""
Capability tokens: HMAC-SHA256 over a canonical subject string.

Two kinds of subject are in use:

* the chat id alone, for the signature on the auth-form deep link;
* ``<domain>:<chat_id>``, for the bearer token a deployed tenant action
  presents when it calls back into the OTP webhook.

Tokens carry no state and no expiry; both sides recompute them from the
same subject and shared secret.
"""

from __future__ import annotations

import hashlib
import hmac

_SCHEMES = ("https://", "http://")


def sign(subject: str, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of ``subject`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), subject.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(subject: str, token: str, secret: str) -> bool:
    """
    Recompute the token for ``subject`` and compare in constant time.

    Any malformed input (None, non-ASCII token) is a failed verification.
    """
    if not token or subject is None:
        return False
    expected = sign(subject, secret)
    try:
        return hmac.compare_digest(expected, token)
    except TypeError:
        # compare_digest rejects non-ASCII str
        return False


def canonical_domain(domain: str) -> str:
    """
    Tenant domain without scheme and trailing slashes.

    ``https://tenant.example.com/`` and ``tenant.example.com`` map to the same value,
    and applying the function twice changes nothing.
    """
    value = domain
    while True:
        stripped = _strip_once(value)
        if stripped == value:
            return value
        value = stripped


def _strip_once(value: str) -> str:
    value = value.strip()
    lowered = value.lower()
    for scheme in _SCHEMES:
        if lowered.startswith(scheme):
            value = value[len(scheme) :]
            break
    return value.rstrip("/")


def domain_subject(domain: str, chat_id: int | str) -> str:
    return f"{canonical_domain(domain)}:{chat_id}"


def sign_domain_token(domain: str, chat_id: int | str, secret: str) -> str:
    """Bearer token embedded into the tenant actions as BOT_GATEWAY_TOKEN."""
    return sign(domain_subject(domain, chat_id), secret)


def verify_domain_token(domain: str, chat_id: int | str, token: str, secret: str) -> bool:
    if not domain or chat_id in (None, ""):
        return False
    return verify(domain_subject(domain, chat_id), token, secret)
