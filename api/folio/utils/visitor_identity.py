"""
Visitor identity resolution for story view counting.

Resolves an opaque, non-PII visitor token from the request without touching
storage or the network. Order of preference:

1. ``X-Visitor-Id`` header supplied by the client
2. the persisted visitor cookie
3. a freshly minted id, returned together with a cookie to persist it
"""

from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import unquote

from fastapi import Request, Response

from .. import settings

VISITOR_ID_HEADER = "X-Visitor-Id"

# Alphanumeric plus . _ - , 6 to 64 characters
VISITOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{6,64}$")

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


@dataclass
class VisitorCookie:
    """Instruction to persist a newly minted visitor id."""
    name: str
    value: str
    max_age: int
    secure: bool
    path: str = "/"
    samesite: str = "lax"

    def apply(self, response: Response) -> None:
        response.set_cookie(
            key=self.name,
            value=self.value,
            max_age=self.max_age,
            path=self.path,
            secure=self.secure,
            samesite=self.samesite,
        )


@dataclass
class VisitorIdentity:
    visitor_id: str
    cookie: VisitorCookie | None = None


def is_valid_visitor_id(value: str | None) -> bool:
    return bool(value) and VISITOR_ID_PATTERN.match(value) is not None


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_visitor_id(now_ms: int | None = None) -> str:
    """
    Mint a visitor id: base36 millisecond timestamp, a dash, 8 random base36 chars.

    Carries no personal data; the random suffix keeps ids minted in the same
    millisecond apart.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(8))
    return f"{_to_base36(now_ms)}-{suffix}"


def resolve_visitor_identity(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    secure: bool,
) -> VisitorIdentity:
    """
    Resolve the visitor id for a request.

    Args:
        headers: Request headers (case-insensitive mapping, e.g. starlette Headers)
        cookies: Request cookies
        secure: Whether a minted cookie must carry the Secure attribute

    Returns:
        VisitorIdentity; ``cookie`` is set only when a new id was minted
    """
    # Prefer the client's own id: two near-simultaneous first requests would
    # otherwise each mint a different id before the cookie round-trips
    header_id = (headers.get(VISITOR_ID_HEADER) or "").strip()
    if is_valid_visitor_id(header_id):
        return VisitorIdentity(visitor_id=header_id)

    cookie_id = unquote(cookies.get(settings.VISITOR_COOKIE_NAME) or "").strip()
    if is_valid_visitor_id(cookie_id):
        return VisitorIdentity(visitor_id=cookie_id)

    visitor_id = generate_visitor_id()
    return VisitorIdentity(
        visitor_id=visitor_id,
        cookie=VisitorCookie(
            name=settings.VISITOR_COOKIE_NAME,
            value=visitor_id,
            max_age=settings.VISITOR_COOKIE_MAX_AGE,
            secure=secure,
        ),
    )


def is_secure_request(request: Request) -> bool:
    """True when served over TLS (directly or behind a proxy) or running in production."""
    if settings.IS_PRODUCTION:
        return True
    forwarded_proto = request.headers.get("X-Forwarded-Proto", "")
    if forwarded_proto.split(",")[0].strip().lower() == "https":
        return True
    return request.url.scheme == "https"


def resolve_request_visitor(request: Request) -> VisitorIdentity:
    return resolve_visitor_identity(
        request.headers, request.cookies, secure=is_secure_request(request)
    )
