"""Signed credential tokens resolving a connection to an identity.

A token is ``<claims>.<signature>``, both base64url without padding. ``claims``
is canonical JSON ``{"sub": <identity id>, "iat": <ISO-8601>}`` and the
signature is ed25519 over the exact claim bytes, made with the issuer key.
"""

from __future__ import annotations

import logging
from datetime import datetime

import orjson

from ..bidding.errors import Unauthenticated
from ..bidding.models import Identity
from ..transport.canonical_json import canonical_dumps, loads
from ..transport.signatures import (
    SignatureError,
    b64url_decode,
    b64url_encode,
    load_public_key,
    sign_message,
    verify_signature,
)
from ..transport.timestamps import TimestampError, assert_fresh, format_timestamp, utcnow
from .directory import IdentityDirectory

logger = logging.getLogger(__name__)


def issue_token(identity_id: str, private_key_pem: str, *, issued_at: datetime | None = None) -> str:
    claims = canonical_dumps(
        {"sub": identity_id, "iat": format_timestamp(issued_at or utcnow())}
    )
    return f"{b64url_encode(claims)}.{sign_message(claims, private_key_pem)}"


class Authenticator:
    def __init__(
        self,
        directory: IdentityDirectory,
        issuer_public_key: str,
        *,
        max_age_seconds: int,
        max_skew_ms: int,
    ) -> None:
        self._directory = directory
        self._max_age_seconds = max_age_seconds
        self._max_skew_ms = max_skew_ms
        self._public_key = load_public_key(issuer_public_key) if issuer_public_key else None
        if self._public_key is None:
            logger.warning("no token issuer key configured; every connection will be rejected")

    def authenticate(self, token: str | None, *, now: datetime | None = None) -> Identity:
        if self._public_key is None:
            raise Unauthenticated("token issuer is not configured")
        if not token or token.count(".") != 1:
            raise Unauthenticated("credential token missing or malformed")
        encoded_claims, signature = token.split(".")
        try:
            claims_raw = b64url_decode(encoded_claims)
            verify_signature(claims_raw, signature, self._public_key)
            claims = loads(claims_raw)
        except (SignatureError, orjson.JSONDecodeError) as exc:
            raise Unauthenticated(str(exc)) from exc
        if not isinstance(claims, dict) or not claims.get("sub"):
            raise Unauthenticated("token subject missing")
        try:
            assert_fresh(
                claims.get("iat", ""),
                max_age_seconds=self._max_age_seconds,
                max_skew_ms=self._max_skew_ms,
                now=now,
            )
        except TimestampError as exc:
            raise Unauthenticated(str(exc)) from exc
        identity = self._directory.get(str(claims["sub"]))
        if identity is None:
            raise Unauthenticated("unknown or inactive identity")
        return identity
