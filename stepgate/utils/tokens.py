"""Compact HS256 token codec.

Tokens are ``header.payload.signature`` with every segment base64url encoded
without padding. The signature is HMAC-SHA256 over the exact bytes received
for ``header.payload``, so a token is never re-encoded before verification.
"""

import json
import logging
import time
from typing import Any

from jose import jwk
from jose.constants import ALGORITHMS
from jose.exceptions import JOSEError
from jose.utils import base64url_decode, base64url_encode
from pydantic import ValidationError

from stepgate.errors import (
    ClaimMismatch,
    EncodingError,
    SignatureInvalid,
    TokenExpired,
    TokenMalformed,
    UnsupportedAlgorithm,
)
from stepgate.schemas.tokens import ClaimSet

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHM = ALGORITHMS.HS256
TOKEN_HEADER = {"alg": SUPPORTED_ALGORITHM, "typ": "JWT"}

_HEADER_SEGMENT = base64url_encode(json.dumps(TOKEN_HEADER, separators=(",", ":")).encode("utf-8"))


def current_timestamp() -> int:
    return int(time.time())


def load_secret(raw: str | bytes, base64_encoded: bool = False) -> bytes:
    """Turn a configured secret into key bytes.

    A plain secret is used byte for byte, surrounding whitespace included.
    Base64 secrets may use either the standard or the URL-safe alphabet, with
    or without padding, and surrounding whitespace is ignored.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if base64_encoded:
        normalized = raw.strip().replace(b"+", b"-").replace(b"/", b"_").rstrip(b"=")
        try:
            raw = base64url_decode(normalized)
        except ValueError as e:
            raise ValueError(f"Secret is not valid base64: {e}") from None
    if not raw:
        raise ValueError("Secret must not be empty")
    return raw


def _signing_key(secret: bytes):
    if not secret:
        raise ValueError("Secret must not be empty")
    try:
        return jwk.construct(secret, SUPPORTED_ALGORITHM)
    except JOSEError as e:
        raise ValueError(f"Secret cannot be used as an HMAC key: {e}") from None


def _json_segment(segment: bytes, what: str) -> dict[str, Any]:
    try:
        value = json.loads(base64url_decode(segment).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise TokenMalformed(f"Token {what} is not valid base64url JSON: {e}") from None
    if not isinstance(value, dict):
        raise TokenMalformed(f"Token {what} must be a JSON object")
    return value


def _split(token: str) -> tuple[bytes, bytes, bytes]:
    if not isinstance(token, str):
        raise TokenMalformed("Token must be a string")
    try:
        raw = token.encode("ascii")
    except UnicodeEncodeError:
        raise TokenMalformed("Token contains non-ASCII characters") from None
    parts = raw.split(b".")
    if len(parts) != 3 or not all(parts):
        raise TokenMalformed("Token must have exactly three non-empty segments")
    return parts[0], parts[1], parts[2]


def encode(claims: ClaimSet, secret: bytes) -> str:
    """Sign ``claims`` into a compact token.

    The output is a pure function of its inputs: the header is fixed and the
    payload is compact JSON in claim order.
    """
    try:
        payload = json.dumps(
            claims.to_payload(),
            separators=(",", ":"),
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Claim value cannot be encoded: {e}") from None

    signing_input = _HEADER_SEGMENT + b"." + base64url_encode(payload)
    signature = _signing_key(secret).sign(signing_input)
    return (signing_input + b"." + base64url_encode(signature)).decode("ascii")


def get_unverified_header(token: str) -> dict[str, Any]:
    """Decode the header without checking anything else. Diagnostics only."""
    header, _, _ = _split(token)
    return _json_segment(header, "header")


def decode_and_verify(
    token: str,
    secret: bytes,
    now: int,
    audience: str | None = None,
    issuer: str | None = None,
) -> ClaimSet:
    """Verify ``token`` and return its claims.

    Checks run in a fixed order: structure, header, algorithm, signature,
    payload, expiry, then the optional audience/issuer expectations.
    """
    header_segment, payload_segment, signature_segment = _split(token)

    header = _json_segment(header_segment, "header")
    algorithm = header.get("alg")
    if algorithm != SUPPORTED_ALGORITHM:
        raise UnsupportedAlgorithm(f"Unsupported token algorithm: {algorithm!r}")

    try:
        signature = base64url_decode(signature_segment)
    except ValueError:
        raise SignatureInvalid("Token signature is not valid base64url") from None
    # The decoder tolerates the standard alphabet and stray trailing bits
    if base64url_encode(signature) != signature_segment:
        raise SignatureInvalid("Token signature is not canonical base64url")

    key = _signing_key(secret)
    if not key.verify(header_segment + b"." + payload_segment, signature):
        raise SignatureInvalid("Token signature does not match")

    payload = _json_segment(payload_segment, "payload")
    try:
        claims = ClaimSet.model_validate(payload)
    except ValidationError as e:
        raise TokenMalformed(f"Token claims are invalid: {e.error_count()} error(s)") from None

    if now > claims.exp:
        raise TokenExpired(f"Token expired at {claims.exp}")

    if audience is not None and claims.aud != audience:
        raise ClaimMismatch("Token audience does not match")
    if issuer is not None and claims.iss != issuer:
        raise ClaimMismatch("Token issuer does not match")

    return claims
