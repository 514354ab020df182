import secrets
from collections.abc import Iterable, Mapping
from typing import Any

from stepgate.errors import InvalidTTL, ReservedClaimCollision
from stepgate.schemas.tokens import CLAIM_ALIASES, REQUIRED_CLAIMS, ClaimSet

RESERVED_CLAIMS = frozenset(REQUIRED_CLAIMS) | frozenset(CLAIM_ALIASES)

STATUS_OK = "Ok"

# Step-up results must not be replayable long after issuance
STEP_UP_MAX_TTL_SECONDS = 60


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_ttl(ttl_seconds: Any, maximum: int | None = None) -> int:
    if not _is_int(ttl_seconds) or ttl_seconds <= 0:
        raise InvalidTTL(f"TTL must be a positive integer, got {ttl_seconds!r}")
    if maximum is not None and ttl_seconds > maximum:
        raise InvalidTTL(f"TTL must not exceed {maximum} seconds, got {ttl_seconds}")
    return ttl_seconds


def build(
    subject: str,
    audience: str,
    issuer: str,
    ttl_seconds: int,
    now: int,
    extra: Mapping[str, Any] | None = None,
) -> ClaimSet:
    """Build a claim set valid from ``now`` for ``ttl_seconds``.

    ``extra`` claims are appended after the required ones and may not
    redefine any of them.
    """
    check_ttl(ttl_seconds)
    if not _is_int(now):
        raise TypeError(f"now must be integer seconds since epoch, got {now!r}")

    claims: dict[str, Any] = {
        "iss": issuer,
        "aud": audience,
        "sub": subject,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    for name, value in (extra or {}).items():
        if name in RESERVED_CLAIMS:
            raise ReservedClaimCollision(f"Claim '{name}' is reserved and cannot be overridden")
        claims[name] = value

    return ClaimSet(**claims)


def build_step_up_result(
    subject: str,
    audience: str,
    issuer: str,
    otp: str,
    now: int,
    ttl_seconds: int = STEP_UP_MAX_TTL_SECONDS,
) -> ClaimSet:
    check_ttl(ttl_seconds, maximum=STEP_UP_MAX_TTL_SECONDS)
    return build(
        subject,
        audience,
        issuer,
        ttl_seconds,
        now,
        extra={"status": STATUS_OK, "otp": otp},
    )


def build_service_claims(
    subject: str,
    audience: str,
    issuer: str,
    scopes: Iterable[str],
    ttl_seconds: int,
    now: int,
    token_id: str | None = None,
) -> ClaimSet:
    """Claims authorizing a service-to-service call for ``scopes``."""
    scope = " ".join(sorted({s.strip() for s in scopes if s and s.strip()}))
    if not scope:
        raise ValueError("At least one scope is required")
    return build(
        subject,
        audience,
        issuer,
        ttl_seconds,
        now,
        extra={"scope": scope, "jti": token_id or secrets.token_urlsafe(16)},
    )
