import base64
import enum
import hashlib
import hmac
import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from stepgate.errors import ProviderRejected, ProviderUnavailable, ReplayDetected

logger = logging.getLogger(__name__)

NONCE_ALPHABET = string.ascii_letters + string.digits
MIN_NONCE_LENGTH = 16
DEFAULT_NONCE_LENGTH = 32

YUBICO_VERIFY_URL = "https://api.yubico.com/wsapi/2.0/verify"

# Yubico OTPs are modhex: 12 character public id + 32 character token
OTP_PATTERN = re.compile(r"^[cbdefghijklnrtuv]{32,48}$")

# Provider statuses that mean "try again later" rather than "wrong code"
UNAVAILABLE_STATUSES = frozenset({"BACKEND_ERROR", "NOT_ENOUGH_ANSWERS"})


class VerificationStatus(str, enum.Enum):
    OK = "Ok"
    REJECTED = "Rejected"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    echoed_nonce: str
    provider_otp: str
    provider_status: str = ""  # Raw provider status, for diagnostics


@dataclass(frozen=True)
class Challenge:
    subject: str
    nonce: str
    issued_at: int


@runtime_checkable
class StepUpVerifier(Protocol):
    async def verify(
        self, subject: str, presented_code: str, nonce: str
    ) -> VerificationResult: ...


def generate_nonce(length: int = DEFAULT_NONCE_LENGTH) -> str:
    if length < MIN_NONCE_LENGTH:
        raise ValueError(f"Nonce length must be at least {MIN_NONCE_LENGTH}")
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def new_challenge(subject: str, now: int) -> Challenge:
    return Challenge(subject=subject, nonce=generate_nonce(), issued_at=now)


def confirm(result: VerificationResult, challenge: Challenge) -> VerificationResult:
    """Check a provider answer against the challenge it was sent for."""
    if not hmac.compare_digest(
        result.echoed_nonce.encode("utf-8"), challenge.nonce.encode("utf-8")
    ):
        logger.warning("Nonce mismatch in step-up response for %s", challenge.subject)
        raise ReplayDetected("Provider response does not echo the request nonce")

    if result.status != VerificationStatus.OK:
        raise ProviderRejected(
            f"Provider rejected the code ({result.provider_status or result.status.value})"
        )

    return result


def sign_parameters(params: dict[str, str], api_key: bytes) -> str:
    """Yubico request/response signature: HMAC-SHA1 over sorted ``k=v`` pairs."""
    message = "&".join(f"{k}={params[k]}" for k in sorted(params) if k != "h")
    digest = hmac.new(api_key, message.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def parse_response(body: str) -> dict[str, str]:
    fields = {}
    for line in body.splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        fields[key.strip()] = value.strip()
    return fields


class YubicoVerifier:
    """Validates YubiKey OTPs against a Yubico-compatible validation API."""

    def __init__(
        self,
        client_id: str,
        api_key: bytes | None = None,
        api_url: str = YUBICO_VERIFY_URL,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    def _request_params(self, otp: str, nonce: str) -> dict[str, str]:
        params = {"id": self.client_id, "otp": otp, "nonce": nonce}
        if self.api_key:
            params["h"] = sign_parameters(params, self.api_key)
        return params

    async def verify(self, subject: str, presented_code: str, nonce: str) -> VerificationResult:
        otp = presented_code.strip()
        if not OTP_PATTERN.match(otp):
            raise ProviderRejected("Code is not a valid YubiKey one-time password")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.api_url, params=self._request_params(otp, nonce))
        except httpx.HTTPError as e:
            logger.warning("OTP provider request failed for %s: %s", subject, type(e).__name__)
            raise ProviderUnavailable(f"OTP provider request failed: {type(e).__name__}") from None

        if not response.is_success:
            logger.warning("OTP provider returned HTTP %s for %s", response.status_code, subject)
            raise ProviderUnavailable(f"OTP provider returned HTTP {response.status_code}")

        fields = parse_response(response.text)
        status = fields.get("status")
        if not status:
            raise ProviderUnavailable("OTP provider response carries no status")

        if self.api_key:
            expected = sign_parameters(fields, self.api_key)
            if not hmac.compare_digest(fields.get("h", "").encode(), expected.encode()):
                raise ProviderRejected("OTP provider response signature did not verify")

        if status in UNAVAILABLE_STATUSES:
            raise ProviderUnavailable(f"OTP provider could not answer ({status})")

        echoed_otp = fields.get("otp", otp)
        if echoed_otp != otp:
            logger.warning("OTP provider echoed a different code for %s", subject)
            raise ReplayDetected("Provider response does not echo the presented code")

        return VerificationResult(
            status=VerificationStatus.OK if status == "OK" else VerificationStatus.REJECTED,
            echoed_nonce=fields.get("nonce", ""),
            provider_otp=echoed_otp,
            provider_status=status,
        )
