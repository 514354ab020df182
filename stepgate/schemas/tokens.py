from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator

# JWT wire names of the claims every token must carry.
REQUIRED_CLAIMS = ("iss", "aud", "sub", "iat", "exp")

# Long-form aliases callers sometimes use for the same claims.
CLAIM_ALIASES = {
    "issuer": "iss",
    "audience": "aud",
    "subject": "sub",
    "issuedAt": "iat",
    "expiresAt": "exp",
}


class ClaimSet(BaseModel):
    """Ordered claim mapping carried in a token payload.

    Required claims come first in declaration order, extension claims
    (``status``, ``otp``, ``scope`` ...) follow in insertion order.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    iss: str = Field(..., min_length=1)  # Issuer
    aud: str = Field(..., min_length=1)  # Audience
    sub: str = Field(..., min_length=1)  # Subject
    iat: StrictInt  # Issued at, seconds since epoch
    exp: StrictInt  # Expires at, seconds since epoch

    @model_validator(mode="after")
    def check_lifetime(self) -> "ClaimSet":
        if self.exp <= self.iat:
            raise ValueError("exp must be greater than iat")
        return self

    @property
    def issuer(self) -> str:
        return self.iss

    @property
    def audience(self) -> str:
        return self.aud

    @property
    def subject(self) -> str:
        return self.sub

    @property
    def issued_at(self) -> int:
        return self.iat

    @property
    def expires_at(self) -> int:
        return self.exp

    @property
    def extra_claims(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def claim(self, name: str, default: Any = None) -> Any:
        name = CLAIM_ALIASES.get(name, name)
        if name in REQUIRED_CLAIMS:
            return getattr(self, name)
        return (self.model_extra or {}).get(name, default)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
