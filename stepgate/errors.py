"""Typed failures raised by the token and step-up core.

Every error carries a stable ``kind`` so the login pipeline (or the HTTP layer)
can render a retry prompt without parsing messages.
"""


class StepUpError(Exception):
    kind = "StepUpError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"error_kind": self.kind, "detail": self.message}


# Token codec / claims


class TokenError(StepUpError):
    kind = "TokenError"


class EncodingError(TokenError):
    kind = "EncodingError"


class TokenMalformed(TokenError):
    kind = "TokenMalformed"


class SignatureInvalid(TokenError):
    kind = "SignatureInvalid"


class TokenExpired(TokenError):
    kind = "TokenExpired"


class UnsupportedAlgorithm(TokenError):
    kind = "UnsupportedAlgorithm"


class ClaimMismatch(TokenError):
    """Audience or issuer differs from what the verifier expected."""

    kind = "ClaimMismatch"


class ReservedClaimCollision(StepUpError):
    kind = "ReservedClaimCollision"


class InvalidTTL(StepUpError):
    kind = "InvalidTTL"


# Step-up verifier


class VerifierError(StepUpError):
    kind = "VerifierError"


class ReplayDetected(VerifierError):
    kind = "ReplayDetected"


class ProviderUnavailable(VerifierError):
    kind = "ProviderUnavailable"


class ProviderRejected(VerifierError):
    kind = "ProviderRejected"


# Resume


class StateMismatch(StepUpError):
    kind = "StateMismatch"
