"""Service layer for the step-up flow."""

from stepgate.services.broker import BrokerState, RedirectBroker, StepUpAttempt
from stepgate.services.resume import resume, resume_callback
from stepgate.services.verifier import (
    Challenge,
    StepUpVerifier,
    VerificationResult,
    VerificationStatus,
    YubicoVerifier,
)

__all__ = [
    "BrokerState",
    "Challenge",
    "RedirectBroker",
    "StepUpAttempt",
    "StepUpVerifier",
    "VerificationResult",
    "VerificationStatus",
    "YubicoVerifier",
    "resume",
    "resume_callback",
]
