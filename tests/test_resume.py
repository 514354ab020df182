import pytest

from stepgate.errors import (
    ClaimMismatch,
    SignatureInvalid,
    StateMismatch,
    TokenExpired,
    TokenMalformed,
)
from stepgate.schemas.stepup import LoginContext, LoginPhase, OutcomeKind
from stepgate.services.resume import resume, resume_callback
from stepgate.utils.claims import build, build_step_up_result
from stepgate.utils.tokens import encode

from conftest import NOW, TEST_AUDIENCE, TEST_ISSUER, TEST_SECRET

STATE = "opaque-state-xyz"


def _result_token(subject: str = "alice", otp: str = "cccc1234") -> str:
    claims = build_step_up_result(subject, TEST_AUDIENCE, TEST_ISSUER, otp, NOW)
    return encode(claims, TEST_SECRET)


def _callback(subject: str = "alice", state: str = STATE) -> LoginContext:
    return LoginContext(
        phase=LoginPhase.CALLBACK,
        return_url="https://login.example.com/continue",
        state=state,
        subject=subject,
    )


class TestResume:
    """Tests for folding a step-up result back into the login."""

    def test_accepted(self):
        """Test that a valid Ok result is accepted with its otp."""
        outcome = resume(_result_token(), STATE, STATE, TEST_SECRET, NOW + 1)
        assert outcome.kind == OutcomeKind.ACCEPTED
        assert outcome.otp == "cccc1234"

    def test_state_mismatch_with_valid_token(self):
        """Test that a well-signed token does not rescue a state mismatch."""
        with pytest.raises(StateMismatch):
            resume(_result_token(), STATE, "forged-state", TEST_SECRET, NOW + 1)

    def test_state_checked_before_signature(self):
        """Test that state mismatch short-circuits even for garbage tokens."""
        with pytest.raises(StateMismatch):
            resume("not-a-token", STATE, "forged-state", TEST_SECRET, NOW)

    def test_unencodable_state_is_mismatch(self):
        """Test that a state with a lone surrogate is a mismatch, not a crash."""
        with pytest.raises(StateMismatch):
            resume(_result_token(), STATE, "\ud800", TEST_SECRET, NOW + 1)

    def test_identical_surrogate_states_match(self):
        """Test that states compare as opaque strings even when not valid UTF-8."""
        outcome = resume(_result_token(), "\ud800x", "\ud800x", TEST_SECRET, NOW + 1)
        assert outcome.is_accepted

    def test_signature_still_checked_when_state_matches(self):
        """Test that a matching state never skips signature verification."""
        with pytest.raises(SignatureInvalid):
            resume(_result_token(), STATE, STATE, b"wrong-secret", NOW)

    def test_malformed_token_propagates(self):
        """Test that codec failures surface unchanged."""
        with pytest.raises(TokenMalformed):
            resume("not-a-token", STATE, STATE, TEST_SECRET, NOW)

    def test_expired_result(self):
        """Test that an old step-up result cannot be replayed."""
        with pytest.raises(TokenExpired):
            resume(_result_token(), STATE, STATE, TEST_SECRET, NOW + 61)

    def test_non_ok_status_rejected(self):
        """Test that any status but Ok is a rejection."""
        claims = build("alice", TEST_AUDIENCE, TEST_ISSUER, 60, NOW, extra={"status": "Failed"})
        outcome = resume(encode(claims, TEST_SECRET), STATE, STATE, TEST_SECRET, NOW)
        assert outcome.kind == OutcomeKind.REJECTED
        assert outcome.otp is None

    def test_missing_status_rejected(self):
        """Test that a token without a status is a rejection."""
        claims = build("alice", TEST_AUDIENCE, TEST_ISSUER, 60, NOW)
        outcome = resume(encode(claims, TEST_SECRET), STATE, STATE, TEST_SECRET, NOW)
        assert not outcome.is_accepted

    def test_audience_expectation(self):
        """Test that the caller can pin the audience."""
        with pytest.raises(ClaimMismatch):
            resume(_result_token(), STATE, STATE, TEST_SECRET, NOW, audience="other-client")


class TestResumeCallback:
    """Tests for resuming from a pipeline callback context."""

    def test_accepted(self):
        """Test that the callback context supplies the received state."""
        outcome = resume_callback(_callback(), _result_token(), STATE, TEST_SECRET, NOW)
        assert outcome.is_accepted

    def test_requires_callback_phase(self):
        """Test that an initiate context cannot resume."""
        context = _callback().model_copy(update={"phase": LoginPhase.INITIATE})
        with pytest.raises(ValueError):
            resume_callback(context, _result_token(), STATE, TEST_SECRET, NOW)

    def test_state_mismatch(self):
        """Test that the context state must match the expected state."""
        with pytest.raises(StateMismatch):
            resume_callback(_callback(state="other"), _result_token(), STATE, TEST_SECRET, NOW)

    def test_result_for_another_subject(self):
        """Test that a result minted for bob cannot complete alice's login."""
        with pytest.raises(ClaimMismatch):
            resume_callback(_callback(), _result_token(subject="bob"), STATE, TEST_SECRET, NOW)
