import hmac
import logging

from stepgate.errors import ClaimMismatch, StateMismatch
from stepgate.schemas.stepup import LoginContext, LoginPhase, Outcome
from stepgate.schemas.tokens import ClaimSet
from stepgate.utils.claims import STATUS_OK
from stepgate.utils.tokens import decode_and_verify

logger = logging.getLogger(__name__)


def _state_bytes(state: str) -> bytes:
    # States are opaque; lone surrogates must compare, not crash
    return state.encode("utf-8", errors="surrogatepass")


def _check_state(expected: str, received: str) -> None:
    if (
        expected is None
        or received is None
        or not hmac.compare_digest(_state_bytes(expected), _state_bytes(received))
    ):
        logger.warning("Step-up callback state mismatch")
        raise StateMismatch("Returned state does not match the login transaction")


def _outcome(claims: ClaimSet) -> Outcome:
    status = claims.claim("status")
    if status != STATUS_OK:
        return Outcome.rejected(f"Step-up status was {status!r}")

    otp = claims.claim("otp")
    if not isinstance(otp, str) or not otp:
        return Outcome.rejected("Step-up result carries no otp")

    logger.info("Step-up accepted for %s", claims.sub)
    return Outcome.accepted(otp)


def resume(
    id_token: str,
    expected_state: str,
    received_state: str,
    secret: bytes,
    now: int,
    audience: str | None = None,
    issuer: str | None = None,
) -> Outcome:
    """Fold a returned step-up result token back into the login decision.

    The state comparison runs first so forged callbacks are dropped before any
    crypto, but the signature is always verified when the states agree.
    Token failures propagate unchanged.
    """
    _check_state(expected_state, received_state)
    claims = decode_and_verify(id_token, secret, now, audience=audience, issuer=issuer)
    return _outcome(claims)


def resume_callback(
    context: LoginContext,
    id_token: str,
    expected_state: str,
    secret: bytes,
    now: int,
    audience: str | None = None,
    issuer: str | None = None,
) -> Outcome:
    """Resume from the pipeline callback; the token must name the context subject."""
    if context.phase != LoginPhase.CALLBACK:
        raise ValueError(f"Expected the callback phase, got {context.phase.value}")

    _check_state(expected_state, context.state)
    claims = decode_and_verify(id_token, secret, now, audience=audience, issuer=issuer)
    if claims.sub != context.subject:
        raise ClaimMismatch("Step-up result was issued for a different subject")
    return _outcome(claims)
