import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from stepgate.errors import ProviderUnavailable, StepUpError, VerifierError
from stepgate.schemas.stepup import (
    ChallengePrompt,
    LoginContext,
    LoginPhase,
    PassThrough,
    RedirectInstruction,
)
from stepgate.services.verifier import StepUpVerifier, confirm, new_challenge
from stepgate.utils.claims import STEP_UP_MAX_TTL_SECONDS, build_step_up_result, check_ttl
from stepgate.utils.tokens import encode

logger = logging.getLogger(__name__)

# Decides whether a login needs a second factor. Supplied by the login pipeline.
StepUpPolicy = Callable[[LoginContext], bool]


class BrokerState(str, enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    AWAITING_CHALLENGE_INPUT = "awaiting_challenge_input"
    VALIDATING = "validating"
    COMPLETED_OK = "completed_ok"
    COMPLETED_FAILED = "completed_failed"


TERMINAL_STATES = frozenset({BrokerState.COMPLETED_OK, BrokerState.COMPLETED_FAILED})

_TRANSITIONS = {
    BrokerState.IDLE: {BrokerState.TRIGGERED, BrokerState.COMPLETED_OK},
    BrokerState.TRIGGERED: {BrokerState.AWAITING_CHALLENGE_INPUT},
    BrokerState.AWAITING_CHALLENGE_INPUT: {BrokerState.VALIDATING},
    BrokerState.VALIDATING: {BrokerState.COMPLETED_OK, BrokerState.COMPLETED_FAILED},
}

BrokerStep = PassThrough | RedirectInstruction | ChallengePrompt


@dataclass
class StepUpAttempt:
    """One run of the step-up state machine. Never reused across requests."""

    context: LoginContext
    state: BrokerState = BrokerState.IDLE
    step: BrokerStep | None = None
    token: str | None = None
    error: StepUpError | None = None
    history: list[BrokerState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state == BrokerState.COMPLETED_OK

    def advance(self, target: BrokerState) -> None:
        if target not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid step-up transition {self.state.value} -> {target.value}")
        logger.debug(
            "Step-up for %s: %s -> %s", self.context.subject, self.state.value, target.value
        )
        self.history.append(self.state)
        self.state = target


class RedirectBroker:
    """Drives a login through an external OTP challenge and back.

    The broker keeps nothing between calls: the browser carries the attempt
    across the challenge redirect, and the result comes back as a short-lived
    signed token.
    """

    def __init__(
        self,
        verifier: StepUpVerifier,
        secret: bytes,
        issuer: str,
        audience: str,
        challenge_url: str,
        step_up_ttl_seconds: int = STEP_UP_MAX_TTL_SECONDS,
        verifier_timeout_seconds: float = 5.0,
    ):
        check_ttl(step_up_ttl_seconds, maximum=STEP_UP_MAX_TTL_SECONDS)
        if verifier_timeout_seconds <= 0:
            raise ValueError("verifier_timeout_seconds must be positive")
        self.verifier = verifier
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.challenge_url = challenge_url
        self.step_up_ttl_seconds = step_up_ttl_seconds
        self.verifier_timeout_seconds = verifier_timeout_seconds

    def begin(self, context: LoginContext, policy: StepUpPolicy) -> StepUpAttempt:
        if context.phase != LoginPhase.INITIATE:
            raise ValueError(f"Step-up can only begin in the initiate phase, got {context.phase.value}")

        attempt = StepUpAttempt(context=context)
        if not policy(context):
            attempt.step = PassThrough(subject=context.subject)
            attempt.advance(BrokerState.COMPLETED_OK)
            return attempt

        attempt.advance(BrokerState.TRIGGERED)
        attempt.step = RedirectInstruction(url=self.challenge_url, query={"user": context.subject})
        attempt.advance(BrokerState.AWAITING_CHALLENGE_INPUT)
        return attempt

    def challenge_prompt(self, context: LoginContext) -> ChallengePrompt:
        return ChallengePrompt(subject=context.subject, state=context.state)

    async def submit(self, attempt: StepUpAttempt, presented_code: str, now: int) -> StepUpAttempt:
        attempt.advance(BrokerState.VALIDATING)
        context = attempt.context
        challenge = new_challenge(context.subject, now)

        try:
            result = await asyncio.wait_for(
                self.verifier.verify(context.subject, presented_code, challenge.nonce),
                timeout=self.verifier_timeout_seconds,
            )
            confirm(result, challenge)
        except asyncio.TimeoutError:
            return self._fail(attempt, ProviderUnavailable("OTP provider timed out"))
        except VerifierError as e:
            return self._fail(attempt, e)

        try:
            claims = build_step_up_result(
                context.subject,
                self.audience,
                self.issuer,
                otp=result.provider_otp,
                now=now,
                ttl_seconds=self.step_up_ttl_seconds,
            )
            token = encode(claims, self._secret)
        except StepUpError as e:
            logger.error("Could not issue step-up result for %s: %s", context.subject, e.kind)
            return self._fail(attempt, e)

        attempt.advance(BrokerState.COMPLETED_OK)
        attempt.token = token
        attempt.step = RedirectInstruction(
            url=context.return_url,
            query={"id_token": token, "state": context.state},
        )
        logger.info("Step-up succeeded for %s", context.subject)
        return attempt

    async def receive(self, context: LoginContext, presented_code: str, now: int) -> StepUpAttempt:
        """Handle a challenge form post for a login already sent to the challenge."""
        attempt = StepUpAttempt(context=context, state=BrokerState.AWAITING_CHALLENGE_INPUT)
        return await self.submit(attempt, presented_code, now)

    def _fail(self, attempt: StepUpAttempt, error: StepUpError) -> StepUpAttempt:
        attempt.advance(BrokerState.COMPLETED_FAILED)
        attempt.error = error
        attempt.token = None
        attempt.step = ChallengePrompt(
            subject=attempt.context.subject,
            state=attempt.context.state,
            error_kind=error.kind,
            error=error.message,
        )
        logger.info("Step-up failed for %s: %s", attempt.context.subject, error.kind)
        return attempt
