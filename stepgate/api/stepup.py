import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from stepgate.config import get_settings
from stepgate.schemas.stepup import (
    ChallengePrompt,
    LoginContext,
    LoginPhase,
    Outcome,
    ResumeRequest,
)
from stepgate.services.broker import RedirectBroker
from stepgate.services.resume import resume
from stepgate.services.verifier import StepUpVerifier, YubicoVerifier
from stepgate.utils.tokens import current_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stepup", tags=["Step-up"])
settings = get_settings()


def get_verifier() -> StepUpVerifier:
    return YubicoVerifier(
        client_id=settings.verifier_client_id or "",
        api_key=settings.get_verifier_api_key(),
        api_url=settings.verifier_api_url,
        timeout=settings.verifier_timeout_seconds,
    )


def get_broker(verifier: Annotated[StepUpVerifier, Depends(get_verifier)]) -> RedirectBroker:
    return RedirectBroker(
        verifier=verifier,
        secret=settings.get_secret(),
        issuer=settings.token_issuer,
        audience=settings.token_audience,
        challenge_url=settings.challenge_url,
        step_up_ttl_seconds=settings.step_up_ttl_seconds,
        verifier_timeout_seconds=settings.verifier_timeout_seconds,
    )


def _context(user: str, state: str) -> LoginContext:
    return LoginContext(
        phase=LoginPhase.INITIATE,
        return_url=settings.return_url,
        state=state,
        subject=user,
    )


@router.get("/challenge", response_model=ChallengePrompt)
async def get_challenge(
    broker: Annotated[RedirectBroker, Depends(get_broker)],
    user: str = Query(..., min_length=1, max_length=255),
    state: str = Query(..., min_length=1, max_length=2048),
) -> ChallengePrompt:
    return broker.challenge_prompt(_context(user, state))


@router.post("/challenge", response_model=None)
async def submit_challenge(
    broker: Annotated[RedirectBroker, Depends(get_broker)],
    otp: str = Form(..., min_length=1, max_length=128),
    user: str = Form(..., min_length=1, max_length=255),
    state: str = Form(..., min_length=1, max_length=2048),
) -> Response:
    attempt = await broker.receive(_context(user, state), otp, now=current_timestamp())

    if attempt.succeeded:
        return RedirectResponse(attempt.step.render(), status_code=status.HTTP_303_SEE_OTHER)

    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=attempt.step.model_dump(),
    )


@router.post("/resume", response_model=Outcome)
async def resume_login(request: ResumeRequest) -> Outcome:
    return resume(
        request.id_token,
        request.expected_state,
        request.received_state,
        settings.get_secret(),
        current_timestamp(),
        audience=settings.token_audience,
        issuer=settings.token_issuer,
    )
