import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-for-step-up"
os.environ["SECRET_KEY_BASE64"] = "false"
os.environ["TOKEN_ISSUER"] = "urn:stepgate:test"
os.environ["TOKEN_AUDIENCE"] = "test-client"
os.environ["CHALLENGE_URL"] = "https://stepup.example.com/challenge"
os.environ["RETURN_URL"] = "https://login.example.com/continue"
os.environ["VERIFIER_CLIENT_ID"] = "12345"

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from stepgate.api.stepup import get_verifier
from stepgate.main import app
from stepgate.schemas.stepup import LoginContext, LoginPhase
from stepgate.services.broker import RedirectBroker
from stepgate.services.verifier import VerificationResult, VerificationStatus

TEST_SECRET = b"test-secret-key-for-step-up"
TEST_ISSUER = "urn:stepgate:test"
TEST_AUDIENCE = "test-client"
NOW = 1_700_000_000


class FakeVerifier:
    """In-memory OTP provider: echoes the nonce unless told otherwise."""

    def __init__(
        self,
        status: VerificationStatus = VerificationStatus.OK,
        provider_otp: str = "cccc1234",
        echoed_nonce: str | None = None,
        error: Exception | None = None,
    ):
        self.status = status
        self.provider_otp = provider_otp
        self.echoed_nonce = echoed_nonce
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def verify(self, subject: str, presented_code: str, nonce: str) -> VerificationResult:
        self.calls.append((subject, presented_code, nonce))
        if self.error:
            raise self.error
        return VerificationResult(
            status=self.status,
            echoed_nonce=nonce if self.echoed_nonce is None else self.echoed_nonce,
            provider_otp=self.provider_otp,
            provider_status="OK" if self.status == VerificationStatus.OK else "BAD_OTP",
        )


@pytest.fixture
def secret() -> bytes:
    return TEST_SECRET


@pytest.fixture
def fake_verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def broker(fake_verifier: FakeVerifier) -> RedirectBroker:
    return RedirectBroker(
        verifier=fake_verifier,
        secret=TEST_SECRET,
        issuer=TEST_ISSUER,
        audience=TEST_AUDIENCE,
        challenge_url="https://stepup.example.com/challenge",
        verifier_timeout_seconds=1.0,
    )


@pytest.fixture
def login_context() -> LoginContext:
    return LoginContext(
        phase=LoginPhase.INITIATE,
        return_url="https://login.example.com/continue",
        state="opaque-state-xyz",
        subject="alice",
    )


@pytest_asyncio.fixture(scope="function")
async def client(fake_verifier: FakeVerifier) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with the OTP provider replaced by ``fake_verifier``."""
    app.dependency_overrides[get_verifier] = lambda: fake_verifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
