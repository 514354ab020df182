import enum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field


class LoginPhase(str, enum.Enum):
    INITIATE = "initiate"
    CALLBACK = "callback"


class LoginContext(BaseModel):
    """In-progress login transaction handed over by the login pipeline."""

    phase: LoginPhase
    return_url: str = Field(..., min_length=1)
    state: str = Field(..., description="Opaque CSRF value, echoed verbatim")
    subject: str = Field(..., min_length=1)


class RedirectInstruction(BaseModel):
    url: str
    query: dict[str, str] = Field(default_factory=dict)

    def render(self) -> str:
        """Full redirect target with ``query`` appended to any existing query."""
        parts = urlsplit(self.url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.extend(self.query.items())
        return urlunsplit(parts._replace(query=urlencode(query)))


class ChallengePrompt(BaseModel):
    """What the UI collaborator needs to (re-)render the OTP form."""

    subject: str
    state: str
    error_kind: str | None = None
    error: str | None = None


class PassThrough(BaseModel):
    """Step-up was not required; the login continues without a token."""

    subject: str


class OutcomeKind(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Outcome(BaseModel):
    kind: OutcomeKind
    otp: str | None = None
    reason: str | None = None

    @classmethod
    def accepted(cls, otp: str) -> "Outcome":
        return cls(kind=OutcomeKind.ACCEPTED, otp=otp)

    @classmethod
    def rejected(cls, reason: str) -> "Outcome":
        return cls(kind=OutcomeKind.REJECTED, reason=reason)

    @property
    def is_accepted(self) -> bool:
        return self.kind == OutcomeKind.ACCEPTED


class ResumeRequest(BaseModel):
    id_token: str = Field(..., min_length=1)
    expected_state: str
    received_state: str
