import logging
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from stepgate.services.verifier import YUBICO_VERIFY_URL
from stepgate.utils.tokens import load_secret

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "stepgate"
    app_version: str = "0.1.0"
    debug: bool = False

    # CORS
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    # Token signing (shared with the login pipeline that verifies results)
    secret_key: SecretStr = Field(default=SecretStr(DEFAULT_SECRET_KEY))
    secret_key_base64: bool = Field(default=False)
    token_issuer: str = Field(default="urn:stepgate:otp")
    token_audience: str = Field(default="stepgate")
    step_up_ttl_seconds: int = Field(default=60, ge=1, le=60)
    service_token_ttl_seconds: int = Field(default=3600, ge=1)

    # Redirects. The return URL is never taken from the browser.
    challenge_url: str = Field(default="http://localhost:8000/api/v1/stepup/challenge")
    return_url: str = Field(default="http://localhost:3000/continue")

    # OTP provider (Yubico validation protocol 2.0)
    verifier_api_url: str = Field(default=YUBICO_VERIFY_URL)
    verifier_client_id: str | None = Field(default=None)
    verifier_api_key: SecretStr | None = Field(default=None)  # base64, as issued by Yubico
    verifier_timeout_seconds: float = Field(default=5.0, gt=0)

    def get_secret(self) -> bytes:
        return load_secret(self.secret_key.get_secret_value(), self.secret_key_base64)

    def get_verifier_api_key(self) -> bytes | None:
        if self.verifier_api_key is None:
            return None
        return load_secret(self.verifier_api_key.get_secret_value(), base64_encoded=True)

    def validate_security(self) -> None:
        if self.secret_key.get_secret_value() == DEFAULT_SECRET_KEY and not self.debug:
            raise RuntimeError(
                "SECRET_KEY is still the default value. "
                "Set a secure SECRET_KEY or enable DEBUG mode for development."
            )

        self.get_secret()

        for name in ("return_url", "challenge_url"):
            if urlparse(getattr(self, name)).scheme not in ("http", "https"):
                raise RuntimeError(f"{name.upper()} must be an absolute http(s) URL")

        if not self.verifier_client_id and not self.debug:
            raise RuntimeError(
                "No OTP provider configured. Set VERIFIER_CLIENT_ID or enable DEBUG mode."
            )

    def get_verifier_mode(self) -> str:
        if self.verifier_client_id and self.verifier_api_key:
            return "signed"
        if self.verifier_client_id:
            return "unsigned"
        return "unconfigured"


@lru_cache
def get_settings() -> Settings:
    return Settings()
