"""Client configuration loaded from environment variables or a .env file."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

OASIS_SERVICE_URL = "https://oasis.oliveinnovations.com"


class ConfigurationError(Exception):
    """Raised when the client cannot be built from the supplied configuration."""


class Credentials(BaseModel):
    """Application credentials issued by the OASIS admin console."""

    model_config = ConfigDict(frozen=True)

    application_id: int
    application_key: SecretStr
    api_key: SecretStr


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="OASIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials
    app_id: int | None = None
    app_key: SecretStr = SecretStr("")
    api_key: SecretStr = SecretStr("")

    # Per-application defaults
    directory_name: str | None = None
    remote_ip: str | None = None

    # Service
    service_url: str = OASIS_SERVICE_URL

    def credentials(self) -> Credentials:
        """Return validated credentials, raising ConfigurationError if incomplete."""
        if self.app_id is None:
            raise ConfigurationError("OASIS_APP_ID was not found in configuration or was not a valid number")
        if not self.app_key.get_secret_value():
            raise ConfigurationError("OASIS_APP_KEY not set")
        if not self.api_key.get_secret_value():
            raise ConfigurationError("OASIS_API_KEY not set")
        return Credentials(
            application_id=self.app_id,
            application_key=self.app_key,
            api_key=self.api_key,
        )


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, turning parse failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid OASIS configuration: {e}") from e
