"""Configuration for the passkey client surfaces."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Runtime settings for the API client and the local authenticator."""

    model_config = SettingsConfigDict(env_prefix="PASSKEYS_CLIENT_")

    base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the RP server",
    )
    origin: str = Field(
        default="http://localhost:3000",
        description="Origin written into clientDataJSON by the local authenticator",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds before an RP request is abandoned",
    )
    keyring_service: str = Field(
        default="passkeys-sample",
        description="Service name used for keyring entries",
    )
    credential_index_path: str = Field(
        default=str(
            (Path(__file__).resolve().parent / "data" / "credential_index.json").resolve()
        ),
        description="Path to the credential index file used for lookups",
    )
