"""Pydantic based configuration for the RP server."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "passkeys.db"


class RPSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PASSKEYS_")

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string used by the RP server",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="Passkeys Sample", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:3000",
        description="Expected origin for clientDataJSON validation",
    )
    extra_origins: List[str] = Field(
        default_factory=list,
        description="Additional origins accepted during verification (e.g. app origins)",
    )
    challenge_backend: Literal["database", "memory"] = Field(
        default="database",
        description="Where issued challenges are kept until consumed",
    )
    challenge_ttl_seconds: int = Field(
        default=300,
        gt=0,
        description="Lifetime of an issued challenge before it is treated as unknown",
    )
    default_timeout_ms: int = Field(
        default=60_000,
        description="Ceremony timeout advertised to clients when none is requested",
    )
    supported_algorithms: List[int] = Field(
        default_factory=lambda: [-8, -7, -257],
        description="COSE algorithm identifiers offered for registration",
    )
    counter_update_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts at the optimistic sign counter update before giving up",
    )

    @property
    def expected_origins(self) -> List[str]:
        origins = [self.origin.rstrip("/")]
        for origin in self.extra_origins:
            origin = origin.rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins
