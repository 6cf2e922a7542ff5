"""Pydantic schemas for request/response payloads."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UserVerification = Literal["required", "preferred", "discouraged"]


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class AuthenticationOptionsRequest(BaseModel):
    username: Optional[str] = None
    userVerification: UserVerification = "preferred"
    timeout: int = Field(default=60_000, gt=0)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class VerifyRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: dict
    challengeId: str = Field(min_length=1)


class RegistrationOptionsRequest(BaseModel):
    username: Optional[str] = None
    userVerification: UserVerification = "preferred"
    residentKey: Literal["required", "preferred", "discouraged"] = "preferred"
    authenticatorAttachment: Optional[Literal["platform", "cross-platform", "any"]] = None
    timeout: int = Field(default=60_000, gt=0)
    supportedAlgorithmIDs: Optional[List[int]] = None

    @field_validator("username")
    @classmethod
    def normalize_username(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class AuthenticationVerifyResponse(BaseModel):
    verified: bool
    username: Optional[str] = None


class RegistrationInfo(BaseModel):
    credentialID: str
    credentialDeviceType: Optional[str] = None
    credentialBackedUp: bool = False


class RegistrationVerifyResponse(BaseModel):
    verified: bool
    registrationInfo: Optional[RegistrationInfo] = None


class ErrorResponse(BaseModel):
    error: str
