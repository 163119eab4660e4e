"""Pydantic models for the OASIS ApplicationAPI wire format.

Field declaration order is the canonical JSON order the service recomputes
request signatures over, so do not reorder fields.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_pascal


class UserAuthenticatorState(StrEnum):
    INVALID = "INVALID"
    VALID = "VALID"
    PENDING = "PENDING"
    DENIED = "DENIED"


# Ordinals as the service numbers them when it sends the enum as an integer
_STATE_ORDINALS = list(UserAuthenticatorState)


def _coerce_state(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < len(_STATE_ORDINALS):
            raise ValueError(f"unknown state ordinal: {value}")
        return _STATE_ORDINALS[value]
    return value


class OasisModel(BaseModel):
    """Base for wire models: PascalCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    def to_json(self) -> str:
        """Canonical compact JSON in declared field order."""
        return self.model_dump_json(by_alias=True)


# === Requests ===


# Fields are declared alphabetically, the order the service's data-contract
# serializer emits and re-reads them.


class RequestAuthorisationState(OasisModel):
    """Ask whether a user is currently authorised."""

    directory_name: str | None = None
    username: str


class RegisterUser(OasisModel):
    """Register a user for OTP authentication."""

    directory_name: str | None = None
    username: str


class VerifyUserOTP(OasisModel):
    """Check a one-time password entered by a registered user."""

    directory_name: str | None = None
    otp: str = Field(alias="OTP")
    username: str


# === Responses ===


class StateResponse(OasisModel):
    """A response carrying a user state signed by the service."""

    state: UserAuthenticatorState = UserAuthenticatorState.INVALID
    signed_response: str | None = None
    random_token: str | None = None
    signed_time: int | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _state_from_ordinal(cls, value: Any) -> Any:
        return _coerce_state(value)

    @classmethod
    def invalid(cls):
        return cls(state=UserAuthenticatorState.INVALID)

    @property
    def is_valid(self) -> bool:
        return self.state == UserAuthenticatorState.VALID


class RequestAuthorisationStateResponse(StateResponse):
    pass


class VerifyUserOTPResponse(StateResponse):
    pass


class RegisterUserResponse(OasisModel):
    """Enrolment details for a newly registered user. Not signed by the service."""

    state: UserAuthenticatorState | None = None
    qr_code: str | None = Field(default=None, alias="QRCode")
    secret_key: str | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _state_from_ordinal(cls, value: Any) -> Any:
        return _coerce_state(value)
