"""User, device and challenge contracts handed to and returned by the store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from webauthn.helpers.structs import AuthenticatorTransport, CredentialDeviceType

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Known hints become enum members; anything newer passes through as a plain string.
Transport = Annotated[AuthenticatorTransport | str, Field(union_mode="left_to_right")]
DeviceType = Annotated[CredentialDeviceType | str, Field(union_mode="left_to_right")]


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def as_bytes(value: bytes | bytearray | memoryview) -> bytes:
    """Decode a driver-native binary value into plain ``bytes``."""
    if isinstance(value, bytes):
        return value
    return bytes(value)


class Challenge(BaseModel):
    data: str
    valid_until: datetime

    @field_validator("valid_until")
    @classmethod
    def _normalize_valid_until(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def placeholder(cls) -> Challenge:
        """An already-expired challenge for users with no ceremony in flight."""
        return cls(data="", valid_until=_EPOCH)


class AuthenticatorDeviceDetails(BaseModel):
    credential_id: bytes
    credential_public_key: bytes
    counter: int = 0
    transports: list[Transport] | None = None
    device_type: DeviceType | None = None
    backed_up: bool | None = None
    name: str | None = None
    last_used: datetime | None = None
    client_extension_results: dict[str, Any] | None = None

    @field_validator("credential_id", "credential_public_key", mode="before")
    @classmethod
    def _decode_binary(cls, value: Any) -> Any:
        if isinstance(value, bytearray | memoryview):
            return as_bytes(value)
        return value

    @field_validator("last_used")
    @classmethod
    def _normalize_last_used(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value) if value is not None else None


class User(BaseModel):
    """A registered principal with its authenticators and in-flight challenge.

    ``id`` is the application's opaque identifier and ends up inside the
    authenticator, so it must not carry identifying information. ``email`` is
    for display and alternate lookup only.
    """

    id: str
    email: str
    devices: list[AuthenticatorDeviceDetails] = []
    challenge: Challenge = Challenge.placeholder()


class UserSelector(BaseModel):
    """Lookup key for a user record.

    Present fields are ANDed: ``UserSelector(id="u1", email="a@x.com")`` only
    matches a record holding both values. Empty strings count as absent.
    """

    model_config = {"frozen": True}

    id: str | None = None
    email: str | None = None

    @field_validator("id", "email")
    @classmethod
    def _blank_is_absent(cls, value: str | None) -> str | None:
        return value or None

    @property
    def is_empty(self) -> bool:
        return self.id is None and self.email is None

    def present_fields(self) -> dict[str, str]:
        """Return only the fields that take part in matching."""
        fields: dict[str, str] = {}
        if self.id is not None:
            fields["id"] = self.id
        if self.email is not None:
            fields["email"] = self.email
        return fields
