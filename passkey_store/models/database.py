"""SQLModel database table models."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_storage_time(value: datetime) -> datetime:
    """Convert an aware datetime into the naive UTC form stored in columns."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def from_storage_time(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("id", "email", name="uq_users_id_email"),)

    pk: int | None = Field(default=None, primary_key=True)
    id: str = Field(index=True)
    email: str = Field(index=True)
    challenge_data: str = ""
    challenge_valid_until: datetime = Field(sa_type=DateTime())
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime())


class AuthenticatorDeviceRecord(SQLModel, table=True):
    __tablename__ = "authenticator_devices"
    __table_args__ = (
        UniqueConstraint("user_pk", "credential_id", name="uq_authenticator_devices_credential"),
    )

    pk: int | None = Field(default=None, primary_key=True)
    user_pk: int = Field(foreign_key="users.pk", index=True)
    position: int  # order within the user's device list
    credential_id: bytes
    credential_public_key: bytes
    counter: int = Field(default=0)
    transports_json: str | None = None
    device_type: str | None = None  # single_device | multi_device
    backed_up: bool | None = None
    name: str | None = None
    last_used: datetime | None = Field(default=None, sa_type=DateTime())
    client_extension_results_json: str | None = None
