"""Database-backed store of WebAuthn users, their authenticators and challenge."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, cast

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from passkey_store.exceptions import (
    ConflictError,
    InvalidSelectorError,
    NotFoundError,
    StoreUnavailableError,
)
from passkey_store.models.database import (
    AuthenticatorDeviceRecord,
    UserRecord,
    _utc_now,
    from_storage_time,
    to_storage_time,
)
from passkey_store.models.domain import (
    AuthenticatorDeviceDetails,
    Challenge,
    User,
    UserSelector,
    as_bytes,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


def _system_clock() -> datetime:
    return datetime.now(UTC)


def _require_selector(selector: UserSelector) -> UserSelector:
    if selector.is_empty:
        msg = "A user selector needs an id, an email, or both"
        raise InvalidSelectorError(msg)
    return selector


def _selector_clauses(selector: UserSelector) -> list[Any]:
    columns = {"id": col(UserRecord.id), "email": col(UserRecord.email)}
    return [columns[name] == value for name, value in selector.present_fields().items()]


def _hint_value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value


def _device_to_record(
    device: AuthenticatorDeviceDetails, user_pk: int, position: int
) -> AuthenticatorDeviceRecord:
    record = AuthenticatorDeviceRecord(
        user_pk=user_pk,
        position=position,
        credential_id=device.credential_id,
        credential_public_key=device.credential_public_key,
    )
    _copy_device(device, record)
    return record


def _copy_device(device: AuthenticatorDeviceDetails, record: AuthenticatorDeviceRecord) -> None:
    """Overwrite every device attribute of ``record``; owner and position stay."""
    record.credential_id = device.credential_id
    record.credential_public_key = device.credential_public_key
    record.counter = device.counter
    record.transports_json = (
        json.dumps([_hint_value(transport) for transport in device.transports])
        if device.transports is not None
        else None
    )
    record.device_type = (
        _hint_value(device.device_type) if device.device_type is not None else None
    )
    record.backed_up = device.backed_up
    record.name = device.name
    record.last_used = to_storage_time(device.last_used) if device.last_used else None
    record.client_extension_results_json = (
        json.dumps(device.client_extension_results)
        if device.client_extension_results is not None
        else None
    )


def _record_to_device(record: AuthenticatorDeviceRecord) -> AuthenticatorDeviceDetails:
    return AuthenticatorDeviceDetails(
        credential_id=as_bytes(record.credential_id),
        credential_public_key=as_bytes(record.credential_public_key),
        counter=record.counter,
        transports=json.loads(record.transports_json) if record.transports_json else None,
        device_type=record.device_type,
        backed_up=record.backed_up,
        name=record.name,
        last_used=from_storage_time(record.last_used) if record.last_used else None,
        client_extension_results=(
            json.loads(record.client_extension_results_json)
            if record.client_extension_results_json
            else None
        ),
    )


def _copy_user(user: User, record: UserRecord) -> None:
    record.id = user.id
    record.email = user.email
    record.challenge_data = user.challenge.data
    record.challenge_valid_until = to_storage_time(user.challenge.valid_until)
    record.updated_at = _utc_now()


class UserStore:
    """Database-backed store of WebAuthn users.

    Each user row owns an ordered list of authenticator rows and a single
    challenge. Every operation opens its own session; mutations run in one
    transaction and lock the rows they rewrite, so per-user atomicity comes
    from the database rather than from in-process locks.

    ``replace`` and ``update_device`` against the same user are
    last-writer-wins: a replace built from a stale read drops a device
    update that committed in between. Callers needing ordering across the
    two must serialize above this layer.
    """

    def __init__(self, engine: AsyncEngine, clock: Callable[[], datetime] = _system_clock) -> None:
        self._engine = engine
        self._clock = clock

    async def initialize(self) -> None:
        """Create the tables and the ``(id, email)`` unique index if absent."""
        async with self._store_errors("initialize"), self._engine.begin() as conn:
            await conn.run_sync(
                SQLModel.metadata.create_all,
                tables=[UserRecord.__table__, AuthenticatorDeviceRecord.__table__],
            )
        logger.debug("user_store_initialized")

    async def create(self, user: User) -> int:
        """Insert ``user`` with its devices and return the storage row id."""
        async with self._store_errors("create"), AsyncSession(self._engine) as session:
            record = UserRecord(
                id=user.id,
                email=user.email,
                challenge_data=user.challenge.data,
                challenge_valid_until=to_storage_time(user.challenge.valid_until),
            )
            try:
                session.add(record)
                await session.flush()  # populate record.pk without committing
                user_pk = cast(int, record.pk)
                session.add_all(
                    _device_to_record(device, user_pk, position)
                    for position, device in enumerate(user.devices)
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info("user_create_conflict", user_id=user.id)
                msg = f"User {user.id!r} already exists"
                raise ConflictError(msg) from exc

            logger.info("user_created", user_pk=user_pk, user_id=user.id, devices=len(user.devices))
            return user_pk

    async def does_user_exist(self, selector: UserSelector) -> bool:
        """Return True iff exactly one record matches ``selector``."""
        _require_selector(selector)
        async with self._store_errors("does_user_exist"), AsyncSession(self._engine) as session:
            stmt = select(UserRecord.pk).where(*_selector_clauses(selector)).limit(2)
            result = await session.exec(stmt)
            return len(result.all()) == 1

    async def get(self, selector: UserSelector) -> User:
        _require_selector(selector)
        async with self._store_errors("get"), AsyncSession(self._engine) as session:
            record = await self._find(session, _selector_clauses(selector))
            if record is None:
                msg = "User not found"
                raise NotFoundError(msg)
            return await self._load(session, record)

    async def get_for_challenge(self, selector: UserSelector) -> User:
        """Like :meth:`get`, but only while the stored challenge is still valid.

        A missing user and an expired challenge both raise ``NotFoundError``.
        """
        _require_selector(selector)
        now = to_storage_time(self._clock())
        clauses = [*_selector_clauses(selector), col(UserRecord.challenge_valid_until) > now]
        async with self._store_errors("get_for_challenge"), AsyncSession(self._engine) as session:
            record = await self._find(session, clauses)
            if record is None:
                msg = "User not found"
                raise NotFoundError(msg)
            return await self._load(session, record)

    async def replace(self, selector: UserSelector, update: User) -> User | None:
        """Overwrite the whole matched record with ``update``.

        Returns the previous value, or None when nothing matched. Devices not
        present in ``update`` are deleted.
        """
        _require_selector(selector)
        async with self._store_errors("replace"), AsyncSession(self._engine) as session:
            try:
                record = await self._find(session, _selector_clauses(selector), for_update=True)
                if record is None:
                    return None
                user_pk = cast(int, record.pk)
                previous = await self._load(session, record)

                await session.exec(
                    delete(AuthenticatorDeviceRecord).where(
                        col(AuthenticatorDeviceRecord.user_pk) == user_pk
                    )
                )
                _copy_user(update, record)
                session.add(record)
                session.add_all(
                    _device_to_record(device, user_pk, position)
                    for position, device in enumerate(update.devices)
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info("user_replace_conflict", user_id=update.id)
                msg = f"Replacing with user {update.id!r} violates a uniqueness constraint"
                raise ConflictError(msg) from exc

            logger.info("user_replaced", user_pk=user_pk, devices=len(update.devices))
            return previous

    async def update_device(
        self, selector: UserSelector, device: AuthenticatorDeviceDetails
    ) -> User | None:
        """Swap in ``device`` for the stored device with the same credential id.

        Only that device row changes; its position in the list is kept.
        Returns the user as it was before the update, or None when no user
        matching ``selector`` owns the credential.
        """
        _require_selector(selector)
        async with self._store_errors("update_device"), AsyncSession(self._engine) as session:
            stmt = (
                select(UserRecord, AuthenticatorDeviceRecord)
                .join(
                    AuthenticatorDeviceRecord,
                    col(AuthenticatorDeviceRecord.user_pk) == col(UserRecord.pk),
                )
                .where(
                    *_selector_clauses(selector),
                    col(AuthenticatorDeviceRecord.credential_id) == device.credential_id,
                )
                .order_by(col(UserRecord.pk), col(AuthenticatorDeviceRecord.position))
                .limit(1)
                .with_for_update()
            )
            row = (await session.exec(stmt)).first()
            if row is None:
                logger.info("user_device_update_missed", user_id=selector.id)
                return None
            record, device_record = row
            user_pk, position = record.pk, device_record.position
            previous = await self._load(session, record)

            _copy_device(device, device_record)
            session.add(device_record)
            await session.commit()

            logger.info("user_device_updated", user_pk=user_pk, position=position)
            return previous

    async def remove(self, selector: UserSelector) -> User | None:
        """Delete the matched user and its devices; return what was deleted."""
        _require_selector(selector)
        async with self._store_errors("remove"), AsyncSession(self._engine) as session:
            record = await self._find(session, _selector_clauses(selector), for_update=True)
            if record is None:
                return None
            user_pk = record.pk
            removed = await self._load(session, record)

            await session.exec(
                delete(AuthenticatorDeviceRecord).where(
                    col(AuthenticatorDeviceRecord.user_pk) == user_pk
                )
            )
            await session.delete(record)
            await session.commit()

            logger.info("user_removed", user_pk=user_pk, devices=len(removed.devices))
            return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _find(
        session: AsyncSession, clauses: list[Any], *, for_update: bool = False
    ) -> UserRecord | None:
        """Return the earliest-inserted user row matching all ``clauses``."""
        stmt = select(UserRecord).where(*clauses).order_by(col(UserRecord.pk)).limit(1)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.exec(stmt)
        return result.first()

    @staticmethod
    async def _load(session: AsyncSession, record: UserRecord) -> User:
        """Build the domain user, decoding binary device columns to bytes."""
        stmt = (
            select(AuthenticatorDeviceRecord)
            .where(col(AuthenticatorDeviceRecord.user_pk) == record.pk)
            .order_by(col(AuthenticatorDeviceRecord.position))
        )
        result = await session.exec(stmt)
        return User(
            id=record.id,
            email=record.email,
            devices=[_record_to_device(device) for device in result.all()],
            challenge=Challenge(
                data=record.challenge_data,
                valid_until=from_storage_time(record.challenge_valid_until),
            ),
        )

    @staticmethod
    @asynccontextmanager
    async def _store_errors(operation: str) -> AsyncIterator[None]:
        """Translate connectivity failures into ``StoreUnavailableError``."""
        try:
            yield
        except _UNAVAILABLE as exc:
            logger.warning("user_store_unavailable", operation=operation, error=str(exc))
            msg = f"User store unavailable during {operation}"
            raise StoreUnavailableError(msg) from exc
