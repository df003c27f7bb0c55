"""Unit tests for engine configuration, store lifecycle and the schema migration."""

from __future__ import annotations

import importlib

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import DateTime, create_engine, inspect
from sqlalchemy.ext.asyncio import create_async_engine

from passkey_store.config.settings import Settings, get_settings
from passkey_store.models.database import AuthenticatorDeviceRecord, UserRecord
from passkey_store.models.domain import User, UserSelector
from passkey_store.storage.database import engine_options, init_db, user_store_session

MIGRATION = "passkey_store.storage.migrations.versions.b7e4c91d2a06_create_users_and_devices"


@pytest.mark.unit
class TestEngineOptions:
    def test_sqlite_skips_pool_sizing(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert engine_options(settings) == {"echo": False}

    def test_server_database_gets_pool_options(self) -> None:
        settings = Settings(
            database_url="postgresql+asyncpg://u:p@db/passkeys",
            db_pool_size=3,
            debug=True,
        )
        options = engine_options(settings)
        assert options["echo"] is True
        assert options["pool_size"] == 3
        assert options["max_overflow"] == 10
        assert options["pool_pre_ping"] is True
        assert options["pool_recycle"] == 3600


@pytest.mark.unit
class TestSchema:
    @pytest.mark.parametrize(
        "column",
        [
            UserRecord.__table__.c.challenge_valid_until,
            UserRecord.__table__.c.created_at,
            UserRecord.__table__.c.updated_at,
            AuthenticatorDeviceRecord.__table__.c.last_used,
        ],
        ids=lambda column: column.name,
    )
    def test_timestamps_are_naive_utc_columns(self, column) -> None:
        assert type(column.type) is DateTime
        assert column.type.timezone is False


@pytest.mark.unit
class TestStoreLifecycle:
    async def test_init_db_creates_tables(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            await init_db(engine)
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
            assert {"users", "authenticator_devices"} <= set(tables)
        finally:
            await engine.dispose()

    async def test_session_with_supplied_engine_leaves_it_open(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            async with user_store_session(engine) as store:
                await store.create(User(id="u1", email="a@x.com"))

            async with user_store_session(engine) as store:
                assert await store.does_user_exist(UserSelector(id="u1")) is True
        finally:
            await engine.dispose()

    async def test_session_builds_engine_from_settings(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path
    ) -> None:
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'passkeys.db'}")
        monkeypatch.setenv("DEBUG", "false")
        get_settings.cache_clear()
        try:
            async with user_store_session() as store:
                await store.create(User(id="u1", email="a@x.com"))

            async with user_store_session() as store:
                user = await store.get(UserSelector(email="a@x.com"))
            assert user.id == "u1"
        finally:
            get_settings.cache_clear()


@pytest.mark.unit
class TestMigration:
    def test_upgrade_and_downgrade(self) -> None:
        migration = importlib.import_module(MIGRATION)
        engine = create_engine("sqlite://")
        with engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                migration.upgrade()

            inspector = inspect(conn)
            assert {"users", "authenticator_devices"} <= set(inspector.get_table_names())
            unique = {c["name"]: c["column_names"] for c in inspector.get_unique_constraints("users")}
            assert unique["uq_users_id_email"] == ["id", "email"]
            device_unique = {
                c["name"]: c["column_names"]
                for c in inspector.get_unique_constraints("authenticator_devices")
            }
            assert device_unique["uq_authenticator_devices_credential"] == [
                "user_pk",
                "credential_id",
            ]

            with Operations.context(MigrationContext.configure(conn)):
                migration.downgrade()
            assert "users" not in inspect(conn).get_table_names()
        engine.dispose()
