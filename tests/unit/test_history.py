"""
Unit tests for the migration history store.

Tests cover:
- Table initialization
- Recording and reading migrations
- Versions, status updates and stats
- Clearing records
"""

import pytest
import pytest_asyncio

from doctype_engine.db import SqliteDatabase
from doctype_engine.errors import NotFoundError
from doctype_engine.migration import Migration, MigrationHistory, MigrationStatus


class TestMigrationHistory:
    """Tests for MigrationHistory."""

    @pytest_asyncio.fixture
    async def history(self):
        async with SqliteDatabase() as db:
            history = MigrationHistory(db)
            await history.initialize()
            yield history

    async def record(self, history, doctype="User", **kwargs):
        version = await history.next_version(doctype)
        migration = Migration.new(
            doctype,
            version,
            f"{doctype} v{version}",
            sql=['ALTER TABLE "tabUser" ADD COLUMN "x" TEXT'],
            rollback_sql=['ALTER TABLE "tabUser" DROP COLUMN "x"'],
            **kwargs,
        )
        await history.record(migration)
        return migration

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, history):
        """initialize can run twice and creates the indexes."""
        await history.initialize()
        indexes = [i.name for i in await history.db.introspect_indexes(history.table)]
        assert "tabMigrationHistory_doctype_idx" in indexes

    @pytest.mark.asyncio
    async def test_record_round_trip(self, history):
        """Recorded migrations read back with every attribute."""
        migration = await self.record(
            history,
            destructive=True,
            requires_backup=True,
            diff={"doctype": "User"},
            fingerprint="sha256:abc",
            execution_time=12.5,
        )
        assert migration.status == MigrationStatus.APPLIED

        stored = await history.get_by_id(migration.id)
        assert stored.applied
        assert stored.sql == migration.sql
        assert stored.rollback_sql == migration.rollback_sql
        assert stored.destructive
        assert stored.requires_backup
        assert stored.diff == {"doctype": "User"}
        assert stored.fingerprint == "sha256:abc"
        assert stored.description == "User v1"
        assert stored.to_dict()["status"] == "applied"

    @pytest.mark.asyncio
    async def test_versions_are_per_doctype(self, history):
        """Versions increase per DocType."""
        await self.record(history)
        await self.record(history)
        await self.record(history, doctype="Role")
        assert await history.next_version("User") == 3
        assert await history.next_version("Role") == 2
        assert (await history.get_latest("User")).version == 2
        assert await history.get_latest("Task") is None

    @pytest.mark.asyncio
    async def test_history_order_and_limit(self, history):
        """History is newest first and can be limited."""
        first = await self.record(history)
        second = await self.record(history)
        await self.record(history, doctype="Role")

        user_history = await history.get_history("User")
        assert [m.id for m in user_history] == [second.id, first.id]
        assert len(await history.get_history(limit=2)) == 2
        assert len(await history.get_history()) == 3

    @pytest.mark.asyncio
    async def test_update_status(self, history):
        """Status updates keep or replace the error."""
        migration = await self.record(history)
        await history.update_status(migration.id, MigrationStatus.ROLLED_BACK)
        stored = await history.get_by_id(migration.id)
        assert stored.status == MigrationStatus.ROLLED_BACK
        assert not stored.applied

        with pytest.raises(NotFoundError):
            await history.update_status("missing", MigrationStatus.FAILED)

    @pytest.mark.asyncio
    async def test_failed_record(self, history):
        """Failed runs keep their error."""
        migration = await self.record(
            history, status=MigrationStatus.FAILED, error="no such table"
        )
        stored = await history.get_by_id(migration.id)
        assert stored.status == MigrationStatus.FAILED
        assert stored.error == "no such table"

    @pytest.mark.asyncio
    async def test_stats(self, history):
        """Stats count records by status."""
        await self.record(history, execution_time=10.0)
        await self.record(history, execution_time=20.0, status=MigrationStatus.FAILED)
        await self.record(history, doctype="Role", execution_time=30.0)

        stats = await history.get_stats()
        assert stats.total == 3
        assert stats.applied == 2
        assert stats.failed == 1
        assert stats.average_execution_time == pytest.approx(20.0)
        assert (await history.get_stats("Role")).total == 1

    @pytest.mark.asyncio
    async def test_clear(self, history):
        """clear deletes records and returns the count."""
        await self.record(history)
        await self.record(history, doctype="Role")
        assert await history.clear("User") == 1
        assert await history.clear() == 1
        assert await history.get_history() == []
