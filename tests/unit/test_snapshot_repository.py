"""Unit tests for snapshot persistence and caching."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from src.models import BillingPeriod, ClubSnapshot, DuesSnapshot, SnapshotKind
from src.services.errors import PersistenceError, ValidationError
from src.services.snapshot_repository import SnapshotRepository, SqlSnapshotStore, normalize_club_code


def _period(period_id: str = "bp-1") -> BillingPeriod:
    return BillingPeriod(id=period_id, name="1월 회비", amount=30000)


class TestNormalizeClubCode:
    """Tests for normalize_club_code function."""

    def test_strips_and_uppercases(self):
        """Test codes are trimmed and upper-cased."""
        assert normalize_club_code("  tnn01 ") == "TNN01"

    def test_empty_code_rejected(self):
        """Test an empty code raises ValidationError."""
        with pytest.raises(ValidationError):
            normalize_club_code("   ")


class TestSqlSnapshotStore:
    """Tests for the SQL snapshot store."""

    async def test_missing_snapshot_loads_none(self, session_factory):
        """Test loading a club without data returns None."""
        store = SqlSnapshotStore(session_factory)
        assert await store.load("TNN01", SnapshotKind.DUES) is None

    async def test_save_replaces_single_row(self, session_factory):
        """Test saving twice keeps one row per club and kind."""
        store = SqlSnapshotStore(session_factory)
        await store.save("TNN01", SnapshotKind.DUES, {"billingPeriods": []})
        await store.save("TNN01", SnapshotKind.DUES, {"billingPeriods": [{"id": "bp-1"}]})

        async with session_factory() as session:
            rows = (await session.execute(select(ClubSnapshot))).scalars().all()
        assert len(rows) == 1
        assert rows[0].payload == {"billingPeriods": [{"id": "bp-1"}]}

    async def test_kinds_are_independent(self, session_factory):
        """Test dues and ledger documents are stored separately."""
        store = SqlSnapshotStore(session_factory)
        await store.save("TNN01", SnapshotKind.DUES, {"billingPeriods": []})
        assert await store.load("TNN01", SnapshotKind.LEDGER) is None


class TestSnapshotRepository:
    """Tests for the caching repository."""

    async def test_empty_club_gets_default_snapshot(self, repository):
        """Test a club without data reads as an empty snapshot."""
        dues = await repository.get_dues("TNN01")
        assert dues == DuesSnapshot()

    async def test_saved_document_uses_camel_case(self, repository, session_factory):
        """Test snapshots are stored with camelCase keys."""
        dues = DuesSnapshot(billing_periods=[_period()])
        assert await repository.save_dues("TNN01", dues) is True

        payload = await SqlSnapshotStore(session_factory).load("TNN01", SnapshotKind.DUES)
        assert "billingPeriods" in payload
        assert payload["billingPeriods"][0]["ledgerCategory"] is None

    async def test_reads_return_private_copies(self, repository):
        """Test mutating a read snapshot does not touch the cache."""
        await repository.save_dues("TNN01", DuesSnapshot(billing_periods=[_period()]))

        first = await repository.get_dues("TNN01")
        first.billing_periods[0].name = "changed"

        second = await repository.get_dues("TNN01")
        assert second.billing_periods[0].name == "1월 회비"

    async def test_cache_survives_store_reads(self, repository):
        """Test a cached snapshot is served without reloading."""
        await repository.save_dues("TNN01", DuesSnapshot(billing_periods=[_period()]))
        with patch.object(repository.store, "load", new=AsyncMock()) as load:
            await repository.get_dues("TNN01")
        load.assert_not_called()

    async def test_save_failure_returns_false_and_drops_cache(self, repository):
        """Test a failed write reports False and the next read goes to the store."""
        await repository.save_dues("TNN01", DuesSnapshot(billing_periods=[_period()]))

        with patch.object(repository.store, "save", new=AsyncMock(side_effect=SQLAlchemyError("disk full"))):
            ok = await repository.save_dues("TNN01", DuesSnapshot())
        assert ok is False

        # Store still holds the last good document
        dues = await repository.get_dues("TNN01")
        assert len(dues.billing_periods) == 1

    async def test_load_failure_raises_persistence_error(self, repository):
        """Test a failed read raises PersistenceError."""
        with patch.object(repository.store, "load", new=AsyncMock(side_effect=SQLAlchemyError("locked"))):
            with pytest.raises(PersistenceError):
                await repository.get_ledger("TNN01")

    async def test_invalid_document_raises_persistence_error(self, repository):
        """Test a malformed stored document raises PersistenceError."""
        bad = {"billingPeriods": [{"id": "bp-1"}]}
        with patch.object(repository.store, "load", new=AsyncMock(return_value=bad)):
            with pytest.raises(PersistenceError):
                await repository.get_dues("TNN01")

    async def test_mutate_writes_and_returns_copy(self, repository):
        """Test mutate saves the changed snapshot."""

        def add_period(dues):
            dues.billing_periods.append(_period())
            return True

        result = await repository.mutate("TNN01", SnapshotKind.DUES, add_period)
        assert [p.id for p in result.billing_periods] == ["bp-1"]

        repository.invalidate()
        reloaded = await repository.get_dues("TNN01")
        assert [p.id for p in reloaded.billing_periods] == ["bp-1"]

    async def test_mutate_not_found_writes_nothing(self, repository):
        """Test a mutation returning False saves nothing and yields None."""
        with patch.object(repository.store, "save", new=AsyncMock()) as save:
            result = await repository.mutate("TNN01", SnapshotKind.DUES, lambda dues: False)
        assert result is None
        save.assert_not_called()

    async def test_mutate_validation_error_propagates(self, repository):
        """Test a rejecting mutation leaves the stored snapshot unchanged."""

        def reject(dues):
            dues.billing_periods.append(_period())
            raise ValidationError("rejected")

        with pytest.raises(ValidationError):
            await repository.mutate("TNN01", SnapshotKind.DUES, reject)
        assert (await repository.get_dues("TNN01")).billing_periods == []

    async def test_mutate_load_failure_returns_none(self, repository):
        """Test mutate reports None when the snapshot cannot be read."""
        with patch.object(repository.store, "load", new=AsyncMock(side_effect=SQLAlchemyError("locked"))):
            assert await repository.mutate("TNN01", SnapshotKind.DUES, lambda dues: True) is None

    async def test_locks_are_per_club_and_kind(self, repository):
        """Test each club aggregate gets its own lock."""
        assert repository.lock("A", SnapshotKind.DUES) is repository.lock("A", SnapshotKind.DUES)
        assert repository.lock("A", SnapshotKind.DUES) is not repository.lock("A", SnapshotKind.LEDGER)
        assert repository.lock("A", SnapshotKind.DUES) is not repository.lock("B", SnapshotKind.DUES)

    async def test_shared_store_between_repositories(self, session_factory):
        """Test a second repository over the same database sees saved data."""
        first = SnapshotRepository(SqlSnapshotStore(session_factory))
        await first.save_dues("TNN01", DuesSnapshot(billing_periods=[_period()]))

        second = SnapshotRepository(SqlSnapshotStore(session_factory))
        assert len((await second.get_dues("TNN01")).billing_periods) == 1
