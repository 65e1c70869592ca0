"""Deferred billing: queue period templates and materialize them once due.

There is no background timer. ``process_due`` is called whenever the dues
surface is opened; the removal of due entries and the creation of their
periods happen in one dues write, so a second call right after finds nothing
left to do. Bound ledger entries are written before that dues write and
removed again if it does not go through.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from src.models.club_snapshot import SnapshotKind
from src.models.dues import (
    BillingPeriod,
    DuesSnapshot,
    MemberAmount,
    ScheduledBilling,
    new_id,
    utc_now,
)
from src.services.billing_service import (
    materialize_period,
    require_members,
    require_name,
    require_period_date,
    require_positive_amount,
)
from src.services.errors import PersistenceError, ValidationError
from src.services.ledger_service import LedgerService
from src.services.localizer import t
from src.services.snapshot_repository import SnapshotRepository, normalize_club_code

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one processing pass."""

    dues: DuesSnapshot
    processed: list[ScheduledBilling] = field(default_factory=list)
    periods: list[BillingPeriod] = field(default_factory=list)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ScheduledBillingProcessor:
    """Queue and materialize scheduled billings of a club."""

    def __init__(
        self,
        repository: SnapshotRepository,
        ledger_service: LedgerService,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize processor.

        Args:
            repository: Snapshot repository holding the dues aggregate
            ledger_service: Ledger service receiving bound entries
            clock: Source of the current time (injectable for tests)
        """
        self.repository = repository
        self.ledger = ledger_service
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    async def schedule(
        self,
        club_code: str,
        *,
        name: str,
        amount: int | str,
        scheduled_at: Optional[datetime],
        member_amounts: Iterable[MemberAmount],
        date: Optional[str] = None,
        ledger_category: Optional[str] = None,
    ) -> DuesSnapshot | None:
        """Queue a billing period for automatic creation.

        Member amounts are stored as given and are not recomputed later.

        Raises:
            ValidationError: If the name is empty, the amount is not positive,
                no member is given, the date is not YYYY-MM-DD, the time is
                missing or not in the future, or the ledger category is unknown

        Returns:
            Updated dues snapshot, or None if the store failed
        """
        code = normalize_club_code(club_code)
        billing_name = require_name(name)
        base_amount = require_positive_amount(amount)
        members = require_members(member_amounts)
        period_date = require_period_date(date)
        if scheduled_at is None:
            raise ValidationError(t("errors.invalid_schedule_time"))
        when = _as_aware(scheduled_at)
        if when <= self.clock():
            raise ValidationError(t("errors.schedule_in_past"))
        if ledger_category:
            labels = {c.label for c in await self.ledger.get_categories(code)}
            if ledger_category not in labels:
                raise ValidationError(t("errors.unknown_category", category=ledger_category))

        entry = ScheduledBilling(
            id=new_id("sb"),
            scheduled_at=when,
            name=billing_name,
            amount=base_amount,
            date=period_date,
            ledger_category=ledger_category or None,
            member_amounts=members,
            created_at=self.clock(),
        )

        def mutation(dues: DuesSnapshot) -> bool:
            dues.scheduled_billings.append(entry)
            dues.scheduled_billings.sort(key=lambda s: s.scheduled_at)
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is not None:
            logger.info(
                "Scheduled billing: club=%s id=%s name=%s at=%s members=%d",
                code,
                entry.id,
                entry.name,
                entry.scheduled_at.isoformat(),
                len(members),
            )
        return dues

    async def cancel(self, club_code: str, scheduled_id: str) -> DuesSnapshot | None:
        """Delete a queued billing.

        Returns:
            Updated dues snapshot, or None if the entry does not exist or the store failed
        """
        code = normalize_club_code(club_code)

        def mutation(dues: DuesSnapshot) -> bool:
            remaining = [s for s in dues.scheduled_billings if s.id != scheduled_id]
            if len(remaining) == len(dues.scheduled_billings):
                logger.warning("Scheduled billing not found: club=%s id=%s", code, scheduled_id)
                return False
            dues.scheduled_billings = remaining
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is not None:
            logger.info("Cancelled scheduled billing: club=%s id=%s", code, scheduled_id)
        return dues

    def lock(self, club_code: str) -> asyncio.Lock:
        """Lock serializing processing passes of one club."""
        if club_code not in self._locks:
            self._locks[club_code] = asyncio.Lock()
        return self._locks[club_code]

    async def process_due(self, club_code: str, now: Optional[datetime] = None) -> ProcessResult | None:
        """Materialize every queued billing whose time has come.

        Entries scheduled in the past are still materialized, however late.
        Bound ledger entries are written before the dues snapshot; if any
        write fails, the binds of periods that were not stored are removed and
        the entries stay queued for the next pass.

        Returns:
            ProcessResult (empty when nothing was due), or None if the store failed
        """
        code = normalize_club_code(club_code)
        moment = _as_aware(now) if now is not None else self.clock()

        async with self.lock(code):
            try:
                queued = (await self.repository.get_dues(code)).scheduled_billings
            except PersistenceError:
                return None
            due = [s for s in queued if s.scheduled_at <= moment]
            if not due:
                return await self._unchanged(code)

            created_at = self.clock()
            planned: dict[str, BillingPeriod] = {
                entry.id: BillingPeriod(
                    id=new_id("bp"),
                    name=entry.name,
                    amount=entry.amount,
                    date=entry.date,
                    ledger_category=entry.ledger_category,
                    created_at=created_at,
                )
                for entry in due
            }

            bound: list[str] = []
            for entry in due:
                period = planned[entry.id]
                if not period.ledger_category:
                    continue
                ledger = await self.ledger.bind_billing_period(
                    code,
                    period.id,
                    name=period.name,
                    entry_date=period.date or moment.date().isoformat(),
                    category=period.ledger_category,
                    member_count=len(entry.member_amounts),
                )
                if ledger is None:
                    logger.error("Failed to bind ledger entry: club=%s period=%s", code, period.id)
                    await self._unbind(code, bound)
                    return None
                bound.append(period.id)

            processed: list[ScheduledBilling] = []
            periods: list[BillingPeriod] = []

            def mutation(dues: DuesSnapshot) -> bool:
                for entry in dues.scheduled_billings:
                    if entry.id in planned:
                        materialize_period(dues, planned[entry.id], entry.member_amounts, created_at)
                        processed.append(entry)
                        periods.append(planned[entry.id])
                if not processed:
                    return False
                dues.scheduled_billings = [s for s in dues.scheduled_billings if s.id not in planned]
                return True

            dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
            stored = {p.id for p in periods} if dues is not None else set()
            await self._unbind(code, [period_id for period_id in bound if period_id not in stored])
            if dues is None:
                return None if processed else await self._unchanged(code)

        for entry, period in zip(processed, periods):
            logger.info(
                "Materialized scheduled billing: club=%s scheduled=%s period=%s name=%s",
                code,
                entry.id,
                period.id,
                period.name,
            )
        return ProcessResult(dues=dues, processed=processed, periods=periods)

    async def _unchanged(self, club_code: str) -> ProcessResult | None:
        try:
            return ProcessResult(dues=await self.repository.get_dues(club_code))
        except PersistenceError:
            return None

    async def _unbind(self, club_code: str, period_ids: Iterable[str]) -> None:
        for period_id in period_ids:
            if await self.ledger.delete_by_billing_period(club_code, period_id) is None:
                logger.error("Orphaned ledger entry left for unsaved period: club=%s period=%s", club_code, period_id)


__all__ = ["ScheduledBillingProcessor", "ProcessResult"]
