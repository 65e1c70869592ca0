"""Wiring of the billing and ledger services around one snapshot repository."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.dues import utc_now
from src.services.billing_service import BillingService
from src.services.ledger_service import LedgerService
from src.services.notification_matcher import NotificationMatcher
from src.services.payment_status import PaymentStatusMachine
from src.services.scheduled_billing import ScheduledBillingProcessor
from src.services.snapshot_repository import SnapshotRepository, SqlSnapshotStore


@dataclass
class DuesEngine:
    """Services sharing one repository (and therefore one cache and lock set)."""

    repository: SnapshotRepository
    ledger: LedgerService
    status_machine: PaymentStatusMachine
    billing: BillingService
    scheduler: ScheduledBillingProcessor
    matcher: NotificationMatcher

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> "DuesEngine":
        """Create the services over a database session factory."""
        repository = SnapshotRepository(SqlSnapshotStore(session_factory))
        ledger = LedgerService(repository, clock=clock)
        status_machine = PaymentStatusMachine(repository, ledger, clock=clock)
        return cls(
            repository=repository,
            ledger=ledger,
            status_machine=status_machine,
            billing=BillingService(repository, ledger, status_machine, clock=clock),
            scheduler=ScheduledBillingProcessor(repository, ledger, clock=clock),
            matcher=NotificationMatcher(repository, status_machine, clock=clock),
        )


__all__ = ["DuesEngine"]
