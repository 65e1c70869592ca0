"""Payment status machine with ledger resynchronization.

States: Unpaid -> PendingConfirmation -> Confirmed, plus reversals.

| From                | To                  | Allowed actors          |
|---------------------|---------------------|-------------------------|
| Unpaid              | PendingConfirmation | member, auto-match      |
| Unpaid              | Confirmed           | admin, auto-match       |
| PendingConfirmation | Confirmed           | admin, auto-match       |
| PendingConfirmation | Unpaid              | admin, member           |
| Confirmed           | Unpaid              | admin                   |

After every transition the ledger entry bound to the period (if the period
declares a ledger category) is recomputed from the confirmed records.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from src.models.club_snapshot import SnapshotKind
from src.models.dues import DuesSnapshot, PaymentStatus, utc_now
from src.services.errors import InvalidTransitionError, PersistenceError
from src.services.ledger_service import LedgerService, billing_description
from src.services.localizer import status_label, t
from src.services.messaging import BankAccount, Clipboard, bank_account_text
from src.services.snapshot_repository import SnapshotRepository, normalize_club_code

logger = logging.getLogger(__name__)


class Actor(str, Enum):
    """Who requests a status transition."""

    MEMBER = "member"
    ADMIN = "admin"
    AUTO_MATCH = "auto_match"


def allowed_actors(current: PaymentStatus, target: PaymentStatus) -> frozenset[Actor]:
    """Actors allowed to move a record from ``current`` to ``target``."""
    match (current, target):
        case (PaymentStatus.UNPAID, PaymentStatus.PENDING_CONFIRMATION):
            return frozenset({Actor.MEMBER, Actor.AUTO_MATCH})
        case (PaymentStatus.UNPAID, PaymentStatus.CONFIRMED):
            return frozenset({Actor.ADMIN, Actor.AUTO_MATCH})
        case (PaymentStatus.PENDING_CONFIRMATION, PaymentStatus.CONFIRMED):
            return frozenset({Actor.ADMIN, Actor.AUTO_MATCH})
        case (PaymentStatus.PENDING_CONFIRMATION, PaymentStatus.UNPAID):
            return frozenset({Actor.ADMIN, Actor.MEMBER})
        case (PaymentStatus.CONFIRMED, PaymentStatus.UNPAID):
            return frozenset({Actor.ADMIN})
        case (PaymentStatus.CONFIRMED, PaymentStatus.PENDING_CONFIRMATION):
            return frozenset()
        case (PaymentStatus.UNPAID | PaymentStatus.PENDING_CONFIRMATION | PaymentStatus.CONFIRMED, _):
            # Same-state transitions
            return frozenset()
    raise ValueError(f"Unknown payment status pair: {current!r} -> {target!r}")


def check_transition(player_name: str, current: PaymentStatus, target: PaymentStatus, actor: Actor) -> None:
    """Raise InvalidTransitionError unless ``actor`` may perform the transition."""
    if actor not in allowed_actors(current, target):
        raise InvalidTransitionError(
            t(
                "errors.invalid_transition",
                player=player_name,
                current=status_label(current),
                target=status_label(target),
            )
        )


@dataclass(frozen=True)
class PaymentAction:
    """Outcome of a member starting a payment."""

    dues: Optional[DuesSnapshot]
    copied_text: Optional[str]


class PaymentStatusMachine:
    """Status transitions of payment records."""

    def __init__(
        self,
        repository: SnapshotRepository,
        ledger_service: LedgerService,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize status machine.

        Args:
            repository: Snapshot repository holding the dues aggregate
            ledger_service: Ledger service owning bound entries
            clock: Source of the current time (injectable for tests)
        """
        self.repository = repository
        self.ledger = ledger_service
        self.clock = clock

    async def transition(
        self,
        club_code: str,
        period_id: str,
        player_name: str,
        target: PaymentStatus,
        actor: Actor,
    ) -> DuesSnapshot | None:
        """Move a payment record to ``target`` and resync the bound ledger entry.

        Raises:
            InvalidTransitionError: If the actor may not perform the transition

        Returns:
            Updated dues snapshot, or None if the record was not found or a
            store write (dues or ledger) failed
        """
        code = normalize_club_code(club_code)
        previous: list[PaymentStatus] = []

        def mutation(dues: DuesSnapshot) -> bool:
            record = dues.find_record(period_id, player_name) if dues.find_period(period_id) else None
            if record is None:
                logger.warning(
                    "Payment record not found: club=%s period=%s player=%s",
                    code,
                    period_id,
                    player_name,
                )
                return False
            check_transition(player_name, record.status, target, actor)
            previous.append(record.status)
            record.status = target
            record.updated_at = self.clock()
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            return None

        logger.info(
            "Payment status changed: club=%s period=%s player=%s %s -> %s by %s",
            code,
            period_id,
            player_name,
            previous[0].value,
            target.value,
            actor.value,
        )

        if not await self.sync_ledger(code, dues, period_id):
            logger.error(
                "Ledger resync failed after status change: club=%s period=%s", code, period_id
            )
            return None
        return dues

    async def start_payment(
        self,
        club_code: str,
        period_id: str,
        player_name: str,
        bank_account: Optional[BankAccount] = None,
        clipboard: Optional[Clipboard] = None,
    ) -> PaymentAction:
        """Member starts a transfer: copy account info, then mark the record pending.

        The status moves to PendingConfirmation whether or not the copy worked.
        """
        code = normalize_club_code(club_code)
        copied_text: Optional[str] = None

        if bank_account is not None and bank_account.account_number:
            dues = await self.repository.get_dues(code)
            record = dues.find_record(period_id, player_name)
            amount = record.amount if record is not None and record.amount is not None else 0
            text = bank_account_text(bank_account, amount)
            if clipboard is not None:
                try:
                    await clipboard.copy(text)
                    copied_text = text
                except Exception as e:  # platform capability, outcome does not gate the transition
                    logger.warning("Clipboard copy failed for %s: %s", player_name, e)
            else:
                copied_text = text

        dues = await self.transition(
            code, period_id, player_name, PaymentStatus.PENDING_CONFIRMATION, Actor.MEMBER
        )
        return PaymentAction(dues=dues, copied_text=copied_text)

    async def sync_ledger(self, club_code: str, dues: DuesSnapshot, period_id: str) -> bool:
        """Recompute the bound ledger entry of a period from its confirmed records.

        Periods without a ledger category, and periods whose bound entry no
        longer exists, need no write and count as success.

        Returns:
            False only if the ledger store failed
        """
        period = dues.find_period(period_id)
        if period is None or not period.ledger_category:
            return True

        records = dues.payments.get(period_id, [])
        confirmed = [r for r in records if r.status == PaymentStatus.CONFIRMED]
        amount = sum(r.amount or 0 for r in confirmed)
        description = billing_description(period.name, len(confirmed), len(records))

        updated = await self.ledger.update_by_billing_period(club_code, period_id, amount, description)
        if updated is not None:
            logger.debug(
                "Ledger resynced: club=%s period=%s amount=%d (%s)", club_code, period_id, amount, description
            )
            return True

        try:
            ledger = await self.ledger.get_ledger(club_code)
        except PersistenceError:
            return False
        return ledger.find_by_billing_period(period_id) is None


__all__ = [
    "Actor",
    "PaymentAction",
    "PaymentStatusMachine",
    "allowed_actors",
    "check_transition",
]
