"""Billing periods and payment records of a club.

Every mutator runs one locked read-modify-write on the club's dues snapshot.
Changes that affect a ledger-bound period (members, amounts, name) are
followed by a resync of the bound ledger entry, so the entry always shows the
confirmed total and the confirmed/total member count.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from src.models.club_snapshot import SnapshotKind
from src.models.dues import (
    BillingPeriod,
    DuesSnapshot,
    MemberAmount,
    PaymentRecord,
    PaymentStatus,
    RosterMember,
    new_id,
    utc_now,
)
from src.services.amount_calculator import DifferentialRule, resolve_member_amounts
from src.services.errors import PersistenceError, ValidationError
from src.services.ledger_service import DUES_CATEGORY, LedgerService
from src.services.localizer import t
from src.services.parsers import parse_iso_date, parse_won_amount
from src.services.payment_status import Actor, PaymentStatusMachine
from src.services.snapshot_repository import SnapshotRepository, normalize_club_code

logger = logging.getLogger(__name__)

PERIOD_FILTER_ALL = "all"
PERIOD_FILTER_DUES = "dues"
PERIOD_FILTER_OTHER = "other"


def require_name(name: Optional[str]) -> str:
    """Return the stripped name, rejecting empty input."""
    value = (name or "").strip()
    if not value:
        raise ValidationError(t("errors.empty_name"))
    return value


def require_positive_amount(amount: int | str | None) -> int:
    """Parse an amount entered by an admin, rejecting non-positive or unparseable input."""
    try:
        value = parse_won_amount(amount)
    except ValueError:
        value = None
    if value is None or value <= 0:
        raise ValidationError(t("errors.invalid_amount"))
    return value


def require_period_date(value: Optional[str]) -> Optional[str]:
    """Normalize an optional period date to YYYY-MM-DD, rejecting other input."""
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise ValidationError(t("errors.invalid_date")) from None
    return parsed.isoformat() if parsed is not None else None


def require_members(member_amounts: Iterable[MemberAmount]) -> list[MemberAmount]:
    """Reject an empty member list and duplicate names (first one wins)."""
    members: list[MemberAmount] = []
    seen: set[str] = set()
    for member in member_amounts:
        if member.player_name in seen:
            continue
        seen.add(member.player_name)
        members.append(member)
    if not members:
        raise ValidationError(t("errors.no_members_selected"))
    return members


def filter_periods(
    dues: DuesSnapshot,
    kind: str = PERIOD_FILTER_ALL,
    month: Optional[str] = None,
) -> list[BillingPeriod]:
    """Periods narrowed to dues/other billings and to a date prefix.

    Args:
        dues: Dues snapshot
        kind: "all", "dues" (ledger category 회비) or "other"
        month: Date prefix such as "2025" or "2025-01"; periods without a date never match
    """
    periods = []
    for period in dues.billing_periods:
        is_dues = period.ledger_category == DUES_CATEGORY
        if kind == PERIOD_FILTER_DUES and not is_dues:
            continue
        if kind == PERIOD_FILTER_OTHER and is_dues:
            continue
        if month and not (period.date or "").startswith(month):
            continue
        periods.append(period)
    return periods


class BillingService:
    """Service for billing periods and their payment records."""

    def __init__(
        self,
        repository: SnapshotRepository,
        ledger_service: LedgerService,
        status_machine: PaymentStatusMachine,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize billing service.

        Args:
            repository: Snapshot repository holding the dues aggregate
            ledger_service: Ledger service receiving bound entries
            status_machine: Status machine used for status changes and ledger resync
            clock: Source of the current time (injectable for tests)
        """
        self.repository = repository
        self.ledger = ledger_service
        self.status_machine = status_machine
        self.clock = clock

    async def get_dues(self, club_code: str) -> DuesSnapshot:
        """Load the club's dues snapshot.

        Raises:
            PersistenceError: If the store cannot be read
        """
        return await self.repository.get_dues(normalize_club_code(club_code))

    async def pending_count(self, club_code: str) -> int:
        """Number of records awaiting admin confirmation."""
        return (await self.get_dues(club_code)).pending_count()

    async def create_period(
        self,
        club_code: str,
        *,
        name: str,
        amount: int | str,
        member_amounts: Iterable[MemberAmount],
        date: Optional[str] = None,
        ledger_category: Optional[str] = None,
    ) -> DuesSnapshot | None:
        """Create a billing period with one Unpaid record per member.

        If ``ledger_category`` is given, an income entry bound to the period is
        added to the ledger (amount 0, '0/N' description).

        Raises:
            ValidationError: If the name is empty, the amount is not positive,
                no member is given, the date is not YYYY-MM-DD or the ledger
                category is unknown

        Returns:
            Updated dues snapshot, or None if a store write failed (nothing is
            left behind, so the call can be repeated)
        """
        code = normalize_club_code(club_code)
        period_name = require_name(name)
        base_amount = require_positive_amount(amount)
        members = require_members(member_amounts)
        period_date = require_period_date(date)
        category = await self._validated_category(code, ledger_category)

        period = BillingPeriod(
            id=new_id("bp"),
            name=period_name,
            amount=base_amount,
            date=period_date,
            ledger_category=category,
            created_at=self.clock(),
        )

        # The bound entry is written first so a stored period never lacks it
        if category:
            bound = await self.ledger.bind_billing_period(
                code,
                period.id,
                name=period.name,
                entry_date=period.date,
                category=category,
                member_count=len(members),
            )
            if bound is None:
                logger.error("Failed to bind ledger entry: club=%s period=%s", code, period.id)
                return None

        def mutation(dues: DuesSnapshot) -> bool:
            materialize_period(dues, period, members, self.clock())
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            if category:
                await self._unbind(code, period.id)
            return None
        logger.info(
            "Created billing period: club=%s id=%s name=%s amount=%d members=%d",
            code,
            period.id,
            period.name,
            period.amount,
            len(members),
        )
        return dues

    async def create_period_for_roster(
        self,
        club_code: str,
        *,
        name: str,
        amount: int | str,
        roster: Iterable[RosterMember],
        selected: Iterable[str],
        overrides: Optional[Mapping[str, str]] = None,
        rank_rules: Optional[Mapping[int, DifferentialRule]] = None,
        date: Optional[str] = None,
        ledger_category: Optional[str] = None,
    ) -> DuesSnapshot | None:
        """Create a period for selected roster members, resolving per-member amounts."""
        base_amount = require_positive_amount(amount)
        members = resolve_member_amounts(roster, selected, base_amount, overrides, rank_rules)
        return await self.create_period(
            club_code,
            name=name,
            amount=base_amount,
            member_amounts=members,
            date=date,
            ledger_category=ledger_category,
        )

    async def update_period(
        self,
        club_code: str,
        period_id: str,
        *,
        name: Optional[str] = None,
        amount: Optional[int | str] = None,
    ) -> DuesSnapshot | None:
        """Rename a period or change its base amount.

        Existing member records keep their own amounts.
        """
        code = normalize_club_code(club_code)
        new_name = require_name(name) if name is not None else None
        new_amount = require_positive_amount(amount) if amount is not None else None

        def mutation(dues: DuesSnapshot) -> bool:
            period = dues.find_period(period_id)
            if period is None:
                logger.warning("Billing period not found: club=%s id=%s", code, period_id)
                return False
            if new_name is not None:
                period.name = new_name
            if new_amount is not None:
                period.amount = new_amount
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            return None
        logger.info("Updated billing period: club=%s id=%s", code, period_id)
        return await self._resync(code, dues, period_id)

    async def delete_period(self, club_code: str, period_id: str) -> DuesSnapshot | None:
        """Delete a period, its records and its bound ledger entry.

        The bound entry goes first: if a later step fails the period is still
        there, and repeating the call finishes the cascade.

        Returns:
            Updated dues snapshot, or None if the period does not exist or any
            step of the cascade failed
        """
        code = normalize_club_code(club_code)
        try:
            period = (await self.repository.get_dues(code)).find_period(period_id)
        except PersistenceError:
            return None
        if period is None:
            logger.warning("Billing period not found: club=%s id=%s", code, period_id)
            return None

        if period.ledger_category and await self.ledger.delete_by_billing_period(code, period_id) is None:
            logger.error("Failed to delete bound ledger entry: club=%s period=%s", code, period_id)
            return None

        def mutation(dues: DuesSnapshot) -> bool:
            if dues.find_period(period_id) is None:
                return False
            dues.billing_periods = [p for p in dues.billing_periods if p.id != period_id]
            dues.payments.pop(period_id, None)
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is not None:
            logger.info("Deleted billing period: club=%s id=%s", code, period_id)
        return dues

    async def add_payment_record(
        self,
        club_code: str,
        period_id: str,
        player_name: str,
        amount: Optional[int | str] = None,
    ) -> DuesSnapshot | None:
        """Add a member to a period as Unpaid.

        The record amount defaults to the period base amount. Adding a member
        who already has a record changes nothing.
        """
        code = normalize_club_code(club_code)
        player = require_name(player_name)
        record_amount = None
        if amount is not None:
            try:
                record_amount = parse_won_amount(amount)
            except ValueError:
                record_amount = None
            if record_amount is None or record_amount < 0:
                raise ValidationError(t("errors.invalid_amount"))

        def mutation(dues: DuesSnapshot) -> bool:
            period = dues.find_period(period_id)
            if period is None:
                logger.warning("Billing period not found: club=%s id=%s", code, period_id)
                return False
            if dues.find_record(period_id, player) is not None:
                logger.info("Player already billed: club=%s period=%s player=%s", code, period_id, player)
                return True
            dues.payments.setdefault(period_id, []).append(
                PaymentRecord(
                    player_name=player,
                    amount=record_amount if record_amount is not None else period.amount,
                    updated_at=self.clock(),
                )
            )
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            return None
        logger.info("Added payment record: club=%s period=%s player=%s", code, period_id, player)
        return await self._resync(code, dues, period_id)

    async def remove_payment_record(self, club_code: str, period_id: str, player_name: str) -> DuesSnapshot | None:
        """Exclude a member from a period."""
        code = normalize_club_code(club_code)

        def mutation(dues: DuesSnapshot) -> bool:
            if dues.find_record(period_id, player_name) is None:
                logger.warning(
                    "Payment record not found: club=%s period=%s player=%s", code, period_id, player_name
                )
                return False
            dues.payments[period_id] = [
                r for r in dues.payments[period_id] if r.player_name != player_name
            ]
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            return None
        logger.info("Removed payment record: club=%s period=%s player=%s", code, period_id, player_name)
        return await self._resync(code, dues, period_id)

    async def dismiss_payment(self, club_code: str, period_id: str, player_name: str) -> DuesSnapshot | None:
        """Hide a record from the member's own dues list.

        Only the member view changes: the record keeps its status and amount,
        still counts toward the bound entry, and stays visible to admins.
        """
        code = normalize_club_code(club_code)

        def mutation(dues: DuesSnapshot) -> bool:
            record = dues.find_record(period_id, player_name)
            if record is None:
                logger.warning(
                    "Payment record not found: club=%s period=%s player=%s", code, period_id, player_name
                )
                return False
            record.dismissed = True
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is not None:
            logger.info("Dismissed payment record: club=%s period=%s player=%s", code, period_id, player_name)
        return dues

    async def update_payment_amount(
        self, club_code: str, period_id: str, player_name: str, amount: int | str
    ) -> DuesSnapshot | None:
        """Change the amount one member owes in a period.

        Raises:
            ValidationError: If the amount is not a positive integer
        """
        code = normalize_club_code(club_code)
        new_amount = require_positive_amount(amount)

        def mutation(dues: DuesSnapshot) -> bool:
            record = dues.find_record(period_id, player_name)
            if record is None:
                logger.warning(
                    "Payment record not found: club=%s period=%s player=%s", code, period_id, player_name
                )
                return False
            record.amount = new_amount
            record.updated_at = self.clock()
            return True

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            return None
        logger.info(
            "Updated payment amount: club=%s period=%s player=%s amount=%d",
            code,
            period_id,
            player_name,
            new_amount,
        )
        return await self._resync(code, dues, period_id)

    async def update_payment_status(
        self,
        club_code: str,
        period_id: str,
        player_name: str,
        status: PaymentStatus,
        actor: Actor = Actor.ADMIN,
    ) -> DuesSnapshot | None:
        """Change a record's status through the status machine."""
        return await self.status_machine.transition(club_code, period_id, player_name, status, actor)

    async def sync_members(self, club_code: str, current_names: Iterable[str]) -> DuesSnapshot | None:
        """Align payment records with the current roster.

        Records of players no longer on the roster are dropped and records
        without an amount get the period base amount. Nothing is written when
        the records already match.

        Returns:
            Dues snapshot (unchanged or updated), or None if the store failed
        """
        code = normalize_club_code(club_code)
        names = set(current_names)
        touched: list[str] = []

        def mutation(dues: DuesSnapshot) -> bool:
            for period in dues.billing_periods:
                records = dues.payments.get(period.id, [])
                kept = [r for r in records if r.player_name in names]
                changed = len(kept) != len(records)
                for record in kept:
                    if record.amount is None:
                        record.amount = period.amount
                        changed = True
                if changed:
                    dues.payments[period.id] = kept
                    touched.append(period.id)
            return bool(touched)

        dues = await self.repository.mutate(code, SnapshotKind.DUES, mutation)
        if dues is None:
            if touched:
                return None
            return await self.get_dues(code)

        logger.info("Synced payment records with roster: club=%s periods=%d", code, len(touched))
        for period_id in touched:
            if not await self.status_machine.sync_ledger(code, dues, period_id):
                return None
        return dues

    async def _validated_category(self, club_code: str, category: Optional[str]) -> Optional[str]:
        if not category:
            return None
        labels = {c.label for c in await self.ledger.get_categories(club_code)}
        if category not in labels:
            raise ValidationError(t("errors.unknown_category", category=category))
        return category

    async def _unbind(self, club_code: str, period_id: str) -> None:
        # Undo a bind whose period was never stored
        if await self.ledger.delete_by_billing_period(club_code, period_id) is None:
            logger.error("Orphaned ledger entry left for unsaved period: club=%s period=%s", club_code, period_id)

    async def _resync(self, club_code: str, dues: DuesSnapshot, period_id: str) -> DuesSnapshot | None:
        if not await self.status_machine.sync_ledger(club_code, dues, period_id):
            logger.error("Ledger resync failed: club=%s period=%s", club_code, period_id)
            return None
        return dues


def materialize_period(
    dues: DuesSnapshot,
    period: BillingPeriod,
    member_amounts: Iterable[MemberAmount],
    now: datetime,
) -> None:
    """Append a period and one Unpaid record per member to a dues snapshot."""
    dues.billing_periods.append(period)
    dues.payments[period.id] = [
        PaymentRecord(
            player_name=member.player_name,
            status=PaymentStatus.UNPAID,
            amount=member.amount,
            updated_at=now,
        )
        for member in member_amounts
    ]


__all__ = [
    "BillingService",
    "PERIOD_FILTER_ALL",
    "PERIOD_FILTER_DUES",
    "PERIOD_FILTER_OTHER",
    "filter_periods",
    "materialize_period",
    "require_members",
    "require_name",
    "require_period_date",
    "require_positive_amount",
]
