"""Dues snapshot schemas: billing periods, payment records and scheduled billings.

The dues snapshot is persisted as one JSON document per club. Field names are
stored in camelCase (``billingPeriods``, ``playerName`` ...) so the document
shape stays stable for the external sync collaborator.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a snapshot-local identifier such as ``bp-3f2a9c1d0b7e``."""
    return f"{prefix}-{uuid4().hex[:12]}"


class PaymentStatus(str, Enum):
    """Status of one member's payment within a billing period."""

    UNPAID = "미납"
    PENDING_CONFIRMATION = "확인요망"
    CONFIRMED = "입금완료"


class SnapshotSchema(BaseModel):
    """Base schema for persisted snapshot documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemberAmount(SnapshotSchema):
    """Resolved amount billed to one member."""

    player_name: str
    amount: int = Field(ge=0)


class RosterMember(SnapshotSchema):
    """Read-only roster entry supplied by the club directory."""

    name: str
    phone: str | None = None
    admin_rank: int | None = None


class BillingPeriod(SnapshotSchema):
    """One club-wide charge (e.g. January dues)."""

    id: str
    name: str
    amount: int
    date: str | None = None
    ledger_category: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class PaymentRecord(SnapshotSchema):
    """One member's obligation and status within a billing period."""

    player_name: str
    status: PaymentStatus = PaymentStatus.UNPAID
    amount: int | None = None
    updated_at: datetime = Field(default_factory=utc_now)
    # Hidden from the member's own dues list; status and ledger are unaffected
    dismissed: bool = False


class ScheduledBilling(SnapshotSchema):
    """Billing period template queued for automatic creation."""

    id: str
    scheduled_at: datetime
    name: str
    amount: int
    date: str | None = None
    ledger_category: str | None = None
    member_amounts: list[MemberAmount] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("scheduled_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        # Naive instants are interpreted as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DuesSnapshot(SnapshotSchema):
    """Club-scoped billing aggregate."""

    billing_periods: list[BillingPeriod] = Field(default_factory=list)
    payments: dict[str, list[PaymentRecord]] = Field(default_factory=dict)
    scheduled_billings: list[ScheduledBilling] = Field(default_factory=list)

    def find_period(self, period_id: str) -> BillingPeriod | None:
        """Return the billing period with the given id, if any."""
        for period in self.billing_periods:
            if period.id == period_id:
                return period
        return None

    def find_record(self, period_id: str, player_name: str) -> PaymentRecord | None:
        """Return the payment record of a player within a period, if any."""
        for record in self.payments.get(period_id, []):
            if record.player_name == player_name:
                return record
        return None

    def member_items(self, player_name: str) -> list[tuple[BillingPeriod, PaymentRecord]]:
        """A member's records that are not dismissed, in period order."""
        items = []
        for period in self.billing_periods:
            record = self.find_record(period.id, player_name)
            if record is not None and not record.dismissed:
                items.append((period, record))
        return items

    def pending_count(self) -> int:
        """Count records awaiting admin confirmation across all periods."""
        return sum(
            1
            for records in self.payments.values()
            for record in records
            if record.status == PaymentStatus.PENDING_CONFIRMATION
        )


__all__ = [
    "PaymentStatus",
    "MemberAmount",
    "RosterMember",
    "BillingPeriod",
    "PaymentRecord",
    "ScheduledBilling",
    "DuesSnapshot",
    "utc_now",
    "new_id",
]
