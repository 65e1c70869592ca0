"""Ledger snapshot schemas: income/expense entries and custom categories."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from src.models.dues import SnapshotSchema, utc_now


class LedgerEntryType(str, Enum):
    """Direction of a ledger entry."""

    INCOME = "수입"
    EXPENSE = "지출"


class CustomLedgerCategory(SnapshotSchema):
    """Club-defined category appended to the default categories."""

    label: str
    type: LedgerEntryType


class LedgerEntry(SnapshotSchema):
    """One row of the club's income/expense book."""

    id: str
    date: str
    description: str
    type: LedgerEntryType
    amount: int
    category: str
    memo: str | None = None
    billing_period_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def signed_amount(self) -> int:
        """Amount with income positive and expense negative."""
        return self.amount if self.type == LedgerEntryType.INCOME else -self.amount


class LedgerSnapshot(SnapshotSchema):
    """Club-scoped ledger aggregate."""

    entries: list[LedgerEntry] = Field(default_factory=list)
    custom_categories: list[CustomLedgerCategory] = Field(default_factory=list)

    def find_entry(self, entry_id: str) -> LedgerEntry | None:
        """Return the entry with the given id, if any."""
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def find_by_billing_period(self, billing_period_id: str) -> LedgerEntry | None:
        """Return the entry bound to a billing period, if any."""
        for entry in self.entries:
            if entry.billing_period_id == billing_period_id:
                return entry
        return None


__all__ = ["LedgerEntryType", "CustomLedgerCategory", "LedgerEntry", "LedgerSnapshot"]
