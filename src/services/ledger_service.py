"""Ledger service: the club's income/expense book.

Provides methods for:
- Adding, editing and deleting entries
- Filtering by month and category, summaries and running balances
- Default plus club-defined categories
- The entry bound to a billing period (created, resynced and deleted by the
  billing engine only)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from src.models.club_snapshot import SnapshotKind
from src.models.dues import new_id, utc_now
from src.models.ledger import CustomLedgerCategory, LedgerEntry, LedgerEntryType, LedgerSnapshot
from src.services.errors import ValidationError
from src.services.localizer import t
from src.services.parsers import parse_iso_date, parse_won_amount
from src.services.snapshot_repository import SnapshotRepository, normalize_club_code

logger = logging.getLogger(__name__)

DUES_CATEGORY = "회비"
OTHER_INCOME_CATEGORY = "기타수입"
OTHER_EXPENSE_CATEGORY = "기타지출"


@dataclass(frozen=True)
class LedgerCategory:
    """Selectable ledger category."""

    label: str
    type: LedgerEntryType


# Catch-all pair excluded here: it always sorts after club categories
DEFAULT_LEDGER_CATEGORIES: tuple[LedgerCategory, ...] = (
    LedgerCategory(DUES_CATEGORY, LedgerEntryType.INCOME),
    LedgerCategory("코트비", LedgerEntryType.EXPENSE),
    LedgerCategory("식비", LedgerEntryType.EXPENSE),
    LedgerCategory("용품구매", LedgerEntryType.EXPENSE),
    LedgerCategory("대회비", LedgerEntryType.EXPENSE),
)
CATCH_ALL_CATEGORIES: tuple[LedgerCategory, ...] = (
    LedgerCategory(OTHER_INCOME_CATEGORY, LedgerEntryType.INCOME),
    LedgerCategory(OTHER_EXPENSE_CATEGORY, LedgerEntryType.EXPENSE),
)


@dataclass(frozen=True)
class LedgerSummary:
    """Totals over a (filtered) set of entries."""

    total_income: int
    total_expense: int
    balance: int


def billing_description(name: str, confirmed: int, total: int) -> str:
    """Description of a period-bound entry, e.g. '1월 회비 (2/5명 입금)'."""
    return t("ledger.billing_description", name=name, confirmed=confirmed, total=total)


def chronological(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    """Entries ordered by (date, created_at) ascending."""
    return sorted(entries, key=lambda e: (e.date, e.created_at))


def newest_first(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    """Entries in display order, the reverse of chronological."""
    return sorted(entries, key=lambda e: (e.date, e.created_at), reverse=True)


def filter_entries(
    entries: Iterable[LedgerEntry],
    month: Optional[str] = None,
    category: Optional[str] = None,
) -> list[LedgerEntry]:
    """Narrow entries to a year ('2025') or month ('2025-03') prefix and/or a category."""
    result = list(entries)
    if month:
        result = [e for e in result if e.date.startswith(month)]
    if category:
        result = [e for e in result if e.category == category]
    return result


def summarize(entries: Iterable[LedgerEntry]) -> LedgerSummary:
    """Total income, total expense and their difference."""
    total_income = 0
    total_expense = 0
    for entry in entries:
        if entry.type == LedgerEntryType.INCOME:
            total_income += entry.amount
        else:
            total_expense += entry.amount
    return LedgerSummary(
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
    )


def running_balances(entries: Iterable[LedgerEntry]) -> dict[str, int]:
    """Balance after each entry, keyed by entry id.

    Always computed over the full book in chronological order; a display
    filter only chooses which of these balances are shown.
    """
    balances: dict[str, int] = {}
    balance = 0
    for entry in chronological(entries):
        balance += entry.signed_amount
        balances[entry.id] = balance
    return balances


def month_options(entries: Iterable[LedgerEntry]) -> list[str]:
    """Years and months present in the book, newest first.

    Each year is followed by its months: ['2025', '2025-03', '2025-01', '2024', ...].
    """
    months = sorted({e.date[:7] for e in entries}, reverse=True)
    options: list[str] = []
    for year in sorted({m[:4] for m in months}, reverse=True):
        options.append(year)
        options.extend(m for m in months if m.startswith(year))
    return options


def list_categories(
    ledger: LedgerSnapshot, entry_type: Optional[LedgerEntryType] = None
) -> list[LedgerCategory]:
    """Default categories, then club categories, then the catch-all pair."""
    customs = [LedgerCategory(c.label, c.type) for c in ledger.custom_categories]
    categories = [*DEFAULT_LEDGER_CATEGORIES, *customs, *CATCH_ALL_CATEGORIES]
    if entry_type is not None:
        categories = [c for c in categories if c.type == entry_type]
    return categories


def _sort_for_display(ledger: LedgerSnapshot) -> None:
    # Newest first, as the book is shown
    ledger.entries.sort(key=lambda e: (e.date, e.created_at), reverse=True)


def _validated_fields(
    ledger: LedgerSnapshot,
    *,
    entry_date: str | date,
    description: str,
    entry_type: LedgerEntryType | str,
    amount: int | str,
    category: str,
) -> dict:
    """Validate user-entered entry fields, returning normalized values."""
    if not description or not description.strip():
        raise ValidationError(t("errors.empty_description"))

    try:
        parsed_amount = parse_won_amount(amount)
    except ValueError:
        parsed_amount = None
    if parsed_amount is None or parsed_amount <= 0:
        raise ValidationError(t("errors.invalid_amount"))

    if isinstance(entry_date, date):
        parsed_date = entry_date
    else:
        try:
            parsed_date = parse_iso_date(entry_date)
        except ValueError:
            parsed_date = None
    if parsed_date is None:
        raise ValidationError(t("errors.invalid_date"))

    try:
        parsed_type = LedgerEntryType(entry_type)
    except ValueError:
        raise ValidationError(t("errors.unknown_category", category=entry_type)) from None

    if category not in {c.label for c in list_categories(ledger)}:
        raise ValidationError(t("errors.unknown_category", category=category))

    return {
        "date": parsed_date.isoformat(),
        "description": description.strip(),
        "type": parsed_type,
        "amount": parsed_amount,
        "category": category,
    }


class LedgerService:
    """Club ledger operations over the snapshot repository."""

    def __init__(
        self,
        repository: SnapshotRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize ledger service.

        Args:
            repository: Snapshot repository shared with the billing engine
            clock: Source of the current time (injectable for tests)
        """
        self.repository = repository
        self.clock = clock

    async def get_ledger(self, club_code: str) -> LedgerSnapshot:
        """Load the club's ledger.

        Raises:
            PersistenceError: If the store cannot be read
        """
        return await self.repository.get_ledger(normalize_club_code(club_code))

    async def list_entries(
        self,
        club_code: str,
        month: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """Entries newest first, narrowed by month and/or category."""
        ledger = await self.get_ledger(club_code)
        return filter_entries(newest_first(ledger.entries), month, category)

    async def get_categories(
        self, club_code: str, entry_type: Optional[LedgerEntryType] = None
    ) -> list[LedgerCategory]:
        """Categories available to the club."""
        return list_categories(await self.get_ledger(club_code), entry_type)

    async def add_entry(
        self,
        club_code: str,
        *,
        entry_date: str | date,
        description: str,
        entry_type: LedgerEntryType | str,
        amount: int | str,
        category: str,
        memo: Optional[str] = None,
    ) -> LedgerSnapshot | None:
        """Record an income or expense entry.

        Raises:
            ValidationError: If a field is empty, malformed or the category unknown

        Returns:
            Updated ledger, or None if the store failed
        """
        code = normalize_club_code(club_code)
        added: list[LedgerEntry] = []

        def mutation(ledger: LedgerSnapshot) -> bool:
            fields = _validated_fields(
                ledger,
                entry_date=entry_date,
                description=description,
                entry_type=entry_type,
                amount=amount,
                category=category,
            )
            now = self.clock()
            entry = LedgerEntry(
                id=new_id("le"),
                memo=(memo or "").strip() or None,
                created_at=now,
                updated_at=now,
                **fields,
            )
            ledger.entries.append(entry)
            _sort_for_display(ledger)
            added.append(entry)
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info(
                "Added ledger entry: club=%s id=%s type=%s amount=%d category=%s",
                code,
                added[0].id,
                added[0].type.value,
                added[0].amount,
                added[0].category,
            )
        return ledger

    async def update_entry(
        self,
        club_code: str,
        entry_id: str,
        *,
        entry_date: Optional[str | date] = None,
        description: Optional[str] = None,
        entry_type: Optional[LedgerEntryType | str] = None,
        amount: Optional[int | str] = None,
        category: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> LedgerSnapshot | None:
        """Edit an entry; omitted fields keep their value.

        Returns:
            Updated ledger, or None if the entry does not exist or the store failed
        """
        code = normalize_club_code(club_code)

        def mutation(ledger: LedgerSnapshot) -> bool:
            entry = ledger.find_entry(entry_id)
            if entry is None:
                logger.warning("Ledger entry not found: club=%s id=%s", code, entry_id)
                return False
            fields = _validated_fields(
                ledger,
                entry_date=entry_date if entry_date is not None else entry.date,
                description=description if description is not None else entry.description,
                entry_type=entry_type if entry_type is not None else entry.type,
                amount=amount if amount is not None else entry.amount,
                category=category if category is not None else entry.category,
            )
            for name, value in fields.items():
                setattr(entry, name, value)
            if memo is not None:
                entry.memo = memo.strip() or None
            entry.updated_at = self.clock()
            _sort_for_display(ledger)
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info("Updated ledger entry: club=%s id=%s", code, entry_id)
        return ledger

    async def delete_entry(self, club_code: str, entry_id: str) -> LedgerSnapshot | None:
        """Delete an entry.

        Returns:
            Updated ledger, or None if the entry does not exist or the store failed
        """
        code = normalize_club_code(club_code)

        def mutation(ledger: LedgerSnapshot) -> bool:
            if ledger.find_entry(entry_id) is None:
                logger.warning("Ledger entry not found: club=%s id=%s", code, entry_id)
                return False
            ledger.entries = [e for e in ledger.entries if e.id != entry_id]
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info("Deleted ledger entry: club=%s id=%s", code, entry_id)
        return ledger

    async def add_custom_category(
        self, club_code: str, label: str, entry_type: LedgerEntryType | str
    ) -> LedgerSnapshot | None:
        """Append a club-defined category.

        Raises:
            ValidationError: If the label is empty or collides with an existing category
        """
        code = normalize_club_code(club_code)
        name = (label or "").strip()
        if not name:
            raise ValidationError(t("errors.empty_category"))
        try:
            category_type = LedgerEntryType(entry_type)
        except ValueError:
            raise ValidationError(t("errors.unknown_category", category=entry_type)) from None

        def mutation(ledger: LedgerSnapshot) -> bool:
            if name in {c.label for c in list_categories(ledger)}:
                raise ValidationError(t("errors.category_exists"))
            ledger.custom_categories.append(CustomLedgerCategory(label=name, type=category_type))
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info("Added ledger category: club=%s label=%s type=%s", code, name, category_type.value)
        return ledger

    async def bind_billing_period(
        self,
        club_code: str,
        billing_period_id: str,
        *,
        name: str,
        entry_date: Optional[str],
        category: str,
        member_count: int,
    ) -> LedgerSnapshot | None:
        """Create the income entry bound to a new billing period.

        The entry starts at 0 with a '0/N' description; resynchronization
        keeps it equal to the confirmed payments afterwards.
        """
        code = normalize_club_code(club_code)

        def mutation(ledger: LedgerSnapshot) -> bool:
            if ledger.find_by_billing_period(billing_period_id) is not None:
                return True
            now = self.clock()
            ledger.entries.append(
                LedgerEntry(
                    id=new_id("le"),
                    date=entry_date or now.date().isoformat(),
                    description=billing_description(name, 0, member_count),
                    type=LedgerEntryType.INCOME,
                    amount=0,
                    category=category,
                    billing_period_id=billing_period_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            _sort_for_display(ledger)
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info("Bound ledger entry to billing period: club=%s period=%s", code, billing_period_id)
        return ledger

    async def update_by_billing_period(
        self, club_code: str, billing_period_id: str, amount: int, description: str
    ) -> LedgerSnapshot | None:
        """Overwrite amount and description of the entry bound to a period.

        Returns:
            Updated ledger, or None if no entry is bound to the period or the store failed
        """
        code = normalize_club_code(club_code)

        def mutation(ledger: LedgerSnapshot) -> bool:
            entry = ledger.find_by_billing_period(billing_period_id)
            if entry is None:
                logger.warning("No ledger entry bound to period: club=%s period=%s", code, billing_period_id)
                return False
            entry.amount = amount
            entry.description = description
            entry.updated_at = self.clock()
            return True

        return await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)

    async def delete_by_billing_period(self, club_code: str, billing_period_id: str) -> LedgerSnapshot | None:
        """Delete every entry bound to a billing period.

        Returns:
            Updated ledger (also when nothing was bound), or None if the store failed
        """
        code = normalize_club_code(club_code)

        def mutation(ledger: LedgerSnapshot) -> bool:
            ledger.entries = [e for e in ledger.entries if e.billing_period_id != billing_period_id]
            return True

        ledger = await self.repository.mutate(code, SnapshotKind.LEDGER, mutation)
        if ledger is not None:
            logger.info("Deleted ledger entries of billing period: club=%s period=%s", code, billing_period_id)
        return ledger


__all__ = [
    "LedgerService",
    "LedgerCategory",
    "LedgerSummary",
    "DEFAULT_LEDGER_CATEGORIES",
    "CATCH_ALL_CATEGORIES",
    "DUES_CATEGORY",
    "billing_description",
    "chronological",
    "filter_entries",
    "list_categories",
    "month_options",
    "newest_first",
    "running_balances",
    "summarize",
]
