"""Message bodies and recipients for the platform compose/clipboard actions.

The engine never sends anything itself: it builds a ComposeRequest (phone
numbers plus body) and hands it to whatever MessageComposer the platform
provides, and it builds the bank account text a member copies before paying.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Protocol

from src.models.dues import DuesSnapshot, PaymentStatus, RosterMember
from src.services.localizer import t
from src.services.parsers import format_won


class PaymentMethod(str, Enum):
    """How the club collects dues."""

    BANK_TRANSFER = "무통장입금"
    KAKAO_PAY = "카카오페이"


@dataclass(frozen=True)
class BankAccount:
    """Club account members pay into."""

    bank_name: str
    account_number: str
    account_holder: str
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    kakao_pay_url: Optional[str] = None


@dataclass(frozen=True)
class ComposeRequest:
    """Text message to open in the platform compose surface."""

    recipients: list[str] = field(default_factory=list)
    body: str = ""


class MessageComposer(Protocol):
    """Platform capability opening a compose surface."""

    async def compose(self, request: ComposeRequest) -> None: ...


class Clipboard(Protocol):
    """Platform capability copying text."""

    async def copy(self, text: str) -> None: ...


def bank_account_text(account: BankAccount, amount: int) -> str:
    """Text a member copies before a transfer, e.g. '신한 110-123-456789 (홍길동) 30,000원'."""
    return t(
        "messages.bank_account",
        bank=account.bank_name,
        account=account.account_number,
        holder=account.account_holder,
        amount=format_won(amount),
    )


def build_payment_request(
    dues: DuesSnapshot,
    period_id: str,
    roster: Iterable[RosterMember],
    selected: Optional[Iterable[str]] = None,
    body: Optional[str] = None,
) -> ComposeRequest | None:
    """Payment reminder for unpaid members of a period.

    Recipients are the phone numbers of Unpaid members (optionally narrowed to
    ``selected`` names). Members without a phone are skipped.

    Returns:
        ComposeRequest (possibly without recipients), or None if the period does not exist
    """
    period = dues.find_period(period_id)
    if period is None:
        return None

    phones = {member.name: member.phone for member in roster if member.phone}
    wanted = set(selected) if selected is not None else None

    recipients: list[str] = []
    for record in dues.payments.get(period_id, []):
        if record.status != PaymentStatus.UNPAID:
            continue
        if wanted is not None and record.player_name not in wanted:
            continue
        phone = phones.get(record.player_name)
        if phone:
            recipients.append(phone)

    text = body or t("messages.payment_request", period=period.name, amount=format_won(period.amount))
    return ComposeRequest(recipients=recipients, body=text)


def build_deposit_confirmation(
    contact_phones: Iterable[str],
    club_name: str,
    player_name: str,
    amount: int,
    period_name: str,
) -> ComposeRequest | None:
    """Member's request asking the club contacts to confirm a deposit.

    Returns:
        ComposeRequest, or None if the club has no contact phone
    """
    phones = [phone for phone in contact_phones if phone]
    if not phones:
        return None
    body = t(
        "messages.deposit_confirmation",
        club=club_name,
        period=period_name,
        player=player_name,
        amount=format_won(amount),
    )
    return ComposeRequest(recipients=phones, body=body)


__all__ = [
    "PaymentMethod",
    "BankAccount",
    "ComposeRequest",
    "MessageComposer",
    "Clipboard",
    "bank_account_text",
    "build_payment_request",
    "build_deposit_confirmation",
]
