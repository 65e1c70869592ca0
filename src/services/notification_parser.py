"""Best-effort extraction of depositor name and amount from bank notifications.

Only texts mentioning 입금 (deposit) are considered, so withdrawal and card
payment notifications never match. Patterns are tried in order and the first
one yielding a positive amount wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

DEPOSIT_KEYWORD = "입금"


@dataclass(frozen=True)
class ParsedDeposit:
    """Depositor and amount read from a notification."""

    name: str
    amount: int


class DepositPattern(Protocol):
    """Strategy recognizing one bank's notification layout."""

    def try_parse(self, text: str) -> Optional[ParsedDeposit]: ...


@dataclass(frozen=True)
class RegexDepositPattern:
    """Deposit pattern backed by a regular expression."""

    label: str
    regex: re.Pattern
    name_group: int
    amount_group: int

    def try_parse(self, text: str) -> Optional[ParsedDeposit]:
        match = self.regex.search(text)
        if match is None:
            return None
        name = match.group(self.name_group)
        digits = match.group(self.amount_group).replace(",", "")
        if not name or not digits.isdigit():
            return None
        amount = int(digits)
        if amount <= 0:
            return None
        return ParsedDeposit(name=name, amount=amount)


DEFAULT_PATTERNS: tuple[RegexDepositPattern, ...] = (
    # "홍길동 1,000,000 입금" (KB, NH)
    RegexDepositPattern("name_amount_deposit", re.compile(r"([가-힣]{2,4})\s+([0-9,]+)\s*입금"), 1, 2),
    # "홍길동님이 30,000원을 입금" (KakaoTalk)
    RegexDepositPattern("kakao_sender", re.compile(r"([가-힣]{2,4})님이\s*([0-9,]+)원"), 1, 2),
    # "입금 100,000원 홍길동" (Shinhan)
    RegexDepositPattern("deposit_amount_name", re.compile(r"입금\s*([0-9,]+)원?\s+([가-힣]{2,4})"), 2, 1),
    # "입금 홍길동 100,000"
    RegexDepositPattern("deposit_name_amount", re.compile(r"입금\s+([가-힣]{2,4})\s+([0-9,]+)"), 1, 2),
)


class NotificationParser:
    """Ordered set of deposit patterns."""

    def __init__(self, patterns: Iterable[DepositPattern] = DEFAULT_PATTERNS):
        self.patterns = list(patterns)

    def parse(self, text: Optional[str]) -> Optional[ParsedDeposit]:
        """Return the first deposit recognized in ``text``, if any."""
        if not text or DEPOSIT_KEYWORD not in text:
            return None
        for pattern in self.patterns:
            parsed = pattern.try_parse(text)
            if parsed is not None:
                return parsed
        logger.debug("No deposit pattern matched notification: %r", text)
        return None


_default_parser = NotificationParser()


def parse_notification_text(text: Optional[str]) -> Optional[ParsedDeposit]:
    """Parse a notification with the default bank patterns."""
    return _default_parser.parse(text)


__all__ = [
    "DEPOSIT_KEYWORD",
    "DEFAULT_PATTERNS",
    "DepositPattern",
    "NotificationParser",
    "ParsedDeposit",
    "RegexDepositPattern",
    "parse_notification_text",
]
