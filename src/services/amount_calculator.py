"""Differential (per-rank) billing amount computation.

A differential rule adjusts the base amount of a billing period for members
holding an admin rank:

- Manual: a fixed amount entered by the admin
- PercentDiscount: base amount minus a percentage, rounded half-up to 100 won
- Exempt: nothing to pay

Rules are parsed once, when built from the admin's (mode, value) input.
Computing an amount from a built rule never fails.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from enum import Enum
from typing import Iterable, Mapping, Union

from src.models.dues import MemberAmount, RosterMember
from src.services.parsers import parse_percentage, parse_won_amount

logger = logging.getLogger(__name__)

ROUNDING_UNIT = Decimal(100)
MAX_PERCENT = Decimal(100)


class DifferentialMode(str, Enum):
    """Differential rule mode as selected by the admin."""

    MANUAL = "직접입력"
    PERCENT_DISCOUNT = "퍼센트할인"
    EXEMPT = "면제"


@dataclass(frozen=True)
class ManualAmount:
    """Fixed amount replacing the base amount."""

    amount: int


@dataclass(frozen=True)
class PercentDiscount:
    """Percentage taken off the base amount."""

    percent: Decimal


@dataclass(frozen=True)
class Exempt:
    """Member owes nothing."""


DifferentialRule = Union[ManualAmount, PercentDiscount, Exempt]


def build_rule(mode: Union[DifferentialMode, str], value: str | None = "") -> DifferentialRule:
    """Build a differential rule from the admin's form input.

    Unparseable or negative manual amounts become 0, and a non-numeric
    percentage becomes 0%.

    Args:
        mode: Rule mode (enum member or its value / name)
        value: Raw text entered next to the mode

    Returns:
        ManualAmount, PercentDiscount or Exempt

    Raises:
        ValueError: If mode is not a known differential mode
    """
    if not isinstance(mode, DifferentialMode):
        try:
            mode = DifferentialMode(mode)
        except ValueError:
            try:
                mode = DifferentialMode[str(mode).upper()]
            except KeyError:
                raise ValueError(f"Unknown differential mode: {mode!r}") from None

    if mode is DifferentialMode.EXEMPT:
        return Exempt()

    if mode is DifferentialMode.MANUAL:
        try:
            amount = parse_won_amount(value)
        except ValueError:
            amount = None
        if amount is None or amount < 0:
            logger.debug("Manual differential value %r falls back to 0", value)
            amount = 0
        return ManualAmount(amount=amount)

    try:
        percent = parse_percentage(value)
    except ValueError:
        percent = None
    if percent is None or percent < 0:
        logger.debug("Percent differential value %r falls back to 0%%", value)
        percent = Decimal(0)
    return PercentDiscount(percent=min(percent, MAX_PERCENT))


def calculate_amount(base_amount: int, rule: DifferentialRule) -> int:
    """Compute a member's billed amount from the base amount and a rule.

    Percent discounts are computed in Decimal and rounded half-up to the
    nearest 100 won: 15000 at 33% off is 10050, which rounds to 10100.
    A discount of 100% or more yields 0, a negative one is ignored.
    """
    match rule:
        case Exempt():
            return 0
        case ManualAmount(amount=amount):
            return amount
        case PercentDiscount(percent=percent):
            if percent >= MAX_PERCENT:
                return 0
            try:
                discounted = Decimal(base_amount) * (1 - max(percent, Decimal(0)) / 100)
                rounded = (discounted / ROUNDING_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            except DecimalException as e:
                logger.warning("Percent discount of %s on %d not computable: %s", percent, base_amount, e)
                return base_amount
            return max(int(rounded * ROUNDING_UNIT), 0)
    raise TypeError(f"Unsupported differential rule: {rule!r}")


def calculate_level_amount(base_amount: int, mode: Union[DifferentialMode, str], value: str | None) -> int:
    """Shortcut for calculate_amount(base_amount, build_rule(mode, value))."""
    return calculate_amount(base_amount, build_rule(mode, value))


def resolve_member_amounts(
    roster: Iterable[RosterMember],
    selected: Iterable[str],
    base_amount: int,
    overrides: Mapping[str, str] | None = None,
    rank_rules: Mapping[int, DifferentialRule] | None = None,
) -> list[MemberAmount]:
    """Resolve the amount each selected roster member is billed.

    Precedence per member: an explicit non-negative override, then the rule of
    the member's admin rank (when rank rules are given), then the base amount.
    Selected names missing from the roster are ignored; roster order is kept.

    Args:
        roster: Ordered club roster
        selected: Names of the members to bill
        base_amount: Period base amount
        overrides: Per-member amount text keyed by player name
        rank_rules: Differential rules keyed by admin rank (1..3)

    Returns:
        List of MemberAmount in roster order
    """
    overrides = overrides or {}
    selected_names = set(selected)
    resolved: list[MemberAmount] = []

    for member in roster:
        if member.name not in selected_names:
            continue

        custom = overrides.get(member.name)
        if custom:
            try:
                custom_amount = parse_won_amount(custom)
            except ValueError:
                custom_amount = None
            if custom_amount is not None and custom_amount >= 0:
                resolved.append(MemberAmount(player_name=member.name, amount=custom_amount))
                continue

        if rank_rules and member.admin_rank and member.admin_rank in rank_rules:
            amount = calculate_amount(base_amount, rank_rules[member.admin_rank])
            resolved.append(MemberAmount(player_name=member.name, amount=amount))
            continue

        resolved.append(MemberAmount(player_name=member.name, amount=base_amount))

    return resolved


__all__ = [
    "DifferentialMode",
    "ManualAmount",
    "PercentDiscount",
    "Exempt",
    "DifferentialRule",
    "build_rule",
    "calculate_amount",
    "calculate_level_amount",
    "resolve_member_amounts",
]
