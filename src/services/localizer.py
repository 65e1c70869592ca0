"""User-facing Korean strings for the dues engine.

All messages (validation errors, ledger descriptions, messaging bodies) live
in ``static/translations.json`` under dot-notation keys and are read once,
on first use.

Usage:
    from src.services.localizer import t

    t("errors.no_members_selected")
    t("ledger.billing_description", name="1월 회비", confirmed=2, total=5)
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from src.models.dues import PaymentStatus

logger = logging.getLogger(__name__)

TRANSLATIONS_PATH = Path(__file__).parent.parent / "static" / "translations.json"


class _KeepMissing(dict):
    # Leaves unknown placeholders visible instead of failing the whole message
    def __missing__(self, key: str) -> str:
        logger.warning("Missing placeholder %s in translation", key)
        return "{" + key + "}"


@lru_cache(maxsize=1)
def _catalog() -> dict[str, Any]:
    try:
        with open(TRANSLATIONS_PATH, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load translations from %s: %s", TRANSLATIONS_PATH, e)
        return {}


def lookup(key: str) -> str | None:
    """Raw message template for ``key``, or None if there is none."""
    value: Any = _catalog()
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value if isinstance(value, str) else None


def t(key: str, **kwargs: Any) -> str:
    """Message for ``key`` with ``{placeholders}`` filled from kwargs.

    Unknown keys return the key itself so a missing string never breaks a
    request.

    Examples:
        >>> t("errors.invalid_amount")
        '올바른 금액을 입력하세요.'
        >>> t("ledger.billing_description", name="1월 회비", confirmed=2, total=2)
        '1월 회비 (2/2명 입금)'
    """
    template = lookup(key)
    if template is None:
        logger.warning("Translation key not found: %s", key)
        return key
    if not kwargs:
        return template
    return template.format_map(_KeepMissing(kwargs))


def status_label(status: PaymentStatus) -> str:
    """Display label of a payment status."""
    return lookup(f"statuses.{status.name.lower()}") or status.value


__all__ = ["TRANSLATIONS_PATH", "lookup", "status_label", "t"]
