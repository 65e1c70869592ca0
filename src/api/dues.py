"""Club dues and ledger API endpoints.

Thin adapter over the engine services. The club roster is supplied by the
caller (the club directory owns it); request and response bodies use the
same camelCase field names as the stored snapshots.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.api.config import get_api_settings
from src.models.dues import PaymentStatus, RosterMember
from src.models.ledger import LedgerEntryType
from src.services import AsyncSessionLocal
from src.services.amount_calculator import DifferentialRule, build_rule, resolve_member_amounts
from src.services.billing_service import require_positive_amount
from src.services.config import load_config
from src.services.dues_engine import DuesEngine
from src.services.errors import NotFoundError, PersistenceError, ValidationError
from src.services.ledger_service import (
    filter_entries,
    list_categories,
    month_options,
    newest_first,
    running_balances,
    summarize,
)
from src.services.localizer import t
from src.services.messaging import build_payment_request
from src.services.notification_matcher import NotificationEvent, NotificationListener
from src.services.payment_status import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clubs/{club_code}", tags=["dues"])

# Engine shared by all requests (one cache and lock set per process)
_engine_instance: Optional[DuesEngine] = None


def get_engine() -> DuesEngine:
    """Get or create the engine over the application database."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = DuesEngine.build(AsyncSessionLocal)
    return _engine_instance


# Request schemas
class RequestSchema(BaseModel):
    """Base request schema accepting camelCase or snake_case fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RankRuleRequest(RequestSchema):
    """Differential rule of one admin rank."""

    mode: str
    value: Optional[str] = ""


class MemberSelectionRequest(RequestSchema):
    """Roster and the members to bill."""

    roster: list[RosterMember] = Field(default_factory=list)
    selected: list[str] = Field(default_factory=list)
    overrides: dict[str, str] = Field(default_factory=dict)
    rank_rules: dict[int, RankRuleRequest] = Field(default_factory=dict)


class CreatePeriodRequest(MemberSelectionRequest):
    name: str
    amount: int | str
    date: Optional[str] = None
    ledger_category: Optional[str] = None


class ScheduleRequest(CreatePeriodRequest):
    scheduled_at: datetime


class UpdatePeriodRequest(RequestSchema):
    name: Optional[str] = None
    amount: Optional[int | str] = None


class AddRecordRequest(RequestSchema):
    player_name: str
    amount: Optional[int | str] = None


class UpdateAmountRequest(RequestSchema):
    amount: int | str


class StatusRequest(RequestSchema):
    status: PaymentStatus
    actor: Actor = Actor.ADMIN


class PaymentRequestBody(RequestSchema):
    roster: list[RosterMember] = Field(default_factory=list)
    selected: Optional[list[str]] = None
    body: Optional[str] = None


class SyncMembersRequest(RequestSchema):
    names: list[str]


class LedgerEntryRequest(RequestSchema):
    date: str
    description: str
    type: LedgerEntryType
    amount: int | str
    category: str
    memo: Optional[str] = None


class LedgerEntryUpdateRequest(RequestSchema):
    date: Optional[str] = None
    description: Optional[str] = None
    type: Optional[LedgerEntryType] = None
    amount: Optional[int | str] = None
    category: Optional[str] = None
    memo: Optional[str] = None


class CategoryRequest(RequestSchema):
    label: str
    type: LedgerEntryType


class NotificationRequest(RequestSchema):
    text: str
    package: Optional[str] = None


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _require(result: Any, message_key: str) -> Any:
    # Services report not-found (and write failures) as None
    if result is None:
        raise NotFoundError(t(message_key))
    return result


def _rank_rules(request: MemberSelectionRequest) -> dict[int, DifferentialRule]:
    rules: dict[int, DifferentialRule] = {}
    for rank, rule in request.rank_rules.items():
        try:
            rules[rank] = build_rule(rule.mode, rule.value)
        except ValueError as e:
            raise ValidationError(str(e)) from e
    return rules


def _resolve_members(request: CreatePeriodRequest):
    base_amount = require_positive_amount(request.amount)
    members = resolve_member_amounts(
        request.roster,
        request.selected,
        base_amount,
        request.overrides,
        _rank_rules(request),
    )
    return base_amount, members


# Dues
@router.get("/dues")
async def get_dues(club_code: str, engine: DuesEngine = Depends(get_engine)) -> dict:  # noqa: B008
    """Materialize due scheduled billings, then return the dues snapshot."""
    result = await engine.scheduler.process_due(club_code)
    if result is None:
        raise PersistenceError(t("errors.save_failed"))

    response: dict[str, Any] = {
        "dues": _dump(result.dues),
        "processed": [entry.name for entry in result.processed],
        "pendingCount": result.dues.pending_count(),
    }
    if result.processed:
        response["message"] = t("messages.scheduled_processed", count=len(result.processed))
    return response


@router.post("/periods", status_code=201)
async def create_period(
    club_code: str,
    request: CreatePeriodRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Create a billing period for the selected roster members."""
    base_amount, members = _resolve_members(request)
    dues = await engine.billing.create_period(
        club_code,
        name=request.name,
        amount=base_amount,
        member_amounts=members,
        date=request.date,
        ledger_category=request.ledger_category,
    )
    if dues is None:
        raise PersistenceError(t("errors.save_failed"))
    return {"dues": _dump(dues)}


@router.patch("/periods/{period_id}")
async def update_period(
    club_code: str,
    period_id: str,
    request: UpdatePeriodRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    dues = await engine.billing.update_period(club_code, period_id, name=request.name, amount=request.amount)
    return {"dues": _dump(_require(dues, "errors.period_not_found"))}


@router.delete("/periods/{period_id}")
async def delete_period(club_code: str, period_id: str, engine: DuesEngine = Depends(get_engine)) -> dict:  # noqa: B008
    """Delete a period with its records and bound ledger entry."""
    dues = await engine.billing.delete_period(club_code, period_id)
    return {"dues": _dump(_require(dues, "errors.period_not_found"))}


@router.post("/periods/{period_id}/records", status_code=201)
async def add_record(
    club_code: str,
    period_id: str,
    request: AddRecordRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    dues = await engine.billing.add_payment_record(club_code, period_id, request.player_name, request.amount)
    return {"dues": _dump(_require(dues, "errors.period_not_found"))}


@router.delete("/periods/{period_id}/records/{player_name}")
async def remove_record(
    club_code: str,
    period_id: str,
    player_name: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    dues = await engine.billing.remove_payment_record(club_code, period_id, player_name)
    return {"dues": _dump(_require(dues, "errors.record_not_found"))}


@router.patch("/periods/{period_id}/records/{player_name}")
async def update_record_amount(
    club_code: str,
    period_id: str,
    player_name: str,
    request: UpdateAmountRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    dues = await engine.billing.update_payment_amount(club_code, period_id, player_name, request.amount)
    return {"dues": _dump(_require(dues, "errors.record_not_found"))}


@router.post("/periods/{period_id}/records/{player_name}/status")
async def change_status(
    club_code: str,
    period_id: str,
    player_name: str,
    request: StatusRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Move a payment record to another status."""
    dues = await engine.billing.update_payment_status(
        club_code, period_id, player_name, request.status, request.actor
    )
    return {"dues": _dump(_require(dues, "errors.record_not_found"))}


@router.post("/periods/{period_id}/records/{player_name}/dismiss")
async def dismiss_record(
    club_code: str,
    period_id: str,
    player_name: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Member hides a record from their own dues list."""
    dues = await engine.billing.dismiss_payment(club_code, period_id, player_name)
    return {"dues": _dump(_require(dues, "errors.record_not_found"))}


@router.get("/members/{player_name}/dues")
async def get_member_dues(
    club_code: str,
    player_name: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """A member's own records that are not dismissed."""
    dues = await engine.billing.get_dues(club_code)
    return {
        "items": [
            {"period": _dump(period), "record": _dump(record)} for period, record in dues.member_items(player_name)
        ]
    }


@router.post("/periods/{period_id}/records/{player_name}/pay")
async def start_payment(
    club_code: str,
    period_id: str,
    player_name: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Member starts a transfer: returns the account text and marks the record pending."""
    action = await engine.status_machine.start_payment(
        club_code, period_id, player_name, bank_account=get_api_settings().bank_account
    )
    return {
        "dues": _dump(_require(action.dues, "errors.record_not_found")),
        "copiedText": action.copied_text,
    }


@router.post("/periods/{period_id}/payment-request")
async def payment_request(
    club_code: str,
    period_id: str,
    request: PaymentRequestBody,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Recipients and body of a payment reminder for unpaid members."""
    dues = await engine.billing.get_dues(club_code)
    compose = _require(
        build_payment_request(dues, period_id, request.roster, request.selected, request.body),
        "errors.period_not_found",
    )
    return {"recipients": compose.recipients, "body": compose.body}


@router.post("/members/sync")
async def sync_members(
    club_code: str,
    request: SyncMembersRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Drop records of players who left the roster."""
    dues = await engine.billing.sync_members(club_code, request.names)
    if dues is None:
        raise PersistenceError(t("errors.save_failed"))
    return {"dues": _dump(dues)}


# Scheduled billings
@router.post("/scheduled", status_code=201)
async def schedule_billing(
    club_code: str,
    request: ScheduleRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Queue a billing period for automatic creation."""
    base_amount, members = _resolve_members(request)
    dues = await engine.scheduler.schedule(
        club_code,
        name=request.name,
        amount=base_amount,
        scheduled_at=request.scheduled_at,
        member_amounts=members,
        date=request.date,
        ledger_category=request.ledger_category,
    )
    if dues is None:
        raise PersistenceError(t("errors.save_failed"))
    return {"dues": _dump(dues)}


@router.delete("/scheduled/{scheduled_id}")
async def cancel_scheduled(
    club_code: str,
    scheduled_id: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    dues = await engine.scheduler.cancel(club_code, scheduled_id)
    return {"dues": _dump(_require(dues, "errors.scheduled_not_found"))}


# Ledger
@router.get("/ledger")
async def get_ledger(
    club_code: str,
    month: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Entries (newest first) narrowed by month/category, with running balances and summary."""
    ledger = await engine.ledger.get_ledger(club_code)
    balances = running_balances(ledger.entries)
    entries = filter_entries(newest_first(ledger.entries), month, category)
    summary = summarize(entries)

    return {
        "entries": [{**_dump(entry), "balance": balances[entry.id]} for entry in entries],
        "summary": {
            "totalIncome": summary.total_income,
            "totalExpense": summary.total_expense,
            "balance": summary.balance,
        },
        "monthOptions": month_options(ledger.entries),
        "categories": [
            {"label": c.label, "type": c.type.value} for c in list_categories(ledger)
        ],
    }


@router.post("/ledger/entries", status_code=201)
async def add_ledger_entry(
    club_code: str,
    request: LedgerEntryRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    ledger = await engine.ledger.add_entry(
        club_code,
        entry_date=request.date,
        description=request.description,
        entry_type=request.type,
        amount=request.amount,
        category=request.category,
        memo=request.memo,
    )
    if ledger is None:
        raise PersistenceError(t("errors.save_failed"))
    return {"ledger": _dump(ledger)}


@router.patch("/ledger/entries/{entry_id}")
async def update_ledger_entry(
    club_code: str,
    entry_id: str,
    request: LedgerEntryUpdateRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    ledger = await engine.ledger.update_entry(
        club_code,
        entry_id,
        entry_date=request.date,
        description=request.description,
        entry_type=request.type,
        amount=request.amount,
        category=request.category,
        memo=request.memo,
    )
    return {"ledger": _dump(_require(ledger, "errors.entry_not_found"))}


@router.delete("/ledger/entries/{entry_id}")
async def delete_ledger_entry(
    club_code: str,
    entry_id: str,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    ledger = await engine.ledger.delete_entry(club_code, entry_id)
    return {"ledger": _dump(_require(ledger, "errors.entry_not_found"))}


@router.post("/ledger/categories", status_code=201)
async def add_category(
    club_code: str,
    request: CategoryRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    ledger = await engine.ledger.add_custom_category(club_code, request.label, request.type)
    if ledger is None:
        raise PersistenceError(t("errors.save_failed"))
    return {"ledger": _dump(ledger)}


# Notifications
@router.post("/notifications")
async def receive_notification(
    club_code: str,
    request: NotificationRequest,
    engine: DuesEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Parse one bank notification and apply it to the club's dues."""
    allowed = load_config().notification_packages if request.package else []
    listener = NotificationListener(club_code, engine.matcher, allowed_packages=allowed)
    log = await listener.handle(NotificationEvent(package=request.package or "", text=request.text))
    return {"matched": log is not None, "log": log.to_dict() if log is not None else None}


__all__ = ["router", "get_engine"]
