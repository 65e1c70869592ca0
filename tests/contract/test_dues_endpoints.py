"""Tests for the HTTP adapter over the dues engine."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from src.api.app import create_app
from src.api.config import ApiSettings
from src.api.dues import get_engine
from src.services import AsyncSessionLocal
from src.services.dues_engine import DuesEngine

BASE = "/api/clubs/tnn01"

ROSTER = [
    {"name": "홍길동", "phone": "010-1111-2222", "adminRank": 1},
    {"name": "김철수", "phone": "010-3333-4444"},
    {"name": "이영희"},
]


@pytest.fixture
def app_engine(clock):
    """Engine over the in-memory application database."""
    return DuesEngine.build(AsyncSessionLocal, clock=clock)


@pytest.fixture
def client(app_engine):
    """Test client over the in-memory application database."""
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: app_engine
    with TestClient(app) as test_client:
        yield test_client


def create_period(client, **overrides) -> dict:
    body = {
        "name": "1월 회비",
        "amount": "20,000",
        "roster": ROSTER,
        "selected": ["홍길동", "김철수"],
        "rankRules": {"1": {"mode": "퍼센트할인", "value": "50"}},
        "ledgerCategory": "회비",
        **overrides,
    }
    response = client.post(f"{BASE}/periods", json=body)
    assert response.status_code == 201, response.text
    return response.json()["dues"]


def records_of(dues: dict, period_id: str) -> dict[str, dict]:
    return {r["playerName"]: r for r in dues["payments"][period_id]}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestPeriods:
    """Test billing period endpoints."""

    def test_create_period_resolves_rank_amounts(self, client):
        """Test member amounts follow the rank rule and a ledger entry is bound."""
        dues = create_period(client)
        period = dues["billingPeriods"][0]
        records = records_of(dues, period["id"])

        assert period["amount"] == 20000
        assert period["ledgerCategory"] == "회비"
        assert records["홍길동"]["amount"] == 10000
        assert records["홍길동"]["status"] == "미납"
        assert records["김철수"]["amount"] == 20000

        ledger = client.get(f"{BASE}/ledger").json()
        assert [(e["description"], e["amount"]) for e in ledger["entries"]] == [("1월 회비 (0/2명 입금)", 0)]

    def test_create_period_rejects_empty_selection(self, client):
        response = client.post(
            f"{BASE}/periods", json={"name": "1월 회비", "amount": 20000, "roster": ROSTER, "selected": []}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_create_period_rejects_unknown_category(self, client):
        response = client.post(
            f"{BASE}/periods",
            json={
                "name": "1월 회비",
                "amount": 20000,
                "roster": ROSTER,
                "selected": ["홍길동"],
                "ledgerCategory": "없는카테고리",
            },
        )

        assert response.status_code == 400
        assert client.get(f"{BASE}/dues").json()["dues"]["billingPeriods"] == []

    def test_rename_period_updates_ledger_description(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.patch(f"{BASE}/periods/{period_id}", json={"name": "1월 정기회비"})

        assert response.status_code == 200
        assert response.json()["dues"]["billingPeriods"][0]["name"] == "1월 정기회비"
        entry = client.get(f"{BASE}/ledger").json()["entries"][0]
        assert entry["description"] == "1월 정기회비 (0/2명 입금)"

    def test_delete_period_removes_bound_entry(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.delete(f"{BASE}/periods/{period_id}")

        assert response.status_code == 200
        assert response.json()["dues"]["payments"] == {}
        assert client.get(f"{BASE}/ledger").json()["entries"] == []

    def test_delete_unknown_period(self, client):
        response = client.delete(f"{BASE}/periods/bp-missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_add_and_remove_record(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        added = client.post(f"{BASE}/periods/{period_id}/records", json={"playerName": "이영희"})
        assert added.status_code == 201
        assert records_of(added.json()["dues"], period_id)["이영희"]["amount"] == 20000

        removed = client.delete(f"{BASE}/periods/{period_id}/records/이영희")
        assert removed.status_code == 200
        assert "이영희" not in records_of(removed.json()["dues"], period_id)

    def test_update_record_amount(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.patch(f"{BASE}/periods/{period_id}/records/김철수", json={"amount": "15,000"})

        assert response.status_code == 200
        assert records_of(response.json()["dues"], period_id)["김철수"]["amount"] == 15000


class TestPaymentStatus:
    """Test status transitions through the API."""

    def test_admin_confirmation_updates_ledger(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(
            f"{BASE}/periods/{period_id}/records/김철수/status", json={"status": "입금완료", "actor": "admin"}
        )

        assert response.status_code == 200
        assert records_of(response.json()["dues"], period_id)["김철수"]["status"] == "입금완료"
        ledger = client.get(f"{BASE}/ledger").json()
        assert ledger["entries"][0]["amount"] == 20000
        assert ledger["entries"][0]["description"] == "1월 회비 (1/2명 입금)"
        assert ledger["summary"] == {"totalIncome": 20000, "totalExpense": 0, "balance": 20000}

    def test_member_cannot_confirm(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(
            f"{BASE}/periods/{period_id}/records/김철수/status", json={"status": "입금완료", "actor": "member"}
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_transition"

    def test_unknown_record(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(f"{BASE}/periods/{period_id}/records/박영수/status", json={"status": "입금완료"})

        assert response.status_code == 404

    def test_pay_returns_account_text(self, client, monkeypatch):
        """Test starting a transfer returns the account text and marks the record pending."""
        settings = ApiSettings(bank_name="신한", bank_account_number="110-123-456789", bank_account_holder="총무")
        monkeypatch.setattr("src.api.dues.get_api_settings", lambda: settings)
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(f"{BASE}/periods/{period_id}/records/홍길동/pay")

        assert response.status_code == 200
        body = response.json()
        assert body["copiedText"] == "신한 110-123-456789 (총무) 10,000원"
        assert records_of(body["dues"], period_id)["홍길동"]["status"] == "확인요망"
        assert client.get(f"{BASE}/dues").json()["pendingCount"] == 1

    def test_dismissed_record_leaves_member_view(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(f"{BASE}/periods/{period_id}/records/홍길동/dismiss")

        assert response.status_code == 200
        assert records_of(response.json()["dues"], period_id)["홍길동"]["dismissed"] is True
        assert client.get(f"{BASE}/members/홍길동/dues").json()["items"] == []
        items = client.get(f"{BASE}/members/김철수/dues").json()["items"]
        assert [(i["period"]["id"], i["record"]["status"]) for i in items] == [(period_id, "미납")]

    def test_dismiss_unknown_record(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]
        assert client.post(f"{BASE}/periods/{period_id}/records/이영희/dismiss").status_code == 404

    def test_payment_request_lists_unpaid_phones(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]
        client.post(f"{BASE}/periods/{period_id}/records/홍길동/status", json={"status": "입금완료"})

        response = client.post(f"{BASE}/periods/{period_id}/payment-request", json={"roster": ROSTER})

        assert response.status_code == 200
        assert response.json()["recipients"] == ["010-3333-4444"]

    def test_sync_members_drops_departed(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(f"{BASE}/members/sync", json={"names": ["홍길동"]})

        assert response.status_code == 200
        assert list(records_of(response.json()["dues"], period_id)) == ["홍길동"]


class TestScheduled:
    """Test scheduled billing endpoints."""

    def test_scheduled_billing_materializes_on_dues_read(self, client, clock):
        response = client.post(
            f"{BASE}/scheduled",
            json={
                "name": "2월 회비",
                "amount": 30000,
                "scheduledAt": "2025-02-01T00:00:00+00:00",
                "roster": ROSTER,
                "selected": ["김철수", "이영희"],
            },
        )
        assert response.status_code == 201
        assert len(response.json()["dues"]["scheduledBillings"]) == 1

        before = client.get(f"{BASE}/dues").json()
        assert before["processed"] == []

        clock.advance(days=30)
        after = client.get(f"{BASE}/dues").json()
        assert after["processed"] == ["2월 회비"]
        assert after["message"] == "예약 청구 1건이 자동 등록되었습니다."
        assert after["dues"]["scheduledBillings"] == []
        assert [p["name"] for p in after["dues"]["billingPeriods"]] == ["2월 회비"]

    def test_ledger_failure_during_materialization_reports_503(self, client, clock, app_engine):
        response = client.post(
            f"{BASE}/scheduled",
            json={
                "name": "2월 회비",
                "amount": 30000,
                "scheduledAt": "2025-02-01T00:00:00+00:00",
                "roster": ROSTER,
                "selected": ["김철수"],
                "ledgerCategory": "회비",
            },
        )
        assert response.status_code == 201
        clock.advance(days=30)

        store = app_engine.repository.store
        real_save = store.save

        async def failing_ledger_save(club_code, kind, payload):
            if kind.value == "ledger":
                raise SQLAlchemyError("disk full")
            await real_save(club_code, kind, payload)

        with patch.object(store, "save", new=AsyncMock(side_effect=failing_ledger_save)):
            assert client.get(f"{BASE}/dues").status_code == 503

        after = client.get(f"{BASE}/dues").json()
        assert after["processed"] == ["2월 회비"]
        period_id = after["dues"]["billingPeriods"][0]["id"]
        entries = client.get(f"{BASE}/ledger").json()["entries"]
        assert [e["billingPeriodId"] for e in entries] == [period_id]

    def test_schedule_in_past_rejected(self, client):
        response = client.post(
            f"{BASE}/scheduled",
            json={
                "name": "2월 회비",
                "amount": 30000,
                "scheduledAt": "2025-01-01T00:00:00+00:00",
                "roster": ROSTER,
                "selected": ["김철수"],
            },
        )

        assert response.status_code == 400

    def test_cancel_unknown_scheduled(self, client):
        assert client.delete(f"{BASE}/scheduled/sb-missing").status_code == 404


class TestLedger:
    """Test ledger endpoints."""

    def test_entries_filtered_with_running_balance(self, client):
        for entry in (
            {"date": "2025-01-05", "description": "1월 회비", "type": "수입", "amount": 100000, "category": "회비"},
            {"date": "2025-01-20", "description": "코트 대관", "type": "지출", "amount": 40000, "category": "코트비"},
            {"date": "2025-02-03", "description": "공 구입", "type": "지출", "amount": "15,000", "category": "용품구매"},
        ):
            assert client.post(f"{BASE}/ledger/entries", json=entry).status_code == 201

        ledger = client.get(f"{BASE}/ledger", params={"month": "2025-01"}).json()

        assert [(e["description"], e["balance"]) for e in ledger["entries"]] == [
            ("코트 대관", 60000),
            ("1월 회비", 100000),
        ]
        assert ledger["summary"] == {"totalIncome": 100000, "totalExpense": 40000, "balance": 60000}
        assert ledger["monthOptions"] == ["2025", "2025-02", "2025-01"]

    def test_ledger_view_built_from_one_read(self, client, app_engine):
        """Test entries, balances and summary all come from the same ledger read."""
        entry = {"date": "2025-01-05", "description": "1월 회비", "type": "수입", "amount": 1000, "category": "회비"}
        assert client.post(f"{BASE}/ledger/entries", json=entry).status_code == 201

        ledger_service = app_engine.ledger
        with patch.object(ledger_service, "get_ledger", wraps=ledger_service.get_ledger) as get_ledger:
            response = client.get(f"{BASE}/ledger", params={"category": "회비"})

        assert response.status_code == 200
        assert get_ledger.await_count == 1
        assert [(e["description"], e["balance"]) for e in response.json()["entries"]] == [("1월 회비", 1000)]

    def test_invalid_entry_rejected(self, client):
        response = client.post(
            f"{BASE}/ledger/entries",
            json={"date": "2025-01-05", "description": " ", "type": "수입", "amount": 1000, "category": "회비"},
        )

        assert response.status_code == 400

    def test_update_and_delete_entry(self, client):
        created = client.post(
            f"{BASE}/ledger/entries",
            json={"date": "2025-01-05", "description": "식사", "type": "지출", "amount": 30000, "category": "식비"},
        ).json()
        entry_id = created["ledger"]["entries"][0]["id"]

        updated = client.patch(f"{BASE}/ledger/entries/{entry_id}", json={"amount": 35000, "memo": "뒷풀이"})
        assert updated.status_code == 200
        assert updated.json()["ledger"]["entries"][0]["amount"] == 35000
        assert updated.json()["ledger"]["entries"][0]["memo"] == "뒷풀이"

        assert client.delete(f"{BASE}/ledger/entries/{entry_id}").status_code == 200
        assert client.delete(f"{BASE}/ledger/entries/{entry_id}").status_code == 404

    def test_custom_category(self, client):
        response = client.post(f"{BASE}/ledger/categories", json={"label": "후원금", "type": "수입"})
        assert response.status_code == 201

        categories = client.get(f"{BASE}/ledger").json()["categories"]
        labels = [c["label"] for c in categories]
        assert labels.index("후원금") < labels.index("기타수입")

        duplicate = client.post(f"{BASE}/ledger/categories", json={"label": "후원금", "type": "수입"})
        assert duplicate.status_code == 400


class TestNotifications:
    """Test bank notification intake."""

    def test_matching_deposit_confirms_record(self, client):
        period_id = create_period(client)["billingPeriods"][0]["id"]

        response = client.post(
            f"{BASE}/notifications",
            json={"text": "[KB] 김철수 20,000 입금 잔액 120,000", "package": "com.kbstar.kbbank"},
        )

        body = response.json()
        assert body["matched"] is True
        assert body["log"]["success"] is True
        assert body["log"]["matched_period"] == "1월 회비"
        dues = client.get(f"{BASE}/dues").json()["dues"]
        assert records_of(dues, period_id)["김철수"]["status"] == "입금완료"

    def test_unknown_package_ignored(self, client):
        create_period(client)

        response = client.post(
            f"{BASE}/notifications", json={"text": "김철수 20,000 입금", "package": "com.example.chat"}
        )

        assert response.json() == {"matched": False, "log": None}

    def test_non_deposit_text_ignored(self, client):
        response = client.post(f"{BASE}/notifications", json={"text": "김철수 20,000 출금"})

        assert response.json()["matched"] is False
