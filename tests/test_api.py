import re

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dealerbook.db import Base
from dealerbook.main import app, get_db, get_sms_gateway
from dealerbook.sms import SmsResult

LEDGER_DATE = "2026-10-19"


class FakeGateway:
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent = []

    def send(self, api_key, sender_id, phone_number, message):
        self.sent.append({"api_key": api_key, "sender_id": sender_id, "number": phone_number, "message": message})
        if self.succeed:
            return SmsResult(True, "SMS Submitted Successfully.")
        return SmsResult(False, "Balance Insufficient")

    def balance(self, api_key):
        return "৳125.50"


def _make_client(gateway=None) -> tuple[TestClient, FakeGateway]:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)
    gateway = gateway or FakeGateway()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sms_gateway] = lambda: gateway
    return TestClient(app), gateway


def _seed(client: TestClient) -> dict:
    assert client.post("/api/v1/companies", json={"name": "Pran", "profit_margin": 8}).status_code == 200
    assert client.post("/api/v1/companies", json={"name": "Akij", "profit_margin": 5}).status_code == 200
    for unit in ("Carton", "Piece"):
        assert client.post("/api/v1/quantity-units", json={"name": unit}).status_code == 200
    assert client.post("/api/v1/markets", json={"name": "Kawran Bazar"}).status_code == 200

    product = client.post(
        "/api/v1/products",
        json={
            "name": "Mango Juice 250ml",
            "company": "Pran",
            "purchase_price": 480,
            "profit_margin": 8,
            "round_figure_price": 520,
            "quantity": 40,
            "quantity_unit": "Carton",
            "larger_unit": "Piece",
            "conversion_factor": 24,
        },
    ).json()["data"]
    other = client.post(
        "/api/v1/products",
        json={"name": "Drinking Water", "company": "Akij", "purchase_price": 100, "quantity": 10, "quantity_unit": "Carton"},
    ).json()["data"]
    rahim = client.post("/api/v1/employees", json={"name": "Rahim", "phone": "01711000000"}).json()["data"]
    karim = client.post("/api/v1/employees", json={"name": "Karim", "phone": "01811000000"}).json()["data"]
    reward = client.post(
        "/api/v1/rewards",
        json={"name": "Glass", "unit": "Piece", "quantity": 100, "purchase_price": 20, "profit_margin": 10},
    ).json()["data"]
    rule = client.post(
        "/api/v1/reward-rules",
        json={
            "main_product_id": product["product_id"],
            "main_product_quantity": 5,
            "main_product_unit": "Carton",
            "reward_id": reward["reward_id"],
            "reward_quantity": 1,
        },
    )
    assert rule.status_code == 200
    return {
        "product_id": product["product_id"],
        "other_product_id": other["product_id"],
        "rahim": rahim["employee_id"],
        "karim": karim["employee_id"],
        "reward_id": reward["reward_id"],
    }


def _ledger_payload(ids: dict, returned: float = 1, **overrides) -> dict:
    payload = {
        "date": LEDGER_DATE,
        "market": "Kawran Bazar",
        "salesperson_id": ids["rahim"],
        "items": [
            {"product_id": ids["product_id"], "unit": "Carton", "summary_quantity": 10, "quantity_returned": returned}
        ],
        "damaged_items": [{"product_id": ids["product_id"], "unit": "Piece", "quantity": 2}],
        "amount_paid": 3000,
        "due_assigned_to": ids["rahim"],
        "commission": 100,
        "commission_assigned_to": ids["karim"],
    }
    payload.update(overrides)
    return payload


def _configure_sms(client: TestClient) -> None:
    resp = client.put("/api/v1/settings/sms", json={"api_key": "key-1", "sender_id": "8809617", "enabled": True})
    assert resp.status_code == 200
    assert resp.json()["data"]["configured"] is True
    client.put("/api/v1/settings/profile", json={"business_name": "Dealer Co"})


def _stock(client: TestClient, product_id: int) -> float:
    return client.get(f"/api/v1/products/{product_id}").json()["data"]["quantity"]


def _balance(client: TestClient, employee_id: int) -> float:
    return client.get(f"/api/v1/employees/{employee_id}").json()["data"]["balance"]


def test_root_and_health() -> None:
    client, _ = _make_client()
    with client:
        assert client.get("/").json() == {"status": "ok"}
        assert client.get("/health").json() == {"status": "healthy"}


def test_product_selling_price_and_stock_display() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        product = client.get(f"/api/v1/products/{ids['product_id']}").json()["data"]
        assert product["selling_price"] == pytest.approx(518.4)
        assert product["round_figure_price"] == 520
        assert product["stock"] == "40 Carton"
        assert product["units"] == ["Carton", "Piece"]

        listed = client.get("/api/v1/products", params={"company": "Akij"}).json()
        assert [row["name"] for row in listed["data"]] == ["Drinking Water"]
        assert listed["meta"]["page"] == {"limit": 100, "cursor": None}


def test_product_needs_known_company() -> None:
    client, _ = _make_client()
    with client:
        resp = client.post(
            "/api/v1/products",
            json={"name": "Chips", "company": "Nobody", "purchase_price": 10, "quantity_unit": "Piece"},
        )
        assert resp.status_code == 400


def test_duplicate_market_is_refused() -> None:
    client, _ = _make_client()
    with client:
        assert client.post("/api/v1/markets", json={"name": "Mirpur"}).status_code == 200
        assert client.post("/api/v1/markets", json={"name": "Mirpur"}).status_code == 409


def test_reward_rule_unit_must_belong_to_product() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post(
            "/api/v1/reward-rules",
            json={
                "main_product_id": ids["product_id"],
                "main_product_quantity": 5,
                "main_product_unit": "Dozen",
                "reward_id": ids["reward_id"],
                "reward_quantity": 1,
            },
        )
        assert resp.status_code == 400


def test_create_ledger_computes_totals_and_moves_stock() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        assert resp.status_code == 200
        body = resp.json()
        entry = body["data"]

        assert entry["ledger_id"] == 10000
        assert entry["day"] == "Monday"
        assert entry["items"][0]["quantity_sold"] == 9
        assert entry["items"][0]["total_price"] == pytest.approx(4680)
        assert entry["damaged_items"][0]["price_per_unit"] == pytest.approx(20)
        assert len(entry["reward_items"]) == 1
        assert entry["reward_items"][0]["quantity_sold"] == 1
        assert entry["reward_items"][0]["main_product_id"] == ids["product_id"]
        assert entry["total_sale"] == pytest.approx(4680 + 22 - 40)
        assert entry["amount_due"] == pytest.approx(1562)

        assert _stock(client, ids["product_id"]) == pytest.approx(40 - 9 - 2 / 24)
        glass = client.get("/api/v1/rewards").json()["data"][0]
        assert glass["quantity"] == pytest.approx(99)

        assert _balance(client, ids["rahim"]) == pytest.approx(1562)
        assert _balance(client, ids["karim"]) == pytest.approx(100)

        # nothing is sent while the gateway credentials are missing
        assert gateway.sent == []
        assert body["meta"]["warnings"] == ["sms_skipped_missing_credentials"]


def test_ledger_ids_are_never_reused() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        first = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]
        assert client.delete(f"/api/v1/ledger-entries/{first}").status_code == 200
        second = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]
        assert second == first + 1


def test_preview_does_not_persist() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post("/api/v1/ledger-entries:preview", json=_ledger_payload(ids))
        assert resp.status_code == 200
        preview = resp.json()["data"]
        assert preview["ledger_id"] == 10000
        assert preview["totals"]["gross_total"] == pytest.approx(4680)
        assert preview["totals"]["rewards_total"] == pytest.approx(22)
        assert preview["totals"]["damaged_total"] == pytest.approx(40)
        assert [n["kind"] for n in preview["notifications"]] == ["due", "commission"]

        assert _stock(client, ids["product_id"]) == 40
        assert client.get("/api/v1/ledger-entries").json()["data"] == []


def test_ledger_refuses_more_than_stock() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        payload = _ledger_payload(ids)
        payload["items"][0]["summary_quantity"] = 50
        resp = client.post("/api/v1/ledger-entries", json=payload)
        assert resp.status_code == 400
        assert "not enough stock" in resp.json()["detail"]
        assert _stock(client, ids["product_id"]) == 40


def test_ledger_refuses_returns_above_summary() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids, returned=11))
        assert resp.status_code == 400


def test_ledger_needs_market_salesperson_and_items() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids, items=[]))
        assert resp.status_code == 400


def test_update_ledger_reapplies_stock_and_receivables() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        ledger_id = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]

        resp = client.put(f"/api/v1/ledger-entries/{ledger_id}", json=_ledger_payload(ids, returned=0))
        assert resp.status_code == 200
        entry = resp.json()["data"]
        assert entry["reward_items"][0]["quantity_sold"] == 2
        assert entry["total_sale"] == pytest.approx(5200 + 44 - 40)
        assert entry["amount_due"] == pytest.approx(2104)

        assert _stock(client, ids["product_id"]) == pytest.approx(40 - 10 - 2 / 24)
        assert client.get("/api/v1/rewards").json()["data"][0]["quantity"] == pytest.approx(98)
        assert _balance(client, ids["rahim"]) == pytest.approx(2104)


def test_update_ledger_checks_stock_after_restoring_original() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        payload = _ledger_payload(ids, returned=0, damaged_items=[])
        payload["items"][0]["summary_quantity"] = 30
        ledger_id = client.post("/api/v1/ledger-entries", json=payload).json()["data"]["ledger_id"]
        assert _stock(client, ids["product_id"]) == pytest.approx(10)

        payload["items"][0]["summary_quantity"] = 35
        resp = client.put(f"/api/v1/ledger-entries/{ledger_id}", json=payload)
        assert resp.status_code == 200
        assert resp.json()["data"]["reward_items"][0]["quantity_sold"] == 7
        assert _stock(client, ids["product_id"]) == pytest.approx(5)

        payload["items"][0]["summary_quantity"] = 41
        assert client.put(f"/api/v1/ledger-entries/{ledger_id}", json=payload).status_code == 400
        assert _stock(client, ids["product_id"]) == pytest.approx(5)


def test_modified_automatic_reward_is_kept() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        payload = _ledger_payload(ids, returned=0)
        payload["modified_reward_ids"] = [ids["reward_id"]]
        payload["reward_items"] = [
            {"reward_id": ids["reward_id"], "main_product_id": ids["product_id"], "summary_quantity": 3}
        ]
        entry = client.post("/api/v1/ledger-entries", json=payload).json()["data"]
        assert len(entry["reward_items"]) == 1
        assert entry["reward_items"][0]["quantity_sold"] == 3


def test_removed_automatic_reward_stays_removed() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        payload = _ledger_payload(ids)
        payload["modified_reward_ids"] = [ids["reward_id"]]
        entry = client.post("/api/v1/ledger-entries", json=payload).json()["data"]
        assert entry["reward_items"] == []
        assert entry["total_sale"] == pytest.approx(4680 - 40)


def test_delete_ledger_restores_everything() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        ledger_id = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]
        assert client.delete(f"/api/v1/ledger-entries/{ledger_id}").status_code == 200

        assert _stock(client, ids["product_id"]) == pytest.approx(40)
        assert client.get("/api/v1/rewards").json()["data"][0]["quantity"] == pytest.approx(100)
        assert client.get("/api/v1/receivables/transactions").json()["data"] == []
        assert client.get(f"/api/v1/ledger-entries/{ledger_id}").status_code == 404


def test_ledger_payment_reduces_due() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        ledger_id = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]

        resp = client.post(f"/api/v1/ledger-entries/{ledger_id}/payments", json={"type": "due", "amount": 500})
        assert resp.status_code == 200
        ledger = resp.json()["data"]["ledger"]
        assert ledger["amount_due"] == pytest.approx(1062)
        assert ledger["amount_paid"] == pytest.approx(3500)
        assert resp.json()["data"]["transaction"]["type"] == "payment"
        assert _balance(client, ids["rahim"]) == pytest.approx(1062)

        too_much = client.post(f"/api/v1/ledger-entries/{ledger_id}/payments", json={"type": "commission", "amount": 101})
        assert too_much.status_code == 400

        commission = client.post(
            f"/api/v1/ledger-entries/{ledger_id}/payments", json={"type": "commission", "amount": 100}
        ).json()["data"]["ledger"]
        assert commission["commission"] == pytest.approx(0)
        assert _balance(client, ids["karim"]) == pytest.approx(0)


def test_ledger_sms_uses_templates_and_history() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        _configure_sms(client)
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        assert resp.status_code == 200
        assert resp.json()["meta"]["warnings"] == []
        assert [sms["number"] for sms in gateway.sent] == ["01711000000", "01811000000"]
        assert "#10000" in gateway.sent[0]["message"]
        assert "1562.00" in gateway.sent[0]["message"]
        assert gateway.sent[0]["message"].startswith("Dealer Co")

        history = client.get("/api/v1/sms/history").json()["data"]
        assert len(history) == 2
        assert {record["status"] for record in history} == {"success"}


def test_sms_service_switch_skips_sending() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        _configure_sms(client)
        client.put("/api/v1/settings/sms", json={"enabled": False})
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        assert resp.json()["meta"]["warnings"] == ["sms_skipped_service_disabled"]
        assert gateway.sent == []


def test_failed_sms_becomes_warning() -> None:
    client, gateway = _make_client(FakeGateway(succeed=False))
    with client:
        ids = _seed(client)
        _configure_sms(client)
        resp = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        assert resp.status_code == 200
        assert resp.json()["meta"]["warnings"] == [f"sms_failed:{ids['rahim']}", f"sms_failed:{ids['karim']}"]
        history = client.get("/api/v1/sms/history").json()["data"]
        assert {record["status"] for record in history} == {"failed"}


def test_edit_ledger_sms_only_when_amounts_change() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        _configure_sms(client)
        ledger_id = client.post("/api/v1/ledger-entries", json=_ledger_payload(ids)).json()["data"]["ledger_id"]
        gateway.sent.clear()

        client.put(f"/api/v1/ledger-entries/{ledger_id}", json=_ledger_payload(ids, note="same numbers"))
        assert gateway.sent == []

        client.put(f"/api/v1/ledger-entries/{ledger_id}", json=_ledger_payload(ids, commission=150))
        # commission changes, and with it the due
        assert len(gateway.sent) == 2
        assert "৳100.00" in gateway.sent[1]["message"]
        assert "৳150.00" in gateway.sent[1]["message"]


def test_summary_is_promoted_into_ledger() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post(
            "/api/v1/daily-summaries",
            json={
                "date": LEDGER_DATE,
                "market": "Kawran Bazar",
                "salesperson_id": ids["rahim"],
                "items": [{"product_id": ids["product_id"], "unit": "Carton", "summary_quantity": 10}],
            },
        )
        assert resp.status_code == 200
        summary = resp.json()["data"]
        assert summary["status"] == "pending"
        assert summary["reward_items"][0]["quantity"] == 2
        assert summary["total_sale"] == pytest.approx(5200 + 44)
        assert _stock(client, ids["product_id"]) == 40

        pending = client.get("/api/v1/daily-summaries:pending").json()["data"]
        assert [row["summary_id"] for row in pending] == [summary["summary_id"]]

        ledger = client.post(
            "/api/v1/ledger-entries", json={"summary_id": summary["summary_id"], "amount_paid": 5244}
        ).json()["data"]
        assert ledger["market"] == "Kawran Bazar"
        assert ledger["items"][0]["quantity_sold"] == 10
        assert ledger["amount_due"] == pytest.approx(0)
        assert _stock(client, ids["product_id"]) == pytest.approx(30)

        used = client.get(f"/api/v1/daily-summaries/{summary['summary_id']}").json()["data"]
        assert used["status"] == "used"
        assert used["ledger_id"] == ledger["ledger_id"]

        again = client.post("/api/v1/ledger-entries", json={"summary_id": summary["summary_id"]})
        assert again.status_code == 409
        edit = client.put(
            f"/api/v1/daily-summaries/{summary['summary_id']}",
            json={"items": [{"product_id": ids["product_id"], "summary_quantity": 1}]},
        )
        assert edit.status_code == 409

        client.delete(f"/api/v1/ledger-entries/{ledger['ledger_id']}")
        restored = client.get(f"/api/v1/daily-summaries/{summary['summary_id']}").json()["data"]
        assert restored["status"] == "pending"
        assert restored["ledger_id"] is None


def test_summary_filters() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        for day, market in (("2026-10-18", "Kawran Bazar"), ("2026-10-19", "Mirpur")):
            client.post(
                "/api/v1/daily-summaries",
                json={
                    "date": day,
                    "market": market,
                    "salesperson_id": ids["karim"],
                    "items": [{"product_id": ids["product_id"], "summary_quantity": 1}],
                },
            )
        rows = client.get("/api/v1/daily-summaries").json()["data"]
        assert [row["date"] for row in rows] == ["2026-10-19", "2026-10-18"]
        assert len(client.get("/api/v1/daily-summaries", params={"market": "Mirpur"}).json()["data"]) == 1
        assert len(client.get("/api/v1/daily-summaries", params={"search": "karim"}).json()["data"]) == 2
        assert client.get("/api/v1/daily-summaries", params={"status": "used"}).json()["data"] == []


def test_summary_update_recalculates_automatic_rewards() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        summary = client.post(
            "/api/v1/daily-summaries",
            json={
                "date": LEDGER_DATE,
                "market": "Kawran Bazar",
                "salesperson_id": ids["rahim"],
                "items": [{"product_id": ids["product_id"], "unit": "Carton", "summary_quantity": 10}],
                "reward_items": [{"reward_name": "Keyring", "unit": "Piece", "selling_price": 5, "quantity": 3}],
            },
        ).json()["data"]
        summary_id = summary["summary_id"]
        assert summary["total_sale"] == pytest.approx(5200 + 44 + 15)

        stored = client.get(f"/api/v1/daily-summaries/{summary_id}").json()["data"]
        resp = client.put(
            f"/api/v1/daily-summaries/{summary_id}",
            json={"items": stored["items"], "reward_items": stored["reward_items"]},
        )
        assert resp.status_code == 200
        unchanged = resp.json()["data"]
        assert sorted((row["reward_name"], row["quantity"]) for row in unchanged["reward_items"]) == [
            ("Glass", 2),
            ("Keyring", 3),
        ]
        assert unchanged["total_sale"] == pytest.approx(summary["total_sale"])

        stored["items"][0]["summary_quantity"] = 15
        resp = client.put(
            f"/api/v1/daily-summaries/{summary_id}",
            json={"items": stored["items"], "reward_items": stored["reward_items"]},
        )
        grown = resp.json()["data"]
        automatic = [row for row in grown["reward_items"] if row.get("main_product_id")]
        assert [row["quantity"] for row in automatic] == [3]
        assert len(grown["reward_items"]) == 2
        assert grown["total_sale"] == pytest.approx(7800 + 66 + 15)
        assert grown["market"] == "Kawran Bazar"

        ledger = client.post("/api/v1/ledger-entries", json={"summary_id": summary_id}).json()["data"]
        assert [row["quantity_sold"] for row in ledger["reward_items"] if row.get("main_product_id")] == [3]
        assert client.get("/api/v1/rewards").json()["data"][0]["quantity"] == pytest.approx(97)


def test_summary_delete_only_while_pending() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        body = {
            "date": LEDGER_DATE,
            "market": "Kawran Bazar",
            "salesperson_id": ids["rahim"],
            "items": [{"product_id": ids["product_id"], "unit": "Carton", "summary_quantity": 2}],
        }
        first = client.post("/api/v1/daily-summaries", json=body).json()["data"]["summary_id"]
        second = client.post("/api/v1/daily-summaries", json=body).json()["data"]["summary_id"]
        client.post("/api/v1/ledger-entries", json={"summary_id": second})

        assert client.delete(f"/api/v1/daily-summaries/{second}").status_code == 409
        assert client.delete(f"/api/v1/daily-summaries/{first}").status_code == 200
        assert client.get(f"/api/v1/daily-summaries/{first}").status_code == 404


def test_ledger_list_search_and_sort() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        client.post("/api/v1/ledger-entries", json=_ledger_payload(ids, returned=5, market="Mirpur"))

        by_sale = client.get("/api/v1/ledger-entries", params={"sort": "sale", "direction": "asc"}).json()["data"]
        assert [row["market"] for row in by_sale] == ["Mirpur", "Kawran Bazar"]
        found = client.get("/api/v1/ledger-entries", params={"search": "mirpur"}).json()["data"]
        assert [row["ledger_id"] for row in found] == [10001]
        assert client.get("/api/v1/ledger-entries", params={"sort": "nope"}).status_code == 400


def test_catalogue_deletion_guards() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        assert client.delete(f"/api/v1/rewards/{ids['reward_id']}").status_code == 409
        client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))
        assert client.delete(f"/api/v1/products/{ids['product_id']}").status_code == 409
        markets = client.get("/api/v1/markets").json()["data"]
        assert client.delete(f"/api/v1/markets/{markets[0]['market_id']}").status_code == 409


def test_manual_transaction_and_otp_deletion() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        _configure_sms(client)
        resp = client.post(
            "/api/v1/receivables/transactions",
            json={"employee_id": ids["rahim"], "type": "due", "amount": 300, "date": LEDGER_DATE},
        )
        assert resp.status_code == 200
        transaction = resp.json()["data"]
        assert transaction["note"] == "Manual Due"
        assert "Due" in gateway.sent[-1]["message"]

        balances = client.get("/api/v1/receivables/balances").json()["data"]
        assert balances["totals"]["balance"] == pytest.approx(300)

        transaction_id = transaction["transaction_id"]
        assert client.post(f"/api/v1/receivables/transactions/{transaction_id}:requestDeletion").status_code == 200
        code = re.search(r"code is (\d{4})", gateway.sent[-1]["message"]).group(1)

        wrong = client.post(f"/api/v1/receivables/transactions/{transaction_id}:confirmDeletion", json={"code": "0000"})
        assert wrong.status_code == 400
        ok = client.post(f"/api/v1/receivables/transactions/{transaction_id}:confirmDeletion", json={"code": code})
        assert ok.status_code == 200
        assert _balance(client, ids["rahim"]) == pytest.approx(0)


def test_otp_needs_sms_settings() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post(f"/api/v1/employees/{ids['karim']}:requestDeletion")
        assert resp.status_code == 400


def test_employee_deletion_with_otp() -> None:
    client, gateway = _make_client()
    with client:
        _seed(client)
        _configure_sms(client)
        employee = client.post("/api/v1/employees", json={"name": "Temp", "phone": "01911000000"}).json()["data"]
        employee_id = employee["employee_id"]
        assert client.post(f"/api/v1/employees/{employee_id}:requestDeletion").status_code == 200
        code = re.search(r"code is (\d{4})", gateway.sent[-1]["message"]).group(1)
        assert client.post(f"/api/v1/employees/{employee_id}:confirmDeletion", json={"code": code}).status_code == 200
        assert client.get(f"/api/v1/employees/{employee_id}").status_code == 404


def test_due_reminder() -> None:
    client, gateway = _make_client()
    with client:
        ids = _seed(client)
        assert client.post(f"/api/v1/employees/{ids['rahim']}:sendDueReminder").status_code == 400
        client.post("/api/v1/ledger-entries", json=_ledger_payload(ids, send_sms=False))
        _configure_sms(client)
        resp = client.post(f"/api/v1/employees/{ids['rahim']}:sendDueReminder")
        assert resp.status_code == 200
        assert "1562.00" in gateway.sent[-1]["message"]
        assert "Rahim" in gateway.sent[-1]["message"]


def test_supplier_payment_receive_and_delete() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post(
            "/api/v1/supplier-payments",
            json={
                "company_name": "Pran",
                "payment_date": LEDGER_DATE,
                "advance_payment": 20000,
                "items": [{"product_id": ids["product_id"], "quantity": 40, "unit": "Carton"}],
            },
        )
        assert resp.status_code == 200
        payment = resp.json()["data"]
        assert payment["items"][0]["total_price"] == pytest.approx(19200)
        payment_id = payment["supplier_payment_id"]

        received = client.post(
            f"/api/v1/supplier-payments/{payment_id}:receive",
            json={"items": [{"product_id": ids["product_id"], "quantity": 38, "unit": "Carton"}]},
        ).json()["data"]
        assert received["status"] == "received"
        assert received["discrepancies"][0]["quantity_difference"] == pytest.approx(-2)
        assert received["discrepancies"][0]["value_difference"] == pytest.approx(-960)
        assert received["balance"] == pytest.approx(1760)
        assert _stock(client, ids["product_id"]) == pytest.approx(78)

        assert client.post(f"/api/v1/supplier-payments/{payment_id}:receive", json={}).status_code == 409

        summary = client.get("/api/v1/supplier-payments:summary").json()["data"]
        assert summary["latest_advance_payment"] == pytest.approx(20000)
        assert summary["last_received_value"] == pytest.approx(18240)
        assert summary["overall_balance"] == pytest.approx(1760)

        assert client.delete(f"/api/v1/supplier-payments/{payment_id}").status_code == 200
        assert _stock(client, ids["product_id"]) == pytest.approx(40)


def _order(client: TestClient, ids: dict, advance: float = 0) -> int:
    resp = client.post(
        "/api/v1/supplier-payments",
        json={
            "company_name": "Pran",
            "payment_date": LEDGER_DATE,
            "advance_payment": advance,
            "items": [{"product_id": ids["product_id"], "quantity": 10, "unit": "Carton"}],
        },
    )
    assert resp.status_code == 200
    return resp.json()["data"]["supplier_payment_id"]


def test_supplier_payment_received_empty() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        payment_id = _order(client, ids, advance=5000)

        received = client.post(f"/api/v1/supplier-payments/{payment_id}:receive", json={"items": []}).json()["data"]
        assert received["received_value"] == 0
        assert received["balance"] == pytest.approx(5000)
        assert _stock(client, ids["product_id"]) == pytest.approx(40)

        stored = client.get(f"/api/v1/supplier-payments/{payment_id}").json()["data"]
        assert stored["balance"] == pytest.approx(5000)
        assert [row["quantity_difference"] for row in stored["discrepancies"]] == [-10]
        assert client.get("/api/v1/supplier-payments:summary").json()["data"]["overall_balance"] == pytest.approx(5000)

        assert client.delete(f"/api/v1/supplier-payments/{payment_id}").status_code == 200
        assert _stock(client, ids["product_id"]) == pytest.approx(40)


def test_supplier_reception_with_extra_and_zero_lines() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        extra = client.post(
            "/api/v1/products",
            json={"name": "Litchi Drink", "company": "Pran", "purchase_price": 300, "quantity": 0, "quantity_unit": "Carton"},
        ).json()["data"]["product_id"]
        payment_id = _order(client, ids)

        received = client.post(
            f"/api/v1/supplier-payments/{payment_id}:receive",
            json={
                "items": [
                    {"product_id": ids["product_id"], "quantity": 0, "unit": "Carton"},
                    {"product_id": extra, "quantity": 5},
                ]
            },
        ).json()["data"]
        differences = {row["product_id"]: row for row in received["discrepancies"]}
        assert differences[ids["product_id"]]["quantity_difference"] == pytest.approx(-10)
        assert differences[ids["product_id"]]["value_difference"] == pytest.approx(-4800)
        assert differences[extra]["ordered_quantity"] == 0
        assert differences[extra]["value_difference"] == pytest.approx(1500)
        assert received["received_value"] == pytest.approx(1500)
        assert _stock(client, ids["product_id"]) == pytest.approx(40)
        assert _stock(client, extra) == pytest.approx(5)

        client.delete(f"/api/v1/supplier-payments/{payment_id}")
        assert _stock(client, ids["product_id"]) == pytest.approx(40)
        assert _stock(client, extra) == pytest.approx(0)


def test_supplier_items_must_belong_to_company() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        resp = client.post(
            "/api/v1/supplier-payments",
            json={
                "company_name": "Pran",
                "payment_date": LEDGER_DATE,
                "items": [{"product_id": ids["other_product_id"], "quantity": 5}],
            },
        )
        assert resp.status_code == 400


def test_reports() -> None:
    client, _ = _make_client()
    with client:
        ids = _seed(client)
        client.post("/api/v1/ledger-entries", json=_ledger_payload(ids))

        damaged = client.get("/api/v1/reports/damaged-products", params={"company": "Pran"}).json()["data"]
        assert damaged["total_value"] == pytest.approx(40)
        assert damaged["items"][0]["ledger_id"] == 10000

        sales = client.get("/api/v1/reports/monthly-sales").json()["data"]
        assert sales["totals"]["sale_value"] == pytest.approx(4680)
        assert sales["totals"]["purchase_cost"] == pytest.approx(9 * 480)
        assert sales["companies"][0]["company"] == "Pran"

        dashboard = client.get("/api/v1/reports/dashboard", params={"on": LEDGER_DATE}).json()["data"]
        assert dashboard["sales"]["today"] == pytest.approx(4702)
        assert dashboard["sales"]["this_month"] == pytest.approx(4702)
        assert dashboard["sales"]["yesterday"] == 0
        assert len(dashboard["daily_sales"]) == 19
        assert dashboard["profit"]["today"] == pytest.approx(4680 - 9 * 480)
        assert dashboard["reward_profit"]["today"] == pytest.approx(2)
        assert dashboard["profit"]["last_month"] == 0

        pran = client.get("/api/v1/reports/dashboard", params={"on": LEDGER_DATE, "company": "Pran"}).json()["data"]
        assert pran["sales"]["today"] == pytest.approx(4702)
        akij = client.get("/api/v1/reports/dashboard", params={"on": LEDGER_DATE, "company": "Akij"}).json()["data"]
        assert akij["sales"]["this_month"] == 0
        assert akij["profit"]["this_month"] == 0
        assert akij["reward_profit"]["this_month"] == 0

        tomorrow = client.get("/api/v1/reports/dashboard", params={"on": "2026-10-20"}).json()["data"]
        assert tomorrow["sales"]["yesterday"] == pytest.approx(4702)
        assert tomorrow["profit"]["yesterday"] == pytest.approx(360)


def test_sms_balance_and_templates() -> None:
    client, _ = _make_client()
    with client:
        assert client.get("/api/v1/sms/balance").status_code == 400
        _configure_sms(client)
        assert client.get("/api/v1/sms/balance").json()["data"]["balance"] == "৳125.50"

        templates = client.get("/api/v1/settings/sms-templates").json()["data"]
        assert all(row["is_default"] for row in templates)
        resp = client.put("/api/v1/settings/sms-templates/sms-template", json={"template": "Pay {due_amount}"})
        assert resp.status_code == 200
        assert client.put("/api/v1/settings/sms-templates/unknown", json={"template": "x"}).status_code == 404
