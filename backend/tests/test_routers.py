"""
Test Suite for the HTTP layer

Routers run against the per-test SQLite session through a get_db
override; engine errors must surface as the documented status codes.
"""
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.database import get_db
from app.models.db_models import TrackingStatus


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestAccountRoutes:

    def test_generate_and_list(self, client, make_account, make_property):
        account = make_account()
        make_property()

        response = client.post(f"/accounts/{account.id}/batches")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Generated"
        assert body["total_records"] == 1

        listing = client.get(f"/accounts/{account.id}/batches").json()
        assert listing["total"] == 1
        assert listing["batches"][0]["id"] == body["id"]

    def test_requests_share_app_lock_registry(self, client, make_account, make_property):
        account = make_account()
        make_property()

        client.post(f"/accounts/{account.id}/batches")
        assert account.id in app.state.account_locks

    def test_unknown_account_is_404(self, client):
        assert client.post("/accounts/missing/batches").status_code == 404

    def test_no_eligible_records_is_409(self, client, make_account):
        account = make_account(counties=["99999"])
        assert client.post(f"/accounts/{account.id}/batches").status_code == 409

    def test_invalid_config_is_422(self, client, make_account):
        account = make_account(min_equity=150)
        assert client.post(f"/accounts/{account.id}/refresh").status_code == 422

    def test_insufficient_funds_is_402(self, client, make_account, make_property):
        account = make_account(balance="0.00")
        make_property()

        response = client.post(f"/accounts/{account.id}/batches/execute", json={"include_skip_trace": True})

        assert response.status_code == 402
        assert response.json()["detail"]["required"] == "0.06"

    def test_execute_and_redownload(self, client, make_account, make_property):
        account = make_account(balance="5.00")
        make_property()

        estimate = client.get(f"/accounts/{account.id}/skip-trace/estimate").json()
        assert estimate["eligible_count"] == 1
        assert estimate["total_cost"] == "0.06"

        executed = client.post(f"/accounts/{account.id}/batches/execute", json={"include_skip_trace": True})
        assert executed.status_code == 200
        batch = executed.json()["batch"]
        assert batch["status"] == "Downloaded"
        assert executed.json()["records"][0]["touch_count"] == 1

        again = client.post(f"/accounts/{account.id}/batches/{batch['id']}/download")
        assert again.status_code == 200
        assert again.json()["batch"]["download_count"] == 2
        assert again.json()["records"][0]["touch_count"] == 1

        wallet = client.get(f"/accounts/{account.id}/wallet").json()
        assert wallet["balance"] == "4.94"
        assert wallet["transactions"][0]["settlement_amount"] == "-0.06"

    def test_tracking_views(self, client, make_account, make_property):
        account = make_account()
        make_property()
        client.post(f"/accounts/{account.id}/refresh")

        records = client.get(f"/accounts/{account.id}/tracking", params={"status": "Active"}).json()
        assert records["total"] == 1
        assert records["records"][0]["lane"] == "Blitz"

        summary = client.get(f"/accounts/{account.id}/tracking/summary").json()
        assert summary["active"] == 1

        assert client.get(f"/accounts/{account.id}/tracking", params={"status": "Sleeping"}).status_code == 422

    def test_wallet_credit(self, client, make_account):
        account = make_account()
        response = client.post(f"/accounts/{account.id}/wallet/credits", json={"amount": "25.00"})
        assert response.status_code == 200
        assert response.json()["balance_after"] == "25.00"

        assert client.post(f"/accounts/{account.id}/wallet/credits", json={"amount": "-1"}).status_code == 422

    def test_status_signal_and_lift(self, client, make_account, make_property):
        account = make_account()
        prop = make_property()

        response = client.post(
            f"/accounts/{account.id}/status-signals",
            json={"property_id": prop.id, "status": "Suppressed", "reason": "owner request"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == TrackingStatus.SUPPRESSED.value

        lifted = client.delete(f"/accounts/{account.id}/status-signals/{prop.id}")
        assert lifted.status_code == 200
        assert lifted.json()["status"] == "Active"

    def test_terminal_status_conflict(self, client, make_account, make_property):
        account = make_account()
        prop = make_property()
        client.post(f"/accounts/{account.id}/status-signals", json={"property_id": prop.id, "status": "RemovedSold"})

        response = client.post(
            f"/accounts/{account.id}/status-signals",
            json={"property_id": prop.id, "status": "Suppressed"},
        )
        assert response.status_code == 409

    def test_suppression_import(self, client, make_account, make_property):
        account = make_account()
        make_property(address="12 Elm St")
        client.post(f"/accounts/{account.id}/refresh")

        response = client.post(
            f"/accounts/{account.id}/suppressions",
            json={"suppression_type": "address", "values": ["12 elm st"], "list_name": "Litigators"},
        )
        assert response.json()["records_transitioned"] == 1


class TestAdminRoutes:

    def test_list_signals(self, client):
        signals = client.get("/admin/signals").json()
        assert len(signals) == 8
        assert signals[0]["signal_key"] == "foreclosure"

    def test_edit_signal(self, client):
        response = client.patch("/admin/signals/divorce", json={"default_lane": "Blitz"})
        assert response.status_code == 200
        assert response.json()["default_lane"] == "Blitz"

        assert client.patch("/admin/signals/divorce", json={"base_conversion_rate": 0}).status_code == 422
        assert client.patch("/admin/signals/divorce", json={}).status_code == 422
        assert client.patch("/admin/signals/unknown", json={"is_active": False}).status_code == 404

    def test_system_defaults(self, client):
        defaults = {d["setting_key"]: d["setting_value"] for d in client.get("/admin/system-defaults").json()}
        assert defaults["blitz_days_between"] == "14"

        response = client.put("/admin/system-defaults/skip_trace_cost", json={"setting_value": "0.08"})
        assert response.json()["setting_value"] == "0.08"

    def test_property_removal(self, client, make_account, make_property):
        account = make_account()
        prop = make_property()
        client.post(f"/accounts/{account.id}/refresh")

        response = client.post(f"/admin/properties/{prop.id}/removal", json={"status": "RemovedListed"})
        assert response.json()["records_transitioned"] == 1


class TestSchedulerRoutes:

    def test_weekly_cycle(self, client, make_account, make_property):
        make_account(cycle_day="Monday", cycle_time="08:00")
        make_property()

        response = client.post("/internal/weekly-cycle", params={"as_of": "2026-01-05T09:00:00"})
        assert response.status_code == 200
        assert response.json()["batches_generated"] == 1

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
