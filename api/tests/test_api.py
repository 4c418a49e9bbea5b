"""
HTTP tests for the FastAPI application

Tests cover:
1. Rental transitions over HTTP
2. Mapping of service errors to status codes
3. Ledger and bill endpoints
4. Manual job triggers
"""

import logging
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.deps import get_services
from api.index import app
from settlement.models import BillStatus


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def client(world):
    app.dependency_overrides[get_services] = lambda: world.services
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_rental(client, renter, tool, start="2024-03-16", end="2024-03-18"):
    return client.post("/rentals", json={
        "renter_id": str(renter), "tool_id": str(tool), "start_date": start, "end_date": end,
    })


class TestStartup:
    """Tests for application startup."""

    def test_services_and_logging_built_from_config(self, world, tmp_path, monkeypatch, restore_root_logging):
        member = world.add_member("Dana", balance_cents=-250)
        state_file = tmp_path / "state.json"
        world.storage.dump(str(state_file))
        config_file = tmp_path / "toolshare.yaml"
        config_file.write_text(f"state_file: {state_file}\nlog:\n  level: WARNING\n")
        monkeypatch.setenv("TOOLSHARE_CONFIG", str(config_file))
        monkeypatch.delenv("TOOLSHARE_LOG_LEVEL", raising=False)
        monkeypatch.delenv("TOOLSHARE_STATE_FILE", raising=False)

        with TestClient(app) as started:
            balance = started.get(f"/orgs/{world.org_id}/members/{member}/balance")
            health = started.get("/health")
            services = app.state.services

        assert balance.json()["balance_cents"] == -250
        assert health.status_code == 200
        assert services.config.state_file == str(state_file)
        assert logging.getLogger().level == logging.WARNING


class TestRentalRoutes:
    """Tests for the rental endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_full_rental_flow(self, client, world):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        tool = world.add_tool(owner)

        created = create_rental(client, renter, tool)
        assert created.status_code == 201
        rental_id = created.json()["rental"]["id"]

        assert client.post(f"/rentals/{rental_id}/approve", json={"owner_id": str(owner)}).status_code == 200
        assert client.post(f"/rentals/{rental_id}/finalize", json={"renter_id": str(renter)}).status_code == 200
        assert client.post(f"/rentals/{rental_id}/activate", json={"member_id": str(renter)}).status_code == 200
        completed = client.post(f"/rentals/{rental_id}/complete", json={"owner_id": str(owner)})

        assert completed.status_code == 200
        assert completed.json()["rental"]["status"] == "COMPLETED"
        assert len(completed.json()["ledger_entries"]) == 2

        balance = client.get(f"/orgs/{world.org_id}/members/{renter}/balance")
        assert balance.json()["balance_cents"] == -3000

    def test_inverted_dates_are_bad_request(self, client, world):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        tool = world.add_tool(owner)

        response = create_rental(client, renter, tool, start="2024-03-18", end="2024-03-16")

        assert response.status_code == 400

    def test_wrong_actor_is_forbidden(self, client, world):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        tool = world.add_tool(owner)
        rental_id = create_rental(client, renter, tool).json()["rental"]["id"]

        response = client.post(f"/rentals/{rental_id}/approve", json={"owner_id": str(renter)})

        assert response.status_code == 403

    def test_wrong_state_is_conflict(self, client, world):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        tool = world.add_tool(owner)
        rental_id = create_rental(client, renter, tool).json()["rental"]["id"]

        response = client.post(f"/rentals/{rental_id}/complete", json={"owner_id": str(owner)})

        assert response.status_code == 409

    def test_unknown_rental_is_not_found(self, client):
        response = client.post(f"/rentals/{uuid4()}/approve", json={"owner_id": str(uuid4())})

        assert response.status_code == 404


class TestSettlementRoutes:
    """Tests for bill and job endpoints."""

    def test_acknowledge_flow_and_summary(self, client, world):
        debtor = world.add_member("Dana", balance_cents=-500)
        creditor = world.add_member("Cole", balance_cents=500)

        monthly = client.post("/jobs/all-monthly", params={"month": "2024-03"})
        assert monthly.status_code == 200
        assert [r["status"] for r in monthly.json()] == ["SUCCESS"] * 3

        [bill] = client.get(f"/members/{debtor}/payments").json()
        too_early = client.post(f"/bills/{bill['id']}/acknowledge", json={"member_id": str(creditor)})
        assert too_early.status_code == 409

        summary = client.get(f"/members/{debtor}/payments/summary").json()
        assert summary["payments_to_make"] == 1

        client.post(f"/bills/{bill['id']}/acknowledge", json={"member_id": str(debtor)})
        paid = client.post(f"/bills/{bill['id']}/acknowledge", json={"member_id": str(creditor)})

        assert paid.status_code == 200
        assert paid.json()["bill"]["status"] == BillStatus.PAID.value

    def test_unknown_job_is_not_found(self, client):
        assert client.post("/jobs/bogus").status_code == 404

    def test_list_jobs(self, client):
        assert "all-nightly" in client.get("/jobs").json()
