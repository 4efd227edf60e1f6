"""
Tests for the HTTP surface.

Failure kinds map to status codes: readiness 503, transaction 502,
validation 422, already-terminal 409.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from givecore.config import Settings
from givecore.ledger import InMemoryLedger
from givecore.main import create_app
from givecore.services import build_services

from .conftest import DAY, DONOR, NOW, ORGANIZER, FakeClock, FakeRemoteBackend


@pytest.fixture
def app_client():
    clock = FakeClock()
    services = asyncio.run(build_services(
        Settings(), transport=InMemoryLedger(clock=clock), remote=FakeRemoteBackend(), clock=clock
    ))
    with TestClient(create_app(services)) as client:
        yield client


def connect(client, account):
    response = client.post("/api/session/connect", json={"account": account})
    assert response.status_code == 200
    return response.json()


def create_campaign(client, target="10.0"):
    connect(client, ORGANIZER)
    response = client.post("/api/campaigns", json={
        "title": "School books",
        "description": "Books for the new term",
        "target": target,
        "deadline": NOW + 10 * DAY,
        "category": "Education",
    })
    assert response.status_code == 201, response.text
    return response.json()["entity_id"]


def post_resource(client, quantity=20):
    connect(client, ORGANIZER)
    response = client.post("/api/resources", json={
        "title": "Desks", "description": "School desks", "category": "Furniture",
        "quantity": quantity, "unit": "pcs", "location": "Depot",
    })
    assert response.status_code == 201, response.text
    return response.json()["entity_id"]


class TestSystem:

    def test_health(self, app_client):
        assert app_client.get("/health").json()["status"] == "healthy"

    def test_detailed_health(self, app_client):
        body = app_client.get("/health/detailed").json()
        assert body["status"] == "healthy"
        assert body["checks"]["ledger"]["ready"] is True
        assert body["checks"]["offchain_store"]["remote"] == "reachable"

    def test_metrics(self, app_client):
        assert "remote_fallbacks" in app_client.get("/metrics").json()

    def test_request_id_header(self, app_client):
        response = app_client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    def test_cors_off_by_default(self, app_client):
        response = app_client.get("/health", headers={"Origin": "http://evil.example"})
        assert "access-control-allow-origin" not in response.headers

    def test_cors_origins_from_settings(self):
        clock = FakeClock()
        settings = Settings(cors_origins=("https://give.example",))
        services = asyncio.run(build_services(settings, transport=InMemoryLedger(clock=clock), clock=clock))
        with TestClient(create_app(services)) as client:
            response = client.get("/health", headers={"Origin": "https://give.example"})
        assert response.headers["access-control-allow-origin"] == "https://give.example"


class TestSession:

    def test_connect_normalizes(self, app_client):
        body = connect(app_client, ORGANIZER.upper().replace("0X", "0x"))
        assert body["account"] == ORGANIZER
        assert body["ready"] is True

    def test_invalid_identity(self, app_client):
        response = app_client.post("/api/session/connect", json={"account": "   "})
        assert response.status_code == 422

    def test_write_without_account_is_503(self, app_client):
        response = app_client.post("/api/campaigns", json={
            "title": "t", "description": "d", "target": "1", "deadline": NOW + DAY,
        })
        assert response.status_code == 503
        assert response.json()["detail"]["kind"] == "readiness"


class TestCampaignRoutes:

    def test_funding_flow(self, app_client):
        campaign_id = create_campaign(app_client)
        connect(app_client, DONOR)
        donated = app_client.post(f"/api/campaigns/{campaign_id}/donations", json={"amount": "4.0"})
        assert donated.status_code == 200
        assert donated.json()["data"]["receipt"]["receipt_id"].startswith("RCP-")
        app_client.post(f"/api/campaigns/{campaign_id}/donations", json={"amount": "6.0"})

        view = app_client.get(f"/api/campaigns/{campaign_id}").json()
        assert view["is_fully_funded"] is True
        assert view["is_active"] is False
        assert view["category"] == "Education"

        active = app_client.get("/api/campaigns", params={"active_only": True}).json()
        assert active == []

    def test_donation_validation_is_422(self, app_client):
        campaign_id = create_campaign(app_client)
        connect(app_client, DONOR)
        response = app_client.post(f"/api/campaigns/{campaign_id}/donations", json={"amount": "0"})
        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "validation"

    def test_missing_campaign_is_404(self, app_client):
        assert app_client.get("/api/campaigns/99").status_code == 404

    def test_receipt_and_reports(self, app_client):
        campaign_id = create_campaign(app_client)
        connect(app_client, DONOR)
        app_client.post(f"/api/campaigns/{campaign_id}/donations", json={"amount": "2"})

        receipt = app_client.get(f"/api/receipts/{campaign_id}/{DONOR}").json()
        assert receipt["campaign_title"] == "School books"

        report = app_client.get(f"/api/reports/campaigns/{campaign_id}").json()
        assert report["donor_count"] == 1
        platform = app_client.get("/api/reports/platform").json()
        assert platform["top_categories"][0]["name"] == "Education"


class TestResourceRoutes:

    def test_claim_cancel_twice_is_409(self, app_client):
        resource_id = post_resource(app_client)
        connect(app_client, DONOR)
        claim = app_client.post(f"/api/resources/{resource_id}/claims", json={"amount": 5}).json()
        index = claim["entity_id"]

        first = app_client.post(f"/api/resources/{resource_id}/claims/{index}/cancel")
        second = app_client.post(f"/api/resources/{resource_id}/claims/{index}/cancel")

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["kind"] == "already_terminal"
        detail = app_client.get(f"/api/resources/{resource_id}").json()
        assert detail["resource"]["quantity_available"] == 20

    def test_reverted_transaction_is_502(self, app_client):
        resource_id = post_resource(app_client)
        connect(app_client, DONOR)
        app_client.app.state.services.ledger.transport.reject_next("User denied transaction signature")

        response = app_client.post(f"/api/resources/{resource_id}/claims", json={"amount": 1})
        assert response.status_code == 502
        assert response.json()["detail"]["reason"] == "User denied transaction signature"

    def test_category_filter(self, app_client):
        post_resource(app_client)
        assert len(app_client.get("/api/resources", params={"category": "Furniture"}).json()) == 1
        assert app_client.get("/api/resources", params={"category": "Food"}).json() == []


class TestOffchainRoutes:

    def test_profile_and_dashboard(self, app_client):
        connect(app_client, ORGANIZER)
        saved = app_client.post("/api/profile", json={"name": "Hope Trust"})
        assert saved.status_code == 200
        create_campaign(app_client)

        dashboard = app_client.get(f"/api/dashboard/{ORGANIZER}").json()
        assert dashboard["profile"]["name"] == "Hope Trust"
        assert dashboard["campaigns"][0]["owner_name"] == "Hope Trust"
        assert dashboard["unread_notifications"] == 1
        assert dashboard["organizer_verified"] is False

    def test_notifications(self, app_client):
        create_campaign(app_client)
        listed = app_client.get("/api/notifications").json()
        assert listed["unread"] == 1
        notification_id = listed["notifications"][0]["id"]

        assert app_client.post(f"/api/notifications/{notification_id}/read").status_code == 200
        assert app_client.get("/api/notifications").json()["unread"] == 0
        assert app_client.delete(f"/api/notifications/{notification_id}").status_code == 200
        assert app_client.delete(f"/api/notifications/{notification_id}").status_code == 404

    def test_chat(self, app_client):
        resource_id = post_resource(app_client)
        connect(app_client, DONOR)
        claim = app_client.post(f"/api/resources/{resource_id}/claims", json={"amount": 1}).json()
        claim_id = claim["data"]["claim"]["timestamp"]

        sent = app_client.post(f"/api/chat/{resource_id}/{claim_id}", json={"message": "When?"})
        assert sent.status_code == 201
        thread = app_client.get(f"/api/chat/{resource_id}/{claim_id}").json()
        assert [m["message"] for m in thread] == ["When?"]
