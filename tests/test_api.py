"""Tests for the HTTP routes and SMS webhooks."""

from unittest.mock import AsyncMock

import pytest
from cryptography.fernet import Fernet
from fastapi import FastAPI
from fastapi.testclient import TestClient

from commsync.api.routes import router
from commsync.domain.models import ProviderType
from commsync.infrastructure.container import build_engine, get_engine
from commsync.infrastructure.http.sms_ingest import router as sms_router
from commsync.infrastructure.settings import Settings
from commsync.infrastructure.vault import FernetCredentialVault

from conftest import FakeAdapter, make_account, make_message


@pytest.fixture
def engine(tmp_path):
    settings = Settings(
        _env_file=None,
        user_id="user-1",
        sqlite_path=str(tmp_path / "commsync.db"),
        webhook_secret="s3cret",
    )
    generator = AsyncMock()
    generator.generate.return_value = "Here is your draft"
    engine = build_engine(
        settings,
        vault=FernetCredentialVault(Fernet.generate_key()),
        generator=generator,
    )
    adapter = FakeAdapter(
        [make_message("1", subject="Lunch"), make_message("2", minutes=5, subject="Invoice")]
    )
    engine.registry.register(ProviderType.IMAP, adapter)
    engine.accounts.save(
        make_account("acct-a", own_addresses=("me@example.com",), credentials="")
    )
    engine.store.set_own_addresses("acct-a", ["me@example.com"])
    return engine


@pytest.fixture
def client(engine):
    app = FastAPI()
    app.include_router(router)
    app.include_router(sms_router)
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client


class TestInboxRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_sync_then_read(self, client):
        sync = client.post("/sync")
        messages = client.get("/messages")
        contacts = client.get("/contacts")

        assert sync.status_code == 200
        assert sync.json()["ok"] == ["acct-a"]
        assert sync.json()["merged_total"] == 2
        assert [m["id"] for m in messages.json()] == ["2", "1"]
        assert [c["address"] for c in contacts.json()] == ["alice@example.com"]

    def test_search(self, client):
        client.post("/sync")

        empty = client.get("/search", params={"q": ""})
        hit = client.get("/search", params={"q": "invoice"})

        assert len(empty.json()["messages"]) == 2
        assert [m["id"] for m in hit.json()["messages"]] == ["2"]
        assert hit.json()["matches"] == ["alice@example.com"]

    def test_mark_read_and_delete(self, client, engine):
        client.post("/sync")

        read = client.post("/messages/mark-read", json={"account_id": "acct-a", "ids": ["1"]})
        deleted = client.post("/messages/delete", json={"account_id": "acct-a", "ids": ["2"]})

        assert read.json() == {"updated": 1}
        assert deleted.json() == {"removed": 1}
        assert [m.id for m in engine.store.snapshot()] == ["1"]

    def test_unknown_account_is_404(self, client):
        response = client.post("/messages/mark-read", json={"account_id": "nope", "ids": ["1"]})

        assert response.status_code == 404

    def test_link_rejected_when_connection_fails(self, client, engine):
        engine.registry.get(ProviderType.IMAP).connection_ok = False

        response = client.post(
            "/accounts",
            json={"provider_type": "imap", "credentials": {"host": "mail", "username": "u", "password": "p"}},
        )

        assert response.status_code == 502
        assert len(engine.accounts.list_linked("user-1")) == 1


class TestUsageRoutes:
    def test_billing_event_then_join_then_ai(self, client):
        applied = client.post(
            "/billing/events",
            json={
                "billing_subscription_id": "bill-1",
                "organization_id": "org-1",
                "owner_user_id": "owner-1",
                "plan_type": "standard",
            },
        )
        subscription_id = applied.json()["subscription_id"]
        before_join = client.post("/ai/draft_email", json={"prompt": "Reply to Alice"})
        joined = client.post("/organizations/org-1/join", json={})

        ai = client.post("/ai/draft_email", json={"prompt": "Reply to Alice"})
        usage = client.get(f"/usage/{subscription_id}")

        assert applied.status_code == 200
        assert before_join.status_code == 404
        assert joined.json()["status"] == "joined"
        assert ai.status_code == 200
        assert ai.json()["text"] == "Here is your draft"
        assert ai.json()["credits_charged"] == 2
        assert usage.json()["used_ai_credits"] == 2
        assert usage.json()["total_ai_credits"] == 300

    def test_billing_event_without_organization_is_400(self, client):
        response = client.post("/billing/events", json={"billing_subscription_id": "bill-x"})

        assert response.status_code == 400

    def test_ai_without_subscription_is_404(self, client):
        response = client.post("/ai/summarize_thread", json={"prompt": "thread"})

        assert response.status_code == 404

    def test_unknown_usage_is_404(self, client):
        assert client.get("/usage/missing").status_code == 404


class TestOrganizationRoutes:
    def create(self, client, plan_type="standard"):
        return client.post(
            "/billing/events",
            json={
                "billing_subscription_id": "bill-1",
                "organization_id": "org-1",
                "organization_name": "Acme",
                "owner_user_id": "owner-1",
                "plan_type": plan_type,
            },
        )

    def test_join_and_list_members(self, client):
        self.create(client)

        first = client.post("/organizations/org-1/join")
        again = client.post("/organizations/org-1/join", json={"user_id": "user-1"})
        org = client.get("/organizations/org-1")

        assert first.json() == {"status": "joined", "organization_id": "org-1", "members": 2}
        assert again.json()["status"] == "already_member"
        assert org.json()["members"] == [
            {"user_id": "owner-1", "is_admin": True},
            {"user_id": "user-1", "is_admin": False},
        ]
        assert org.json()["max_users"] == 3

    def test_member_limit_is_400(self, client):
        self.create(client, plan_type="lite")

        response = client.post("/organizations/org-1/join", json={"user_id": "user-1"})

        assert response.status_code == 400

    def test_unknown_organization_is_404(self, client):
        assert client.post("/organizations/nope/join").status_code == 404

    def test_remove_member_requires_admin(self, client):
        self.create(client)
        client.post("/organizations/org-1/join", json={"user_id": "user-1"})

        denied = client.delete("/organizations/org-1/members/owner-1")
        removed = client.delete(
            "/organizations/org-1/members/user-1", params={"requested_by": "owner-1"}
        )
        ai = client.post("/ai/summarize_thread", json={"prompt": "thread"})

        assert denied.status_code == 403
        assert removed.json() == {"status": "removed", "member_id": "user-1"}
        assert ai.status_code == 404


class TestWebhooks:
    PAYLOAD = {
        "data": {
            "id": "bvs-1",
            "from": "15551230000",
            "to": "15559870000",
            "message": "Are you open today?",
            "created_at": "2024-05-01T12:00:00Z",
        }
    }

    def test_secret_required(self, client):
        response = client.post("/webhooks/bulkvs", json=self.PAYLOAD, headers={"x-webhook-secret": "wrong"})

        assert response.status_code == 401

    def test_unknown_number_is_404(self, client):
        response = client.post("/webhooks/bulkvs", json=self.PAYLOAD, headers={"x-webhook-secret": "s3cret"})

        assert response.status_code == 404

    def test_inbound_text_lands_in_store(self, client, engine):
        engine.accounts.save(
            make_account("acct-sms", ProviderType.SMS_B, own_addresses=("+15559870000",))
        )

        response = client.post("/webhooks/bulkvs", json=self.PAYLOAD, headers={"x-webhook-secret": "s3cret"})

        assert response.status_code == 200
        assert response.json()["accounts"] == ["acct-sms"]
        stored = engine.store.get("acct-sms", "bulkvs-bvs-1")
        assert stored.body == "Are you open today?"
        assert stored.sender.address == "+15551230000"
        assert stored.read is False

    def test_invalid_payload_is_rejected(self, client):
        response = client.post(
            "/webhooks/bulkvs", json={"data": {"id": "x"}}, headers={"x-webhook-secret": "s3cret"}
        )

        assert response.status_code == 422

    def test_justcall_notification_syncs_owning_account(self, client, engine):
        adapter = FakeAdapter(
            [make_message("justcall-1", account_id="acct-jc", provider_type=ProviderType.SMS_A)],
            provider_type=ProviderType.SMS_A,
        )
        engine.registry.register(ProviderType.SMS_A, adapter)
        engine.accounts.save(
            make_account("acct-jc", ProviderType.SMS_A, own_addresses=("+15559870000",))
        )
        engine.accounts.save(
            make_account("acct-other", ProviderType.SMS_A, own_addresses=("+15550000000",))
        )

        response = client.post(
            "/webhooks/justcall",
            json={"type": "sms.received", "data": {"justcall_number": "5559870000"}},
            headers={"x-webhook-secret": "s3cret"},
        )

        assert response.status_code == 200
        assert response.json()["accounts"] == ["acct-jc"]
        assert len(adapter.fetch_calls) == 1
        assert engine.store.get("acct-jc", "justcall-1") is not None
