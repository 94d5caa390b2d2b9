"""
HTTP tests for the billing API, served in-process over the test ledger.
"""

import json
from decimal import Decimal

import httpx
import pytest

from orrbit.api.dependencies import get_reconciliation_service, get_renewal_worker, get_session_factory
from orrbit.api.main import create_app
from orrbit.core.config import settings
from orrbit.scheduler.renewal_worker import RenewalWorker
from orrbit.services.payment_ingestion import compute_signature
from orrbit.utils.billing_calendar import utcnow
from tests.conftest import (
    CREATOR_WALLET, SECOND_SUBSCRIBER_WALLET, STRANGER_WALLET, SUBSCRIBER_WALLET, tx_hash,
)

API_KEY = "internal-key"
SECRET = "whsec-api"


def bearer(wallet):
    return {"Authorization": f"Bearer {wallet}"}


@pytest.fixture
def app(session_factory, reconciliation, clock, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", API_KEY)
    monkeypatch.setattr(settings, "stellar_webhook_secret", SECRET)
    monkeypatch.setattr(settings, "verify_client_payments", False)

    app = create_app(manage_database=False)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_reconciliation_service] = lambda: reconciliation
    app.dependency_overrides[get_renewal_worker] = lambda: RenewalWorker(
        reconciliation, session_factory, clock=clock
    )
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def post_subscribe(client, seed, n=1, wallet=SUBSCRIBER_WALLET):
    return await client.post(
        "/api/v1/subscriptions",
        json={"creatorId": seed.creator_id, "tierId": seed.tier_id, "amountXlm": "10", "txHash": tx_hash(n)},
        headers=bearer(wallet),
    )


class TestSystem:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["services"]["database"] == "healthy"
        assert "X-Request-ID" in response.headers

    async def test_request_id_propagated(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"

    async def test_webhook_health(self, client):
        response = await client.get("/api/v1/webhooks/health")
        assert response.json()["status"] == "ok"


class TestSubscriptions:

    async def test_subscribe(self, client, seed):
        response = await post_subscribe(client, seed)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Subscription created"
        assert body["data"]["subscription"]["status"] == "active"
        assert Decimal(body["data"]["transaction"]["platform_fee"]) == Decimal("0.2")
        assert Decimal(body["data"]["transaction"]["net_amount"]) == Decimal("9.8")

    async def test_subscribe_replay(self, client, seed):
        first = await post_subscribe(client, seed)
        second = await post_subscribe(client, seed)

        assert second.status_code == 201
        assert second.json()["message"] == "Payment already recorded"
        assert second.json()["data"]["duplicate"] is True
        assert second.json()["data"]["transaction"]["id"] == first.json()["data"]["transaction"]["id"]

    async def test_already_subscribed_is_conflict(self, client, seed):
        await post_subscribe(client, seed, n=1)
        response = await post_subscribe(client, seed, n=2)

        assert response.status_code == 409
        assert response.json()["error_code"] == "ALREADY_SUBSCRIBED"
        assert response.json()["success"] is False

    async def test_missing_auth(self, client, seed):
        response = await client.post("/api/v1/subscriptions", json={})
        assert response.status_code == 401

    async def test_unregistered_wallet(self, client, seed):
        response = await post_subscribe(client, seed, wallet=STRANGER_WALLET)
        assert response.status_code == 401

    async def test_malformed_hash(self, client, seed):
        response = await client.post(
            "/api/v1/subscriptions",
            json={"creatorId": seed.creator_id, "amountXlm": "10", "txHash": "not-a-hash"},
            headers=bearer(SUBSCRIBER_WALLET),
        )
        assert response.status_code == 422

    async def test_renew(self, client, seed):
        created = await post_subscribe(client, seed)
        subscription_id = created.json()["data"]["subscription"]["id"]

        response = await client.post(
            f"/api/v1/subscriptions/{subscription_id}/renew",
            json={"txHash": tx_hash(2)},
            headers=bearer(SUBSCRIBER_WALLET),
        )

        assert response.status_code == 200
        assert response.json()["data"]["subscription"]["next_billing_at"] == "2026-05-10T12:00:00"

    async def test_cancel(self, client, seed):
        created = await post_subscribe(client, seed)
        subscription_id = created.json()["data"]["subscription"]["id"]
        url = f"/api/v1/subscriptions/{subscription_id}/cancel"

        response = await client.post(url, json={"reason": "moving on"}, headers=bearer(SUBSCRIBER_WALLET))
        again = await client.post(url, headers=bearer(SUBSCRIBER_WALLET))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["data"]["cancel_reason"] == "moving on"
        assert again.status_code == 400
        assert again.json()["error_code"] == "NOT_ACTIVE"

    async def test_cancel_by_other_user_is_not_found(self, client, seed):
        created = await post_subscribe(client, seed)
        subscription_id = created.json()["data"]["subscription"]["id"]

        response = await client.post(
            f"/api/v1/subscriptions/{subscription_id}/cancel",
            headers=bearer(SECOND_SUBSCRIBER_WALLET),
        )

        assert response.status_code == 404

    async def test_get_visible_to_both_parties(self, client, seed):
        created = await post_subscribe(client, seed)
        url = f"/api/v1/subscriptions/{created.json()['data']['subscription']['id']}"

        assert (await client.get(url, headers=bearer(SUBSCRIBER_WALLET))).status_code == 200
        assert (await client.get(url, headers=bearer(CREATOR_WALLET))).status_code == 200
        assert (await client.get(url, headers=bearer(SECOND_SUBSCRIBER_WALLET))).status_code == 404

    async def test_list_as_creator(self, client, seed):
        await post_subscribe(client, seed, n=1)
        await post_subscribe(client, seed, n=2, wallet=SECOND_SUBSCRIBER_WALLET)

        mine = await client.get("/api/v1/subscriptions", headers=bearer(SUBSCRIBER_WALLET))
        creator_view = await client.get(
            "/api/v1/subscriptions", params={"as_creator": "true"}, headers=bearer(CREATOR_WALLET)
        )

        assert mine.json()["pagination"]["total"] == 1
        assert creator_view.json()["pagination"]["total"] == 2


class TestTransactions:

    async def test_tip_and_history(self, client, seed):
        tip = await client.post(
            "/api/v1/transactions/tip",
            json={"creatorId": seed.creator_id, "amountXlm": "5", "txHash": tx_hash(9), "message": "gg"},
            headers=bearer(SUBSCRIBER_WALLET),
        )
        history = await client.get(
            "/api/v1/transactions", params={"type": "tip"}, headers=bearer(CREATOR_WALLET)
        )

        assert tip.status_code == 201
        assert tip.json()["data"]["transaction"]["type"] == "tip"
        assert history.json()["pagination"]["total"] == 1
        assert history.json()["data"][0]["memo"] == "gg"

    async def test_get_visible_to_sender_and_recipient(self, client, seed):
        created = await post_subscribe(client, seed)
        url = f"/api/v1/transactions/{created.json()['data']['transaction']['id']}"

        sender_view = await client.get(url, headers=bearer(SUBSCRIBER_WALLET))
        recipient_view = await client.get(url, headers=bearer(CREATOR_WALLET))
        outsider_view = await client.get(url, headers=bearer(SECOND_SUBSCRIBER_WALLET))

        assert sender_view.status_code == 200
        assert sender_view.json()["data"]["type"] == "subscription"
        assert recipient_view.status_code == 200
        assert outsider_view.status_code == 404
        assert outsider_view.json()["error_code"] == "NOT_FOUND"

    async def test_stats(self, client, seed):
        await post_subscribe(client, seed)
        await client.post(
            "/api/v1/transactions/tip",
            json={"creatorId": seed.creator_id, "amountXlm": "5", "txHash": tx_hash(9)},
            headers=bearer(SUBSCRIBER_WALLET),
        )

        creator_stats = (await client.get("/api/v1/transactions/stats", headers=bearer(CREATOR_WALLET))).json()
        subscriber_stats = (await client.get("/api/v1/transactions/stats", headers=bearer(SUBSCRIBER_WALLET))).json()

        earnings = creator_stats["data"]["earnings"]
        assert Decimal(earnings["total"]) == Decimal("14.7")
        assert Decimal(earnings["subscriptions"]) == Decimal("9.8")
        assert Decimal(earnings["tips"]) == Decimal("4.9")
        assert Decimal(creator_stats["data"]["spent"]["total"]) == 0

        spent = subscriber_stats["data"]["spent"]
        assert Decimal(spent["total"]) == Decimal("15")
        assert spent["transaction_count"] == 2
        [month] = subscriber_stats["data"]["monthly"]
        assert month["month"] == utcnow().strftime("%Y-%m")
        assert Decimal(month["spent"]) == Decimal("15")
        assert Decimal(month["earnings"]) == 0


class TestWebhooks:

    def event(self, n, sender=SUBSCRIBER_WALLET):
        return json.dumps({
            "id": f"op-{n}",
            "type": "payment",
            "transaction_successful": True,
            "source_account": sender,
            "asset_type": "native",
            "from": sender,
            "to": CREATOR_WALLET,
            "amount": "3.0000000",
            "transaction_hash": tx_hash(n),
        }).encode()

    async def test_signed_event_recorded(self, client, seed):
        body = self.event(20)
        response = await client.post(
            "/api/v1/webhooks/stellar",
            content=body,
            headers={"X-Signature": compute_signature(body, SECRET), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "recorded"

    async def test_bad_signature_rejected(self, client, seed):
        response = await client.post(
            "/api/v1/webhooks/stellar",
            content=self.event(21),
            headers={"X-Signature": "0" * 64},
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_ERROR"

    async def test_renewal_trigger_requires_key(self, client, seed):
        response = await client.post("/api/v1/webhooks/subscription-renewal")
        assert response.status_code == 401

    async def test_renewal_trigger(self, client, seed):
        response = await client.post(
            "/api/v1/webhooks/subscription-renewal", headers={"X-API-Key": API_KEY}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["skipped"] is False
        assert set(body["phases"]) == {"reminders", "due_renewals", "settlements", "expiry"}


class TestPlatform:

    async def test_earnings_and_withdrawal(self, client, seed):
        await post_subscribe(client, seed)
        headers = {"X-API-Key": API_KEY}

        earnings = await client.get("/api/v1/platform/earnings", headers=headers)
        withdrawal = await client.post(
            "/api/v1/platform/earnings/withdraw",
            json={"amount": "0.15", "destination": "G" + "P" * 55},
            headers=headers,
        )
        overdraw = await client.post(
            "/api/v1/platform/earnings/withdraw",
            json={"amount": "1", "destination": "G" + "P" * 55},
            headers=headers,
        )

        assert Decimal(earnings.json()["data"]["collected"]) == Decimal("0.2")
        assert withdrawal.status_code == 200
        assert Decimal(withdrawal.json()["data"]["remaining_balance"]) == Decimal("0.05")
        assert overdraw.status_code == 400
        assert overdraw.json()["error_code"] == "INSUFFICIENT_PLATFORM_BALANCE"

    async def test_earnings_require_key(self, client, seed):
        response = await client.get("/api/v1/platform/earnings", headers={"X-API-Key": "wrong"})
        assert response.status_code == 401
