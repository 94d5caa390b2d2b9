"""
Tests for Horizon payment verification against a local aiohttp server.
"""

from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp import test_utils

from orrbit.core.exceptions import ChainVerificationError, PaymentVerificationError
from orrbit.services.stellar_verifier import HorizonVerifier
from tests.conftest import CREATOR_WALLET, SUBSCRIBER_WALLET, tx_hash

GOOD = tx_hash(1)
FAILED = tx_hash(2)
BROKEN = tx_hash(3)


def payment_op(amount="10.0000000", sender=SUBSCRIBER_WALLET, recipient=CREATOR_WALLET, asset_type="native"):
    return {"type": "payment", "asset_type": asset_type, "from": sender, "to": recipient, "amount": amount}


async def get_transaction(request):
    tx = request.match_info["tx"]
    if tx == BROKEN:
        return web.json_response({"title": "oops"}, status=503)
    if tx not in (GOOD, FAILED):
        return web.json_response({"status": 404}, status=404)
    return web.json_response({"hash": tx, "successful": tx == GOOD})


async def get_operations(request):
    records = [payment_op(asset_type="credit_alphanum4"), payment_op()]
    return web.json_response({"_embedded": {"records": records}})


@pytest.fixture
async def horizon():
    app = web.Application()
    app.router.add_get("/transactions/{tx}", get_transaction)
    app.router.add_get("/transactions/{tx}/operations", get_operations)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield str(server.make_url("/")).rstrip("/")
    await server.close()


class TestVerify:

    async def test_matching_payment(self, horizon):
        result = await HorizonVerifier(base_url=horizon).verify(
            GOOD, SUBSCRIBER_WALLET, CREATOR_WALLET, Decimal("10")
        )
        assert result.valid is True
        assert result.payment.amount == Decimal("10")

    async def test_wrong_amount(self, horizon):
        result = await HorizonVerifier(base_url=horizon).verify(GOOD, expected_amount=Decimal("11"))
        assert result.valid is False
        assert result.error == "no matching payment operation found"

    async def test_failed_transaction(self, horizon):
        result = await HorizonVerifier(base_url=horizon).verify(FAILED)
        assert result.error == "transaction was not successful"

    async def test_unknown_transaction(self, horizon):
        result = await HorizonVerifier(base_url=horizon).verify(tx_hash(4))
        assert result.error == "transaction not found"

    async def test_horizon_error(self, horizon):
        with pytest.raises(ChainVerificationError):
            await HorizonVerifier(base_url=horizon).verify(BROKEN)

    async def test_require_payment_raises(self, horizon):
        with pytest.raises(PaymentVerificationError) as exc_info:
            await HorizonVerifier(base_url=horizon).require_payment(GOOD, expected_to=SUBSCRIBER_WALLET)
        assert exc_info.value.details["reason"] == "no matching payment operation found"


class TestMatchPayment:

    def test_skips_non_native_and_non_payment(self):
        records = [
            {"type": "create_account", "asset_type": "native", "amount": "10"},
            payment_op(asset_type="credit_alphanum12"),
        ]
        assert HorizonVerifier.match_payment(records) is None

    def test_amount_within_one_stroop(self):
        payment = HorizonVerifier.match_payment([payment_op("10.0000000")], expected_amount=Decimal("10"))
        assert payment.to_account == CREATOR_WALLET

    def test_sender_mismatch(self):
        assert HorizonVerifier.match_payment([payment_op()], expected_from=CREATOR_WALLET) is None
