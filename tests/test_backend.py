"""
Tests for the purchase recording backend
"""

from decimal import Decimal

import pytest

from src.backend.dependencies import get_verifier, purchases_db
from src.backend.server import app
from src.backend.verifier import TransactionVerifier, VerificationError
from src.payments.errors import RpcError
from src.payments.models import PurchaseStatus

from tests.factories import PurchaseFactory, PurchaseRequestFactory, TREASURY_ADDRESS, new_address


def purchase_body(**overrides) -> dict:
    request = PurchaseRequestFactory(**overrides)
    return request.model_dump(mode="json", by_alias=True)


class StubVerifier:
    def __init__(self, error=None):
        self.error = error
        self.verified = []
        self.prices = []

    async def verify(self, purchase, price=None):
        self.verified.append(purchase.transaction_hash)
        self.prices.append(price)
        if self.error:
            raise self.error


class TestGeneralEndpoints:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["verification"] == "disabled"
        assert data["purchases_recorded"] == 0

    def test_plans(self, client):
        response = client.get("/api/plans")

        assert response.status_code == 200
        plans = {p["key"]: p for p in response.json()}
        assert plans["starter"]["hours"] == 24
        assert plans["starter"]["sol"] == 0.1
        assert plans["monthly"]["sol"] == 1.5


class TestProcessPayment:
    """POST /api/process-payment"""

    def test_records_purchase(self, client):
        body = purchase_body()

        response = client.post("/api/process-payment", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["transactionHash"] == body["transactionHash"]
        assert data["message"] == "Successfully purchased 24 hours of trading time"
        assert data["purchaseId"].startswith("purchase_")

        stored = purchases_db[data["purchaseId"]]
        assert stored.wallet_address == body["walletAddress"]
        assert stored.sol_amount == Decimal("0.1")
        assert stored.status == PurchaseStatus.PENDING

    def test_duplicate_signature_rejected(self, client):
        body = purchase_body()
        assert client.post("/api/process-payment", json=body).status_code == 200

        response = client.post("/api/process-payment", json=body)

        assert response.status_code == 409
        assert response.json() == {"error": "Transaction already recorded"}
        assert len(purchases_db) == 1

    def test_invalid_body(self, client):
        response = client.post("/api/process-payment", json={"hours": 24})

        assert response.status_code == 500
        assert response.json() == {"error": "Payment processing failed"}

    @pytest.mark.parametrize("hours,sol", [
        (720, Decimal("0.000001")),
        (24, Decimal("0.05")),
        (48, Decimal("0.1")),
    ])
    def test_amount_must_match_a_plan(self, client, hours, sol):
        verifier = StubVerifier()
        app.dependency_overrides[get_verifier] = lambda: verifier

        response = client.post("/api/process-payment", json=purchase_body(hours=hours, sol=sol))

        assert response.status_code == 400
        assert response.json() == {"error": "Amount does not match any plan"}
        assert verifier.verified == []
        assert purchases_db == {}

    def test_each_plan_is_accepted(self, client):
        for hours, sol in ((24, Decimal("0.1")), (168, Decimal("0.5")), (720, Decimal("1.5"))):
            response = client.post("/api/process-payment", json=purchase_body(hours=hours, sol=sol))
            assert response.status_code == 200

        assert sorted(p.hours for p in purchases_db.values()) == [24, 168, 720]

    def test_non_json_body(self, client):
        response = client.post(
            "/api/process-payment",
            content=b"not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 500

    def test_verified_purchase_is_confirmed(self, client):
        verifier = StubVerifier()
        app.dependency_overrides[get_verifier] = lambda: verifier
        body = purchase_body()

        response = client.post("/api/process-payment", json=body)

        assert response.status_code == 200
        assert verifier.verified == [body["transactionHash"]]
        assert verifier.prices == [Decimal("0.1")]
        assert purchases_db[response.json()["purchaseId"]].status == PurchaseStatus.CONFIRMED

    def test_verification_failure(self, client):
        app.dependency_overrides[get_verifier] = lambda: StubVerifier(
            VerificationError("Transaction failed on-chain")
        )

        response = client.post("/api/process-payment", json=purchase_body())

        assert response.status_code == 400
        assert response.json() == {"error": "Transaction failed on-chain"}
        assert purchases_db == {}

    def test_verification_rpc_unavailable(self, client):
        app.dependency_overrides[get_verifier] = lambda: StubVerifier(RpcError("down"))

        response = client.post("/api/process-payment", json=purchase_body())

        assert response.status_code == 503
        assert purchases_db == {}


class TestPurchaseQueries:

    def test_get_purchase(self, client):
        purchase = PurchaseFactory()
        purchases_db[purchase.purchase_id] = purchase

        response = client.get(f"/api/purchases/{purchase.purchase_id}")

        assert response.status_code == 200
        assert response.json()["transaction_signature"] == purchase.transaction_signature

    def test_get_unknown_purchase(self, client):
        response = client.get("/api/purchases/purchase_missing")

        assert response.status_code == 404

    def test_list_purchases_for_wallet(self, client):
        wallet = new_address()
        for purchase in (PurchaseFactory(wallet_address=wallet), PurchaseFactory(wallet_address=wallet), PurchaseFactory()):
            purchases_db[purchase.purchase_id] = purchase

        response = client.get("/api/purchases", params={"wallet_address": wallet})

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert all(p["wallet_address"] == wallet for p in data)
        assert data[0]["created_at"] >= data[1]["created_at"]


def parsed_transfer(source: str, destination: str, lamports: int) -> dict:
    return {
        "program": "system",
        "programId": "11111111111111111111111111111111",
        "parsed": {
            "type": "transfer",
            "info": {"source": source, "destination": destination, "lamports": lamports},
        },
    }


def confirmed_transaction(instructions, err=None, inner=None) -> dict:
    return {
        "slot": 1,
        "meta": {"err": err, "innerInstructions": inner or []},
        "transaction": {"message": {"instructions": instructions}},
    }


class FakeTransactionSource:
    """
    Node double answering getTransaction.

    The transaction is visible only at the commitments in `visible_at`, and
    only after `missing_lookups` lookups have come back empty.
    """

    def __init__(self, tx=None, error=None, visible_at=("processed", "confirmed", "finalized"), missing_lookups=0):
        self.tx = tx
        self.error = error
        self.visible_at = set(visible_at)
        self.missing_lookups = missing_lookups
        self.lookups = []

    async def get_transaction(self, signature, commitment="finalized"):
        self.lookups.append(commitment)
        if self.error:
            raise self.error
        if len(self.lookups) <= self.missing_lookups or commitment not in self.visible_at:
            return None
        return self.tx

    async def aclose(self):
        pass


def verifier_for(source, **kwargs) -> TransactionVerifier:
    kwargs.setdefault("retry_delay", 0)
    return TransactionVerifier(source, TREASURY_ADDRESS, **kwargs)


class TestTransactionVerifier:
    """On-chain verification against parsed transactions"""

    @pytest.mark.asyncio
    async def test_matching_transfer(self):
        purchase = PurchaseRequestFactory()
        tx = confirmed_transaction([parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 100_000_000)])

        await verifier_for(FakeTransactionSource(tx)).verify(purchase)

    @pytest.mark.asyncio
    async def test_confirmed_but_not_finalized_transfer_is_accepted(self):
        purchase = PurchaseRequestFactory()
        tx = confirmed_transaction([parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 100_000_000)])
        source = FakeTransactionSource(tx, visible_at=("processed", "confirmed"))

        await verifier_for(source).verify(purchase)

        assert source.lookups == ["confirmed"]

    @pytest.mark.asyncio
    async def test_transaction_not_yet_visible_is_retried(self):
        purchase = PurchaseRequestFactory()
        tx = confirmed_transaction([parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 100_000_000)])
        source = FakeTransactionSource(tx, missing_lookups=2)

        await verifier_for(source, attempts=3).verify(purchase)

        assert len(source.lookups) == 3

    @pytest.mark.asyncio
    async def test_transfer_in_inner_instructions(self):
        purchase = PurchaseRequestFactory()
        inner = [{"index": 0, "instructions": [parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 100_000_000)]}]
        tx = confirmed_transaction([], inner=inner)

        await verifier_for(FakeTransactionSource(tx)).verify(purchase)

    @pytest.mark.asyncio
    async def test_transaction_not_found(self):
        source = FakeTransactionSource(None)

        with pytest.raises(VerificationError, match="not found"):
            await verifier_for(source, attempts=3).verify(PurchaseRequestFactory())

        assert len(source.lookups) == 3

    @pytest.mark.asyncio
    async def test_failed_transaction(self):
        purchase = PurchaseRequestFactory()
        tx = confirmed_transaction(
            [parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 100_000_000)],
            err={"InstructionError": [0, {"Custom": 1}]},
        )

        with pytest.raises(VerificationError, match="failed on-chain"):
            await verifier_for(FakeTransactionSource(tx)).verify(purchase)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,destination,lamports", [
        ("other", TREASURY_ADDRESS, 100_000_000),
        (None, "other", 100_000_000),
        (None, TREASURY_ADDRESS, 99_999_999),
    ])
    async def test_mismatched_transfer(self, source, destination, lamports):
        purchase = PurchaseRequestFactory()
        tx = confirmed_transaction([parsed_transfer(source or purchase.wallet_address, destination, lamports)])

        with pytest.raises(VerificationError):
            await verifier_for(FakeTransactionSource(tx)).verify(purchase)

    @pytest.mark.asyncio
    async def test_transfer_checked_against_given_price(self):
        purchase = PurchaseRequestFactory(sol=Decimal("0.000001"))
        tx = confirmed_transaction([parsed_transfer(purchase.wallet_address, TREASURY_ADDRESS, 1000)])

        with pytest.raises(VerificationError):
            await verifier_for(FakeTransactionSource(tx)).verify(purchase, Decimal("1.5"))

    @pytest.mark.asyncio
    async def test_rpc_errors_propagate(self):
        verifier = verifier_for(FakeTransactionSource(error=RpcError("down")))

        with pytest.raises(RpcError):
            await verifier.verify(PurchaseRequestFactory())


class TestVerifiedRecording:
    """Recording endpoint backed by the real verifier"""

    def test_confirmed_transfer_is_recorded(self, client):
        body = purchase_body()
        tx = confirmed_transaction([parsed_transfer(body["walletAddress"], TREASURY_ADDRESS, 100_000_000)])
        source = FakeTransactionSource(tx, visible_at=("processed", "confirmed"))
        app.dependency_overrides[get_verifier] = lambda: verifier_for(source)

        response = client.post("/api/process-payment", json=body)

        assert response.status_code == 200
        assert purchases_db[response.json()["purchaseId"]].status == PurchaseStatus.CONFIRMED

    def test_underpaid_plan_is_rejected(self, client):
        body = purchase_body(hours=720, sol=Decimal("0.000001"))
        tx = confirmed_transaction([parsed_transfer(body["walletAddress"], TREASURY_ADDRESS, 1000)])
        app.dependency_overrides[get_verifier] = lambda: verifier_for(FakeTransactionSource(tx))

        response = client.post("/api/process-payment", json=body)

        assert response.status_code == 400
        assert purchases_db == {}
