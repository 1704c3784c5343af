"""API tests for the transfers router."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

from tests.factories import TransactionFactory
from transfer_recon.services.storage import PersistenceError


async def _seed_pair(store):
    await store.add_transactions(
        [
            TransactionFactory.build(id="out", amount=Decimal("-250.00"), account="Checking"),
            TransactionFactory.build(id="in", amount=Decimal("250.00"), account="Savings"),
        ]
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestMatchingEndpoints:
    async def test_preview_does_not_persist(self, client, store):
        await _seed_pair(store)

        response = await client.get("/transfers/matches")

        assert response.status_code == 200
        data = response.json()
        assert [m["id"] for m in data["matches"]] == ["transfer-match-out-in"]
        assert (await store.get_transaction("out")).reimbursement_id is None

    async def test_auto_match_then_unmatch(self, client, store):
        """
        GIVEN a stored transfer pair
        WHEN auto-matching and then deleting the match by id
        THEN both legs are linked and afterwards cleared
        """
        await _seed_pair(store)

        response = await client.post("/transfers/auto-match")
        assert response.status_code == 200
        applied = response.json()["applied"]
        assert len(applied) == 1
        assert (await store.get_transaction("in")).reimbursement_id == "out"

        matched = await client.get("/transfers/matched")
        assert [m["id"] for m in matched.json()] == [applied[0]["id"]]

        response = await client.delete(f"/transfers/matches/{applied[0]['id']}")
        assert response.status_code == 200
        assert len(response.json()) == 2
        assert (await store.get_transaction("out")).reimbursement_id is None

    async def test_unmatched_lists_open_transfers(self, client, store):
        await _seed_pair(store)
        response = await client.get("/transfers/unmatched")
        assert {tx["id"] for tx in response.json()} == {"out", "in"}

    async def test_manual_match(self, client, store):
        await _seed_pair(store)

        response = await client.post("/transfers/manual-match", json={"source_id": "out", "target_id": "in"})

        assert response.status_code == 200
        assert {tx["reimbursement_id"] for tx in response.json()} == {"out", "in"}

    async def test_manual_match_errors(self, client, store):
        await _seed_pair(store)
        await store.add_transactions(
            [TransactionFactory.build(id="other", amount=Decimal("250.00"), account="Checking")]
        )

        self_match = await client.post("/transfers/manual-match", json={"source_id": "out", "target_id": "out"})
        unknown = await client.post("/transfers/manual-match", json={"source_id": "out", "target_id": "ghost"})
        same_account = await client.post("/transfers/manual-match", json={"source_id": "out", "target_id": "other"})

        assert self_match.status_code == 400
        assert unknown.status_code == 404
        assert same_account.status_code == 400
        assert "same account" in same_account.json()["detail"]

    async def test_unknown_match_id(self, client):
        response = await client.delete("/transfers/matches/not-a-match")
        assert response.status_code == 400

    async def test_invalid_query_rejected(self, client):
        response = await client.get("/transfers/manual-matches", params={"tolerance_percentage": 2})
        assert response.status_code == 422

    async def test_persistence_error_maps_to_503(self, client, service):
        with patch.object(service, "auto_match_transfers", AsyncMock(side_effect=PersistenceError("locked"))):
            response = await client.post("/transfers/auto-match")

        assert response.status_code == 503
        assert response.json()["detail"] == "locked"


class TestImportEndpoints:
    payload = {
        "transactions": [
            {
                "date": "2025-01-01",
                "amount": "-42.50",
                "description": "Coffee Shop",
                "account": "Checking",
                "type": "expense",
            }
        ]
    }

    async def test_duplicates_then_import(self, client):
        """
        GIVEN an empty store
        WHEN a batch is imported twice
        THEN the second duplicate check flags the stored row
        """
        first = await client.post("/transfers/duplicates", json=self.payload)
        assert first.json()["duplicates"] == []
        assert len(first.json()["unique_transactions"]) == 1

        imported = await client.post("/transfers/import", json=self.payload)
        assert imported.status_code == 200
        assert len(imported.json()["added"]) == 1

        second = await client.post("/transfers/duplicates", json=self.payload)
        duplicates = second.json()["duplicates"]
        assert len(duplicates) == 1
        assert duplicates[0]["match_type"] == "exact"

    async def test_diagnostics(self, client, store):
        await store.add_transactions([TransactionFactory.build(id="a", reimbursement_id="gone")])

        response = await client.get("/transfers/diagnostics")

        data = response.json()
        assert data["actual_matches"] == 0
        assert data["expected_matched_count"] == 0
        assert data["discrepancy"] == 1
        assert data["orphaned_reimbursement_ids"][0]["transaction_id"] == "a"
