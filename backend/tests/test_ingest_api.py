"""End-to-end tests for the webhook ingestion endpoint."""

import asyncio
import hashlib
import hmac
import json

from webhook_pipeline.core.config import settings
from webhook_pipeline.services.ingestion import IngestionPipeline

SECRET = "abc123"
API = "/api/v1"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def _setup(client, tenant_headers, rate_limit=60, with_dataset=True):
    dataset_id = None
    if with_dataset:
        response = await client.post(f"{API}/datasets/", json={"name": "Orders"}, headers=tenant_headers)
        dataset_id = response.json()["id"]
        for field in (
            {"slug": "order_id", "name": "Order", "source_path": "$.data.order_id"},
            {"slug": "amount", "name": "Amount", "field_type": "number", "source_path": "$.data.amount"},
            {"slug": "email", "name": "Email", "source_path": "$.data.customer.email"},
            {"slug": "coupon", "name": "Coupon", "source_path": "$.data.coupon"},
        ):
            response = await client.post(f"{API}/datasets/{dataset_id}/fields", json=field, headers=tenant_headers)
            assert response.status_code == 201

    response = await client.post(
        f"{API}/connections/",
        json={
            "name": "shop",
            "dataset_id": dataset_id,
            "signing_secret": SECRET,
            "rate_limit_per_minute": rate_limit,
        },
        headers=tenant_headers,
    )
    assert response.status_code == 201
    return dataset_id, response.json()


async def _deliver(client, connection_id, payload, secret=SECRET, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {"Content-Type": "application/json", "X-Signature-256": signature or _sign(body, secret)}
    return await client.post(f"/webhooks/ingest?connection_id={connection_id}", content=body, headers=headers)


class TestIngest:

    async def test_accepts_signed_delivery(self, client, tenant_headers, sample_order_payload):
        dataset_id, connection = await _setup(client, tenant_headers)

        response = await _deliver(client, connection["id"], sample_order_payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["deduplicated"] is False
        assert body["extracted_fields"] == 3

        record = await client.get(f"{API}/datasets/{dataset_id}/records/{body['record_id']}", headers=tenant_headers)
        assert record.json()["status"] == "processed"
        assert record.json()["extracted_data"] == {
            "order_id": "ord_1001", "amount": 49.9, "email": "jane@example.com", "coupon": None,
        }

    async def test_documented_hmac_scenario(self, client, tenant_headers):
        _, connection = await _setup(client, tenant_headers)
        body = b'{"data":{"amount":2000,"customer":{"email":"a@b.com"}}}'

        response = await _deliver(client, connection["id"], body)

        assert response.status_code == 200
        # amount and email are present; order_id and coupon resolve to null
        assert response.json()["extracted_fields"] == 2

        tampered = body.replace(b"2000", b"20")
        rejected = await _deliver(client, connection["id"], tampered, signature=_sign(body))
        assert rejected.status_code == 401

    async def test_tampered_payload_rejected(self, client, tenant_headers, sample_order_payload):
        dataset_id, connection = await _setup(client, tenant_headers)
        body = json.dumps(sample_order_payload).encode()
        signature = _sign(body)
        tampered = body.replace(b"49.90", b"0.01")

        response = await _deliver(client, connection["id"], tampered, signature=signature)

        assert response.status_code == 401
        records = await client.get(f"{API}/datasets/{dataset_id}/records", headers=tenant_headers)
        assert records.json()["total"] == 0

        logs = await client.get(f"{API}/datasets/{dataset_id}/logs", headers=tenant_headers)
        entry = logs.json()[0]
        assert entry["status"] == "rejected_signature"
        assert entry["headers"]["x-signature-256"] == "[REDACTED]"

    async def test_missing_signature_rejected(self, client, tenant_headers, sample_order_payload):
        _, connection = await _setup(client, tenant_headers)

        response = await client.post(
            f"/webhooks/ingest?connection_id={connection['id']}", json=sample_order_payload,
        )

        assert response.status_code == 401

    async def test_redelivery_is_deduplicated(self, client, tenant_headers, sample_order_payload):
        dataset_id, connection = await _setup(client, tenant_headers)

        first = await _deliver(client, connection["id"], sample_order_payload)
        second = await _deliver(client, connection["id"], sample_order_payload)

        assert second.status_code == 200
        assert second.json()["record_id"] == first.json()["record_id"]
        assert second.json()["deduplicated"] is True

        records = await client.get(f"{API}/datasets/{dataset_id}/records", headers=tenant_headers)
        assert records.json()["total"] == 1

        logs = await client.get(f"{API}/datasets/{dataset_id}/logs", headers=tenant_headers)
        assert sorted(entry["status"] for entry in logs.json()) == ["duplicate", "success"]

    async def test_rate_limited(self, client, tenant_headers):
        _, connection = await _setup(client, tenant_headers, rate_limit=2)

        statuses = []
        for n in range(3):
            response = await _deliver(client, connection["id"], {"n": n})
            statuses.append(response.status_code)

        assert statuses == [200, 200, 429]
        assert "reset_at" in response.json()
        assert response.headers["Retry-After"] == response.json()["reset_at"]

    async def test_duplicates_do_not_consume_rate_limit(self, client, tenant_headers):
        _, connection = await _setup(client, tenant_headers, rate_limit=1)

        first = await _deliver(client, connection["id"], {"n": 1})
        again = await _deliver(client, connection["id"], {"n": 1})

        assert first.status_code == 200
        assert again.status_code == 200
        assert again.json()["deduplicated"] is True

    async def test_missing_connection_id(self, client):
        response = await client.post("/webhooks/ingest", content=b"{}")

        assert response.status_code == 400
        assert "connection_id" in response.json()["error"]

    async def test_unknown_connection(self, client):
        response = await _deliver(client, "does-not-exist", {"a": 1})

        assert response.status_code == 404

    async def test_inactive_connection(self, client, tenant_headers):
        _, connection = await _setup(client, tenant_headers)
        await client.delete(f"{API}/connections/{connection['id']}", headers=tenant_headers)

        response = await _deliver(client, connection["id"], {"a": 1})

        assert response.status_code == 404

    async def test_invalid_json(self, client, tenant_headers):
        dataset_id, connection = await _setup(client, tenant_headers)

        response = await _deliver(client, connection["id"], b"{not json")

        assert response.status_code == 400
        logs = await client.get(f"{API}/datasets/{dataset_id}/logs", headers=tenant_headers)
        assert logs.json()[0]["status"] == "invalid_payload"

    async def test_partial_extraction(self, client, tenant_headers):
        dataset_id, connection = await _setup(client, tenant_headers)

        response = await _deliver(client, connection["id"], {"data": {"order_id": "x", "amount": "lots"}})

        assert response.status_code == 200
        record = await client.get(
            f"{API}/datasets/{dataset_id}/records/{response.json()['record_id']}", headers=tenant_headers,
        )
        assert record.json()["status"] == "partial"
        assert record.json()["extracted_data"]["order_id"] == "x"
        assert record.json()["extracted_data"]["amount"] is None

    async def test_storage_timeout_keeps_no_record(self, client, tenant_headers, sample_order_payload, monkeypatch):
        dataset_id, connection = await _setup(client, tenant_headers)

        async def hang(db, record):
            db.add(record)
            await asyncio.sleep(5)

        monkeypatch.setattr(IngestionPipeline, "_persist", staticmethod(hang))
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.05)

        response = await _deliver(client, connection["id"], sample_order_payload)

        assert response.status_code == 503
        assert response.json()["error"]
        records = await client.get(f"{API}/datasets/{dataset_id}/records", headers=tenant_headers)
        assert records.json()["total"] == 0
        logs = await client.get(f"{API}/datasets/{dataset_id}/logs", headers=tenant_headers)
        assert logs.json()[0]["status"] == "failed"

    async def test_concurrent_identical_deliveries_store_one_record(self, client, tenant_headers, sample_order_payload):
        dataset_id, connection = await _setup(client, tenant_headers)

        first, second = await asyncio.gather(
            _deliver(client, connection["id"], sample_order_payload),
            _deliver(client, connection["id"], sample_order_payload),
        )

        assert first.status_code == 200 and second.status_code == 200
        assert first.json()["record_id"] == second.json()["record_id"]
        assert sorted([first.json()["deduplicated"], second.json()["deduplicated"]]) == [False, True]
        records = await client.get(f"{API}/datasets/{dataset_id}/records", headers=tenant_headers)
        assert records.json()["total"] == 1

    async def test_unassigned_then_backfilled(self, client, tenant_headers, sample_order_payload):
        _, connection = await _setup(client, tenant_headers, with_dataset=False)

        response = await _deliver(client, connection["id"], sample_order_payload)
        assert response.status_code == 200
        assert response.json()["extracted_fields"] == 0

        dataset = await client.post(f"{API}/datasets/", json={"name": "Late"}, headers=tenant_headers)
        dataset_id = dataset.json()["id"]
        await client.post(
            f"{API}/datasets/{dataset_id}/fields",
            json={"slug": "order_id", "name": "Order", "source_path": "$.data.order_id"},
            headers=tenant_headers,
        )
        await client.patch(
            f"{API}/connections/{connection['id']}", json={"dataset_id": dataset_id}, headers=tenant_headers,
        )

        backfill = await client.post(f"{API}/connections/{connection['id']}/backfill", headers=tenant_headers)

        assert backfill.json()["records_moved"] == 1
        records = await client.get(f"{API}/datasets/{dataset_id}/records", headers=tenant_headers)
        assert records.json()["records"][0]["extracted_data"] == {"order_id": "ord_1001"}
        assert records.json()["records"][0]["status"] == "processed"

    async def test_followups_update_connection_statistics(self, client, tenant_headers, sample_order_payload):
        _, connection = await _setup(client, tenant_headers)

        await _deliver(client, connection["id"], sample_order_payload)
        await _deliver(client, connection["id"], sample_order_payload)

        fetched = await client.get(f"{API}/connections/{connection['id']}", headers=tenant_headers)
        # The duplicate does not count as a new delivery
        assert fetched.json()["delivery_count"] == 1
        assert fetched.json()["last_used_at"] is not None

    async def test_followups_run_enrichment(self, client, tenant_headers, sample_order_payload):
        dataset_id, connection = await _setup(client, tenant_headers)
        await client.post(
            f"{API}/datasets/{dataset_id}/enrichments",
            json={
                "match_field": "email",
                "target_entity": "customer",
                "target_field": "email",
                "field_mappings": [{"source_field": "amount", "target_column": "last_amount"}],
                "auto_create": True,
            },
            headers=tenant_headers,
        )

        await _deliver(client, connection["id"], sample_order_payload)

        entities = await client.get(f"{API}/entities?entity_type=customer", headers=tenant_headers)
        assert entities.json()[0]["attributes"] == {"email": "jane@example.com", "last_amount": 49.9}
