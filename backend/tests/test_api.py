"""Tests for the configuration API, health and metrics endpoints."""

import json

API = "/api/v1"


async def _dataset(client, headers, name="Orders"):
    response = await client.post(f"{API}/datasets/", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


async def _open_connection(client, headers, dataset_id):
    response = await client.post(
        f"{API}/connections/",
        json={"name": "open", "dataset_id": dataset_id, "signature_scheme": "none"},
        headers=headers,
    )
    return response.json()["id"]


async def _ingest(client, connection_id, payload):
    return await client.post(
        f"/webhooks/ingest?connection_id={connection_id}",
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json"},
    )


class TestHealthAndMetrics:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")
        body = response.json()
        assert body["checks"]["database"] == "healthy"
        assert body["checks"]["cache"] == "disabled"

    async def test_metrics(self, client):
        await client.get("/health")
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["ingest"] == "/webhooks/ingest"


class TestTenantScoping:

    async def test_missing_tenant_header(self, client):
        response = await client.get(f"{API}/datasets/")
        assert response.status_code == 400
        assert "X-Tenant-ID" in response.json()["error"]

    async def test_other_tenant_cannot_see_dataset(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)

        response = await client.get(f"{API}/datasets/{dataset_id}", headers={"X-Tenant-ID": "tenant-b"})

        assert response.status_code == 404

    async def test_listing_is_per_tenant(self, client, tenant_headers):
        await _dataset(client, tenant_headers)

        response = await client.get(f"{API}/datasets/", headers={"X-Tenant-ID": "tenant-b"})

        assert response.json() == []


class TestDatasets:

    async def test_fields(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)
        field = {"slug": "amount", "name": "Amount", "field_type": "number", "source_path": "$.amount"}

        created = await client.post(f"{API}/datasets/{dataset_id}/fields", json=field, headers=tenant_headers)
        duplicate = await client.post(f"{API}/datasets/{dataset_id}/fields", json=field, headers=tenant_headers)
        listed = await client.get(f"{API}/datasets/{dataset_id}/fields", headers=tenant_headers)

        assert created.status_code == 201
        assert duplicate.status_code == 409
        assert [f["slug"] for f in listed.json()] == ["amount"]

    async def test_field_needs_exactly_one_source(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)

        response = await client.post(
            f"{API}/datasets/{dataset_id}/fields",
            json={"slug": "total", "name": "Total", "source_path": "$.total", "formula": "a * b"},
            headers=tenant_headers,
        )

        assert response.status_code == 400

    async def test_schema_validation_error_shape(self, client, tenant_headers):
        response = await client.post(f"{API}/datasets/", json={}, headers=tenant_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    async def test_delete_refused_while_records_exist(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)
        connection_id = await _open_connection(client, tenant_headers, dataset_id)
        assert (await _ingest(client, connection_id, {"a": 1})).status_code == 200

        refused = await client.delete(f"{API}/datasets/{dataset_id}", headers=tenant_headers)
        assert refused.status_code == 409

        purged = await client.post(f"{API}/datasets/{dataset_id}/records/purge", headers=tenant_headers)
        assert purged.json()["deleted"] == 1

        deleted = await client.delete(f"{API}/datasets/{dataset_id}", headers=tenant_headers)
        assert deleted.status_code == 204

        connection = await client.get(f"{API}/connections/{connection_id}", headers=tenant_headers)
        assert connection.json()["dataset_id"] is None

    async def test_records_filtered_by_status(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)
        await client.post(
            f"{API}/datasets/{dataset_id}/fields",
            json={"slug": "amount", "name": "Amount", "field_type": "number", "source_path": "$.amount"},
            headers=tenant_headers,
        )
        connection_id = await _open_connection(client, tenant_headers, dataset_id)
        await _ingest(client, connection_id, {"amount": 5})
        await _ingest(client, connection_id, {"amount": "five"})

        partial = await client.get(f"{API}/datasets/{dataset_id}/records?status=partial", headers=tenant_headers)

        assert partial.json()["total"] == 1
        assert partial.json()["records"][0]["raw_payload"] == {"amount": "five"}


class TestConnections:

    async def test_secret_only_returned_on_create(self, client, tenant_headers):
        created = await client.post(f"{API}/connections/", json={"name": "shop"}, headers=tenant_headers)

        assert created.status_code == 201
        assert len(created.json()["signing_secret"]) == 64
        assert created.json()["signature_scheme"] == "hmac-sha256"

        fetched = await client.get(f"{API}/connections/{created.json()['id']}", headers=tenant_headers)
        assert "signing_secret" not in fetched.json()

    async def test_unknown_dataset_rejected(self, client, tenant_headers):
        response = await client.post(
            f"{API}/connections/", json={"name": "shop", "dataset_id": "missing"}, headers=tenant_headers,
        )
        assert response.status_code == 404

    async def test_update_and_deactivate(self, client, tenant_headers):
        created = await client.post(f"{API}/connections/", json={"name": "shop"}, headers=tenant_headers)
        connection_id = created.json()["id"]

        updated = await client.patch(
            f"{API}/connections/{connection_id}", json={"rate_limit_per_minute": 10}, headers=tenant_headers,
        )
        deactivated = await client.delete(f"{API}/connections/{connection_id}", headers=tenant_headers)
        active = await client.get(f"{API}/connections/?include_inactive=false", headers=tenant_headers)

        assert updated.json()["rate_limit_per_minute"] == 10
        assert deactivated.json()["is_active"] is False
        assert active.json() == []

    async def test_backfill_without_dataset(self, client, tenant_headers):
        created = await client.post(f"{API}/connections/", json={"name": "shop"}, headers=tenant_headers)

        response = await client.post(f"{API}/connections/{created.json()['id']}/backfill", headers=tenant_headers)

        assert response.status_code == 400


class TestCalculatedFieldsAndAlerts:

    async def _orders(self, client, headers):
        dataset_id = await _dataset(client, headers)
        await client.post(
            f"{API}/datasets/{dataset_id}/fields",
            json={"slug": "amount", "name": "Amount", "field_type": "number", "source_path": "$.amount"},
            headers=headers,
        )
        connection_id = await _open_connection(client, headers, dataset_id)
        for amount in (10, 20, 30):
            await _ingest(client, connection_id, {"amount": amount})
        return dataset_id

    async def test_calculated_field_value(self, client, tenant_headers):
        dataset_id = await self._orders(client, tenant_headers)
        base = f"{API}/datasets/{dataset_id}/calculated-fields"

        created = await client.post(
            f"{base}/",
            json={"slug": "revenue", "name": "Revenue", "formula_type": "aggregate", "formula": "SUM(amount)"},
            headers=tenant_headers,
        )
        value = await client.get(f"{base}/revenue/value", headers=tenant_headers)
        values = await client.get(f"{base}/values", headers=tenant_headers)

        assert created.status_code == 201
        assert value.json()["current"] == 60
        assert [v["slug"] for v in values.json()] == ["revenue"]

    async def test_invalid_formula_is_400(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)

        response = await client.post(
            f"{API}/datasets/{dataset_id}/calculated-fields/",
            json={"slug": "bad", "name": "Bad", "formula_type": "ratio", "formula": "SUM(amount)"},
            headers=tenant_headers,
        )

        assert response.status_code == 400

    async def test_unknown_calculated_field_is_404(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)

        response = await client.get(
            f"{API}/datasets/{dataset_id}/calculated-fields/nope/value", headers=tenant_headers,
        )

        assert response.status_code == 404

    async def test_alert_dry_run_and_evaluate(self, client, tenant_headers):
        dataset_id = await self._orders(client, tenant_headers)
        created = await client.post(
            f"{API}/datasets/{dataset_id}/alerts",
            json={
                "name": "Big day",
                "condition": {"field": "amount", "aggregation": "sum", "operator": ">", "value": 50},
            },
            headers=tenant_headers,
        )
        alert_id = created.json()["id"]

        dry = await client.post(f"{API}/datasets/{dataset_id}/alerts/evaluate?dry_run=true", headers=tenant_headers)
        assert dry.json()["results"][0]["triggered"] is True
        assert dry.json()["results"][0]["dispatched"] is False

        real = await client.post(f"{API}/datasets/{dataset_id}/alerts/evaluate", headers=tenant_headers)
        assert real.json()["results"][0]["delivered"] is True

        events = await client.get(f"{API}/alerts/{alert_id}/events", headers=tenant_headers)
        assert len(events.json()) == 1
        assert events.json()[0]["value"] == 60

    async def test_invalid_alert_condition(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)

        response = await client.post(
            f"{API}/datasets/{dataset_id}/alerts",
            json={"name": "Bad", "condition": {"operator": ">"}},
            headers=tenant_headers,
        )

        assert response.status_code == 400

    async def test_alerts_of_other_tenant_hidden(self, client, tenant_headers):
        dataset_id = await _dataset(client, tenant_headers)
        created = await client.post(
            f"{API}/datasets/{dataset_id}/alerts",
            json={"name": "Any", "condition": {"aggregation": "count", "operator": ">", "value": 0}},
            headers=tenant_headers,
        )

        response = await client.get(f"{API}/alerts/{created.json()['id']}", headers={"X-Tenant-ID": "tenant-b"})

        assert response.status_code == 404
