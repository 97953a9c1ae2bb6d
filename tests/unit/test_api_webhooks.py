# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.
"""Unit tests for the Webhook API."""

import json
import uuid

import pytest

HOOK_BASE = "http://hooks.test"


async def register(client, headers, path="/ok", **overrides):
    body = {
        "resourceType": "invoice",
        "resourceId": "inv-1",
        "ownerType": headers["X-Owner-Type"],
        "ownerId": headers["X-Owner-Id"],
        "webhookType": "http",
        "webhookUrl": f"{HOOK_BASE}{path}",
        "headers": {"X-Token": "stored"},
        "connectionTimeout": 2,
        "requestTimeout": 5,
    }
    body.update(overrides)
    resp = await client.post("/api/webhooks/register", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register(self, client, owner_headers):
        hook = await register(client, owner_headers)
        assert hook["webhookUrl"] == f"{HOOK_BASE}/ok"
        assert hook["enabled"] is True
        assert hook["headers"] == {"X-Token": "stored"}

    @pytest.mark.asyncio
    async def test_duplicate_is_400(self, client, owner_headers):
        await register(client, owner_headers)
        resp = await client.post(
            "/api/webhooks/register",
            json={
                "resourceType": "invoice", "resourceId": "inv-1",
                "ownerType": "organization", "ownerId": "org-1",
                "webhookType": "http", "webhookUrl": f"{HOOK_BASE}/ok",
                "connectionTimeout": 1, "requestTimeout": 1,
            },
            headers=owner_headers,
        )
        assert resp.status_code == 400
        assert "already exists" in resp.json()["message"]

    @pytest.mark.asyncio
    async def test_unknown_type_or_bad_timeout_is_400(self, client, owner_headers):
        resp = await client.post(
            "/api/webhooks/register",
            json={
                "resourceType": "invoice", "resourceId": "inv-1",
                "webhookType": "grpc", "webhookUrl": f"{HOOK_BASE}/ok",
                "connectionTimeout": 0, "requestTimeout": 1,
            },
            headers=owner_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_register_for_someone_else_is_403(self, client, owner_headers):
        resp = await client.post(
            "/api/webhooks/register",
            json={
                "resourceType": "invoice", "resourceId": "inv-1",
                "ownerType": "organization", "ownerId": "org-9",
                "webhookUrl": f"{HOOK_BASE}/ok",
                "connectionTimeout": 1, "requestTimeout": 1,
            },
            headers=owner_headers,
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_get_and_patch(self, client, owner_headers, other_owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.patch(
            f"/api/webhooks/{hook['id']}", json={"enabled": False, "requestTimeout": 9}, headers=owner_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == hook["id"]
        assert (resp.json()["enabled"], resp.json()["requestTimeout"]) == (False, 9)

        resp = await client.get(f"/api/webhooks/{hook['id']}", headers=other_owner_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_patch_with_only_nulls_is_400(self, client, owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.patch(f"/api/webhooks/{hook['id']}", json={"enabled": None}, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_patch_into_duplicate_is_400(self, client, owner_headers):
        await register(client, owner_headers, path="/ok/a")
        second = await register(client, owner_headers, path="/ok/b")
        resp = await client.patch(
            f"/api/webhooks/{second['id']}", json={"webhookUrl": f"{HOOK_BASE}/ok/a"}, headers=owner_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_search_is_owner_scoped(self, client, owner_headers, other_owner_headers):
        await register(client, owner_headers, path="/ok/a")
        await register(client, owner_headers, path="/ok/b", resourceId="inv-2")
        await register(client, other_owner_headers, path="/ok/c")

        resp = await client.post("/api/webhooks/search", json={}, headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json()["total"] == 2

        resp = await client.post(
            "/api/webhooks/search",
            json={"resourceId": "inv-2", "limit": 1, "orderBy": "createdAt", "orderByDir": "ASC"},
            headers=owner_headers,
        )
        body = resp.json()
        assert (body["total"], body["limit"], body["offset"]) == (1, 1, 0)
        assert body["items"][0]["resourceId"] == "inv-2"

    @pytest.mark.asyncio
    async def test_search_rejects_unknown_order_and_big_limit(self, client, owner_headers):
        resp = await client.post("/api/webhooks/search", json={"orderBy": "password"}, headers=owner_headers)
        assert resp.status_code == 400
        resp = await client.post("/api/webhooks/search", json={"limit": 101}, headers=owner_headers)
        assert resp.status_code == 400


class TestTrigger:
    @pytest.mark.asyncio
    async def test_trigger_counts_and_history(self, client, owner_headers, delivered):
        ok = await register(client, owner_headers, path="/ok")
        await register(client, owner_headers, path="/timeout")

        resp = await client.post(
            "/api/webhooks/trigger",
            json={
                "resourceType": "invoice", "resourceId": "inv-1",
                "content": {"total": 5}, "headers": {"X-Token": "override"},
                "triggeredBy": "user-1",
            },
            headers=owner_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert (body["message"], body["success"], body["failure"]) == ("Trigger completed", 1, 1)
        assert {r.headers["X-Token"] for r in delivered} == {"override"}
        assert json.loads(delivered[0].content) == {"total": 5}

        resp = await client.post("/api/webhooks/runs/search", json={"resourceId": "inv-1"}, headers=owner_headers)
        runs = resp.json()["items"]
        assert len(runs) == 1
        assert runs[0]["id"] == body["runId"]
        assert (runs[0]["successCount"], runs[0]["failureCount"]) == (1, 1)
        assert runs[0]["completedAt"] is not None

        resp = await client.post(
            "/api/webhooks/executions/search",
            json={"webhookRunId": body["runId"], "result": "failure"},
            headers=owner_headers,
        )
        executions = resp.json()["items"]
        assert len(executions) == 1
        assert executions[0]["statusCode"] == 408

        resp = await client.post(
            "/api/webhooks/executions/search", json={"webhookId": ok["id"]}, headers=owner_headers,
        )
        assert resp.json()["items"][0]["result"] == "success"

    @pytest.mark.asyncio
    async def test_trigger_without_subscribers(self, client, owner_headers):
        resp = await client.post(
            "/api/webhooks/trigger",
            json={"resourceType": "invoice", "resourceId": "nobody", "content": {}, "triggeredBy": "u"},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        assert (resp.json()["success"], resp.json()["failure"]) == (0, 0)

    @pytest.mark.asyncio
    async def test_runs_order_by_failure_count(self, client, owner_headers):
        await register(client, owner_headers, path="/fail")
        for resource in ("inv-1", "inv-2"):
            await client.post(
                "/api/webhooks/trigger",
                json={"resourceType": "invoice", "resourceId": resource, "content": {}, "triggeredBy": "u"},
                headers=owner_headers,
            )
        resp = await client.post(
            "/api/webhooks/runs/search",
            json={"orderBy": "failureCount", "orderByDir": "DESC"},
            headers=owner_headers,
        )
        counts = [r["failureCount"] for r in resp.json()["items"]]
        assert counts == [1, 0]


class TestSchedules:
    @pytest.mark.asyncio
    async def test_create_and_update_schedule(self, client, owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.post(
            "/api/webhooks/schedules",
            json={"webhookId": hook["id"], "frequency": "*/5 * * * *", "content": {"k": 1}},
            headers=owner_headers,
        )
        assert resp.status_code == 201
        schedule = resp.json()
        assert schedule["enabled"] is True
        assert schedule["nextRunAt"] is not None
        assert schedule["lastRunAt"] is None

        resp = await client.patch(
            f"/api/webhooks/schedules/{schedule['id']}",
            json={"frequency": "0 0 1 1 *", "enabled": False},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        updated = resp.json()
        assert updated["frequency"] == "0 0 1 1 *"
        assert updated["enabled"] is False
        assert updated["nextRunAt"] != schedule["nextRunAt"]

        resp = await client.post(
            "/api/webhooks/schedules/search", json={"webhookId": hook["id"]}, headers=owner_headers,
        )
        assert resp.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_schedule_patch_with_only_nulls_is_400(self, client, owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.post(
            "/api/webhooks/schedules",
            json={"webhookId": hook["id"], "frequency": "* * * * *", "content": {}},
            headers=owner_headers,
        )
        resp = await client.patch(
            f"/api/webhooks/schedules/{resp.json()['id']}",
            json={"enabled": None, "frequency": None},
            headers=owner_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_cron_is_400(self, client, owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.post(
            "/api/webhooks/schedules",
            json={"webhookId": hook["id"], "frequency": "* * *", "content": {}},
            headers=owner_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "CONFIG_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_webhook_is_404(self, client, owner_headers):
        resp = await client.post(
            "/api/webhooks/schedules",
            json={"webhookId": str(uuid.uuid4()), "frequency": "* * * * *", "content": {}},
            headers=owner_headers,
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_foreign_schedule_is_404(self, client, owner_headers, other_owner_headers):
        hook = await register(client, owner_headers)
        resp = await client.post(
            "/api/webhooks/schedules",
            json={"webhookId": hook["id"], "frequency": "* * * * *", "content": {}},
            headers=owner_headers,
        )
        resp = await client.patch(
            f"/api/webhooks/schedules/{resp.json()['id']}", json={"enabled": False}, headers=other_owner_headers,
        )
        assert resp.status_code == 404
        resp = await client.post("/api/webhooks/schedules/search", json={}, headers=other_owner_headers)
        assert resp.json()["total"] == 0
