import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from incubator.common import ServiceSettings, create_engine, dispose_engines
from incubator.inventory_service.app.main import create_app
from incubator.inventory_service.app.models import Base

_REQUESTER = {"X-Actor-Id": "founder-1", "X-Actor-Role": "member"}
_MANAGER = {"X-Actor-Id": "mgr-1", "X-Actor-Role": "manager"}
_DIRECTOR = {"X-Actor-Id": "dir-1", "X-Actor-Role": "director"}


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "requests.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = ServiceSettings(
        app_name="Inventory Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        reservation_sweep_interval_seconds=0,
    )
    return create_app(settings)


async def _create_item(client: AsyncClient, **overrides: Any) -> int:
    payload = {"name": "Soldering station", "totalQuantity": 10, "minStockLevel": 1}
    payload.update(overrides)
    response = await client.post("/inventory", json=payload, headers=_MANAGER)
    assert response.status_code == 201
    return response.json()["id"]


def test_request_lifecycle_over_http(tmp_path) -> None:
    async def body() -> None:
        app = await _prepare_app(tmp_path)
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                item_id = await _create_item(client)

                create_resp = await client.post(
                    "/requests",
                    json={
                        "teamId": "team-a",
                        "title": "Hardware night",
                        "priority": "high",
                        "items": [{"inventoryItemId": item_id, "quantity": 4}],
                        "approvalChain": [{"approverRole": "manager"}, {"approverRole": "director"}],
                    },
                    headers=_REQUESTER,
                )
                assert create_resp.status_code == 201
                created = create_resp.json()
                assert created["status"] == "draft"
                assert created["requestNumber"].startswith("REQ-")
                assert [step["approverRole"] for step in created["approvalChain"]] == ["manager", "director"]
                request_id = created["id"]

                added = await client.post(
                    f"/requests/{request_id}/items",
                    json={"itemName": "Custom PCB", "quantity": 2},
                    headers=_REQUESTER,
                )
                assert added.status_code == 200
                lines = added.json()["items"]
                assert [line["itemName"] for line in lines] == ["Soldering station", "Custom PCB"]
                tool_line, pcb_line = (line["id"] for line in lines)

                submit = await client.post(f"/requests/{request_id}/submit", headers=_REQUESTER)
                assert submit.json()["status"] == "pending_review"

                own = await client.post(
                    f"/requests/{request_id}/approvals/1", json={"decision": "approved"}, headers=_REQUESTER
                )
                assert own.status_code == 403
                assert own.json()["code"] == "permission_denied"

                first = await client.post(
                    f"/requests/{request_id}/approvals/1",
                    json={"decision": "approved", "granted": {str(tool_line): 3}, "comments": "trim"},
                    headers=_MANAGER,
                )
                assert first.status_code == 200
                assert first.json()["approvals"][0]["granted"] == {str(tool_line): 3, str(pcb_line): 2}

                raise_grant = await client.post(
                    f"/requests/{request_id}/approvals/2",
                    json={"decision": "approved", "granted": {str(tool_line): 4}},
                    headers=_DIRECTOR,
                )
                assert raise_grant.status_code == 422
                assert raise_grant.json()["code"] == "invalid_quantity"

                final = await client.post(
                    f"/requests/{request_id}/approvals/2", json={"decision": "approved"}, headers=_DIRECTOR
                )
                assert final.status_code == 200
                decided = final.json()
                assert decided["status"] == "partially_approved"
                assert [line["distributedQuantity"] for line in decided["items"]] == [3, 0]

                item = (await client.get(f"/inventory/{item_id}")).json()
                assert item["availableQuantity"] == 7

                cancel = await client.post(f"/requests/{request_id}/cancel", json={"reason": "late"}, headers=_REQUESTER)
                assert cancel.status_code == 409

                for step in ("ordered", "delivered"):
                    delivery = await client.post(
                        f"/requests/{request_id}/delivery", json={"deliveryStatus": step}, headers=_MANAGER
                    )
                    assert delivery.status_code == 200
                assert delivery.json()["deliveryStatus"] == "delivered"

                fetched = await client.get(f"/requests/{request_id}")
                actions = [entry["action"] for entry in fetched.json()["history"]]
                assert actions[0] == "created"
                assert actions[-1] == "delivery_status_changed"

                listing = await client.get("/requests", params={"teamId": "team-a", "status": "partially_approved"})
                assert listing.json()["total"] == 1
                assert (await client.get("/requests/404")).status_code == 404
        await dispose_engines()

    _run(body())


def test_delegated_approver_can_decide(tmp_path) -> None:
    async def body() -> None:
        app = await _prepare_app(tmp_path)
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                item_id = await _create_item(client)
                created = await client.post(
                    "/requests",
                    json={"teamId": "team-b", "title": "Loaner", "items": [{"inventoryItemId": item_id, "quantity": 1}]},
                    headers=_REQUESTER,
                )
                request_id = created.json()["id"]
                await client.post(f"/requests/{request_id}/submit", headers=_REQUESTER)

                delegate = await client.post(
                    f"/requests/{request_id}/approvals/1/delegate",
                    json={"delegateTo": "lead-4"},
                    headers=_DIRECTOR,
                )
                assert delegate.status_code == 200
                assert delegate.json()["approvalChain"][0]["delegatedTo"] == "lead-4"

                decided = await client.post(
                    f"/requests/{request_id}/approvals/1",
                    json={"decision": "declined", "comments": "not this week"},
                    headers={"X-Actor-Id": "lead-4", "X-Actor-Role": "team_lead"},
                )
                assert decided.status_code == 200
                assert decided.json()["status"] == "declined"
                assert decided.json()["approvals"][-1]["decision"] == "declined"
        await dispose_engines()

    _run(body())


def test_forecasting_endpoints(tmp_path) -> None:
    async def body() -> None:
        app = await _prepare_app(tmp_path)
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                filters = await _create_item(
                    client, name="Coffee filters", isConsumable=True, totalQuantity=2, minStockLevel=10, reorderQuantity=25
                )

                report = await client.get("/forecasting")
                assert report.status_code == 200
                entries = report.json()["items"]
                assert [entry["itemId"] for entry in entries] == [filters]
                assert entries[0]["urgency"] == "high"
                assert entries[0]["suggestedQuantity"] == 25
                assert report.json()["lookAheadDays"] == 30

                short = await client.get("/forecasting", params={"lookAheadDays": 7})
                assert short.json()["lookAheadDays"] == 7

                forbidden = await client.post(
                    "/forecasting/auto-requests", json={"teamId": "team-a", "dryRun": False}, headers=_REQUESTER
                )
                assert forbidden.status_code == 403

                preview = await client.post("/forecasting/auto-requests", json={}, headers=_REQUESTER)
                assert preview.status_code == 200
                assert preview.json()["dryRun"] is True
                assert preview.json()["skipped"][0]["code"] == "no_target_team"

                commit = await client.post(
                    "/forecasting/auto-requests", json={"teamId": "team-a", "dryRun": False}, headers=_MANAGER
                )
                assert commit.status_code == 200
                outcome = commit.json()["created"][0]
                assert outcome["suggestedQuantity"] == 25

                draft = await client.get(f"/requests/{outcome['requestId']}")
                assert draft.json()["status"] == "draft"
                assert draft.json()["items"][0]["quantity"] == 25
        await dispose_engines()

    _run(body())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield


def test_request_templates_over_http(tmp_path) -> None:
    async def body() -> None:
        app = await _prepare_app(tmp_path)
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                item_id = await _create_item(client)
                template_payload = {
                    "name": "Demo day",
                    "category": "events",
                    "isPublic": True,
                    "items": [{"inventoryItemId": item_id, "quantity": 2}, {"itemName": "Banner", "quantity": 1}],
                }

                create_resp = await client.post("/request-templates", json=template_payload, headers=_REQUESTER)
                assert create_resp.status_code == 201
                template = create_resp.json()
                assert template["createdBy"] == "founder-1"
                assert [line["quantity"] for line in template["items"]] == [2, 1]
                assert template["items"][0]["inventoryItemId"] == item_id

                duplicate = await client.post("/request-templates", json=template_payload, headers=_REQUESTER)
                assert duplicate.status_code == 409

                private_resp = await client.post(
                    "/request-templates",
                    json={"name": "Mine", "items": [{"itemName": "Tape", "quantity": 1}]},
                    headers=_REQUESTER,
                )
                private_id = private_resp.json()["id"]
                hidden = await client.get(f"/request-templates/{private_id}", headers=_DIRECTOR)
                assert hidden.status_code == 403

                listing = await client.get("/request-templates", params={"category": "events"}, headers=_DIRECTOR)
                assert [entry["name"] for entry in listing.json()] == ["Demo day"]

                draft_resp = await client.post(
                    f"/request-templates/{template['id']}/requests",
                    json={"teamId": "team-c"},
                    headers=_REQUESTER,
                )
                assert draft_resp.status_code == 201
                draft = draft_resp.json()
                assert draft["status"] == "draft"
                assert draft["title"] == "Demo day"
                assert [item["itemName"] for item in draft["items"]] == ["Soldering station", "Banner"]
                assert draft["history"][0]["notes"] == "created from template 'Demo day'"

                missing = await client.post(
                    "/request-templates/999/requests", json={"teamId": "team-c"}, headers=_REQUESTER
                )
                assert missing.status_code == 404

                outsider = {"X-Actor-Id": "member-9", "X-Actor-Role": "member"}
                forbidden = await client.delete(f"/request-templates/{template['id']}", headers=outsider)
                assert forbidden.status_code == 403
                deleted = await client.delete(f"/request-templates/{template['id']}", headers=_MANAGER)
                assert deleted.status_code == 204
                gone = await client.get(f"/request-templates/{template['id']}", headers=_REQUESTER)
                assert gone.status_code == 404

        await dispose_engines()

    _run(body())
