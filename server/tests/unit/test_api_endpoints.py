"""Unit tests for API endpoints."""

from decimal import Decimal

import pytest

from conftest import make_booking
from tourdesk.services.grouping_service import GroupingService

RANGE = {"start_date": "2026-11-01", "end_date": "2026-11-10"}


async def run_sync(client, **body):
    return await client.post("/v1/sync/run", json={**RANGE, **body})


async def grouped_tours(client, fake_channel, *booking_ids):
    """Sync bookings and return the single group they form."""
    fake_channel.add(*[make_booking(booking_id) for booking_id in booking_ids])
    assert (await run_sync(client)).status_code == 200
    groups = (await client.get("/v1/tour-groups", params={"date": "2026-11-02"})).json()
    assert len(groups) == 1
    return groups[0]


async def create_guide(client, name="Elena", **fields):
    response = await client.post("/v1/guides", json={"name": name, "languages": ["Italian"], **fields})
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_sync_run(test_client, fake_channel):
    """Test a sync run over the API."""
    fake_channel.add(make_booking(1), make_booking(2))

    response = await run_sync(test_client, triggered_by="dispatcher")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["total_bookings"] == 2
    assert data["synced_count"] == 2
    assert data["groups_created"] == 1
    assert data["trigger"] == "manual"
    assert data["start_date"] == "2026-11-01"


@pytest.mark.asyncio
async def test_sync_run_reports_item_errors(test_client, fake_channel):
    broken = make_booking(2)
    broken["productBookings"][0]["product"] = {"id": 501}
    fake_channel.add(make_booking(1), broken)

    data = (await run_sync(test_client)).json()

    assert data["status"] == "partial"
    assert data["failed_count"] == 1
    assert data["errors"][0]["external_id"] == "2"


@pytest.mark.asyncio
async def test_sync_run_invalid_range(test_client):
    response = await test_client.post(
        "/v1/sync/run", json={"start_date": "2026-11-10", "end_date": "2026-11-01"}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sync_run_channel_auth_failure(test_client, fake_channel):
    """Test that an auth failure aborts with a problem details body."""
    fake_channel.fail_status = 401

    response = await run_sync(test_client)

    assert response.status_code == 502
    data = response.json()
    assert data["code"] == "CHANNEL_AUTH"
    assert data["title"] == "Sync Aborted"
    assert data["summary"]["status"] == "failed"


@pytest.mark.asyncio
async def test_sync_run_while_locked(test_client, sync_lock, test_settings):
    """Test that a second run is refused while the lock is held."""
    async with sync_lock.hold(test_settings.tenant_key, timeout=1):
        response = await run_sync(test_client)

    assert response.status_code == 409
    assert response.json()["code"] == "SYNC_IN_PROGRESS"


@pytest.mark.asyncio
async def test_sync_cancel_when_idle(test_client):
    response = await test_client.post("/v1/sync/cancel")

    assert response.status_code == 200
    assert response.json() == {"cancel_requested": False, "running": False}


@pytest.mark.asyncio
async def test_sync_history_and_info(test_client, fake_channel):
    """Test history and info after one run."""
    fake_channel.add(make_booking(1))
    await run_sync(test_client)

    history = (await test_client.get("/v1/sync/history", params={"limit": 5})).json()
    info = (await test_client.get("/v1/sync/info")).json()

    assert len(history) == 1
    assert history[0]["status"] == "completed"
    assert history[0]["bookings_created"] == 1
    assert info["running"] is False
    assert info["last_sync"]["id"] == history[0]["id"]


@pytest.mark.asyncio
async def test_sync_connection_test(test_client, fake_channel):
    ok = await test_client.get("/v1/sync/test")
    fake_channel.fail_status = 403
    failed = await test_client.get("/v1/sync/test")

    assert ok.status_code == 200
    assert ok.json()["success"] is True
    assert failed.status_code == 502
    assert failed.json()["success"] is False


@pytest.mark.asyncio
async def test_booking_webhook(test_client, fake_channel):
    """Test that a booking webhook syncs that booking only."""
    fake_channel.add(make_booking(31), make_booking(32))

    response = await test_client.post(
        "/v1/webhooks/booking",
        json={"bookingId": 31},
        headers={"X-Bokun-Topic": "bookings/update"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "processed"
    assert data["summary"]["sync_type"] == "single"
    assert data["summary"]["created_count"] == 1
    tours = (await test_client.get("/v1/tours")).json()
    assert [tour["external_id"] for tour in tours] == ["31"]


@pytest.mark.asyncio
async def test_webhook_other_topic_ignored(test_client):
    response = await test_client.post(
        "/v1/webhooks/booking", json={}, headers={"X-Bokun-Topic": "products/update"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


@pytest.mark.asyncio
async def test_webhook_without_booking_id(test_client):
    response = await test_client.post(
        "/v1/webhooks/booking", json={}, headers={"X-Bokun-Topic": "bookings/create"}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_list_and_get_groups(test_client, fake_channel):
    """Test group listing and detail."""
    group = await grouped_tours(test_client, fake_channel, 1, 2)

    assert group["total_pax"] == 4
    assert group["max_pax"] == 9
    assert group["is_manual_merge"] is False
    assert [tour["external_id"] for tour in group["tours"]] == ["1", "2"]

    detail = await test_client.get(f"/v1/tour-groups/{group['id']}")
    assert detail.status_code == 200
    assert detail.json()["group_date"] == "2026-11-02"
    assert detail.json()["group_time"] == "10:00:00"

    missing = await test_client.get("/v1/tour-groups/9999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_auto_group_endpoint(test_client, fake_channel, test_settings):
    """Test auto-grouping over the API after a sync without grouping."""
    test_settings.auto_group_after_sync = False
    fake_channel.add(make_booking(1), make_booking(2), make_booking(3, start_time_str="15:00"))
    await run_sync(test_client)

    response = await test_client.post("/v1/tour-groups/auto-group", json=RANGE)

    assert response.status_code == 200
    data = response.json()
    assert data["groups_created"] == 1
    assert data["tours_grouped"] == 2
    assert data["groups"][0]["total_pax"] == 4


@pytest.mark.asyncio
async def test_manual_merge_and_unmerge(test_client, fake_channel, test_settings):
    """Test the manual merge and unmerge lifecycle."""
    test_settings.auto_group_after_sync = False
    fake_channel.add(make_booking(1), make_booking(2, title="Accademia Tour", start_time_str="14:00"))
    await run_sync(test_client)
    tour_ids = [tour["id"] for tour in (await test_client.get("/v1/tours")).json()]

    merged = await test_client.post(
        "/v1/tour-groups/manual-merge", json={"tour_ids": tour_ids, "display_name": "Family day"}
    )
    assert merged.status_code == 200
    group = merged.json()
    assert group["is_manual_merge"] is True
    assert group["display_name"] == "Family day"
    assert len(group["tours"]) == 2

    unmerged = await test_client.post("/v1/tour-groups/unmerge", json={"tour_id": tour_ids[0]})
    assert unmerged.status_code == 200
    assert unmerged.json()["group_dissolved"] is True
    assert (await test_client.get(f"/v1/tour-groups/{group['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_manual_merge_rejections(test_client, fake_channel, test_settings):
    test_settings.auto_group_after_sync = False
    fake_channel.add(make_booking(1, categories={"ADULT": 5}), make_booking(2, categories={"ADULT": 5}))
    await run_sync(test_client)
    tour_ids = [tour["id"] for tour in (await test_client.get("/v1/tours")).json()]

    too_big = await test_client.post("/v1/tour-groups/manual-merge", json={"tour_ids": tour_ids})
    too_few = await test_client.post("/v1/tour-groups/manual-merge", json={"tour_ids": tour_ids[:1]})

    assert too_big.status_code == 409
    assert too_big.json()["code"] == "GROUP_CAPACITY_EXCEEDED"
    assert too_few.status_code == 422


@pytest.mark.asyncio
async def test_unexpected_error_is_problem_details(test_client, monkeypatch):
    """Test that an unexpected failure in a route surfaces as a 500 problem with an error id."""
    async def explode(self, *args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(GroupingService, "manual_merge", explode)

    response = await test_client.post("/v1/tour-groups/manual-merge", json={"tour_ids": [1, 2]})

    assert response.status_code == 500
    assert response.headers["content-type"] == "application/problem+json"
    body = response.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert body["error_id"]
    assert "disk on fire" not in response.text


@pytest.mark.asyncio
async def test_group_guide_assignment(test_client, fake_channel):
    """Test that a group guide reaches every member tour."""
    group = await grouped_tours(test_client, fake_channel, 1, 2)
    guide = await create_guide(test_client)

    response = await test_client.put(f"/v1/tour-groups/{group['id']}/guide", json={"guide_id": guide["id"]})

    assert response.status_code == 200
    assert response.json()["guide_name"] == "Elena"
    tours = (await test_client.get("/v1/tours")).json()
    assert all(tour["guide_id"] == guide["id"] for tour in tours)
    assert all(tour["needs_guide_assignment"] is False for tour in tours)
    assert (await test_client.get("/v1/tours/unassigned")).json() == []

    unknown = await test_client.put(f"/v1/tour-groups/{group['id']}/guide", json={"guide_id": 404})
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_update_group(test_client, fake_channel):
    """Test PATCH on a group, including clearing the guide with null."""
    group = await grouped_tours(test_client, fake_channel, 1, 2)
    guide = await create_guide(test_client)

    renamed = await test_client.patch(
        f"/v1/tour-groups/{group['id']}", json={"display_name": "Uffizi 10:00", "guide_id": guide["id"]}
    )
    cleared = await test_client.patch(f"/v1/tour-groups/{group['id']}", json={"guide_id": None})
    empty = await test_client.patch(f"/v1/tour-groups/{group['id']}", json={})

    assert renamed.status_code == 200
    assert renamed.json()["display_name"] == "Uffizi 10:00"
    assert renamed.json()["guide_id"] == guide["id"]
    assert cleared.json()["guide_id"] is None
    assert cleared.json()["display_name"] == "Uffizi 10:00"
    assert empty.status_code == 400


@pytest.mark.asyncio
async def test_dissolve_and_recalculate_group(test_client, fake_channel):
    group = await grouped_tours(test_client, fake_channel, 1, 2, 3)

    recalculated = await test_client.post(f"/v1/tour-groups/{group['id']}/recalculate")
    dissolved = await test_client.delete(f"/v1/tour-groups/{group['id']}")

    assert recalculated.json()["group"]["total_pax"] == 6
    assert dissolved.status_code == 200
    assert dissolved.json() == {"success": True, "tours_released": 3}
    assert (await test_client.get("/v1/tour-groups")).json() == []


@pytest.mark.asyncio
async def test_tour_endpoints(test_client, fake_channel):
    """Test tour listing, guide override, cancellation and notes."""
    group = await grouped_tours(test_client, fake_channel, 1, 2, 3)
    guide = await create_guide(test_client, name="Bruno")
    tour_id = group["tours"][0]["id"]

    fetched = await test_client.get(f"/v1/tours/{tour_id}")
    assert fetched.status_code == 200
    assert fetched.json()["participants"] == 2

    assigned = await test_client.put(f"/v1/tours/{tour_id}/guide", json={"guide_id": guide["id"]})
    assert assigned.json()["guide_id"] == guide["id"]
    assert (await test_client.get(f"/v1/tour-groups/{group['id']}")).json()["guide_name"] == "Bruno"

    cancelled = await test_client.post(f"/v1/tours/{tour_id}/cancel", json={"cancelled": True})
    assert cancelled.json()["cancelled_locally"] is True
    assert cancelled.json()["is_cancelled"] is True
    assert (await test_client.get(f"/v1/tour-groups/{group['id']}")).json()["total_pax"] == 4
    assert len((await test_client.get("/v1/tours")).json()) == 2
    assert len((await test_client.get("/v1/tours", params={"include_cancelled": True})).json()) == 3

    noted = await test_client.patch(f"/v1/tours/{tour_id}/notes", json={"notes": "Call on arrival"})
    assert noted.json()["notes"] == "Call on arrival"

    assert (await test_client.get("/v1/tours/9999")).status_code == 404


@pytest.mark.asyncio
async def test_guide_endpoints(test_client):
    guide = await create_guide(test_client, name="Irene", email="irene@example.com")

    listed = await test_client.get("/v1/guides")
    fetched = await test_client.get(f"/v1/guides/{guide['id']}")

    assert [item["name"] for item in listed.json()] == ["Irene"]
    assert fetched.json()["email"] == "irene@example.com"
    assert (await test_client.get("/v1/guides/9999")).status_code == 404
    assert (await test_client.post("/v1/guides", json={"name": ""})).status_code == 422


@pytest.mark.asyncio
async def test_payment_endpoints(test_client, fake_channel):
    """Test recording, listing and deleting payments."""
    fake_channel.add(make_booking(1))
    await run_sync(test_client)
    tour_id = (await test_client.get("/v1/tours")).json()[0]["id"]

    recorded = await test_client.post("/v1/payments", json={"tour_id": tour_id, "amount": "50.00"})
    assert recorded.status_code == 201
    data = recorded.json()
    assert data["tour"]["payment_status"] == "partial"
    assert Decimal(data["tour"]["expected_amount"]) == Decimal("120")

    second = await test_client.post("/v1/payments", json={"tour_id": tour_id, "amount": "70.00"})
    assert second.json()["tour"]["payment_status"] == "paid"

    payments = (await test_client.get(f"/v1/payments/tour/{tour_id}")).json()
    assert [Decimal(payment["amount"]) for payment in payments] == [Decimal("50"), Decimal("70")]

    deleted = await test_client.delete(f"/v1/payments/{payments[1]['id']}")
    assert deleted.json()["payment_status"] == "partial"
    assert Decimal(deleted.json()["total_amount_paid"]) == Decimal("50")

    assert (await test_client.post("/v1/payments", json={"tour_id": tour_id, "amount": "0"})).status_code == 422
    assert (await test_client.post("/v1/payments", json={"tour_id": 9999, "amount": "5"})).status_code == 404
