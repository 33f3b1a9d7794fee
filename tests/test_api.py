"""HTTP-level tests — routing, auth, RFC 7807 errors, and the happy paths
of the leave and off-day endpoints."""

from __future__ import annotations

from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import (
    auth_headers_for,
    create_access_token,
    seed_membership,
    seed_plan,
)

LEAVES = "/api/v1/leave-requests"
REVIEW = "/api/v1/mess/leave-requests"
OFF_DAYS = "/api/v1/mess/off-days"


def _leave_body(plan, start="2026-03-10", end="2026-03-12", **extra) -> dict:
    return {"meal_plan_ids": [str(plan.id)], "start_date": start, "end_date": end, **extra}


@pytest.fixture
async def seeded(db: AsyncSession, owner, member, mess):
    """Plan + membership + auth headers, committed so the app's session sees them."""
    plan = await seed_plan(db, mess)
    await seed_membership(db, member, plan)
    member_headers = await auth_headers_for(db, member)
    owner_headers = await auth_headers_for(db, owner)
    await db.commit()
    return plan, member_headers, owner_headers


# ═════════════════════════════════════════════════════════════════════
# SYSTEM + AUTH
# ═════════════════════════════════════════════════════════════════════


class TestSystem:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client: AsyncClient):
        resp = await client.get(LEAVES)
        assert resp.status_code == 401

    async def test_token_without_session(self, client: AsyncClient, db: AsyncSession, member):
        await db.commit()
        token = create_access_token(member.id)
        resp = await client.get(LEAVES, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_expired_token(self, client: AsyncClient, member):
        token = create_access_token(member.id, expired=True)
        resp = await client.get(LEAVES, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_member_cannot_review(self, client: AsyncClient, seeded):
        _, member_headers, _ = seeded
        resp = await client.get(REVIEW, headers=member_headers)
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")


# ═════════════════════════════════════════════════════════════════════
# LEAVE ENDPOINTS
# ═════════════════════════════════════════════════════════════════════


class TestLeaveEndpoints:

    async def test_preview(self, client: AsyncClient, seeded):
        plan, member_headers, _ = seeded
        resp = await client.post(f"{LEAVES}/preview", json=_leave_body(plan), headers=member_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_meals_missed"] == 9
        assert body["estimated_savings"] == "300.00"
        assert body["plans"][0]["rate"] == "33.33"

    async def test_preview_rate_limited(self, client: AsyncClient, seeded):
        plan, member_headers, _ = seeded
        for _ in range(30):
            resp = await client.post(
                f"{LEAVES}/preview", json=_leave_body(plan), headers=member_headers,
            )
            assert resp.status_code == 200
        resp = await client.post(f"{LEAVES}/preview", json=_leave_body(plan), headers=member_headers)
        assert resp.status_code == 429
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/rate-limited")

    async def test_invalid_dates_are_problem_json(self, client: AsyncClient, seeded):
        plan, member_headers, _ = seeded
        resp = await client.post(
            LEAVES,
            json=_leave_body(plan, start="2026-03-12", end="2026-03-10"),
            headers=member_headers,
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/validation-error")

    async def test_submit_review_and_list(self, client: AsyncClient, seeded):
        plan, member_headers, owner_headers = seeded

        created = await client.post(
            LEAVES, json=_leave_body(plan, reason="Wedding"), headers=member_headers,
        )
        assert created.status_code == 201
        leave_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        approved = await client.put(
            f"{REVIEW}/{leave_id}/approve", json={"remarks": "Have fun"}, headers=owner_headers,
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        mine = await client.get(LEAVES, headers=member_headers)
        assert mine.status_code == 200
        assert mine.json()["meta"]["total"] == 1

        stats = await client.get(f"{REVIEW}/stats", headers=owner_headers)
        assert stats.json()["approved"] == 1

    async def test_duplicate_is_conflict(self, client: AsyncClient, seeded):
        plan, member_headers, _ = seeded
        first = await client.post(LEAVES, json=_leave_body(plan), headers=member_headers)
        assert first.status_code == 201
        second = await client.post(LEAVES, json=_leave_body(plan), headers=member_headers)
        assert second.status_code == 409
        assert "dates" in second.json()["errors"]

    async def test_reject_requires_reason(self, client: AsyncClient, seeded):
        plan, member_headers, owner_headers = seeded
        created = await client.post(LEAVES, json=_leave_body(plan), headers=member_headers)
        leave_id = created.json()["id"]

        resp = await client.put(
            f"{REVIEW}/{leave_id}/reject", json={"reason": "no"}, headers=owner_headers,
        )
        assert resp.status_code == 422

        resp = await client.put(
            f"{REVIEW}/{leave_id}/reject", json={"reason": "Peak season"}, headers=owner_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"

    async def test_extend_then_cancel(self, client: AsyncClient, seeded):
        plan, member_headers, _ = seeded
        created = await client.post(LEAVES, json=_leave_body(plan), headers=member_headers)
        leave_id = created.json()["id"]

        extended = await client.put(
            f"{LEAVES}/{leave_id}/extend",
            json={"new_end_date": "2026-03-14"},
            headers=member_headers,
        )
        assert extended.status_code == 200
        assert extended.json()["revision"] == 2
        assert extended.json()["total_meals_missed"] == 15

        cancelled = await client.put(
            f"{LEAVES}/{leave_id}/cancel", json={"reason": "Trip called off"}, headers=member_headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["cancelled_at"] is not None

    async def test_unknown_leave_is_404(self, client: AsyncClient, seeded):
        _, member_headers, _ = seeded
        resp = await client.get(
            f"{LEAVES}/00000000-0000-0000-0000-000000000000", headers=member_headers,
        )
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# OFF-DAY ENDPOINTS
# ═════════════════════════════════════════════════════════════════════


class TestOffDayEndpoints:

    async def test_create_list_cancel(self, client: AsyncClient, seeded, mess):
        _, _, owner_headers = seeded
        created = await client.post(
            OFF_DAYS,
            json={
                "mess_id": str(mess.id),
                "off_date": date(2026, 3, 5).isoformat(),
                "meal_types": ["lunch"],
                "reason": "Festival",
            },
            headers=owner_headers,
        )
        assert created.status_code == 201
        off_day_id = created.json()["id"]

        listed = await client.get(
            OFF_DAYS, params={"mess_id": str(mess.id), "when": "upcoming"}, headers=owner_headers,
        )
        assert listed.status_code == 200
        assert [o["id"] for o in listed.json()["data"]] == [off_day_id]

        cancelled = await client.put(
            f"{OFF_DAYS}/{off_day_id}/cancel", json={"reason": "Moved"}, headers=owner_headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

    async def test_member_cannot_declare(self, client: AsyncClient, seeded, mess):
        _, member_headers, _ = seeded
        resp = await client.post(
            OFF_DAYS,
            json={"mess_id": str(mess.id), "off_date": "2026-03-05", "reason": "Festival"},
            headers=member_headers,
        )
        assert resp.status_code == 403

    async def test_update_and_stats(self, client: AsyncClient, seeded, mess):
        _, _, owner_headers = seeded
        created = await client.post(
            OFF_DAYS,
            json={"mess_id": str(mess.id), "off_date": "2026-03-05", "reason": "Festival"},
            headers=owner_headers,
        )
        off_day_id = created.json()["id"]

        moved = await client.put(
            f"{OFF_DAYS}/{off_day_id}",
            json={"off_date": "2026-03-08", "meal_types": ["dinner"]},
            headers=owner_headers,
        )
        assert moved.status_code == 200
        assert moved.json()["off_date"] == "2026-03-08"
        assert moved.json()["meal_types"] == ["dinner"]

        stats = await client.get(
            f"{OFF_DAYS}/stats", params={"mess_id": str(mess.id)}, headers=owner_headers,
        )
        assert stats.status_code == 200
        assert stats.json()["total"] == 1
        assert stats.json()["upcoming"] == 1

    async def test_update_into_past_is_problem_json(self, client: AsyncClient, seeded, mess):
        _, _, owner_headers = seeded
        created = await client.post(
            OFF_DAYS,
            json={"mess_id": str(mess.id), "off_date": "2026-03-05", "reason": "Festival"},
            headers=owner_headers,
        )
        resp = await client.put(
            f"{OFF_DAYS}/{created.json()['id']}",
            json={"off_date": "2026-02-20"},
            headers=owner_headers,
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
