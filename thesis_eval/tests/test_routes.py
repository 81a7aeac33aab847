"""
HTTP contract tests for the evaluation and feedback form routes.

Runs the FastAPI app in-process over httpx's ASGI transport with the store
pointed at the per-test database.
"""
import httpx
import pytest
import pytest_asyncio

from thesis_eval.dependencies import get_store
from thesis_eval.main import app
from thesis_eval.services.evaluation_store import EvaluationStore


def headers(user, role=None):
    return {"X-Actor-Id": user["id"], "X-Actor-Role": role or user["role"]}


@pytest_asyncio.fixture
async def client(session_factory):
    app.dependency_overrides[get_store] = lambda: EvaluationStore(session_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


class TestAssignRoutes:

    @pytest.mark.asyncio
    async def test_bulk_assign(self, client, seeded):
        response = await client.post(
            "/evaluations/assign",
            json={"schedule_id": seeded.schedule["id"], "role": "panelist", "mode": "all"},
            headers=headers(seeded.admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["outcome"] == "success"
        assert body["result"]["counts"]["created"] == 3

    @pytest.mark.asyncio
    async def test_particular_duplicate_is_conflict(self, client, seeded):
        payload = {
            "schedule_id": seeded.schedule["id"],
            "role": "panelist",
            "mode": "particular",
            "evaluator_id": seeded.panelists[0]["id"],
        }
        first = await client.post("/evaluations/assign", json=payload, headers=headers(seeded.staff))
        second = await client.post("/evaluations/assign", json=payload, headers=headers(seeded.staff))

        assert first.status_code == 200
        assert first.json()["evaluation"]["kind"] == "panelist"
        assert second.status_code == 409
        assert second.json() == {
            "success": False,
            "error": "Conflict",
            "message": second.json()["message"],
            "code": "DUPLICATE_ASSIGNMENT",
        }

    @pytest.mark.asyncio
    async def test_malformed_schedule_id(self, client, seeded):
        response = await client.post(
            "/evaluations/assign",
            json={"schedule_id": "nope", "role": "panelist"},
            headers=headers(seeded.admin),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FORMAT"

    @pytest.mark.asyncio
    async def test_students_cannot_assign(self, client, seeded):
        response = await client.post(
            "/evaluations/assign",
            json={"schedule_id": seeded.schedule["id"], "role": "panelist"},
            headers=headers(seeded.students[0]),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_identity(self, client, seeded):
        response = await client.get("/evaluations")
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"


class TestLifecycleRoutes:

    @pytest_asyncio.fixture
    async def feedback(self, store, seeded, simple_form):
        return await store.create_evaluation(
            seeded.schedule["id"], seeded.students[0]["id"], "student",
            answers={"q1": None}, form_id=simple_form["id"]
        )

    @pytest.mark.asyncio
    async def test_submit_requires_answers(self, client, seeded, feedback):
        response = await client.post(
            f"/evaluations/student/{feedback.id}/submit", headers=headers(seeded.students[0])
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID"
        assert body["details"]["missing"] == ["q1"]

    @pytest.mark.asyncio
    async def test_answer_submit_lock_reopen(self, client, seeded, feedback):
        student = headers(seeded.students[0])

        patched = await client.patch(
            f"/evaluations/student/{feedback.id}/answers",
            json={"answers": {"q1": 4, "q2": "not a number"}},
            headers=student,
        )
        assert patched.status_code == 200
        assert patched.json()["evaluation"]["answers"]["q1"] == 4

        score = await client.get(f"/evaluations/student/{feedback.id}/score", headers=student)
        assert score.status_code == 200
        assert score.json()["score"]["total_score"] == 8
        assert score.json()["score"]["max_score"] == 15

        submitted = await client.post(f"/evaluations/student/{feedback.id}/submit", headers=student)
        assert submitted.status_code == 200
        assert submitted.json()["evaluation"]["status"] == "submitted"

        again = await client.patch(
            f"/evaluations/student/{feedback.id}/answers",
            json={"answers": {"q1": 1}},
            headers=student,
        )
        assert again.status_code == 409
        assert again.json()["code"] == "SUBMITTED"

        locked = await client.post(f"/evaluations/student/{feedback.id}/lock", headers=headers(seeded.staff))
        assert locked.json()["evaluation"]["status"] == "locked"

        forbidden = await client.post(
            f"/evaluations/student/{feedback.id}/set-pending",
            json={"reason": "staff try"},
            headers=headers(seeded.staff),
        )
        assert forbidden.status_code == 403

        reopened = await client.post(
            f"/evaluations/student/{feedback.id}/set-pending",
            json={"reason": "Student asked to revise"},
            headers=headers(seeded.admin),
        )
        assert reopened.status_code == 200
        assert reopened.json()["evaluation"]["status"] == "pending"

        audit = await client.get(f"/evaluations/student/{feedback.id}/audit", headers=headers(seeded.admin))
        actions = [entry["action"] for entry in audit.json()["entries"]]
        assert actions == ["submit", "lock", "set_pending"]

    @pytest.mark.asyncio
    async def test_uppercase_ids_resolve(self, client, seeded, feedback):
        student = headers(seeded.students[0])
        upper = feedback.id.upper()

        patched = await client.patch(
            f"/evaluations/student/{upper}/answers", json={"answers": {"q1": 5}}, headers=student
        )
        assert patched.status_code == 200

        score = await client.get(f"/evaluations/student/{upper}/score", headers=student)
        assert score.status_code == 200
        assert score.json()["evaluation_id"] == feedback.id

        submitted = await client.post(f"/evaluations/student/{upper}/submit", headers=student)
        assert submitted.status_code == 200

        audit = await client.get(f"/evaluations/student/{upper}/audit", headers=headers(seeded.admin))
        assert [entry["action"] for entry in audit.json()["entries"]] == ["submit"]

    @pytest.mark.asyncio
    async def test_unknown_kind_is_rejected(self, client, seeded, feedback):
        response = await client.post(
            f"/evaluations/reviewer/{feedback.id}/submit", headers=headers(seeded.admin)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_evaluation(self, client, seeded):
        response = await client.post(
            "/evaluations/panelist/5b1f6e2a-8c3d-4e5f-9a6b-7c8d9e0f1a2b/lock",
            headers=headers(seeded.admin),
        )
        assert response.status_code == 404


class TestViewRoutes:

    @pytest.mark.asyncio
    async def test_list_grouped_and_filtered(self, client, seeded, simple_form):
        admin = headers(seeded.admin)
        await client.post(
            "/evaluations/assign",
            json={"schedule_id": seeded.schedule["id"], "role": "panelist"},
            headers=admin,
        )
        await client.post(
            "/evaluations/assign",
            json={"schedule_id": seeded.schedule["id"], "role": "student"},
            headers=admin,
        )

        flat = await client.get("/evaluations", params={"search": "student evaluation"}, headers=admin)
        assert flat.status_code == 200
        assert flat.json()["total"] == 3
        assert flat.json()["stats"]["total"] == 6
        assert all(item["kind"] == "student" for item in flat.json()["items"])

        grouped = await client.get("/evaluations", params={"grouped": "true", "status": "pending"}, headers=admin)
        groups = grouped.json()["groups"]
        assert [g["group_name"] for g in groups] == ["Team Aurora"]
        assert groups[0]["pending"] == 6


class TestFeedbackFormRoutes:

    @pytest.mark.asyncio
    async def test_active_form_defaults(self, client, seeded):
        response = await client.get("/feedback-forms/active", headers=headers(seeded.students[0]))
        assert response.status_code == 200
        assert response.json()["form"]["key"] == "student-feedback-v1"

    @pytest.mark.asyncio
    async def test_create_and_activate(self, client, seeded):
        staff = headers(seeded.staff)
        created = await client.post(
            "/feedback-forms",
            json={
                "key": "custom",
                "version": 1,
                "title": "Custom",
                "schema": {"sections": [{"id": "s", "questions": [{"id": "q", "type": "rating"}]}]},
            },
            headers=staff,
        )
        assert created.status_code == 201
        form_id = created.json()["form"]["id"]

        activated = await client.post(f"/feedback-forms/{form_id}/activate", headers=staff)
        assert activated.status_code == 200
        assert activated.json()["form"]["active"] is True

        active = await client.get("/feedback-forms/active", headers=staff)
        assert active.json()["form"]["id"] == form_id

        duplicate = await client.post(
            "/feedback-forms",
            json={"key": "custom", "version": 1, "title": "Again", "schema": {"sections": []}},
            headers=staff,
        )
        assert duplicate.status_code == 409
