"""
Feedback Form Tests

- built-in default when nothing is stored
- single-active activation
- duplicate (key, version) rejection
- per-schedule pinning and evaluation form resolution
"""
import pytest

from thesis_eval.schemas.evaluation import EvaluationRecord, FeedbackFormCreate
from thesis_eval.services.feedback_form_service import (
    DEFAULT_FEEDBACK_FORM_SCHEMA,
    DuplicateFeedbackFormError,
    FeedbackFormNotFoundError,
    build_seed_answers,
)
from thesis_eval.tests.conftest import SIMPLE_FORM_SCHEMA


def form_payload(version, active=False, key="simple-feedback"):
    return FeedbackFormCreate(key=key, version=version, title=f"Simple v{version}",
                              schema=SIMPLE_FORM_SCHEMA, active=active)


class TestActiveForm:

    @pytest.mark.asyncio
    async def test_default_form_when_none_stored(self, form_service):
        form = await form_service.get_active_form()

        assert form["id"] is None
        assert form["key"] == "student-feedback-v1"
        assert form["schema"] == DEFAULT_FEEDBACK_FORM_SCHEMA

    @pytest.mark.asyncio
    async def test_default_form_is_a_copy(self, form_service):
        form = await form_service.get_active_form()
        form["schema"]["sections"].clear()

        assert len(DEFAULT_FEEDBACK_FORM_SCHEMA["sections"]) == 4

    @pytest.mark.asyncio
    async def test_inactive_forms_are_ignored(self, form_service):
        await form_service.create_form(form_payload(1))

        form = await form_service.get_active_form()
        assert form["id"] is None

    @pytest.mark.asyncio
    async def test_activation_is_exclusive(self, form_service, store):
        v1 = await form_service.create_form(form_payload(1, active=True))
        v2 = await form_service.create_form(form_payload(2))

        activated = await form_service.activate_form(v2["id"])
        assert activated["active"] is True

        forms = {f["id"]: f for f in await store.list_forms()}
        assert forms[v1["id"]]["active"] is False
        assert forms[v2["id"]]["active"] is True
        assert (await form_service.get_active_form())["id"] == v2["id"]

    @pytest.mark.asyncio
    async def test_reactivating_older_version(self, form_service):
        v1 = await form_service.create_form(form_payload(1, active=True))
        await form_service.create_form(form_payload(2, active=True))

        await form_service.activate_form(v1["id"])
        assert (await form_service.get_active_form())["version"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_version_rejected(self, form_service):
        await form_service.create_form(form_payload(1))

        with pytest.raises(DuplicateFeedbackFormError) as exc_info:
            await form_service.create_form(form_payload(1))
        assert exc_info.value.code == "DUPLICATE_FORM"

    @pytest.mark.asyncio
    async def test_activate_unknown_form(self, form_service):
        with pytest.raises(FeedbackFormNotFoundError):
            await form_service.activate_form("missing")


class TestResolution:

    @pytest.mark.asyncio
    async def test_schedule_pins_active_form_once(self, form_service, store, seeded, simple_form):
        form_id, schema = await form_service.resolve_schedule_form(seeded.schedule)
        assert form_id == simple_form["id"]
        assert [q["id"] for q in schema["sections"][0]["questions"]] == ["q1", "q2", "comments"]

        newer = await form_service.create_form(form_payload(2, active=True))
        schedule = await store.find_schedule_by_id(seeded.schedule["id"])
        pinned_id, _ = await form_service.resolve_schedule_form(schedule)

        assert pinned_id == simple_form["id"]
        assert pinned_id != newer["id"]

    @pytest.mark.asyncio
    async def test_default_form_is_never_pinned(self, form_service, store, seeded):
        form_id, schema = await form_service.resolve_schedule_form(seeded.schedule)

        assert form_id is None
        assert schema == DEFAULT_FEEDBACK_FORM_SCHEMA
        schedule = await store.find_schedule_by_id(seeded.schedule["id"])
        assert schedule["student_feedback_form_id"] is None

    @pytest.mark.asyncio
    async def test_evaluation_form_falls_back_to_active(self, form_service, seeded, simple_form):
        record = EvaluationRecord(
            id="e1", kind="student", assignee_role="student",
            schedule_id=seeded.schedule["id"], evaluator_id=seeded.students[0]["id"],
            status="pending", created_at="2026-03-01T10:00:00", form_id="vanished-form",
        )
        form_id, _ = await form_service.resolve_evaluation_form(record)
        assert form_id == simple_form["id"]


class TestSeedAnswers:

    def test_caller_seed_wins(self):
        assert build_seed_answers(SIMPLE_FORM_SCHEMA, {"q1": 2}) == {"q1": 2}

    def test_template_when_no_seed(self):
        assert build_seed_answers(SIMPLE_FORM_SCHEMA) == {"q1": None, "q2": None, "comments": None}
