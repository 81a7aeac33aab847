"""
Shared fixtures: a temporary SQLite database per test and a seeded directory.

A file database (not :memory:) is used so that the store's per-operation
sessions, including concurrent ones, all see the same data.
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio

from thesis_eval.database import build_engine, build_session_factory, init_db
from thesis_eval.orm import DefenseSchedule, GroupMember, ThesisGroup, User
from thesis_eval.schemas.evaluation import Caller, FeedbackFormCreate
from thesis_eval.services.evaluation_store import EvaluationStore
from thesis_eval.services.feedback_form_service import FeedbackFormService


SIMPLE_FORM_SCHEMA = {
    "version": 1,
    "key": "simple-feedback",
    "title": "Simple Feedback",
    "sections": [
        {
            "id": "main",
            "title": "Main",
            "questions": [
                {"id": "q1", "type": "rating", "label": "Overall", "max": 5, "weight": 2, "required": True},
                {"id": "q2", "type": "rating", "label": "Venue", "max": 5, "weight": 1},
                {"id": "comments", "type": "text", "label": "Comments"},
            ],
        }
    ],
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'thesis_eval_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return EvaluationStore(session_factory)


@pytest.fixture
def form_service(store):
    return FeedbackFormService(store)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """
    admin, staff, 3 active panelists + 1 suspended panelist,
    one thesis group with 3 active students + 1 archived student,
    one student outside the group, a grouped schedule and an ungrouped one.
    """
    now = datetime.utcnow()
    async with session_factory() as db:
        admin = User(name="Ada Admin", email="admin@example.edu", role="admin")
        staff = User(name="Sam Staff", email="staff@example.edu", role="staff")
        panelists = [
            User(name=f"Panelist {i}", email=f"panelist{i}@example.edu", role="panelist",
                 created_at=now + timedelta(seconds=i))
            for i in range(3)
        ]
        suspended_panelist = User(name="Gone Panelist", email="gone@example.edu",
                                  role="panelist", status="suspended")
        students = [
            User(name=f"Student {i}", email=f"student{i}@example.edu", role="student",
                 created_at=now + timedelta(seconds=i))
            for i in range(3)
        ]
        archived_student = User(name="Old Student", email="old@example.edu",
                                role="student", status="archived")
        outsider = User(name="Other Student", email="other@example.edu", role="student")
        group = ThesisGroup(title="Team Aurora")

        db.add_all([admin, staff, *panelists, suspended_panelist,
                    *students, archived_student, outsider, group])
        await db.flush()

        for student in [*students, archived_student]:
            db.add(GroupMember(group_id=group.id, student_id=student.id))

        schedule = DefenseSchedule(group_id=group.id, scheduled_at=now + timedelta(days=3), room="Room 301")
        lonely_schedule = DefenseSchedule(group_id=None, scheduled_at=now + timedelta(days=5), room="Room 9")
        db.add_all([schedule, lonely_schedule])
        await db.commit()

        return SimpleNamespace(
            admin=admin.to_dict(),
            staff=staff.to_dict(),
            panelists=[p.to_dict() for p in panelists],
            suspended_panelist=suspended_panelist.to_dict(),
            students=[s.to_dict() for s in students],
            archived_student=archived_student.to_dict(),
            outsider=outsider.to_dict(),
            group=group.to_dict(),
            schedule=schedule.to_dict(),
            lonely_schedule=lonely_schedule.to_dict(),
        )


@pytest_asyncio.fixture
async def simple_form(form_service):
    """A small active feedback form: q1 (required, weight 2), q2, comments."""
    return await form_service.create_form(
        FeedbackFormCreate(key="simple-feedback", version=1, title="Simple Feedback",
                           schema=SIMPLE_FORM_SCHEMA, active=True)
    )


@pytest.fixture
def admin_caller(seeded):
    return Caller(id=seeded.admin["id"], role="admin")


@pytest.fixture
def staff_caller(seeded):
    return Caller(id=seeded.staff["id"], role="staff")
