"""
thesis_eval/services/evaluation_view.py
Unified Evaluation View

Panelist evaluations and student feedback evaluations live in two tables
with different shapes. The adapters here map both into EvaluationRecord,
tagged by kind, and the helpers merge, dedupe, sort, filter and group the
resulting stream for the admin dashboard.

Identity is (kind, id): the same literal id under two kinds is two records.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from thesis_eval.schemas.evaluation import (
    EvaluationRecord, EvaluationStats, GroupedEvaluationBucket
)

logger = logging.getLogger(__name__)

UNKNOWN_GROUP = "Unknown Group"
UNASSIGNED_GROUP = "Unassigned Group"
SCHEDULE_UNAVAILABLE = "schedule unavailable"
UNKNOWN_ASSIGNEE = "unknown assignee"


# =============================================================================
# Small helpers
# =============================================================================

def compact_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def title_case(value: str) -> str:
    return value[:1].upper() + value[1:] if value else value


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = compact_string(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _sort_key(value: Optional[datetime]) -> float:
    # Naive timestamps are stored as UTC
    if value is None:
        return float("-inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def format_datetime(value: Any) -> str:
    parsed = parse_datetime(value)
    if parsed is None:
        return str(value) if value else "-"
    return parsed.strftime("%b %d, %Y %I:%M %p")


# =============================================================================
# Adapters: source row -> EvaluationRecord
# =============================================================================

def _require(row: Mapping[str, Any], key: str) -> str:
    value = compact_string(row.get(key))
    if value is None:
        raise ValueError(f"Evaluation row is missing '{key}'")
    return value


def _required_timestamp(row: Mapping[str, Any], key: str):
    value = row.get(key)
    if isinstance(value, datetime):
        return value
    return _require(row, key)


def to_unified_from_panelist(row: Mapping[str, Any]) -> EvaluationRecord:
    """Map a panelist evaluation row (keyed by evaluator_id)."""
    return EvaluationRecord(
        id=_require(row, "id"),
        kind="panelist",
        assignee_role="panelist",
        schedule_id=_require(row, "schedule_id"),
        evaluator_id=_require(row, "evaluator_id"),
        status=normalize_status(_require(row, "status")),
        submitted_at=row.get("submitted_at"),
        locked_at=row.get("locked_at"),
        created_at=_required_timestamp(row, "created_at"),
    )


def to_unified_from_student(row: Mapping[str, Any]) -> EvaluationRecord:
    """Map a student feedback row (keyed by student_id)."""
    answers = row.get("answers")
    return EvaluationRecord(
        id=_require(row, "id"),
        kind="student",
        assignee_role="student",
        schedule_id=_require(row, "schedule_id"),
        evaluator_id=_require(row, "student_id"),
        status=normalize_status(_require(row, "status")),
        submitted_at=row.get("submitted_at"),
        locked_at=row.get("locked_at"),
        created_at=_required_timestamp(row, "created_at"),
        form_id=row.get("form_id"),
        answers=dict(answers) if isinstance(answers, Mapping) else {},
        updated_at=row.get("updated_at"),
    )


def adapt_rows(panelist_rows: Iterable[Mapping[str, Any]],
               student_rows: Iterable[Mapping[str, Any]]) -> List[EvaluationRecord]:
    """Adapt both streams, dropping malformed rows with a warning."""
    records: List[EvaluationRecord] = []
    for adapter, rows in ((to_unified_from_panelist, panelist_rows),
                          (to_unified_from_student, student_rows)):
        for row in rows:
            try:
                records.append(adapter(row))
            except ValueError as e:
                logger.warning(f"[VIEW] Skipping malformed evaluation row: {e}")
    return records


# =============================================================================
# Merge / dedupe / sort
# =============================================================================

def unique_evaluations(items: Iterable[EvaluationRecord]) -> List[EvaluationRecord]:
    """Keep the first occurrence of each (kind, id)."""
    seen = set()
    out: List[EvaluationRecord] = []
    for item in items:
        if item.ref in seen:
            continue
        seen.add(item.ref)
        out.append(item)
    return out


def sort_by_created_desc(items: Iterable[EvaluationRecord]) -> List[EvaluationRecord]:
    return sorted(items, key=lambda item: _sort_key(item.created_at), reverse=True)


def merge_evaluations(*streams: Sequence[EvaluationRecord]) -> List[EvaluationRecord]:
    """Initial-load merge: first occurrence wins, newest first."""
    merged: List[EvaluationRecord] = []
    for stream in streams:
        merged.extend(stream)
    return sort_by_created_desc(unique_evaluations(merged))


def append_and_sort(current: Sequence[EvaluationRecord],
                    additions: Sequence[EvaluationRecord]) -> List[EvaluationRecord]:
    """After a write: fresh records are prepended so they beat stale cached copies."""
    return sort_by_created_desc(unique_evaluations([*additions, *current]))


def replace_evaluation(items: Sequence[EvaluationRecord],
                       updated: EvaluationRecord) -> List[EvaluationRecord]:
    return [updated if item.ref == updated.ref else item for item in items]


def remove_evaluation(items: Sequence[EvaluationRecord], kind: str,
                      evaluation_id: str) -> List[EvaluationRecord]:
    return [item for item in items if item.ref != (kind, evaluation_id)]


# =============================================================================
# Display context (schedules, groups, users)
# =============================================================================

@dataclass
class ViewContext:
    """Lookup tables used to enrich evaluations, keyed by lowercased id."""
    schedules: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    groups: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def build(cls, schedules: Iterable[Mapping[str, Any]] = (),
              groups: Iterable[Mapping[str, Any]] = (),
              users: Iterable[Mapping[str, Any]] = ()) -> "ViewContext":
        def index(rows):
            return {str(row["id"]).lower(): dict(row) for row in rows if row.get("id")}
        return cls(schedules=index(schedules), groups=index(groups), users=index(users))

    def schedule_for(self, schedule_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not schedule_id:
            return None
        return self.schedules.get(schedule_id.lower())

    def user_for(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        return self.users.get(user_id.lower())


def resolve_group_name(schedule: Optional[Mapping[str, Any]], context: ViewContext) -> str:
    """Inline group title on the schedule, else group lookup, else a placeholder."""
    if not schedule:
        return UNKNOWN_GROUP
    title = compact_string(schedule.get("group_title"))
    if title:
        return title
    group_id = compact_string(schedule.get("group_id"))
    if group_id:
        group = context.groups.get(group_id.lower())
        if group and compact_string(group.get("title")):
            return compact_string(group.get("title"))
    return UNASSIGNED_GROUP


def search_fields(item: EvaluationRecord, context: ViewContext) -> Tuple[str, ...]:
    schedule = context.schedule_for(item.schedule_id)
    evaluator = context.user_for(item.evaluator_id)

    schedule_date = format_datetime(schedule.get("scheduled_at")) if schedule else SCHEDULE_UNAVAILABLE
    room = compact_string(schedule.get("room")) if schedule else None
    evaluator_name = (
        compact_string((evaluator or {}).get("name"))
        or compact_string((evaluator or {}).get("email"))
        or UNKNOWN_ASSIGNEE
    )
    evaluator_role = title_case(str(evaluator["role"])) if evaluator else title_case(item.assignee_role)
    flow = "student evaluation" if item.assignee_role == "student" else "panelist evaluation"

    return (
        resolve_group_name(schedule, context),
        schedule_date,
        room or "",
        evaluator_name,
        evaluator_role,
        flow,
        normalize_status(item.status),
    )


# =============================================================================
# Filter / group / stats
# =============================================================================

def filter_evaluations(items: Iterable[EvaluationRecord], context: ViewContext,
                       search: str = "", status: str = "all") -> List[EvaluationRecord]:
    """Exact status filter plus case-insensitive substring search."""
    query = (search or "").strip().lower()
    status = normalize_status(status) or "all"
    out: List[EvaluationRecord] = []

    for item in items:
        if status != "all" and normalize_status(item.status) != status:
            continue
        if query and not any(query in value.lower() for value in search_fields(item, context)):
            continue
        out.append(item)
    return out


def _count_status(target, status: str) -> None:
    if status == "pending":
        target.pending += 1
    elif status == "submitted":
        target.submitted += 1
    elif status == "locked":
        target.locked += 1


def group_evaluations(items: Iterable[EvaluationRecord],
                      context: ViewContext) -> List[GroupedEvaluationBucket]:
    """
    Bucket by resolved group name. Items in a bucket are sorted by their
    schedule date, newest first, falling back to the evaluation's own
    created_at when the schedule is unknown. Buckets are sorted by name.
    """
    buckets: Dict[str, GroupedEvaluationBucket] = {}

    for item in items:
        group_name = resolve_group_name(context.schedule_for(item.schedule_id), context)
        key = (compact_string(group_name) or "unassigned-group").lower()
        bucket = buckets.get(key)
        if bucket is None:
            bucket = GroupedEvaluationBucket(key=key, group_name=group_name)
            buckets[key] = bucket
        bucket.items.append(item)
        _count_status(bucket, normalize_status(item.status))

    def item_time(item: EvaluationRecord) -> float:
        schedule = context.schedule_for(item.schedule_id)
        if schedule:
            scheduled_at = parse_datetime(schedule.get("scheduled_at"))
            if scheduled_at is not None:
                return _sort_key(scheduled_at)
        return _sort_key(item.created_at)

    for bucket in buckets.values():
        bucket.items.sort(key=item_time, reverse=True)

    return sorted(buckets.values(), key=lambda bucket: bucket.group_name.lower())


def compute_stats(items: Iterable[EvaluationRecord]) -> EvaluationStats:
    stats = EvaluationStats()
    for item in items:
        stats.total += 1
        _count_status(stats, normalize_status(item.status))
    return stats


# =============================================================================
# Loader
# =============================================================================

async def load_unified_view(store) -> Tuple[List[EvaluationRecord], ViewContext]:
    """Fetch both evaluation tables plus display context from the store."""
    panelist_rows = await store.list_evaluations("panelist")
    student_rows = await store.list_evaluations("student")
    context = ViewContext.build(
        schedules=await store.list_schedules(),
        groups=await store.list_groups(),
        users=await store.list_users(),
    )
    records = merge_evaluations(adapt_rows(panelist_rows, student_rows))
    logger.debug(
        f"[VIEW] Loaded {len(records)} evaluations "
        f"({len(panelist_rows)} panelist, {len(student_rows)} student)"
    )
    return records, context
