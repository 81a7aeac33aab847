"""
Scoring Engine Tests

- Weighted totals, clamping and missing-answer handling
- Numeric coercion rules
- Required-answer validation
- Schema normalization of malformed input
"""
import pytest

from thesis_eval.schemas.evaluation import FormSchema
from thesis_eval.services.feedback_form_service import DEFAULT_FEEDBACK_FORM_SCHEMA
from thesis_eval.services.scoring_engine import (
    compute_score_summary,
    normalize_questions,
    seed_answers_template,
    to_finite_number,
    validate_required_answers,
)


def schema_of(*questions):
    return {"version": 1, "sections": [{"id": "s1", "title": "S1", "questions": list(questions)}]}


class TestNumericCoercion:

    @pytest.mark.parametrize("value,expected", [
        (4, 4.0),
        (2.5, 2.5),
        ("3", 3.0),
        ("  4.5 ", 4.5),
        ("-1", -1.0),
        ("1e1", 10.0),
    ])
    def test_numeric_values(self, value, expected):
        assert to_finite_number(value) == expected

    @pytest.mark.parametrize("value", [
        "", "   ", "abc", "not a number", "NaN", "inf", "Infinity", "0x10",
        True, False, None, [], [3], {"v": 1}, float("nan"), float("inf"),
    ])
    def test_non_numeric_values(self, value):
        assert to_finite_number(value) is None


class TestComputeScoreSummary:

    def test_weighted_score_with_non_numeric_answer(self):
        schema = schema_of(
            {"id": "q1", "type": "rating", "max": 5, "weight": 2},
            {"id": "q2", "type": "rating", "max": 5, "weight": 1},
        )
        summary = compute_score_summary({"q1": 4, "q2": "not a number"}, schema)

        assert summary.total_score == 8
        assert summary.max_score == 15
        assert summary.percentage == pytest.approx(53.333, abs=0.01)
        assert summary.breakdown["q1"].value == 4
        assert summary.breakdown["q1"].weight == 2
        assert summary.breakdown["q2"].value is None
        assert summary.breakdown["q2"].max == 5

    def test_missing_answers_still_count_toward_max(self):
        schema = schema_of(
            {"id": "q1", "type": "rating"},
            {"id": "q2", "type": "number"},
        )
        summary = compute_score_summary({"q1": 5}, schema)

        assert summary.total_score == 5
        assert summary.max_score == 10
        assert summary.percentage == pytest.approx(50.0)

    def test_answers_are_clamped_to_question_range(self):
        schema = schema_of(
            {"id": "high", "type": "scale", "max": 10},
            {"id": "low", "type": "scale", "max": 10},
        )
        summary = compute_score_summary({"high": 42, "low": "-3"}, schema)

        assert summary.breakdown["high"].value == 10
        assert summary.breakdown["low"].value == 0
        assert summary.total_score == 10
        assert summary.max_score == 20

    def test_non_positive_max_and_weight_fall_back_to_defaults(self):
        schema = schema_of({"id": "q", "type": "rating", "max": 0, "weight": -2})
        summary = compute_score_summary({"q": 3}, schema)

        assert summary.max_score == 5
        assert summary.breakdown["q"].weight == 1

    def test_scale_max_is_used_when_question_max_absent(self):
        schema = schema_of({"id": "q", "type": "rating", "scale": {"min": 1, "max": 10}})
        summary = compute_score_summary({"q": 7}, schema)

        assert summary.max_score == 10
        assert summary.percentage == pytest.approx(70.0)

    def test_non_numeric_question_types_are_unscored(self):
        schema = schema_of(
            {"id": "q1", "type": "rating"},
            {"id": "notes", "type": "textarea"},
            {"id": "pick", "type": "checkbox", "options": ["a", "b"]},
        )
        summary = compute_score_summary({"q1": 5, "notes": "great", "pick": ["a"]}, schema)

        assert summary.max_score == 5
        assert summary.total_score == 5
        assert summary.breakdown["notes"].value == "great"
        assert summary.breakdown["notes"].scored is False
        assert summary.breakdown["pick"].value == ["a"]

    def test_no_scorable_questions_gives_zero_percentage(self):
        schema = schema_of({"id": "notes", "type": "text"})
        summary = compute_score_summary({"notes": "hello"}, schema)

        assert summary.max_score == 0
        assert summary.percentage == 0

    def test_empty_or_missing_schema(self):
        assert compute_score_summary({"q1": 5}, None).max_score == 0
        assert compute_score_summary({"q1": 5}, {"sections": "nope"}).max_score == 0

    def test_accepts_pydantic_schema(self):
        schema = FormSchema.model_validate(schema_of({"id": "q1", "type": "rating", "max": 4}))
        summary = compute_score_summary({"q1": "2"}, schema)

        assert summary.total_score == 2
        assert summary.percentage == pytest.approx(50.0)

    def test_is_deterministic(self):
        answers = {"q1": 3, "q2": "4"}
        schema = schema_of(
            {"id": "q1", "type": "rating", "weight": 3},
            {"id": "q2", "type": "rating"},
        )
        assert compute_score_summary(answers, schema) == compute_score_summary(answers, schema)


class TestValidateRequiredAnswers:

    def test_blank_string_is_missing(self):
        schema = schema_of({"id": "q1", "type": "text", "required": True})
        check = validate_required_answers({"q1": ""}, schema)

        assert check.ok is False
        assert check.missing == ["q1"]

    def test_whitespace_none_absent_and_empty_list_are_missing(self):
        schema = schema_of(
            {"id": "a", "type": "text", "required": True},
            {"id": "b", "type": "rating", "required": True},
            {"id": "c", "type": "rating", "required": True},
            {"id": "d", "type": "checkbox", "required": True},
        )
        check = validate_required_answers({"a": "   ", "b": None, "d": []}, schema)

        assert check.missing == ["a", "b", "c", "d"]

    def test_optional_questions_are_never_reported(self):
        schema = schema_of(
            {"id": "q1", "type": "rating", "required": True},
            {"id": "q2", "type": "text"},
        )
        check = validate_required_answers({"q1": 0, "q2": ""}, schema)

        assert check.ok is True
        assert check.missing == []

    def test_default_form_requires_all_ratings(self):
        check = validate_required_answers({}, DEFAULT_FEEDBACK_FORM_SCHEMA)

        assert check.ok is False
        assert "overall_satisfaction" in check.missing
        assert "what_went_well" not in check.missing
        assert len(check.missing) == 8


class TestNormalizeQuestions:

    def test_malformed_entries_are_skipped(self):
        schema = {
            "sections": [
                "not a section",
                {"id": "s", "questions": [
                    None,
                    {"type": "rating"},
                    {"id": "  ", "type": "rating"},
                    {"id": "ok", "type": "RATING"},
                ]},
                {"id": "no-questions"},
            ]
        }
        questions = normalize_questions(schema)

        assert [q.id for q in questions] == ["ok"]
        assert questions[0].type == "rating"
        assert questions[0].section_id == "s"

    def test_duplicate_ids_keep_first(self):
        schema = schema_of(
            {"id": "q", "type": "rating", "max": 10},
            {"id": "q", "type": "rating", "max": 3},
        )
        questions = normalize_questions(schema)

        assert len(questions) == 1
        assert questions[0].max == 10

    def test_seed_template(self):
        schema = schema_of(
            {"id": "q1", "type": "rating"},
            {"id": "picks", "type": "checkbox"},
        )
        assert seed_answers_template(schema) == {"q1": None, "picks": []}
