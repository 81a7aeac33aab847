import pytest

from thesis_eval.config.settings import get_bool_env, get_int_env, settings


@pytest.mark.parametrize("raw,expected", [
    ("true", True), ("1", True), ("Enabled", True), ("no", False), ("", False),
])
def test_bool_env(monkeypatch, raw, expected):
    monkeypatch.setenv("THESIS_EVAL_FLAG", raw)
    assert get_bool_env("THESIS_EVAL_FLAG") is expected


def test_bool_env_default(monkeypatch):
    monkeypatch.delenv("THESIS_EVAL_FLAG", raising=False)
    assert get_bool_env("THESIS_EVAL_FLAG", True) is True


@pytest.mark.parametrize("raw,expected", [("12", 12), ("  ", 5), ("many", 5)])
def test_int_env(monkeypatch, raw, expected):
    monkeypatch.setenv("THESIS_EVAL_INT", raw)
    assert get_int_env("THESIS_EVAL_INT", 5) == expected


def test_to_dict_has_no_database_url():
    exported = settings.to_dict()
    assert "DATABASE_URL" not in exported
    assert exported["ASSIGNMENT_MAX_CONCURRENCY"] >= 1
