"""
Column types shared by the evaluation models.

Answers, form schemas and score breakdowns are stored as JSON documents:
JSONB on PostgreSQL, plain JSON on SQLite.
"""
import uuid

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


class UniversalJSON(TypeDecorator):
    """JSON document column that picks JSONB where the dialect has it."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


def new_uuid() -> str:
    """Primary key default: canonical lowercase UUID4 string."""
    return str(uuid.uuid4())
