# pagespeed_analyzer/models/types.py
from sqlalchemy.types import TypeDecorator
from sqlalchemy import JSON


class JSONBCompat(TypeDecorator):
    """
    JSONB on PostgreSQL, plain JSON on SQLite and everything else, so the
    analysis payloads can be stored the same way in tests and in production.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())
