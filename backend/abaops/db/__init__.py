from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin, ensure_aware, utcnow
from abaops.db.session import SessionLocal, enable_sqlite_savepoints, engine, get_db

__all__ = [
    "Base",
    "IDMixin",
    "SoftDeleteMixin",
    "TimestampMixin",
    "ensure_aware",
    "utcnow",
    "engine",
    "SessionLocal",
    "get_db",
    "enable_sqlite_savepoints",
]
