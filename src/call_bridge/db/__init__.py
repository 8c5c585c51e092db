"""Database module for Call Bridge.

Provides:
- SQLAlchemy ORM models for call records, claims and tenant bindings
- Async session management and commit/rollback scopes
- Repository pattern for data access
- Database initialization and lifecycle management
"""
from call_bridge.db.base import (
    Base,
    UUIDMixin,
    TimestampMixin,
)
from call_bridge.db.session import (
    SessionScope,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope_for,
    get_db_context,
    init_db,
    close_db,
    create_test_engine,
)

__all__ = [
    # Base and mixins
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    # Session management
    "SessionScope",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope_for",
    "get_db_context",
    "init_db",
    "close_db",
    "create_test_engine",
]
