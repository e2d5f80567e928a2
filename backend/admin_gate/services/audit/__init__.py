from .recorder import (
    AuditLogStore,
    AuditRecorder,
    SqlAlchemyAuditLogStore,
    audited,
    build_insert,
)

__all__ = [
    "AuditLogStore",
    "AuditRecorder",
    "SqlAlchemyAuditLogStore",
    "audited",
    "build_insert",
]
