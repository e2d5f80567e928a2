from .base import Base
from .audit_log import ApiAuditLog

__all__ = [
    "Base",
    "ApiAuditLog",
]
