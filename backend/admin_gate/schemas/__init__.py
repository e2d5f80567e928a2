from .access import AdminOverviewResponse, PermissionsResponse
from .audit_log import AuditLogEntry

__all__ = [
    "AdminOverviewResponse",
    "AuditLogEntry",
    "PermissionsResponse",
]
