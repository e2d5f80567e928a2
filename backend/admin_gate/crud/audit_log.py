from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_log import ApiAuditLog


class AuditLogRepository:
    """Write-only access to the audit log. Rows are appended, never read back here."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        ip_address: str,
        action: str,
        success: bool,
        http_status: int,
        api_key_id: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
        request_body: Any | None = None,
        processing_time_ms: int | None = None,
    ) -> ApiAuditLog:
        audit_log = ApiAuditLog(
            user_id=user_id,
            api_key_id=api_key_id,
            ip_address=ip_address,
            action=action,
            success=success,
            http_status=http_status,
            error_code=error_code,
            error_message=error_message,
            request_body=request_body,
            processing_time_ms=processing_time_ms,
        )
        self.session.add(audit_log)
        await self.session.commit()
        return audit_log
