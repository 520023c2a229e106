from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bursary.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"

    # Domain-specific actions
    RECORD_PAYMENT = "payment.record"
    ALLOCATE_PAYMENT = "payment.allocate"
    GENERATE_ARREARS = "arrear.generate"
    CREATE_FEE_CATEGORY = "fee_category.create"
    CREATE_FEE_DEFINITION = "fee_definition.create"
    CREATE_STUDENT_FEE = "student_fee.create"
    CREATE_REGIME = "regime.create"


class AuditService:
    """Service for creating audit logs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        tenant_id: int | None = None,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry. Flushed, not committed: it lands with the caller's transaction."""
        audit_log = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Audit entries for one entity, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
