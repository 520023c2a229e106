from bursary.core.audit.models import AuditLog
from bursary.core.audit.service import AuditAction, AuditService

__all__ = ["AuditLog", "AuditAction", "AuditService"]
