from app.core.models.exeat_category import ExeatCategory
from app.core.models.exeat_request import ExeatRequest
from app.core.models.exeat_approval import ExeatApproval
from app.core.models.parent_consent import ParentConsent
from app.core.models.audit_log import AuditLog

__all__ = [
    "ExeatCategory",
    "ExeatRequest",
    "ExeatApproval",
    "ParentConsent",
    "AuditLog",
]
