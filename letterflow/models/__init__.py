"""Data models"""
from letterflow.models.crm import (
    Contact,
    ContactRef,
    CrmTask,
    DossierResult,
    LinkedInProfile,
    MailingAddress,
)
from letterflow.models.approval import (
    ApprovalData,
    ApprovalId,
    ApprovalState,
    ContactId,
    Feedback,
    HealthCheckResult,
    HealthStatus,
    LetterContent,
    LetterHistoryEntry,
    MessageRef,
    TaskId,
    UserId,
    WorkflowTrigger,
)
from letterflow.models.documents import (
    PdfTemplateData,
    PrintColor,
    PrintMode,
    PrintOptions,
    ShippingType,
)

__all__ = [
    "Contact",
    "ContactRef",
    "CrmTask",
    "DossierResult",
    "LinkedInProfile",
    "MailingAddress",
    "ApprovalData",
    "ApprovalId",
    "ApprovalState",
    "ContactId",
    "Feedback",
    "HealthCheckResult",
    "HealthStatus",
    "LetterContent",
    "LetterHistoryEntry",
    "MessageRef",
    "TaskId",
    "UserId",
    "WorkflowTrigger",
    "PdfTemplateData",
    "PrintColor",
    "PrintMode",
    "PrintOptions",
    "ShippingType",
]
