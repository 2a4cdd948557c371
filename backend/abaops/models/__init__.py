"""Import all models so SQLAlchemy metadata is fully registered."""

from abaops.db.base import Base

from abaops.models.audit import ActivityLog, AuditLog
from abaops.models.community import CommunityClass, CommunityClient, CommunityInvoice
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import (
    ADMIN_ROLES,
    AuditAction,
    CommunityClientStatus,
    CommunityInvoiceStatus,
    EmailQueueContext,
    EmailQueueEntityType,
    EmailQueueStatus,
    EntryType,
    FormType,
    InvoiceStatus,
    NotificationType,
    PaymentMethod,
    PayrollImportStatus,
    PayrollRunStatus,
    Role,
    ScheduledJobType,
    TimesheetStatus,
)
from abaops.models.forms import FormDocument
from abaops.models.invoice import Invoice, InvoiceAdjustment, InvoiceEntry, InvoicePayment
from abaops.models.master import BCBA, BcbaInsurance, Client, Insurance, InsuranceRateHistory, Provider
from abaops.models.notification import Notification
from abaops.models.payroll import (
    PayrollEmployee,
    PayrollImport,
    PayrollImportRow,
    PayrollPayment,
    PayrollRun,
    PayrollRunLine,
)
from abaops.models.scheduled_job import ScheduledJob
from abaops.models.timesheet import Timesheet, TimesheetEntry
from abaops.models.user import CustomRole, RoleDashboardVisibility, RolePermission, User

__all__ = [
    "Base",
    "ActivityLog",
    "AuditLog",
    "CommunityClass",
    "CommunityClient",
    "CommunityInvoice",
    "EmailQueueItem",
    "ADMIN_ROLES",
    "AuditAction",
    "CommunityClientStatus",
    "CommunityInvoiceStatus",
    "EmailQueueContext",
    "EmailQueueEntityType",
    "EmailQueueStatus",
    "EntryType",
    "FormType",
    "InvoiceStatus",
    "NotificationType",
    "PaymentMethod",
    "PayrollImportStatus",
    "PayrollRunStatus",
    "Role",
    "ScheduledJobType",
    "TimesheetStatus",
    "FormDocument",
    "Invoice",
    "InvoiceAdjustment",
    "InvoiceEntry",
    "InvoicePayment",
    "BCBA",
    "BcbaInsurance",
    "Client",
    "Insurance",
    "InsuranceRateHistory",
    "Provider",
    "Notification",
    "PayrollEmployee",
    "PayrollImport",
    "PayrollImportRow",
    "PayrollPayment",
    "PayrollRun",
    "PayrollRunLine",
    "ScheduledJob",
    "Timesheet",
    "TimesheetEntry",
    "CustomRole",
    "RoleDashboardVisibility",
    "RolePermission",
    "User",
]
