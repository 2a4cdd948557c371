from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"
    CUSTOM = "CUSTOM"


ADMIN_ROLES = (Role.SUPER_ADMIN, Role.ADMIN)


class TimesheetStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    QUEUED = "QUEUED"
    EMAILED = "EMAILED"
    LOCKED = "LOCKED"


class EntryType(str, Enum):
    DR = "DR"
    SV = "SV"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    READY = "READY"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    VOID = "VOID"


class CommunityInvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    QUEUED = "QUEUED"
    EMAILED = "EMAILED"
    FAILED = "FAILED"


class CommunityClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class EmailQueueStatus(str, Enum):
    QUEUED = "QUEUED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EmailQueueEntityType(str, Enum):
    REGULAR = "REGULAR"
    BCBA = "BCBA"
    COMMUNITY_INVOICE = "COMMUNITY_INVOICE"


class EmailQueueContext(str, Enum):
    MAIN = "MAIN"
    COMMUNITY = "COMMUNITY"


class NotificationType(str, Enum):
    TIMESHEET_SUBMITTED = "TIMESHEET_SUBMITTED"
    TIMESHEET_APPROVED = "TIMESHEET_APPROVED"
    TIMESHEET_REJECTED = "TIMESHEET_REJECTED"
    INVOICE_GENERATED = "INVOICE_GENERATED"
    INVOICE_PAYMENT = "INVOICE_PAYMENT"
    EMAIL_BATCH_SENT = "EMAIL_BATCH_SENT"
    EMAIL_BATCH_FAILED = "EMAIL_BATCH_FAILED"
    PAYROLL_RUN = "PAYROLL_RUN"
    SYSTEM = "SYSTEM"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    QUEUE = "QUEUE"
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_FAILED = "EMAIL_FAILED"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    ARCHIVE = "ARCHIVE"
    GENERATE = "GENERATE"


class PayrollRunStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    PAID_PARTIAL = "PAID_PARTIAL"
    PAID = "PAID"


class PayrollImportStatus(str, Enum):
    DRAFT = "DRAFT"
    FINALIZED = "FINALIZED"


class PayrollPaidStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CHECK = "CHECK"
    ACH = "ACH"
    CASH = "CASH"
    CARD = "CARD"
    OTHER = "OTHER"


class ScheduledJobType(str, Enum):
    INVOICE_GENERATION = "INVOICE_GENERATION"
    COMMUNITY_EMAIL_SENDER = "COMMUNITY_EMAIL_SENDER"


class FormType(str, Enum):
    VISIT_ATTESTATION = "VISIT_ATTESTATION"
    PARENT_TRAINING_SIGN_IN = "PARENT_TRAINING_SIGN_IN"
    PARENT_ABC_DATA = "PARENT_ABC_DATA"
