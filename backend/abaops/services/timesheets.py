from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from abaops.db.base import utcnow
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import (
    AuditAction,
    EmailQueueContext,
    EmailQueueEntityType,
    EmailQueueStatus,
    NotificationType,
    TimesheetStatus,
)
from abaops.models.master import BCBA, BcbaInsurance, Client, Insurance, Provider
from abaops.models.timesheet import Timesheet, TimesheetEntry
from abaops.models.user import User
from abaops.services.activity import log_audit, snapshot
from abaops.services.billing import minutes_to_units
from abaops.services.notifications import create_notification, notify_admins


logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")
FIRST_SEQUENCE = 1001
SATURDAY = 5
EDITABLE_STATUSES = {TimesheetStatus.DRAFT, TimesheetStatus.REJECTED}
APPROVABLE_STATUSES = {TimesheetStatus.DRAFT, TimesheetStatus.SUBMITTED}
AUDIT_FIELDS = ("status", "start_date", "end_date", "provider_id", "client_id", "bcba_id", "insurance_id")


class TimesheetValidationError(ValueError):
    pass


class OverlapConflictError(ValueError):
    def __init__(self, conflicts: List[dict]):
        super().__init__("Overlap conflicts detected")
        self.conflicts = conflicts


class TimesheetActionError(ValueError):
    """Workflow failure carrying a machine-readable code and HTTP status."""

    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass
class ResolvedTimesheet:
    provider: Provider
    client: Client
    bcba: BCBA
    insurance: Optional[Insurance]
    bcba_insurance: Optional[BcbaInsurance]


def parse_hhmm(value: str) -> Optional[int]:
    match = TIME_PATTERN.match(value or "")
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_12h(value: Optional[str]) -> str:
    minutes = parse_hhmm(value or "")
    if minutes is None:
        return value or ""
    hour, minute = divmod(minutes, 60)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a


def is_saturday(value: date | datetime, tz_name: str) -> bool:
    if isinstance(value, datetime):
        try:
            zone = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError as exc:
            raise TimesheetValidationError(f"Unknown timezone: {tz_name}") from exc
        aware = value if value.tzinfo else value.replace(tzinfo=zone)
        return aware.astimezone(zone).weekday() == SATURDAY
    return value.weekday() == SATURDAY


def format_timesheet_number(sequence: int, is_bcba: bool) -> str:
    prefix = "BT" if is_bcba else "T"
    return f"{prefix}-{sequence:04d}"


def next_timesheet_number(db: Session, *, is_bcba: bool) -> str:
    prefix = "BT-" if is_bcba else "T-"
    pattern = re.compile(rf"^{prefix}(\d+)$")
    numbers = (
        db.query(Timesheet.timesheet_number)
        .filter(Timesheet.timesheet_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (number,) in numbers:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return format_timesheet_number(max(highest + 1, FIRST_SEQUENCE), is_bcba)


def _entry_type(notes: Optional[str]) -> str:
    return notes if notes in {"DR", "SV"} else "UNKNOWN"


def validate_entries(entries: Sequence, *, tz_name: str) -> None:
    if not entries:
        raise TimesheetValidationError("At least one entry is required")
    for entry in entries:
        if not entry.date or not entry.start_time or not entry.end_time:
            raise TimesheetValidationError("Each entry must have date, start_time and end_time")
        if is_saturday(entry.date, tz_name):
            raise TimesheetValidationError("Timesheets cannot be created on Saturdays")
        start = parse_hhmm(entry.start_time)
        end = parse_hhmm(entry.end_time)
        if start is None or end is None:
            raise TimesheetValidationError(
                f"Invalid time format. Expected HH:mm, got start_time: {entry.start_time}, end_time: {entry.end_time}"
            )
        if end <= start:
            raise TimesheetValidationError(
                f"End time must be after start time. Got {entry.start_time} - {entry.end_time}"
            )
        expected = end - start
        if abs((entry.minutes or 0) - expected) > 1:
            raise TimesheetValidationError(f"Minutes mismatch. Expected {expected}, got {entry.minutes}")
        if not entry.minutes or entry.minutes <= 0:
            raise TimesheetValidationError("Minutes must be greater than 0")
        if entry.notes not in (None, "DR", "SV"):
            raise TimesheetValidationError("Entry notes must be DR, SV or empty")


def _get_active(db: Session, model, object_id: Optional[int], label: str):
    if object_id is None:
        raise TimesheetValidationError(f"{label} is required")
    obj = db.get(model, object_id)
    if not obj or obj.deleted_at is not None:
        raise TimesheetValidationError(f"{label} not found")
    if getattr(obj, "active", True) is False:
        raise TimesheetValidationError(f"{label} must be active")
    return obj


def resolve_references(db: Session, payload) -> ResolvedTimesheet:
    if not payload.client_id or not payload.bcba_id or not payload.start_date or not payload.end_date:
        if payload.is_bcba:
            raise TimesheetValidationError("Client, BCBA, start date and end date are required")
        raise TimesheetValidationError("Provider, client, BCBA, start date and end date are required")
    if not payload.is_bcba and not payload.provider_id:
        raise TimesheetValidationError("Provider, client, BCBA, start date and end date are required")
    if payload.end_date < payload.start_date:
        raise TimesheetValidationError("End date must be on or after start date")

    client = _get_active(db, Client, payload.client_id, "Client")
    bcba = _get_active(db, BCBA, payload.bcba_id, "BCBA")

    bcba_insurance = None
    if payload.is_bcba:
        insurance_id = payload.insurance_id or client.insurance_id
        if not insurance_id:
            raise TimesheetValidationError("Client must have insurance assigned for BCBA timesheets")
        insurance = _get_active(db, Insurance, insurance_id, "Insurance")
        if payload.provider_id:
            provider = _get_active(db, Provider, payload.provider_id, "Provider")
        else:
            provider = (
                db.query(Provider)
                .filter(Provider.active.is_(True), Provider.not_deleted())
                .order_by(Provider.name.asc())
                .first()
            )
            if not provider:
                raise TimesheetValidationError("No active provider found. At least one provider must exist.")
        if payload.bcba_insurance_id:
            bcba_insurance = _get_active(db, BcbaInsurance, payload.bcba_insurance_id, "BCBA insurance")
    else:
        if not payload.insurance_id:
            raise TimesheetValidationError("Insurance is required")
        provider = _get_active(db, Provider, payload.provider_id, "Provider")
        insurance = _get_active(db, Insurance, payload.insurance_id, "Insurance")

    return ResolvedTimesheet(
        provider=provider,
        client=client,
        bcba=bcba,
        insurance=insurance,
        bcba_insurance=bcba_insurance,
    )


def detect_overlaps(
    db: Session,
    *,
    provider: Provider,
    client: Client,
    entries: Sequence,
    exclude_timesheet_id: Optional[int] = None,
) -> List[dict]:
    """Overlaps within ``entries`` and against stored regular timesheets sharing the provider or client."""
    normalized = []
    for entry in entries:
        start = parse_hhmm(entry.start_time)
        end = parse_hhmm(entry.end_time)
        if start is None or end is None:
            continue
        normalized.append((entry, start, end))

    provider_ref = {"id": provider.id, "name": provider.name}
    client_ref = {"id": client.id, "name": client.name}
    conflicts: List[dict] = []

    for index, (entry_a, start_a, end_a) in enumerate(normalized):
        for entry_b, start_b, end_b in normalized[index + 1:]:
            if entry_a.date != entry_b.date:
                continue
            if ranges_overlap(start_a, end_a, start_b, end_b):
                conflicts.append(
                    {
                        "code": "OVERLAP_CONFLICT",
                        "date": entry_a.date.isoformat(),
                        "start_time": entry_a.start_time,
                        "end_time": entry_a.end_time,
                        "entry_type": _entry_type(entry_a.notes),
                        "scope": "internal",
                        "provider": provider_ref,
                        "client": client_ref,
                        "conflicting": None,
                        "message": (
                            f"Overlap detected on {entry_a.date.isoformat()}: {_entry_type(entry_a.notes)} "
                            f"{entry_a.start_time}-{entry_a.end_time} overlaps with {_entry_type(entry_b.notes)} "
                            f"{entry_b.start_time}-{entry_b.end_time} in this timesheet."
                        ),
                    }
                )

    dates = sorted({entry.date for entry, _, _ in normalized})
    if not dates:
        return conflicts

    query = (
        db.query(TimesheetEntry)
        .join(Timesheet, TimesheetEntry.timesheet_id == Timesheet.id)
        .options(selectinload(TimesheetEntry.timesheet))
        .filter(
            Timesheet.deleted_at.is_(None),
            Timesheet.is_bcba.is_(False),
            or_(Timesheet.provider_id == provider.id, Timesheet.client_id == client.id),
            TimesheetEntry.date.in_(dates),
        )
    )
    if exclude_timesheet_id is not None:
        query = query.filter(Timesheet.id != exclude_timesheet_id)

    for existing in query.all():
        existing_start = parse_hhmm(existing.start_time)
        existing_end = parse_hhmm(existing.end_time)
        if existing_start is None or existing_end is None:
            continue
        other = existing.timesheet
        same_provider = other.provider_id == provider.id
        same_client = other.client_id == client.id
        scope = "both" if same_provider and same_client else ("provider" if same_provider else "client")
        for entry, start, end in normalized:
            if entry.date != existing.date or not ranges_overlap(start, end, existing_start, existing_end):
                continue
            label = {"both": "provider and client", "provider": "provider", "client": "client"}[scope]
            conflicts.append(
                {
                    "code": "OVERLAP_CONFLICT",
                    "date": entry.date.isoformat(),
                    "start_time": entry.start_time,
                    "end_time": entry.end_time,
                    "entry_type": _entry_type(entry.notes),
                    "scope": scope,
                    "provider": provider_ref,
                    "client": client_ref,
                    "conflicting": {
                        "timesheet_id": other.id,
                        "timesheet_number": other.timesheet_number,
                        "entry_id": existing.id,
                        "start_time": existing.start_time,
                        "end_time": existing.end_time,
                        "entry_type": _entry_type(existing.notes),
                    },
                    "message": (
                        f"Overlap detected on {entry.date.isoformat()}: {entry.start_time}-{entry.end_time} "
                        f"overlaps with {other.timesheet_number or other.id} "
                        f"{existing.start_time}-{existing.end_time} for the same {label}."
                    ),
                }
            )
    return conflicts


def validate_timesheet_payload(
    db: Session,
    payload,
    *,
    exclude_timesheet_id: Optional[int] = None,
) -> ResolvedTimesheet:
    resolved = resolve_references(db, payload)
    tz_name = payload.timezone or "America/New_York"
    if is_saturday(payload.start_date, tz_name) or is_saturday(payload.end_date, tz_name):
        raise TimesheetValidationError("Timesheets cannot be created on Saturdays")
    validate_entries(payload.entries, tz_name=tz_name)
    if not payload.is_bcba:
        conflicts = detect_overlaps(
            db,
            provider=resolved.provider,
            client=resolved.client,
            entries=payload.entries,
            exclude_timesheet_id=exclude_timesheet_id,
        )
        if conflicts:
            raise OverlapConflictError(conflicts)
    return resolved


def _build_entries(entries: Iterable) -> List[TimesheetEntry]:
    return [
        TimesheetEntry(
            date=entry.date,
            start_time=entry.start_time,
            end_time=entry.end_time,
            minutes=entry.minutes,
            units=minutes_to_units(entry.minutes),
            notes=entry.notes,
        )
        for entry in entries
    ]


def audit_entity_type(timesheet: Timesheet) -> str:
    return "BCBATimesheet" if timesheet.is_bcba else "Timesheet"


def create_timesheet(db: Session, *, payload, user: User) -> Timesheet:
    resolved = validate_timesheet_payload(db, payload)
    timesheet = Timesheet(
        timesheet_number=next_timesheet_number(db, is_bcba=payload.is_bcba),
        user_id=user.id,
        provider_id=resolved.provider.id,
        client_id=resolved.client.id,
        bcba_id=resolved.bcba.id,
        insurance_id=resolved.insurance.id if resolved.insurance else None,
        bcba_insurance_id=resolved.bcba_insurance.id if resolved.bcba_insurance else None,
        is_bcba=payload.is_bcba,
        start_date=payload.start_date,
        end_date=payload.end_date,
        timezone=payload.timezone or "America/New_York",
        service_type=payload.service_type,
        session_data=payload.session_data,
        status=TimesheetStatus.DRAFT,
    )
    timesheet.entries = _build_entries(payload.entries)
    db.add(timesheet)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        new_values=snapshot(timesheet, AUDIT_FIELDS),
        metadata={"timesheet_number": timesheet.timesheet_number, "entries": len(timesheet.entries)},
    )
    return timesheet


def update_timesheet(db: Session, *, timesheet: Timesheet, payload, user: User) -> Timesheet:
    if timesheet.status not in EDITABLE_STATUSES:
        raise TimesheetValidationError(f"Only draft or rejected timesheets can be edited. Current status: {timesheet.status.value}")
    if payload.is_bcba != timesheet.is_bcba:
        raise TimesheetValidationError("Timesheet type cannot be changed")
    resolved = validate_timesheet_payload(db, payload, exclude_timesheet_id=timesheet.id)
    before = snapshot(timesheet, AUDIT_FIELDS)

    timesheet.entries.clear()
    db.flush()

    timesheet.provider_id = resolved.provider.id
    timesheet.client_id = resolved.client.id
    timesheet.bcba_id = resolved.bcba.id
    timesheet.insurance_id = resolved.insurance.id if resolved.insurance else None
    timesheet.bcba_insurance_id = resolved.bcba_insurance.id if resolved.bcba_insurance else None
    timesheet.start_date = payload.start_date
    timesheet.end_date = payload.end_date
    timesheet.timezone = payload.timezone or timesheet.timezone
    timesheet.service_type = payload.service_type
    timesheet.session_data = payload.session_data
    timesheet.entries.extend(_build_entries(payload.entries))
    db.add(timesheet)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        old_values=before,
        new_values=snapshot(timesheet, AUDIT_FIELDS),
    )
    return timesheet


def delete_timesheet(db: Session, *, timesheet: Timesheet, user: User) -> None:
    if timesheet.status not in EDITABLE_STATUSES:
        raise TimesheetValidationError("Only draft or rejected timesheets can be deleted")
    timesheet.soft_delete()
    db.add(timesheet)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        old_values=snapshot(timesheet, AUDIT_FIELDS),
    )


def submit_timesheet(db: Session, *, timesheet: Timesheet, user: User) -> Timesheet:
    if timesheet.status not in EDITABLE_STATUSES:
        raise TimesheetActionError(
            "VALIDATION_ERROR",
            f"Only draft or rejected timesheets can be submitted. Current status: {timesheet.status.value}",
        )
    timesheet.status = TimesheetStatus.SUBMITTED
    timesheet.submitted_at = utcnow()
    timesheet.rejected_at = None
    timesheet.rejection_reason = None
    db.add(timesheet)
    db.flush()
    log_audit(
        db,
        action=AuditAction.SUBMIT,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        metadata={"timesheet_number": timesheet.timesheet_number},
    )
    message = (
        f"Timesheet {timesheet.timesheet_number} for {timesheet.client_name} "
        f"({timesheet.start_date.isoformat()} to {timesheet.end_date.isoformat()}) was submitted for approval."
    )
    notify_admins(
        db,
        notif_type=NotificationType.TIMESHEET_SUBMITTED,
        title="Timesheet submitted",
        message=message,
        payload={"timesheet_id": timesheet.id},
        exclude_user_ids=[user.id],
        send_email_copy=True,
    )
    return timesheet


def approve_timesheet(db: Session, *, timesheet: Timesheet, user: User) -> Timesheet:
    """Approve and enqueue for the batch email in one unit of work."""
    if timesheet.status not in APPROVABLE_STATUSES:
        raise TimesheetActionError(
            "VALIDATION_ERROR",
            f"Only draft or submitted timesheets can be approved. Current status: {timesheet.status.value}",
        )
    if timesheet.emailed_at is not None:
        raise TimesheetActionError(
            "VALIDATION_ERROR",
            "This timesheet has already been emailed and cannot be approved again",
        )
    entity_type = EmailQueueEntityType.BCBA if timesheet.is_bcba else EmailQueueEntityType.REGULAR
    existing = (
        db.query(EmailQueueItem)
        .filter(EmailQueueItem.entity_type == entity_type, EmailQueueItem.entity_id == timesheet.id)
        .first()
    )
    if existing is not None:
        raise TimesheetActionError("ALREADY_QUEUED", "Timesheet is already queued for email", status_code=409)

    now = utcnow()
    timesheet.status = TimesheetStatus.APPROVED
    timesheet.approved_at = now
    timesheet.approved_by_user_id = user.id
    timesheet.queued_at = now
    db.add(timesheet)
    item = EmailQueueItem(
        entity_type=entity_type,
        entity_id=timesheet.id,
        context=EmailQueueContext.MAIN,
        status=EmailQueueStatus.QUEUED,
        queued_by_user_id=user.id,
        queued_at=now,
    )
    db.add(item)
    try:
        db.flush()
    except IntegrityError as exc:
        raise TimesheetActionError("ALREADY_QUEUED", "Timesheet is already queued for email", status_code=409) from exc

    metadata = {
        "client_name": timesheet.client_name,
        "provider_name": timesheet.provider_name,
        "bcba_name": timesheet.bcba_name,
        "start_date": timesheet.start_date.isoformat(),
        "end_date": timesheet.end_date.isoformat(),
    }
    log_audit(
        db,
        action=AuditAction.APPROVE,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        metadata=metadata,
    )
    log_audit(
        db,
        action=AuditAction.QUEUE,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        metadata={"queue_item_id": item.id, **metadata},
    )
    if timesheet.user_id != user.id:
        create_notification(
            db,
            user_id=timesheet.user_id,
            notif_type=NotificationType.TIMESHEET_APPROVED,
            title="Timesheet approved",
            message=f"Timesheet {timesheet.timesheet_number} was approved.",
            payload={"timesheet_id": timesheet.id},
        )
    return timesheet


def reject_timesheet(db: Session, *, timesheet: Timesheet, user: User, reason: Optional[str]) -> Timesheet:
    if timesheet.status not in APPROVABLE_STATUSES:
        raise TimesheetActionError(
            "VALIDATION_ERROR",
            f"Only draft or submitted timesheets can be rejected. Current status: {timesheet.status.value}",
        )
    timesheet.status = TimesheetStatus.REJECTED
    timesheet.rejected_at = utcnow()
    timesheet.rejection_reason = (reason or "").strip() or None
    db.add(timesheet)
    db.flush()
    log_audit(
        db,
        action=AuditAction.REJECT,
        entity_type=audit_entity_type(timesheet),
        entity_id=timesheet.id,
        user_id=user.id,
        metadata={"reason": timesheet.rejection_reason},
    )
    detail = f": {timesheet.rejection_reason}" if timesheet.rejection_reason else ""
    create_notification(
        db,
        user_id=timesheet.user_id,
        notif_type=NotificationType.TIMESHEET_REJECTED,
        title="Timesheet rejected",
        message=f"Timesheet {timesheet.timesheet_number} was rejected{detail}",
        payload={"timesheet_id": timesheet.id},
    )
    return timesheet


def archive_timesheets(db: Session, *, timesheet_ids: Sequence[int], user: User) -> int:
    timesheets = (
        db.query(Timesheet)
        .filter(Timesheet.id.in_(list(timesheet_ids)), Timesheet.not_deleted())
        .all()
    )
    for timesheet in timesheets:
        if timesheet.archived:
            continue
        timesheet.archived = True
        db.add(timesheet)
        log_audit(
            db,
            action=AuditAction.ARCHIVE,
            entity_type=audit_entity_type(timesheet),
            entity_id=timesheet.id,
            user_id=user.id,
        )
    db.flush()
    return len(timesheets)
