from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, Response
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction, PayrollPaidStatus, PayrollRunStatus
from abaops.models.payroll import PayrollEmployee, PayrollImport, PayrollImportRow, PayrollRun, PayrollRunLine
from abaops.models.user import User
from abaops.routers.providers import read_upload_text
from abaops.schemas.payroll import (
    PayrollAnalytics,
    PayrollEmployeeCreate,
    PayrollEmployeeRead,
    PayrollEmployeeUpdate,
    PayrollImportCreate,
    PayrollImportDetail,
    PayrollImportRead,
    PayrollImportRowRead,
    PayrollPaymentCreate,
    PayrollPaymentRead,
    PayrollRowLink,
    PayrollRunCreate,
    PayrollRunDetail,
    PayrollRunRead,
)
from abaops.services import payroll as payroll_service
from abaops.services import payroll_reports
from abaops.services.activity import log_audit, snapshot
from abaops.services.pdf import employee_monthly_report_pdf, payroll_run_pdf, save_pdf

router = APIRouter(prefix="/api/payroll", tags=["payroll"])

EMPLOYEE_AUDIT_FIELDS = ("full_name", "email", "scanner_external_id", "default_hourly_rate", "active")


def _get_employee_or_404(db: Session, employee_id: int) -> PayrollEmployee:
    employee = db.get(PayrollEmployee, employee_id)
    if not employee or employee.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


def _get_import_or_404(db: Session, import_id: int) -> PayrollImport:
    payroll_import = (
        db.query(PayrollImport)
        .options(selectinload(PayrollImport.rows))
        .filter(PayrollImport.id == import_id)
        .first()
    )
    if not payroll_import:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import not found")
    return payroll_import


def _get_run_or_404(db: Session, run_id: int) -> PayrollRun:
    run = (
        db.query(PayrollRun)
        .options(
            selectinload(PayrollRun.lines).selectinload(PayrollRunLine.employee),
            selectinload(PayrollRun.lines).selectinload(PayrollRunLine.payments),
        )
        .filter(PayrollRun.id == run_id)
        .first()
    )
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payroll run not found")
    return run


def _read_run(db: Session, run_id: int) -> PayrollRunDetail:
    db.expire_all()
    return PayrollRunDetail.model_validate(_get_run_or_404(db, run_id))


def _bad_request(exc: payroll_service.PayrollError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


# Employees


@router.get("/employees", response_model=List[PayrollEmployeeRead])
def list_employees(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[PayrollEmployeeRead]:
    rbac.require_permission(current_user, "payroll.view", "view")
    query = db.query(PayrollEmployee).filter(PayrollEmployee.not_deleted())
    if search:
        query = query.filter(PayrollEmployee.full_name.ilike(f"%{search.strip()}%"))
    if active is not None:
        query = query.filter(PayrollEmployee.active.is_(active))
    employees = query.order_by(PayrollEmployee.full_name.asc()).all()
    return [PayrollEmployeeRead.model_validate(employee) for employee in employees]


@router.post("/employees", response_model=PayrollEmployeeRead, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: PayrollEmployeeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollEmployeeRead:
    rbac.require_permission(current_user, "payroll.manage", "create")
    if payroll_service.employee_name_taken(db, payload.full_name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Employee already exists")
    employee = PayrollEmployee(**payload.model_dump())
    employee.full_name = employee.full_name.strip()
    db.add(employee)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="PayrollEmployee",
        entity_id=employee.id,
        user_id=current_user.id,
        new_values=snapshot(employee, EMPLOYEE_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(employee)
    return PayrollEmployeeRead.model_validate(employee)


@router.get("/employees/{employee_id}", response_model=PayrollEmployeeRead)
def get_employee(
    employee_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollEmployeeRead:
    rbac.require_permission(current_user, "payroll.view", "view")
    return PayrollEmployeeRead.model_validate(_get_employee_or_404(db, employee_id))


@router.patch("/employees/{employee_id}", response_model=PayrollEmployeeRead)
def update_employee(
    employee_id: int,
    payload: PayrollEmployeeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollEmployeeRead:
    rbac.require_permission(current_user, "payroll.manage", "update")
    employee = _get_employee_or_404(db, employee_id)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("full_name") and payroll_service.employee_name_taken(
        db, updates["full_name"], exclude_id=employee.id
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Employee already exists")
    before = snapshot(employee, EMPLOYEE_AUDIT_FIELDS)
    for field, value in updates.items():
        setattr(employee, field, value)
    db.add(employee)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="PayrollEmployee",
        entity_id=employee.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(employee, EMPLOYEE_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(employee)
    return PayrollEmployeeRead.model_validate(employee)


@router.delete("/employees/{employee_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_employee(
    employee_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "payroll.manage", "delete")
    require_destructive_allowed("delete_payroll_employee")
    employee = _get_employee_or_404(db, employee_id)
    employee.soft_delete()
    employee.active = False
    db.add(employee)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="PayrollEmployee",
        entity_id=employee.id,
        user_id=current_user.id,
        old_values=snapshot(employee, EMPLOYEE_AUDIT_FIELDS),
    )
    db.commit()


# Imports


@router.get("/imports", response_model=List[PayrollImportRead])
def list_imports(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[PayrollImportRead]:
    rbac.require_permission(current_user, "payroll.view", "view")
    imports = db.query(PayrollImport).order_by(PayrollImport.created_at.desc(), PayrollImport.id.desc()).all()
    return [PayrollImportRead.model_validate(row) for row in imports]


@router.post("/imports", response_model=PayrollImportDetail, status_code=status.HTTP_201_CREATED)
def create_import(
    payload: PayrollImportCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollImportDetail:
    rbac.require_permission(current_user, "payroll.manage", "create")
    try:
        rows = payroll_service.rows_from_payload(payload.rows)
        payroll_import = payroll_service.create_import(
            db,
            rows=rows,
            user=current_user,
            period_start=payload.period_start,
            period_end=payload.period_end,
            original_file_name=payload.original_file_name,
        )
    except payroll_service.PayrollError as exc:
        db.rollback()
        raise _bad_request(exc)
    db.commit()
    return PayrollImportDetail.model_validate(_get_import_or_404(db, payroll_import.id))


@router.post("/imports/upload", response_model=PayrollImportDetail, status_code=status.HTTP_201_CREATED)
def upload_import(
    file: UploadFile = File(...),
    period_start: Optional[date] = Form(None),
    period_end: Optional[date] = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollImportDetail:
    rbac.require_permission(current_user, "payroll.manage", "create")
    content = read_upload_text(file)
    try:
        rows = payroll_service.parse_csv(content)
        payroll_import = payroll_service.create_import(
            db,
            rows=rows,
            user=current_user,
            period_start=period_start,
            period_end=period_end,
            original_file_name=file.filename,
        )
    except payroll_service.PayrollError as exc:
        db.rollback()
        raise _bad_request(exc)
    db.commit()
    return PayrollImportDetail.model_validate(_get_import_or_404(db, payroll_import.id))


@router.get("/imports/{import_id}", response_model=PayrollImportDetail)
def get_import(
    import_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollImportDetail:
    rbac.require_permission(current_user, "payroll.view", "view")
    return PayrollImportDetail.model_validate(_get_import_or_404(db, import_id))


@router.patch("/imports/{import_id}/rows/{row_id}", response_model=PayrollImportRowRead)
def link_import_row(
    import_id: int,
    row_id: int,
    payload: PayrollRowLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollImportRowRead:
    rbac.require_permission(current_user, "payroll.manage", "update")
    row = db.get(PayrollImportRow, row_id)
    if not row or row.import_id != import_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import row not found")
    try:
        payroll_service.link_row(db, row=row, employee_id=payload.employee_id)
    except payroll_service.PayrollError as exc:
        raise _bad_request(exc)
    db.commit()
    db.refresh(row)
    return PayrollImportRowRead.model_validate(row)


@router.delete("/imports/{import_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_import(
    import_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "payroll.manage", "delete")
    require_destructive_allowed("delete_payroll_import")
    payroll_import = _get_import_or_404(db, import_id)
    try:
        payroll_service.delete_import(db, payroll_import=payroll_import, user=current_user)
    except payroll_service.PayrollError as exc:
        raise _bad_request(exc)
    db.commit()


# Runs


@router.get("/runs", response_model=List[PayrollRunRead])
def list_runs(
    status_filter: Optional[PayrollRunStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[PayrollRunRead]:
    rbac.require_permission(current_user, "payroll.view", "view")
    query = db.query(PayrollRun)
    if status_filter:
        query = query.filter(PayrollRun.status == status_filter)
    runs = query.order_by(PayrollRun.period_start.desc(), PayrollRun.id.desc()).all()
    return [PayrollRunRead.model_validate(run) for run in runs]


@router.post("/runs", response_model=PayrollRunDetail, status_code=status.HTTP_201_CREATED)
def create_run(
    payload: PayrollRunCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollRunDetail:
    rbac.require_permission(current_user, "payroll.manage", "create")
    try:
        run = payroll_service.create_run(db, payload=payload, user=current_user)
    except payroll_service.PayrollError as exc:
        db.rollback()
        raise _bad_request(exc)
    db.commit()
    return _read_run(db, run.id)


@router.get("/runs/{run_id}", response_model=PayrollRunDetail)
def get_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollRunDetail:
    rbac.require_permission(current_user, "payroll.view", "view")
    return PayrollRunDetail.model_validate(_get_run_or_404(db, run_id))


@router.post("/runs/{run_id}/approve", response_model=PayrollRunDetail)
def approve_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollRunDetail:
    rbac.require_permission(current_user, "payroll.manage", "approve")
    run = _get_run_or_404(db, run_id)
    try:
        payroll_service.approve_run(db, run=run, user=current_user)
    except payroll_service.PayrollError as exc:
        raise _bad_request(exc)
    db.commit()
    return _read_run(db, run_id)


@router.delete("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "payroll.manage", "delete")
    require_destructive_allowed("delete_payroll_run")
    run = _get_run_or_404(db, run_id)
    try:
        payroll_service.delete_run(db, run=run, user=current_user)
    except payroll_service.PayrollError as exc:
        raise _bad_request(exc)
    db.commit()


@router.post(
    "/runs/{run_id}/lines/{line_id}/payments",
    response_model=PayrollPaymentRead,
    status_code=status.HTTP_201_CREATED,
)
def record_line_payment(
    run_id: int,
    line_id: int,
    payload: PayrollPaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollPaymentRead:
    rbac.require_permission(current_user, "payroll.manage", "update")
    run = _get_run_or_404(db, run_id)
    line = next((row for row in run.lines if row.id == line_id), None)
    if line is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payroll line not found")
    if run.status == PayrollRunStatus.DRAFT:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Approve the payroll run before recording payments")
    try:
        payment = payroll_service.record_payment(db, run=run, line=line, payload=payload, user=current_user)
    except payroll_service.PayrollError as exc:
        db.rollback()
        raise _bad_request(exc)
    db.commit()
    db.refresh(payment)
    return PayrollPaymentRead.model_validate(payment)


@router.get("/runs/{run_id}/pdf")
def download_run_pdf(
    run_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rbac.require_permission(current_user, "payroll.export", "export")
    run = _get_run_or_404(db, run_id)
    filename = f"payroll-run-{run.id}.pdf"
    path = save_pdf(payroll_run_pdf(run), filename, subdir="payroll")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")


@router.get("/runs/{run_id}/export.csv")
def export_run_csv(
    run_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    rbac.require_permission(current_user, "payroll.export", "export")
    run = _get_run_or_404(db, run_id)
    return Response(
        content=payroll_service.run_lines_csv(run),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=payroll-run-{run.id}.csv"},
    )


# Reports


@router.get("/analytics", response_model=PayrollAnalytics)
def payroll_analytics(
    date_start: Optional[date] = Query(None),
    date_end: Optional[date] = Query(None),
    run_id: Optional[int] = Query(None),
    employee_id: Optional[int] = Query(None),
    paid_status: Optional[PayrollPaidStatus] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PayrollAnalytics:
    rbac.require_permission(current_user, "payroll.view", "view")
    return payroll_reports.payroll_analytics(
        db,
        date_start=date_start,
        date_end=date_end,
        run_id=run_id,
        employee_id=employee_id,
        paid_status=paid_status,
    )


@router.get("/employee-reports/{employee_id}")
def employee_monthly_report(
    employee_id: int,
    month: int = Query(1),
    year: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rbac.require_permission(current_user, "payroll.reports", "export")
    if month < 1 or month > 12:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid month")
    employee = _get_employee_or_404(db, employee_id)
    report = payroll_reports.employee_month_report(db, employee=employee, year=year or date.today().year, month=month)
    path = save_pdf(employee_monthly_report_pdf(report), report.filename, subdir="payroll")
    return FileResponse(path=str(path), filename=report.filename, media_type="application/pdf")
