from __future__ import annotations

from datetime import date
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Iterable, List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from abaops.core.settings import settings
from abaops.services.billing import ZERO, _q
from abaops.services.timesheets import format_time_12h


HEADER_BACKGROUND = colors.HexColor("#1b2749")
GRID_COLOR = colors.HexColor("#253355")
ROW_BACKGROUNDS = [colors.whitesmoke, colors.HexColor("#f4f6fb")]


def _format_day(value: Optional[date]) -> str:
    if value is None:
        return "-"
    return f"{value.strftime('%a')} {value.month}/{value.day}/{value.year}"


def _money(value: Optional[Decimal]) -> str:
    return f"${_q(Decimal(value or 0)):,.2f}"


def _table(data: List[list], *, col_widths: Optional[Iterable[float]] = None) -> Table:
    table = Table(data, repeatRows=1, colWidths=list(col_widths) if col_widths else None)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HEADER_BACKGROUND),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("GRID", (0, 0), (-1, -1), 0.25, GRID_COLOR),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), ROW_BACKGROUNDS),
            ]
        )
    )
    return table


def _key_values(rows: List[tuple]) -> Table:
    table = Table([[label, value or ""] for label, value in rows], hAlign="LEFT")
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
            ]
        )
    )
    return table


def _build(title: str, elements: list) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=36,
        rightMargin=36,
        topMargin=36,
        bottomMargin=36,
        title=title,
    )
    doc.build(elements)
    return buffer.getvalue()


def timesheet_pdf(timesheet) -> bytes:
    styles = getSampleStyleSheet()
    elements: list = [
        Paragraph(settings.company_name, styles["Title"]),
        Paragraph("BCBA TIMESHEET" if timesheet.is_bcba else "TIMESHEET", styles["Heading2"]),
        Spacer(1, 8),
    ]
    client = timesheet.client
    provider = timesheet.provider
    details = [
        ("Client:" if timesheet.is_bcba else "Child:", client.name if client else ""),
        ("Phone:", client.phone if client else ""),
        ("Provider:", provider.name if provider else ""),
        ("BCBA:", timesheet.bcba_name),
        ("Timesheet #:", timesheet.timesheet_number),
        ("Period:", f"{_format_day(timesheet.start_date)} - {_format_day(timesheet.end_date)}"),
    ]
    if client and client.address:
        details.insert(1, ("Address:", client.address))
    if timesheet.service_type:
        details.append(("Service Type:", timesheet.service_type))
    elements.append(_key_values(details))
    elements.append(Spacer(1, 12))

    data = [["Date", "In", "Out", "Hours", "Units", "Type"]]
    hours_by_type = {"DR": Decimal("0"), "SV": Decimal("0")}
    total_hours = Decimal("0")
    total_units = ZERO
    for entry in timesheet.entries:
        hours = (Decimal(entry.minutes) / Decimal(60)).quantize(Decimal("0.1"))
        total_hours += Decimal(entry.minutes) / Decimal(60)
        total_units += Decimal(entry.units or 0)
        if entry.notes in hours_by_type:
            hours_by_type[entry.notes] += Decimal(entry.minutes) / Decimal(60)
        data.append(
            [
                _format_day(entry.date),
                format_time_12h(entry.start_time),
                format_time_12h(entry.end_time),
                f"{hours}",
                f"{_q(Decimal(entry.units or 0))}",
                entry.notes or "-",
            ]
        )
    elements.append(_table(data))
    elements.append(Spacer(1, 8))
    totals = [
        ("Total DR:", f"{hours_by_type['DR']:.1f}"),
        ("Total SV:", f"{hours_by_type['SV']:.1f}"),
        ("Total hours:", f"{total_hours:.1f}"),
        ("Total units:", f"{_q(total_units)}"),
    ]
    elements.append(_key_values(totals))
    elements.append(Spacer(1, 24))

    signer = "BCBA" if timesheet.is_bcba else "Provider"
    signatures = Table(
        [
            ["Client Signature:", f"{signer} Signature:"],
            ["______________________________", "______________________________"],
        ],
        colWidths=[260, 260],
    )
    signatures.setStyle(TableStyle([("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold")]))
    elements.append(signatures)
    elements.append(Spacer(1, 12))
    elements.append(Paragraph("DR = Direct Service &nbsp;&nbsp; SV = Supervision", styles["Normal"]))
    return _build(f"Timesheet {timesheet.timesheet_number}", elements)


def invoice_pdf(invoice) -> bytes:
    styles = getSampleStyleSheet()
    elements: list = [
        Paragraph(settings.company_name, styles["Title"]),
        Paragraph(f"INVOICE {invoice.invoice_number}", styles["Heading2"]),
        Spacer(1, 8),
    ]
    client = invoice.client
    elements.append(
        _key_values(
            [
                ("Bill To:", client.name if client else ""),
                ("Insurance:", client.insurance_name if client else ""),
                ("Medicaid ID:", client.medicaid_id if client else ""),
                ("Period:", f"{_format_day(invoice.start_date)} - {_format_day(invoice.end_date)}"),
                ("Status:", invoice.status.value),
            ]
        )
    )
    elements.append(Spacer(1, 12))

    data = [["Date", "Provider", "Type", "Units", "Billable", "Rate", "Amount"]]
    for entry in invoice.entries:
        data.append(
            [
                _format_day(entry.service_date),
                entry.provider_name or "",
                entry.entry_type or "-",
                f"{entry.units}",
                f"{entry.billable_units}",
                _money(entry.rate),
                _money(entry.amount),
            ]
        )
    elements.append(_table(data))
    elements.append(Spacer(1, 12))
    elements.append(
        _key_values(
            [
                ("Total:", _money(invoice.total_amount)),
                ("Adjustments:", _money(invoice.adjustments)),
                ("Paid:", _money(invoice.paid_amount)),
                ("Outstanding:", _money(invoice.outstanding)),
            ]
        )
    )
    if invoice.notes:
        elements.append(Spacer(1, 12))
        elements.append(Paragraph(f"Notes: {invoice.notes}", styles["Normal"]))
    return _build(f"Invoice {invoice.invoice_number}", elements)


def community_invoice_pdf(invoice) -> bytes:
    styles = getSampleStyleSheet()
    client = invoice.client
    elements: list = [
        Paragraph(settings.company_name, styles["Title"]),
        Paragraph(f"COMMUNITY INVOICE {invoice.invoice_label}", styles["Heading2"]),
        Spacer(1, 8),
    ]
    bill_to = [("Bill To:", client.full_name if client else "")]
    if client:
        if client.address:
            bill_to.append(("Address:", client.address))
        city_line = " ".join(part for part in (client.city, client.state, client.zip_code) if part)
        if city_line:
            bill_to.append(("", city_line))
        if client.phone:
            bill_to.append(("Phone:", client.phone))
        if client.email:
            bill_to.append(("Email:", client.email))
    bill_to.append(("Class Name:", invoice.class_name or "N/A"))
    elements.append(_key_values(bill_to))
    elements.append(Spacer(1, 12))

    service_day = invoice.service_date or (invoice.created_at.date() if invoice.created_at else None)
    data = [
        ["Date", "Description", "Units", "Rate", "Total"],
        [
            _format_day(service_day),
            invoice.class_name or "N/A",
            f"{invoice.units} x {invoice.unit_minutes} min",
            _money(invoice.rate_per_unit),
            _money(invoice.total_amount),
        ],
        ["", "", "", "Total", _money(invoice.total_amount)],
    ]
    elements.append(_table(data))
    if invoice.notes:
        elements.append(Spacer(1, 12))
        elements.append(Paragraph(f"Notes: {invoice.notes}", styles["Normal"]))
    return _build(f"Community invoice {invoice.invoice_label}", elements)


def payroll_run_pdf(run) -> bytes:
    styles = getSampleStyleSheet()
    elements: list = [
        Paragraph(settings.company_name, styles["Title"]),
        Paragraph(f"Payroll Run: {run.name}", styles["Heading2"]),
        Paragraph(f"Period: {_format_day(run.period_start)} - {_format_day(run.period_end)}", styles["Normal"]),
        Paragraph(f"Status: {run.status.value}", styles["Normal"]),
        Spacer(1, 12),
    ]
    data = [["Employee", "Rate", "Hours", "Regular", "Overtime", "Gross", "Paid", "Owed"]]
    for line in run.lines:
        data.append(
            [
                line.employee_name or "",
                _money(line.hourly_rate_used),
                f"{line.total_hours}",
                f"{line.regular_hours}",
                f"{line.overtime_hours}",
                _money(line.gross_pay),
                _money(line.amount_paid),
                _money(line.amount_owed),
            ]
        )
    data.append(["Totals", "", "", "", "", _money(run.total_gross), _money(run.total_paid), _money(run.total_owed)])
    elements.append(_table(data))
    return _build(f"Payroll run {run.name}", elements)


def employee_monthly_report_pdf(report) -> bytes:
    styles = getSampleStyleSheet()
    employee = report.employee
    elements: list = [
        Paragraph(settings.company_name, styles["Title"]),
        Paragraph(f"Employee Report: {report.month_name} {report.year}", styles["Heading2"]),
        _key_values(
            [
                ("Employee", employee.full_name),
                ("Email", employee.email),
                ("Phone", employee.phone),
                ("Default rate", _money(employee.default_hourly_rate)),
            ]
        ),
        Spacer(1, 12),
        _key_values(
            [
                ("Total hours", f"{report.total_hours}"),
                ("Hourly rate", _money(report.hourly_rate)),
                ("Gross pay", _money(report.gross_pay)),
                ("Paid", _money(report.total_paid)),
                ("Owed", _money(report.total_owed)),
            ]
        ),
        Spacer(1, 12),
    ]
    if report.runs:
        data = [["Run", "Period", "Hours", "Rate", "Gross", "Paid", "Owed"]]
        for run in report.runs:
            data.append(
                [
                    run.run_name,
                    f"{_format_day(run.period_start)} - {_format_day(run.period_end)}",
                    f"{run.hours}",
                    _money(run.rate),
                    _money(run.gross),
                    _money(run.paid),
                    _money(run.owed),
                ]
            )
        elements.append(_table(data))
    else:
        elements.append(Paragraph("No payroll runs cover this month.", styles["Normal"]))
    if report.payments:
        elements.append(Spacer(1, 12))
        elements.append(Paragraph("Payments", styles["Heading3"]))
        data = [["Date", "Amount", "Method", "Reference"]]
        for payment in report.payments:
            data.append(
                [_format_day(payment.payment_date), _money(payment.amount), payment.method.value, payment.reference or ""]
            )
        elements.append(_table(data))
    return _build(f"Employee report {employee.full_name}", elements)


def save_pdf(content: bytes, filename: str, *, subdir: str = "pdfs") -> Path:
    target_dir = settings.ensure_uploads_dir() / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / filename
    path.write_bytes(content)
    return path
