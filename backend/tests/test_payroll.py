from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from abaops.models.payroll import PayrollEmployee
from abaops.services.payroll import (
    PayrollError,
    gross_pay,
    minutes_between,
    parse_clock,
    parse_csv,
    split_hours,
)
from abaops.services.payroll_reports import employee_month_report


@pytest.fixture()
def employee(client):
    response = client.post(
        "/api/payroll/employees",
        json={
            "full_name": "Riley Tech",
            "scanner_external_id": "E-100",
            "default_hourly_rate": "20.00",
            "overtime_after_hours": "8.00",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _import(client, rows):
    response = client.post(
        "/api/payroll/imports",
        json={"original_file_name": "scanner.csv", "period_start": "2026-01-05", "period_end": "2026-01-11", "rows": rows},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_parse_clock_accepts_12_and_24_hour_times():
    assert parse_clock("9:05 AM") == "09:05"
    assert parse_clock("12:00 am") == "00:00"
    assert parse_clock("9:05 PM") == "21:05"
    assert parse_clock("17:30") == "17:30"
    assert parse_clock("") is None
    with pytest.raises(PayrollError):
        parse_clock("25:00")


def test_minutes_between_wraps_past_midnight():
    assert minutes_between("09:00", "17:30") == 510
    assert minutes_between("22:00", "02:00") == 240
    assert minutes_between(None, "02:00") == 0


def test_overtime_threshold_applies_per_week():
    split = split_hours(
        [(date(2026, 1, 5), 300), (date(2026, 1, 6), 300), (date(2026, 1, 12), 300)],
        overtime_after_hours=Decimal("8"),
    )
    assert split.total_hours == Decimal("15.00")
    assert split.regular_hours == Decimal("13.00")
    assert split.overtime_hours == Decimal("2.00")
    assert gross_pay(split, rate=Decimal("20.00"), multiplier=Decimal("1.5")) == Decimal("320.00")


def test_parse_csv_reads_scanner_export():
    rows = parse_csv(
        "employee,external_id,date,in,out\n"
        "Riley Tech,E-100,01/05/2026,9:00 AM,5:00 PM\n"
        "\n"
        "Morgan Aide,,2026-01-06,08:00,12:30\n"
    )
    assert [row.minutes for row in rows] == [480, 270]
    assert rows[0].work_date == date(2026, 1, 5)
    assert rows[1].external_id is None


def test_parse_csv_reports_the_bad_line():
    with pytest.raises(PayrollError, match="Line 2"):
        parse_csv("employee,date,in,out\nRiley,not-a-date,09:00,10:00\n")


def test_duplicate_employee_name(client, employee):
    response = client.post("/api/payroll/employees", json={"full_name": "riley tech"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Employee already exists"


def test_import_links_rows_by_external_id_or_name(client, employee):
    payroll_import = _import(
        client,
        [
            {"external_id": "E-100", "work_date": "2026-01-05", "in_time": "9:00 AM", "out_time": "5:00 PM"},
            {"employee_name": "riley  tech", "work_date": "2026-01-06", "minutes": 300},
            {"employee_name": "Unknown Person", "work_date": "2026-01-06", "minutes": 60},
        ],
    )
    assert payroll_import["status"] == "DRAFT"
    linked = [row["linked_employee_id"] for row in payroll_import["rows"]]
    assert linked == [employee["id"], employee["id"], None]

    unknown = payroll_import["rows"][2]
    response = client.patch(
        f"/api/payroll/imports/{payroll_import['id']}/rows/{unknown['id']}",
        json={"employee_id": employee["id"]},
    )
    assert response.status_code == 200, response.text
    assert response.json()["linked_employee_id"] == employee["id"]


def test_upload_csv_import(client, employee):
    content = b"employee,external_id,date,in,out\nRiley Tech,E-100,2026-01-05,09:00,17:00\n"
    response = client.post(
        "/api/payroll/imports/upload",
        files={"file": ("scanner.csv", content, "text/csv")},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["row_count"] == 1
    assert body["original_file_name"] == "scanner.csv"
    assert body["rows"][0]["linked_employee_id"] == employee["id"]


def test_run_lifecycle(client, employee):
    payroll_import = _import(
        client,
        [
            {"external_id": "E-100", "work_date": "2026-01-05", "minutes": 300},
            {"external_id": "E-100", "work_date": "2026-01-06", "minutes": 300},
        ],
    )
    response = client.post(
        "/api/payroll/runs",
        json={"name": "Week 2", "source_import_id": payroll_import["id"]},
    )
    assert response.status_code == 201, response.text
    run = response.json()
    assert run["status"] == "DRAFT"
    line = run["lines"][0]
    assert Decimal(line["regular_hours"]) == Decimal("8.00")
    assert Decimal(line["overtime_hours"]) == Decimal("2.00")
    assert Decimal(line["gross_pay"]) == Decimal("220.00")
    assert Decimal(run["total_owed"]) == Decimal("220.00")

    assert client.get(f"/api/payroll/imports/{payroll_import['id']}").json()["status"] == "FINALIZED"
    assert client.delete(f"/api/payroll/imports/{payroll_import['id']}").status_code == 400

    payment_url = f"/api/payroll/runs/{run['id']}/lines/{line['id']}/payments"
    response = client.post(payment_url, json={"amount": "100.00", "payment_date": "2026-01-16"})
    assert response.status_code == 400

    response = client.post(f"/api/payroll/runs/{run['id']}/approve")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "APPROVED"

    response = client.post(payment_url, json={"amount": "100.00", "payment_date": "2026-01-16"})
    assert response.status_code == 201, response.text
    current = client.get(f"/api/payroll/runs/{run['id']}").json()
    assert current["status"] == "PAID_PARTIAL"
    assert Decimal(current["total_owed"]) == Decimal("120.00")

    response = client.post(payment_url, json={"amount": "500.00", "payment_date": "2026-01-17"})
    assert response.status_code == 400
    assert "exceeds amount owed" in response.json()["detail"]

    response = client.post(payment_url, json={"amount": "120.00", "payment_date": "2026-01-17"})
    assert response.status_code == 201, response.text
    assert client.get(f"/api/payroll/runs/{run['id']}").json()["status"] == "PAID"

    assert client.delete(f"/api/payroll/runs/{run['id']}").status_code == 400


def test_run_rate_override_and_exports(client, employee):
    payroll_import = _import(client, [{"external_id": "E-100", "work_date": "2026-01-05", "minutes": 120}])
    response = client.post(
        "/api/payroll/runs",
        json={
            "name": "Override",
            "source_import_id": payroll_import["id"],
            "employee_rates": {str(employee["id"]): "30.00"},
        },
    )
    assert response.status_code == 201, response.text
    run = response.json()
    assert Decimal(run["lines"][0]["hourly_rate_used"]) == Decimal("30.00")
    assert Decimal(run["total_gross"]) == Decimal("60.00")

    export = client.get(f"/api/payroll/runs/{run['id']}/export.csv")
    assert export.status_code == 200
    assert "Riley Tech" in export.text

    pdf = client.get(f"/api/payroll/runs/{run['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.content.startswith(b"%PDF")


def test_run_requires_linked_rows(client, employee):
    payroll_import = _import(client, [{"employee_name": "Nobody", "work_date": "2026-01-05", "minutes": 60}])
    response = client.post("/api/payroll/runs", json={"name": "Empty", "source_import_id": payroll_import["id"]})
    assert response.status_code == 400
    assert "No linked import rows" in response.json()["detail"]


def test_payroll_requires_permission(client, make_user, auth):
    auth.user = make_user("therapist@example.com")
    assert client.get("/api/payroll/employees").status_code == 403


def _partly_paid_run(client, employee):
    payroll_import = _import(client, [{"external_id": "E-100", "work_date": "2026-01-05", "minutes": 300}])
    run = client.post("/api/payroll/runs", json={"name": "Week 2", "source_import_id": payroll_import["id"]}).json()
    client.post(f"/api/payroll/runs/{run['id']}/approve")
    line = run["lines"][0]
    response = client.post(
        f"/api/payroll/runs/{run['id']}/lines/{line['id']}/payments",
        json={"amount": "40.00", "payment_date": "2026-01-16", "reference": "CHK-1"},
    )
    assert response.status_code == 201, response.text
    return run


def test_payroll_analytics_totals_and_status_filter(client, employee):
    _partly_paid_run(client, employee)
    response = client.get("/api/payroll/analytics")
    assert response.status_code == 200, response.text
    body = response.json()
    assert Decimal(body["total_gross"]) == Decimal("100.00")
    assert Decimal(body["total_paid"]) == Decimal("40.00")
    assert Decimal(body["total_owed"]) == Decimal("60.00")
    assert body["employee_count"] == {"unpaid": 0, "partial": 1, "paid": 0, "total": 1}
    assert body["payments_over_time"] == [{"date": "2026-01-16", "amount": "40.00"}]
    assert body["owed_vs_paid_by_employee"][0]["name"] == "Riley Tech"
    assert [step["category"] for step in body["waterfall"]] == ["Gross Total", "Paid", "Remaining Owed"]

    body = client.get("/api/payroll/analytics", params={"paid_status": "paid"}).json()
    assert body["employee_count"]["total"] == 0
    assert Decimal(body["total_gross"]) == Decimal("0.00")

    body = client.get("/api/payroll/analytics", params={"date_start": "2026-02-01"}).json()
    assert body["owed_vs_paid_by_employee"] == []


def test_employee_monthly_report_pdf(client, employee):
    _partly_paid_run(client, employee)
    response = client.get(f"/api/payroll/employee-reports/{employee['id']}", params={"month": 1, "year": 2026})
    assert response.status_code == 200, response.text
    assert response.content.startswith(b"%PDF")
    assert "employee-report-Riley_Tech-1-2026.pdf" in response.headers["content-disposition"]


def test_employee_month_report_summary(client, db, employee):
    _partly_paid_run(client, employee)
    record = db.get(PayrollEmployee, employee["id"])
    report = employee_month_report(db, employee=record, year=2026, month=1)
    assert report.total_hours == Decimal("5.00")
    assert report.gross_pay == Decimal("100.00")
    assert report.total_owed == Decimal("60.00")
    assert [payment.reference for payment in report.payments] == ["CHK-1"]

    empty = employee_month_report(db, employee=record, year=2026, month=2)
    assert empty.runs == []
    assert empty.hourly_rate == Decimal("20.00")


def test_employee_report_rejects_bad_month_and_unknown_employee(client, employee):
    assert client.get(f"/api/payroll/employee-reports/{employee['id']}", params={"month": 13}).status_code == 400
    assert client.get("/api/payroll/employee-reports/9999", params={"month": 1}).status_code == 404
