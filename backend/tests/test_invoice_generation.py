from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from abaops.models.enums import InvoiceStatus, ScheduledJobType
from abaops.models.invoice import Invoice
from abaops.models.master import Insurance
from abaops.scripts.scheduler_worker import run_due_jobs
from abaops.services.invoice_generation import generate_invoices_for_period, run_invoice_generation_job
from abaops.services.scheduled_jobs import get_job

# Tuesday 2026-01-13, 08:00 in New York: bills Mon 1/5 - Mon 1/12.
RUN_AT = datetime(2026, 1, 13, 13, 0, tzinfo=timezone.utc)


def _approve_new_timesheet(client, payload):
    response = client.post("/api/timesheets", json=payload)
    assert response.status_code == 201, response.text
    response = client.post(f"/api/timesheets/{response.json()['id']}/approve")
    assert response.status_code == 200, response.text


def test_generates_one_invoice_per_client(db, approved_timesheet, sent_emails):
    summary = generate_invoices_for_period(db, now=RUN_AT)
    db.commit()

    assert summary.success is True
    assert summary.invoices_created == 1
    assert summary.clients_processed == 1
    assert summary.period.label == "Mon 1/5/2026 - Mon 1/12/2026"

    invoice = db.get(Invoice, summary.invoice_ids[0])
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.total_amount == Decimal("72.00")
    assert invoice.notes == "Automatically generated for Mon 1/5/2026 - Mon 1/12/2026"
    assert len(sent_emails) == 1


def test_rerun_does_not_double_bill(db, approved_timesheet):
    generate_invoices_for_period(db, now=RUN_AT)
    db.commit()

    summary = generate_invoices_for_period(db, now=RUN_AT)
    db.commit()
    assert summary.invoices_created == 0
    assert summary.invoices_updated == 0
    assert db.query(Invoice).count() == 1


def test_late_approvals_are_added_to_the_period_invoice(client, db, approved_timesheet, timesheet_payload):
    first = generate_invoices_for_period(db, now=RUN_AT)
    db.commit()

    _approve_new_timesheet(
        client,
        timesheet_payload(
            entries=[{"date": "2026-01-06", "start_time": "13:00", "end_time": "14:00", "minutes": 60, "notes": "DR"}]
        ),
    )
    summary = generate_invoices_for_period(db, now=RUN_AT)
    db.commit()

    assert summary.invoices_created == 0
    assert summary.invoices_updated == 1
    assert summary.invoice_ids == first.invoice_ids
    db.expire_all()
    invoice = db.get(Invoice, first.invoice_ids[0])
    assert invoice.total_amount == Decimal("120.00")
    assert len(invoice.entries) == 3


def test_client_failure_is_reported(db, master_data, approved_timesheet):
    insurance = db.get(Insurance, master_data.insurance.id)
    insurance.rate_per_unit = Decimal("-1.00")
    db.commit()

    summary = generate_invoices_for_period(db, now=RUN_AT)
    db.commit()
    assert summary.success is False
    assert summary.invoices_created == 0
    assert summary.errors[0].startswith("Failed to generate invoice for Sam Client")
    assert db.query(Invoice).count() == 0


def test_job_without_admin_records_failure(db):
    summary = run_invoice_generation_job(db, now=RUN_AT)
    db.commit()
    assert summary.success is False
    assert "No active admin" in summary.errors[0]

    job = get_job(db, ScheduledJobType.INVOICE_GENERATION)
    assert job.metadata_json["success"] is False
    assert job.last_run is not None


def test_run_due_jobs_waits_for_next_run(db, approved_timesheet):
    monday = datetime(2026, 1, 12, 15, 0, tzinfo=timezone.utc)
    assert run_due_jobs(db, now=monday) == 0
    assert db.query(Invoice).count() == 0

    assert run_due_jobs(db, now=RUN_AT) == 2
    assert db.query(Invoice).count() == 1
    job = get_job(db, ScheduledJobType.INVOICE_GENERATION)
    assert job.metadata_json["invoices_created"] == 1
    assert job.metadata_json["period_label"] == "Mon 1/5/2026 - Mon 1/12/2026"


def test_generation_endpoints(client):
    response = client.get("/api/invoices/generation-status")
    assert response.status_code == 200, response.text
    assert response.json()["active"] is False
    assert response.json()["schedule"] == "0 7 * * 2"

    response = client.post("/api/invoices/generate-now")
    assert response.status_code == 200, response.text
    assert response.json()["success"] is True

    status_body = client.get("/api/invoices/generation-status").json()
    assert status_body["active"] is True
    assert status_body["last_run"] is not None

    jobs = client.get("/api/jobs")
    assert jobs.status_code == 200, jobs.text
    assert [job["job_type"] for job in jobs.json()] == ["INVOICE_GENERATION"]

    response = client.post("/api/jobs/COMMUNITY_EMAIL_SENDER/run")
    assert response.status_code == 200, response.text
    assert response.json()["metadata_json"] == {"sent": 0, "failed": 0, "errors": []}
