from datetime import datetime, timedelta
import time

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reconciler.db_models import ValidationReport, ValidationResult, utc_now
from reconciler.errors import ReportNotFoundError, ReportStateError
from reconciler.schemas import (
    MATCHED,
    PARTIAL,
    REPORT_COMPLETED,
    REPORT_FAILED,
    REPORT_PROCESSING,
    UNMATCHED,
    CanonicalRecord,
    MatchVerdict,
)


_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(value: int) -> str:
    digits = ""
    while True:
        value, remainder = divmod(value, 36)
        digits = _BASE36[remainder] + digits
        if value == 0:
            return digits


def new_report_number() -> str:
    return f"VAL-{_base36(time.time_ns() // 1_000_000)}"


def create_report(db: Session, *, file_name: str, file_type: str, uploaded_by: str) -> ValidationReport:
    for _ in range(3):
        report = ValidationReport(
            report_number=new_report_number(),
            file_name=file_name,
            file_type=file_type,
            uploaded_by=uploaded_by,
            status=REPORT_PROCESSING,
        )
        db.add(report)
        try:
            db.commit()
        except IntegrityError:
            # Two uploads in the same millisecond collide on report_number.
            db.rollback()
            time.sleep(0.002)
            continue
        db.refresh(report)
        return report
    raise ReportStateError("could not allocate a unique report number")


def get_report(db: Session, report_id: int) -> ValidationReport:
    report = db.get(ValidationReport, report_id)
    if report is None:
        raise ReportNotFoundError(f"validation report {report_id} not found")
    return report


def list_reports(
    db: Session, *, status: str | None = None, page: int = 1, limit: int = 10
) -> tuple[list[ValidationReport], int]:
    page = max(page, 1)
    stmt = select(ValidationReport)
    count_stmt = select(func.count()).select_from(ValidationReport)
    if status:
        stmt = stmt.where(ValidationReport.status == status)
        count_stmt = count_stmt.where(ValidationReport.status == status)

    stmt = stmt.order_by(ValidationReport.created_at.desc(), ValidationReport.id.desc()).offset((page - 1) * limit).limit(limit)
    reports = list(db.execute(stmt).scalars().all())
    total = db.execute(count_stmt).scalar_one()
    return reports, total


def list_results(db: Session, report_id: int) -> list[ValidationResult]:
    stmt = select(ValidationResult).where(ValidationResult.report_id == report_id).order_by(ValidationResult.id)
    return list(db.execute(stmt).scalars().all())


def _ensure_processing(report: ValidationReport) -> None:
    if report.status != REPORT_PROCESSING:
        raise ReportStateError(f"report {report.id} is already {report.status}")


def mark_report_completed(
    db: Session,
    report: ValidationReport,
    *,
    total_records: int,
    matched_records: int,
    unmatched_records: int,
    partial_matches: int,
) -> None:
    _ensure_processing(report)
    report.status = REPORT_COMPLETED
    report.total_records = total_records
    report.matched_records = matched_records
    report.unmatched_records = unmatched_records
    report.partial_matches = partial_matches
    report.completed_at = utc_now()
    report.error = None
    db.commit()


def mark_report_failed(db: Session, report: ValidationReport, *, error: str) -> None:
    _ensure_processing(report)
    report.status = REPORT_FAILED
    report.error = error
    report.total_records = 0
    report.matched_records = 0
    report.unmatched_records = 0
    report.partial_matches = 0
    report.completed_at = utc_now()
    db.commit()


def store_result(db: Session, *, report_id: int, record: CanonicalRecord, verdict: MatchVerdict) -> ValidationResult:
    result = ValidationResult(
        report_id=report_id,
        booking_id=verdict.booking_id,
        airline_reference=record.airline_reference,
        ticket_number=record.ticket_number,
        passenger_name=record.passenger_name,
        flight_number=record.flight_number,
        flight_date=record.flight_date,
        amount=record.amount,
        match_status=verdict.status,
        match_score=verdict.score,
        match_details=dict(verdict.details),
    )
    db.add(result)
    db.commit()
    return result


def count_results_by_status(db: Session, report_id: int) -> dict[str, int]:
    stmt = (
        select(ValidationResult.match_status, func.count())
        .where(ValidationResult.report_id == report_id)
        .group_by(ValidationResult.match_status)
    )
    counts = {MATCHED: 0, PARTIAL: 0, UNMATCHED: 0}
    for status, count in db.execute(stmt).all():
        counts[status] = count
    return counts


def discard_results(db: Session, report_id: int) -> None:
    db.execute(delete(ValidationResult).where(ValidationResult.report_id == report_id))
    db.commit()


def find_stale_reports(db: Session, *, older_than: timedelta, now: datetime | None = None) -> list[ValidationReport]:
    cutoff = (now or utc_now()) - older_than
    stmt = select(ValidationReport).where(
        ValidationReport.status == REPORT_PROCESSING,
        ValidationReport.created_at < cutoff,
    )
    return list(db.execute(stmt).scalars().all())
