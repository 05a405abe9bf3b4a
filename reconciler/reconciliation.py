from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading

from sqlalchemy.orm import Session, sessionmaker

from reconciler.booking_store import BookingStore
from reconciler.column_mapping import map_rows
from reconciler.config import Settings
from reconciler.db_models import ValidationReport
from reconciler.errors import ReportStateError, StoreUnavailableError
from reconciler.ingest import iter_rows
from reconciler.matching import MatchEngine
from reconciler.report_store import (
    count_results_by_status,
    discard_results,
    get_report,
    mark_report_completed,
    mark_report_failed,
    store_result,
)
from reconciler.retry import RetryExhaustedError, run_with_retries
from reconciler.schemas import (
    MATCHED,
    PARTIAL,
    REPORT_PROCESSING,
    UNMATCHED,
    CanonicalRecord,
    MatchVerdict,
    ReconciliationSummary,
)


logger = logging.getLogger(__name__)


class ReconciliationRunner:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory

    def run(
        self,
        *,
        report_id: int,
        content: bytes,
        file_kind: str,
        column_mapping: Mapping[str, str] | None = None,
        acting_user: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ReconciliationSummary:
        with self.session_factory() as db:
            report = get_report(db, report_id)
            if report.status != REPORT_PROCESSING:
                raise ReportStateError(f"report {report_id} is already {report.status}")
            acting_user = acting_user or report.uploaded_by

            try:
                records = list(map_rows(iter_rows(content, file_kind), column_mapping))
            except Exception as exc:
                mark_report_failed(db, report, error=str(exc))
                logger.exception("manifest ingestion failed", extra={"report_id": report_id, "file_kind": file_kind})
                return self._summary(report)

            logger.info("manifest ingested", extra={"report_id": report_id, "records": len(records)})

            try:
                return self._reconcile_records(db, report, records, acting_user, cancel_event)
            except ReportStateError as exc:
                # The reaper closed the report while its records were still matching.
                discard_results(db, report_id)
                db.refresh(report)
                logger.warning(
                    "report closed during reconciliation; results discarded",
                    extra={"report_id": report_id, "status": report.status, "error": str(exc)},
                )
                return self._summary(report)

    def _reconcile_records(
        self,
        db: Session,
        report: ValidationReport,
        records: list[CanonicalRecord],
        acting_user: str,
        cancel_event: threading.Event | None,
    ) -> ReconciliationSummary:
        report_id = report.id
        try:
            statuses = self._match_all(report_id, records, acting_user, cancel_event)
        except Exception as exc:
            # A record without a persisted result fails the whole report.
            discard_results(db, report_id)
            db.refresh(report)
            mark_report_failed(db, report, error=str(exc))
            logger.exception("reconciliation failed", extra={"report_id": report_id})
            return self._summary(report)

        if cancel_event is not None and cancel_event.is_set():
            logger.warning(
                "reconciliation cancelled; report left processing",
                extra={"report_id": report_id, "processed": len(statuses), "records": len(records)},
            )
            counts = count_results_by_status(db, report_id)
            return ReconciliationSummary(
                report_id=report.id,
                report_number=report.report_number,
                status=report.status,
                total_records=sum(counts.values()),
                matched=counts[MATCHED],
                partial=counts[PARTIAL],
                unmatched=counts[UNMATCHED],
                cancelled=True,
            )

        counts = count_results_by_status(db, report_id)
        total = sum(counts.values())
        db.refresh(report)
        if total != len(records):
            discard_results(db, report_id)
            mark_report_failed(db, report, error=f"persisted {total} results for {len(records)} records")
            logger.error("result count mismatch", extra={"report_id": report_id, "persisted": total, "records": len(records)})
            return self._summary(report)

        mark_report_completed(
            db,
            report,
            total_records=total,
            matched_records=counts[MATCHED],
            unmatched_records=counts[UNMATCHED],
            partial_matches=counts[PARTIAL],
        )
        logger.info(
            "reconciliation completed",
            extra={"report_id": report_id, "total": total, **counts},
        )
        return self._summary(report)

    def _match_all(
        self,
        report_id: int,
        records: list[CanonicalRecord],
        acting_user: str,
        cancel_event: threading.Event | None,
    ) -> list[str]:
        statuses: list[str] = []
        if not records:
            return statuses

        with ThreadPoolExecutor(max_workers=max(self.settings.max_workers, 1)) as pool:
            futures: list[Future[str | None]] = [
                pool.submit(self._reconcile_record, report_id, record, acting_user, cancel_event) for record in records
            ]
            for future in futures:
                status = future.result()
                if status is not None:
                    statuses.append(status)
        return statuses

    def _reconcile_record(
        self,
        report_id: int,
        record: CanonicalRecord,
        acting_user: str,
        cancel_event: threading.Event | None,
    ) -> str | None:
        if cancel_event is not None and cancel_event.is_set():
            return None

        with self.session_factory() as db:
            store = BookingStore(db)
            engine = MatchEngine(store, policy=self.settings.match_policy)
            try:
                verdict = engine.match(record)
            except StoreUnavailableError as exc:
                logger.warning("booking lookup unavailable", extra={"report_id": report_id, "error": str(exc)})
                verdict = MatchVerdict(status=UNMATCHED, score=0, details={"reason": "store_unavailable", "error": str(exc)})

            if verdict.status == MATCHED and verdict.booking_id is not None:
                verdict = self._validate_booking(store, record, verdict, acting_user)

            store_result(db, report_id=report_id, record=record, verdict=verdict)
            return verdict.status

    def _validate_booking(
        self,
        store: BookingStore,
        record: CanonicalRecord,
        verdict: MatchVerdict,
        acting_user: str,
    ) -> MatchVerdict:
        booking_id = verdict.booking_id
        try:
            run_with_retries(
                lambda: store.update_booking_validation(
                    booking_id,
                    airline_pnr=record.airline_reference,
                    ticket_number=record.ticket_number,
                    validated_by=acting_user,
                ),
                max_retries=self.settings.max_update_retries,
                backoff_seconds=self.settings.retry_backoff_seconds,
                should_retry=lambda exc: isinstance(exc, StoreUnavailableError),
                label=f"validate booking {booking_id}",
            )
        except RetryExhaustedError as exc:
            logger.error("booking validation skipped", extra={"booking_id": booking_id, "error": str(exc)})
            details = dict(verdict.details)
            details["bookingUpdate"] = "failed"
            details["bookingUpdateError"] = str(exc)
            return MatchVerdict(status=verdict.status, score=verdict.score, details=details, booking_id=booking_id)
        return verdict

    def _summary(self, report: ValidationReport) -> ReconciliationSummary:
        return ReconciliationSummary(
            report_id=report.id,
            report_number=report.report_number,
            status=report.status,
            total_records=report.total_records,
            matched=report.matched_records,
            partial=report.partial_matches,
            unmatched=report.unmatched_records,
            error=report.error,
        )
