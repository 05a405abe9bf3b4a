import argparse
import json
import logging
from pathlib import Path

from reconciler.column_mapping import MAPPING_KEYS
from reconciler.config import get_settings
from reconciler.database import build_session_factory
from reconciler.ingest import detect_file_kind
from reconciler.reaper import start_reaper
from reconciler.reconciliation import ReconciliationRunner
from reconciler.report_store import create_report, get_report, list_reports, list_results
from reconciler.schemas import REPORT_FAILED


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile airline manifests against agency bookings")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload_parser = subparsers.add_parser("upload", help="reconcile one airline manifest file")
    upload_parser.add_argument("--file", required=True, help="Path to a .csv, .xlsx or .xlsm manifest")
    upload_parser.add_argument("--user", required=True, help="Id of the user uploading the manifest")
    upload_parser.add_argument(
        "--mapping",
        required=False,
        help='Column mapping as JSON, e.g. {"pnr": "PNR", "flightDate": "Travel Date"}',
    )

    report_parser = subparsers.add_parser("report", help="show one validation report")
    report_parser.add_argument("--report-id", required=True, type=int)
    report_parser.add_argument("--results", action="store_true", help="also print every validation result")

    list_parser = subparsers.add_parser("reports", help="list validation reports")
    list_parser.add_argument("--status", choices=["processing", "completed", "failed"])
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, default=10)

    reap_parser = subparsers.add_parser("reap", help="start the stale report reaper")
    reap_parser.add_argument("--run-now", action="store_true", help="also reap once immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "reap":
        start_reaper(settings, session_factory, run_now=args.run_now)
        return

    if args.command == "report":
        with session_factory() as db:
            report = get_report(db, args.report_id)
            _print_report(report)
            if args.results:
                for result in list_results(db, report.id):
                    print(
                        "result_id={id} status={status} score={score} booking_id={booking} ref={ref} passenger={name!r} details={details}".format(
                            id=result.id,
                            status=result.match_status,
                            score=result.match_score,
                            booking=result.booking_id,
                            ref=result.airline_reference,
                            name=result.passenger_name,
                            details=json.dumps(result.match_details, sort_keys=True),
                        )
                    )
        return

    if args.command == "reports":
        with session_factory() as db:
            reports, total = list_reports(db, status=args.status, page=args.page, limit=args.limit)
        for report in reports:
            _print_report(report)
        print(f"total={total} page={args.page}")
        return

    path = Path(args.file)
    file_kind = detect_file_kind(path.name)
    column_mapping = _parse_mapping(args.mapping) if args.mapping else None
    content = path.read_bytes()

    with session_factory() as db:
        report = create_report(db, file_name=path.name, file_type=file_kind, uploaded_by=args.user)

    runner = ReconciliationRunner(settings, session_factory)
    summary = runner.run(
        report_id=report.id,
        content=content,
        file_kind=file_kind,
        column_mapping=column_mapping,
        acting_user=args.user,
    )

    print(
        "report_id={report_id} report_number={number} status={status} total={total} matched={matched} partial={partial} unmatched={unmatched}".format(
            report_id=summary.report_id,
            number=summary.report_number,
            status=summary.status,
            total=summary.total_records,
            matched=summary.matched,
            partial=summary.partial,
            unmatched=summary.unmatched,
        )
    )
    if summary.status == REPORT_FAILED:
        raise SystemExit(1)


def _parse_mapping(raw: str) -> dict[str, str]:
    mapping = json.loads(raw)
    if not isinstance(mapping, dict):
        raise SystemExit("--mapping must be a JSON object")
    unknown = sorted(set(mapping) - set(MAPPING_KEYS))
    if unknown:
        raise SystemExit(f"unknown mapping keys: {', '.join(unknown)} (expected {', '.join(MAPPING_KEYS)})")
    return {key: str(value) for key, value in mapping.items() if value}


def _print_report(report) -> None:
    print(
        "report_id={id} report_number={number} file={file} type={type} status={status} total={total} matched={matched} partial={partial} unmatched={unmatched}".format(
            id=report.id,
            number=report.report_number,
            file=report.file_name,
            type=report.file_type,
            status=report.status,
            total=report.total_records,
            matched=report.matched_records,
            partial=report.partial_matches,
            unmatched=report.unmatched_records,
        )
    )


if __name__ == "__main__":
    main()
