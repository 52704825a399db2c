import argparse
import logging
from pathlib import Path

from recordstream.cancellation import CancelToken
from recordstream.config import get_settings
from recordstream.pipeline import ConversionRunner
from recordstream.run_store import build_session_factory
from recordstream.scheduler import start_scheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Decode and rewrite user and CSV record files")
    subparsers = parser.add_subparsers(dest="command", required=True)

    decode_parser = subparsers.add_parser("decode", help="decode a name:id user file")
    decode_parser.add_argument("--input", required=True, help="Path to the user file")
    decode_parser.add_argument("--run-key", required=False, help="Idempotency key for this run")
    decode_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel decoding after this many seconds",
    )

    csv_parser = subparsers.add_parser("csv", help="sort a two-field CSV file by its second field")
    csv_parser.add_argument("--input", required=True, help="Path to the CSV file")
    csv_parser.add_argument("--run-key", required=False, help="Idempotency key for this run")
    csv_parser.add_argument("--has-header", action="store_true", help="skip the first line")

    schedule_parser = subparsers.add_parser("schedule", help="start daily inbox conversion")
    schedule_parser.add_argument("--run-now", action="store_true", help="also convert the inbox once immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    input_path = Path(args.input)
    kind = "users" if args.command == "decode" else "csv"
    run_key = args.run_key or f"{kind}-{input_path.stem}"

    token = CancelToken()
    if getattr(args, "timeout", None) is not None:
        token.cancel_after(args.timeout)

    runner = ConversionRunner(settings, session_factory)
    try:
        result = runner.run(
            kind=kind,
            input_path=input_path,
            run_key=run_key,
            token=token,
            has_header=True if getattr(args, "has_header", False) else None,
        )
    finally:
        token.stop_timer()

    print(
        "run_id={run_id} run_key={run_key} kind={kind} status={status} decoded={decoded} written={written} rejected={rejected} reused={reused} output={output}".format(
            run_id=result.run_id,
            run_key=result.run_key,
            kind=result.kind,
            status=result.status,
            decoded=result.decoded_records,
            written=result.written_records,
            rejected=result.rejected_records,
            reused=result.reused_existing_run,
            output=result.output_path,
        )
    )
    if result.status == "failed":
        print(f"error={result.error}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
