from dataclasses import dataclass
import logging
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from recordstream.cancellation import CancelToken
from recordstream.config import Settings
from recordstream.csv_records import read_csv_file, write_csv_file
from recordstream.db_models import ConversionRun
from recordstream.decoder import decode_records
from recordstream.errors import CancellationError, RecordStreamError
from recordstream.run_store import (
    create_or_get_run,
    mark_run_failed,
    mark_run_running,
    mark_run_succeeded,
    reset_failed_run_state,
    store_rejected_line,
)
from recordstream.schemas import ConversionResult, DecodeResult
from recordstream.writer import write_record


logger = logging.getLogger(__name__)

KINDS = ("users", "csv")
_OUTPUT_SUFFIXES = {"users": ".txt", "csv": ".csv"}


@dataclass
class _Progress:
    decoded: int = 0
    written: int = 0


def _rejects_input(error: Exception) -> bool:
    # Cancellation stops a run without any input line being at fault.
    return isinstance(error, RecordStreamError) and not isinstance(error, CancellationError)


class ConversionRunner:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory

    def run(
        self,
        *,
        kind: str,
        input_path: Path,
        run_key: str,
        trigger_source: str = "manual",
        token: CancelToken | None = None,
        has_header: bool | None = None,
    ) -> ConversionResult:
        if kind not in KINDS:
            raise ValueError(f"unknown conversion kind: {kind}")

        token = token or CancelToken()
        output_path = self._output_path(kind, run_key)

        with self.session_factory() as db:
            run, created = create_or_get_run(
                db,
                run_key=run_key,
                kind=kind,
                input_path=str(input_path),
                trigger_source=trigger_source,
            )
            if not created:
                if run.status == "failed":
                    logger.info("retrying previously failed run", extra={"run_key": run_key})
                    reset_failed_run_state(db, run, input_path=str(input_path), trigger_source=trigger_source)
                else:
                    logger.info("idempotent run reused", extra={"run_key": run_key, "status": run.status})
                    return self._result_from_run(run, reused_existing_run=True)

            mark_run_running(db, run, output_path=str(output_path))

            progress = _Progress()
            try:
                if kind == "users":
                    rejected = self._convert_users(input_path, output_path, token, progress)
                else:
                    self._convert_csv(input_path, output_path, has_header, progress)
                    rejected = None
            except Exception as exc:
                rejected_records = 0
                if _rejects_input(exc):
                    rejected_records = 1
                    store_rejected_line(
                        db,
                        run_id=run.id,
                        line_number=exc.line_number,
                        raw_line=exc.line,
                        reason=str(exc),
                    )
                mark_run_failed(
                    db,
                    run,
                    error=str(exc),
                    decoded_records=progress.decoded,
                    written_records=progress.written,
                    rejected_records=rejected_records,
                )
                logger.exception("conversion run failed", extra={"run_key": run_key, "kind": kind})
                return self._result_from_run(run, reused_existing_run=False)

            if rejected is not None:
                rejected_records = 0
                if _rejects_input(rejected.error):
                    rejected_records = 1
                    store_rejected_line(
                        db,
                        run_id=run.id,
                        line_number=rejected.line_number,
                        raw_line=rejected.line,
                        reason=str(rejected.error),
                    )
                mark_run_failed(
                    db,
                    run,
                    error=str(rejected.error),
                    decoded_records=progress.decoded,
                    written_records=progress.written,
                    rejected_records=rejected_records,
                )
                logger.warning(
                    "decoding stopped early",
                    extra={
                        "run_key": run_key,
                        "line_number": rejected.line_number,
                        "written_records": progress.written,
                    },
                )
                return self._result_from_run(run, reused_existing_run=False)

            mark_run_succeeded(db, run, decoded_records=progress.decoded, written_records=progress.written)
            logger.info(
                "conversion run completed",
                extra={"run_key": run_key, "kind": kind, "written_records": progress.written},
            )
            return self._result_from_run(run, reused_existing_run=False)

    def _convert_users(
        self,
        input_path: Path,
        output_path: Path,
        token: CancelToken,
        progress: _Progress,
    ) -> DecodeResult | None:
        if not input_path.exists():
            raise FileNotFoundError(f"input file not found: {input_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with (
            input_path.open("r", encoding="utf-8", newline="") as infile,
            output_path.open("w", encoding="utf-8", newline="") as outfile,
            decode_records(infile, token, capacity=self.settings.queue_capacity) as stream,
        ):
            for result in stream:
                if not result.ok:
                    # Failure results are terminal; nothing follows them.
                    return result
                progress.decoded += 1
                write_record(outfile, token, result.record)
                progress.written += 1
        return None

    def _convert_csv(
        self,
        input_path: Path,
        output_path: Path,
        has_header: bool | None,
        progress: _Progress,
    ) -> None:
        if has_header is None:
            has_header = self.settings.csv_has_header
        records = read_csv_file(input_path, has_header=has_header)
        progress.decoded = len(records)
        progress.written = write_csv_file(output_path, records)

    def _output_path(self, kind: str, run_key: str) -> Path:
        return Path(self.settings.output_dir) / kind / f"{run_key}{_OUTPUT_SUFFIXES[kind]}"

    def _result_from_run(self, run: ConversionRun, reused_existing_run: bool) -> ConversionResult:
        return ConversionResult(
            run_id=run.id,
            run_key=run.run_key,
            kind=run.kind,
            trigger_source=run.trigger_source,
            status=run.status,
            decoded_records=run.decoded_records,
            written_records=run.written_records,
            rejected_records=run.rejected_records,
            output_path=run.output_path,
            error=run.error,
            reused_existing_run=reused_existing_run,
        )
