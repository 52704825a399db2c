from collections.abc import Iterable
import logging
from pathlib import Path

from recordstream.errors import RecordFormatError
from recordstream.schemas import CsvRecord


logger = logging.getLogger(__name__)


def parse_csv_lines(lines: Iterable[str], *, has_header: bool = False) -> list[CsvRecord]:
    records: list[CsvRecord] = []
    for line_number, line in enumerate(lines, start=1):
        line = line.removesuffix("\n").removesuffix("\r")
        if has_header and line_number == 1:
            logger.debug("skipping header line", extra={"line": line})
            continue

        if not line.strip():
            continue

        fields = line.split(",")
        if len(fields) != 2:
            raise RecordFormatError(
                f"entry at line {line_number} was invalid: data format is incorrect",
                line_number=line_number,
                line=line,
            )
        records.append(CsvRecord(first=fields[0], last=fields[1]))
    return records


def read_csv_file(input_path: Path, *, has_header: bool = False) -> list[CsvRecord]:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    with input_path.open("r", encoding="utf-8", newline="") as infile:
        return parse_csv_lines(infile, has_header=has_header)


def sort_csv_records(records: Iterable[CsvRecord]) -> list[CsvRecord]:
    return sorted(records, key=lambda record: record.last)


def format_csv_record(record: CsvRecord) -> str:
    return f"{record.first},{record.last}\n"


def write_csv_file(path: Path, records: Iterable[CsvRecord]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with path.open("w", encoding="utf-8", newline="") as outfile:
        for record in sort_csv_records(records):
            outfile.write(format_csv_record(record))
            written += 1
    return written
