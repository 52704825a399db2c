from collections.abc import Iterable
from typing import TextIO

from recordstream.cancellation import CancelToken
from recordstream.schemas import Record


def write_record(sink: TextIO, token: CancelToken, record: Record) -> None:
    token.raise_if_cancelled()

    # Two writes and no rollback: a failed newline leaves the record text behind.
    sink.write(str(record))
    sink.write("\n")


def write_records(sink: TextIO, token: CancelToken, records: Iterable[Record]) -> int:
    written = 0
    for record in records:
        write_record(sink, token, record)
        written += 1
    return written
