from collections.abc import Iterable, Iterator
import logging
import queue
import re
import threading

from recordstream.cancellation import CancelToken
from recordstream.errors import RecordFormatError, RecordValueError
from recordstream.schemas import DecodeResult, Record


logger = logging.getLogger(__name__)

COMMENT_PREFIXES = ("//", "#")
_ID_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DRAIN_POLL_SECONDS = 0.05
_END = object()


def is_comment(line: str) -> bool:
    return line.startswith(COMMENT_PREFIXES)


def parse_record(line: str) -> Record:
    parts = line.split(":")
    if len(parts) != 2:
        raise RecordFormatError(f"record ({line}) was not in the correct format", line=line)

    name, raw_id = parts
    if not _ID_PATTERN.fullmatch(raw_id):
        raise RecordValueError(f"record ({line}) had a non-numeric ID", line=line)

    record_id = int(raw_id)
    if not _INT64_MIN <= record_id <= _INT64_MAX:
        raise RecordValueError(f"record ({line}) had a non-numeric ID", line=line)

    return Record(name=name.strip(), id=record_id)


def _strip_newline(line: str | bytes) -> str:
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    return line.removesuffix("\n").removesuffix("\r")


class RecordStream(Iterator[DecodeResult]):
    """Ordered results of decoding a line source on a background thread.

    The producer runs at most ``capacity`` results ahead of the consumer. A
    failure result is always the last item; the stream ends after it.

    Consume the stream to exhaustion or call ``close()`` (a ``with`` block
    does this). A stream dropped half-read leaves its producer blocked on the
    full queue until the process exits.
    """

    def __init__(self, source: Iterable[str | bytes], token: CancelToken, *, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self._queue: queue.Queue[object] = queue.Queue(maxsize=capacity)
        self._abandoned = threading.Event()
        self._finished = False
        self._thread = threading.Thread(
            target=self._produce,
            args=(source, token),
            name="record-decoder",
            daemon=True,
        )
        self._thread.start()

    def __iter__(self) -> "RecordStream":
        return self

    def __next__(self) -> DecodeResult:
        if self._finished:
            raise StopIteration

        item = self._queue.get()
        if item is _END:
            self._finished = True
            self._thread.join()
            raise StopIteration
        return item

    def __enter__(self) -> "RecordStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._finished = True
        self._abandoned.set()
        # Keep draining until the producer sees the flag and exits.
        while self._thread.is_alive():
            try:
                self._queue.get(timeout=_DRAIN_POLL_SECONDS)
            except queue.Empty:
                pass
        self._thread.join()

    def _put(self, item: object) -> bool:
        if self._abandoned.is_set():
            return False
        self._queue.put(item)
        return True

    def _produce(self, source: Iterable[str | bytes], token: CancelToken) -> None:
        line_number = 0
        try:
            for raw in source:
                line_number += 1
                line = _strip_newline(raw)

                cancelled = token.error()
                if cancelled is not None:
                    cancelled.line_number = line_number
                    self._put(DecodeResult.failure(cancelled, line_number=line_number, line=line))
                    return

                logger.debug("processing line", extra={"line_number": line_number, "line": line})
                if is_comment(line):
                    logger.debug("skipping comment line", extra={"line_number": line_number})
                    continue

                try:
                    record = parse_record(line)
                except (RecordFormatError, RecordValueError) as exc:
                    exc.line_number = line_number
                    logger.info(
                        "decoding stopped at invalid line",
                        extra={"line_number": line_number, "error": str(exc)},
                    )
                    self._put(DecodeResult.failure(exc, line_number=line_number, line=line))
                    return

                if not self._put(DecodeResult.success(record, line_number=line_number, line=line)):
                    return
        except Exception as exc:
            # Source read failures reach the consumer as the final result.
            logger.exception("reading record source failed", extra={"line_number": line_number + 1})
            self._put(DecodeResult.failure(exc, line_number=line_number + 1))
        finally:
            self._put(_END)


def decode_records(source: Iterable[str | bytes], token: CancelToken, *, capacity: int = 1) -> RecordStream:
    return RecordStream(source, token, capacity=capacity)
