from dataclasses import dataclass


@dataclass(frozen=True)
class Record:
    name: str
    id: int

    def __str__(self) -> str:
        return f"{self.name}:{self.id}"


@dataclass(frozen=True)
class DecodeResult:
    """One decoded input line: either a record or the error that ended the stream."""

    record: Record | None = None
    error: Exception | None = None
    line_number: int | None = None
    line: str | None = None

    def __post_init__(self) -> None:
        if (self.record is None) == (self.error is None):
            raise ValueError("a decode result carries exactly one of record or error")

    @classmethod
    def success(cls, record: Record, *, line_number: int, line: str) -> "DecodeResult":
        return cls(record=record, line_number=line_number, line=line)

    @classmethod
    def failure(cls, error: Exception, *, line_number: int | None = None, line: str | None = None) -> "DecodeResult":
        return cls(error=error, line_number=line_number, line=line)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CsvRecord:
    first: str
    last: str


@dataclass(frozen=True)
class ConversionResult:
    run_id: int
    run_key: str
    kind: str
    trigger_source: str
    status: str
    decoded_records: int
    written_records: int
    rejected_records: int
    output_path: str | None
    error: str | None
    reused_existing_run: bool
