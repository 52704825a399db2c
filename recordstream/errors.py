class RecordStreamError(Exception):
    def __init__(self, message: str, *, line_number: int | None = None, line: str | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class CancellationError(RecordStreamError):
    pass


class RecordFormatError(RecordStreamError):
    pass


class RecordValueError(RecordStreamError, ValueError):
    pass
