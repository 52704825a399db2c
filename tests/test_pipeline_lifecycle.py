from datetime import date
from pathlib import Path

from sqlalchemy import select

from recordstream import pipeline
from recordstream.cancellation import CancelToken
from recordstream.db_models import ConversionRun, RejectedLine
from recordstream.scheduler import convert_inbox


def write_input_file(root: Path, name: str, content: str) -> Path:
    input_file = root / "data" / "input" / name
    input_file.write_text(content, encoding="utf-8")
    return input_file


def _rejected_lines(runner, run_key: str) -> list[RejectedLine]:
    with runner.session_factory() as db:
        run = db.execute(select(ConversionRun).where(ConversionRun.run_key == run_key)).scalar_one()
        return db.execute(select(RejectedLine).where(RejectedLine.run_id == run.id)).scalars().all()


def test_user_conversion_lifecycle_and_idempotency(runner, temp_workspace: Path) -> None:
    input_file = write_input_file(temp_workspace, "users.txt", "alice :1\n# comment\nbob:2\n")

    first = runner.run(kind="users", input_path=input_file, run_key="users-1")
    second = runner.run(kind="users", input_path=input_file, run_key="users-1")

    assert first.status == "succeeded"
    assert first.decoded_records == 2
    assert first.written_records == 2
    assert first.rejected_records == 0
    assert first.reused_existing_run is False

    assert second.reused_existing_run is True
    assert second.run_id == first.run_id

    output_path = temp_workspace / "outputs" / "users" / "users-1.txt"
    assert first.output_path == str(output_path)
    assert output_path.read_text(encoding="utf-8") == "alice:1\nbob:2\n"


def test_decode_error_fails_run_and_keeps_prior_records(runner, temp_workspace: Path) -> None:
    input_file = write_input_file(temp_workspace, "users.txt", "alice:1\nbad-line\nbob:2\n")

    result = runner.run(kind="users", input_path=input_file, run_key="users-bad")

    assert result.status == "failed"
    assert result.written_records == 1
    assert result.rejected_records == 1
    assert "was not in the correct format" in result.error
    output_path = temp_workspace / "outputs" / "users" / "users-bad.txt"
    assert output_path.read_text(encoding="utf-8") == "alice:1\n"

    with runner.session_factory() as db:
        run = db.execute(select(ConversionRun).where(ConversionRun.run_key == "users-bad")).scalar_one()
        rejected = db.execute(select(RejectedLine).where(RejectedLine.run_id == run.id)).scalars().all()
        assert len(rejected) == 1
        assert rejected[0].line_number == 2
        assert rejected[0].raw_line == "bad-line"


def test_failed_run_can_be_retried_with_same_run_key(runner, temp_workspace: Path) -> None:
    input_file = temp_workspace / "data" / "input" / "later.txt"

    first = runner.run(kind="users", input_path=input_file, run_key="users-later")
    assert first.status == "failed"
    assert first.rejected_records == 0

    write_input_file(temp_workspace, "later.txt", "carol:3\n")
    second = runner.run(kind="users", input_path=input_file, run_key="users-later")

    assert second.status == "succeeded"
    assert second.reused_existing_run is False
    assert second.written_records == 1

    with runner.session_factory() as db:
        run = db.execute(select(ConversionRun).where(ConversionRun.run_key == "users-later")).scalar_one()
        assert run.status == "succeeded"
        assert run.error is None


def test_cancelled_run_is_recorded_as_failed(runner, temp_workspace: Path) -> None:
    input_file = write_input_file(temp_workspace, "users.txt", "alice:1\nbob:2\n")
    token = CancelToken()
    token.cancel()

    result = runner.run(kind="users", input_path=input_file, run_key="users-cancelled", token=token)

    assert result.status == "failed"
    assert result.error == "cancelled"
    assert result.written_records == 0
    assert result.rejected_records == 0
    assert _rejected_lines(runner, "users-cancelled") == []


def test_cancellation_during_write_rejects_no_line(runner, temp_workspace: Path, monkeypatch) -> None:
    input_file = write_input_file(temp_workspace, "users.txt", "alice:1\nbob:2\n")
    real_write_record = pipeline.write_record

    def cancel_then_write(sink, token, record) -> None:
        token.cancel()
        real_write_record(sink, token, record)

    monkeypatch.setattr(pipeline, "write_record", cancel_then_write)
    result = runner.run(kind="users", input_path=input_file, run_key="users-cancel-write")

    assert result.status == "failed"
    assert result.error == "cancelled"
    assert result.decoded_records == 1
    assert result.written_records == 0
    assert result.rejected_records == 0
    assert _rejected_lines(runner, "users-cancel-write") == []


def test_csv_conversion_sorts_by_second_field(runner, temp_workspace: Path) -> None:
    input_file = write_input_file(temp_workspace, "names.csv", "first,last\ndoe,john\n\nsmith,jane\n")

    result = runner.run(kind="csv", input_path=input_file, run_key="names", has_header=True)

    assert result.status == "succeeded"
    assert result.written_records == 2
    output_path = temp_workspace / "outputs" / "csv" / "names.csv"
    assert output_path.read_text(encoding="utf-8") == "smith,jane\ndoe,john\n"


def test_invalid_csv_entry_is_rejected(runner, temp_workspace: Path) -> None:
    input_file = write_input_file(temp_workspace, "names.csv", "doe,john\nsmith\n")

    result = runner.run(kind="csv", input_path=input_file, run_key="names-bad")

    assert result.status == "failed"
    assert result.rejected_records == 1
    assert result.error == "entry at line 2 was invalid: data format is incorrect"


def test_convert_inbox_runs_each_file_once_per_day(runner, test_settings, temp_workspace: Path) -> None:
    write_input_file(temp_workspace, "users.txt", "alice:1\n")
    write_input_file(temp_workspace, "names.csv", "doe,john\n")
    write_input_file(temp_workspace, "notes.md", "ignored")
    run_date = date(2026, 10, 19)

    first = convert_inbox(test_settings, runner.session_factory, run_date=run_date)
    second = convert_inbox(test_settings, runner.session_factory, run_date=run_date)

    assert [result.run_key for result in first] == [
        "scheduled-2026-10-19-names.csv",
        "scheduled-2026-10-19-users.txt",
    ]
    assert [result.kind for result in first] == ["csv", "users"]
    assert all(result.status == "succeeded" for result in first)
    assert all(result.trigger_source == "scheduled" for result in first)
    assert all(result.reused_existing_run for result in second)
