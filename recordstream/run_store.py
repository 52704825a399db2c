from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from recordstream.db_models import Base, ConversionRun, RejectedLine, utc_now


def build_session_factory(database_url: str) -> sessionmaker[Session]:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Scheduled jobs run on executor threads.
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_run_by_key(db: Session, run_key: str) -> ConversionRun | None:
    stmt = select(ConversionRun).where(ConversionRun.run_key == run_key)
    return db.execute(stmt).scalar_one_or_none()


def create_or_get_run(
    db: Session,
    *,
    run_key: str,
    kind: str,
    input_path: str,
    trigger_source: str,
) -> tuple[ConversionRun, bool]:
    run = ConversionRun(
        run_key=run_key,
        kind=kind,
        input_path=input_path,
        trigger_source=trigger_source,
        status="queued",
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Unique run_key makes reruns idempotent.
        db.rollback()
        existing = get_run_by_key(db, run_key)
        if existing:
            return existing, False
        raise

    db.refresh(run)
    return run, True


def reset_failed_run_state(db: Session, run: ConversionRun, *, input_path: str, trigger_source: str) -> None:
    db.execute(delete(RejectedLine).where(RejectedLine.run_id == run.id))

    run.status = "queued"
    run.input_path = input_path
    run.trigger_source = trigger_source
    run.output_path = None
    run.error = None
    run.completed_at = None
    run.decoded_records = 0
    run.written_records = 0
    run.rejected_records = 0
    db.commit()
    db.refresh(run)


def mark_run_running(db: Session, run: ConversionRun, *, output_path: str) -> None:
    run.status = "running"
    run.output_path = output_path
    run.started_at = utc_now()
    run.error = None
    db.commit()


def mark_run_succeeded(db: Session, run: ConversionRun, *, decoded_records: int, written_records: int) -> None:
    run.status = "succeeded"
    run.decoded_records = decoded_records
    run.written_records = written_records
    run.rejected_records = 0
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(
    db: Session,
    run: ConversionRun,
    *,
    error: str,
    decoded_records: int = 0,
    written_records: int = 0,
    rejected_records: int = 0,
) -> None:
    run.status = "failed"
    run.error = error
    run.decoded_records = decoded_records
    run.written_records = written_records
    run.rejected_records = rejected_records
    run.completed_at = utc_now()
    db.commit()


def store_rejected_line(
    db: Session,
    *,
    run_id: int,
    line_number: int | None,
    raw_line: str | None,
    reason: str,
) -> None:
    db.add(RejectedLine(run_id=run_id, line_number=line_number, raw_line=raw_line, reason=reason))
    db.commit()
