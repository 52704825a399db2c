from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_dir: str
    output_dir: str
    queue_capacity: int
    csv_has_header: bool
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "recordstream"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./recordstream.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_dir=os.getenv("INPUT_DIR", "./data/input"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        queue_capacity=int(os.getenv("QUEUE_CAPACITY", "1")),
        csv_has_header=_env_flag("CSV_HAS_HEADER", "false"),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
