from collections.abc import Generator
from pathlib import Path

import pytest

from recordstream.config import Settings
from recordstream.pipeline import ConversionRunner
from recordstream.run_store import build_session_factory


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "input").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="recordstream",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        input_dir=str(temp_workspace / "data" / "input"),
        output_dir=str(temp_workspace / "outputs"),
        queue_capacity=1,
        csv_has_header=False,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def runner(test_settings: Settings) -> Generator[ConversionRunner, None, None]:
    session_factory = build_session_factory(test_settings.database_url)
    yield ConversionRunner(test_settings, session_factory)
