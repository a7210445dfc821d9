from datetime import UTC, datetime
from pathlib import Path

from binfleet.models.database import DatabaseManager
from binfleet.models.schemas import BinReport, Device, WeatherReport
from binfleet.telemetry.ingest import TelemetryIngestor

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _ingestor(tmp_path: Path) -> TelemetryIngestor:
    db = DatabaseManager(tmp_path / "fleet.db")
    db.initialize()
    return TelemetryIngestor(db)


def test_unknown_bin_is_created_unregistered(tmp_path: Path) -> None:
    ingestor = _ingestor(tmp_path)
    device, sample = ingestor.ingest_bin_report(BinReport(unique_id="b9", level=42.0, battery=77))

    assert sample is None
    assert device.is_registered is False
    assert ingestor.db.list_devices(registered=False)[0].unique_id == "b9"
    assert ingestor.db.list_historical() == []


def test_registered_bin_report_saves_history(tmp_path: Path) -> None:
    ingestor = _ingestor(tmp_path)
    ingestor.db.insert_device(Device(unique_id="b1", bin_height=100, level=90, battery=80, is_registered=True))

    device, sample = ingestor.ingest_bin_report(BinReport(unique_id="b1", level=25.0, battery=60), received_at=NOW)

    assert device.level == 25.0
    assert device.battery == 60
    assert sample is not None
    assert sample.level_in_percents == 75
    assert ingestor.db.list_historical()[0].saved_time == NOW


def test_bad_calibration_skips_history(tmp_path: Path) -> None:
    ingestor = _ingestor(tmp_path)
    ingestor.db.insert_device(Device(unique_id="b1", bin_height=None, level=90, is_registered=True))

    device, sample = ingestor.ingest_bin_report(BinReport(unique_id="b1", level=25.0))
    assert device.level == 25.0
    assert sample is None


def test_weather_report_upserts(tmp_path: Path) -> None:
    ingestor = _ingestor(tmp_path)
    created = ingestor.ingest_weather_report(WeatherReport(unique_id="w1", temperature=18.0))
    assert created.is_registered is False

    updated = ingestor.ingest_weather_report(WeatherReport(unique_id="w1", humidity=55.0))
    assert updated.temperature == 18.0
    assert updated.humidity == 55.0
