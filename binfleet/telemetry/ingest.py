from __future__ import annotations

import logging
from datetime import UTC, datetime

from binfleet.models.database import DatabaseManager
from binfleet.models.schemas import BinReport, Device, HistoricalSample, WeatherReport, WeatherSensor
from binfleet.telemetry.normalizer import InvalidReadingError, to_reading

LOGGER = logging.getLogger(__name__)


class TelemetryIngestor:
    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def ingest_bin_report(self, report: BinReport, *, received_at: datetime | None = None) -> tuple[Device, HistoricalSample | None]:
        timestamp = received_at or datetime.now(tz=UTC)
        fields = {"level": report.level}
        if report.battery is not None:
            fields["battery"] = report.battery

        device = self.db.update_device(report.unique_id, fields)
        if device is None:
            LOGGER.info("New bin %s reported; waiting for registration", report.unique_id)
            device = self.db.insert_device(
                Device(unique_id=report.unique_id, level=report.level, battery=report.battery, is_registered=False)
            )
            return device, None

        if not device.is_registered:
            return device, None

        try:
            reading = to_reading(device.unique_id, report.level, device.bin_height, timestamp)
        except InvalidReadingError as exc:
            LOGGER.warning("Not saving history for %s: %s", device.unique_id, exc)
            return device, None

        sample = self.db.insert_historical(
            HistoricalSample(
                unique_id=reading.device_id,
                saved_time=reading.timestamp,
                level_in_percents=reading.derived_fill_percent,
            )
        )
        return device, sample

    def ingest_weather_report(self, report: WeatherReport) -> WeatherSensor:
        fields = report.model_dump(exclude={"unique_id"}, exclude_none=True)
        sensor = self.db.update_device(report.unique_id, fields, table="weather_sensors")
        if sensor is None:
            LOGGER.info("New weather sensor %s reported; waiting for registration", report.unique_id)
            sensor = self.db.insert_device(
                WeatherSensor(unique_id=report.unique_id, is_registered=False, **fields),
                table="weather_sensors",
            )
        return sensor
