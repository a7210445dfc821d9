from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import UTC, datetime

from binfleet.config import ThresholdConfig
from binfleet.models.schemas import Device, DeviceReading, NormalizedDevice

LOGGER = logging.getLogger(__name__)


class InvalidReadingError(ValueError):
    pass


def normalize_level(raw_distance_cm: float, bin_height: float | None) -> int:
    if bin_height is None or not math.isfinite(bin_height) or bin_height <= 0:
        raise InvalidReadingError(f"Invalid bin height: {bin_height!r}")
    if raw_distance_cm is None or not math.isfinite(raw_distance_cm) or raw_distance_cm < 0:
        raise InvalidReadingError(f"Invalid sensor distance: {raw_distance_cm!r}")

    # Readings past the bin floor mean an empty bin.
    trash_height = bin_height - min(raw_distance_cm, bin_height)
    return max(0, min(100, math.floor(trash_height * 100 / bin_height)))


def to_reading(device_id: str, raw_distance_cm: float, bin_height: float | None, timestamp: datetime | None = None) -> DeviceReading:
    return DeviceReading(
        device_id=device_id,
        timestamp=timestamp or datetime.now(tz=UTC),
        raw_distance_cm=raw_distance_cm,
        derived_fill_percent=normalize_level(raw_distance_cm, bin_height),
    )


def normalize_device(device: Device) -> NormalizedDevice:
    if device.level is None:
        raise InvalidReadingError(f"Device {device.unique_id} has no level reading")
    level = normalize_level(device.level, device.bin_height)

    return NormalizedDevice(
        id=device.id,
        unique_id=device.unique_id,
        bin_height=float(device.bin_height),  # type: ignore[arg-type]
        lat=float(device.lat) if device.lat is not None else None,
        lng=float(device.lng) if device.lng is not None else None,
        battery=device.battery,
        level=level,
        is_registered=device.is_registered,
    )


def normalize_devices(devices: Iterable[Device]) -> list[NormalizedDevice]:
    normalized: list[NormalizedDevice] = []
    for device in devices:
        try:
            normalized.append(normalize_device(device))
        except InvalidReadingError as exc:
            LOGGER.warning("Skipping device %s: %s", device.unique_id, exc)
    return normalized


def needs_emptying(device: NormalizedDevice, thresholds: ThresholdConfig) -> bool:
    return device.level >= thresholds.full_level


def needs_battery_change(device: NormalizedDevice, thresholds: ThresholdConfig) -> bool:
    return device.battery is not None and device.battery < thresholds.battery_low


def pick_devices_with_issues(devices: Iterable[NormalizedDevice], thresholds: ThresholdConfig) -> list[NormalizedDevice]:
    return [
        device
        for device in devices
        if needs_emptying(device, thresholds) or needs_battery_change(device, thresholds)
    ]
