from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import Any

from binfleet.analytics.predictions import as_utc, find_emptying_events, group_samples
from binfleet.config import ThresholdConfig
from binfleet.models.schemas import HistoricalSample, NormalizedDevice


def count_emptying_events(samples: Iterable[HistoricalSample], *, thresholds: ThresholdConfig) -> dict[str, int]:
    events = find_emptying_events(samples, drop_from=thresholds.emptying_from, drop_to=thresholds.emptying_to)
    return dict(sorted(Counter(event.unique_id for event in events).items()))


def fleet_summary(devices: list[NormalizedDevice], *, thresholds: ThresholdConfig) -> dict[str, int]:
    return {
        "total_devices": len(devices),
        "full_bins": sum(1 for device in devices if device.level >= thresholds.full_level),
        "low_battery_bins": sum(
            1
            for device in devices
            if device.battery is not None and device.battery <= thresholds.dashboard_low_battery
        ),
    }


def level_chart(samples: Iterable[HistoricalSample]) -> dict[str, Any]:
    ordered = sorted(
        (sample for series in group_samples(samples).values() for sample in series),
        key=lambda item: (as_utc(item.saved_time), item.id or 0),
    )
    return {
        "label": "Bin Levels Over Time",
        "labels": [item.saved_time.isoformat() for item in ordered],
        "values": [item.level_in_percents for item in ordered],
        "device_ids": [item.unique_id for item in ordered],
    }
