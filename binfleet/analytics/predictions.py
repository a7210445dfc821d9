from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta

import numpy as np

from binfleet.config import ThresholdConfig
from binfleet.models.schemas import FillRatePrediction, HistoricalSample, RouteCandidateSet

_DEFAULTS = ThresholdConfig()

EMPTYING_FROM = _DEFAULTS.emptying_from
EMPTYING_TO = _DEFAULTS.emptying_to
LOW_FILL_RATE = _DEFAULTS.low_fill_rate


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def group_samples(samples: Iterable[HistoricalSample]) -> dict[str, list[HistoricalSample]]:
    grouped: dict[str, list[HistoricalSample]] = defaultdict(list)
    for sample in samples:
        grouped[sample.unique_id].append(sample)
    for series in grouped.values():
        series.sort(key=lambda item: (as_utc(item.saved_time), item.id or 0))
    return dict(grouped)


def is_emptying_event(
    previous_level: float,
    level: float,
    *,
    drop_from: float = EMPTYING_FROM,
    drop_to: float = EMPTYING_TO,
) -> bool:
    return previous_level >= drop_from and level <= drop_to


def split_fill_cycles(
    series: list[HistoricalSample],
    *,
    drop_from: float = EMPTYING_FROM,
    drop_to: float = EMPTYING_TO,
) -> list[list[HistoricalSample]]:
    """Split one device's time-ordered samples at every emptying event.

    The sample after the drop opens a new cycle, so no cycle contains the drop itself.
    """
    cycles: list[list[HistoricalSample]] = []
    current: list[HistoricalSample] = []
    for sample in series:
        if current and is_emptying_event(
            current[-1].level_in_percents,
            sample.level_in_percents,
            drop_from=drop_from,
            drop_to=drop_to,
        ):
            cycles.append(current)
            current = []
        current.append(sample)
    if current:
        cycles.append(current)
    return cycles


def find_emptying_events(
    samples: Iterable[HistoricalSample],
    *,
    drop_from: float = EMPTYING_FROM,
    drop_to: float = EMPTYING_TO,
) -> list[HistoricalSample]:
    events: list[HistoricalSample] = []
    for series in group_samples(samples).values():
        for previous, current in zip(series, series[1:], strict=False):
            if is_emptying_event(
                previous.level_in_percents,
                current.level_in_percents,
                drop_from=drop_from,
                drop_to=drop_to,
            ):
                events.append(current)
    return events


def fit_fill_rate(cycle: list[HistoricalSample]) -> float | None:
    """Least-squares slope of fill percent over time, in percent per hour."""
    if len(cycle) < 2:
        return None

    origin = as_utc(cycle[0].saved_time)
    hours = np.array([(as_utc(item.saved_time) - origin).total_seconds() / 3600.0 for item in cycle])
    levels = np.array([float(item.level_in_percents) for item in cycle])

    if np.ptp(levels) == 0:
        return 0.0 if np.ptp(hours) > 0 else None

    dx = hours - hours.mean()
    denominator = float(np.dot(dx, dx))
    if denominator <= 0:
        return None
    return float(np.dot(dx, levels - levels.mean()) / denominator)


def compute_fill_rate(
    samples: Iterable[HistoricalSample],
    *,
    drop_from: float = EMPTYING_FROM,
    drop_to: float = EMPTYING_TO,
) -> dict[str, float | None]:
    rates: dict[str, float | None] = {}
    for unique_id, series in group_samples(samples).items():
        rate: float | None = None
        # Latest cycle that still has two timestamps to fit against.
        for cycle in reversed(split_fill_cycles(series, drop_from=drop_from, drop_to=drop_to)):
            rate = fit_fill_rate(cycle)
            if rate is not None:
                break
        rates[unique_id] = rate
    return rates


def latest_levels(samples: Iterable[HistoricalSample]) -> dict[str, float]:
    return {
        unique_id: float(series[-1].level_in_percents)
        for unique_id, series in group_samples(samples).items()
    }


def estimate_hours_until_full(current_level: float | None, rate: float | None) -> float | None:
    if current_level is None or rate is None:
        return None
    if current_level >= 100:
        return 0.0
    if rate <= 0:
        return None
    return (100.0 - current_level) / rate


def predict_full_times(
    current_levels: Mapping[str, float | None],
    rates: Mapping[str, float | None],
    now: datetime | None = None,
) -> dict[str, datetime | None]:
    reference = as_utc(now) if now else datetime.now(tz=UTC)
    predicted: dict[str, datetime | None] = {}
    for unique_id in sorted(set(current_levels) | set(rates)):
        hours = estimate_hours_until_full(current_levels.get(unique_id), rates.get(unique_id))
        predicted[unique_id] = reference + timedelta(hours=hours) if hours is not None else None
    return predicted


def devices_due_for_pickup(
    predicted_times: Mapping[str, datetime | None],
    horizon_hours: float,
    now: datetime | None = None,
) -> set[str]:
    if horizon_hours < 0:
        raise ValueError("horizon_hours must be >= 0")
    reference = as_utc(now) if now else datetime.now(tz=UTC)
    deadline = reference + timedelta(hours=horizon_hours)
    return {
        unique_id
        for unique_id, predicted in predicted_times.items()
        if predicted is not None and as_utc(predicted) <= deadline
    }


def low_fill_rate_devices(rates: Mapping[str, float | None], threshold: float = LOW_FILL_RATE) -> set[str]:
    return {unique_id for unique_id, rate in rates.items() if rate is not None and rate < threshold}


def _current_levels(
    samples: list[HistoricalSample],
    overrides: Mapping[str, float | None] | None,
) -> dict[str, float | None]:
    levels: dict[str, float | None] = dict(latest_levels(samples))
    for unique_id, level in (overrides or {}).items():
        if level is not None:
            levels[unique_id] = float(level)
    return levels


def fill_rate_report(
    samples: Iterable[HistoricalSample],
    *,
    thresholds: ThresholdConfig,
    current_levels: Mapping[str, float | None] | None = None,
    now: datetime | None = None,
) -> list[FillRatePrediction]:
    history = list(samples)
    rates = compute_fill_rate(history, drop_from=thresholds.emptying_from, drop_to=thresholds.emptying_to)
    levels = _current_levels(history, current_levels)
    predicted = predict_full_times(levels, rates, now)
    low = low_fill_rate_devices(rates, thresholds.low_fill_rate)

    report: list[FillRatePrediction] = []
    for unique_id, predicted_at in predicted.items():
        rate = rates.get(unique_id)
        hours = estimate_hours_until_full(levels.get(unique_id), rate)
        report.append(
            FillRatePrediction(
                unique_id=unique_id,
                fill_rate_per_hour=round(rate, 3) if rate is not None else None,
                current_level=levels.get(unique_id),
                hours_until_full=round(hours, 2) if hours is not None else None,
                predicted_full_at=predicted_at,
                low_fill_rate=unique_id in low,
            )
        )
    return report


def triage(
    predictions: Iterable[FillRatePrediction],
    *,
    horizon_hours: float,
    now: datetime | None = None,
) -> RouteCandidateSet:
    report = list(predictions)
    predicted = {item.unique_id: item.predicted_full_at for item in report}
    return RouteCandidateSet(
        due_for_pickup=devices_due_for_pickup(predicted, horizon_hours, now),
        low_fill_rate={item.unique_id for item in report if item.low_fill_rate},
    )
