from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from binfleet.analytics.predictions import fill_rate_report, triage
from binfleet.config import AppConfig
from binfleet.models.changes import ChangeFeed
from binfleet.models.schemas import (
    ChangeEvent,
    Device,
    FillRatePrediction,
    HistoricalSample,
    NormalizedDevice,
    RouteCandidateSet,
    WorkFilters,
    WorkOrder,
)
from binfleet.routing.worklist import build_work_list, work_orders
from binfleet.telemetry.normalizer import normalize_devices

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanningResult:
    devices: list[NormalizedDevice]
    candidates: RouteCandidateSet
    predictions: list[FillRatePrediction]
    horizon_hours: float
    computed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def retriage(self, *, horizon_hours: float, now: datetime | None = None) -> PlanningResult:
        """Re-evaluate the due set against `now`; predicted full times are absolute, so rates stay valid."""
        now = now or datetime.now(tz=UTC)
        return replace(
            self,
            candidates=triage(self.predictions, horizon_hours=horizon_hours, now=now),
            horizon_hours=horizon_hours,
            computed_at=now,
        )

    def work_list(self, filters: WorkFilters, config: AppConfig) -> list[NormalizedDevice]:
        return build_work_list(self.devices, self.candidates, filters, thresholds=config.thresholds)

    def work_orders(self, filters: WorkFilters, config: AppConfig) -> list[WorkOrder]:
        return work_orders(self.work_list(filters, config), self.candidates, filters, thresholds=config.thresholds)


def plan_routes(
    devices: Iterable[Device],
    samples: Iterable[HistoricalSample],
    *,
    config: AppConfig,
    horizon_hours: float | None = None,
    now: datetime | None = None,
) -> PlanningResult:
    """Recompute every derived planning value from a device and history snapshot."""
    now = now or datetime.now(tz=UTC)
    horizon = config.planning.horizon_hours if horizon_hours is None else horizon_hours

    normalized = normalize_devices(device for device in devices if device.is_registered)
    predictions = fill_rate_report(
        samples,
        thresholds=config.thresholds,
        current_levels={device.unique_id: device.level for device in normalized},
        now=now,
    )
    return PlanningResult(
        devices=normalized,
        candidates=triage(predictions, horizon_hours=horizon, now=now),
        predictions=predictions,
        horizon_hours=horizon,
        computed_at=now,
    )


def _apply_rows(rows: list, event: ChangeEvent, model: type) -> list:
    if event.event_type == "INSERT" and event.new:
        return [*rows, model.model_validate(event.new)]
    if event.event_type == "UPDATE" and event.new:
        updated = model.model_validate(event.new)
        if any(row.id == updated.id for row in rows):
            return [updated if row.id == updated.id else row for row in rows]
        return [*rows, updated]
    if event.event_type == "DELETE" and event.old:
        return [row for row in rows if row.id != event.old.get("id")]
    if event.event_type == "TRUNCATE" and event.old:
        removed = set(event.old.get("ids", []))
        return [row for row in rows if row.id not in removed]
    return rows


class PlanningSession:
    def __init__(
        self,
        config: AppConfig,
        *,
        on_result: Callable[[PlanningResult], None] | None = None,
    ) -> None:
        self.config = config
        self.on_result = on_result
        self._devices: list[Device] = []
        self._historical: list[HistoricalSample] = []
        self._result: PlanningResult | None = None
        self._lock = threading.Lock()

    @property
    def result(self) -> PlanningResult:
        with self._lock:
            if self._result is None:
                self._result = plan_routes(self._devices, self._historical, config=self.config)
            return self._result

    def current(self, horizon_hours: float | None = None, now: datetime | None = None) -> PlanningResult:
        horizon = self.config.planning.horizon_hours if horizon_hours is None else horizon_hours
        return self.result.retriage(horizon_hours=horizon, now=now)

    def load(self, devices: Sequence[Device], samples: Sequence[HistoricalSample]) -> PlanningResult:
        with self._lock:
            self._devices = list(devices)
            self._historical = list(samples)
        return self.recompute()

    def recompute(self, now: datetime | None = None) -> PlanningResult:
        with self._lock:
            self._result = plan_routes(self._devices, self._historical, config=self.config, now=now)
            result = self._result
        if self.on_result is not None:
            self.on_result(result)
        return result

    def apply(self, event: ChangeEvent) -> PlanningResult | None:
        with self._lock:
            if event.table == "devices":
                self._devices = _apply_rows(self._devices, event, Device)
            elif event.table == "historical":
                self._historical = _apply_rows(self._historical, event, HistoricalSample)
            else:
                return None
        LOGGER.debug("Recomputing plan after %s on %s", event.event_type, event.table)
        return self.recompute()

    def attach(self, feed: ChangeFeed) -> Callable[[], None]:
        handles = [feed.subscribe("devices", self.apply), feed.subscribe("historical", self.apply)]

        def detach() -> None:
            for handle in handles:
                handle()

        return detach
