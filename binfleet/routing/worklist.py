from __future__ import annotations

from collections.abc import Sequence

from binfleet.config import ThresholdConfig
from binfleet.models.schemas import NormalizedDevice, RouteCandidateSet, WorkFilters, WorkOrder
from binfleet.telemetry.normalizer import needs_battery_change, needs_emptying, pick_devices_with_issues


def merge_candidates(
    devices: Sequence[NormalizedDevice],
    candidates: RouteCandidateSet,
    *,
    thresholds: ThresholdConfig,
) -> list[NormalizedDevice]:
    merged = pick_devices_with_issues(devices, thresholds)
    seen = {device.unique_id for device in merged}
    for device in devices:
        if device.unique_id in candidates.due_for_pickup and device.unique_id not in seen:
            merged.append(device)
            seen.add(device.unique_id)
    return merged


def qualifies(
    device: NormalizedDevice,
    candidates: RouteCandidateSet,
    filters: WorkFilters,
    *,
    thresholds: ThresholdConfig,
) -> bool:
    predicted = device.unique_id in candidates.due_for_pickup
    return (filters.change_battery and needs_battery_change(device, thresholds)) or (
        filters.empty_bin and (needs_emptying(device, thresholds) or predicted)
    )


def build_work_list(
    devices: Sequence[NormalizedDevice],
    candidates: RouteCandidateSet,
    filters: WorkFilters,
    *,
    thresholds: ThresholdConfig,
) -> list[NormalizedDevice]:
    if not (filters.change_battery or filters.empty_bin):
        return []
    return [
        device
        for device in merge_candidates(devices, candidates, thresholds=thresholds)
        if qualifies(device, candidates, filters, thresholds=thresholds)
    ]


def work_orders(
    work_list: Sequence[NormalizedDevice],
    candidates: RouteCandidateSet,
    filters: WorkFilters,
    *,
    thresholds: ThresholdConfig,
) -> list[WorkOrder]:
    orders: list[WorkOrder] = []
    for device in work_list:
        predicted = device.unique_id in candidates.due_for_pickup
        orders.append(
            WorkOrder(
                device=device,
                empty_bin=filters.empty_bin and (needs_emptying(device, thresholds) or predicted),
                change_battery=filters.change_battery and needs_battery_change(device, thresholds),
                predicted=predicted,
            )
        )
    return orders
