from binfleet.config import ThresholdConfig
from binfleet.models.schemas import Device, RouteCandidateSet, WorkFilters
from binfleet.routing.worklist import build_work_list, work_orders
from binfleet.telemetry.normalizer import normalize_devices

THRESHOLDS = ThresholdConfig()
BOTH = WorkFilters(change_battery=True, empty_bin=True)


def _devices() -> list:
    return normalize_devices(
        [
            Device(unique_id="predicted", bin_height=100, level=60, battery=90),
            Device(unique_id="full", bin_height=100, level=10, battery=80),
            Device(unique_id="battery", bin_height=100, level=90, battery=10),
            Device(unique_id="quiet", bin_height=100, level=95, battery=70),
            Device(unique_id="edge", bin_height=100, level=50, battery=25),
        ]
    )


def _ids(devices: list) -> list[str]:
    return [device.unique_id for device in devices]


def test_full_bin_with_low_battery_needs_both_actions() -> None:
    devices = normalize_devices([Device(unique_id="A", bin_height=100, level=20, battery=15)])
    candidates = RouteCandidateSet()

    work_list = build_work_list(devices, candidates, BOTH, thresholds=THRESHOLDS)
    assert _ids(work_list) == ["A"]
    assert work_list[0].level == 80

    order = work_orders(work_list, candidates, BOTH, thresholds=THRESHOLDS)[0]
    assert order.empty_bin is True
    assert order.change_battery is True
    assert order.predicted is False


def test_both_filters_disabled_gives_empty_list() -> None:
    candidates = RouteCandidateSet(due_for_pickup={"predicted", "quiet"})
    filters = WorkFilters(change_battery=False, empty_bin=False)
    assert build_work_list(_devices(), candidates, filters, thresholds=THRESHOLDS) == []


def test_issue_devices_come_before_predicted_devices() -> None:
    candidates = RouteCandidateSet(due_for_pickup={"predicted"})
    work_list = build_work_list(_devices(), candidates, BOTH, thresholds=THRESHOLDS)
    assert _ids(work_list) == ["full", "battery", "predicted"]


def test_device_due_and_full_is_listed_once() -> None:
    candidates = RouteCandidateSet(due_for_pickup={"full", "predicted"})
    work_list = build_work_list(_devices(), candidates, BOTH, thresholds=THRESHOLDS)
    assert _ids(work_list) == ["full", "battery", "predicted"]


def test_empty_bin_filter_only() -> None:
    candidates = RouteCandidateSet(due_for_pickup={"predicted"})
    filters = WorkFilters(change_battery=False, empty_bin=True)
    work_list = build_work_list(_devices(), candidates, filters, thresholds=THRESHOLDS)
    assert _ids(work_list) == ["full", "predicted"]

    orders = work_orders(work_list, candidates, filters, thresholds=THRESHOLDS)
    assert [order.predicted for order in orders] == [False, True]
    assert all(order.empty_bin and not order.change_battery for order in orders)


def test_change_battery_filter_only() -> None:
    candidates = RouteCandidateSet(due_for_pickup={"predicted"})
    filters = WorkFilters(change_battery=True, empty_bin=False)
    work_list = build_work_list(_devices(), candidates, filters, thresholds=THRESHOLDS)
    assert _ids(work_list) == ["battery"]


def test_low_fill_rate_does_not_remove_devices() -> None:
    candidates = RouteCandidateSet(low_fill_rate={"full"})
    work_list = build_work_list(_devices(), candidates, BOTH, thresholds=THRESHOLDS)
    assert "full" in _ids(work_list)
