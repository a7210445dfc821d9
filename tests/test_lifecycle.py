from datetime import UTC, datetime

import pytest

from binfleet.models.schemas import Route
from binfleet.routing.lifecycle import (
    InvalidTransitionError,
    available_actions,
    ensure_deletable,
    finish_route,
    start_route,
)

CREATED = datetime(2026, 3, 2, 7, 0, tzinfo=UTC)


def _route(status: str = "pending") -> Route:
    return Route(
        id=7,
        employee_id=1,
        device_ids=["a", "b"],
        empty_bin=True,
        change_battery=False,
        status=status,
        created_at=CREATED,
    )


def test_route_runs_through_lifecycle() -> None:
    started_at = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
    finished_at = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)

    route = start_route(_route(), at=started_at)
    assert route.status == "started"
    assert route.started == started_at

    route = finish_route(route, at=finished_at)
    assert route.status == "finished"
    assert route.finished == finished_at
    assert route.device_ids == ["a", "b"]
    ensure_deletable(route)


def test_transition_does_not_mutate_original() -> None:
    original = _route()
    start_route(original)
    assert original.status == "pending"
    assert original.started is None


@pytest.mark.parametrize(
    ("status", "action"),
    [
        ("pending", finish_route),
        ("started", start_route),
        ("finished", start_route),
        ("finished", finish_route),
    ],
)
def test_out_of_order_transitions_rejected(status: str, action) -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        action(_route(status))
    assert excinfo.value.status == status


@pytest.mark.parametrize("status", ["pending", "started"])
def test_only_finished_routes_can_be_deleted(status: str) -> None:
    with pytest.raises(InvalidTransitionError):
        ensure_deletable(_route(status))


def test_available_actions() -> None:
    assert available_actions(_route("pending")) == ["start"]
    assert available_actions(_route("started")) == ["finish"]
    assert available_actions(_route("finished")) == ["delete"]
