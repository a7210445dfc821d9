from __future__ import annotations

from datetime import UTC, datetime

from binfleet.models.schemas import Route

TRANSITIONS: dict[str, tuple[str, str | None]] = {
    "start": ("pending", "started"),
    "finish": ("started", "finished"),
    "delete": ("finished", None),
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, route_id: int | None, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} route {route_id} while it is {status}")
        self.route_id = route_id
        self.status = status
        self.action = action


def _require(route: Route, action: str) -> str | None:
    expected, target = TRANSITIONS[action]
    if route.status != expected:
        raise InvalidTransitionError(route.id, route.status, action)
    return target


def start_route(route: Route, at: datetime | None = None) -> Route:
    status = _require(route, "start")
    return route.model_copy(update={"status": status, "started": at or datetime.now(tz=UTC)})


def finish_route(route: Route, at: datetime | None = None) -> Route:
    status = _require(route, "finish")
    return route.model_copy(update={"status": status, "finished": at or datetime.now(tz=UTC)})


def ensure_deletable(route: Route) -> None:
    _require(route, "delete")


def available_actions(route: Route) -> list[str]:
    return [action for action, (expected, _) in TRANSITIONS.items() if expected == route.status]
