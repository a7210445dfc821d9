from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from binfleet.analytics.statistics import count_emptying_events, fleet_summary, level_chart
from binfleet.models.database import DatabaseManager
from binfleet.models.schemas import (
    BinReport,
    CreateRouteRequest,
    DeviceRegistrationRequest,
    DeviceUpdateRequest,
    Feedback,
    FeedbackRequest,
    FeedbackUpdateRequest,
    Route,
    User,
    WeatherReport,
    WorkFilters,
)
from binfleet.routing.directions import build_directions_request, format_duration
from binfleet.routing.lifecycle import available_actions, ensure_deletable, finish_route, start_route
from binfleet.routing.planner import PlanningResult
from binfleet.telemetry.normalizer import normalize_devices

router = APIRouter(prefix="/api")

DEVICE_TABLES = {"bin": "devices", "weather": "weather_sensors"}


def _db(request: Request) -> DatabaseManager:
    return request.app.state.db


def _plan(request: Request, horizon_hours: float | None = None) -> PlanningResult:
    return request.app.state.planner.current(horizon_hours)


def _route_payload(route: Route) -> dict[str, Any]:
    payload = route.model_dump(mode="json")
    payload["actions"] = available_actions(route)
    return payload


# devices


def _register(request: Request, kind: str, unique_id: str, payload: DeviceRegistrationRequest) -> dict[str, Any]:
    if kind == "bin" and payload.bin_height is None:
        raise HTTPException(status_code=422, detail="bin_height is required to register a bin")

    fields: dict[str, Any] = {"lat": payload.lat, "lng": payload.lng, "is_registered": True}
    if kind == "bin":
        fields["bin_height"] = payload.bin_height

    device = _db(request).update_device(unique_id, fields, table=DEVICE_TABLES[kind])
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device.model_dump(mode="json")


def _deregister(request: Request, kind: str, unique_id: str) -> dict[str, Any]:
    device = _db(request).update_device(unique_id, {"is_registered": False}, table=DEVICE_TABLES[kind])
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device.model_dump(mode="json")


def _update(request: Request, kind: str, unique_id: str, payload: DeviceUpdateRequest) -> dict[str, Any]:
    fields = payload.model_dump(exclude_none=True)
    if kind != "bin":
        fields.pop("bin_height", None)
    device = _db(request).update_device(unique_id, fields, table=DEVICE_TABLES[kind])
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device.model_dump(mode="json")


@router.get("/devices")
async def list_devices(request: Request) -> list[dict[str, Any]]:
    devices = normalize_devices(_db(request).list_devices(registered=True))
    return [device.model_dump(mode="json") for device in devices]


@router.get("/devices/unregistered")
async def list_unregistered_devices(request: Request) -> list[dict[str, Any]]:
    return [device.model_dump(mode="json") for device in _db(request).list_devices(registered=False)]


@router.post("/devices/{unique_id}/register")
def register_device(unique_id: str, request: Request, payload: DeviceRegistrationRequest) -> dict[str, Any]:
    return _register(request, "bin", unique_id, payload)


@router.post("/devices/{unique_id}/deregister")
def deregister_device(unique_id: str, request: Request) -> dict[str, Any]:
    return _deregister(request, "bin", unique_id)


@router.patch("/devices/{unique_id}")
def update_device(unique_id: str, request: Request, payload: DeviceUpdateRequest) -> dict[str, Any]:
    return _update(request, "bin", unique_id, payload)


@router.get("/weather-sensors")
async def list_weather_sensors(request: Request) -> list[dict[str, Any]]:
    sensors = _db(request).list_devices(registered=True, table="weather_sensors")
    return [sensor.model_dump(mode="json") for sensor in sensors]


@router.get("/weather-sensors/unregistered")
async def list_unregistered_weather_sensors(request: Request) -> list[dict[str, Any]]:
    sensors = _db(request).list_devices(registered=False, table="weather_sensors")
    return [sensor.model_dump(mode="json") for sensor in sensors]


@router.post("/weather-sensors/{unique_id}/register")
def register_weather_sensor(unique_id: str, request: Request, payload: DeviceRegistrationRequest) -> dict[str, Any]:
    return _register(request, "weather", unique_id, payload)


@router.post("/weather-sensors/{unique_id}/deregister")
def deregister_weather_sensor(unique_id: str, request: Request) -> dict[str, Any]:
    return _deregister(request, "weather", unique_id)


@router.patch("/weather-sensors/{unique_id}")
def update_weather_sensor(unique_id: str, request: Request, payload: DeviceUpdateRequest) -> dict[str, Any]:
    return _update(request, "weather", unique_id, payload)


# hardware reports


@router.post("/hardware/bins")
def report_bin(request: Request, payload: BinReport) -> dict[str, Any]:
    device, sample = request.app.state.ingestor.ingest_bin_report(payload)
    return {
        "device": device.model_dump(mode="json"),
        "historical": sample.model_dump(mode="json") if sample else None,
    }


@router.post("/hardware/weather")
def report_weather(request: Request, payload: WeatherReport) -> dict[str, Any]:
    sensor = request.app.state.ingestor.ingest_weather_report(payload)
    return sensor.model_dump(mode="json")


# historical


@router.get("/historical")
async def list_historical(request: Request, unique_id: str | None = None) -> list[dict[str, Any]]:
    return [sample.model_dump(mode="json") for sample in _db(request).list_historical(unique_id=unique_id)]


@router.delete("/historical")
def clear_historical(request: Request) -> dict[str, Any]:
    return {"ok": True, "removed": _db(request).clear_historical()}


# dashboard and analytics


@router.get("/dashboard/summary")
async def dashboard_summary(request: Request) -> dict[str, Any]:
    db = _db(request)
    config = request.app.state.config
    devices = normalize_devices(db.list_devices(registered=True))

    summary: dict[str, Any] = fleet_summary(devices, thresholds=config.thresholds)
    summary["recent_feedback"] = [
        item.model_dump(mode="json") for item in db.list_feedbacks(limit=config.dashboard.recent_feedback_limit)
    ]
    summary["recent_routes"] = [
        _route_payload(route) for route in db.list_routes(limit=config.dashboard.recent_routes_limit)
    ]
    return summary


@router.get("/dashboard/chart")
async def dashboard_chart(request: Request) -> dict[str, Any]:
    return level_chart(_db(request).list_historical())


@router.get("/analytics/empty-events")
async def analytics_empty_events(request: Request) -> dict[str, int]:
    thresholds = request.app.state.config.thresholds
    return count_emptying_events(_db(request).list_historical(), thresholds=thresholds)


@router.get("/analytics/fill-rates")
async def analytics_fill_rates(
    request: Request,
    horizon_hours: float | None = Query(default=None, gt=0, le=168),
) -> dict[str, Any]:
    result = _plan(request, horizon_hours)
    return {
        "computed_at": result.computed_at.isoformat(),
        "horizon_hours": result.horizon_hours,
        "due_for_pickup": sorted(result.candidates.due_for_pickup),
        "low_fill_rate": sorted(result.candidates.low_fill_rate),
        "items": [item.model_dump(mode="json") for item in result.predictions],
    }


# planning


@router.get("/planning/work-list")
async def planning_work_list(
    request: Request,
    change_battery: bool = Query(default=True),
    empty_bin: bool = Query(default=True),
    horizon_hours: float | None = Query(default=None, gt=0, le=168),
) -> dict[str, Any]:
    config = request.app.state.config
    filters = WorkFilters(change_battery=change_battery, empty_bin=empty_bin)
    result = _plan(request, horizon_hours)
    orders = result.work_orders(filters, config)
    return {
        "computed_at": result.computed_at.isoformat(),
        "horizon_hours": result.horizon_hours,
        "filters": filters.model_dump(),
        "count": len(orders),
        "items": [order.model_dump(mode="json") for order in orders],
    }


@router.get("/planning/estimate")
async def planning_estimate(
    request: Request,
    travel_mode: str | None = Query(default=None, pattern="^(WALKING|DRIVING)$"),
    change_battery: bool = Query(default=True),
    empty_bin: bool = Query(default=True),
) -> dict[str, Any]:
    config = request.app.state.config
    mode = travel_mode or config.planning.default_travel_mode
    work_list = _plan(request).work_list(WorkFilters(change_battery=change_battery, empty_bin=empty_bin), config)

    directions_request = build_directions_request(work_list, mode)
    if directions_request is None:
        return {"travel_mode": mode, "device_ids": [d.unique_id for d in work_list], "estimated_time": "", "directions": None}

    directions = request.app.state.directions.route(directions_request)
    return {
        "travel_mode": mode,
        "device_ids": [d.unique_id for d in work_list],
        "estimated_time": format_duration(directions.duration_s),
        "directions": directions.model_dump(mode="json"),
    }


# routes


def _get_route(request: Request, route_id: int) -> Route:
    route = _db(request).get_route(route_id)
    if route is None:
        raise HTTPException(status_code=404, detail="Route not found")
    return route


@router.get("/routes")
async def list_routes(request: Request, limit: int | None = Query(default=None, ge=1, le=1000)) -> list[dict[str, Any]]:
    return [_route_payload(route) for route in _db(request).list_routes(limit=limit)]


@router.post("/routes", status_code=201)
async def create_route(request: Request, payload: CreateRouteRequest) -> dict[str, Any]:
    config = request.app.state.config
    filters = WorkFilters(change_battery=payload.change_battery, empty_bin=payload.empty_bin)

    device_ids = payload.device_ids
    if device_ids is None:
        device_ids = [device.unique_id for device in _plan(request).work_list(filters, config)]
    if not device_ids:
        raise HTTPException(status_code=400, detail="No devices need service")

    route = _db(request).insert_route(
        Route(
            employee_id=(
                config.planning.default_employee_id if payload.employee_id is None else payload.employee_id
            ),
            device_ids=device_ids,
            empty_bin=filters.empty_bin,
            change_battery=filters.change_battery,
            status="pending",
            created_at=datetime.now(tz=UTC),
        )
    )
    return _route_payload(route)


@router.post("/routes/{route_id}/start")
async def start_route_endpoint(route_id: int, request: Request) -> dict[str, Any]:
    route = start_route(_get_route(request, route_id))
    return _route_payload(_db(request).update_route_status(route))


@router.post("/routes/{route_id}/finish")
async def finish_route_endpoint(route_id: int, request: Request) -> dict[str, Any]:
    route = finish_route(_get_route(request, route_id))
    return _route_payload(_db(request).update_route_status(route))


@router.delete("/routes/{route_id}")
async def delete_route_endpoint(route_id: int, request: Request) -> dict[str, Any]:
    ensure_deletable(_get_route(request, route_id))
    _db(request).delete_route(route_id)
    return {"ok": True, "route_id": route_id}


# feedback and users


@router.get("/feedbacks")
async def list_feedbacks(request: Request) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in _db(request).list_feedbacks()]


@router.post("/feedbacks", status_code=201)
async def add_feedback(request: Request, payload: FeedbackRequest) -> dict[str, Any]:
    feedback = _db(request).insert_feedback(
        Feedback(unique_id=payload.unique_id, message=payload.message, created_at=datetime.now(tz=UTC))
    )
    return feedback.model_dump(mode="json")


@router.patch("/feedbacks/{feedback_id}")
async def update_feedback(feedback_id: int, request: Request, payload: FeedbackUpdateRequest) -> dict[str, Any]:
    feedback = _db(request).update_feedback(feedback_id, payload.model_dump(exclude_none=True))
    if feedback is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return feedback.model_dump(mode="json")


@router.post("/users", status_code=201)
async def create_user(request: Request, payload: User) -> dict[str, Any]:
    db = _db(request)
    if db.email_exists(payload.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    return db.insert_user(payload.model_copy(update={"id": None})).model_dump(mode="json")


@router.get("/users/{user_id}")
async def get_user(user_id: int, request: Request) -> dict[str, Any]:
    user = _db(request).get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user.model_dump(mode="json")
