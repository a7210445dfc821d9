from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from binfleet.config import PlanningConfig
from binfleet.models.schemas import DirectionsLeg, DirectionsResult, NormalizedDevice

EARTH_RADIUS_M = 6_371_000.0

Coordinate = tuple[float, float]


@dataclass(frozen=True, slots=True)
class DirectionsRequest:
    origin: Coordinate
    destination: Coordinate
    waypoints: list[Coordinate]
    travel_mode: str


class DirectionsProvider(Protocol):
    def route(self, request: DirectionsRequest) -> DirectionsResult: ...


def haversine_m(start: Coordinate, end: Coordinate) -> float:
    lat1, lng1 = map(math.radians, start)
    lat2, lng2 = map(math.radians, end)
    a = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lng2 - lng1) / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def build_directions_request(work_list: Sequence[NormalizedDevice], travel_mode: str) -> DirectionsRequest | None:
    stops = [(device.lat, device.lng) for device in work_list if device.lat is not None and device.lng is not None]
    if len(stops) < 2:
        return None
    return DirectionsRequest(
        origin=stops[0],  # type: ignore[arg-type]
        destination=stops[-1],  # type: ignore[arg-type]
        waypoints=stops[1:-1],  # type: ignore[arg-type]
        travel_mode=travel_mode,
    )


class StraightLineDirections:
    """Offline provider: legs follow great-circle distance at a fixed speed per travel mode."""

    def __init__(self, planning: PlanningConfig) -> None:
        self._speed_kmh = {"WALKING": planning.walking_kmh, "DRIVING": planning.driving_kmh}

    def route(self, request: DirectionsRequest) -> DirectionsResult:
        speed_kmh = self._speed_kmh.get(request.travel_mode)
        if speed_kmh is None:
            raise ValueError(f"Unsupported travel mode `{request.travel_mode}`")

        path = [request.origin, *request.waypoints, request.destination]
        legs: list[DirectionsLeg] = []
        for start, end in zip(path, path[1:], strict=False):
            distance = haversine_m(start, end)
            legs.append(
                DirectionsLeg(
                    start=start,
                    end=end,
                    distance_m=round(distance, 1),
                    duration_s=distance / (speed_kmh * 1000.0 / 3600.0),
                )
            )
        return DirectionsResult(travel_mode=request.travel_mode, legs=legs, path=path)  # type: ignore[arg-type]


def format_duration(seconds: float) -> str:
    return f"{math.floor(seconds / 60)} minutes"
