from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

RouteStatusLiteral = Literal["pending", "started", "finished"]
FeedbackStatusLiteral = Literal["open", "resolved"]
TravelModeLiteral = Literal["WALKING", "DRIVING"]
ChangeTypeLiteral = Literal["INSERT", "UPDATE", "DELETE", "TRUNCATE"]


class Device(BaseModel):
    id: int | None = None
    unique_id: str
    bin_height: float | None = None
    lat: float | None = None
    lng: float | None = None
    battery: float | None = None
    level: float | None = None
    is_registered: bool = False


class NormalizedDevice(BaseModel):
    id: int | None = None
    unique_id: str
    bin_height: float
    lat: float | None = None
    lng: float | None = None
    battery: float | None = None
    level: int
    is_registered: bool = False


class WeatherSensor(BaseModel):
    id: int | None = None
    unique_id: str
    lat: float | None = None
    lng: float | None = None
    battery: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    is_registered: bool = False


class DeviceReading(BaseModel):
    device_id: str
    timestamp: datetime
    raw_distance_cm: float
    derived_fill_percent: int


class HistoricalSample(BaseModel):
    id: int | None = None
    unique_id: str
    saved_time: datetime
    level_in_percents: float


class Route(BaseModel):
    id: int | None = None
    employee_id: int
    device_ids: list[str]
    empty_bin: bool
    change_battery: bool
    status: RouteStatusLiteral = "pending"
    created_at: datetime
    started: datetime | None = None
    finished: datetime | None = None
    created_by: str | None = None


class Feedback(BaseModel):
    id: int | None = None
    unique_id: str | None = None
    message: str
    status: FeedbackStatusLiteral = "open"
    created_at: datetime


class User(BaseModel):
    id: int | None = None
    fname: str
    lname: str
    email: str
    role: str = "employee"


class WorkFilters(BaseModel):
    change_battery: bool = True
    empty_bin: bool = True


class RouteCandidateSet(BaseModel):
    due_for_pickup: set[str] = Field(default_factory=set)
    low_fill_rate: set[str] = Field(default_factory=set)


class WorkOrder(BaseModel):
    device: NormalizedDevice
    empty_bin: bool
    change_battery: bool
    predicted: bool


class FillRatePrediction(BaseModel):
    unique_id: str
    fill_rate_per_hour: float | None
    current_level: float | None
    hours_until_full: float | None
    predicted_full_at: datetime | None
    low_fill_rate: bool


class ChangeEvent(BaseModel):
    table: str
    event_type: ChangeTypeLiteral
    new: dict | None = None
    old: dict | None = None


class DeviceRegistrationRequest(BaseModel):
    lat: float
    lng: float
    bin_height: float | None = Field(default=None, gt=0)


class DeviceUpdateRequest(BaseModel):
    lat: float | None = None
    lng: float | None = None
    bin_height: float | None = Field(default=None, gt=0)


class BinReport(BaseModel):
    unique_id: str
    level: float = Field(ge=0, description="Raw ultrasonic distance in cm")
    battery: float | None = Field(default=None, ge=0, le=100)


class WeatherReport(BaseModel):
    unique_id: str
    temperature: float | None = None
    humidity: float | None = None
    battery: float | None = Field(default=None, ge=0, le=100)


class CreateRouteRequest(BaseModel):
    employee_id: int | None = None
    change_battery: bool = True
    empty_bin: bool = True
    device_ids: list[str] | None = None


class FeedbackRequest(BaseModel):
    message: str = Field(min_length=1)
    unique_id: str | None = None


class FeedbackUpdateRequest(BaseModel):
    status: FeedbackStatusLiteral | None = None
    message: str | None = None


class DirectionsLeg(BaseModel):
    start: tuple[float, float]
    end: tuple[float, float]
    distance_m: float
    duration_s: float


class DirectionsResult(BaseModel):
    travel_mode: TravelModeLiteral
    legs: list[DirectionsLeg]
    path: list[tuple[float, float]]

    @property
    def duration_s(self) -> float:
        return sum(leg.duration_s for leg in self.legs)
