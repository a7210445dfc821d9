from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

TravelMode = Literal["WALKING", "DRIVING"]


@dataclass(slots=True)
class ThresholdConfig:
    full_level: float = 80.0
    battery_low: float = 25.0
    dashboard_low_battery: float = 20.0
    emptying_from: float = 20.0
    emptying_to: float = 10.0
    low_fill_rate: float = 1.0


@dataclass(slots=True)
class PlanningConfig:
    horizon_hours: float = 6.0
    default_travel_mode: TravelMode = "WALKING"
    walking_kmh: float = 5.0
    driving_kmh: float = 30.0
    default_employee_id: int = 1


@dataclass(slots=True)
class DatabaseConfig:
    path: Path


@dataclass(slots=True)
class DashboardConfig:
    recent_feedback_limit: int = 5
    recent_routes_limit: int = 5


@dataclass(slots=True)
class AppConfig:
    database: DatabaseConfig
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


class ConfigError(RuntimeError):
    pass


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping in {path}")
    return data


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _resolve_config_dir() -> Path:
    env_dir = os.getenv("BINFLEET_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return (_repo_root() / "config").resolve()


def _parse_thresholds(raw: dict[str, Any]) -> ThresholdConfig:
    thresholds = ThresholdConfig(
        full_level=float(raw.get("full_level", 80)),
        battery_low=float(raw.get("battery_low", 25)),
        dashboard_low_battery=float(raw.get("dashboard_low_battery", 20)),
        emptying_from=float(raw.get("emptying_from", 20)),
        emptying_to=float(raw.get("emptying_to", 10)),
        low_fill_rate=float(raw.get("low_fill_rate", 1.0)),
    )
    if thresholds.emptying_to >= thresholds.emptying_from:
        raise ConfigError("thresholds.emptying_to must be below thresholds.emptying_from")
    return thresholds


def _parse_planning(raw: dict[str, Any]) -> PlanningConfig:
    mode = str(raw.get("default_travel_mode", "WALKING")).strip().upper()
    if mode not in {"WALKING", "DRIVING"}:
        raise ConfigError(f"Invalid planning.default_travel_mode `{mode}`. Use WALKING|DRIVING.")

    planning = PlanningConfig(
        horizon_hours=float(raw.get("horizon_hours", 6)),
        default_travel_mode=mode,  # type: ignore[arg-type]
        walking_kmh=float(raw.get("walking_kmh", 5.0)),
        driving_kmh=float(raw.get("driving_kmh", 30.0)),
        default_employee_id=int(raw.get("default_employee_id", 1)),
    )
    if planning.horizon_hours <= 0:
        raise ConfigError("planning.horizon_hours must be > 0")
    if planning.walking_kmh <= 0 or planning.driving_kmh <= 0:
        raise ConfigError("planning travel speeds must be > 0")
    return planning


def load_config(config_dir: Path | None = None) -> AppConfig:
    directory = config_dir or _resolve_config_dir()
    if not directory.exists():
        raise ConfigError(f"Config directory not found: {directory}")

    thresholds_cfg = _read_yaml(directory / "thresholds.yaml")
    planning_cfg = _read_yaml(directory / "planning.yaml")
    backend_cfg = _read_yaml(directory / "backend.yaml")

    db_path_raw = backend_cfg.get("database", {}).get("path", "./data/binfleet.db")
    db_path = Path(db_path_raw)
    if not db_path.is_absolute():
        db_path = (_repo_root() / db_path).resolve()

    dashboard_raw = backend_cfg.get("dashboard", {})
    if not isinstance(dashboard_raw, dict):
        raise ConfigError("backend.dashboard must be a dictionary")

    dashboard = DashboardConfig(
        recent_feedback_limit=int(dashboard_raw.get("recent_feedback_limit", 5)),
        recent_routes_limit=int(dashboard_raw.get("recent_routes_limit", 5)),
    )

    return AppConfig(
        database=DatabaseConfig(path=db_path),
        thresholds=_parse_thresholds(thresholds_cfg),
        planning=_parse_planning(planning_cfg),
        dashboard=dashboard,
    )
