#!/usr/bin/env python3
from __future__ import annotations

import argparse
import random
from datetime import UTC, datetime, timedelta
from pathlib import Path

from binfleet.config import load_config
from binfleet.models.database import DatabaseManager
from binfleet.models.schemas import Device, HistoricalSample, User

ROOT = Path(__file__).resolve().parents[1]

# Downtown block used for demo coordinates.
CENTER_LAT = 45.8150
CENTER_LNG = 15.9819


def hourly_multiplier(hour: int) -> float:
    # Street bins fill during commute and lunch, almost nothing overnight.
    if 7 <= hour < 9:
        return 1.6
    if 11 <= hour < 14:
        return 2.0
    if 16 <= hour < 19:
        return 1.4
    if hour >= 22 or hour < 6:
        return 0.1
    return 1.0


def generate_series(
    *,
    start: datetime,
    end: datetime,
    step_minutes: int,
    base_rate: float,
    rng: random.Random,
) -> list[tuple[datetime, float]]:
    points: list[tuple[datetime, float]] = []
    ts = start
    level = rng.uniform(2.0, 15.0)
    step_hours = step_minutes / 60.0

    while ts <= end:
        level = min(100.0, level + base_rate * hourly_multiplier(ts.hour) * step_hours + rng.uniform(-0.3, 0.5))
        if level >= 92.0 or (ts.hour == 6 and level >= 60.0 and rng.random() < 0.5):
            level = rng.uniform(0.0, 8.0)
        points.append((ts, round(max(level, 0.0))))
        ts += timedelta(minutes=step_minutes)

    return points


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo bins and fill history")
    parser.add_argument("--bins", type=int, default=12)
    parser.add_argument("--days", type=int, default=7)
    parser.add_argument("--step-minutes", type=int, default=30)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    config = load_config(ROOT / "config")
    db = DatabaseManager(config.database.path)
    db.initialize()
    rng = random.Random(args.seed)

    if not db.email_exists("dispatch@example.com"):
        db.insert_user(User(fname="Route", lname="Dispatcher", email="dispatch@example.com", role="admin"))

    end = datetime.now(tz=UTC)
    start = end - timedelta(days=args.days)

    created = 0
    for index in range(args.bins):
        unique_id = f"bin-{index + 1:03d}"
        bin_height = rng.choice([80.0, 100.0, 120.0])
        series = generate_series(
            start=start,
            end=end,
            step_minutes=args.step_minutes,
            base_rate=rng.uniform(0.4, 4.5),
            rng=rng,
        )
        last_level = series[-1][1] if series else 0.0

        device = Device(
            unique_id=unique_id,
            bin_height=bin_height,
            lat=round(CENTER_LAT + rng.uniform(-0.01, 0.01), 6),
            lng=round(CENTER_LNG + rng.uniform(-0.015, 0.015), 6),
            battery=round(rng.uniform(10.0, 100.0)),
            level=round(bin_height - last_level * bin_height / 100.0, 1),
            is_registered=True,
        )
        if db.get_device(unique_id) is None:
            db.insert_device(device)
        else:
            db.update_device(unique_id, device.model_dump(exclude={"id", "unique_id"}))

        for ts, level in series:
            db.insert_historical(HistoricalSample(unique_id=unique_id, saved_time=ts, level_in_percents=level))
            created += 1

    db.close()
    print(f"Inserted {created} historical rows for {args.bins} bins into {config.database.path}")


if __name__ == "__main__":
    main()
