from datetime import UTC, datetime, timedelta
from pathlib import Path

from binfleet.config import AppConfig, DatabaseConfig
from binfleet.models.changes import ChangeFeed
from binfleet.models.database import DatabaseManager
from binfleet.models.schemas import ChangeEvent, Device, HistoricalSample, WorkFilters
from binfleet.routing.planner import PlanningSession, plan_routes

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _config() -> AppConfig:
    return AppConfig(database=DatabaseConfig(path=Path("unused.db")))


def _sample(idx: int, unique_id: str, hours_ago: float, level: float) -> HistoricalSample:
    return HistoricalSample(id=idx, unique_id=unique_id, saved_time=NOW - timedelta(hours=hours_ago), level_in_percents=level)


DEVICES = [
    Device(id=1, unique_id="a", bin_height=100, level=40, battery=90, is_registered=True),
    Device(id=2, unique_id="b", bin_height=100, level=90, battery=90, is_registered=True),
    Device(id=3, unique_id="c", bin_height=100, level=10, battery=90, is_registered=False),
]

HISTORY = [
    _sample(1, "a", 2, 40),
    _sample(2, "a", 1, 50),
    _sample(3, "b", 2, 10),
    _sample(4, "b", 1, 10.5),
]


def test_plan_routes_combines_triage_and_issues() -> None:
    config = _config()
    result = plan_routes(DEVICES, HISTORY, config=config, now=NOW)

    assert [device.unique_id for device in result.devices] == ["a", "b"]
    # a: level 60 from the device snapshot, rising 10%/h -> full in 4h
    assert result.candidates.due_for_pickup == {"a"}
    assert result.candidates.low_fill_rate == {"b"}

    work_list = result.work_list(WorkFilters(), config)
    assert [device.unique_id for device in work_list] == ["a"]


def test_plan_routes_respects_horizon() -> None:
    result = plan_routes(DEVICES, HISTORY, config=_config(), horizon_hours=2, now=NOW)
    assert result.candidates.due_for_pickup == set()
    assert result.horizon_hours == 2


def test_session_recomputes_on_every_change() -> None:
    results = []
    session = PlanningSession(_config(), on_result=results.append)
    session.load(DEVICES, HISTORY[:1])
    assert session.result.candidates.due_for_pickup == set()

    session.apply(
        ChangeEvent(table="historical", event_type="INSERT", new=_sample(2, "a", 1, 50).model_dump(mode="json"))
    )
    assert session.result.candidates.due_for_pickup == {"a"}

    full = DEVICES[1].model_copy(update={"level": 5.0, "battery": 10.0})
    session.apply(ChangeEvent(table="devices", event_type="UPDATE", new=full.model_dump(mode="json")))
    assert {device.unique_id: device.level for device in session.result.devices}["b"] == 95

    session.apply(ChangeEvent(table="devices", event_type="DELETE", old={"id": 1}))
    assert [device.unique_id for device in session.result.devices] == ["b"]
    assert len(results) == 4


def test_session_ignores_unrelated_tables() -> None:
    session = PlanningSession(_config())
    session.load(DEVICES, HISTORY)
    assert session.apply(ChangeEvent(table="feedbacks", event_type="INSERT", new={"id": 1})) is None


def test_registration_update_adds_device_to_snapshot() -> None:
    session = PlanningSession(_config())
    session.load(DEVICES[:1], [])

    registered = DEVICES[2].model_copy(update={"is_registered": True})
    session.apply(ChangeEvent(table="devices", event_type="UPDATE", new=registered.model_dump(mode="json")))
    assert [device.unique_id for device in session.result.devices] == ["a", "c"]


def test_session_attached_to_feed() -> None:
    feed = ChangeFeed()
    session = PlanningSession(_config())
    session.load([], [])
    detach = session.attach(feed)

    feed.emit("devices", "INSERT", new=DEVICES[1].model_dump(mode="json"))
    assert [device.unique_id for device in session.result.devices] == ["b"]

    detach()
    feed.emit("devices", "INSERT", new=DEVICES[0].model_dump(mode="json"))
    assert [device.unique_id for device in session.result.devices] == ["b"]


def test_failing_subscriber_does_not_block_others() -> None:
    feed = ChangeFeed()
    received = []

    def broken(event: ChangeEvent) -> None:
        raise RuntimeError("boom")

    feed.subscribe("routes", broken)
    feed.subscribe("*", received.append)
    feed.emit("routes", "DELETE", old={"id": 3})

    assert [event.table for event in received] == ["routes"]


def test_cached_plan_is_retriaged_as_time_passes() -> None:
    session = PlanningSession(_config())
    earlier = NOW - timedelta(hours=10)
    rising = [
        HistoricalSample(id=1, unique_id="a", saved_time=earlier - timedelta(hours=1), level_in_percents=10),
        HistoricalSample(id=2, unique_id="a", saved_time=earlier, level_in_percents=20),
    ]
    session.load([DEVICES[0].model_copy(update={"level": 80.0})], rising)
    session.recompute(now=earlier)
    # 10%/h from 20% -> full 8h after the last recompute
    assert session.result.candidates.due_for_pickup == set()

    current = session.current(now=NOW)
    assert current.candidates.due_for_pickup == {"a"}
    assert current.computed_at == NOW
    assert current.horizon_hours == 6
    assert session.current(horizon_hours=0, now=earlier).candidates.due_for_pickup == set()


def test_clearing_history_recomputes_once(tmp_path: Path) -> None:
    results = []
    db = DatabaseManager(tmp_path / "binfleet.db", ChangeFeed())
    db.initialize()
    for sample in HISTORY:
        db.insert_historical(sample.model_copy(update={"id": None}))

    session = PlanningSession(_config(), on_result=results.append)
    session.load(DEVICES, db.list_historical())
    session.attach(db.feed)
    results.clear()

    assert db.clear_historical() == len(HISTORY)
    assert len(results) == 1
    assert session.result.candidates.due_for_pickup == set()
    assert all(item.fill_rate_per_hour is None for item in session.result.predictions)
    db.close()
