from pathlib import Path

import pytest

from binfleet.config import ConfigError, load_config


def test_defaults_when_files_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)
    assert config.thresholds.full_level == 80
    assert config.thresholds.battery_low == 25
    assert config.planning.horizon_hours == 6
    assert config.planning.default_travel_mode == "WALKING"
    assert config.database.path.name == "binfleet.db"


def test_missing_directory_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope")


def test_values_read_from_yaml(tmp_path: Path) -> None:
    (tmp_path / "thresholds.yaml").write_text("full_level: 75\nlow_fill_rate: 0.5\n", encoding="utf-8")
    (tmp_path / "planning.yaml").write_text("horizon_hours: 12\ndefault_travel_mode: driving\n", encoding="utf-8")
    (tmp_path / "backend.yaml").write_text(
        f"database:\n  path: {tmp_path / 'x.db'}\ndashboard:\n  recent_routes_limit: 3\n",
        encoding="utf-8",
    )

    config = load_config(tmp_path)
    assert config.thresholds.full_level == 75
    assert config.thresholds.low_fill_rate == 0.5
    assert config.planning.horizon_hours == 12
    assert config.planning.default_travel_mode == "DRIVING"
    assert config.database.path == tmp_path / "x.db"
    assert config.dashboard.recent_routes_limit == 3


@pytest.mark.parametrize(
    ("filename", "content"),
    [
        ("planning.yaml", "default_travel_mode: cycling\n"),
        ("planning.yaml", "horizon_hours: 0\n"),
        ("thresholds.yaml", "emptying_from: 10\nemptying_to: 20\n"),
        ("thresholds.yaml", "- not\n- a mapping\n"),
    ],
)
def test_invalid_values_rejected(tmp_path: Path, filename: str, content: str) -> None:
    (tmp_path / filename).write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_env_override(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / "planning.yaml").write_text("horizon_hours: 3\n", encoding="utf-8")
    monkeypatch.setenv("BINFLEET_CONFIG_DIR", str(tmp_path))
    assert load_config().planning.horizon_hours == 3
