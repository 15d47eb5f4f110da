"""Pytest configuration making the src/ layout importable without installing."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_ROOT = _PROJECT_ROOT / "src"

if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from plantsurveyor.config import PlantSurveyorConfig, reset_config  # noqa: E402
from plantsurveyor.interfaces import StaticPoseSource  # noqa: E402
from plantsurveyor.schemas import MarkerMetadata  # noqa: E402
from plantsurveyor.session_controller import SessionController  # noqa: E402
from plantsurveyor.session_store import SessionStore  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_global_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path):
    return PlantSurveyorConfig(
        config_file=tmp_path / "missing_config.json",
        overrides={"database_path": str(tmp_path / "default.sqlite")},
    )


@pytest.fixture
def store(tmp_path, config):
    db = SessionStore(tmp_path / "sessions.sqlite", config=config)
    yield db
    db.close()


@pytest.fixture
def pose_source():
    return StaticPoseSource()


@pytest.fixture
def controller(store, pose_source, config):
    return SessionController(store, pose_source=pose_source, config=config)


@pytest.fixture
def marker():
    return MarkerMetadata(id="PARCEL-12", name="Parcel 12", lat=45.75, lon=4.85)
