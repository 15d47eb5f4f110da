import json

import pytest

from plantsurveyor.errors import PersistenceFailure
from plantsurveyor.services.surveyor_service import PlantSurveyorService
from plantsurveyor.session_controller import SessionController

MARKER = json.dumps({"id": "PARCEL-12", "nom": "Parcel 12", "lat": 45.75, "lon": 4.85})


class BrokenStore:
    def __init__(self, store):
        self._store = store

    def __getattr__(self, name):
        return getattr(self._store, name)

    def list_sessions(self):
        raise PersistenceFailure("database is locked")

    def get_statistics(self):
        raise RuntimeError("boom")


@pytest.fixture
def service(controller):
    return PlantSurveyorService(controller)


def _ready(service):
    assert service.scan_marker({"data": MARKER})["success"] is True
    assert service.calibrate({"position": [0.0, 0.0, 0.0]})["success"] is True


def test_scan_marker_binds_session(service):
    response = service.scan_marker({"data": MARKER})
    assert response["success"] is True
    assert response["state"] == "awaiting_origin"
    assert response["session"]["name"] == "Parcel 12"
    assert response["has_existing_points"] is False


def test_scan_marker_rejects_garbage(service):
    response = service.scan_marker({"data": "{not json"})
    assert response["success"] is False
    assert response["error_code"] == "MALFORMED_MARKER_DATA"


def test_scan_marker_twice_is_invalid_state(service):
    service.scan_marker({"data": MARKER})
    response = service.scan_marker({"data": MARKER})
    assert response["error_code"] == "INVALID_STATE"
    assert response["details"]["operation"] == "bind_origin"


def test_place_point_before_calibration(service):
    service.scan_marker({"data": MARKER})
    response = service.place_point({"position": [1.0, 0.0, 0.0]})
    assert response == {
        "success": False,
        "error_code": "INVALID_STATE",
        "error": "place_point requires state calibrated, current state is awaiting_origin",
        "details": {"operation": "place_point", "state": "awaiting_origin", "expected": "calibrated"},
    }


def test_bad_position_is_validation_error(service):
    service.scan_marker({"data": MARKER})
    response = service.calibrate({"position": [1.0, 2.0]})
    assert response["error_code"] == "VALIDATION_ERROR"
    assert response["details"]["fields"] == ["position"]


def test_missing_pose_is_reported(service):
    _ready(service)
    response = service.place_point()
    assert response["error_code"] == "POSE_UNAVAILABLE"


def test_planting_flow(service):
    _ready(service)

    placed = service.place_point({"position": [1.0, 0.0, 0.0]})
    assert placed["success"] is True
    assert placed["point"]["name"] == "Tree 1"
    assert placed["point"]["previous_point_id"] == 0
    service.place_point({"position": [1.0, 2.0, 0.0]})

    points = service.list_points()
    assert points["count"] == 2
    assert points["points"][1]["world_position"] == [1.0, 2.0, 0.0]

    status = service.get_status()
    assert status["state"] == "calibrated"
    assert status["is_ready"] is True
    assert status["point_count"] == 2

    candidates = service.recovery_candidates()
    assert candidates["points"] == [{"id": 1, "name": "Tree 1"}, {"id": 2, "name": "Tree 2"}]


def test_recover_after_tracking_loss(service):
    _ready(service)
    service.place_point({"position": [1.0, 0.0, 0.0]})
    service.place_point({"position": [1.0, 2.0, 0.0]})

    assert service.tracking_interrupted()["state"] == "calibrated"
    resumed = service.tracking_resumed()
    assert resumed["needs_relocation"] is True
    assert resumed["state"] == "awaiting_origin"

    recovered = service.recover_from_known_point({"point_id": 2, "position": [5.0, 5.0, 0.0]})
    assert recovered["success"] is True
    assert recovered["origin"] == [4.0, 3.0, 0.0]
    assert recovered["positions"]["1"] == [5.0, 3.0, 0.0]

    missing = service.recover_from_known_point({"point_id": 8, "position": [0.0, 0.0, 0.0]})
    assert missing["error_code"] == "POINT_NOT_FOUND"

    invalid = service.recover_from_known_point({"point_id": 0})
    assert invalid["error_code"] == "VALIDATION_ERROR"


def test_marker_located_and_reset(service):
    service.scan_marker({"data": MARKER})
    assert service.marker_located({"marker_id": "OTHER", "position": [0, 0, 0]})["calibrated"] is False
    assert service.marker_located({"marker_id": "PARCEL-12", "position": [0, 0, 0]})["calibrated"] is True

    reset = service.reset_calibration()
    assert reset["success"] is True
    assert reset["state"] == "awaiting_origin"


def test_force_calibration_without_pose(service):
    service.scan_marker({"data": MARKER})
    assert service.force_calibration()["error_code"] == "POSE_UNAVAILABLE"


def test_surface_detected_counts(service):
    assert service.surface_detected()["surface_count"] == 1
    assert service.surface_detected({"count": 3})["surface_count"] == 4
    assert service.surface_detected({"count": -1})["error_code"] == "VALIDATION_ERROR"


def test_session_management(service, store):
    from plantsurveyor.models import Session

    store.create(Session.new("OLD", "Old plot"))
    _ready(service)

    listed = service.list_sessions()
    assert listed["count"] == 2

    in_use = service.delete_session({"origin_id": "PARCEL-12"})
    assert in_use["error_code"] == "INVALID_STATE"

    exported = service.export_session({"origin_id": "OLD"})
    assert exported["session"]["name"] == "Old plot"
    assert service.export_session({"origin_id": "NOPE"})["error_code"] == "UNKNOWN_ORIGIN"

    deleted = service.delete_session({"origin_id": "OLD"})
    assert deleted == {"success": True, "origin_id": "OLD", "removed": True}

    stats = service.get_statistics()
    assert stats["success"] is True
    assert stats["total_sessions"] == 1


def test_store_failures_become_payloads(store, config):
    service = PlantSurveyorService(SessionController(BrokenStore(store), config=config))

    locked = service.list_sessions()
    assert locked["error_code"] == "PERSISTENCE_FAILURE"
    assert locked["error"] == "database is locked"

    unexpected = service.get_statistics()
    assert unexpected == {"success": False, "error_code": "STATISTICS_FAILED", "error": "boom"}


def test_scan_marker_requires_data(service):
    response = service.scan_marker({})
    assert response == {
        "success": False,
        "error_code": "VALIDATION_ERROR",
        "error": "data is required",
        "details": {"parameter": "data"},
    }
    assert service.controller.state.value == "uninitialized"


def test_invalid_marker_alias_matches_malformed_code(service):
    from plantsurveyor.errors import InvalidMarkerData, MalformedMarkerData

    assert InvalidMarkerData is MalformedMarkerData
    response = service.scan_marker({"data": '{"id": "P-1"}'})
    assert response["error_code"] == InvalidMarkerData.code
