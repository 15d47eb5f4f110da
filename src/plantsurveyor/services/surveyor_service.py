"""Service layer turning presentation commands into controller calls."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from ..errors import InvalidState, PlantSurveyorError, ValidationFailure, error_response
from ..geometry import Position
from ..logging import module_logger
from ..reconstruction import ReconstructionResult
from ..schemas import (
    MarkerLocatedPayload,
    OriginPayload,
    PosePayload,
    RecoverPayload,
    SurfacePayload,
    parse_marker_payload,
)
from ..session_controller import LivePoint, SessionController
from ..session_store import point_to_dict, session_to_dict

logger = module_logger(service='plantsurveyor', component='service')


def _position_list(position: Optional[Position]) -> Optional[list]:
    return list(position.as_tuple()) if position is not None else None


def _live_point_dict(point: LivePoint) -> Dict[str, Any]:
    return {"id": point.id, "name": point.name, "world_position": _position_list(point.world_position)}


def _reconstruction_dict(result: ReconstructionResult) -> Dict[str, Any]:
    return {
        "anchor_point_id": result.anchor_point_id,
        "origin": _position_list(result.origin),
        "positions": {str(point_id): _position_list(pos) for point_id, pos in result.positions.items()},
    }


class PlantSurveyorService:
    """Expose a SessionController and its store as dict-in, dict-out commands.

    Every command returns ``{"success": True, ...}`` or an error payload with
    ``error_code``, ``error`` and optional ``details``; nothing raises.
    """

    def __init__(self, controller: SessionController) -> None:
        self._controller = controller
        self._store = controller.store

    @property
    def controller(self) -> SessionController:
        return self._controller

    # ------------------------------------------------------------------
    # Calibration
    def scan_marker(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            if not payload:
                raise ValidationFailure("data is required", details={"parameter": "data"})
            raw = payload.get("data", payload) if isinstance(payload, Mapping) else payload
            marker = parse_marker_payload(raw)
            session = self._controller.bind_origin(marker)
            return {
                "success": True,
                "session": session_to_dict(session, include_points=False),
                "state": self._controller.state.value,
                "has_existing_points": self._controller.has_existing_points,
            }
        return self._safe_call('scan_marker', run, 'SCAN_MARKER_FAILED')

    def calibrate(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            request = PosePayload.model_validate(payload or {})
            live = self._controller.calibrate(request.to_position())
            return {
                "success": True,
                "origin": _position_list(self._controller.origin_world_position),
                "points": [_live_point_dict(point) for point in live],
            }
        return self._safe_call('calibrate', run, 'CALIBRATE_FAILED')

    def marker_located(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            request = MarkerLocatedPayload.model_validate(payload or {})
            calibrated = self._controller.handle_marker_located(request.marker_id, request.to_position())
            return {"success": True, "calibrated": calibrated, "state": self._controller.state.value}
        return self._safe_call('marker_located', run, 'MARKER_LOCATED_FAILED')

    def force_calibration(self) -> Dict[str, Any]:
        def run():
            origin = self._controller.force_calibration()
            return {"success": True, "origin": _position_list(origin), "point_count": len(self._controller.live_points)}
        return self._safe_call('force_calibration', run, 'FORCE_CALIBRATION_FAILED')

    def reset_calibration(self) -> Dict[str, Any]:
        def run():
            session = self._controller.reset_calibration()
            return {"success": True, "state": self._controller.state.value, "point_count": session.point_count}
        return self._safe_call('reset_calibration', run, 'RESET_CALIBRATION_FAILED')

    # ------------------------------------------------------------------
    # Points
    def place_point(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        def run():
            request = PosePayload.model_validate(payload or {})
            point = self._controller.place_point(request.to_position())
            return {"success": True, "point": point_to_dict(point), "point_count": self._controller.saved_point_count}
        return self._safe_call('place_point', run, 'PLACE_POINT_FAILED')

    def recover_from_known_point(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            request = RecoverPayload.model_validate(payload or {})
            result = self._controller.recover_from_known_point(request.point_id, request.to_position())
            data = _reconstruction_dict(result)
            data["success"] = True
            return data
        return self._safe_call('recover_from_known_point', run, 'RECOVER_FAILED')

    def list_points(self) -> Dict[str, Any]:
        def run():
            points = self._controller.live_points
            return {"success": True, "points": [_live_point_dict(point) for point in points], "count": len(points)}
        return self._safe_call('list_points', run, 'LIST_POINTS_FAILED')

    def recovery_candidates(self) -> Dict[str, Any]:
        def run():
            candidates = self._controller.available_points_for_recovery()
            return {
                "success": True,
                "points": [{"id": point_id, "name": name} for point_id, name in candidates],
                "count": len(candidates),
            }
        return self._safe_call('recovery_candidates', run, 'RECOVERY_CANDIDATES_FAILED')

    # ------------------------------------------------------------------
    # Tracking events
    def tracking_interrupted(self) -> Dict[str, Any]:
        def run():
            self._controller.handle_tracking_interrupted()
            return {"success": True, "state": self._controller.state.value}
        return self._safe_call('tracking_interrupted', run, 'TRACKING_EVENT_FAILED')

    def tracking_resumed(self) -> Dict[str, Any]:
        def run():
            needs_relocation = self._controller.handle_tracking_resumed()
            return {"success": True, "needs_relocation": needs_relocation, "state": self._controller.state.value}
        return self._safe_call('tracking_resumed', run, 'TRACKING_EVENT_FAILED')

    def surface_detected(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        def run():
            request = SurfacePayload.model_validate(payload or {})
            return {"success": True, "surface_count": self._controller.record_surface_detected(request.count)}
        return self._safe_call('surface_detected', run, 'SURFACE_DETECTED_FAILED')

    def get_status(self) -> Dict[str, Any]:
        def run():
            status = self._controller.status()
            return {
                "success": True,
                "state": status.state.value,
                "is_ready": status.is_ready,
                "message": status.message,
                "surface_count": status.surface_count,
                "point_count": status.point_count,
                "distance": status.distance,
                "origin_id": status.origin_id,
            }
        return self._safe_call('get_status', run, 'STATUS_FAILED')

    # ------------------------------------------------------------------
    # Stored sessions
    def list_sessions(self) -> Dict[str, Any]:
        def run():
            sessions = self._store.list_sessions()
            return {
                "success": True,
                "sessions": [session_to_dict(session, include_points=False) for session in sessions],
                "count": len(sessions),
            }
        return self._safe_call('list_sessions', run, 'LIST_SESSIONS_FAILED')

    def delete_session(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            request = OriginPayload.model_validate(payload or {})
            bound = self._controller.session
            if bound is not None and bound.origin_id == request.origin_id:
                raise InvalidState("Cannot delete the session currently in use",
                                   details={"origin_id": request.origin_id})
            removed = self._store.delete_session(request.origin_id)
            return {"success": True, "origin_id": request.origin_id, "removed": removed}
        return self._safe_call('delete_session', run, 'DELETE_SESSION_FAILED')

    def get_statistics(self) -> Dict[str, Any]:
        def run():
            stats = self._store.get_statistics()
            stats["success"] = True
            return stats
        return self._safe_call('get_statistics', run, 'STATISTICS_FAILED')

    def export_session(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        def run():
            request = OriginPayload.model_validate(payload or {})
            return {"success": True, "session": self._store.export_session(request.origin_id)}
        return self._safe_call('export_session', run, 'EXPORT_SESSION_FAILED')

    # ------------------------------------------------------------------
    def _safe_call(self, operation: str, func: Callable[[], Dict[str, Any]], default_error_code: str) -> Dict[str, Any]:
        try:
            return func()
        except ValidationError as exc:
            fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors() if err.get("loc")})
            logger.warning('validation_failed', extra={'operation': operation, 'error': str(exc)})
            return error_response('VALIDATION_ERROR', f"Invalid payload for {operation}", details={"fields": fields})
        except ValidationFailure as exc:
            logger.warning('validation_failed', extra={'operation': operation, 'error': exc.message})
            return error_response('VALIDATION_ERROR', exc.message, details=exc.details)
        except PlantSurveyorError as exc:
            logger.error('plantsurveyor_error', extra={'operation': operation, 'error': exc.message})
            return exc.to_payload()
        except Exception as exc:
            logger.exception('service_unhandled', extra={'operation': operation, 'error': str(exc)})
            return error_response(default_error_code, str(exc))


__all__ = ["PlantSurveyorService"]
