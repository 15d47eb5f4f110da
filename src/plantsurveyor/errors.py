"""Domain-specific errors for PlantSurveyor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ErrorPayload:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error_code": self.code,
            "error": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


def error_response(code: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return ErrorPayload(code, message, details).to_dict()


class PlantSurveyorError(Exception):
    code = "PLANTSURVEYOR_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return error_response(self.code, self.message, details=self.details)


class ValidationFailure(PlantSurveyorError):
    code = "VALIDATION_ERROR"


class PoseUnavailable(PlantSurveyorError):
    """The pose source had no current reading."""
    code = "POSE_UNAVAILABLE"


class InvalidPose(PlantSurveyorError):
    """A pose with NaN or infinite components was handed to the engine."""
    code = "INVALID_POSE"


class UnknownOrigin(PlantSurveyorError):
    code = "UNKNOWN_ORIGIN"


class DuplicateOrigin(PlantSurveyorError):
    code = "DUPLICATE_ORIGIN"


class PointNotFound(PlantSurveyorError):
    code = "POINT_NOT_FOUND"


class MalformedMarkerData(PlantSurveyorError):
    """Scanned code payload failed to decode or validate."""
    code = "MALFORMED_MARKER_DATA"


InvalidMarkerData = MalformedMarkerData


class PersistenceFailure(PlantSurveyorError):
    """Underlying store I/O failed; the operation was not committed."""
    code = "PERSISTENCE_FAILURE"


class InvalidState(PlantSurveyorError):
    code = "INVALID_STATE"


class NoActiveSession(PlantSurveyorError):
    code = "NO_ACTIVE_SESSION"


class ChainIntegrityError(PlantSurveyorError):
    code = "CHAIN_INTEGRITY_ERROR"
