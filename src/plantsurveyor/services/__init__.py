"""Service helpers for PlantSurveyor presentation layers."""

from .surveyor_service import PlantSurveyorService

__all__ = ["PlantSurveyorService"]
