"""Payload schemas for scanned markers and presentation-layer commands."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, conlist, field_validator

from .errors import MalformedMarkerData
from .geometry import Position


class MarkerMetadata(BaseModel):
    """Decoded origin marker payload: ``{"id", "name", "lat", "lon"}``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    # Older printed codes carry the plantation name under "nom"
    name: str = Field(validation_alias=AliasChoices("name", "nom"))
    lat: float = 0.0
    lon: float = 0.0

    @field_validator("id", "name", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> str:
        if value is None:
            raise ValueError("must not be empty")
        text = str(value).strip()
        if not text:
            raise ValueError("must not be empty")
        return text


def parse_marker_payload(raw: Union[str, bytes, Mapping[str, Any]]) -> MarkerMetadata:
    """Decode and validate a scanned code payload.

    Raises:
        MalformedMarkerData: when the payload is not JSON, not an object, or
            misses a non-empty id/name.
    """
    data: Any = raw
    if isinstance(raw, bytes):
        try:
            data = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMarkerData("marker payload is not UTF-8") from exc
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise MalformedMarkerData("marker payload is not valid JSON", details={"error": str(exc)}) from exc
    if not isinstance(data, Mapping):
        raise MalformedMarkerData("marker payload must be a JSON object")

    try:
        return MarkerMetadata.model_validate(dict(data))
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise MalformedMarkerData("marker payload failed validation", details={"fields": fields}) from exc


class PosePayload(BaseModel):
    """Optional explicit pose; commands fall back to the pose source without it."""
    position: Optional[conlist(float, min_length=3, max_length=3)] = None

    def to_position(self) -> Optional[Position]:
        return Position.from_sequence(self.position) if self.position is not None else None


class MarkerLocatedPayload(BaseModel):
    marker_id: str = Field(min_length=1)
    position: conlist(float, min_length=3, max_length=3)

    def to_position(self) -> Position:
        return Position.from_sequence(self.position)


class RecoverPayload(PosePayload):
    point_id: int = Field(ge=1)


class SurfacePayload(BaseModel):
    count: int = Field(default=1, ge=0)


class OriginPayload(BaseModel):
    origin_id: str = Field(min_length=1)
