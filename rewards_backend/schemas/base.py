"""Shared response schema configuration."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, model_serializer

from rewards_backend.utils import ensure_utc


def serialize_datetime_utc(dt: datetime) -> str:
    """ISO 8601 in UTC with a 'Z' suffix (naive values are read as UTC)."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def _to_wire(value: Any) -> Any:
    if isinstance(value, datetime):
        return serialize_datetime_utc(value)
    if isinstance(value, list):
        return [_to_wire(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_wire(item) for key, item in value.items()}
    return value


class BaseSchema(BaseModel):
    """Response schema readable straight from ORM rows and dataclasses."""

    model_config = ConfigDict(from_attributes=True)

    @model_serializer(mode="wrap")
    def serialize_model(self, handler):
        return _to_wire(handler(self))
