"""Shared schema base classes for API payloads and responses."""

from pydantic import BaseModel, ConfigDict


class ORMModel(BaseModel):
    """Base model that reads attributes from SQLAlchemy rows."""

    model_config = ConfigDict(from_attributes=True)


class StrictVariant(BaseModel):
    """Immutable tagged-variant payload that rejects unknown fields."""

    model_config = ConfigDict(extra="forbid", frozen=True)
