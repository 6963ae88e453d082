"""Shared Pydantic base models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BridgeBase(BaseModel):
    """Base model with shared config for all API schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
