from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GridSettings(BaseSettings):
    """Defaults applied to grid derivations, overridable from the environment."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    default_rounding: Literal["nearest", "enclosing", "contained"] = Field(
        default="nearest", validation_alias="GRID_ROUNDING_MODE"
    )
    default_clipping: Literal["strict", "border_expansion"] = Field(
        default="strict", validation_alias="GRID_CLIPPING_MODE"
    )

    # Numerical tolerances
    subsampling_tolerance: float = Field(
        default=1e-9, validation_alias="GRID_SUBSAMPLING_TOLERANCE"
    )
    slice_edge_tolerance: float = Field(
        default=1e-9, validation_alias="GRID_SLICE_EDGE_TOLERANCE"
    )

    # Envelope transformation
    envelope_densify_points: int = Field(
        default=21, validation_alias="GRID_ENVELOPE_DENSIFY_POINTS"
    )

    @field_validator("default_rounding", "default_clipping", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("subsampling_tolerance", "slice_edge_tolerance")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("tolerance must be non-negative")
        return value

    @field_validator("envelope_densify_points")
    @classmethod
    def _at_least_two(cls, value: int) -> int:
        if value < 2:
            raise ValueError("envelope_densify_points must be at least 2")
        return value


settings = GridSettings()
