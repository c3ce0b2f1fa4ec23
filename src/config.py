from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


class TrajectorySearchSettings(BaseModel):
    """Bounds and constants of the trajectory search.

    Sent verbatim (as a dict) to every compute worker at initialization.
    """

    # Differential evolution
    min_cross_proba: float = Field(default=0.07, ge=0.0, le=1.0)
    max_cross_proba: float = Field(default=0.95, ge=0.0, le=1.0)
    cross_proba_incr: float = Field(default=2.0, gt=0.0)  # power-law exponent of the CR schedule
    diff_weight: float = Field(default=0.8, gt=0.0, le=2.0)
    pop_size_dim_scale: int = Field(default=10, ge=1)
    max_generations: int = Field(default=300, ge=1)
    split_limit: int = Field(default=100, ge=1)

    # Legs
    dsm_offset_min: float = Field(default=0.01, ge=0.0, le=1.0)
    dsm_offset_max: float = Field(default=0.99, ge=0.0, le=1.0)
    min_leg_duration: float = Field(default=6.0 * 86400.0, ge=0.0)  # seconds
    transfer_duration_min: float = Field(default=0.1, gt=0.0)  # x Hohmann period
    transfer_duration_max: float = Field(default=1.0, gt=0.0)
    resonant_revolutions_min: float = Field(default=1.0, ge=1.0)  # x sidereal period
    resonant_revolutions_max: float = Field(default=4.0, ge=1.0)

    # Departure / arrival
    dep_dv_scale_min: float = Field(default=1.01, gt=1.0)  # x escape velocity
    dep_dv_scale_max: float = Field(default=1.5, gt=1.0)
    flyby_periapsis_scale_max: float = Field(default=50.0, ge=1.0)  # SOI-entry ring, body radii
    insertion_burn: bool = True

    # Fitness evaluation
    max_attempts: int = Field(default=1000, ge=1)

    @model_validator(mode="after")
    def check_bounds(self) -> "TrajectorySearchSettings":
        pairs = (
            ("min_cross_proba", "max_cross_proba"),
            ("dsm_offset_min", "dsm_offset_max"),
            ("transfer_duration_min", "transfer_duration_max"),
            ("resonant_revolutions_min", "resonant_revolutions_max"),
            ("dep_dv_scale_min", "dep_dv_scale_max"),
        )
        for lo, hi in pairs:
            if getattr(self, lo) > getattr(self, hi):
                raise ValueError(f"{lo} ({getattr(self, lo)}) must not exceed {hi} ({getattr(self, hi)})")
        return self


class Settings(BaseSettings):
    # Redis
    redis_url: str = "redis://localhost:6379"
    job_timeout: int = 3600  # seconds, one search per arq job

    # Compute workers
    worker_count: int = Field(default_factory=lambda: os.cpu_count() or 1)
    worker_start_method: str = "spawn"
    progress_step: int = Field(default=100, ge=1)  # agents between progress replies

    # Search
    search: TrajectorySearchSettings = TrajectorySearchSettings()

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_nested_delimiter": "__"}


settings = Settings()
