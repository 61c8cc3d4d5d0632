"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Route Planner"
    data_root: Path = Field(default=Path("data"), description="Root directory for saved route files.")
    cluster_count: int = Field(default=6, description="Number of geographic clusters per run.")
    average_speed_kmh: float = Field(
        default=35.0,
        description="Average urban driving speed used to turn distances into travel minutes.",
    )
    max_two_opt_iterations: int = Field(
        default=10_000,
        description="Upper bound on applied 2-opt moves per technician route.",
    )
    optimization_time_budget_ms: Optional[int] = Field(
        default=None,
        description="Wall-clock budget for the 2-opt phase per technician. None disables the budget.",
    )
    concurrency_limit: int = Field(default=4, description="Maximum concurrent route optimizations.")
    fuel_cost_per_km: float = Field(
        default=0.35,
        description="Fuel cost per driven kilometre (0.56 per mile).",
    )
    kmeans_max_iterations: int = Field(default=50)
    strict_priority: bool = Field(
        default=False,
        description="Visit every High priority job before Medium and Low ones.",
    )
    log_level: str = Field(default="INFO")
    general_region_markers: tuple[str, ...] = Field(
        default=("All Regions",),
        description="Specialization values that mark a technician as working any region.",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )
    saved_routes_table: str = Field(default="saved_routes")

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("general_region_markers", mode="before")
    @classmethod
    def _parse_region_markers(cls, value: Any) -> tuple[str, ...]:
        """Accept a JSON array, a comma-separated string or any sequence of names."""
        if value is None:
            return ()
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                try:
                    value = json.loads(text)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"general_region_markers is not a valid JSON array: {text}") from exc
            else:
                value = text.split(",")
        return tuple(str(item).strip() for item in value if str(item).strip())

    @field_validator("optimization_time_budget_ms", mode="before")
    @classmethod
    def _blank_budget_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


settings = Settings()
