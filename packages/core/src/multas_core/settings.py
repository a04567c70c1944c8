from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# An H3 cell has seven children, so a map view never draws fewer features.
MIN_MAP_BUDGET = 7


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MULTAS_", extra="ignore")

    database_url: str = "sqlite:///data/multas.db"
    data_dir: Path = Path("data")

    # Country bounding box; resolved points outside it are rejected.
    country_name: str = "Uruguay"
    country_code: str = "uy"
    bounds_min_lat: float = -36.0
    bounds_max_lat: float = -29.0
    bounds_min_lng: float = -59.0
    bounds_max_lng: float = -52.0

    map_budget: int = Field(15, ge=MIN_MAP_BUDGET)
    map_safety_multiple: int = 2
    map_max_exploded_points: int = 20


settings = Settings()
