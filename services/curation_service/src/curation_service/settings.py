from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MULTAS_", extra="ignore")

    data_dir: Path = Path("data")
    judgments_file: Path = Path("data/judgments.json")
    articles_file: Path = Path("data/articles.json")
    gazetteer_file: Path = Path("data/radares.geojson")

    classifier_threshold: float = 0.5

    geocoder_api_key: str | None = None
    geocoder_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    request_timeout_s: float = 10.0

    cluster_distance_m: float = 10.0
    backfill_batch_size: int = 1000


settings = Settings()
